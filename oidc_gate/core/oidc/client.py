"""OIDC client implementation.

Talks to the provider's authorization and token endpoints for the
Authorization Code flow and the refresh-token grant.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any
from urllib.parse import urlencode

import httpx

from oidc_gate.core.logging import LoggingClient, ProtocolLogger, get_protocol_logger
from oidc_gate.core.oidc.discovery import ProviderMetadata

logger = logging.getLogger(__name__)


@dataclass
class OIDCClientConfig:
    """Configuration for an OIDC client."""

    client_id: str
    client_secret: str | None = None
    redirect_uri: str = ""

    # IdP endpoints
    authorization_endpoint: str = ""
    token_endpoint: str = ""

    timeout: float = 10.0
    verify_ssl: bool = True

    @classmethod
    def from_metadata(
        cls,
        metadata: ProviderMetadata,
        client_id: str,
        client_secret: str | None = None,
        redirect_uri: str = "",
        timeout: float = 10.0,
        verify_ssl: bool = True,
    ) -> OIDCClientConfig:
        """Create client config from resolved provider metadata.

        Args:
            metadata: Provider endpoints.
            client_id: OAuth2 client ID.
            client_secret: OAuth2 client secret (for confidential clients).
            redirect_uri: Callback URI for authorization code flow.
            timeout: HTTP timeout in seconds.
            verify_ssl: Whether to verify TLS certificates.

        Returns:
            Configured OIDCClientConfig.
        """
        return cls(
            client_id=client_id,
            client_secret=client_secret,
            redirect_uri=redirect_uri,
            authorization_endpoint=metadata.authorization_endpoint,
            token_endpoint=metadata.token_endpoint,
            timeout=timeout,
            verify_ssl=verify_ssl,
        )


@dataclass
class TokenResponse:
    """Represents an OAuth2 token response."""

    access_token: str
    token_type: str
    expires_in: int | None = None
    refresh_token: str | None = None
    id_token: str | None = None
    scope: str | None = None

    # Raw response for debugging
    raw_response: dict[str, Any] = field(default_factory=dict, repr=False)

    # Error information
    error: str | None = None
    error_description: str | None = None

    @property
    def is_success(self) -> bool:
        """Check if the token response is successful."""
        return self.error is None and bool(self.access_token)

    @classmethod
    def failure(cls, error: str, error_description: str, raw_response: dict[str, Any] | None = None) -> TokenResponse:
        return cls(
            access_token="",
            token_type="",
            error=error,
            error_description=error_description,
            raw_response=raw_response or {},
        )


class OIDCClient:
    """Client for the provider's authorization and token endpoints."""

    def __init__(
        self,
        config: OIDCClientConfig,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the OIDC client.

        Args:
            config: Client configuration with endpoints and credentials.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.config = config
        self._protocol_logger = protocol_logger or get_protocol_logger()
        self._transport = transport
        self._http_client: LoggingClient | None = None

    @property
    def http_client(self) -> LoggingClient:
        """Get or create HTTP client with logging."""
        if self._http_client is None:
            self._http_client = LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=self.config.timeout,
                verify=self.config.verify_ssl,
                transport=self._transport,
            )
        return self._http_client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._http_client is not None:
            self._http_client.close()
            self._http_client = None

    def authorization_url(self, state: str, nonce: str, scopes: list[str]) -> str:
        """Build the authorization endpoint URL.

        Args:
            state: OAuth2 state parameter.
            nonce: OIDC nonce parameter.
            scopes: Scopes to request.

        Returns:
            URL to redirect the user agent to.
        """
        params: dict[str, str] = {
            "response_type": "code",
            "client_id": self.config.client_id,
            "redirect_uri": self.config.redirect_uri,
            "scope": " ".join(scopes),
            "state": state,
            "nonce": nonce,
        }
        separator = "&" if "?" in self.config.authorization_endpoint else "?"
        return f"{self.config.authorization_endpoint}{separator}{urlencode(params)}"

    def exchange_code(self, code: str) -> TokenResponse:
        """Exchange an authorization code for tokens.

        Args:
            code: Authorization code from the callback.

        Returns:
            TokenResponse with access token, id token, etc.
        """
        return self._token_request(
            {
                "grant_type": "authorization_code",
                "code": code,
                "redirect_uri": self.config.redirect_uri,
            },
            "token exchange",
        )

    def refresh(self, refresh_token: str) -> TokenResponse:
        """Obtain a new token set with a refresh token.

        Args:
            refresh_token: Refresh token from a previous exchange.

        Returns:
            TokenResponse with the new token set.
        """
        return self._token_request(
            {
                "grant_type": "refresh_token",
                "refresh_token": refresh_token,
            },
            "token refresh",
        )

    def _token_request(self, grant: dict[str, str], description: str) -> TokenResponse:
        data = dict(grant, client_id=self.config.client_id)
        if self.config.client_secret:
            data["client_secret"] = self.config.client_secret

        try:
            response = self.http_client.post(
                self.config.token_endpoint,
                data=data,
                headers={"Accept": "application/json"},
            )
        except httpx.HTTPError as e:
            return TokenResponse.failure("http_error", f"HTTP error during {description}: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error during {description}")
            return TokenResponse.failure("http_error", f"Unexpected error during {description}: {e}")

        try:
            response_data = response.json()
        except ValueError:
            return TokenResponse.failure(
                "invalid_response",
                f"Non-JSON response during {description} (status {response.status_code})",
            )
        if not isinstance(response_data, dict):
            return TokenResponse.failure("invalid_response", f"Unexpected response body during {description}")

        if response.status_code != 200:
            return TokenResponse.failure(
                response_data.get("error", "token_error"),
                response_data.get(
                    "error_description",
                    f"Token request failed with status {response.status_code}",
                ),
                raw_response=response_data,
            )

        token_response = TokenResponse(
            access_token=response_data.get("access_token", ""),
            token_type=response_data.get("token_type", "Bearer"),
            expires_in=response_data.get("expires_in"),
            refresh_token=response_data.get("refresh_token"),
            id_token=response_data.get("id_token"),
            scope=response_data.get("scope"),
            raw_response=response_data,
        )
        if not token_response.access_token:
            token_response.error = "invalid_response"
            token_response.error_description = f"No access token in {description} response"
        return token_response
