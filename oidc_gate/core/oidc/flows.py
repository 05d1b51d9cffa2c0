"""OIDC Authorization Code flow driver.

Drives one authentication attempt through its states:

    UNSTARTED -> AWAITING_CALLBACK -> AWAITING_TOKEN_EXCHANGE -> COMPLETE

with FAILED as an absorbing state left only through restart(). The state
is derived from the SessionRecord, so an attempt can be resumed in any
later request that restores the same record.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import StrEnum
from typing import TYPE_CHECKING, Protocol
from urllib.parse import urlencode

from oidc_gate.core.errors import (
    AuthorizationResponseError,
    FlowStateError,
    MissingTokenError,
    TokenExchangeError,
    VerificationError,
)
from oidc_gate.core.oidc.authorization import AuthorizationDecisionEngine, IdentityAttributes
from oidc_gate.core.oidc.client import OIDCClient, OIDCClientConfig, TokenResponse
from oidc_gate.core.oidc.discovery import MetadataResolver, ProviderMetadata, require
from oidc_gate.core.oidc.validation import TokenVerifier, VerifiedClaims

if TYPE_CHECKING:
    import httpx

    from oidc_gate.core.config import RelyingPartySettings
    from oidc_gate.core.logging import ProtocolLogger
    from oidc_gate.core.oidc.session import SessionRecord

logger = logging.getLogger(__name__)

# Scopes this relying party will ever request
ALLOWED_SCOPES = ("openid", "email", "profile", "address")


class FlowStatus(StrEnum):
    """State of an authentication attempt."""

    UNSTARTED = "unstarted"
    AWAITING_CALLBACK = "awaiting_callback"
    AWAITING_TOKEN_EXCHANGE = "awaiting_token_exchange"
    COMPLETE = "complete"
    FAILED = "failed"


class Routes(Protocol):
    """Produces the absolute URLs the provider redirects back to."""

    def callback_url(self) -> str: ...

    def post_logout_url(self) -> str: ...


@dataclass(frozen=True)
class StaticRoutes:
    """Fixed callback and post-logout URLs."""

    callback: str
    post_logout: str

    def callback_url(self) -> str:
        return self.callback

    def post_logout_url(self) -> str:
        return self.post_logout


@dataclass(frozen=True)
class AuthenticationResult:
    """Outcome of a completed and verified login."""

    identity: IdentityAttributes
    authorized: bool


def negotiate_scopes(supported: tuple[str, ...] | list[str], restriction: list[str] | None = None) -> list[str]:
    """Pick the scopes to request.

    The provider's supported scopes are intersected with ALLOWED_SCOPES and,
    when configured, with the administrator's restriction. Provider order is
    kept. A provider that does not advertise scopes is assumed to support
    all of ALLOWED_SCOPES.
    """
    candidates = list(supported) if supported else list(ALLOWED_SCOPES)
    scopes = [scope for scope in candidates if scope in ALLOWED_SCOPES]
    if restriction:
        scopes = [scope for scope in scopes if scope in restriction]
    return scopes


class AuthorizationCodeFlow:
    """Orchestrates the OIDC Authorization Code flow for one attempt.

    This flow follows these steps:
    1. Build the authorization redirect (nonce generated and persisted)
    2. Receive the callback with the authorization code
    3. Exchange the code for tokens
    4. Verify the ID token and access token
    5. Derive the identity and the access decision
    """

    def __init__(
        self,
        record: SessionRecord,
        resolver: MetadataResolver,
        settings: RelyingPartySettings,
        routes: Routes,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the flow driver.

        Args:
            record: Session record of the attempt.
            resolver: Provider metadata resolver.
            settings: Relying-party settings.
            routes: Callback and post-logout URL capability.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.record = record
        self.resolver = resolver
        self.settings = settings
        self.routes = routes
        self._protocol_logger = protocol_logger
        self._transport = transport
        self._client: OIDCClient | None = None
        self._engine: AuthorizationDecisionEngine | None = None

    @property
    def status(self) -> FlowStatus:
        """Current state, derived from the session record."""
        if self.record.is_failed:
            return FlowStatus.FAILED
        if self.record.is_complete:
            return FlowStatus.COMPLETE
        if self.record.code:
            return FlowStatus.AWAITING_TOKEN_EXCHANGE
        if self.record.is_started:
            return FlowStatus.AWAITING_CALLBACK
        return FlowStatus.UNSTARTED

    @property
    def metadata(self) -> ProviderMetadata:
        """Provider metadata.

        Raises:
            ProviderUnavailable: If discovery failed.
        """
        return require(self.resolver, self.settings.issuer_url)

    @property
    def client(self) -> OIDCClient:
        """Get or create the OIDC client for the provider's endpoints."""
        if self._client is None:
            config = OIDCClientConfig.from_metadata(
                self.metadata,
                client_id=self.settings.client_id,
                client_secret=self.settings.client_secret,
                redirect_uri=self.routes.callback_url(),
                timeout=self.settings.http_timeout,
                verify_ssl=self.settings.verify_ssl,
            )
            self._client = OIDCClient(config, protocol_logger=self._protocol_logger, transport=self._transport)
        return self._client

    def close(self) -> None:
        """Close the HTTP client."""
        if self._client is not None:
            self._client.close()
            self._client = None

    def _require_status(self, *allowed: FlowStatus) -> None:
        status = self.status
        if status not in allowed:
            expected = ", ".join(s.value for s in allowed)
            raise FlowStateError(f"Operation not allowed in state {status.value} (expected {expected})")

    def _fail(self, reason: str) -> None:
        logger.warning(f"Authentication attempt failed: {reason}")
        self.record.mark_failed(reason)

    def build_authorization_redirect(self) -> str:
        """Build the provider authorization URL for this attempt.

        Calling it again before the callback returns the same nonce and state.

        Returns:
            URL to redirect the user agent to.

        Raises:
            FlowStateError: If the attempt is past the redirect step.
            ProviderUnavailable: If discovery failed.
        """
        self._require_status(FlowStatus.UNSTARTED, FlowStatus.AWAITING_CALLBACK)

        metadata = self.metadata
        nonce = self.record.ensure_nonce()
        scopes = negotiate_scopes(metadata.scopes_supported, self.settings.scope_restriction)

        logger.info(f"Redirecting to {metadata.authorization_endpoint} with scopes {scopes}")
        return self.client.authorization_url(state=self.record.state or nonce, nonce=nonce, scopes=scopes)

    def build_end_session_redirect(self) -> str | None:
        """Build the provider logout URL.

        Returns:
            URL to redirect to, or None if the provider has no end-session endpoint.

        Raises:
            ProviderUnavailable: If discovery failed.
        """
        endpoint = self.metadata.end_session_endpoint
        if not endpoint:
            return None

        query: dict[str, str] = {}
        if self.record.session_state:
            query["session_state"] = self.record.session_state
        query["post_logout_redirect_uri"] = self.routes.post_logout_url()
        if self.record.id_token:
            query["id_token_hint"] = self.record.id_token

        separator = "&" if "?" in endpoint else "?"
        return f"{endpoint}{separator}{urlencode(query)}"

    def receive_callback(
        self,
        code: str | None,
        session_state: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> None:
        """Record the provider's callback.

        Args:
            code: Authorization code.
            session_state: Provider session correlation value.
            state: State parameter returned by the provider.
            error: Error code returned instead of a code.
            error_description: Error description.

        Raises:
            FlowStateError: If the attempt is not awaiting a callback.
            VerificationError: If the returned state is missing or does not match.
            AuthorizationResponseError: If the provider returned an error or no code.
        """
        if not self.record.is_started:
            # Nothing to correlate the callback with
            self.record.update(code, session_state)
            raise FlowStateError("Callback received but no authentication attempt is in progress")

        self._require_status(FlowStatus.AWAITING_CALLBACK)

        if not state or state != self.record.state:
            self._fail("state_mismatch")
            raise VerificationError("state", "returned state is missing or does not match the authorization request")

        if error:
            self._fail(error)
            raise AuthorizationResponseError(error, error_description)

        if not code:
            self._fail("missing_code")
            raise AuthorizationResponseError("missing_code", "No authorization code received")

        self.record.update(code, session_state)
        logger.info("Authorization code received")

    def _apply_token_response(self, token_response: TokenResponse, keep_previous: bool) -> None:
        id_token = token_response.id_token
        refresh_token = token_response.refresh_token
        if keep_previous:
            id_token = id_token or self.record.id_token
            refresh_token = refresh_token or self.record.refresh_token
        self.record.store_tokens(
            access_token=token_response.access_token,
            refresh_token=refresh_token,
            id_token=id_token,
        )

    def exchange_code(self) -> None:
        """Exchange the authorization code for tokens.

        Raises:
            FlowStateError: If no code is waiting to be exchanged.
            TokenExchangeError: If the provider rejected the exchange.
            ProviderUnavailable: If discovery failed.
        """
        self._require_status(FlowStatus.AWAITING_TOKEN_EXCHANGE)

        token_response = self.client.exchange_code(self.record.code or "")
        if not token_response.is_success:
            self._fail(token_response.error or "token_error")
            raise TokenExchangeError(token_response.error or "token_error", token_response.error_description)
        if not token_response.id_token:
            self._fail("missing_id_token")
            raise TokenExchangeError("missing_id_token", "Token response did not include an ID token")

        self._apply_token_response(token_response, keep_previous=False)
        logger.info("Authorization code exchanged for tokens")

    def refresh(self) -> VerifiedClaims:
        """Obtain a new token set with the stored refresh token.

        The new token set is verified before it is stored. If the provider
        rejects the refresh, the previous token set is kept unchanged and the
        attempt stays COMPLETE; the caller decides whether to log the user
        out. If the new token set fails verification, nothing is stored and
        the attempt fails.

        Returns:
            The verified claims of the new token set.

        Raises:
            FlowStateError: If the attempt is not complete.
            MissingTokenError: If no refresh token is stored, or the new set lacks a token.
            TokenExchangeError: If the provider rejected the refresh.
            VerificationError: If the new token set fails verification.
            ProviderUnavailable: If discovery failed.
        """
        self._require_status(FlowStatus.COMPLETE)
        if not self.record.refresh_token:
            raise MissingTokenError("refresh")

        token_response = self.client.refresh(self.record.refresh_token)
        if not token_response.is_success:
            logger.warning(f"Token refresh failed: {token_response.error}")
            raise TokenExchangeError(token_response.error or "token_error", token_response.error_description)

        claims = self._verify_tokens(
            token_response.id_token or self.record.id_token,
            token_response.access_token,
        )
        self._apply_token_response(token_response, keep_previous=True)
        self._update_engine(claims)
        logger.info("Token set refreshed")
        return claims

    def verifier(self) -> TokenVerifier:
        """Token verifier bound to the provider's keys and this client.

        Tokens must carry the issuer the discovery document announced, which
        matches the configured issuer up to a trailing slash.
        """
        metadata = self.metadata
        return TokenVerifier(
            metadata.jwks,
            issuer=metadata.issuer,
            client_id=self.settings.client_id,
            clock_skew_seconds=self.settings.clock_skew_seconds,
        )

    def verify(self) -> VerifiedClaims:
        """Verify the stored token set.

        A failed check fails the attempt.

        Raises:
            FlowStateError: If no token set is stored.
            VerificationError: If any check fails.
            MissingTokenError: If the access token is missing.
            ProviderUnavailable: If discovery failed.
        """
        self._require_status(FlowStatus.COMPLETE)
        claims = self._verify_tokens(self.record.id_token, self.record.access_token)
        self._update_engine(claims)
        return claims

    def _verify_tokens(self, id_token: str | None, access_token: str | None) -> VerifiedClaims:
        try:
            return self.verifier().verify_token_set(id_token, access_token, self.record.nonce)
        except VerificationError as e:
            self._fail(f"verification_failed:{e.check}")
            raise
        except MissingTokenError as e:
            self._fail(f"missing_token:{e.token_type}")
            raise

    def _update_engine(self, claims: VerifiedClaims) -> None:
        if self._engine is None:
            self._engine = AuthorizationDecisionEngine(
                claims,
                unique_id_claim=self.settings.unique_id_claim,
                admin_role=self.settings.realm_admin_role,
                access_roles=self.settings.access_roles,
            )
        else:
            self._engine.update(claims)

    @property
    def decision_engine(self) -> AuthorizationDecisionEngine:
        """Decision engine over the last verified token set.

        Raises:
            FlowStateError: If no token set has been verified in this request.
        """
        if self._engine is None or self.status is not FlowStatus.COMPLETE:
            raise FlowStateError("No verified token set")
        return self._engine

    def authenticate(
        self,
        code: str | None,
        session_state: str | None = None,
        state: str | None = None,
        error: str | None = None,
        error_description: str | None = None,
    ) -> AuthenticationResult:
        """Run callback, exchange, verification and decision in one step.

        Returns:
            AuthenticationResult with the identity and the access decision.
        """
        self.receive_callback(code, session_state, state=state, error=error, error_description=error_description)
        self.exchange_code()
        self.verify()
        engine = self.decision_engine
        identity = engine.identity_attributes()
        authorized = engine.is_authorized()
        logger.info(f"User {identity.login!r} authenticated (authorized={authorized}, admin={identity.administrator})")
        return AuthenticationResult(identity=identity, authorized=authorized)

    def restart(self) -> None:
        """Discard the attempt so a new one can begin."""
        self.record.destroy()
        self._engine = None
        logger.info("Authentication attempt discarded")
