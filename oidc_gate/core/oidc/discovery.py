"""Provider metadata discovery.

Fetches the OIDC well-known configuration and the signing-key set for an
issuer and caches the result per issuer.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, NoReturn, Protocol

import httpx
from jwt import PyJWKSet
from jwt.exceptions import PyJWKSetError

from oidc_gate.core.errors import ProviderUnavailable
from oidc_gate.core.logging import LoggingClient, ProtocolLogger

logger = logging.getLogger(__name__)

WELL_KNOWN_PATH = ".well-known/openid-configuration"


@dataclass(frozen=True)
class ProviderMetadata:
    """Endpoints and signing keys of an OIDC provider."""

    issuer: str
    authorization_endpoint: str
    token_endpoint: str
    jwks_uri: str
    jwks: PyJWKSet = field(repr=False, compare=False)
    userinfo_endpoint: str | None = None
    end_session_endpoint: str | None = None
    scopes_supported: tuple[str, ...] = ()
    raw_config: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)

    @classmethod
    def from_config(cls, config: dict[str, Any], jwks: dict[str, Any]) -> ProviderMetadata:
        """Build metadata from a discovery document and a JWKS document.

        Raises:
            ValueError: If a required endpoint is missing.
            PyJWKSetError: If the JWKS holds no usable keys.
        """
        for name in ("issuer", "authorization_endpoint", "token_endpoint", "jwks_uri"):
            if not config.get(name):
                raise ValueError(f"Discovery document is missing '{name}'")

        return cls(
            issuer=config["issuer"],
            authorization_endpoint=config["authorization_endpoint"],
            token_endpoint=config["token_endpoint"],
            jwks_uri=config["jwks_uri"],
            jwks=PyJWKSet.from_dict(jwks),
            userinfo_endpoint=config.get("userinfo_endpoint"),
            end_session_endpoint=config.get("end_session_endpoint"),
            scopes_supported=tuple(config.get("scopes_supported") or ()),
            raw_config=config,
        )


@dataclass(frozen=True)
class Unavailable:
    """Discovery failed; the provider cannot be used for now."""

    issuer: str
    error: str

    def raise_error(self) -> NoReturn:
        raise ProviderUnavailable(self.issuer, self.error)


class MetadataResolver(Protocol):
    """Anything that can resolve an issuer to its provider metadata."""

    def resolve(self, issuer_url: str) -> ProviderMetadata | Unavailable: ...


def discovery_url(issuer_url: str) -> str:
    """Build the well-known configuration URL for an issuer."""
    url = issuer_url.rstrip("/")
    if url.endswith(WELL_KNOWN_PATH):
        return url
    return f"{url}/{WELL_KNOWN_PATH}"


def require(resolver: MetadataResolver, issuer_url: str) -> ProviderMetadata:
    """Resolve an issuer or raise.

    Raises:
        ProviderUnavailable: If discovery failed.
    """
    result = resolver.resolve(issuer_url)
    if isinstance(result, Unavailable):
        result.raise_error()
    return result


class ProviderMetadataResolver:
    """Fetches and caches provider metadata per issuer.

    Only successful lookups are cached. The cache is safe to share between
    concurrent attempts: entries are written whole, so a race during first
    population fetches more than once and the last write wins.
    """

    def __init__(
        self,
        timeout: float = 10.0,
        verify_ssl: bool = True,
        protocol_logger: ProtocolLogger | None = None,
        transport: httpx.BaseTransport | None = None,
    ) -> None:
        """Initialize the resolver.

        Args:
            timeout: Request timeout in seconds.
            verify_ssl: Whether to verify TLS certificates.
            protocol_logger: Optional protocol logger for HTTP traffic capture.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        self.timeout = timeout
        self.verify_ssl = verify_ssl
        self._protocol_logger = protocol_logger
        self._transport = transport
        self._cache: dict[str, ProviderMetadata] = {}

    def resolve(self, issuer_url: str) -> ProviderMetadata | Unavailable:
        """Resolve an issuer URL to its metadata.

        Args:
            issuer_url: The configured issuer.

        Returns:
            ProviderMetadata, or Unavailable if the fetch failed.
        """
        cached = self._cache.get(issuer_url)
        if cached is not None:
            return cached

        result = self._fetch(issuer_url)
        if isinstance(result, ProviderMetadata):
            self._cache[issuer_url] = result
        else:
            logger.warning(f"OIDC discovery for {issuer_url} failed: {result.error}")
        return result

    def invalidate(self, issuer_url: str | None = None) -> None:
        """Drop cached metadata for one issuer, or for all of them."""
        if issuer_url is None:
            self._cache.clear()
        else:
            self._cache.pop(issuer_url, None)

    def _fetch(self, issuer_url: str) -> ProviderMetadata | Unavailable:
        url = discovery_url(issuer_url)
        try:
            logger.debug(f"Fetching OIDC discovery from {url}")
            with LoggingClient(
                protocol_logger=self._protocol_logger,
                timeout=self.timeout,
                verify=self.verify_ssl,
                transport=self._transport,
            ) as client:
                response = client.get(url)
                response.raise_for_status()
                config = response.json()
                if not isinstance(config, dict):
                    return Unavailable(issuer=issuer_url, error="Discovery document is not a JSON object")

                # Tokens are later checked against the announced issuer
                if str(config.get("issuer") or "").rstrip("/") != issuer_url.rstrip("/"):
                    return Unavailable(
                        issuer=issuer_url,
                        error=f"Issuer mismatch in discovery document: {config.get('issuer')!r}",
                    )
                if not config.get("jwks_uri"):
                    return Unavailable(issuer=issuer_url, error="Discovery document has no jwks_uri")

                jwks_response = client.get(config["jwks_uri"])
                jwks_response.raise_for_status()
                jwks = jwks_response.json()

            return ProviderMetadata.from_config(config, jwks)

        except httpx.TimeoutException:
            return Unavailable(issuer=issuer_url, error=f"Timeout fetching OIDC configuration from {url}")
        except httpx.HTTPStatusError as e:
            return Unavailable(
                issuer=issuer_url,
                error=f"HTTP {e.response.status_code} fetching {e.request.url}: {e.response.text[:200]}",
            )
        except httpx.RequestError as e:
            return Unavailable(issuer=issuer_url, error=f"Request error fetching OIDC configuration: {e}")
        except PyJWKSetError as e:
            return Unavailable(issuer=issuer_url, error=f"Unusable JWKS: {e}")
        except ValueError as e:  # JSON decode error or missing endpoint
            return Unavailable(issuer=issuer_url, error=f"Invalid OIDC configuration: {e}")
        except Exception as e:
            logger.exception(f"Unexpected error during OIDC discovery for {issuer_url}")
            return Unavailable(issuer=issuer_url, error=f"Unexpected error: {e}")


class StaticMetadataResolver:
    """Resolver returning fixed metadata, for tests and pinned deployments."""

    def __init__(self, *metadata: ProviderMetadata) -> None:
        self._metadata = {m.issuer.rstrip("/"): m for m in metadata}

    def resolve(self, issuer_url: str) -> ProviderMetadata | Unavailable:
        metadata = self._metadata.get(issuer_url.rstrip("/"))
        if metadata is None:
            return Unavailable(issuer=issuer_url, error="No static metadata for issuer")
        return metadata
