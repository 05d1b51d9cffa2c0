"""OIDC relying-party session core."""

from oidc_gate.core.oidc.authorization import (
    AuthorizationDecisionEngine,
    IdentityAttributes,
    extract_roles,
)
from oidc_gate.core.oidc.client import (
    OIDCClient,
    OIDCClientConfig,
    TokenResponse,
)
from oidc_gate.core.oidc.discovery import (
    MetadataResolver,
    ProviderMetadata,
    ProviderMetadataResolver,
    StaticMetadataResolver,
    Unavailable,
    require,
)
from oidc_gate.core.oidc.flows import (
    AuthenticationResult,
    AuthorizationCodeFlow,
    FlowStatus,
    Routes,
    StaticRoutes,
    negotiate_scopes,
)
from oidc_gate.core.oidc.session import SESSION_KEY, SessionRecord
from oidc_gate.core.oidc.validation import (
    TokenVerifier,
    VerifiedClaims,
    verify_id_token,
)

__all__ = [
    # Authorization
    "AuthorizationDecisionEngine",
    "IdentityAttributes",
    "extract_roles",
    # Client
    "OIDCClient",
    "OIDCClientConfig",
    "TokenResponse",
    # Discovery
    "MetadataResolver",
    "ProviderMetadata",
    "ProviderMetadataResolver",
    "StaticMetadataResolver",
    "Unavailable",
    "require",
    # Flows
    "AuthenticationResult",
    "AuthorizationCodeFlow",
    "FlowStatus",
    "Routes",
    "StaticRoutes",
    "negotiate_scopes",
    # Session
    "SESSION_KEY",
    "SessionRecord",
    # Validation
    "TokenVerifier",
    "VerifiedClaims",
    "verify_id_token",
]
