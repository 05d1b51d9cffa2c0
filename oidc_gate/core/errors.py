"""Exceptions raised by the OIDC relying-party core."""

from __future__ import annotations


class OIDCError(Exception):
    """Base class for relying-party errors."""


class ConfigurationError(OIDCError):
    """Raised when required relying-party settings are missing or invalid."""


class ProviderUnavailable(OIDCError):
    """Raised when discovery metadata or the JWKS could not be fetched.

    Recoverable: the whole attempt may be retried later.
    """

    def __init__(self, issuer: str, reason: str) -> None:
        self.issuer = issuer
        self.reason = reason
        super().__init__(f"OIDC provider {issuer} is unavailable: {reason}")


class TokenExchangeError(OIDCError):
    """Raised when the token endpoint rejects a code or refresh-token grant."""

    def __init__(self, error: str, error_description: str | None = None) -> None:
        self.error = error
        self.error_description = error_description
        message = error if not error_description else f"{error}: {error_description}"
        super().__init__(message)


class VerificationError(OIDCError):
    """Raised when a token or callback fails a verification check.

    Always treated as a potential attack.
    """

    def __init__(self, check: str, message: str) -> None:
        self.check = check
        super().__init__(f"{check} check failed: {message}")


class MissingTokenError(OIDCError):
    """Raised when an absent or empty token is decoded."""

    def __init__(self, token_type: str) -> None:
        self.token_type = token_type
        super().__init__(f"No {token_type} token to decode")


class AuthorizationResponseError(OIDCError):
    """Raised when the provider returns an error to the callback."""

    def __init__(self, error: str, error_description: str | None = None) -> None:
        self.error = error
        self.error_description = error_description
        message = error if not error_description else f"{error}: {error_description}"
        super().__init__(message)


class FlowStateError(OIDCError):
    """Raised when a flow operation is invoked from the wrong state."""
