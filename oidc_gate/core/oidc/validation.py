"""JWT verification for OIDC tokens.

ID tokens are checked, in order, for signature, issuer, audience, nonce
and expiry. Access tokens are checked for signature and expiry only; their
claims feed the authorization decision.
"""

from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any

import jwt
from jwt import PyJWK, PyJWKSet

from oidc_gate.core.errors import MissingTokenError, VerificationError

logger = logging.getLogger(__name__)

# Secure algorithms (asymmetric only - symmetric algs require shared secret)
_SECURE_ALGORITHMS = frozenset(
    {
        "RS256",
        "RS384",
        "RS512",  # RSA
        "ES256",
        "ES384",
        "ES512",  # ECDSA
        "PS256",
        "PS384",
        "PS512",  # RSA-PSS
        "EdDSA",  # Edwards-curve
    }
)


@dataclass(frozen=True)
class VerifiedClaims:
    """Claims of a token set that passed verification.

    Instances are only produced by TokenVerifier.verify_token_set.
    """

    id_token: str = field(repr=False)
    access_token: str = field(repr=False)
    id_claims: dict[str, Any] = field(default_factory=dict)
    access_claims: dict[str, Any] = field(default_factory=dict, repr=False)

    @property
    def cache_key(self) -> tuple[str, str]:
        """Key for values derived from this token set."""
        return (self.id_token, self.access_token)


class TokenVerifier:
    """Verifies tokens issued to this client against the provider's JWKS."""

    def __init__(
        self,
        keys: PyJWKSet,
        issuer: str,
        client_id: str,
        clock_skew_seconds: int = 120,
    ) -> None:
        """Initialize the verifier.

        Args:
            keys: Provider signing keys.
            issuer: Expected issuer (iss claim).
            client_id: Expected audience (aud claim).
            clock_skew_seconds: Allowed clock skew for expiry checks.
        """
        self.keys = keys
        self.issuer = issuer
        self.client_id = client_id
        self.clock_skew_seconds = clock_skew_seconds

    def verify(self, id_token: str | None, nonce: str | None) -> dict[str, Any]:
        """Verify an ID token and return its claims.

        Args:
            id_token: Raw ID token.
            nonce: Nonce stored for the current attempt.

        Returns:
            The verified claims.

        Raises:
            MissingTokenError: If the token is absent or empty.
            VerificationError: On the first failing check.
        """
        claims = self._decode(id_token, "id")

        iss = claims.get("iss")
        if iss != self.issuer:
            raise VerificationError("issuer", f"expected {self.issuer!r}, got {iss!r}")

        aud = claims.get("aud")
        audiences = aud if isinstance(aud, list) else [aud]
        if self.client_id not in audiences:
            raise VerificationError("audience", f"{self.client_id!r} not in {aud!r}")

        token_nonce = claims.get("nonce")
        if not nonce or not isinstance(token_nonce, str) or not secrets.compare_digest(token_nonce, nonce):
            raise VerificationError("nonce", "nonce does not match the authentication request")

        if "exp" not in claims:
            raise VerificationError("expiry", "ID token has no exp claim")
        self._check_expiry(claims)

        return claims

    def decode_access_token(self, access_token: str | None) -> dict[str, Any]:
        """Verify an access token's signature and expiry and return its claims.

        Raises:
            MissingTokenError: If the token is absent or empty.
            VerificationError: If the signature or expiry check fails.
        """
        claims = self._decode(access_token, "access")
        self._check_expiry(claims)
        return claims

    def verify_token_set(
        self,
        id_token: str | None,
        access_token: str | None,
        nonce: str | None,
    ) -> VerifiedClaims:
        """Verify an ID token and its access token together.

        Raises:
            MissingTokenError: If either token is absent.
            VerificationError: If any check fails.
        """
        id_claims = self.verify(id_token, nonce)
        access_claims = self.decode_access_token(access_token)
        logger.info(f"Verified token set for subject {id_claims.get('sub')!r}")
        return VerifiedClaims(
            id_token=id_token or "",
            access_token=access_token or "",
            id_claims=id_claims,
            access_claims=access_claims,
        )

    def _signing_key(self, kid: str | None) -> PyJWK:
        candidates = [k for k in self.keys.keys if getattr(k, "public_key_use", None) in (None, "sig")]
        if kid is not None:
            for key in candidates:
                if key.key_id == kid:
                    return key
            raise VerificationError("signature", f"no signing key with kid {kid!r} in JWKS")
        if len(candidates) == 1:
            return candidates[0]
        raise VerificationError("signature", "token has no kid and the JWKS holds several keys")

    def _decode(self, token: str | None, token_type: str) -> dict[str, Any]:
        """Check the signature and return the payload."""
        if not token:
            raise MissingTokenError(token_type)

        try:
            header = jwt.get_unverified_header(token)
        except jwt.DecodeError as e:
            raise VerificationError("signature", f"malformed {token_type} token: {e}") from e

        alg = header.get("alg", "")
        if alg not in _SECURE_ALGORITHMS:
            raise VerificationError("signature", f"algorithm {alg!r} is not accepted")

        signing_key = self._signing_key(header.get("kid"))

        try:
            # Claims are checked separately so failures name the right check
            claims: dict[str, Any] = jwt.decode(
                token,
                signing_key.key,
                algorithms=[alg],
                options={
                    "verify_exp": False,
                    "verify_nbf": False,
                    "verify_iat": False,
                    "verify_aud": False,
                    "verify_iss": False,
                },
            )
        except jwt.InvalidSignatureError as e:
            raise VerificationError("signature", f"{token_type} token signature is invalid") from e
        except jwt.InvalidTokenError as e:
            raise VerificationError("signature", f"could not verify {token_type} token: {e}") from e

        return claims

    def _check_expiry(self, claims: dict[str, Any]) -> None:
        exp = claims.get("exp")
        if exp is None:
            return
        if not isinstance(exp, int | float):
            raise VerificationError("expiry", f"exp claim is not numeric: {exp!r}")
        now = datetime.now(UTC).timestamp()
        if now > exp + self.clock_skew_seconds:
            expired_at = datetime.fromtimestamp(exp, tz=UTC).isoformat()
            raise VerificationError("expiry", f"token expired at {expired_at}")


def verify_id_token(
    token: str | None,
    keys: PyJWKSet,
    issuer: str,
    client_id: str,
    nonce: str | None,
    clock_skew_seconds: int = 120,
) -> dict[str, Any]:
    """Convenience function to verify an ID token.

    Args:
        token: Raw ID token.
        keys: Provider signing keys.
        issuer: Expected issuer (iss claim).
        client_id: Expected audience (aud claim).
        nonce: Expected nonce value.
        clock_skew_seconds: Allowed clock skew for expiry checks.

    Returns:
        The verified claims.
    """
    verifier = TokenVerifier(keys, issuer=issuer, client_id=client_id, clock_skew_seconds=clock_skew_seconds)
    return verifier.verify(token, nonce)
