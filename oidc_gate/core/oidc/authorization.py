"""Identity and access decisions derived from verified claims."""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import asdict, dataclass
from typing import Any

from oidc_gate.core.config import parse_role_list
from oidc_gate.core.oidc.validation import VerifiedClaims


@dataclass(frozen=True)
class IdentityAttributes:
    """Normalized user attributes handed to the host's user provisioning."""

    identifier: str | None
    login: str | None
    first_name: str | None
    last_name: str | None
    email: str | None
    administrator: bool

    def to_dict(self) -> dict[str, Any]:
        """Convert to a flat attribute map."""
        return asdict(self)


def extract_roles(access_claims: dict[str, Any]) -> frozenset[str]:
    """Read the lower-cased role set from ``realm_access.roles``."""
    realm_access = access_claims.get("realm_access")
    if not isinstance(realm_access, dict):
        return frozenset()
    roles = realm_access.get("roles")
    if not isinstance(roles, list):
        return frozenset()
    return frozenset(role.lower() for role in roles if isinstance(role, str))


class AuthorizationDecisionEngine:
    """Maps verified claims to an identity and an access decision.

    Derived values are memoized on the raw token strings, so storing a
    newly verified token set through update() invalidates them.
    """

    def __init__(
        self,
        claims: VerifiedClaims,
        unique_id_claim: str = "sub",
        admin_role: str = "",
        access_roles: str | frozenset[str] = "",
    ) -> None:
        """Initialize the engine.

        Args:
            claims: Verified token set.
            unique_id_claim: ID token claim used as the external identifier.
            admin_role: Role granting administrator rights.
            access_roles: Allow-list of roles, comma-separated or already parsed.
        """
        self._claims = claims
        self.unique_id_claim = unique_id_claim
        self.admin_role = admin_role.strip().lower()
        if isinstance(access_roles, str):
            access_roles = parse_role_list(access_roles)
        self.access_roles = frozenset(role.strip().lower() for role in access_roles)
        self._memo: dict[str, Any] = {}
        self._memo_key: tuple[str, str] | None = None

    @property
    def claims(self) -> VerifiedClaims:
        return self._claims

    def update(self, claims: VerifiedClaims) -> None:
        """Switch to a newly verified token set."""
        self._claims = claims

    def _memoized(self, name: str, compute: Callable[[], Any]) -> Any:
        if self._memo_key != self._claims.cache_key:
            self._memo.clear()
            self._memo_key = self._claims.cache_key
        if name not in self._memo:
            self._memo[name] = compute()
        return self._memo[name]

    def unique_identifier(self) -> str | None:
        """The configured claim of the ID token."""
        return self._memoized("identifier", lambda: self._claims.id_claims.get(self.unique_id_claim))

    def roles(self) -> frozenset[str]:
        """Lower-cased role set of the access token."""
        return self._memoized("roles", lambda: extract_roles(self._claims.access_claims))

    def is_administrator(self) -> bool:
        return bool(self.admin_role) and self.admin_role in self.roles()

    def identity_attributes(self) -> IdentityAttributes:
        """Build the identity handed to user provisioning."""
        claims = self._claims.id_claims
        return IdentityAttributes(
            identifier=self.unique_identifier(),
            login=claims.get("preferred_username"),
            first_name=claims.get("given_name"),
            last_name=claims.get("family_name"),
            email=claims.get("email"),
            administrator=self.is_administrator(),
        )

    def is_authorized(self) -> bool:
        """Whether any allowed role is held. An empty allow-list never authorizes."""
        return not self.access_roles.isdisjoint(self.roles())
