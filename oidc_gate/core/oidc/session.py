"""Session record persisted across the authorization code flow.

The flow spans at least two requests (the redirect to the provider and the
callback), so every mutation is written back to the host's session store
immediately.
"""

from __future__ import annotations

import logging
import secrets
from collections.abc import MutableMapping
from dataclasses import dataclass, field
from typing import Any

logger = logging.getLogger(__name__)

# Session store slot holding the record
SESSION_KEY = "oidc_session"

_FIELDS = (
    "state",
    "nonce",
    "code",
    "session_state",
    "id_token",
    "access_token",
    "refresh_token",
    "error",
)


def generate_nonce() -> str:
    """Generate a single-use nonce for an authentication attempt."""
    return secrets.token_urlsafe(32)


@dataclass
class SessionRecord:
    """Serializable state of one authentication attempt."""

    store: MutableMapping[str, Any] = field(repr=False)

    state: str | None = None
    nonce: str | None = None
    code: str | None = None
    session_state: str | None = None

    # Raw signed tokens
    id_token: str | None = field(default=None, repr=False)
    access_token: str | None = field(default=None, repr=False)
    refresh_token: str | None = field(default=None, repr=False)

    # Reason the attempt failed, if it did
    error: str | None = None

    @classmethod
    def restore(cls, store: MutableMapping[str, Any]) -> SessionRecord:
        """Rehydrate an in-flight attempt from the store, or start empty.

        Args:
            store: Host session store.

        Returns:
            SessionRecord bound to the store.
        """
        data = store.get(SESSION_KEY) or {}
        return cls(store=store, **{name: data.get(name) for name in _FIELDS})

    @property
    def is_started(self) -> bool:
        """Whether a nonce has been issued for this attempt."""
        return bool(self.nonce)

    @property
    def is_complete(self) -> bool:
        """Whether an ID token has been stored."""
        return bool(self.id_token)

    @property
    def is_failed(self) -> bool:
        """Whether the attempt has failed."""
        return self.error is not None

    def to_dict(self) -> dict[str, str | None]:
        """Convert to a flat attribute map for the session store."""
        return {name: getattr(self, name) for name in _FIELDS}

    def persist(self) -> None:
        """Write the full field set to the session store."""
        self.store[SESSION_KEY] = self.to_dict()

    def ensure_nonce(self) -> str:
        """Return the attempt's nonce, creating and persisting it once.

        The state parameter carries the same value.
        """
        if not self.nonce:
            self.nonce = generate_nonce()
            self.state = self.nonce
            self.persist()
            logger.debug("Generated nonce for new authentication attempt")
        return self.nonce

    def update(self, code: str | None, session_state: str | None) -> bool:
        """Record the callback payload.

        Args:
            code: Authorization code from the provider.
            session_state: Provider session correlation value.

        Returns:
            True if recorded, False if no flow had been started.
        """
        if not self.is_started:
            logger.warning("Ignoring callback payload: no authentication attempt in progress")
            return False

        self.code = code
        self.session_state = session_state
        self.persist()
        return True

    def store_tokens(
        self,
        access_token: str | None,
        refresh_token: str | None,
        id_token: str | None,
    ) -> None:
        """Store a token set and persist it."""
        self.access_token = access_token
        self.refresh_token = refresh_token
        self.id_token = id_token
        self.persist()

    def mark_failed(self, reason: str) -> None:
        """Record that the attempt failed."""
        self.error = reason
        self.persist()

    def destroy(self) -> None:
        """Remove all record state from the session store."""
        self.store.pop(SESSION_KEY, None)
        for name in _FIELDS:
            setattr(self, name, None)
