"""OIDC login routes.

Wires the relying-party core to Flask: the Flask session is the session
store, ``url_for`` produces the callback and post-logout URLs, and a
provisioning hook receives the identity of every authorized login.
"""

from __future__ import annotations

import logging
from collections.abc import Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from flask import Blueprint, current_app, redirect, request, session, url_for

from oidc_gate.core.errors import (
    AuthorizationResponseError,
    FlowStateError,
    MissingTokenError,
    ProviderUnavailable,
    TokenExchangeError,
    VerificationError,
)
from oidc_gate.core.oidc.flows import AuthorizationCodeFlow, FlowStatus
from oidc_gate.core.oidc.session import SessionRecord

if TYPE_CHECKING:
    import httpx
    from werkzeug.wrappers import Response as WerkzeugResponse

    from oidc_gate.core.config import RelyingPartySettings
    from oidc_gate.core.oidc.discovery import MetadataResolver

logger = logging.getLogger(__name__)

oidc_bp = Blueprint("oidc", __name__, url_prefix="/oidc")

# Key of the GateState in app.extensions
EXTENSION_KEY = "oidc_gate"

# Session key holding the logged-in identity
USER_SESSION_KEY = "oidc_user"

Provisioner = Callable[[dict[str, Any]], Any]


@dataclass
class GateState:
    """Per-application relying-party state shared by all requests."""

    settings: RelyingPartySettings
    resolver: MetadataResolver
    provisioner: Provisioner | None = None
    transport: httpx.BaseTransport | None = None


class FlaskRoutes:
    """Routes capability backed by url_for."""

    def callback_url(self) -> str:
        return url_for("oidc.callback", _external=True)

    def post_logout_url(self) -> str:
        # The provider sends the user agent back through the local logout
        return url_for("oidc.local_logout", _external=True)


def _logged_out_url() -> str:
    return current_app.config.get("OIDC_POST_LOGOUT_URL") or url_for("main.index", _external=True)


def get_gate() -> GateState:
    """Get the relying-party state of the current app."""
    return current_app.extensions[EXTENSION_KEY]


def get_flow() -> AuthorizationCodeFlow:
    """Build a flow driver over the current request's session."""
    gate = get_gate()
    return AuthorizationCodeFlow(
        record=SessionRecord.restore(session),
        resolver=gate.resolver,
        settings=gate.settings,
        routes=FlaskRoutes(),
        transport=gate.transport,
    )


def _error_response(error: str, description: str, status: int) -> tuple[dict[str, str], int]:
    return {"error": error, "error_description": description}, status


def _end_local_session(flow: AuthorizationCodeFlow) -> None:
    flow.restart()
    session.pop(USER_SESSION_KEY, None)


@oidc_bp.errorhandler(ProviderUnavailable)
def provider_unavailable(e: ProviderUnavailable) -> tuple[dict[str, str], int]:
    logger.error(f"Provider unavailable: {e.reason}")
    return _error_response("provider_unavailable", str(e), 503)


@oidc_bp.errorhandler(VerificationError)
def verification_failed(e: VerificationError) -> tuple[dict[str, str], int]:
    logger.warning(f"Rejected login: {e}")
    return _error_response(f"invalid_{e.check}", str(e), 401)


@oidc_bp.errorhandler(TokenExchangeError)
@oidc_bp.errorhandler(AuthorizationResponseError)
def provider_rejected(e: TokenExchangeError | AuthorizationResponseError) -> tuple[dict[str, str], int]:
    return _error_response(e.error, e.error_description or str(e), 401)


@oidc_bp.errorhandler(MissingTokenError)
def missing_token(e: MissingTokenError) -> tuple[dict[str, str], int]:
    return _error_response("missing_token", str(e), 401)


@oidc_bp.errorhandler(FlowStateError)
def wrong_state(e: FlowStateError) -> tuple[dict[str, str], int]:
    return _error_response("invalid_request", str(e), 400)


@oidc_bp.route("/login")
def login() -> WerkzeugResponse:
    """Start (or resume) an authentication attempt."""
    flow = get_flow()
    if flow.status not in (FlowStatus.UNSTARTED, FlowStatus.AWAITING_CALLBACK):
        flow.restart()
    return redirect(flow.build_authorization_redirect())


@oidc_bp.route("/callback")
def callback() -> WerkzeugResponse | tuple[dict[str, str], int]:
    """Handle the authorization callback from the provider."""
    flow = get_flow()
    try:
        result = flow.authenticate(
            code=request.args.get("code"),
            session_state=request.args.get("session_state"),
            state=request.args.get("state"),
            error=request.args.get("error"),
            error_description=request.args.get("error_description"),
        )
    finally:
        flow.close()

    if not result.authorized:
        logger.warning(f"User {result.identity.login!r} holds none of the allowed roles")
        _end_local_session(flow)
        return _error_response("access_denied", "You are not authorized to use this application", 403)

    attributes = result.identity.to_dict()
    session[USER_SESSION_KEY] = attributes

    gate = get_gate()
    if gate.provisioner is not None:
        gate.provisioner(attributes)

    return redirect(current_app.config.get("OIDC_LOGIN_REDIRECT_URL") or url_for("main.index"))


@oidc_bp.route("/refresh", methods=["POST"])
def refresh() -> dict[str, Any] | tuple[dict[str, str], int]:
    """Refresh the token set of the logged-in user.

    A refresh the provider rejects keeps the current tokens and answers 401.
    A new token set that fails verification, or whose roles no longer
    grant access, ends the local session.
    """
    flow = get_flow()
    try:
        flow.refresh()
    except (VerificationError, MissingTokenError):
        if flow.status is FlowStatus.FAILED:
            _end_local_session(flow)
        raise
    finally:
        flow.close()

    engine = flow.decision_engine
    if not engine.is_authorized():
        logger.warning(f"User {engine.identity_attributes().login!r} lost access on token refresh")
        _end_local_session(flow)
        return _error_response("access_denied", "You are no longer authorized to use this application", 403)

    attributes = engine.identity_attributes().to_dict()
    session[USER_SESSION_KEY] = attributes
    return {"status": "refreshed", "user": attributes}


@oidc_bp.route("/logout")
def logout() -> WerkzeugResponse:
    """Log out locally and at the provider."""
    flow = get_flow()
    try:
        end_session_url = flow.build_end_session_redirect()
    except ProviderUnavailable as e:
        logger.warning(f"Skipping provider logout: {e.reason}")
        end_session_url = None

    _end_local_session(flow)
    return redirect(end_session_url or _logged_out_url())


@oidc_bp.route("/local-logout")
def local_logout() -> WerkzeugResponse:
    """Log out of this application only."""
    _end_local_session(get_flow())
    return redirect(_logged_out_url())


@oidc_bp.route("/me")
def me() -> dict[str, Any] | tuple[dict[str, str], int]:
    """Identity of the logged-in user."""
    attributes = session.get(USER_SESSION_KEY)
    if not attributes:
        return _error_response("login_required", "Not logged in", 401)
    return {"user": attributes}
