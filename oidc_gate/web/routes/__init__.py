"""Web routes for oidc-gate."""

from __future__ import annotations

from typing import Any

from flask import Blueprint, Flask, session

main_bp = Blueprint("main", __name__)


@main_bp.route("/")
def index() -> dict[str, Any]:
    """Show who is logged in."""
    from oidc_gate.web.routes.oidc import USER_SESSION_KEY

    return {"user": session.get(USER_SESSION_KEY)}


@main_bp.route("/health")
def health() -> dict[str, str]:
    """Health check endpoint (unauthenticated)."""
    return {"status": "healthy"}


def init_app(app: Flask) -> None:
    """Register blueprints with the Flask app."""
    from oidc_gate.web.routes.oidc import oidc_bp

    app.register_blueprint(main_bp)
    app.register_blueprint(oidc_bp)
