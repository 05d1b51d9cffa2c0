"""Flask application factory."""

from __future__ import annotations

import os
import secrets
from typing import TYPE_CHECKING

from flask import Flask

from oidc_gate.core.config import load_config
from oidc_gate.core.oidc.discovery import ProviderMetadataResolver

if TYPE_CHECKING:
    import httpx

    from oidc_gate.core.config import AppConfig
    from oidc_gate.core.oidc.discovery import MetadataResolver
    from oidc_gate.web.routes.oidc import Provisioner


def create_app(
    config: dict | None = None,
    app_config: AppConfig | None = None,
    resolver: MetadataResolver | None = None,
    provisioner: Provisioner | None = None,
    transport: httpx.BaseTransport | None = None,
) -> Flask:
    """Create and configure the Flask application.

    Args:
        config: Optional Flask configuration overriding defaults.
        app_config: Relying-party configuration. Loads from file/env if not provided.
        resolver: Provider metadata resolver. A caching network resolver if not provided.
        provisioner: Callback receiving the identity attributes of each authorized login.
        transport: Optional httpx transport for provider requests (tests use httpx.MockTransport).

    Returns:
        Configured Flask application instance.

    Raises:
        ConfigurationError: If the relying-party settings are incomplete.
    """
    app = Flask(__name__)

    app.config.from_mapping(
        SECRET_KEY=os.environ.get("OIDC_GATE_SECRET_KEY") or secrets.token_hex(32),
        SESSION_COOKIE_HTTPONLY=True,
        SESSION_COOKIE_SAMESITE="Lax",
    )

    if config:
        app.config.from_mapping(config)

    if app_config is None:
        app_config = load_config()

    settings = app_config.relying_party
    settings.validate()

    if resolver is None:
        resolver = ProviderMetadataResolver(
            timeout=settings.http_timeout,
            verify_ssl=settings.verify_ssl,
            transport=transport,
        )

    from oidc_gate.web.routes.oidc import EXTENSION_KEY, GateState

    app.extensions[EXTENSION_KEY] = GateState(
        settings=settings,
        resolver=resolver,
        provisioner=provisioner,
        transport=transport,
    )

    from oidc_gate.web import routes

    routes.init_app(app)

    return app
