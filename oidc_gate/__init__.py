"""oidc-gate - OpenID Connect relying-party session core."""

__version__ = "0.1.0"
