"""Relying-party configuration management.

Loads configuration from config.yaml files and environment variables.
Environment variables take precedence over config file settings.
"""

from __future__ import annotations

import csv
import logging
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import yaml

from oidc_gate.core.errors import ConfigurationError

logger = logging.getLogger(__name__)

# Default config locations
DEFAULT_CONFIG_DIR = Path.home() / ".oidc_gate"
DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.yaml"

# Environment variable prefix
ENV_PREFIX = "OIDC_GATE_"


def parse_role_list(value: str | None) -> frozenset[str]:
    """Parse a comma-separated role list into trimmed, lower-cased names.

    Quoted entries are honored, so a role name may itself contain a comma.
    """
    if not value or not value.strip():
        return frozenset()
    row = next(csv.reader([value], skipinitialspace=True), [])
    return frozenset(role.strip().lower() for role in row if role.strip())


@dataclass
class RelyingPartySettings:
    """OIDC client registration and authorization rules."""

    issuer_url: str = ""
    client_id: str = ""
    client_secret: str | None = None

    # Optional scope restriction (space separated); empty means no restriction
    scope: str = ""

    # ID token claim used as the stable external identifier
    unique_id_claim: str = "sub"

    # Role granting administrator rights
    realm_admin_role: str = ""

    # Comma-separated roles that grant access
    realm_access_roles: str = ""

    http_timeout: float = 10.0
    verify_ssl: bool = True
    clock_skew_seconds: int = 120

    @property
    def admin_role(self) -> str:
        """Admin role name, trimmed and lower-cased."""
        return self.realm_admin_role.strip().lower()

    @property
    def access_roles(self) -> frozenset[str]:
        """Parsed allow-list of role names."""
        return parse_role_list(self.realm_access_roles)

    @property
    def scope_restriction(self) -> list[str]:
        return self.scope.split()

    def validate(self) -> None:
        """Check that the settings can drive a login.

        Raises:
            ConfigurationError: If a required setting is missing.
        """
        missing = [name for name in ("issuer_url", "client_id") if not getattr(self, name)]
        if missing:
            raise ConfigurationError(f"Missing required settings: {', '.join(missing)}")
        if not self.access_roles:
            raise ConfigurationError("realm_access_roles is empty; no user could ever be authorized")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> RelyingPartySettings:
        """Create RelyingPartySettings from a dictionary."""
        return cls(
            issuer_url=data.get("issuer_url", ""),
            client_id=data.get("client_id", ""),
            client_secret=data.get("client_secret"),
            scope=data.get("scope") or "",
            unique_id_claim=data.get("unique_id_claim", "sub"),
            realm_admin_role=data.get("realm_admin_role") or "",
            realm_access_roles=data.get("realm_access_roles") or "",
            http_timeout=data.get("http_timeout", 10.0),
            verify_ssl=data.get("verify_ssl", True),
            clock_skew_seconds=data.get("clock_skew_seconds", 120),
        )

    def to_dict(self, include_secret: bool = True) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        secret = self.client_secret
        if secret and not include_secret:
            secret = "[REDACTED]"
        return {
            "issuer_url": self.issuer_url,
            "client_id": self.client_id,
            "client_secret": secret,
            "scope": self.scope,
            "unique_id_claim": self.unique_id_claim,
            "realm_admin_role": self.realm_admin_role,
            "realm_access_roles": self.realm_access_roles,
            "http_timeout": self.http_timeout,
            "verify_ssl": self.verify_ssl,
            "clock_skew_seconds": self.clock_skew_seconds,
        }


@dataclass
class LoggingSettings:
    """Protocol logging settings."""

    level: str = "INFO"
    trace_enabled: bool = False
    log_file: str | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> LoggingSettings:
        return cls(
            level=data.get("level", "INFO"),
            trace_enabled=data.get("trace_enabled", False),
            log_file=data.get("log_file"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "level": self.level,
            "trace_enabled": self.trace_enabled,
            "log_file": self.log_file,
        }


@dataclass
class AppConfig:
    """Main application configuration."""

    relying_party: RelyingPartySettings = field(default_factory=RelyingPartySettings)
    logging: LoggingSettings = field(default_factory=LoggingSettings)
    config_path: Path | None = None

    @classmethod
    def from_dict(cls, data: dict[str, Any], config_path: Path | None = None) -> AppConfig:
        """Create AppConfig from a dictionary."""
        return cls(
            relying_party=RelyingPartySettings.from_dict(data.get("relying_party") or {}),
            logging=LoggingSettings.from_dict(data.get("logging") or {}),
            config_path=config_path,
        )

    def to_dict(self, include_secret: bool = True) -> dict[str, Any]:
        """Convert to dictionary for serialization."""
        return {
            "relying_party": self.relying_party.to_dict(include_secret=include_secret),
            "logging": self.logging.to_dict(),
        }

    def save(self, path: Path | None = None) -> None:
        """Save configuration to a YAML file.

        Args:
            path: Path to save to. Uses config_path or default if not specified.
        """
        save_path = path or self.config_path or DEFAULT_CONFIG_FILE
        save_path.parent.mkdir(parents=True, exist_ok=True)

        with open(save_path, "w") as f:
            yaml.safe_dump(self.to_dict(), f, default_flow_style=False)


def _get_env_bool(key: str, default: bool) -> bool:
    """Get a boolean from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    return value.lower() in ("true", "1", "yes", "on")


def _get_env_number(key: str, default: float, cast: type = float) -> Any:
    """Get a number from environment variable."""
    value = os.environ.get(key)
    if value is None:
        return default
    try:
        return cast(value)
    except ValueError:
        logger.warning(f"Ignoring invalid value for {key}: {value!r}")
        return default


def load_config(config_path: Path | None = None) -> AppConfig:
    """Load application configuration.

    Configuration is loaded in this order (later values override earlier):
    1. Default values
    2. config.yaml file (if exists)
    3. Environment variables

    Args:
        config_path: Path to config file. Uses default if not specified.

    Returns:
        AppConfig with merged settings.

    Raises:
        ConfigurationError: If the config file exists but cannot be parsed.
    """
    config = AppConfig()

    file_path = config_path or DEFAULT_CONFIG_FILE
    if file_path.exists():
        try:
            with open(file_path) as f:
                data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigurationError(f"Invalid configuration file {file_path}: {e}") from e
        config = AppConfig.from_dict(data, config_path=file_path)

    rp = config.relying_party
    for name in (
        "issuer_url",
        "client_id",
        "client_secret",
        "scope",
        "unique_id_claim",
        "realm_admin_role",
        "realm_access_roles",
    ):
        env_key = f"{ENV_PREFIX}{name.upper()}"
        if os.environ.get(env_key) is not None:
            setattr(rp, name, os.environ[env_key])

    rp.http_timeout = _get_env_number(f"{ENV_PREFIX}HTTP_TIMEOUT", rp.http_timeout)
    rp.clock_skew_seconds = _get_env_number(f"{ENV_PREFIX}CLOCK_SKEW_SECONDS", rp.clock_skew_seconds, int)
    rp.verify_ssl = _get_env_bool(f"{ENV_PREFIX}VERIFY_SSL", rp.verify_ssl)

    if os.environ.get(f"{ENV_PREFIX}LOG_LEVEL"):
        config.logging.level = os.environ[f"{ENV_PREFIX}LOG_LEVEL"]
    config.logging.trace_enabled = _get_env_bool(f"{ENV_PREFIX}LOG_TRACE", config.logging.trace_enabled)

    return config


def get_default_config_yaml() -> str:
    """Get the default config.yaml content as a string."""
    return """\
# oidc-gate configuration file
# Environment variables override these settings (prefix: OIDC_GATE_)

relying_party:
  # Issuer URL; discovery is fetched from <issuer>/.well-known/openid-configuration
  issuer_url: "https://idp.example/realms/main"

  # Client registration
  client_id: "my-app"
  client_secret: ""

  # Optional space-separated scope restriction. Requested scopes are always
  # limited to openid, email, profile and address.
  scope: ""

  # ID token claim used as the stable user identifier
  unique_id_claim: "sub"

  # Role (from realm_access.roles of the access token) granting admin rights
  realm_admin_role: "admin"

  # Comma-separated roles allowed to log in. Must not be empty.
  realm_access_roles: "user,admin"

  # Seconds before provider requests time out
  http_timeout: 10.0
  verify_ssl: true

  # Leeway for token expiry checks
  clock_skew_seconds: 120

logging:
  # ERROR, INFO, DEBUG or TRACE
  level: "INFO"

  # TRACE logs tokens and secrets unredacted
  trace_enabled: false
"""
