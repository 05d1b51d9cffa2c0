"""Tests for configuration loading."""

from pathlib import Path

import pytest
import yaml

from oidc_gate.core.config import (
    AppConfig,
    RelyingPartySettings,
    get_default_config_yaml,
    load_config,
    parse_role_list,
)
from oidc_gate.core.errors import ConfigurationError


@pytest.fixture(autouse=True)
def clean_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep OIDC_GATE_* variables from the host out of the tests."""
    import os

    for key in list(os.environ):
        if key.startswith("OIDC_GATE_"):
            monkeypatch.delenv(key)


class TestParseRoleList:
    """Tests for parse_role_list."""

    def test_trims_and_lower_cases(self) -> None:
        assert parse_role_list(" User , ADMIN,editor ") == {"user", "admin", "editor"}

    @pytest.mark.parametrize("value", [None, "", "   ", ",,"])
    def test_empty(self, value: str | None) -> None:
        assert parse_role_list(value) == frozenset()

    def test_quoted_entry(self) -> None:
        assert parse_role_list('user,"Ops, Tier 2"') == {"user", "ops, tier 2"}


class TestRelyingPartySettings:
    """Tests for RelyingPartySettings."""

    def test_validate_ok(self) -> None:
        RelyingPartySettings(issuer_url="https://idp.example", client_id="app", realm_access_roles="user").validate()

    def test_validate_missing(self) -> None:
        with pytest.raises(ConfigurationError, match="issuer_url, client_id"):
            RelyingPartySettings(realm_access_roles="user").validate()

    def test_validate_empty_allow_list(self) -> None:
        """An empty allow-list would lock everybody out."""
        with pytest.raises(ConfigurationError, match="realm_access_roles"):
            RelyingPartySettings(issuer_url="https://idp.example", client_id="app").validate()

    def test_derived_values(self) -> None:
        settings = RelyingPartySettings(realm_admin_role=" Admin ", realm_access_roles="a, B", scope="openid email")

        assert settings.admin_role == "admin"
        assert settings.access_roles == {"a", "b"}
        assert settings.scope_restriction == ["openid", "email"]

    def test_to_dict_redacts_secret(self) -> None:
        settings = RelyingPartySettings(client_secret="s3cret")

        assert settings.to_dict(include_secret=False)["client_secret"] == "[REDACTED]"
        assert settings.to_dict()["client_secret"] == "s3cret"


class TestLoadConfig:
    """Tests for load_config."""

    def test_defaults_without_file(self, tmp_path: Path) -> None:
        config = load_config(tmp_path / "missing.yaml")

        assert config.relying_party.unique_id_claim == "sub"
        assert config.relying_party.verify_ssl is True
        assert config.config_path is None

    def test_from_file(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(
            yaml.safe_dump(
                {
                    "relying_party": {
                        "issuer_url": "https://idp.example/realms/r1",
                        "client_id": "app1",
                        "realm_access_roles": "user,admin",
                        "clock_skew_seconds": 30,
                    },
                    "logging": {"level": "DEBUG"},
                }
            )
        )

        config = load_config(path)

        assert config.relying_party.issuer_url == "https://idp.example/realms/r1"
        assert config.relying_party.clock_skew_seconds == 30
        assert config.logging.level == "DEBUG"
        assert config.config_path == path

    def test_env_overrides_file(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(yaml.safe_dump({"relying_party": {"client_id": "from-file"}}))
        monkeypatch.setenv("OIDC_GATE_CLIENT_ID", "from-env")
        monkeypatch.setenv("OIDC_GATE_HTTP_TIMEOUT", "2.5")
        monkeypatch.setenv("OIDC_GATE_VERIFY_SSL", "false")
        monkeypatch.setenv("OIDC_GATE_LOG_TRACE", "yes")

        config = load_config(path)

        assert config.relying_party.client_id == "from-env"
        assert config.relying_party.http_timeout == 2.5
        assert config.relying_party.verify_ssl is False
        assert config.logging.trace_enabled is True

    def test_invalid_number_ignored(self, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
        monkeypatch.setenv("OIDC_GATE_CLOCK_SKEW_SECONDS", "soon")

        config = load_config(tmp_path / "missing.yaml")

        assert config.relying_party.clock_skew_seconds == 120

    def test_invalid_yaml(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text("relying_party: [unclosed")

        with pytest.raises(ConfigurationError):
            load_config(path)

    def test_save_and_reload(self, tmp_path: Path) -> None:
        path = tmp_path / "nested" / "config.yaml"
        config = AppConfig(relying_party=RelyingPartySettings(issuer_url="https://idp.example", client_id="app"))

        config.save(path)

        assert load_config(path).relying_party.client_id == "app"

    def test_default_yaml_is_loadable(self, tmp_path: Path) -> None:
        path = tmp_path / "config.yaml"
        path.write_text(get_default_config_yaml())

        config = load_config(path)

        config.relying_party.validate()
        assert config.relying_party.access_roles == {"user", "admin"}
