"""Tests for config module."""

from pathlib import Path
from unittest.mock import MagicMock

import pytest

from xibo_auth.auth.errors import ConfigError
from xibo_auth.config import (
    KEYRING_SERVICE,
    KEYRING_USERNAME,
    AuthSettings,
    find_env_file,
    load_settings,
    resolve_passphrase,
    save_passphrase,
    validate_settings,
)

VALID_ENV = {
    "XIBO_API_URL": "https://cms.example.com/",
    "XIBO_CLIENT_ID": "client-id",
    "XIBO_CLIENT_SECRET": "client-secret",
}


@pytest.fixture
def valid_env(clean_env, monkeypatch):
    for key, value in VALID_ENV.items():
        monkeypatch.setenv(key, value)


def _settings(**overrides) -> AuthSettings:
    values = {
        "api_url": "https://cms.example.com",
        "client_id": "client-id",
        "client_secret": "client-secret",
    }
    values.update(overrides)
    return AuthSettings(**values)


class TestFindEnvFile:
    """Tests for env file discovery."""

    def test_explicit_path(self, tmp_path: Path):
        """Test an existing explicit path is returned."""
        env_file = tmp_path / "custom.env"
        env_file.write_text("")
        assert find_env_file(env_file) == env_file

    def test_explicit_path_missing(self, tmp_path: Path):
        """Test a missing explicit path is not replaced by the search."""
        assert find_env_file(tmp_path / "missing.env") is None

    def test_project_env(self, clean_env, tmp_path: Path):
        """Test .env in the working directory is found."""
        (tmp_path / ".env").write_text("")
        assert find_env_file() == Path(".env")

    def test_none_found(self, clean_env):
        """Test None when no env file exists."""
        assert find_env_file() is None


class TestLoadSettings:
    """Tests for load_settings."""

    def test_from_environment(self, valid_env):
        """Test settings load from environment variables with defaults."""
        settings = load_settings()

        assert settings.api_url == "https://cms.example.com"
        assert settings.client_id == "client-id"
        assert settings.client_secret == "client-secret"
        assert settings.username is None
        assert settings.grant_type == "client_credentials"
        assert settings.token_dir is None
        assert settings.env_path is None

    def test_from_env_file(self, clean_env, tmp_path: Path):
        """Test settings load from .env in the working directory."""
        (tmp_path / ".env").write_text(
            "XIBO_API_URL=https://cms.example.com\n"
            "XIBO_CLIENT_ID=client-id\n"
            "XIBO_CLIENT_SECRET=client-secret\n"
            "XIBO_USERNAME=alice\n"
        )

        settings = load_settings()

        assert settings.username == "alice"
        assert settings.env_path == Path(".env")

    def test_environment_wins_over_file(self, valid_env, monkeypatch, tmp_path: Path):
        """Test variables already set are not overridden by the file."""
        (tmp_path / ".env").write_text("XIBO_CLIENT_ID=from-file\n")

        settings = load_settings()

        assert settings.client_id == "client-id"

    def test_missing_required(self, clean_env, monkeypatch):
        """Test missing required variables are all named."""
        monkeypatch.setenv("XIBO_API_URL", "https://cms.example.com")

        with pytest.raises(ConfigError) as exc_info:
            load_settings()

        assert "XIBO_CLIENT_ID" in str(exc_info.value)
        assert "XIBO_CLIENT_SECRET" in str(exc_info.value)

    def test_missing_explicit_env_file(self, valid_env, tmp_path: Path):
        """Test an explicit env file that does not exist is an error."""
        with pytest.raises(ConfigError, match="Env file not found"):
            load_settings(tmp_path / "missing.env")

    def test_invalid_url(self, valid_env, monkeypatch):
        """Test a non-http URL is rejected."""
        monkeypatch.setenv("XIBO_API_URL", "cms.example.com")

        with pytest.raises(ConfigError, match="XIBO_API_URL"):
            load_settings()

    def test_password_grant_needs_user(self, valid_env, monkeypatch):
        """Test the password grant requires a username and password."""
        monkeypatch.setenv("XIBO_GRANT_TYPE", "password")

        with pytest.raises(ConfigError, match="XIBO_USERNAME"):
            load_settings()

    def test_token_dir_expanded(self, valid_env, monkeypatch):
        """Test ~ in the token directory is expanded."""
        monkeypatch.setenv("XIBO_TOKEN_DIR", "~/tokens")

        settings = load_settings()

        assert settings.token_dir == Path.home() / "tokens"

    def test_repr_hides_secrets(self, valid_env, monkeypatch):
        """Test secrets never appear in the settings repr."""
        monkeypatch.setenv("XIBO_PASSWORD", "hunter22")
        monkeypatch.setenv("XIBO_TOKEN_PASSPHRASE", "phrase")

        text = repr(load_settings())

        assert "client-secret" not in text
        assert "hunter22" not in text
        assert "phrase" not in text


class TestValidateSettings:
    """Tests for validate_settings."""

    def test_valid(self):
        """Test sane settings have no problems."""
        assert validate_settings(_settings()) == []

    def test_short_client_credentials(self):
        """Test implausibly short client credentials are flagged."""
        problems = validate_settings(_settings(client_id="abc", client_secret="short"))

        assert len(problems) == 2

    def test_unknown_grant_type(self):
        """Test an unknown grant type is flagged."""
        problems = validate_settings(_settings(grant_type="implicit"))

        assert any("XIBO_GRANT_TYPE" in p for p in problems)


class TestPassphrase:
    """Tests for passphrase resolution and storage."""

    def test_explicit_passphrase_first(self, monkeypatch):
        """Test XIBO_TOKEN_PASSPHRASE wins without touching the keyring."""
        get_password = MagicMock(return_value="from-keyring")
        monkeypatch.setattr("xibo_auth.config.keyring.get_password", get_password)

        assert resolve_passphrase(_settings(passphrase="explicit")) == "explicit"
        get_password.assert_not_called()

    def test_keyring_second(self, monkeypatch):
        """Test the keyring entry is used when no passphrase is configured."""
        get_password = MagicMock(return_value="from-keyring")
        monkeypatch.setattr("xibo_auth.config.keyring.get_password", get_password)

        assert resolve_passphrase(_settings()) == "from-keyring"
        get_password.assert_called_once_with(KEYRING_SERVICE, KEYRING_USERNAME)

    def test_client_secret_last(self, monkeypatch):
        """Test the client secret is used when the keyring has no entry."""
        monkeypatch.setattr("xibo_auth.config.keyring.get_password", MagicMock(return_value=None))

        assert resolve_passphrase(_settings()) == "client-secret"

    def test_keyring_unavailable(self, monkeypatch):
        """Test a broken keyring falls back to the client secret."""
        monkeypatch.setattr(
            "xibo_auth.config.keyring.get_password",
            MagicMock(side_effect=RuntimeError("no backend")),
        )

        assert resolve_passphrase(_settings()) == "client-secret"

    def test_save_passphrase(self, monkeypatch):
        """Test the passphrase is written to the keyring."""
        set_password = MagicMock()
        monkeypatch.setattr("xibo_auth.config.keyring.set_password", set_password)

        save_passphrase("new-phrase")

        set_password.assert_called_once_with(KEYRING_SERVICE, KEYRING_USERNAME, "new-phrase")

    def test_save_empty_passphrase(self):
        """Test an empty passphrase is refused."""
        with pytest.raises(ConfigError):
            save_passphrase("")

    def test_save_keyring_failure(self, monkeypatch):
        """Test keyring errors surface as ConfigError."""
        monkeypatch.setattr(
            "xibo_auth.config.keyring.set_password",
            MagicMock(side_effect=RuntimeError("locked")),
        )

        with pytest.raises(ConfigError, match="locked"):
            save_passphrase("new-phrase")
