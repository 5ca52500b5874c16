"""Settings discovery and loading for xibo-auth."""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from urllib.parse import urlparse

import keyring
from dotenv import load_dotenv

from .auth.errors import ConfigError

logger = logging.getLogger(__name__)

# Env file search paths in priority order
ENV_SEARCH_PATHS = [
    Path(".env"),
    Path.home() / ".xibo-auth" / ".env",
]

# Keyring entry holding the token passphrase
KEYRING_SERVICE = "xibo-auth"
KEYRING_USERNAME = "token-passphrase"

GRANT_TYPES = ("client_credentials", "password", "authorization_code")

REQUIRED_VARS = ("XIBO_API_URL", "XIBO_CLIENT_ID", "XIBO_CLIENT_SECRET")


@dataclass
class AuthSettings:
    """Connection and credential settings for one CMS."""

    api_url: str
    client_id: str
    client_secret: str
    username: str | None = None
    password: str | None = None
    grant_type: str = "client_credentials"
    token_dir: Path | None = None
    passphrase: str | None = None
    env_path: Path | None = None

    def __repr__(self) -> str:
        return (
            f"AuthSettings(api_url={self.api_url!r}, client_id={self.client_id!r}, "
            f"username={self.username!r}, grant_type={self.grant_type!r})"
        )


def find_env_file(explicit_path: Path | None = None) -> Path | None:
    """Find the .env file, checking project then user level."""
    if explicit_path:
        if explicit_path.exists():
            return explicit_path
        return None

    for path in ENV_SEARCH_PATHS:
        if path.exists():
            return path
    return None


def validate_settings(settings: AuthSettings) -> list[str]:
    """Check settings for obvious mistakes.

    Returns:
        One message per problem; empty if the settings look usable
    """
    problems: list[str] = []

    parsed = urlparse(settings.api_url or "")
    if parsed.scheme not in ("http", "https") or not parsed.netloc:
        problems.append(f"XIBO_API_URL is not a valid http(s) URL: {settings.api_url!r}")

    if len(settings.client_id or "") < 5:
        problems.append("XIBO_CLIENT_ID looks too short (expected at least 5 characters)")

    if len(settings.client_secret or "") < 10:
        problems.append("XIBO_CLIENT_SECRET looks too short (expected at least 10 characters)")

    if settings.grant_type not in GRANT_TYPES:
        problems.append(
            f"XIBO_GRANT_TYPE must be one of {', '.join(GRANT_TYPES)} (got {settings.grant_type!r})"
        )

    if settings.grant_type == "password" and not (settings.username and settings.password):
        problems.append("XIBO_GRANT_TYPE=password requires XIBO_USERNAME and XIBO_PASSWORD")

    return problems


def load_settings(env_path: Path | None = None) -> AuthSettings:
    """Load settings from the environment and an optional .env file.

    Variables already set in the environment take precedence over the file.

    Args:
        env_path: Explicit path to .env file (optional)

    Returns:
        Validated settings

    Raises:
        ConfigError: If required variables are missing or invalid
    """
    env_file = find_env_file(env_path)
    if env_file:
        load_dotenv(env_file)
        logger.debug(f"Loaded environment from {env_file}")
    elif env_path:
        raise ConfigError(f"Env file not found: {env_path}")

    missing = [name for name in REQUIRED_VARS if not os.environ.get(name)]
    if missing:
        raise ConfigError(
            f"Missing required configuration: {', '.join(missing)}\n\n"
            f"Set them in the environment or in one of:\n"
            + "\n".join(f"  {path}" for path in ENV_SEARCH_PATHS)
        )

    token_dir = os.environ.get("XIBO_TOKEN_DIR")
    settings = AuthSettings(
        api_url=os.environ["XIBO_API_URL"].rstrip("/"),
        client_id=os.environ["XIBO_CLIENT_ID"],
        client_secret=os.environ["XIBO_CLIENT_SECRET"],
        username=os.environ.get("XIBO_USERNAME") or None,
        password=os.environ.get("XIBO_PASSWORD") or None,
        grant_type=os.environ.get("XIBO_GRANT_TYPE") or "client_credentials",
        token_dir=Path(token_dir).expanduser() if token_dir else None,
        passphrase=os.environ.get("XIBO_TOKEN_PASSPHRASE") or None,
        env_path=env_file,
    )

    problems = validate_settings(settings)
    if problems:
        raise ConfigError("Invalid configuration:\n" + "\n".join(f"  - {p}" for p in problems))

    return settings


def resolve_passphrase(settings: AuthSettings) -> str:
    """Pick the passphrase that seals stored tokens.

    Order: XIBO_TOKEN_PASSPHRASE, then the OS keyring entry, then the
    client secret.
    """
    if settings.passphrase:
        return settings.passphrase

    try:
        stored = keyring.get_password(KEYRING_SERVICE, KEYRING_USERNAME)
    except Exception as e:
        logger.warning(
            f"Keyring not available: {type(e).__name__}: {e}. "
            f"Sealing tokens with the client secret instead."
        )
        stored = None

    if stored:
        logger.debug("Using token passphrase from keyring")
        return stored

    return settings.client_secret


def save_passphrase(passphrase: str) -> None:
    """Store the token passphrase in the OS keyring.

    Tokens sealed under a previous passphrase become unreadable.

    Raises:
        ConfigError: If the passphrase is empty or the keyring rejects it
    """
    if not passphrase:
        raise ConfigError("Passphrase must not be empty")
    try:
        keyring.set_password(KEYRING_SERVICE, KEYRING_USERNAME, passphrase)
    except Exception as e:
        raise ConfigError(f"Could not store passphrase in keyring: {e}") from e
    logger.info("Token passphrase stored in keyring")
