"""
Configuration for the advent calendar.

Settings are read from the process environment (optionally seeded from a
.env file via python-dotenv). Parsing is done from a plain mapping so that
tests can build settings without touching os.environ.
"""
import base64
import binascii
import os
from dataclasses import dataclass
from datetime import date
from pathlib import Path
from typing import List, Mapping, Optional, Tuple, Union

from dotenv import load_dotenv


GOOGLE_AUTH_SERVER_URL = "https://accounts.google.com/o/oauth2/auth"
GOOGLE_TOKEN_SERVER_URL = "https://oauth2.googleapis.com/token"
GOOGLE_PUBLIC_CERTS_URL = "https://www.googleapis.com/oauth2/v1/certs"

DEFAULT_PORT = 8080
DEFAULT_DB_URL = "sqlite:///calendar.db"
DEFAULT_EARLIEST_DATE = date(2024, 12, 1)


class ConfigError(ValueError):
    """Raised when the environment does not describe a usable configuration."""
    pass


@dataclass(frozen=True)
class GoogleOAuthSettings:
    """
    Google sign-in configuration.

    Endpoint overrides are None when the canonical Google endpoint should be
    used; the effective values are exposed through the *_endpoint properties.
    """
    client_id: str
    client_secret: str
    allowed_user_emails: Tuple[str, ...] = ()
    server_base_url: Optional[str] = None
    auth_server_url: Optional[str] = None
    token_server_url: Optional[str] = None
    public_certs_url: Optional[str] = None

    @property
    def authorization_endpoint(self) -> str:
        return self.auth_server_url or GOOGLE_AUTH_SERVER_URL

    @property
    def token_endpoint(self) -> str:
        return self.token_server_url or GOOGLE_TOKEN_SERVER_URL

    @property
    def certs_endpoint(self) -> str:
        return self.public_certs_url or GOOGLE_PUBLIC_CERTS_URL


@dataclass(frozen=True)
class NoAuth:
    """Development mode: every request runs as a fixed local user."""
    pass


AuthSettings = Union[GoogleOAuthSettings, NoAuth]


@dataclass(frozen=True)
class Settings:
    """Application settings."""
    token_hash_key: bytes
    auth: AuthSettings
    port: int = DEFAULT_PORT
    db_url: str = DEFAULT_DB_URL
    asset_dirs: Tuple[Path, ...] = ()
    hot_reloading: bool = False
    admin_emails: Tuple[str, ...] = ()
    earliest_date: date = DEFAULT_EARLIEST_DATE
    log_level: str = "INFO"
    log_format: str = "text"

    @classmethod
    def from_env(cls, env: Mapping[str, str]) -> "Settings":
        """
        Build settings from an environment mapping.

        Args:
            env: Mapping of environment variable names to values

        Returns:
            Settings instance

        Raises:
            ConfigError: If a required value is missing or malformed
        """
        return cls(
            token_hash_key=_token_hash_key(env),
            auth=_auth_settings(env),
            port=_int(env, "PORT", DEFAULT_PORT),
            db_url=env.get("DB_URL") or DEFAULT_DB_URL,
            asset_dirs=tuple(Path(p) for p in _list(env, "ASSET_DIRS")),
            hot_reloading=_bool(env, "HOT_RELOADING", False),
            admin_emails=tuple(_list(env, "ADMINS")),
            earliest_date=_date(env, "EARLIEST_DATE", DEFAULT_EARLIEST_DATE),
            log_level=env.get("LOG_LEVEL", "INFO"),
            log_format=env.get("LOG_FORMAT", "text"),
        )


def load_settings() -> Settings:
    """Load settings from the process environment (and .env, if present)."""
    load_dotenv()
    return Settings.from_env(os.environ)


def _auth_settings(env: Mapping[str, str]) -> AuthSettings:
    if not _bool(env, "ENABLE_AUTH", True):
        return NoAuth()
    return GoogleOAuthSettings(
        client_id=_required(env, "GOOGLE_OAUTH_CLIENT_ID"),
        client_secret=_required(env, "GOOGLE_OAUTH_CLIENT_SECRET"),
        allowed_user_emails=tuple(_list(env, "ALLOWED_USERS")),
        server_base_url=env.get("SERVER_BASE_URL") or None,
        auth_server_url=env.get("GOOGLE_OAUTH_AUTH_SERVER_URL") or None,
        token_server_url=env.get("GOOGLE_OAUTH_TOKEN_SERVER_URL") or None,
        public_certs_url=env.get("GOOGLE_OAUTH_PUBLIC_CERTS_URL") or None,
    )


def _token_hash_key(env: Mapping[str, str]) -> bytes:
    raw = _required(env, "TOKEN_HASH_KEY")
    try:
        key = base64.b64decode(raw, validate=True)
    except (binascii.Error, ValueError) as e:
        raise ConfigError("TOKEN_HASH_KEY must be base64 encoded") from e
    if not key:
        raise ConfigError("TOKEN_HASH_KEY must not be empty")
    return key


def _required(env: Mapping[str, str], name: str) -> str:
    value = env.get(name)
    if not value:
        raise ConfigError(f"{name} must be set")
    return value


def _list(env: Mapping[str, str], name: str) -> List[str]:
    return env.get(name, "").split()


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:
    value = env.get(name)
    if value is None or value == "":
        return default
    if value.lower() in ("true", "1", "yes"):
        return True
    if value.lower() in ("false", "0", "no"):
        return False
    raise ConfigError(f"{name} must be a boolean, got {value!r}")


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    value = env.get(name)
    if not value:
        return default
    try:
        return int(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {value!r}") from e


def _date(env: Mapping[str, str], name: str, default: date) -> date:
    value = env.get(name)
    if not value:
        return default
    try:
        return date.fromisoformat(value)
    except ValueError as e:
        raise ConfigError(f"{name} must be an ISO date, got {value!r}") from e
