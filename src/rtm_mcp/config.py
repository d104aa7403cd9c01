from __future__ import annotations

import os
from pathlib import Path

from dotenv import dotenv_values, load_dotenv
from pydantic import BaseModel

from .errors import ConfigError

CONFIG_DIR = Path.home() / ".config" / "rtm-mcp"
DEFAULT_CONFIG_PATH = CONFIG_DIR / "config"
DEFAULT_TOKEN_PATH = CONFIG_DIR / "auth_token"
DEFAULT_PORT = 8733


class Settings(BaseModel):
    api_key: str
    shared_secret: str
    auth_token: str | None = None
    mcp_auth_token: str | None = None
    team_domain: str | None = None
    log_level: str = "INFO"
    config_path: Path = DEFAULT_CONFIG_PATH
    token_file: Path = DEFAULT_TOKEN_PATH


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def config_path() -> Path:
    return Path(os.getenv("RTM_MCP_CONFIG") or DEFAULT_CONFIG_PATH).expanduser()


def token_path() -> Path:
    return Path(os.getenv("RTM_AUTH_TOKEN_FILE") or DEFAULT_TOKEN_PATH).expanduser()


def read_config_file(path: Path) -> dict[str, str]:
    if not path.is_file():
        return {}
    try:
        values = dotenv_values(path)
    except OSError as exc:
        raise ConfigError(f"Could not read config file {path}: {exc}") from exc
    return {key: value for key, value in values.items() if value}


def read_auth_token(path: Path) -> str | None:
    if not path.is_file():
        return None
    try:
        token = path.read_text().strip()
    except OSError as exc:
        raise ConfigError(f"Could not read auth token file {path}: {exc}") from exc
    return token or None


def save_auth_token(path: Path, token: str) -> Path:
    ensure_dir(path.parent)
    path.write_text(token + "\n")
    path.chmod(0o600)
    return path


def _first(*values: str | None) -> str | None:
    for value in values:
        if value:
            return value
    return None


def load_settings(api_key: str | None = None, shared_secret: str | None = None) -> Settings:
    """Resolve settings from arguments, then the environment, then the config file.

    The RTM auth token additionally falls back to the token file written by
    ``rtm-mcp auth``.
    """
    load_dotenv()
    path = config_path()
    file_values = read_config_file(path)
    tokens = token_path()

    resolved_key = _first(api_key, os.getenv("RTM_API_KEY"), file_values.get("RTM_API_KEY"))
    resolved_secret = _first(
        shared_secret, os.getenv("RTM_SHARED_SECRET"), file_values.get("RTM_SHARED_SECRET")
    )
    missing = [
        name
        for name, value in (("RTM_API_KEY", resolved_key), ("RTM_SHARED_SECRET", resolved_secret))
        if not value
    ]
    if missing:
        raise ConfigError(
            f"{' and '.join(missing)} required: pass them as arguments, set them in the "
            f"environment, or add them to {path}."
        )

    auth_token = _first(os.getenv("RTM_AUTH_TOKEN"), file_values.get("RTM_AUTH_TOKEN"))
    if not auth_token:
        auth_token = read_auth_token(tokens)

    return Settings(
        api_key=resolved_key,
        shared_secret=resolved_secret,
        auth_token=auth_token,
        mcp_auth_token=_first(os.getenv("RTM_MCP_AUTH_TOKEN"), file_values.get("RTM_MCP_AUTH_TOKEN")),
        team_domain=_first(os.getenv("CF_ACCESS_TEAM_DOMAIN"), file_values.get("CF_ACCESS_TEAM_DOMAIN")),
        log_level=(_first(os.getenv("RTM_MCP_LOG_LEVEL"), file_values.get("RTM_MCP_LOG_LEVEL")) or "INFO").upper(),
        config_path=path,
        token_file=tokens,
    )
