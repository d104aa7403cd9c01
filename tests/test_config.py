import pytest

from rtm_mcp.config import load_settings, read_auth_token, save_auth_token
from rtm_mcp.errors import ConfigError

ENV_VARS = (
    "RTM_API_KEY",
    "RTM_SHARED_SECRET",
    "RTM_AUTH_TOKEN",
    "RTM_MCP_AUTH_TOKEN",
    "CF_ACCESS_TEAM_DOMAIN",
    "RTM_MCP_LOG_LEVEL",
)


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch, tmp_path):
    for name in ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("RTM_MCP_CONFIG", str(tmp_path / "config"))
    monkeypatch.setenv("RTM_AUTH_TOKEN_FILE", str(tmp_path / "auth_token"))
    return tmp_path


def test_arguments_win_over_environment_and_file(monkeypatch, isolated_env):
    (isolated_env / "config").write_text("RTM_API_KEY=file-key\nRTM_SHARED_SECRET=file-secret\n")
    monkeypatch.setenv("RTM_API_KEY", "env-key")

    settings = load_settings("arg-key", None)

    assert settings.api_key == "arg-key"
    assert settings.shared_secret == "file-secret"


def test_environment_wins_over_file(monkeypatch, isolated_env):
    (isolated_env / "config").write_text("RTM_API_KEY=file-key\nRTM_SHARED_SECRET=file-secret\nRTM_AUTH_TOKEN=file-token\n")
    monkeypatch.setenv("RTM_API_KEY", "env-key")
    monkeypatch.setenv("RTM_AUTH_TOKEN", "env-token")

    settings = load_settings()

    assert settings.api_key == "env-key"
    assert settings.auth_token == "env-token"


def test_token_file_is_last_resort(isolated_env):
    save_auth_token(isolated_env / "auth_token", "saved-token")

    settings = load_settings("key", "secret")

    assert settings.auth_token == "saved-token"
    assert settings.token_file == isolated_env / "auth_token"


def test_missing_credentials_raise(isolated_env):
    with pytest.raises(ConfigError, match="RTM_API_KEY and RTM_SHARED_SECRET"):
        load_settings()


def test_optional_settings(monkeypatch, isolated_env):
    monkeypatch.setenv("RTM_MCP_AUTH_TOKEN", "bearer")
    monkeypatch.setenv("CF_ACCESS_TEAM_DOMAIN", "team.cloudflareaccess.com")
    monkeypatch.setenv("RTM_MCP_LOG_LEVEL", "debug")

    settings = load_settings("key", "secret")

    assert settings.mcp_auth_token == "bearer"
    assert settings.team_domain == "team.cloudflareaccess.com"
    assert settings.log_level == "DEBUG"
    assert settings.auth_token is None


def test_saved_token_round_trip(isolated_env):
    path = save_auth_token(isolated_env / "nested" / "auth_token", "abc")

    assert read_auth_token(path) == "abc"
    assert path.stat().st_mode & 0o777 == 0o600
    assert read_auth_token(isolated_env / "missing") is None
