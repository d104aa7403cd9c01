from __future__ import annotations

import json
import logging
from enum import Enum

import typer
import uvicorn
from rich.console import Console
from rich.logging import RichHandler

from .config import DEFAULT_PORT, Settings, load_settings, save_auth_token
from .errors import ConfigError
from .http_app import create_app
from .protocol import ProtocolSession
from .ratelimit import RateLimiter
from .rtm_client import RTMClient, failure_message
from .session import Session
from .stdio import serve_stdio
from .tools import RtmTools, build_tools

app = typer.Typer(help="Remember The Milk MCP server")
console = Console()
err_console = Console(stderr=True)

logger = logging.getLogger(__name__)


class Transport(str, Enum):
    stdio = "stdio"
    http = "http"


def _configure_logging(level: str) -> None:
    logging.basicConfig(
        level=level.upper(),
        format="%(message)s",
        datefmt="[%X]",
        handlers=[RichHandler(console=err_console, rich_tracebacks=True, show_path=False)],
        force=True,
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)


def _settings(api_key: str | None, shared_secret: str | None) -> Settings:
    try:
        return load_settings(api_key, shared_secret)
    except ConfigError as exc:
        raise typer.BadParameter(str(exc)) from exc


def build_client(settings: Settings, auth_token: str | None = None) -> RTMClient:
    session = Session(auth_token=auth_token if auth_token is not None else settings.auth_token)
    return RTMClient(settings.api_key, settings.shared_secret, session=session, rate_limiter=RateLimiter())


def build_server(client: RTMClient, settings: Settings) -> ProtocolSession:
    registry = build_tools(RtmTools(client))
    return ProtocolSession(registry, team_domain=settings.team_domain)


@app.command()
def serve(
    api_key: str | None = typer.Argument(None, help="RTM API key"),
    shared_secret: str | None = typer.Argument(None, help="RTM shared secret"),
    transport: Transport = typer.Option(Transport.stdio, "--transport", "-t", help="stdio or http"),
    host: str = typer.Option("0.0.0.0", "--host", help="Bind address for the HTTP transport"),
    port: int = typer.Option(DEFAULT_PORT, "--port", help="Port for the HTTP transport"),
    log_level: str | None = typer.Option(None, "--log-level", help="Overrides RTM_MCP_LOG_LEVEL"),
) -> None:
    """Run the MCP server."""
    settings = _settings(api_key, shared_secret)
    _configure_logging(log_level or settings.log_level)
    if not settings.auth_token:
        err_console.print(
            "[yellow]No RTM auth token found. Run `rtm-mcp auth` first; authenticated tools will fail.[/yellow]"
        )

    client = build_client(settings)
    try:
        server = build_server(client, settings)
        if transport is Transport.http:
            if not settings.mcp_auth_token:
                logger.warning("RTM_MCP_AUTH_TOKEN is not set; the HTTP endpoint accepts unauthenticated requests")
            http_app = create_app(server, auth_token=settings.mcp_auth_token, team_domain=settings.team_domain)
            logger.info("RTM MCP server listening on http://%s:%s/mcp", host, port)
            uvicorn.run(http_app, host=host, port=port, log_level=(log_level or settings.log_level).lower())
        else:
            serve_stdio(server)
    finally:
        client.close()


@app.command()
def auth(
    api_key: str | None = typer.Argument(None, help="RTM API key"),
    shared_secret: str | None = typer.Argument(None, help="RTM shared secret"),
) -> None:
    """Authorize this server with Remember The Milk and save the auth token."""
    settings = _settings(api_key, shared_secret)
    client = build_client(settings, auth_token="")
    try:
        result = client.call("rtm.auth.getFrob")
        error = failure_message(result)
        if error:
            raise typer.BadParameter(f"Could not get a frob: {error}")
        frob = result.rsp.get("frob")
        if not frob:
            raise typer.BadParameter("RTM returned no frob.")

        console.print("Open this URL and authorize the application:")
        console.print(client.auth_url(frob), soft_wrap=True)
        typer.prompt("Press Enter once you have authorized", default="", show_default=False)

        result = client.call("rtm.auth.getToken", {"frob": frob})
        error = failure_message(result)
        if error:
            raise typer.BadParameter(f"Could not get an auth token: {error}")
        token_info = result.rsp.get("auth") or {}
        token = token_info.get("token")
        if not token:
            raise typer.BadParameter("RTM returned no auth token.")
        path = save_auth_token(settings.token_file, token)
        user = token_info.get("user") or {}
        console.print(f"Auth token saved to: {path}")

        client.session.auth_token = token
        result = client.call("rtm.test.login")
        error = failure_message(result)
        if error:
            raise typer.BadParameter(f"Token saved but login check failed: {error}")
        console.print(f"Authorized as: {user.get('username') or result.rsp.get('user', {}).get('username')}")
    finally:
        client.close()


@app.command()
def check(
    api_key: str | None = typer.Argument(None, help="RTM API key"),
    shared_secret: str | None = typer.Argument(None, help="RTM shared secret"),
) -> None:
    """Check the API key and the saved auth token."""
    settings = _settings(api_key, shared_secret)
    client = build_client(settings)
    try:
        result = client.call("rtm.test.echo", {"test": "hello"})
        error = failure_message(result)
        if error:
            raise typer.BadParameter(f"rtm.test.echo failed: {error}")
        console.print(f"Echo: {json.dumps(result.rsp, ensure_ascii=False)}")

        if not settings.auth_token:
            console.print("No auth token configured. Run `rtm-mcp auth`.")
            raise typer.Exit(code=1)
        result = client.call("rtm.test.login")
        error = failure_message(result)
        if error:
            raise typer.BadParameter(f"rtm.test.login failed: {error}")
        console.print(f"Logged in as: {result.rsp.get('user', {}).get('username')}")
    finally:
        client.close()


if __name__ == "__main__":
    app()
