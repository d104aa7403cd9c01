from __future__ import annotations

import json
import logging
import secrets
from datetime import datetime, timezone
from typing import Any

from fastapi import FastAPI, Request, Security, status
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from .errors import INVALID_REQUEST, PARSE_ERROR
from .protocol import SERVER_VERSION, ProtocolSession, auth_discovery, rpc_error

logger = logging.getLogger(__name__)

MCP_PATH = "/mcp"
LEGACY_MCP_PATH = "/sse"
UNAUTHENTICATED_METHODS = {"initialize", "notifications/initialized"}
CF_ACCESS_HEADER = "Cf-Access-Jwt-Assertion"
WWW_AUTHENTICATE = 'Bearer realm="RTM MCP Server"'

bearer = HTTPBearer(auto_error=False)


def _auth_failure(
    request: Request,
    credentials: HTTPAuthorizationCredentials | None,
    expected_token: str | None,
) -> str | None:
    """Reason the request is not authenticated, or ``None`` when it is."""
    if not expected_token:
        return None
    if request.headers.get(CF_ACCESS_HEADER):
        return None
    if credentials is None:
        return "Missing or invalid Authorization header. Expected Bearer token"
    if not secrets.compare_digest(credentials.credentials, expected_token):
        return "Invalid bearer token"
    return None


def create_app(
    session: ProtocolSession,
    auth_token: str | None = None,
    team_domain: str | None = None,
) -> FastAPI:
    app = FastAPI(title="RTM MCP Server", version=SERVER_VERSION)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    @app.get("/", response_class=PlainTextResponse)
    def root() -> str:
        auth = "Bearer token required" if auth_token else "No authentication configured"
        return f"RTM MCP Server\nPOST JSON-RPC requests to {MCP_PATH}\nAuthentication: {auth}\n"

    @app.get("/health")
    def health() -> dict[str, Any]:
        return {
            "status": "ok",
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "server": "RTM MCP Server",
        }

    @app.get("/mcp-discovery")
    def discovery() -> dict[str, Any]:
        document: dict[str, Any] = {"mcp_endpoint": MCP_PATH}
        auth = auth_discovery(team_domain)
        if auth:
            document["auth"] = auth
        return document

    async def handle_rpc(
        request: Request,
        credentials: HTTPAuthorizationCredentials | None = Security(bearer),
    ) -> Response:
        body = await request.body()
        try:
            message = json.loads(body)
        except ValueError:
            reply = session.handle_raw(body) or rpc_error(None, PARSE_ERROR, "Parse error")
            return JSONResponse(reply, status_code=status.HTTP_400_BAD_REQUEST)

        method = message.get("method") if isinstance(message, dict) else None
        if method not in UNAUTHENTICATED_METHODS:
            reason = _auth_failure(request, credentials, auth_token)
            if reason:
                logger.warning("Rejected %s: %s", method, reason)
                msg_id = message.get("id") if isinstance(message, dict) else None
                return JSONResponse(
                    rpc_error(msg_id, INVALID_REQUEST, reason),
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    headers={"WWW-Authenticate": WWW_AUTHENTICATE},
                )

        reply = await run_in_threadpool(session.handle, message)
        if reply is None:
            return Response(status_code=status.HTTP_202_ACCEPTED)
        return JSONResponse(reply)

    app.add_api_route(MCP_PATH, handle_rpc, methods=["POST"])
    app.add_api_route(LEGACY_MCP_PATH, handle_rpc, methods=["POST"])
    return app
