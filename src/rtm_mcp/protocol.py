from __future__ import annotations

import json
import logging
import re
from typing import Any

from .errors import (
    INTERNAL_ERROR,
    INVALID_PARAMS,
    INVALID_REQUEST,
    METHOD_NOT_FOUND,
    PARSE_ERROR,
    DispatchError,
)
from .registry import ToolRegistry

logger = logging.getLogger(__name__)

SERVER_NAME = "rtm-mcp"
SERVER_VERSION = "0.1.0"
SUPPORTED_PROTOCOL_VERSIONS = ("2025-06-18", "2025-03-26", "2024-11-05")
NOTIFICATION_PREFIX = "notifications/"

_ID_RE = re.compile(r'"id"\s*:\s*("(?:[^"\\]|\\.)*"|-?\d+)')


def rpc_result(msg_id: Any, result: dict[str, Any]) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "result": result}


def rpc_error(msg_id: Any, code: int, message: str) -> dict[str, Any]:
    return {"jsonrpc": "2.0", "id": msg_id, "error": {"code": code, "message": message}}


def _nesting(raw: str, end: int) -> tuple[int, bool]:
    """Bracket depth at ``end`` and whether ``end`` falls inside a string."""
    depth = 0
    in_string = False
    escaped = False
    for char in raw[:end]:
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char in "{[":
            depth += 1
        elif char in "}]":
            depth -= 1
    return depth, in_string


def recover_id(raw: str) -> Any:
    """Best-effort top-level id from a request body that is not valid JSON."""
    for match in _ID_RE.finditer(raw):
        if _nesting(raw, match.start()) != (1, False):
            continue
        try:
            return json.loads(match.group(1))
        except ValueError:
            return None
    return None


def auth_discovery(team_domain: str | None) -> dict[str, Any] | None:
    if not team_domain:
        return None
    return {
        "type": "oauth2",
        "authorization_url": f"https://{team_domain}/cdn-cgi/access/authorize",
        "token_url": f"https://{team_domain}/cdn-cgi/access/token",
        "scopes": ["email"],
    }


class ProtocolSession:
    """Routes JSON-RPC messages to the tool registry.

    ``handle`` returns the response envelope, or ``None`` for messages that
    must not be answered (notifications and requests without an id).
    """

    def __init__(self, registry: ToolRegistry, team_domain: str | None = None) -> None:
        self.registry = registry
        self.team_domain = team_domain
        self.initialized = False

    def handle_raw(self, raw: str | bytes) -> dict[str, Any] | None:
        if isinstance(raw, bytes):
            raw = raw.decode("utf-8", errors="replace")
        try:
            message = json.loads(raw)
        except ValueError as exc:
            msg_id = recover_id(raw)
            if msg_id is None:
                logger.warning("Dropping unparseable request: %s", exc)
                return None
            logger.warning("Parse error for request %r: %s", msg_id, exc)
            return rpc_error(msg_id, PARSE_ERROR, "Parse error")
        return self.handle(message)

    def handle(self, message: Any) -> dict[str, Any] | None:
        if not isinstance(message, dict):
            return rpc_error(None, INVALID_REQUEST, "Invalid Request: expected a JSON object")
        has_id = message.get("id") is not None
        msg_id = message.get("id")
        method = message.get("method")

        if not isinstance(method, str):
            if has_id:
                return rpc_error(msg_id, INVALID_REQUEST, "Invalid Request: missing method")
            logger.debug("Ignoring message without method")
            return None

        if method.startswith(NOTIFICATION_PREFIX):
            self._notify(method)
            # a notification method sent with an id is a request and gets one reply
            return rpc_result(msg_id, {}) if has_id else None

        if not has_id:
            logger.debug("Ignoring %s sent without an id", method)
            return None

        params = message.get("params")
        if params is None:
            params = {}
        if not isinstance(params, dict):
            return rpc_error(msg_id, INVALID_PARAMS, "Invalid params: expected an object")

        try:
            return self._route(msg_id, method, params)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Internal error handling %s", method)
            return rpc_error(msg_id, INTERNAL_ERROR, f"Internal error: {exc}")

    def _notify(self, method: str) -> None:
        if method == "notifications/initialized":
            self.initialized = True
            logger.info("Client initialized")
        else:
            logger.debug("Notification %s acknowledged", method)

    def _route(self, msg_id: Any, method: str, params: dict[str, Any]) -> dict[str, Any]:
        if method == "initialize":
            return rpc_result(msg_id, self.initialize(params))
        if method == "ping":
            return rpc_result(msg_id, {})
        if method == "tools/list":
            return rpc_result(msg_id, {"tools": self.registry.catalog()})
        if method == "tools/call":
            try:
                text = self.registry.dispatch(params.get("name"), params.get("arguments"))
            except DispatchError as exc:
                return rpc_error(msg_id, exc.code, exc.message)
            return rpc_result(msg_id, {"content": [{"type": "text", "text": text}]})
        return rpc_error(msg_id, METHOD_NOT_FOUND, f"Method not found: {method}")

    def initialize(self, params: dict[str, Any]) -> dict[str, Any]:
        requested = params.get("protocolVersion")
        version = requested if requested in SUPPORTED_PROTOCOL_VERSIONS else SUPPORTED_PROTOCOL_VERSIONS[0]
        client = params.get("clientInfo")
        client_name = client.get("name") if isinstance(client, dict) else None
        logger.info("Initialize from %s (protocol %s)", client_name or "unknown client", version)
        result: dict[str, Any] = {
            "protocolVersion": version,
            "capabilities": {"tools": {"listChanged": False}},
            "serverInfo": {"name": SERVER_NAME, "version": SERVER_VERSION},
        }
        auth = auth_discovery(self.team_domain)
        if auth:
            result["auth"] = auth
        return result
