from __future__ import annotations

PARSE_ERROR = -32700
INVALID_REQUEST = -32600
METHOD_NOT_FOUND = -32601
INVALID_PARAMS = -32602
INTERNAL_ERROR = -32603


class ConfigError(Exception):
    """Missing or unreadable startup configuration."""


class RegistryError(Exception):
    """Registered tool handlers do not match the tool catalog."""


class DispatchError(Exception):
    """A tool call that fails at the protocol level rather than in the tool."""

    def __init__(self, code: int, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
