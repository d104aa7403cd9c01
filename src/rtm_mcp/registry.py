from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable

from .errors import INVALID_PARAMS, DispatchError, RegistryError

logger = logging.getLogger(__name__)

TOOL_ATTR = "__rtm_tool__"


@dataclass(frozen=True)
class ToolSpec:
    name: str
    description: str
    input_schema: dict[str, Any]
    handler: Callable[..., str]

    def describe(self) -> dict[str, Any]:
        return {"name": self.name, "description": self.description, "inputSchema": self.input_schema}


@dataclass(frozen=True)
class ToolMeta:
    name: str
    description: str
    properties: dict[str, dict[str, Any]]
    required: tuple[str, ...]


def tool(
    name: str,
    description: str,
    properties: dict[str, dict[str, Any]] | None = None,
    required: Iterable[str] = (),
) -> Callable[[Callable[..., str]], Callable[..., str]]:
    """Mark a handler method as the implementation of tool ``name``."""

    def decorator(func: Callable[..., str]) -> Callable[..., str]:
        setattr(func, TOOL_ATTR, ToolMeta(name, description, dict(properties or {}), tuple(required)))
        return func

    return decorator


def string_param(description: str, **extra: Any) -> dict[str, Any]:
    return {"type": "string", "description": description, **extra}


class ToolRegistry:
    def __init__(self, specs: Iterable[ToolSpec] = ()) -> None:
        self._tools: dict[str, ToolSpec] = {}
        for spec in specs:
            self.register(spec)

    def register(self, spec: ToolSpec) -> None:
        if spec.name in self._tools:
            raise RegistryError(f"Tool registered twice: {spec.name}")
        self._tools[spec.name] = spec

    def __contains__(self, name: str) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    @property
    def names(self) -> list[str]:
        return list(self._tools)

    def catalog(self) -> list[dict[str, Any]]:
        return [spec.describe() for spec in self._tools.values()]

    def validate(self, expected: Iterable[str]) -> None:
        expected_names = set(expected)
        missing = expected_names - set(self._tools)
        unexpected = set(self._tools) - expected_names
        if missing or unexpected:
            raise RegistryError(
                f"Tool catalog mismatch: missing={sorted(missing)} unexpected={sorted(unexpected)}"
            )

    def dispatch(self, name: Any, arguments: dict[str, Any] | None = None) -> str:
        """Run tool ``name`` and return its text result.

        Unknown tools raise :class:`DispatchError`. Handler failures are turned
        into an ``Error:`` text result so they stay in the tool-result channel.
        """
        spec = self._tools.get(name) if isinstance(name, str) else None
        if spec is None:
            raise DispatchError(INVALID_PARAMS, f"Unknown tool: {name}")
        if arguments is None:
            arguments = {}
        if not isinstance(arguments, dict):
            raise DispatchError(INVALID_PARAMS, "Tool arguments must be an object")
        properties = spec.input_schema.get("properties", {})
        kwargs = {key: value for key, value in arguments.items() if key in properties}
        ignored = set(arguments) - set(kwargs)
        if ignored:
            logger.debug("Ignoring undeclared arguments for %s: %s", name, sorted(ignored))
        logger.info("Tool call: %s", name)
        try:
            return spec.handler(**kwargs)
        except Exception as exc:  # noqa: BLE001
            logger.exception("Tool %s raised", name)
            return f"Error: {name} failed: {exc}"


def build_registry(handlers: object, expected: Iterable[str] | None = None) -> ToolRegistry:
    """Collect ``@tool`` methods from ``handlers`` and check them against ``expected``."""
    found: list[ToolSpec] = []
    for attr in dir(type(handlers)):
        func = getattr(type(handlers), attr, None)
        meta: ToolMeta | None = getattr(func, TOOL_ATTR, None)
        if meta is None:
            continue
        schema = {
            "type": "object",
            "properties": meta.properties,
            "required": list(meta.required),
        }
        found.append(ToolSpec(meta.name, meta.description, schema, getattr(handlers, attr)))

    if expected is None:
        return ToolRegistry(found)
    order = {name: index for index, name in enumerate(expected)}
    found.sort(key=lambda spec: order.get(spec.name, len(order)))
    registry = ToolRegistry(found)
    registry.validate(order)
    return registry
