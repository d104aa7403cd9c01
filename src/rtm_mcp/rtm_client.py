from __future__ import annotations

import hashlib
import logging
from dataclasses import dataclass
from typing import Any, Mapping
from urllib.parse import urlencode

import httpx

from .ratelimit import RateLimiter
from .session import Session

logger = logging.getLogger(__name__)

BASE_URL = "https://api.rememberthemilk.com/services/rest/"
AUTH_URL = "https://www.rememberthemilk.com/services/auth/"

NO_AUTH_METHODS = {"rtm.test.echo"}

# Methods that modify data and must carry a timeline. Anything not listed here
# never triggers timeline creation.
WRITE_METHODS = frozenset(
    {
        "rtm.lists.add",
        "rtm.lists.archive",
        "rtm.lists.delete",
        "rtm.lists.setDefaultList",
        "rtm.lists.setName",
        "rtm.lists.unarchive",
        "rtm.tasks.add",
        "rtm.tasks.addTags",
        "rtm.tasks.complete",
        "rtm.tasks.delete",
        "rtm.tasks.movePriority",
        "rtm.tasks.moveTo",
        "rtm.tasks.notes.add",
        "rtm.tasks.notes.delete",
        "rtm.tasks.notes.edit",
        "rtm.tasks.postpone",
        "rtm.tasks.removeTags",
        "rtm.tasks.setDueDate",
        "rtm.tasks.setEstimate",
        "rtm.tasks.setLocation",
        "rtm.tasks.setName",
        "rtm.tasks.setParentTask",
        "rtm.tasks.setPriority",
        "rtm.tasks.setRecurrence",
        "rtm.tasks.setStartDate",
        "rtm.tasks.setTags",
        "rtm.tasks.setURL",
        "rtm.tasks.uncomplete",
    }
)


@dataclass
class RawResponse:
    payload: dict[str, Any]

    @property
    def rsp(self) -> dict[str, Any]:
        rsp = self.payload.get("rsp")
        return rsp if isinstance(rsp, dict) else {}

    @property
    def ok(self) -> bool:
        return self.rsp.get("stat") == "ok"

    @property
    def error_message(self) -> str:
        err = self.rsp.get("err")
        if isinstance(err, dict) and err.get("msg"):
            return str(err["msg"])
        return "Unknown error"


@dataclass
class Failure:
    message: str
    http_status: int | None = None


CallResult = RawResponse | Failure


def failure_message(result: CallResult) -> str | None:
    """Collapse both failure channels: ``None`` on success, else the message."""
    if isinstance(result, Failure):
        return result.message
    if not result.ok:
        return result.error_message
    return None


def requires_timeline(method: str) -> bool:
    return method in WRITE_METHODS


def requires_auth(method: str) -> bool:
    return not method.startswith("rtm.auth.") and method not in NO_AUTH_METHODS


def _stringify(value: Any) -> str:
    if isinstance(value, bool):
        return "1" if value else "0"
    return str(value)


def sign_params(shared_secret: str, params: Mapping[str, str]) -> str:
    """MD5 of the shared secret followed by every ``key + value`` pair sorted by key."""
    joined = "".join(f"{key}{params[key]}" for key in sorted(params) if key != "api_sig")
    return hashlib.md5(f"{shared_secret}{joined}".encode("utf-8")).hexdigest()


class RTMClient:
    def __init__(
        self,
        api_key: str,
        shared_secret: str,
        session: Session | None = None,
        rate_limiter: RateLimiter | None = None,
        base_url: str = BASE_URL,
        transport: httpx.BaseTransport | None = None,
        timeout: float = 30.0,
    ) -> None:
        self.api_key = api_key
        self.shared_secret = shared_secret
        self.session = session or Session()
        self.rate_limiter = rate_limiter or RateLimiter()
        self.base_url = base_url
        self.client = httpx.Client(timeout=timeout, transport=transport)

    def close(self) -> None:
        self.client.close()

    def call(self, method: str, params: Mapping[str, Any] | None = None) -> CallResult:
        """Sign and execute one RTM method, attaching a timeline for write methods."""
        query = self._base_params(method, params)
        if requires_timeline(method):
            timeline = self.session.ensure_timeline(self._mint_timeline)
            if not timeline:
                return Failure(f"No timeline available for {method}: {self.session.timeline_error}")
            query["timeline"] = timeline
        return self._execute(query)

    def _base_params(self, method: str, params: Mapping[str, Any] | None) -> dict[str, str]:
        query = {key: _stringify(value) for key, value in (params or {}).items() if value is not None}
        query["method"] = method
        query["api_key"] = self.api_key
        query["format"] = "json"
        if requires_auth(method) and self.session.auth_token:
            query["auth_token"] = self.session.auth_token
        return query

    def _mint_timeline(self) -> tuple[str | None, str | None]:
        result = self._execute(self._base_params("rtm.timelines.create", None))
        error = failure_message(result)
        if error:
            return None, error
        timeline = result.rsp.get("timeline")
        if not timeline:
            return None, "Timeline missing from response"
        return str(timeline), None

    def _execute(self, query: dict[str, str]) -> CallResult:
        query["api_sig"] = sign_params(self.shared_secret, query)
        self.rate_limiter.admit()
        method = query["method"]
        logger.debug("Calling %s", method)
        try:
            response = self.client.get(self.base_url, params=query)
        except httpx.HTTPError as exc:
            logger.warning("%s failed: %s", method, exc)
            return Failure(f"Request failed: {exc}")
        if response.status_code != 200:
            logger.warning("%s returned HTTP %s", method, response.status_code)
            return Failure(
                f"HTTP {response.status_code}: {response.reason_phrase}",
                http_status=response.status_code,
            )
        try:
            payload = response.json()
        except ValueError as exc:
            return Failure(f"Invalid JSON from RTM: {exc}", http_status=response.status_code)
        if not isinstance(payload, dict):
            return Failure("Unexpected response shape from RTM", http_status=response.status_code)
        return RawResponse(payload)

    def auth_url(self, frob: str, perms: str = "delete") -> str:
        params = {"api_key": self.api_key, "perms": perms, "frob": frob}
        params["api_sig"] = sign_params(self.shared_secret, params)
        return f"{AUTH_URL}?{urlencode(params)}"
