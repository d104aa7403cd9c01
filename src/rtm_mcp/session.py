from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable

logger = logging.getLogger(__name__)


@dataclass
class Session:
    """Per-process RTM state: the auth token, the shared timeline and list names.

    ``auth_token`` is fixed at startup. The timeline is minted at most once; a
    failed mint is remembered so later writes fail without minting again.
    """

    auth_token: str | None = None
    timeline: str | None = None
    timeline_error: str | None = None
    list_names: dict[str, str] = field(default_factory=dict)
    _timeline_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)
    _lists_lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def ensure_timeline(self, mint: Callable[[], tuple[str | None, str | None]]) -> str | None:
        """Return the timeline, calling ``mint`` only on the first request.

        ``mint`` returns ``(timeline, error)``.
        """
        with self._timeline_lock:
            if self.timeline or self.timeline_error:
                return self.timeline
            timeline, error = mint()
            if timeline:
                self.timeline = timeline
                logger.info("Created RTM timeline %s", timeline)
            else:
                self.timeline_error = error or "Timeline could not be created"
                logger.error("Timeline creation failed: %s", self.timeline_error)
            return self.timeline

    def list_name(self, list_id: str, refresh: Callable[[], dict[str, str] | None]) -> str | None:
        """Look up a list name, calling ``refresh`` when ``list_id`` is not cached yet."""
        with self._lists_lock:
            if list_id in self.list_names:
                return self.list_names[list_id]
            names = refresh()
            if names:
                self.list_names.update(names)
            return self.list_names.get(list_id)

    def remember_lists(self, names: dict[str, str]) -> None:
        with self._lists_lock:
            self.list_names.update(names)
