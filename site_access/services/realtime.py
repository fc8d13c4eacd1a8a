from __future__ import annotations

import logging
import threading
from collections import defaultdict
from typing import Callable

from ..types import AccessChange

logger = logging.getLogger("site_access.realtime")

ChangeCallback = Callable[[AccessChange], None]


class ChangeFeed:
    """In-process publish/subscribe of session changes, keyed by site.

    Subscribing with ``site_id=None`` receives changes for every site.
    """

    def __init__(self) -> None:
        self._subscribers: dict[str | None, list[ChangeCallback]] = defaultdict(list)
        self._lock = threading.Lock()

    def on_change(self, site_id: str | None, callback: ChangeCallback) -> Callable[[], None]:
        with self._lock:
            self._subscribers[site_id].append(callback)

        def _unsubscribe() -> None:
            with self._lock:
                callbacks = self._subscribers.get(site_id, [])
                if callback in callbacks:
                    callbacks.remove(callback)
                if not callbacks:
                    self._subscribers.pop(site_id, None)

        return _unsubscribe

    def emit(self, change: AccessChange) -> None:
        with self._lock:
            targets = list(self._subscribers.get(change.site_id, [])) + list(self._subscribers.get(None, []))
        for callback in targets:
            try:
                callback(change)
            except Exception:
                logger.exception("Change subscriber failed for site %s", change.site_id)

    def subscriber_count(self, site_id: str | None = None) -> int:
        with self._lock:
            return len(self._subscribers.get(site_id, []))


change_feed = ChangeFeed()
