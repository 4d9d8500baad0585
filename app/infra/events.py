from __future__ import annotations

import logging
from collections.abc import Callable
from typing import Protocol

logger = logging.getLogger(__name__)

USERS_VIEW_PATH = "/dashboard/admin/users"
DEPARTMENTS_VIEW_PATH = "/dashboard/admin/departments"
ORGANIZATIONS_VIEW_PATH = "/dashboard/admin/organizations"

InvalidationHandler = Callable[[str], None]


class ViewInvalidator(Protocol):
    def invalidate(self, path: str) -> None: ...


class ViewInvalidationBus:
    """Fans a "this collection changed" signal out to cached-view owners.

    Signals are sent after the write has committed, so a failing handler is
    logged and never reported back to the caller.
    """

    def __init__(self) -> None:
        self._subscribers: list[InvalidationHandler] = []

    def subscribe(self, handler: InvalidationHandler) -> None:
        if handler not in self._subscribers:
            self._subscribers.append(handler)

    def unsubscribe(self, handler: InvalidationHandler) -> None:
        if handler in self._subscribers:
            self._subscribers.remove(handler)

    def invalidate(self, path: str) -> None:
        for handler in list(self._subscribers):
            try:
                handler(path)
            except Exception:
                logger.warning("view invalidation handler failed for %s", path, exc_info=True)


view_bus = ViewInvalidationBus()
