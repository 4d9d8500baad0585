from __future__ import annotations

import fnmatch

from app.infra.events import DEPARTMENTS_VIEW_PATH, USERS_VIEW_PATH, ViewInvalidationBus
from app.infra.redis_state import RedisViewCache


class InMemoryRedis:
    def __init__(self) -> None:
        self.store: dict[str, str] = {}
        self.ttls: dict[str, int | None] = {}

    def get(self, key: str) -> str | None:
        return self.store.get(key)

    def set(self, key: str, value: str, ex: int | None = None) -> bool:
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def scan_iter(self, match: str):
        return iter([key for key in list(self.store) if fnmatch.fnmatchcase(key, match)])

    def delete(self, *keys: str) -> int:
        removed = 0
        for key in keys:
            if self.store.pop(key, None) is not None:
                removed += 1
        return removed


def test_bus_fans_out_to_subscribers() -> None:
    bus = ViewInvalidationBus()
    seen: list[tuple[str, str]] = []

    def first(path: str) -> None:
        seen.append(("first", path))

    def second(path: str) -> None:
        seen.append(("second", path))

    bus.subscribe(first)
    bus.subscribe(second)
    bus.subscribe(first)
    bus.invalidate(USERS_VIEW_PATH)

    assert seen == [("first", USERS_VIEW_PATH), ("second", USERS_VIEW_PATH)]

    bus.unsubscribe(first)
    bus.invalidate(DEPARTMENTS_VIEW_PATH)
    assert seen[-1] == ("second", DEPARTMENTS_VIEW_PATH)
    assert len(seen) == 3


def test_bus_keeps_going_when_a_handler_fails() -> None:
    bus = ViewInvalidationBus()
    seen: list[str] = []

    def broken(path: str) -> None:
        raise ConnectionError("redis down")

    bus.subscribe(broken)
    bus.subscribe(seen.append)
    bus.invalidate(USERS_VIEW_PATH)

    assert seen == [USERS_VIEW_PATH]


def test_redis_view_cache_invalidates_path_and_variants() -> None:
    client = InMemoryRedis()
    cache = RedisViewCache(client=client)  # type: ignore[arg-type]
    cache.put(USERS_VIEW_PATH, "page-1")
    cache.put(USERS_VIEW_PATH, "page-2", suffix="page=2", ttl_seconds=60)
    cache.put(DEPARTMENTS_VIEW_PATH, "tree")

    assert cache.get(USERS_VIEW_PATH, "page=2") == "page-2"
    assert client.ttls[cache.key(USERS_VIEW_PATH, "page=2")] == 60

    bus = ViewInvalidationBus()
    bus.subscribe(cache.invalidate)
    bus.invalidate(USERS_VIEW_PATH)

    assert cache.get(USERS_VIEW_PATH) is None
    assert cache.get(USERS_VIEW_PATH, "page=2") is None
    assert cache.get(DEPARTMENTS_VIEW_PATH) == "tree"
