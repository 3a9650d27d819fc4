"""In-process key-value store for tests and demos."""

import copy
from typing import Any


class InMemoryStore:
    """``KeyValueStore`` over nested dicts. Values are deep-copied in and out."""

    def __init__(self) -> None:
        self._collections: dict[str, dict[str, dict[str, Any]]] = {}

    async def get(self, collection: str, key: str) -> dict[str, Any] | None:
        value = self._collections.get(collection, {}).get(key)
        return copy.deepcopy(value) if value is not None else None

    async def put(self, collection: str, key: str, value: dict[str, Any]) -> None:
        self._collections.setdefault(collection, {})[key] = copy.deepcopy(value)

    async def delete(self, collection: str, key: str) -> None:
        self._collections.get(collection, {}).pop(key, None)

    async def get_all(self, collection: str) -> list[dict[str, Any]]:
        return [copy.deepcopy(v) for v in self._collections.get(collection, {}).values()]
