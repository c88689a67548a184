"""In-process storage backend.

Values go through a JSON round trip so callers see exactly what a real
backend would hand back (ISO strings instead of ``datetime`` objects).
"""

from __future__ import annotations

import json
from typing import Any

from chatrelay.storage.base import StorageBackend


class MemoryStorage(StorageBackend):
    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    async def get(self, key: str) -> Any | None:
        raw = self._data.get(key)
        if raw is None:
            return None
        return json.loads(raw)

    async def set(self, key: str, value: Any) -> None:
        self._data[key] = json.dumps(value, ensure_ascii=False)

    async def delete(self, key: str) -> bool:
        return self._data.pop(key, None) is not None

    async def ping(self) -> dict[str, Any]:
        return {"status": "healthy", "backend": "memory", "keys": len(self._data)}
