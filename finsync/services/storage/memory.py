"""In-memory key-value storage for tests and ephemeral sessions."""

from typing import Optional

from finsync.services.storage.interface import KeyValueStorage


class InMemoryKeyValueStorage(KeyValueStorage):
    """Dictionary-backed storage. Nothing survives the process."""

    def __init__(self, initial: Optional[dict[str, str]] = None):
        self._data: dict[str, str] = dict(initial or {})

    async def get_item(self, key: str) -> Optional[str]:
        return self._data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        self._data[key] = value

    async def remove_item(self, key: str) -> None:
        self._data.pop(key, None)

    def keys(self) -> list[str]:
        return sorted(self._data)
