"""In-memory object store, for tests and offline use."""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import UTC, datetime

from cardvault.adapters.storage import ObjectInfo, StorageAdapter
from cardvault.models.crypto.exceptions import NotFound


class InMemoryStorageAdapter(StorageAdapter):
    """Dictionary-backed storage adapter."""

    def __init__(self, sessions, engine):
        super().__init__(sessions, engine)
        self.objects: dict[str, tuple[bytes, ObjectInfo]] = {}

    async def _list_objects(self) -> AsyncIterator[ObjectInfo]:
        # Snapshot so concurrent writes do not disturb an ongoing listing
        for _, info in list(self.objects.values()):
            yield info

    async def _read_object(self, remote_id: str) -> tuple[bytes, ObjectInfo]:
        try:
            return self.objects[remote_id]
        except KeyError:
            raise NotFound(remote_id) from None

    async def _write_object(
        self, remote_id: str, data: bytes, properties: dict[str, str]
    ) -> ObjectInfo:
        info = ObjectInfo(
            remote_id=remote_id,
            size=len(data),
            modified=datetime.now(UTC),
            properties=dict(properties),
        )
        self.objects[remote_id] = (bytes(data), info)
        return info

    async def _delete_object(self, remote_id: str) -> None:
        if self.objects.pop(remote_id, None) is None:
            raise NotFound(remote_id)

    def snapshot(self) -> dict[str, tuple[bytes, datetime]]:
        """Bytes and modification time of every object."""
        return {rid: (data, info.modified) for rid, (data, info) in self.objects.items()}

