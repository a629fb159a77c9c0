"""Remote object store abstraction.

This module defines the port through which the reconciler reaches the remote
store. A concrete adapter only implements four object primitives (list, read,
write, delete); record encryption, asset fan-out, cascade delete and usage
aggregation live here so every backend behaves identically.
"""

from __future__ import annotations

import asyncio
from abc import ABC, abstractmethod
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from datetime import datetime
from typing import Protocol

from cardvault.crypto.engine import CryptoEngine
from cardvault.models.card import Card
from cardvault.models.crypto.cipher import EncryptedData
from cardvault.models.crypto.exceptions import CardVaultError, NotFound, NotSignedIn
from cardvault.models.crypto.keys import VaultKey
from cardvault.models.records import EncryptedRecord, RecordKind, RemoteEntry, VaultUsage
from cardvault.utils.logger import get_child_logger

logger = get_child_logger("storage")

# Keys of the plaintext metadata stored alongside each object
PROP_KIND = "kind"
PROP_CARD_ID = "card_id"
PROP_FINGERPRINT = "fingerprint"


@dataclass(frozen=True)
class ObjectInfo:
    """Provider-level description of one stored object."""

    remote_id: str
    size: int
    modified: datetime
    properties: dict[str, str] = field(default_factory=dict)


@dataclass(frozen=True)
class StorageQuota:
    """Account-wide quota reported by the provider, in bytes."""

    usage: int
    limit: int | None = None


class SessionProvider(Protocol):
    """Source of the signed-in user's access token."""

    async def access_token(self) -> str: ...


class StaticSessionProvider:
    """Session provider holding a token handed over by the sign-in flow."""

    def __init__(self, token: str | None = None):
        self._token = token

    def sign_in(self, token: str) -> None:
        self._token = token

    def sign_out(self) -> None:
        self._token = None

    async def access_token(self) -> str:
        if not self._token:
            raise NotSignedIn()
        return self._token


class StorageAdapter(ABC):
    """Per-record blob API over a remote object store.

    Record objects are addressed by card id. Each image is its own asset
    object addressed by :func:`cardvault.models.records.asset_id`.
    """

    def __init__(self, sessions: SessionProvider, engine: CryptoEngine):
        self.sessions = sessions
        self.engine = engine

    # ------------------------------------------------------------------
    # Provider primitives
    # ------------------------------------------------------------------

    @abstractmethod
    def _list_objects(self) -> AsyncIterator[ObjectInfo]:
        """Yield every object in the vault."""
        raise NotImplementedError

    @abstractmethod
    async def _read_object(self, remote_id: str) -> tuple[bytes, ObjectInfo]:
        """Return an object's bytes. Raises NotFound when absent."""
        raise NotImplementedError

    @abstractmethod
    async def _write_object(
        self, remote_id: str, data: bytes, properties: dict[str, str]
    ) -> ObjectInfo:
        """Create the object, or overwrite it in place if it exists."""
        raise NotImplementedError

    @abstractmethod
    async def _delete_object(self, remote_id: str) -> None:
        """Delete an object. Raises NotFound when absent."""
        raise NotImplementedError

    async def quota(self) -> StorageQuota | None:
        """Provider account quota, when the provider reports one."""
        return None

    async def close(self) -> None:
        """Release provider resources."""

    # ------------------------------------------------------------------
    # Record API
    # ------------------------------------------------------------------

    async def _require_sign_in(self) -> None:
        await self.sessions.access_token()

    async def list(self) -> AsyncIterator[RemoteEntry]:
        """Yield metadata for every record and asset; no ciphertext is read.

        Each call starts a fresh listing.
        """
        await self._require_sign_in()
        async for info in self._list_objects():
            entry = _to_entry(info)
            if entry is None:
                logger.debug("Ignoring foreign object %s", info.remote_id)
                continue
            yield entry

    async def fetch(self, remote_id: str) -> EncryptedRecord:
        """Fetch one record or asset ciphertext.

        Raises:
            NotFound: The object no longer exists.
            MalformedInput: The stored container is not a cardvault envelope.
        """
        await self._require_sign_in()
        data, info = await self._read_object(remote_id)
        kind = RecordKind(info.properties.get(PROP_KIND, RecordKind.RECORD.value))
        return EncryptedRecord(
            remote_id=remote_id,
            encrypted=EncryptedData.from_bytes(data),
            content_length=len(data),
            last_modified=info.modified,
            kind=kind,
        )

    async def store(
        self,
        card: Card,
        key: VaultKey,
        existing_assets: Iterable[str] | None = None,
    ) -> str:
        """Encrypt and persist a card, creating or overwriting its record.

        New assets are written first and the record last, so the remote record
        never references an asset that is not there. Assets the card no longer
        references are deleted afterwards. If writing fails, the assets this
        call uploaded are removed again and the previous remote state stands.

        Args:
            card: Plaintext card
            key: Vault key
            existing_assets: Asset ids already stored for this card, if the
                caller has a fresh listing

        Returns:
            The record's remote id (the card id)
        """
        await self._require_sign_in()
        sealed = self.engine.seal_card(card, key)
        if existing_assets is None:
            existing = await self._card_assets(card.id)
        else:
            existing = set(existing_assets)

        uploaded: list[str] = []
        try:
            for asset in sealed.assets:
                if asset.remote_id in existing:
                    continue
                await self._write_object(
                    asset.remote_id,
                    asset.encrypted.to_bytes(),
                    {PROP_KIND: RecordKind.ASSET.value, PROP_CARD_ID: card.id},
                )
                uploaded.append(asset.remote_id)

            await self._write_object(
                card.id,
                sealed.record.to_bytes(),
                {
                    PROP_KIND: RecordKind.RECORD.value,
                    PROP_CARD_ID: card.id,
                    PROP_FINGERPRINT: sealed.fingerprint,
                },
            )
        except (CardVaultError, asyncio.CancelledError):
            await self._discard(uploaded)
            raise

        # The record now points at the new assets; leftovers are retried on the next push
        await self._discard(sorted(existing - sealed.asset_ids))
        return card.id

    async def remove(self, remote_id: str, assets: Iterable[str] | None = None) -> None:
        """Delete a record and its image assets. Absent objects count as deleted.

        The record goes first, so a partial failure never leaves a record
        pointing at deleted assets.
        """
        await self._require_sign_in()
        await self._delete_quietly(remote_id)
        if assets is None:
            assets = await self._card_assets(remote_id)
        for asset in sorted(assets):
            await self._delete_quietly(asset)

    async def usage(self) -> VaultUsage:
        """Aggregate byte and object counts from the listing."""
        total = records = assets = 0
        async for entry in self.list():
            total += entry.size
            if entry.kind is RecordKind.RECORD:
                records += 1
            else:
                assets += 1
        return VaultUsage(total_bytes=total, record_count=records, asset_count=assets)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    async def _card_assets(self, card_id: str) -> set[str]:
        return {
            entry.remote_id
            async for entry in self.list()
            if entry.kind is RecordKind.ASSET and entry.card_id == card_id
        }

    async def _delete_quietly(self, remote_id: str) -> None:
        try:
            await self._delete_object(remote_id)
        except NotFound:
            logger.debug("Object %s already absent", remote_id)

    async def _discard(self, remote_ids: list[str]) -> None:
        for remote_id in remote_ids:
            try:
                await self._delete_quietly(remote_id)
            except CardVaultError as e:
                logger.warning(
                    "Could not delete asset %s: %s", remote_id, e.kind.value
                )


def _to_entry(info: ObjectInfo) -> RemoteEntry | None:
    try:
        kind = RecordKind(info.properties.get(PROP_KIND, ""))
    except ValueError:
        return None
    card_id = info.properties.get(PROP_CARD_ID)
    if not card_id:
        return None
    return RemoteEntry(
        remote_id=info.remote_id,
        kind=kind,
        card_id=card_id,
        size=info.size,
        last_modified=info.modified,
        fingerprint=info.properties.get(PROP_FINGERPRINT),
    )
