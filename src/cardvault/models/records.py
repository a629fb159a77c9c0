"""Remote record models: what the object store holds and reports."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from cardvault.models.crypto.cipher import EncryptedData


class RecordKind(str, Enum):
    """Kinds of remote object."""

    RECORD = "record"
    ASSET = "asset"


def asset_id(card_id: str, image_id: str, digest: str) -> str:
    """Remote id of an image asset belonging to a card.

    The content digest is part of the id, so new image bytes never overwrite
    an asset that the current remote record still references.
    """
    return f"{card_id}/{image_id}.{digest[:16]}"


@dataclass(frozen=True)
class RemoteEntry:
    """Listing metadata for one remote object. Carries no ciphertext."""

    remote_id: str
    kind: RecordKind
    card_id: str
    size: int
    last_modified: datetime
    fingerprint: str | None = None


@dataclass(frozen=True)
class EncryptedRecord:
    """Ciphertext of one card (or one image asset) as persisted remotely."""

    remote_id: str
    encrypted: EncryptedData
    content_length: int
    last_modified: datetime
    kind: RecordKind = RecordKind.RECORD

    @property
    def nonce(self) -> bytes:
        return self.encrypted.iv

    @property
    def ciphertext(self) -> bytes:
        return self.encrypted.ciphertext

    @property
    def auth_tag(self) -> bytes:
        return self.encrypted.auth_tag


@dataclass(frozen=True)
class VaultUsage:
    """Aggregate storage usage derived from a remote listing."""

    total_bytes: int = 0
    record_count: int = 0
    asset_count: int = 0
