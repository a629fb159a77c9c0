"""High-level encryption engine for cardvault."""

from __future__ import annotations

import hashlib
import hmac
from dataclasses import dataclass
from typing import Any

from cardvault.crypto.session import PassphraseSession
from cardvault.models.card import Card, CardImage, ImageRef, parse_payload
from cardvault.models.crypto.cipher import EncryptedData, decrypt, encrypt, open_envelope
from cardvault.models.crypto.exceptions import AuthenticationFailed, MalformedInput
from cardvault.models.crypto.keys import KdfParams, VaultKey
from cardvault.models.records import EncryptedRecord, RecordKind, asset_id

AAD_PREFIX = "cardvault/1"


def record_aad(card_id: str) -> bytes:
    """Associated data binding a record ciphertext to its card id."""
    return f"{AAD_PREFIX}|record|{card_id}".encode("utf-8")


def asset_aad(remote_id: str) -> bytes:
    """Associated data binding an image ciphertext to its asset id."""
    return f"{AAD_PREFIX}|asset|{remote_id}".encode("utf-8")


@dataclass(frozen=True)
class SealedAsset:
    """One encrypted image, ready to upload."""

    remote_id: str
    image_id: str
    encrypted: EncryptedData


@dataclass(frozen=True)
class SealedCard:
    """Encrypted record payload plus its encrypted image assets."""

    card_id: str
    record: EncryptedData
    assets: tuple[SealedAsset, ...]
    fingerprint: str

    @property
    def asset_ids(self) -> set[str]:
        return {asset.remote_id for asset in self.assets}


class CryptoEngine:
    """Encrypts and decrypts card payloads and image assets.

    Every operation except key derivation requires an active
    :class:`PassphraseSession`; ending the session disables the engine.
    """

    def __init__(self, session: PassphraseSession):
        self.session = session

    @property
    def kdf_params(self) -> KdfParams:
        return self.session.kdf_params

    def derive_key(self, passphrase: str, salt: bytes) -> VaultKey:
        """Derive the vault key from a passphrase and salt (deterministic)."""
        return VaultKey.derive(passphrase, salt, self.kdf_params)

    def encrypt(
        self, key: VaultKey, plaintext: bytes, associated_data: bytes
    ) -> EncryptedData:
        self.session.require_active()
        return encrypt(key, plaintext, associated_data)

    def decrypt(
        self,
        key: VaultKey,
        nonce: bytes,
        ciphertext: bytes,
        auth_tag: bytes,
        associated_data: bytes,
    ) -> bytes:
        self.session.require_active()
        return decrypt(key, nonce, ciphertext, auth_tag, associated_data)

    def open(
        self, key: VaultKey, encrypted: EncryptedData, associated_data: bytes
    ) -> bytes:
        """Decrypt a whole container, checking its vault salt reference."""
        self.session.require_active()
        return open_envelope(key, encrypted, associated_data)

    def fingerprint(self, key: VaultKey, card: Card) -> str:
        """Keyed digest of a card's payload, used to skip unchanged pushes.

        Image bytes are covered through the digests in the payload.
        """
        self.session.require_active()
        return key.fingerprint(card.to_payload())

    def seal_card(self, card: Card, key: VaultKey) -> SealedCard:
        """Encrypt a card's payload and each of its images separately."""
        self.session.require_active()
        assets = []
        for image in card.images:
            remote_id = asset_id(card.id, image.id, image.digest)
            assets.append(
                SealedAsset(
                    remote_id=remote_id,
                    image_id=image.id,
                    encrypted=encrypt(key, image.data, asset_aad(remote_id)),
                )
            )
        payload = card.to_payload()
        return SealedCard(
            card_id=card.id,
            record=encrypt(key, payload, record_aad(card.id)),
            assets=tuple(assets),
            fingerprint=key.fingerprint(payload),
        )

    def open_card_payload(
        self, key: VaultKey, record: EncryptedRecord
    ) -> tuple[dict[str, Any], list[ImageRef]]:
        """Decrypt a record into card fields and image references."""
        if record.kind is not RecordKind.RECORD:
            raise MalformedInput(f"{record.remote_id} is not a card record")
        plaintext = self.open(key, record.encrypted, record_aad(record.remote_id))
        fields, refs = parse_payload(plaintext)
        if fields.get("id") != record.remote_id:
            raise MalformedInput(f"Record {record.remote_id} holds a different card id")
        return fields, refs

    def open_asset(self, key: VaultKey, record: EncryptedRecord, ref: ImageRef) -> CardImage:
        """Decrypt an image asset and check it against the record's digest."""
        if record.kind is not RecordKind.ASSET:
            raise MalformedInput(f"{record.remote_id} is not an image asset")
        data = self.open(key, record.encrypted, asset_aad(record.remote_id))
        digest = hashlib.sha256(data).hexdigest()
        if not hmac.compare_digest(digest, ref.sha256):
            raise AuthenticationFailed()
        return CardImage(
            id=ref.id,
            name=ref.name,
            mime_type=ref.mime_type,
            data=data,
            added_at=ref.added_at,
        )
