"""AES-256-GCM encryption and decryption utilities.

This module provides authenticated encryption using AES-256-GCM.
Every call to :func:`encrypt` draws a fresh 96-bit nonce from the OS CSPRNG.
The associated data (record or asset id) is bound into the tag, so a blob
cannot be relabelled to another id without failing verification.
"""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Any

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM

from .exceptions import AuthenticationFailed, MalformedInput
from .keys import VaultKey

# Constants
IV_SIZE = 12  # 96 bits (recommended for GCM)
TAG_SIZE = 16  # 128 bits (authentication tag)

FORMAT_NAME = "cardvault"
FORMAT_VERSION = "1"


@dataclass(frozen=True)
class EncryptedData:
    """Represents encrypted data with all necessary components.

    ``salt`` references the vault salt the key was derived from; it is not
    secret and lets a fresh device re-derive the key from the passphrase.
    """

    ciphertext: bytes
    iv: bytes
    auth_tag: bytes
    salt: bytes = b""
    version: str = FORMAT_VERSION

    def to_dict(self) -> dict[str, str]:
        """Convert to dictionary for JSON serialization."""
        return {
            "format": FORMAT_NAME,
            "version": self.version,
            "salt": _b64(self.salt),
            "iv": _b64(self.iv),
            "ciphertext": _b64(self.ciphertext),
            "authTag": _b64(self.auth_tag),
        }

    def to_bytes(self) -> bytes:
        """Serialize to the persisted JSON container."""
        return json.dumps(self.to_dict(), separators=(",", ":")).encode("utf-8")

    @classmethod
    def from_dict(cls, data: Any) -> "EncryptedData":
        """Create from dictionary (from JSON).

        Raises:
            MalformedInput: If the container is structurally invalid.
        """
        if not isinstance(data, dict):
            raise MalformedInput("Encrypted container must be a JSON object")
        if data.get("format", FORMAT_NAME) != FORMAT_NAME:
            raise MalformedInput(f"Unknown container format: {data.get('format')!r}")
        version = data.get("version", FORMAT_VERSION)
        if version != FORMAT_VERSION:
            raise MalformedInput(f"Unsupported container version: {version!r}")

        iv = _unb64(data, "iv")
        auth_tag = _unb64(data, "authTag", fallback="auth_tag")
        ciphertext = _unb64(data, "ciphertext")
        salt = _unb64(data, "salt") if data.get("salt") else b""

        if len(iv) != IV_SIZE:
            raise MalformedInput(f"Invalid IV size: expected {IV_SIZE}, got {len(iv)}")
        if len(auth_tag) != TAG_SIZE:
            raise MalformedInput(
                f"Invalid auth tag size: expected {TAG_SIZE}, got {len(auth_tag)}"
            )
        return cls(
            ciphertext=ciphertext, iv=iv, auth_tag=auth_tag, salt=salt, version=version
        )

    @classmethod
    def from_bytes(cls, raw: bytes) -> "EncryptedData":
        """Parse a persisted JSON container."""
        try:
            data = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise MalformedInput(f"Encrypted container is not valid JSON: {e}") from e
        return cls.from_dict(data)


def _b64(data: bytes) -> str:
    return base64.b64encode(data).decode("ascii")


def _unb64(data: dict, key: str, fallback: str | None = None) -> bytes:
    value = data.get(key)
    if value is None and fallback is not None:
        value = data.get(fallback)
    if not isinstance(value, str):
        raise MalformedInput(f"Missing or invalid field: {key}")
    try:
        return base64.b64decode(value.encode("ascii"), validate=True)
    except (binascii.Error, UnicodeEncodeError) as e:
        raise MalformedInput(f"Field {key} is not valid base64") from e


def encrypt(key: VaultKey, plaintext: bytes, associated_data: bytes) -> EncryptedData:
    """Encrypt plaintext using AES-256-GCM under a fresh random nonce."""
    iv = os.urandom(IV_SIZE)
    aesgcm = AESGCM(key.key_bytes)
    ciphertext_with_tag = aesgcm.encrypt(iv, plaintext, associated_data)

    return EncryptedData(
        ciphertext=ciphertext_with_tag[:-TAG_SIZE],
        iv=iv,
        auth_tag=ciphertext_with_tag[-TAG_SIZE:],
        salt=key.salt,
    )


def decrypt(
    key: VaultKey,
    iv: bytes,
    ciphertext: bytes,
    auth_tag: bytes,
    associated_data: bytes,
) -> bytes:
    """Verify and decrypt AES-256-GCM ciphertext.

    The tag is verified before any plaintext is returned.

    Raises:
        MalformedInput: If the nonce or tag has the wrong size.
        AuthenticationFailed: Wrong key, corrupted data or tampering.
    """
    if len(iv) != IV_SIZE:
        raise MalformedInput(f"Invalid IV size: expected {IV_SIZE}, got {len(iv)}")
    if len(auth_tag) != TAG_SIZE:
        raise MalformedInput(
            f"Invalid auth tag size: expected {TAG_SIZE}, got {len(auth_tag)}"
        )

    aesgcm = AESGCM(key.key_bytes)
    try:
        return aesgcm.decrypt(iv, ciphertext + auth_tag, associated_data)
    except InvalidTag:
        raise AuthenticationFailed() from None


def open_envelope(
    key: VaultKey, encrypted: EncryptedData, associated_data: bytes
) -> bytes:
    """Decrypt an :class:`EncryptedData` container.

    A container sealed under a different vault salt cannot be opened with
    this key and is reported exactly like a wrong passphrase.
    """
    if encrypted.salt and encrypted.salt != key.salt:
        raise AuthenticationFailed()
    return decrypt(
        key, encrypted.iv, encrypted.ciphertext, encrypted.auth_tag, associated_data
    )
