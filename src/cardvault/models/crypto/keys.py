"""Vault key derivation and key material handling."""

from __future__ import annotations

import base64
import hashlib
import hmac
import os
from dataclasses import dataclass

from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.hkdf import HKDF
from cryptography.hazmat.primitives.kdf.scrypt import Scrypt

from .exceptions import KeyDerivationError, NoActiveSession

# AES-256 requires 256-bit (32-byte) keys
KEY_SIZE = 32
SALT_SIZE = 32  # 256-bit salt

FINGERPRINT_INFO = b"cardvault-v1/fingerprint"
VERIFIER_CONTEXT = b"cardvault-v1/verifier"


@dataclass(frozen=True)
class KdfParams:
    """Scrypt cost parameters.

    The defaults follow the OWASP guidance for scrypt (N=2^17, r=8, p=1),
    which costs roughly 128 MiB of memory per derivation.
    """

    n: int = 2**17
    r: int = 8
    p: int = 1
    key_length: int = KEY_SIZE


DEFAULT_KDF_PARAMS = KdfParams()


def generate_salt() -> bytes:
    """Generate a random vault salt."""
    return os.urandom(SALT_SIZE)


def derive_key(
    passphrase: str, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS
) -> bytes:
    """Derive a symmetric key from a passphrase and salt using scrypt.

    Identical inputs always yield the identical key.

    Raises:
        KeyDerivationError: If the inputs or parameters are unusable.
    """
    if not passphrase:
        raise KeyDerivationError("Passphrase must not be empty")
    if len(salt) < 16:
        raise KeyDerivationError("Salt must be at least 16 bytes")

    try:
        kdf = Scrypt(
            salt=salt,
            length=params.key_length,
            n=params.n,
            r=params.r,
            p=params.p,
        )
        return kdf.derive(passphrase.encode("utf-8"))
    except (ValueError, TypeError, MemoryError) as e:
        raise KeyDerivationError(f"Key derivation failed: {e}") from e


class VaultKey:
    """Derived vault key together with the salt it was derived from.

    The key bytes live in a mutable buffer so that :meth:`destroy` can
    overwrite them when the session ends. Neither the key nor the passphrase
    is ever serialized.
    """

    def __init__(self, key_bytes: bytes, salt: bytes):
        if len(key_bytes) != KEY_SIZE:
            raise ValueError(f"Key must be {KEY_SIZE} bytes, got {len(key_bytes)}")
        self._key = bytearray(key_bytes)
        self.salt = bytes(salt)
        self._destroyed = False

    @classmethod
    def derive(
        cls, passphrase: str, salt: bytes, params: KdfParams = DEFAULT_KDF_PARAMS
    ) -> "VaultKey":
        """Derive key material from a passphrase and the vault salt."""
        return cls(derive_key(passphrase, salt, params), salt)

    @property
    def key_bytes(self) -> bytearray:
        """Raw key buffer; raises once the key has been destroyed."""
        if self._destroyed:
            raise NoActiveSession("Vault key has been destroyed")
        return self._key

    @property
    def destroyed(self) -> bool:
        return self._destroyed

    @property
    def salt_b64(self) -> str:
        return base64.b64encode(self.salt).decode("ascii")

    def fingerprint_key(self) -> bytes:
        """Subkey used for content fingerprints, separated from the cipher key."""
        hkdf = HKDF(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=None,
            info=FINGERPRINT_INFO,
        )
        return hkdf.derive(bytes(self.key_bytes))

    def fingerprint(self, data: bytes) -> str:
        """HMAC-SHA256 of ``data`` under the fingerprint subkey, hex encoded."""
        return hmac.new(self.fingerprint_key(), data, hashlib.sha256).hexdigest()

    def verifier(self) -> str:
        """Key check value persisted with the salt to detect a wrong passphrase."""
        return self.fingerprint(VERIFIER_CONTEXT)

    def matches_verifier(self, verifier: str) -> bool:
        return hmac.compare_digest(self.verifier(), verifier)

    def destroy(self) -> None:
        """Overwrite the key buffer in place."""
        for i in range(len(self._key)):
            self._key[i] = 0
        self._destroyed = True

    def __repr__(self) -> str:
        """String representation (hides key material)."""
        if self._destroyed:
            return "VaultKey(destroyed)"
        digest = hashlib.sha256(bytes(self._key)).hexdigest()[:16]
        return f"VaultKey(key_hash={digest}...)"

    def __eq__(self, other: object) -> bool:
        """Compare keys in constant time."""
        if not isinstance(other, VaultKey):
            return NotImplemented
        return self.salt == other.salt and hmac.compare_digest(
            bytes(self.key_bytes), bytes(other.key_bytes)
        )

    __hash__ = None  # type: ignore[assignment]
