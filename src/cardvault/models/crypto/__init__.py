"""Crypto primitives for cardvault.

This module provides client-side key derivation and authenticated encryption.
"""

from .cipher import EncryptedData, decrypt, encrypt, open_envelope
from .exceptions import (
    AuthenticationFailed,
    CardVaultError,
    CryptoError,
    FailureKind,
    KeyDerivationError,
    MalformedInput,
    NetworkFailure,
    NoActiveSession,
    NotFound,
    NotSignedIn,
    PassphraseMismatch,
    SessionError,
    StorageError,
    SyncAlreadyInProgress,
    UnacknowledgedRisk,
    VaultAlreadyInitialized,
    VaultNotInitialized,
    WeakPassphrase,
)
from .keys import KdfParams, VaultKey, derive_key, generate_salt
from .strength import (
    PassphraseValidator,
    StrengthReport,
    default_validator,
    generate_passphrase,
    make_validator,
)

__all__ = [
    "EncryptedData",
    "encrypt",
    "decrypt",
    "open_envelope",
    "KdfParams",
    "VaultKey",
    "derive_key",
    "generate_salt",
    "PassphraseValidator",
    "StrengthReport",
    "default_validator",
    "generate_passphrase",
    "make_validator",
    "FailureKind",
    "CardVaultError",
    "CryptoError",
    "AuthenticationFailed",
    "MalformedInput",
    "KeyDerivationError",
    "SessionError",
    "NoActiveSession",
    "WeakPassphrase",
    "PassphraseMismatch",
    "UnacknowledgedRisk",
    "StorageError",
    "NotFound",
    "NetworkFailure",
    "NotSignedIn",
    "SyncAlreadyInProgress",
    "VaultAlreadyInitialized",
    "VaultNotInitialized",
]
