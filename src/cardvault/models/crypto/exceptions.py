"""Custom exceptions for cardvault.

Every exception carries a ``kind`` so that per-item failures can be folded
into a sync outcome without inspecting exception types at the call site.
"""

from __future__ import annotations

from enum import Enum


class FailureKind(str, Enum):
    """Classification of a failure, as reported in sync outcomes."""

    NO_ACTIVE_SESSION = "no_active_session"
    WEAK_PASSPHRASE = "weak_passphrase"
    PASSPHRASE_MISMATCH = "passphrase_mismatch"
    UNACKNOWLEDGED_RISK = "unacknowledged_risk"
    VAULT_EXISTS = "vault_exists"
    VAULT_MISSING = "vault_missing"
    AUTHENTICATION_FAILED = "authentication_failed"
    MALFORMED_INPUT = "malformed_input"
    KEY_DERIVATION = "key_derivation"
    NOT_FOUND = "not_found"
    NETWORK_FAILURE = "network_failure"
    NOT_SIGNED_IN = "not_signed_in"
    SYNC_ALREADY_IN_PROGRESS = "sync_already_in_progress"
    CANCELLED = "cancelled"


class CardVaultError(Exception):
    """Base exception for all cardvault errors."""

    kind: FailureKind


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


class CryptoError(CardVaultError):
    """Base class for encryption/decryption failures."""


class AuthenticationFailed(CryptoError):
    """Raised when a ciphertext fails integrity verification.

    Wrong passphrase, corrupted blob and deliberate tampering all surface as
    this exception with the same message.
    """

    kind = FailureKind.AUTHENTICATION_FAILED

    def __init__(self) -> None:
        super().__init__("Authentication failed")


class MalformedInput(CryptoError):
    """Raised when an encrypted container is structurally invalid."""

    kind = FailureKind.MALFORMED_INPUT


class KeyDerivationError(CryptoError):
    """Raised when key derivation fails."""

    kind = FailureKind.KEY_DERIVATION


# ---------------------------------------------------------------------------
# Session
# ---------------------------------------------------------------------------


class SessionError(CardVaultError):
    """Base class for passphrase session errors."""


class NoActiveSession(SessionError):
    """Raised when a crypto operation is attempted without a session."""

    kind = FailureKind.NO_ACTIVE_SESSION

    def __init__(self, message: str = "No active vault session") -> None:
        super().__init__(message)


class WeakPassphrase(SessionError):
    """Raised when a passphrase does not meet the strength policy."""

    kind = FailureKind.WEAK_PASSPHRASE

    def __init__(self, feedback: list[str] | None = None) -> None:
        self.feedback = list(feedback or [])
        detail = "; ".join(self.feedback)
        super().__init__(f"Passphrase too weak: {detail}" if detail else "Passphrase too weak")


class PassphraseMismatch(SessionError):
    """Raised when the confirmation does not equal the candidate."""

    kind = FailureKind.PASSPHRASE_MISMATCH

    def __init__(self) -> None:
        super().__init__("Passphrases do not match")


class UnacknowledgedRisk(SessionError):
    """Raised when committing a passphrase without acknowledging it is unrecoverable."""

    kind = FailureKind.UNACKNOWLEDGED_RISK

    def __init__(self) -> None:
        super().__init__("The passphrase cannot be recovered; acknowledgment is required")


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


class StorageError(CardVaultError):
    """Base class for remote storage errors."""


class NotFound(StorageError):
    """Raised when a remote object no longer exists."""

    kind = FailureKind.NOT_FOUND

    def __init__(self, remote_id: str) -> None:
        self.remote_id = remote_id
        super().__init__(f"Remote object not found: {remote_id}")


class NetworkFailure(StorageError):
    """Raised on transient I/O failures talking to the remote store."""

    kind = FailureKind.NETWORK_FAILURE


class NotSignedIn(StorageError):
    """Raised when no authenticated user session is available."""

    kind = FailureKind.NOT_SIGNED_IN

    def __init__(self, message: str = "Sign in required") -> None:
        super().__init__(message)


# ---------------------------------------------------------------------------
# Sync
# ---------------------------------------------------------------------------


class SyncAlreadyInProgress(CardVaultError):
    """Raised when a reconciliation pass is started while another is running."""

    kind = FailureKind.SYNC_ALREADY_IN_PROGRESS

    def __init__(self) -> None:
        super().__init__("A sync pass is already running")


# ---------------------------------------------------------------------------
# Vault lifecycle
# ---------------------------------------------------------------------------


class VaultAlreadyInitialized(SessionError):
    """Raised when setting up a passphrase for a vault that already has one."""

    kind = FailureKind.VAULT_EXISTS

    def __init__(self) -> None:
        super().__init__("Vault already exists. Unlock it instead.")


class VaultNotInitialized(SessionError):
    """Raised when unlocking before any vault has been set up."""

    kind = FailureKind.VAULT_MISSING

    def __init__(self) -> None:
        super().__init__("No vault found. Set up a passphrase first.")
