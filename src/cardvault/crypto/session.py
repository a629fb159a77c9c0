"""Passphrase session: the only holder of the passphrase and derived keys."""

from __future__ import annotations

import time
from collections.abc import Callable
from typing import Optional

from cardvault.models.crypto.exceptions import NoActiveSession, WeakPassphrase
from cardvault.models.crypto.keys import DEFAULT_KDF_PARAMS, KdfParams, VaultKey
from cardvault.models.crypto.strength import PassphraseValidator, default_validator
from cardvault.utils.logger import get_child_logger

logger = get_child_logger("session")


class PassphraseSession:
    """Holds the passphrase in memory between :meth:`begin` and :meth:`end`.

    The session is passed explicitly to the crypto engine; there is no
    module-level session state. Derived keys are cached per salt so the
    expensive derivation runs once per session.

    With ``idle_timeout`` set, the session ends itself once that many seconds
    pass without use. Every successful :meth:`require_active` counts as use.
    """

    def __init__(
        self,
        validator: PassphraseValidator = default_validator,
        kdf_params: KdfParams = DEFAULT_KDF_PARAMS,
        idle_timeout: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        if idle_timeout is not None and idle_timeout <= 0:
            raise ValueError("idle_timeout must be positive")
        self.validator = validator
        self.kdf_params = kdf_params
        self.idle_timeout = idle_timeout
        self._clock = clock
        self._passphrase: str | None = None
        self._keys: dict[bytes, VaultKey] = {}
        self._current: VaultKey | None = None
        self._expires_at: float | None = None

    @property
    def active(self) -> bool:
        self._expire_if_idle()
        return self._passphrase is not None

    @property
    def unlocked(self) -> bool:
        """True once a key has been derived in this session."""
        return self.active and self._current is not None

    def begin(self, passphrase: str, enforce_policy: bool = True) -> None:
        """Start a session.

        Args:
            passphrase: The user's passphrase
            enforce_policy: Apply the strength validator. Unlocking an
                existing vault skips it so a later policy change cannot lock
                the user out.

        Raises:
            WeakPassphrase: Empty passphrase, or one rejected by the validator.
        """
        if not passphrase:
            raise WeakPassphrase(["Passphrase must not be empty"])
        if enforce_policy:
            report = self.validator(passphrase)
            if not report.is_valid:
                raise WeakPassphrase(report.feedback)

        self.end()
        self._passphrase = passphrase
        self._touch()

    def require_active(self) -> None:
        """Raise unless a session is running, and extend its idle deadline."""
        if self._expire_if_idle():
            raise NoActiveSession("Session expired after inactivity")
        if self._passphrase is None:
            raise NoActiveSession()
        self._touch()

    def derive(self, salt: bytes) -> VaultKey:
        """Derive (or reuse) the vault key for ``salt`` and make it current."""
        self.require_active()
        key = self._keys.get(salt)
        if key is None:
            key = VaultKey.derive(self._passphrase, salt, self.kdf_params)
            self._keys[salt] = key
        self._current = key
        return key

    @property
    def key(self) -> VaultKey:
        """The most recently derived key."""
        self.require_active()
        if self._current is None:
            raise NoActiveSession("Vault is not unlocked")
        return self._current

    def end(self) -> None:
        """Drop the passphrase and overwrite every derived key."""
        for key in self._keys.values():
            key.destroy()
        self._keys.clear()
        self._current = None
        self._passphrase = None
        self._expires_at = None

    def _touch(self) -> None:
        if self.idle_timeout is not None:
            self._expires_at = self._clock() + self.idle_timeout

    def _expire_if_idle(self) -> bool:
        """End the session if its idle deadline has passed."""
        if self._expires_at is None or self._clock() < self._expires_at:
            return False
        self.end()
        logger.info("Session ended after %.0fs idle", self.idle_timeout)
        return True

    def __repr__(self) -> str:
        active = self._passphrase is not None
        return f"PassphraseSession(active={active}, keys={len(self._keys)})"
