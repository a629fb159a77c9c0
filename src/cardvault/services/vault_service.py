"""Vault service: the UI-facing entry point.

Wires the passphrase session, crypto engine, storage adapter, reconciler and
usage accountant together. The UI passes plain :class:`Card` values in and
gets snapshots, outcomes and classified errors back; key material never
crosses this boundary.
"""

from __future__ import annotations

import asyncio
from collections.abc import Callable, Sequence
from datetime import UTC, datetime
from typing import Optional

from rich.console import Console

from cardvault.adapters.storage import StorageAdapter
from cardvault.config import ConfigManager, get_config_manager
from cardvault.crypto.engine import CryptoEngine
from cardvault.crypto.session import PassphraseSession
from cardvault.models.card import Card
from cardvault.models.crypto.exceptions import (
    AuthenticationFailed,
    CardVaultError,
    NotFound,
    PassphraseMismatch,
    VaultAlreadyInitialized,
    VaultNotInitialized,
    WeakPassphrase,
)
from cardvault.models.crypto.keys import generate_salt
from cardvault.models.crypto.strength import make_validator
from cardvault.models.records import EncryptedRecord, RecordKind
from cardvault.models.setup import (
    PassphraseSetup,
    SetupStep,
    begin_setup,
    commit,
    submit_candidate,
    submit_confirmation,
)
from cardvault.models.sync import SyncOutcome
from cardvault.services.sync_service import SyncReconciler
from cardvault.services.sync_state import SyncState
from cardvault.services.usage_service import UsageAccountant, UsageReport
from cardvault.utils.logger import get_child_logger, get_logger

logger = get_child_logger("vault")


class VaultService:
    """Passphrase setup, unlock/lock and sync for one vault profile."""

    def __init__(
        self,
        session: PassphraseSession,
        engine: CryptoEngine,
        storage: StorageAdapter,
        config_manager: ConfigManager,
        sync_state: Optional[SyncState] = None,
        console: Optional[Console] = None,
    ):
        get_logger()
        self.session = session
        self.engine = engine
        self.storage = storage
        self.config_manager = config_manager
        self.sync_state = sync_state or SyncState(config_manager.config_dir)

        sync_config = config_manager.config.sync
        self.reconciler = SyncReconciler(
            storage,
            engine,
            max_concurrency=sync_config.max_concurrency,
            item_timeout=sync_config.item_timeout,
            console=console,
        )
        self.accountant = UsageAccountant(storage)

    @property
    def is_initialized(self) -> bool:
        """True when this device knows the vault salt."""
        return self.config_manager.load_salt() is not None

    @property
    def is_unlocked(self) -> bool:
        return self.session.unlocked

    @property
    def cards(self) -> tuple[Card, ...]:
        """Snapshot of the decrypted card collection. Empty while locked."""
        if not self.session.unlocked:
            self.reconciler.clear()
        return self.reconciler.cards

    async def setup_passphrase(
        self, candidate: str, confirmation: str, acknowledged: bool
    ) -> None:
        """Create a new vault protected by ``candidate``.

        Runs the setup flow end to end, then generates and persists the salt
        and key check value and leaves the vault unlocked.

        Raises:
            WeakPassphrase: The candidate fails the strength policy.
            PassphraseMismatch: The confirmation differs from the candidate.
            UnacknowledgedRisk: The user did not acknowledge that the
                passphrase cannot be recovered.
            VaultAlreadyInitialized: A vault already exists, here or remotely.
            NotSignedIn: The remote store cannot be checked for an existing vault.
        """
        state = begin_setup(PassphraseSetup())
        state = submit_candidate(state, candidate, self.session.validator)
        if state.step is not SetupStep.CONFIRM:
            raise WeakPassphrase(state.report.feedback if state.report else None)
        state = submit_confirmation(state, confirmation)
        if state.mismatch:
            raise PassphraseMismatch()
        state, passphrase = commit(state, acknowledged)

        if self.is_initialized or await self._discover_record() is not None:
            raise VaultAlreadyInitialized()

        salt = generate_salt()
        self.session.begin(passphrase)
        try:
            key = await asyncio.to_thread(self.session.derive, salt)
        except CardVaultError:
            self.session.end()
            raise
        self.config_manager.save_salt(salt, key.verifier(), created_at=datetime.now(UTC))
        logger.info("Vault initialized")

    async def unlock(self, passphrase: str) -> None:
        """Start a session and derive the vault key.

        On a device without a stored salt, the salt is read from the first
        remote record and the passphrase is checked by decrypting it.

        Raises:
            VaultNotInitialized: No vault exists locally or remotely.
            AuthenticationFailed: Wrong passphrase.
        """
        vault = self.config_manager.config.vault
        salt = vault.salt_bytes()
        verifier = vault.verifier
        sample: Optional[EncryptedRecord] = None
        if salt is None:
            sample = await self._discover_record()
            if sample is None:
                raise VaultNotInitialized()
            salt = sample.encrypted.salt

        self.session.begin(passphrase, enforce_policy=False)
        try:
            key = await asyncio.to_thread(self.session.derive, salt)
            if verifier:
                if not key.matches_verifier(verifier):
                    raise AuthenticationFailed()
            else:
                if sample is None:
                    sample = await self._discover_record()
                if sample is not None:
                    self.engine.open_card_payload(key, sample)
        except CardVaultError:
            self.session.end()
            logger.info("Unlock rejected")
            raise

        if not verifier:
            self.config_manager.save_salt(
                salt, key.verifier(), created_at=vault.created_at or datetime.now(UTC)
            )
        logger.info("Vault unlocked")

    def lock(self) -> None:
        """End the session and drop all decrypted cards."""
        self.reconciler.cancel()
        self.reconciler.clear()
        self.session.end()
        logger.info("Vault locked")

    async def pull_all(self) -> SyncOutcome:
        """Replace the local cards with the decrypted remote vault."""
        outcome = await self.reconciler.pull_all(self.session.key)
        self.sync_state.record(outcome)
        return outcome

    async def push_all(self, cards: Optional[Sequence[Card]] = None) -> SyncOutcome:
        """Make the remote vault match ``cards`` (default: the current snapshot)."""
        key = self.session.key
        if cards is None:
            cards = self.reconciler.cards
        outcome = await self.reconciler.push_all(cards, key)
        self.sync_state.record(outcome)
        return outcome

    async def usage(self, include_quota: bool = False) -> UsageReport:
        return await self.accountant.report(include_quota=include_quota)

    def cancel_sync(self) -> None:
        self.reconciler.cancel()

    async def reset(self) -> SyncOutcome:
        """Delete the whole remote vault, then forget it on this device.

        Works without unlocking. The local salt, key check value and sync
        state are cleared and the session ends only when every remote card
        was removed; otherwise the outcome lists what is left and this
        device keeps its vault header.

        Raises:
            SyncAlreadyInProgress: Another pass is running.
        """
        outcome = await self.reconciler.wipe_all()
        if not outcome.committed:
            self.sync_state.record(outcome)
            logger.warning("Vault reset incomplete: %d failures", len(outcome.failures))
            return outcome

        self.session.end()
        self.config_manager.clear_vault()
        self.sync_state.clear()
        self.sync_state.record(outcome)
        logger.info("Vault reset")
        return outcome

    async def close(self) -> None:
        self.lock()
        await self.storage.close()

    async def _discover_record(self) -> Optional[EncryptedRecord]:
        """First remote record carrying a salt reference, if any."""
        async for entry in self.storage.list():
            if entry.kind is not RecordKind.RECORD:
                continue
            try:
                record = await self.storage.fetch(entry.remote_id)
            except NotFound:
                continue
            if record.encrypted.salt:
                return record
        return None


def build_vault_service(
    storage_factory: Callable[[CryptoEngine], StorageAdapter],
    profile: str = "default",
    config_manager: Optional[ConfigManager] = None,
    console: Optional[Console] = None,
) -> VaultService:
    """Assemble a :class:`VaultService` from the profile's configuration.

    Example:
        >>> sessions = StaticSessionProvider(token)
        >>> service = build_vault_service(
        ...     lambda engine: DriveStorageAdapter(sessions, engine)
        ... )
        >>> await service.unlock(passphrase)
        >>> outcome = await service.pull_all()
    """
    config_manager = config_manager or get_config_manager(profile)
    config = config_manager.config
    session = PassphraseSession(
        validator=make_validator(config.passphrase.min_length, config.passphrase.min_score),
        kdf_params=config.kdf.to_params(),
        idle_timeout=config.session.idle_timeout,
    )
    engine = CryptoEngine(session)
    return VaultService(
        session,
        engine,
        storage_factory(engine),
        config_manager,
        console=console,
    )
