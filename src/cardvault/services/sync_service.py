"""Sync service reconciling the local card cache with the remote vault.

A pass runs in one direction at a time:

- pull: list, fetch and decrypt every remote record, then replace the local
  cache in one swap
- push: store every local card, then delete remote records with no local
  counterpart
- reset: delete every remote record and asset

Per-item failures are folded into the :class:`SyncOutcome`; the pass carries
on with the remaining items.
"""

from __future__ import annotations

import asyncio
from collections import defaultdict
from collections.abc import Awaitable, Callable, Iterator, Sequence
from contextlib import contextmanager
from typing import Any, TypeVar

from rich.console import Console
from rich.progress import BarColumn, Progress, SpinnerColumn, TextColumn

from cardvault.adapters.storage import StorageAdapter
from cardvault.crypto.engine import CryptoEngine
from cardvault.models.card import Card, build_card
from cardvault.models.crypto.exceptions import (
    CardVaultError,
    FailureKind,
    MalformedInput,
    SyncAlreadyInProgress,
)
from cardvault.models.crypto.keys import VaultKey
from cardvault.models.records import RecordKind, RemoteEntry, asset_id
from cardvault.models.sync import (
    ItemResult,
    ItemStatus,
    PassState,
    SyncDirection,
    SyncOutcome,
)
from cardvault.utils.logger import get_child_logger

logger = get_child_logger("sync")

T = TypeVar("T")


class SyncReconciler:
    """Owns the local card cache and runs pull/push passes against storage."""

    def __init__(
        self,
        storage: StorageAdapter,
        engine: CryptoEngine,
        max_concurrency: int = 4,
        item_timeout: float = 60.0,
        console: Console | None = None,
    ):
        """Initialize the reconciler.

        Args:
            storage: Remote storage adapter
            engine: Crypto engine bound to the passphrase session
            max_concurrency: Upper bound on concurrent per-item operations
            item_timeout: Seconds before a single item is reported as failed
            console: Optional Rich console; when given, passes show progress
        """
        if max_concurrency < 1:
            raise ValueError("max_concurrency must be at least 1")
        self.storage = storage
        self.engine = engine
        self.max_concurrency = max_concurrency
        self.item_timeout = item_timeout
        self.console = console

        self._cards: tuple[Card, ...] = ()
        self._state = PassState.IDLE
        self._cancel_requested = False
        self.last_outcome: SyncOutcome | None = None

    @property
    def state(self) -> PassState:
        return self._state

    @property
    def running(self) -> bool:
        return self._state is PassState.RUNNING

    @property
    def cards(self) -> tuple[Card, ...]:
        """Immutable snapshot of the local cache."""
        return self._cards

    def cancel(self) -> None:
        """Stop the running pass before its next item starts."""
        if self.running:
            self._cancel_requested = True

    def clear(self) -> None:
        """Drop the local cache (e.g. when the vault is locked)."""
        self._cards = ()

    # ------------------------------------------------------------------
    # Pull
    # ------------------------------------------------------------------

    async def pull_all(self, key: VaultKey) -> SyncOutcome:
        """Replace the local cache with every remote record that decrypts.

        Records that fail to fetch or decrypt are left out of the new cache
        and reported in the outcome. The cache is left untouched when the
        listing fails, when the pass is cancelled, or when no record at all
        authenticates (a wrong key).
        """
        self._enter()
        outcome = SyncOutcome(direction=SyncDirection.PULL)
        logger.info("Pull started")
        try:
            entries = await self._list_remote(outcome)
            if entries is None:
                return self._finish(outcome, PassState.FAILED)

            records = [e for e in entries if e.kind is RecordKind.RECORD]
            results = await self._run_items(
                "Pulling cards",
                [(e.remote_id, self._pull_one_factory(e, key)) for e in records],
            )

            cards = []
            for result, card in results:
                outcome.results.append(result)
                if card is not None:
                    cards.append(card)

            outcome.cancelled = self._cancel_requested
            if outcome.cancelled:
                return self._finish(outcome, PassState.IDLE)

            if records and not cards and all(
                r.failure is FailureKind.AUTHENTICATION_FAILED for r in outcome.failures
            ):
                outcome.error = FailureKind.AUTHENTICATION_FAILED
                outcome.error_message = "No remote record could be authenticated"
                return self._finish(outcome, PassState.FAILED)

            cards.sort(key=lambda c: (c.added_at, c.id))
            self._cards = tuple(cards)
            outcome.committed = True
            return self._finish(outcome, PassState.IDLE)
        except BaseException:
            self._state = PassState.FAILED
            raise

    def _pull_one_factory(
        self, entry: RemoteEntry, key: VaultKey
    ) -> Callable[[], Awaitable[tuple[ItemStatus, Card]]]:
        async def pull_one() -> tuple[ItemStatus, Card]:
            return ItemStatus.PULLED, await self._load_card(entry, key)

        return pull_one

    async def _load_card(self, entry: RemoteEntry, key: VaultKey) -> Card:
        record = await self.storage.fetch(entry.remote_id)
        fields, refs = self.engine.open_card_payload(key, record)
        images = []
        for ref in refs:
            asset = await self.storage.fetch(asset_id(entry.remote_id, ref.id, ref.sha256))
            images.append(self.engine.open_asset(key, asset, ref))
        card = build_card(fields, images)
        if card.id != entry.card_id:
            raise MalformedInput(f"Record {entry.remote_id} is filed under another card")
        return card

    # ------------------------------------------------------------------
    # Push
    # ------------------------------------------------------------------

    async def push_all(self, local_cards: Sequence[Card], key: VaultKey) -> SyncOutcome:
        """Make the remote vault match ``local_cards``.

        All stores complete before any delete starts. Cards whose remote
        fingerprint and asset set already match are skipped, so pushing an
        unchanged collection twice has no remote side effects.

        Raises:
            ValueError: Two local cards share an id.
            SyncAlreadyInProgress: Another pass is running.
        """
        ids = [card.id for card in local_cards]
        if len(set(ids)) != len(ids):
            raise ValueError("Local cards must have unique ids")

        self._enter()
        outcome = SyncOutcome(direction=SyncDirection.PUSH)
        logger.info("Push started (%d local cards)", len(ids))
        try:
            entries = await self._list_remote(outcome)
            if entries is None:
                return self._finish(outcome, PassState.FAILED)

            records: dict[str, RemoteEntry] = {}
            assets: dict[str, set[str]] = defaultdict(set)
            for entry in entries:
                if entry.kind is RecordKind.RECORD:
                    records[entry.card_id] = entry
                else:
                    assets[entry.card_id].add(entry.remote_id)

            stored = await self._run_items(
                "Uploading cards",
                [
                    (
                        card.id,
                        self._push_one_factory(
                            card, key, records.get(card.id), assets.get(card.id, set())
                        ),
                    )
                    for card in local_cards
                ],
            )
            outcome.results.extend(result for result, _ in stored)

            orphans = sorted((set(records) | set(assets)) - set(ids))
            removed = await self._run_items(
                "Removing deleted cards",
                [
                    (card_id, self._remove_one_factory(card_id, assets.get(card_id, set())))
                    for card_id in orphans
                ],
            )
            outcome.results.extend(result for result, _ in removed)

            outcome.cancelled = self._cancel_requested
            if not outcome.cancelled:
                self._cards = tuple(local_cards)
                outcome.committed = True
            return self._finish(outcome, PassState.IDLE)
        except BaseException:
            self._state = PassState.FAILED
            raise

    def _push_one_factory(
        self,
        card: Card,
        key: VaultKey,
        remote: RemoteEntry | None,
        remote_assets: set[str],
    ) -> Callable[[], Awaitable[tuple[ItemStatus, None]]]:
        async def push_one() -> tuple[ItemStatus, None]:
            expected = {asset_id(card.id, img.id, img.digest) for img in card.images}
            if (
                remote is not None
                and remote.fingerprint == self.engine.fingerprint(key, card)
                and remote_assets == expected
            ):
                return ItemStatus.UNCHANGED, None
            await self.storage.store(card, key, existing_assets=remote_assets)
            return (ItemStatus.CREATED if remote is None else ItemStatus.UPDATED), None

        return push_one

    def _remove_one_factory(
        self, card_id: str, remote_assets: set[str]
    ) -> Callable[[], Awaitable[tuple[ItemStatus, None]]]:
        async def remove_one() -> tuple[ItemStatus, None]:
            await self.storage.remove(card_id, assets=remote_assets)
            return ItemStatus.DELETED, None

        return remove_one

    # ------------------------------------------------------------------
    # Reset
    # ------------------------------------------------------------------

    async def wipe_all(self) -> SyncOutcome:
        """Delete every remote record and asset of the vault.

        Needs no key. The outcome is committed, and the local cache dropped,
        only when every card was removed.

        Raises:
            SyncAlreadyInProgress: Another pass is running.
        """
        self._enter()
        outcome = SyncOutcome(direction=SyncDirection.RESET)
        logger.info("Reset started")
        try:
            entries = await self._list_remote(outcome)
            if entries is None:
                return self._finish(outcome, PassState.FAILED)

            card_ids: set[str] = set()
            assets: dict[str, set[str]] = defaultdict(set)
            for entry in entries:
                card_ids.add(entry.card_id)
                if entry.kind is RecordKind.ASSET:
                    assets[entry.card_id].add(entry.remote_id)

            removed = await self._run_items(
                "Deleting vault",
                [
                    (card_id, self._remove_one_factory(card_id, assets.get(card_id, set())))
                    for card_id in sorted(card_ids)
                ],
            )
            outcome.results.extend(result for result, _ in removed)

            outcome.cancelled = self._cancel_requested
            if not outcome.cancelled and not outcome.failures:
                self._cards = ()
                outcome.committed = True
            return self._finish(outcome, PassState.IDLE)
        except BaseException:
            self._state = PassState.FAILED
            raise

    # ------------------------------------------------------------------
    # Pass machinery
    # ------------------------------------------------------------------

    def _enter(self) -> None:
        if self._state is PassState.RUNNING:
            raise SyncAlreadyInProgress()
        self._state = PassState.RUNNING
        self._cancel_requested = False

    def _finish(self, outcome: SyncOutcome, state: PassState) -> SyncOutcome:
        outcome.finish()
        self._state = state
        self._cancel_requested = False
        self.last_outcome = outcome
        for failure in outcome.failures:
            logger.warning(
                "%s failed for %s: %s",
                outcome.direction.value,
                failure.record_id,
                failure.failure.value if failure.failure else "unknown",
            )
        logger.info(
            "%s finished in %.2fs: committed=%s cancelled=%s failures=%d error=%s",
            outcome.direction.value.capitalize(),
            outcome.duration,
            outcome.committed,
            outcome.cancelled,
            len(outcome.failures),
            outcome.error.value if outcome.error else None,
        )
        return outcome

    async def _list_remote(self, outcome: SyncOutcome) -> list[RemoteEntry] | None:
        try:
            return [entry async for entry in self.storage.list()]
        except CardVaultError as e:
            outcome.error = e.kind
            outcome.error_message = str(e)
            return None

    async def _run_items(
        self,
        description: str,
        items: list[tuple[str, Callable[[], Awaitable[tuple[ItemStatus, T]]]]],
    ) -> list[tuple[ItemResult, T | None]]:
        """Run per-item operations with bounded concurrency.

        Results come back in input order. The cancel flag is checked before
        each item starts; an item already in flight finishes on its own.
        """
        if not items:
            return []
        semaphore = asyncio.Semaphore(self.max_concurrency)

        with self._progress(description, len(items)) as advance:

            async def run(
                item_id: str, operation: Callable[[], Awaitable[tuple[ItemStatus, T]]]
            ) -> tuple[ItemResult, T | None]:
                async with semaphore:
                    try:
                        if self._cancel_requested:
                            return ItemResult.cancelled(item_id), None
                        try:
                            status, value = await asyncio.wait_for(
                                operation(), timeout=self.item_timeout
                            )
                        except TimeoutError:
                            return (
                                ItemResult(
                                    record_id=item_id,
                                    status=ItemStatus.FAILED,
                                    failure=FailureKind.NETWORK_FAILURE,
                                    message=f"Timed out after {self.item_timeout:g}s",
                                ),
                                None,
                            )
                        except CardVaultError as e:
                            return ItemResult.failed(item_id, e), None
                        return ItemResult.succeeded(item_id, status), value
                    finally:
                        advance()

            tasks = [asyncio.ensure_future(run(item_id, op)) for item_id, op in items]
            try:
                return list(await asyncio.gather(*tasks))
            except BaseException:
                for task in tasks:
                    task.cancel()
                raise

    @contextmanager
    def _progress(self, description: str, total: int) -> Iterator[Callable[[], Any]]:
        if self.console is None:
            yield lambda: None
            return
        with Progress(
            SpinnerColumn(),
            TextColumn("[progress.description]{task.description}"),
            BarColumn(),
            TextColumn("{task.completed}/{task.total}"),
            console=self.console,
            transient=True,
        ) as progress:
            task = progress.add_task(description, total=total)
            yield lambda: progress.advance(task)
