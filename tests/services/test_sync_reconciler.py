"""Tests for SyncReconciler pull/push passes over the in-memory store."""

from __future__ import annotations

import asyncio
import io
from datetime import UTC, datetime
from unittest.mock import patch

import pytest
from rich.console import Console

from cardvault.models.crypto.exceptions import (
    FailureKind,
    NetworkFailure,
    SyncAlreadyInProgress,
)
from cardvault.models.records import RecordKind
from cardvault.models.sync import ItemStatus, PassState
from cardvault.services.sync_service import SyncReconciler


@pytest.fixture
def reconciler(storage, engine) -> SyncReconciler:
    return SyncReconciler(storage, engine, max_concurrency=2, item_timeout=5)


def _remote_records(storage) -> set[str]:
    return {
        rid
        for rid, (_, info) in storage.objects.items()
        if info.properties.get("kind") == RecordKind.RECORD.value
    }


def _fetch_wrapper(storage, hook):
    """Patch storage.fetch so ``hook(remote_id)`` runs before the real fetch."""
    original = storage.fetch

    async def fetch(remote_id):
        await hook(remote_id)
        return await original(remote_id)

    return patch.object(storage, "fetch", side_effect=fetch)


@pytest.fixture
def three_cards(make_card):
    return [
        make_card(card_id="A", nickname="Alpha", images=1),
        make_card(card_id="B", nickname="Bravo"),
        make_card(card_id="C", nickname="Charlie", images=2),
    ]


class TestPush:
    @pytest.mark.asyncio
    async def test_push_creates_every_card(self, reconciler, storage, key, three_cards):
        outcome = await reconciler.push_all(three_cards, key)

        assert outcome.success
        assert outcome.committed
        assert outcome.count(ItemStatus.CREATED) == 3
        assert _remote_records(storage) == {"A", "B", "C"}
        assert reconciler.cards == tuple(three_cards)
        assert reconciler.state is PassState.IDLE

    @pytest.mark.asyncio
    async def test_push_twice_is_idempotent(self, reconciler, storage, key, three_cards):
        await reconciler.push_all(three_cards, key)
        before = storage.snapshot()

        outcome = await reconciler.push_all(three_cards, key)

        assert outcome.count(ItemStatus.UNCHANGED) == 3
        assert storage.snapshot() == before

    @pytest.mark.asyncio
    async def test_changed_card_is_updated(self, reconciler, key, three_cards):
        await reconciler.push_all(three_cards, key)
        edited = [three_cards[0].model_copy(update={"nickname": "Renamed"}), *three_cards[1:]]

        outcome = await reconciler.push_all(edited, key)

        assert outcome.count(ItemStatus.UPDATED) == 1
        assert outcome.count(ItemStatus.UNCHANGED) == 2

    @pytest.mark.asyncio
    async def test_missing_local_cards_deleted_remotely(
        self, reconciler, storage, key, three_cards
    ):
        await reconciler.push_all(three_cards, key)
        a, b, c = three_cards

        outcome = await reconciler.push_all([a, c], key)

        assert [r.record_id for r in outcome.results if r.status is ItemStatus.DELETED] == ["B"]
        assert _remote_records(storage) == {"A", "C"}
        assert {info.properties["card_id"] for _, info in storage.objects.values()} == {"A", "C"}

    @pytest.mark.asyncio
    async def test_orphaned_assets_removed(self, reconciler, storage, key, make_card):
        await storage._write_object(
            "ghost/img-0.0000000000000000", b"{}", {"kind": "asset", "card_id": "ghost"}
        )
        outcome = await reconciler.push_all([make_card(card_id="A")], key)

        assert outcome.count(ItemStatus.DELETED) == 1
        assert _remote_records(storage) == {"A"}
        assert len(storage.objects) == 1

    @pytest.mark.asyncio
    async def test_push_empty_collection_clears_remote(self, reconciler, storage, key, three_cards):
        await reconciler.push_all(three_cards, key)
        outcome = await reconciler.push_all([], key)
        assert outcome.count(ItemStatus.DELETED) == 3
        assert storage.objects == {}

    @pytest.mark.asyncio
    async def test_store_failure_is_reported_per_item(
        self, reconciler, storage, key, three_cards
    ):
        original = storage.store

        async def store(card, key, existing_assets=None):
            if card.id == "B":
                raise NetworkFailure("connection reset")
            return await original(card, key, existing_assets=existing_assets)

        with patch.object(storage, "store", side_effect=store):
            outcome = await reconciler.push_all(three_cards, key)

        assert outcome.failed_ids == ["B"]
        assert outcome.failures[0].failure is FailureKind.NETWORK_FAILURE
        assert outcome.count(ItemStatus.CREATED) == 2
        assert _remote_records(storage) == {"A", "C"}

    @pytest.mark.asyncio
    async def test_stale_asset_cleanup_failure_keeps_update(
        self, reconciler, storage, engine, key, make_card
    ):
        card = make_card(card_id="A", images=1)
        await reconciler.push_all([card], key)
        old_assets = set(storage.objects) - {"A"}
        old_record = storage.objects["A"][0]

        rescanned = card.images[0].model_copy(update={"data": b"rescanned"})
        edited = card.model_copy(update={"nickname": "Renamed", "images": (rescanned,)})
        with patch.object(
            storage, "_delete_object", side_effect=NetworkFailure("connection reset")
        ):
            outcome = await reconciler.push_all([edited], key)

        assert outcome.success
        assert outcome.count(ItemStatus.UPDATED) == 1
        assert storage.objects["A"][0] != old_record
        assert old_assets <= set(storage.objects)

        # Leftovers go on the next push
        outcome = await reconciler.push_all([edited], key)

        assert outcome.success
        assert set(storage.objects) - {"A"} == engine.seal_card(edited, key).asset_ids
        await reconciler.pull_all(key)
        assert reconciler.cards == (edited,)

    @pytest.mark.asyncio
    async def test_duplicate_ids_rejected(self, reconciler, key, make_card):
        card = make_card(card_id="dup")
        with pytest.raises(ValueError):
            await reconciler.push_all([card, card], key)
        assert reconciler.state is PassState.IDLE


class TestPull:
    @pytest.mark.asyncio
    async def test_pull_restores_pushed_cards(self, storage, engine, key, three_cards):
        await SyncReconciler(storage, engine).push_all(three_cards, key)

        fresh = SyncReconciler(storage, engine)
        outcome = await fresh.pull_all(key)

        assert outcome.success and outcome.committed
        assert outcome.count(ItemStatus.PULLED) == 3
        assert fresh.cards == tuple(three_cards)

    @pytest.mark.asyncio
    async def test_pull_orders_by_added_at(self, storage, engine, key, make_card):
        first = make_card(card_id="zzz")
        second = make_card(card_id="aaa")
        await SyncReconciler(storage, engine).push_all([second, first], key)

        fresh = SyncReconciler(storage, engine)
        await fresh.pull_all(key)

        assert [c.id for c in fresh.cards] == ["zzz", "aaa"]

    @pytest.mark.asyncio
    async def test_pull_orders_naive_and_aware_timestamps(
        self, storage, engine, key, make_card
    ):
        legacy = make_card(card_id="A", added_at=datetime(2025, 1, 1))
        recent = make_card(card_id="B")
        await SyncReconciler(storage, engine).push_all([recent, legacy], key)

        fresh = SyncReconciler(storage, engine)
        outcome = await fresh.pull_all(key)

        assert outcome.success and outcome.committed
        assert [c.id for c in fresh.cards] == ["A", "B"]
        assert fresh.cards[0].added_at == datetime(2025, 1, 1, tzinfo=UTC)

    @pytest.mark.asyncio
    async def test_pull_then_push_is_a_fixed_point(self, storage, engine, key, three_cards):
        await SyncReconciler(storage, engine).push_all(three_cards, key)
        before = storage.snapshot()

        fresh = SyncReconciler(storage, engine)
        await fresh.pull_all(key)
        outcome = await fresh.push_all(fresh.cards, key)

        assert outcome.count(ItemStatus.UNCHANGED) == 3
        assert storage.snapshot() == before

    @pytest.mark.asyncio
    async def test_partial_failure_commits_the_rest(self, reconciler, storage, key, three_cards):
        await reconciler.push_all(three_cards, key)
        reconciler.clear()

        async def hook(remote_id):
            if remote_id == "B":
                raise NetworkFailure("timeout talking to store")

        with _fetch_wrapper(storage, hook):
            outcome = await reconciler.pull_all(key)

        assert not outcome.success
        assert outcome.committed
        assert outcome.failed_ids == ["B"]
        assert outcome.failures[0].failure is FailureKind.NETWORK_FAILURE
        assert [c.id for c in reconciler.cards] == ["A", "C"]

    @pytest.mark.asyncio
    async def test_record_under_foreign_key_fails_authentication(
        self, reconciler, storage, session, key, three_cards
    ):
        a, b, c = three_cards
        await reconciler.push_all([a, c], key)
        foreign = session.derive(b"\x09" * 32)
        await storage.store(b, foreign)

        outcome = await reconciler.pull_all(key)

        assert outcome.committed
        assert outcome.failed_ids == ["B"]
        assert outcome.failures[0].failure is FailureKind.AUTHENTICATION_FAILED
        assert [card.id for card in reconciler.cards] == ["A", "C"]

    @pytest.mark.asyncio
    async def test_wrong_key_leaves_cache_untouched(
        self, reconciler, session, key, three_cards
    ):
        await reconciler.push_all(three_cards, key)
        wrong = session.derive(b"\x05" * 32)

        outcome = await reconciler.pull_all(wrong)

        assert not outcome.committed
        assert outcome.error is FailureKind.AUTHENTICATION_FAILED
        assert reconciler.cards == tuple(three_cards)
        assert reconciler.state is PassState.FAILED

    @pytest.mark.asyncio
    async def test_listing_failure_leaves_cache_untouched(
        self, reconciler, sessions, key, three_cards
    ):
        await reconciler.push_all(three_cards, key)
        sessions.sign_out()

        outcome = await reconciler.pull_all(key)

        assert outcome.error is FailureKind.NOT_SIGNED_IN
        assert not outcome.committed
        assert reconciler.cards == tuple(three_cards)

    @pytest.mark.asyncio
    async def test_empty_vault_pulls_nothing(self, reconciler, key):
        outcome = await reconciler.pull_all(key)
        assert outcome.success and outcome.committed
        assert reconciler.cards == ()

    @pytest.mark.asyncio
    async def test_slow_item_times_out(self, storage, engine, key, three_cards):
        await SyncReconciler(storage, engine).push_all(three_cards, key)
        reconciler = SyncReconciler(storage, engine, item_timeout=0.05)

        async def hook(remote_id):
            if remote_id == "C":
                await asyncio.Event().wait()

        with _fetch_wrapper(storage, hook):
            outcome = await reconciler.pull_all(key)

        assert outcome.failed_ids == ["C"]
        assert outcome.failures[0].failure is FailureKind.NETWORK_FAILURE
        assert "Timed out" in outcome.failures[0].message
        assert [c.id for c in reconciler.cards] == ["A", "B"]

    @pytest.mark.asyncio
    async def test_concurrency_is_bounded(self, storage, engine, key, make_card):
        cards = [make_card() for _ in range(8)]
        await SyncReconciler(storage, engine).push_all(cards, key)
        reconciler = SyncReconciler(storage, engine, max_concurrency=2)
        in_flight = {"now": 0, "peak": 0}

        async def hook(remote_id):
            in_flight["now"] += 1
            in_flight["peak"] = max(in_flight["peak"], in_flight["now"])
            await asyncio.sleep(0.01)
            in_flight["now"] -= 1

        with _fetch_wrapper(storage, hook):
            outcome = await reconciler.pull_all(key)

        assert outcome.success
        assert in_flight["peak"] <= 2


class TestWipe:
    @pytest.mark.asyncio
    async def test_wipe_removes_records_and_orphaned_assets(
        self, reconciler, storage, key, three_cards
    ):
        await reconciler.push_all(three_cards, key)
        await storage._write_object(
            "ghost/img-0.0000000000000000", b"{}", {"kind": "asset", "card_id": "ghost"}
        )

        outcome = await reconciler.wipe_all()

        assert outcome.committed
        assert [r.record_id for r in outcome.results] == ["A", "B", "C", "ghost"]
        assert storage.objects == {}
        assert reconciler.cards == ()

    @pytest.mark.asyncio
    async def test_cancelled_wipe_keeps_cache(self, storage, engine, key, three_cards):
        reconciler = SyncReconciler(storage, engine, max_concurrency=1)
        await reconciler.push_all(three_cards, key)
        original = storage.remove

        async def remove(remote_id, assets=None):
            reconciler.cancel()
            await original(remote_id, assets=assets)

        with patch.object(storage, "remove", side_effect=remove):
            outcome = await reconciler.wipe_all()

        assert outcome.cancelled
        assert not outcome.committed
        assert _remote_records(storage) == {"B", "C"}
        assert reconciler.cards == tuple(three_cards)


class TestPassControl:
    @pytest.mark.asyncio
    async def test_second_pass_rejected_while_running(
        self, reconciler, storage, key, three_cards
    ):
        await reconciler.push_all(three_cards, key)
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def hook(remote_id):
            entered.set()
            await gate.wait()

        with _fetch_wrapper(storage, hook):
            task = asyncio.create_task(reconciler.pull_all(key))
            await entered.wait()
            assert reconciler.running

            with pytest.raises(SyncAlreadyInProgress):
                await reconciler.pull_all(key)
            with pytest.raises(SyncAlreadyInProgress):
                await reconciler.push_all([], key)

            gate.set()
            outcome = await task

        assert outcome.success
        assert reconciler.state is PassState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_stops_before_next_item(self, storage, engine, key, three_cards):
        await SyncReconciler(storage, engine).push_all(three_cards, key)
        reconciler = SyncReconciler(storage, engine, max_concurrency=1)
        gate = asyncio.Event()
        entered = asyncio.Event()

        async def hook(remote_id):
            entered.set()
            await gate.wait()

        with _fetch_wrapper(storage, hook):
            task = asyncio.create_task(reconciler.pull_all(key))
            await entered.wait()
            reconciler.cancel()
            gate.set()
            outcome = await task

        assert outcome.cancelled
        assert not outcome.committed
        assert outcome.count(ItemStatus.PULLED) == 1
        assert [r.failure for r in outcome.failures] == [FailureKind.CANCELLED] * 2
        assert reconciler.cards == ()
        assert reconciler.state is PassState.IDLE

    @pytest.mark.asyncio
    async def test_cancel_when_idle_is_noop(self, reconciler, key, three_cards):
        reconciler.cancel()
        outcome = await reconciler.push_all(three_cards, key)
        assert not outcome.cancelled

    @pytest.mark.asyncio
    async def test_new_pass_allowed_after_failure(self, reconciler, sessions, key):
        sessions.sign_out()
        await reconciler.pull_all(key)
        assert reconciler.state is PassState.FAILED

        sessions.sign_in("token")
        outcome = await reconciler.pull_all(key)
        assert outcome.committed

    @pytest.mark.asyncio
    async def test_progress_rendered_on_console(self, storage, engine, key, three_cards):
        console = Console(file=io.StringIO(), force_terminal=False)
        reconciler = SyncReconciler(storage, engine, console=console)
        outcome = await reconciler.push_all(three_cards, key)
        assert outcome.success

    @pytest.mark.asyncio
    async def test_last_outcome_kept(self, reconciler, key):
        outcome = await reconciler.pull_all(key)
        assert reconciler.last_outcome is outcome

    def test_invalid_concurrency(self, storage, engine):
        with pytest.raises(ValueError):
            SyncReconciler(storage, engine, max_concurrency=0)

    def test_clear_drops_cache(self, reconciler):
        reconciler._cards = ("x",)
        reconciler.clear()
        assert reconciler.cards == ()
