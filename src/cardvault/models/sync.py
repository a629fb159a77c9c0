"""Sync outcome models.

A reconciliation pass never suppresses a per-item failure: every item
produces an :class:`ItemResult`, and the pass folds them into one
:class:`SyncOutcome`.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from enum import Enum

from cardvault.models.crypto.exceptions import CardVaultError, FailureKind


class SyncDirection(str, Enum):
    """Sync operation direction."""

    PUSH = "push"
    PULL = "pull"
    RESET = "reset"


class PassState(str, Enum):
    """Lifecycle of the reconciler."""

    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


class ItemStatus(str, Enum):
    """What happened to a single item during a pass."""

    PULLED = "pulled"
    CREATED = "created"
    UPDATED = "updated"
    UNCHANGED = "unchanged"
    DELETED = "deleted"
    FAILED = "failed"


@dataclass(frozen=True)
class ItemResult:
    """Per-item result of a pass: success, or a classified failure."""

    record_id: str
    status: ItemStatus
    failure: FailureKind | None = None
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ItemStatus.FAILED

    @classmethod
    def succeeded(cls, record_id: str, status: ItemStatus) -> "ItemResult":
        return cls(record_id=record_id, status=status)

    @classmethod
    def failed(cls, record_id: str, error: CardVaultError) -> "ItemResult":
        return cls(
            record_id=record_id,
            status=ItemStatus.FAILED,
            failure=error.kind,
            message=str(error),
        )

    @classmethod
    def cancelled(cls, record_id: str) -> "ItemResult":
        return cls(
            record_id=record_id,
            status=ItemStatus.FAILED,
            failure=FailureKind.CANCELLED,
            message="Pass cancelled before this item started",
        )


@dataclass
class SyncOutcome:
    """Aggregated report of one reconciliation pass."""

    direction: SyncDirection
    results: list[ItemResult] = field(default_factory=list)
    committed: bool = False
    cancelled: bool = False
    error: FailureKind | None = None
    error_message: str | None = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))
    finished_at: datetime | None = None

    @property
    def success(self) -> bool:
        """True when the pass ran to completion without any item failing."""
        return self.error is None and not self.cancelled and not self.failures

    @property
    def failures(self) -> list[ItemResult]:
        return [r for r in self.results if not r.ok]

    @property
    def failed_ids(self) -> list[str]:
        return [r.record_id for r in self.failures]

    @property
    def duration(self) -> float:
        if self.finished_at is None:
            return 0.0
        return (self.finished_at - self.started_at).total_seconds()

    def count(self, status: ItemStatus) -> int:
        return sum(1 for r in self.results if r.status is status)

    def finish(self) -> "SyncOutcome":
        self.finished_at = datetime.now(UTC)
        return self

    def summary(self) -> dict[str, object]:
        """Plain-data summary, safe to persist (ids and kinds only)."""
        return {
            "direction": self.direction.value,
            "committed": self.committed,
            "cancelled": self.cancelled,
            "error": self.error.value if self.error else None,
            "counts": {
                status.value: self.count(status)
                for status in ItemStatus
                if self.count(status)
            },
            "failed": {r.record_id: r.failure.value for r in self.failures if r.failure},
            "finished_at": self.finished_at.isoformat() if self.finished_at else None,
        }
