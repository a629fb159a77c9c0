"""Sync state manager for tracking reconciliation passes.

Keeps the last pull/push time and the last outcome summary per direction.
State is persisted in ``sync-state.json`` in the config directory and holds
only ids, counts and failure kinds.
"""

from __future__ import annotations

import json
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from platformdirs import user_config_dir

from cardvault.models.sync import SyncDirection, SyncOutcome


class SyncState:
    """Manages sync state persistence."""

    def __init__(self, config_dir: Path | None = None):
        """Initialize sync state manager.

        Args:
            config_dir: Optional config directory path. Defaults to the
                platform config dir.
        """
        if config_dir is None:
            config_dir = Path(user_config_dir("cardvault"))

        self.config_dir = Path(config_dir)
        self.state_file = self.config_dir / "sync-state.json"
        self._state: dict[str, Any] = {}
        self._load()

    @staticmethod
    def _empty() -> dict[str, Any]:
        return {"last_sync": {}, "last_outcome": {}}

    def _load(self) -> None:
        """Load sync state from file."""
        if not self.state_file.exists():
            self._state = self._empty()
            return

        try:
            with open(self.state_file, encoding="utf-8") as f:
                self._state = json.load(f) or self._empty()
        except (OSError, ValueError):
            # If file is corrupted, start fresh
            self._state = self._empty()
            return

        for key in ("last_sync", "last_outcome"):
            self._state.setdefault(key, {})

    def _save(self) -> None:
        """Save sync state to file."""
        self.config_dir.mkdir(parents=True, exist_ok=True)

        with open(self.state_file, "w", encoding="utf-8") as f:
            json.dump(self._state, f, indent=2)

    def get_last_sync(self, direction: SyncDirection) -> datetime | None:
        """Last committed pass in ``direction``, as an aware UTC datetime."""
        value = self._state["last_sync"].get(direction.value)
        if value is None:
            return None
        dt = datetime.fromisoformat(value.replace("Z", "+00:00"))
        if dt.tzinfo is None:
            return dt.replace(tzinfo=UTC)
        return dt

    def set_last_sync(
        self, direction: SyncDirection, timestamp: datetime | None = None
    ) -> None:
        if timestamp is None:
            timestamp = datetime.now(UTC)
        if timestamp.tzinfo is None:
            timestamp = timestamp.replace(tzinfo=UTC)
        self._state["last_sync"][direction.value] = timestamp.astimezone(UTC).isoformat()
        self._save()

    def record(self, outcome: SyncOutcome) -> None:
        """Persist an outcome summary; a committed pass also moves last_sync."""
        direction = outcome.direction.value
        self._state["last_outcome"][direction] = outcome.summary()
        if outcome.committed:
            finished = outcome.finished_at or datetime.now(UTC)
            self._state["last_sync"][direction] = finished.astimezone(UTC).isoformat()
        self._save()

    def get_last_outcome(self, direction: SyncDirection) -> dict[str, Any] | None:
        return self._state["last_outcome"].get(direction.value)

    def clear(self) -> None:
        """Forget all sync history."""
        self._state = self._empty()
        self._save()
