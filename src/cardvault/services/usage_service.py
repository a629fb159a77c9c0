"""Storage usage statistics derived from remote listing metadata."""

from __future__ import annotations

from dataclasses import dataclass

from cardvault.adapters.storage import StorageAdapter, StorageQuota
from cardvault.models.records import VaultUsage

_UNITS = ["B", "KB", "MB", "GB", "TB"]


def format_bytes(size: int) -> str:
    """Human-readable size using 1024-based units."""
    value = float(size)
    for unit in _UNITS[:-1]:
        if value < 1024:
            return f"{int(value)} B" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} {_UNITS[-1]}"


@dataclass(frozen=True)
class UsageReport:
    """Vault usage as shown to the user."""

    usage: VaultUsage
    quota: StorageQuota | None = None

    @property
    def total_size(self) -> str:
        return format_bytes(self.usage.total_bytes)

    @property
    def average_card_size(self) -> int:
        """Mean bytes per card, images included."""
        if not self.usage.record_count:
            return 0
        return self.usage.total_bytes // self.usage.record_count

    @property
    def quota_fraction(self) -> float | None:
        """Share of the account quota the vault occupies, when known."""
        if self.quota is None or not self.quota.limit:
            return None
        return self.usage.total_bytes / self.quota.limit

    def summary(self) -> str:
        cards = self.usage.record_count
        images = self.usage.asset_count
        text = (
            f"{cards} card{'s' if cards != 1 else ''}, "
            f"{images} image{'s' if images != 1 else ''}, {self.total_size}"
        )
        if self.quota is not None and self.quota.limit:
            text += f" of {format_bytes(self.quota.limit)} quota"
        return text


class UsageAccountant:
    """Builds usage reports from storage metadata; never decrypts anything."""

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def usage(self) -> VaultUsage:
        return await self.storage.usage()

    async def report(self, include_quota: bool = False) -> UsageReport:
        usage = await self.storage.usage()
        quota = await self.storage.quota() if include_quota else None
        return UsageReport(usage=usage, quota=quota)
