"""Service layer for cardvault."""

from cardvault.services.sync_service import SyncReconciler
from cardvault.services.sync_state import SyncState
from cardvault.services.usage_service import UsageAccountant, UsageReport, format_bytes
from cardvault.services.vault_service import VaultService, build_vault_service

__all__ = [
    "SyncReconciler",
    "SyncState",
    "UsageAccountant",
    "UsageReport",
    "format_bytes",
    "VaultService",
    "build_vault_service",
]
