"""Domain models for cardvault."""

from cardvault.models.card import (
    Card,
    CardCategory,
    CardImage,
    ImageRef,
    build_card,
    parse_payload,
)
from cardvault.models.records import (
    EncryptedRecord,
    RecordKind,
    RemoteEntry,
    asset_id,
    VaultUsage,
)
from cardvault.models.setup import (
    InvalidTransition,
    PassphraseSetup,
    SetupStep,
    begin_setup,
    cancel,
    commit,
    submit_candidate,
    submit_confirmation,
)
from cardvault.models.sync import (
    ItemResult,
    ItemStatus,
    PassState,
    SyncDirection,
    SyncOutcome,
)

__all__ = [
    "Card",
    "CardCategory",
    "CardImage",
    "ImageRef",
    "build_card",
    "parse_payload",
    "EncryptedRecord",
    "RecordKind",
    "RemoteEntry",
    "asset_id",
    "VaultUsage",
    "InvalidTransition",
    "PassphraseSetup",
    "SetupStep",
    "begin_setup",
    "cancel",
    "commit",
    "submit_candidate",
    "submit_confirmation",
    "ItemResult",
    "ItemStatus",
    "PassState",
    "SyncDirection",
    "SyncOutcome",
]
