"""Session-bound encryption for cardvault."""

from cardvault.crypto.engine import (
    CryptoEngine,
    SealedAsset,
    SealedCard,
    asset_aad,
    record_aad,
)
from cardvault.crypto.session import PassphraseSession

__all__ = [
    "CryptoEngine",
    "PassphraseSession",
    "SealedAsset",
    "SealedCard",
    "asset_aad",
    "record_aad",
]
