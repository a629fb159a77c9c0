"""Shared test fixtures and configuration.

Provides infrastructure to isolate tests from real filesystem state and to
keep key derivation cheap.
"""

from __future__ import annotations

import logging
from datetime import UTC, datetime, timedelta

import pytest

from cardvault.adapters.memory import InMemoryStorageAdapter
from cardvault.adapters.storage import StaticSessionProvider
from cardvault.config import ConfigManager, KdfConfig
from cardvault.crypto.engine import CryptoEngine
from cardvault.crypto.session import PassphraseSession
from cardvault.models.card import Card, CardCategory, CardImage
from cardvault.models.crypto.keys import KdfParams

PASSPHRASE = "Correct-Horse-42-Battery"
SALT = bytes(range(32))

# Scrypt cost low enough for unit tests
FAST_KDF = KdfParams(n=2**10, r=8, p=1)


# ---------------------------------------------------------------------------
# Filesystem isolation
# ---------------------------------------------------------------------------


@pytest.fixture(autouse=True)
def isolate_dirs(tmp_path, monkeypatch):
    """Send config, state and log files to *tmp_path* only."""
    import cardvault.config as config_mod
    import cardvault.services.sync_state as sync_state_mod
    import cardvault.utils.logger as logger_mod

    config_dir = str(tmp_path / "config")
    monkeypatch.setattr(config_mod, "user_config_dir", lambda *a, **k: config_dir)
    monkeypatch.setattr(sync_state_mod, "user_config_dir", lambda *a, **k: config_dir)
    monkeypatch.setattr(
        logger_mod, "user_log_dir", lambda *a, **k: str(tmp_path / "logs")
    )
    monkeypatch.setattr(config_mod, "_config_manager", None)
    monkeypatch.setattr(logger_mod, "_logger", None)

    yield

    app_logger = logging.getLogger("cardvault")
    for handler in list(app_logger.handlers):
        handler.close()
        app_logger.removeHandler(handler)


@pytest.fixture
def config_manager(tmp_path) -> ConfigManager:
    """ConfigManager in a temp dir with a cheap KDF."""
    manager = ConfigManager(config_dir=tmp_path / "config")
    manager.config.kdf = KdfConfig(n=FAST_KDF.n, r=FAST_KDF.r, p=FAST_KDF.p)
    manager.save_config()
    return manager


# ---------------------------------------------------------------------------
# Crypto
# ---------------------------------------------------------------------------


@pytest.fixture
def session() -> PassphraseSession:
    session = PassphraseSession(kdf_params=FAST_KDF)
    session.begin(PASSPHRASE)
    yield session
    session.end()


@pytest.fixture
def key(session):
    return session.derive(SALT)


@pytest.fixture
def engine(session) -> CryptoEngine:
    return CryptoEngine(session)


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------


@pytest.fixture
def sessions() -> StaticSessionProvider:
    return StaticSessionProvider("test-token")


@pytest.fixture
def storage(sessions, engine) -> InMemoryStorageAdapter:
    return InMemoryStorageAdapter(sessions, engine)


# ---------------------------------------------------------------------------
# Cards
# ---------------------------------------------------------------------------

_BASE_TIME = datetime(2026, 1, 1, tzinfo=UTC)


@pytest.fixture
def make_card():
    """Factory for cards with deterministic, increasing timestamps."""
    counter = {"n": 0}

    def _make(
        card_id: str | None = None,
        nickname: str = "Card",
        images: int = 0,
        **fields,
    ) -> Card:
        counter["n"] += 1
        stamp = _BASE_TIME + timedelta(minutes=counter["n"])
        data = {
            "nickname": nickname,
            "category": CardCategory.CREDIT,
            "number": "4111 1111 1111 1111",
            "cvv": "123",
            "added_at": stamp,
            "updated_at": stamp,
            "images": tuple(
                CardImage(
                    id=f"img-{i}",
                    name=f"Side {i}",
                    data=f"{nickname}-image-{i}".encode() * 10,
                    added_at=stamp,
                )
                for i in range(images)
            ),
            **fields,
        }
        if card_id is not None:
            data["id"] = card_id
        return Card(**data)

    return _make
