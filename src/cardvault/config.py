"""Configuration management for cardvault.

Only non-secret settings are persisted here: cost parameters, provider
endpoints and the vault salt. The passphrase and derived keys never are.
"""

import base64
import json
from datetime import datetime
from pathlib import Path
from typing import Optional

from platformdirs import user_config_dir
from pydantic import BaseModel, Field, field_validator

from cardvault.models.crypto.keys import KdfParams


class KdfConfig(BaseModel):
    """Scrypt cost configuration."""

    n: int = Field(default=2**17)
    r: int = Field(default=8)
    p: int = Field(default=1)
    key_length: int = Field(default=32)

    @field_validator("n")
    @classmethod
    def validate_n(cls, v: int) -> int:
        """Scrypt requires a power of two greater than one."""
        if v < 2 or v & (v - 1):
            raise ValueError("n must be a power of two greater than 1")
        return v

    def to_params(self) -> KdfParams:
        return KdfParams(n=self.n, r=self.r, p=self.p, key_length=self.key_length)


class SyncConfig(BaseModel):
    """Sync configuration."""

    max_concurrency: int = Field(default=4, ge=1)
    item_timeout: float = Field(default=60.0, gt=0)


class DriveConfig(BaseModel):
    """Remote Drive storage configuration."""

    endpoint: str = Field(default="https://www.googleapis.com/drive/v3")
    upload_endpoint: str = Field(default="https://www.googleapis.com/upload/drive/v3")
    folder_name: str = Field(default="CardVault")
    timeout: int = Field(default=30)
    retry: int = Field(default=3)


class PassphraseConfig(BaseModel):
    """Passphrase strength policy."""

    min_length: int = Field(default=8)
    min_score: int = Field(default=40)


class SessionConfig(BaseModel):
    """Unlocked session settings."""

    # Seconds without use before the vault locks itself; None disables
    idle_timeout: Optional[float] = Field(default=300.0, gt=0)


class VaultConfig(BaseModel):
    """Persisted vault header. The salt is not secret."""

    salt: Optional[str] = None
    verifier: Optional[str] = None
    created_at: Optional[datetime] = None

    def salt_bytes(self) -> Optional[bytes]:
        if not self.salt:
            return None
        return base64.b64decode(self.salt)


class AppConfig(BaseModel):
    """Main configuration."""

    kdf: KdfConfig = Field(default_factory=KdfConfig)
    sync: SyncConfig = Field(default_factory=SyncConfig)
    drive: DriveConfig = Field(default_factory=DriveConfig)
    passphrase: PassphraseConfig = Field(default_factory=PassphraseConfig)
    session: SessionConfig = Field(default_factory=SessionConfig)
    vault: VaultConfig = Field(default_factory=VaultConfig)


class ConfigManager:
    """Manages cardvault configuration."""

    def __init__(self, profile: str = "default", config_dir: Optional[Path] = None):
        self.profile = profile
        self.config_dir = Path(config_dir or user_config_dir("cardvault"))
        self.config_file = self.config_dir / f"{profile}.json"

        # Ensure directories exist
        self.config_dir.mkdir(parents=True, exist_ok=True)

        self._config: Optional[AppConfig] = None

    @property
    def config(self) -> AppConfig:
        """Get the current configuration."""
        if self._config is None:
            self._config = self.load_config()
        return self._config

    def load_config(self) -> AppConfig:
        """Load configuration from file."""
        if self.config_file.exists():
            try:
                with open(self.config_file, "r", encoding="utf-8") as f:
                    data = json.load(f)
                return AppConfig(**data)
            except (OSError, ValueError):
                # If config is corrupted, return default
                return AppConfig()
        return AppConfig()

    def save_config(self, config: Optional[AppConfig] = None) -> None:
        """Save configuration to file."""
        if config is None:
            config = self.config

        with open(self.config_file, "w", encoding="utf-8") as f:
            json.dump(config.model_dump(mode="json"), f, indent=2)

    def save_salt(
        self,
        salt: bytes,
        verifier: Optional[str] = None,
        created_at: Optional[datetime] = None,
    ) -> None:
        """Persist the vault salt and key check value."""
        self.config.vault = VaultConfig(
            salt=base64.b64encode(salt).decode("ascii"),
            verifier=verifier,
            created_at=created_at,
        )
        self.save_config()

    def load_salt(self) -> Optional[bytes]:
        """Return the persisted vault salt, if one exists."""
        return self.config.vault.salt_bytes()

    def clear_vault(self) -> None:
        """Forget the vault salt and key check value."""
        self.config.vault = VaultConfig()
        self.save_config()


# Global config manager instance
_config_manager: Optional[ConfigManager] = None


def get_config_manager(profile: str = "default") -> ConfigManager:
    """Get or create the global config manager."""
    global _config_manager
    if _config_manager is None or _config_manager.profile != profile:
        _config_manager = ConfigManager(profile)
    return _config_manager
