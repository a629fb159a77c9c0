"""cardvault - passphrase-gated encrypted card vault with remote sync."""

__version__ = "0.1.0"
