"""Key store implementations and backend selection."""

from ..config import Settings
from .memory_store import InMemoryKeyStore
from .postgres_store import PostgresKeyStore
from .store import KeyStore


def load_key_store(settings: Settings) -> KeyStore:
    """Select the store backend named by ``KEY_STORE`` (postgres or memory)."""
    if settings.key_store == "memory":
        return InMemoryKeyStore()
    if settings.key_store == "postgres":
        return PostgresKeyStore(settings.database_url)
    raise ValueError(f"Unknown key store backend: {settings.key_store}")


__all__ = ["KeyStore", "InMemoryKeyStore", "PostgresKeyStore", "load_key_store"]
