"""Tally Cache: Durable (tier-2) key-value stores."""

from .memory import MemoryKVStore
from .null import NullKVStore
from .sqlite import SQLiteKVStore
from .redis import RedisKVStore

__all__ = ["MemoryKVStore", "NullKVStore", "SQLiteKVStore", "RedisKVStore"]
