"""
Tally Cache: Serializer for persisted entries.

Entries are stored in the durable tier as a JSON record::

    {"value": ..., "storedAt": 1718000000.0, "ttl": 300.0}

Decoding validates the record shape; anything malformed raises
``CacheSerializationFault`` so the store can treat it as absent.
"""

from __future__ import annotations

import json
import logging
from typing import Any

from .core import CacheEntry
from ..faults import CacheSerializationFault

logger = logging.getLogger("tally.cache.serializers")


class JsonEntrySerializer:
    """
    JSON serializer producing human-readable, cross-language records.

    Handles query results made of Python primitives and containers
    (dict, list, str, int, float, bool, None). Falls back to ``str()``
    for non-serializable types.
    """

    def dumps(self, entry: CacheEntry) -> str:
        """Encode an entry as a JSON record."""
        try:
            return json.dumps(
                {"value": entry.value, "storedAt": entry.stored_at, "ttl": entry.ttl},
                default=str,
                ensure_ascii=False,
            )
        except (TypeError, ValueError, OverflowError) as e:
            logger.warning(f"JSON serialization failed for key '{entry.key}': {e}")
            raise CacheSerializationFault(entry.key, "serialize", str(e)) from e

    def loads(self, key: str, blob: Any) -> CacheEntry:
        """Decode a JSON record into an entry for ``key``."""
        try:
            if isinstance(blob, bytes):
                blob = blob.decode("utf-8")
            record = json.loads(blob)
        except (TypeError, json.JSONDecodeError, UnicodeDecodeError) as e:
            raise CacheSerializationFault(key, "deserialize", str(e)) from e

        if not isinstance(record, dict) or "value" not in record:
            raise CacheSerializationFault(key, "deserialize", "record is not an entry object")

        stored_at = record.get("storedAt")
        ttl = record.get("ttl")
        if not _is_number(stored_at) or not _is_number(ttl) or ttl <= 0:
            raise CacheSerializationFault(key, "deserialize", "missing or invalid storedAt/ttl")

        return CacheEntry(key=key, value=record["value"], stored_at=float(stored_at), ttl=float(ttl))


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)
