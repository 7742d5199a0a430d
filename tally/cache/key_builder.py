"""
Tally Cache: Query key derivation.

Deterministic, collision-free keys for (query, params) pairs.

Pattern: ``{normalized query}:{json params}``

Example::

    derive_key("SELECT *  FROM expenses\\n WHERE id = ?", [7])
    # 'SELECT * FROM expenses WHERE id = ?:[7]'

Whitespace in the query is collapsed so formatting differences do not
split the cache; parameter order is preserved because positional
parameters bind by position.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional, Sequence

_WHITESPACE_RE = re.compile(r"\s+")


def normalize_query(query: str) -> str:
    """Collapse whitespace runs to a single space and trim both ends."""
    return _WHITESPACE_RE.sub(" ", str(query)).strip()


def serialize_params(params: Optional[Sequence[Any]] = None) -> str:
    """
    Canonical, order-preserving encoding of bound parameters.

    JSON keeps ``1`` and ``"1"`` apart; values JSON cannot encode
    (dates, decimals) fall back to ``str()``.
    """
    if params is None:
        params = ()
    return json.dumps(list(params), default=str, ensure_ascii=False, separators=(",", ":"))


def derive_key(query: str, params: Optional[Sequence[Any]] = None) -> str:
    """Build the cache key for a query and its bound parameters."""
    return f"{normalize_query(query)}:{serialize_params(params)}"


class QueryKeyBuilder:
    """
    Key builder with an optional namespace prefix.

    Namespaced keys let callers group related queries (for example by
    table) so ``invalidate_pattern("expenses")`` reaches all of them.
    """

    def __init__(self, namespace: str = ""):
        self._namespace = namespace

    def build(self, query: str, params: Optional[Sequence[Any]] = None) -> str:
        key = derive_key(query, params)
        if self._namespace:
            return f"{self._namespace}:{key}"
        return key
