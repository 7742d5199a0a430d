"""
Tests for cache key derivation.
"""

from __future__ import annotations

import datetime
import subprocess
import sys

from tally.cache.key_builder import (
    QueryKeyBuilder,
    derive_key,
    normalize_query,
    serialize_params,
)


class TestNormalizeQuery:
    def test_collapses_whitespace_runs(self):
        assert normalize_query("SELECT  *\n\tFROM   expenses") == "SELECT * FROM expenses"

    def test_trims_ends(self):
        assert normalize_query("  SELECT 1 \n") == "SELECT 1"

    def test_case_is_kept(self):
        assert normalize_query("select * FROM Expenses") == "select * FROM Expenses"


class TestSerializeParams:
    def test_none_is_empty_list(self):
        assert serialize_params(None) == "[]"

    def test_order_preserved(self):
        assert serialize_params([1, "a", None]) == '[1,"a",null]'

    def test_int_and_str_differ(self):
        assert serialize_params([1]) != serialize_params(["1"])

    def test_non_json_values_use_str(self):
        assert serialize_params([datetime.date(2024, 5, 1)]) == '["2024-05-01"]'

    def test_tuple_same_as_list(self):
        assert serialize_params((1, 2)) == serialize_params([1, 2])


class TestDeriveKey:
    def test_format(self):
        assert derive_key("SELECT * FROM expenses WHERE id = ?", [7]) == (
            "SELECT * FROM expenses WHERE id = ?:[7]"
        )

    def test_deterministic(self):
        query = "SELECT * FROM expenses WHERE month = ? AND category_id = ?"
        keys = {derive_key(query, ["2024-05", 3]) for _ in range(50)}
        assert len(keys) == 1

    def test_stable_across_processes(self):
        query = "SELECT * FROM expenses WHERE month = ?"
        code = (
            "from tally.cache.key_builder import derive_key; "
            f"print(derive_key({query!r}, ['2024-05', 1.5, None]))"
        )
        out = subprocess.run(
            [sys.executable, "-c", code], capture_output=True, text=True, check=True
        ).stdout.strip()
        assert out == derive_key(query, ["2024-05", 1.5, None])

    def test_whitespace_only_difference_same_key(self):
        a = derive_key("SELECT *\n  FROM expenses\n  WHERE id = ?", [1])
        b = derive_key("SELECT * FROM expenses WHERE id = ?", [1])
        assert a == b

    def test_param_order_matters(self):
        query = "SELECT * FROM expenses WHERE amount BETWEEN ? AND ?"
        assert derive_key(query, [10, 20]) != derive_key(query, [20, 10])

    def test_no_params_equals_empty_params(self):
        assert derive_key("SELECT 1") == derive_key("SELECT 1", [])

    def test_key_contains_table_name(self):
        assert "expenses" in derive_key("SELECT * FROM expenses")


class TestQueryKeyBuilder:
    def test_without_namespace(self):
        assert QueryKeyBuilder().build("SELECT 1", [2]) == derive_key("SELECT 1", [2])

    def test_with_namespace(self):
        builder = QueryKeyBuilder("dashboard")
        assert builder.build("SELECT 1") == "dashboard:SELECT 1:[]"
