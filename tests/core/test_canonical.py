# tests/core/test_canonical.py
"""Tests for canonical JSON and fingerprint hashing."""

import math
from datetime import date, datetime

import pytest
from hypothesis import given
from hypothesis import strategies as st

json_values = st.recursive(
    st.none() | st.booleans() | st.integers(min_value=-(2**53) + 1, max_value=2**53 - 1) | st.text(),
    lambda children: st.lists(children, max_size=4) | st.dictionaries(st.text(), children, max_size=4),
    max_leaves=20,
)


class TestCanonicalJson:
    def test_keys_sorted_without_whitespace(self) -> None:
        from agentmanifest.core.canonical import canonical_json

        assert canonical_json({"b": 1, "a": [True, None]}) == '{"a":[true,null],"b":1}'

    def test_tuples_become_lists(self) -> None:
        from agentmanifest.core.canonical import canonical_json

        assert canonical_json({"x": (1, 2)}) == '{"x":[1,2]}'

    def test_dates_isoformat(self) -> None:
        from agentmanifest.core.canonical import canonical_json

        assert canonical_json({"d": date(2024, 1, 2)}) == '{"d":"2024-01-02"}'
        assert canonical_json([datetime(2024, 1, 2, 3, 4, 5)]) == '["2024-01-02T03:04:05"]'

    def test_sets_sorted(self) -> None:
        from agentmanifest.core.canonical import canonical_json

        assert canonical_json({"s": {"b", "a"}}) == '{"s":["a","b"]}'

    @pytest.mark.parametrize("value", [math.nan, math.inf, -math.inf])
    def test_non_finite_rejected(self, value: float) -> None:
        from agentmanifest.core.canonical import canonical_json

        with pytest.raises(ValueError, match="non-finite"):
            canonical_json({"x": value})

    def test_unsupported_type_rejected(self) -> None:
        from agentmanifest.core.canonical import canonical_json

        with pytest.raises(TypeError, match="object"):
            canonical_json({"x": object()})


class TestStableHash:
    def test_hex_digest(self) -> None:
        from agentmanifest.core.canonical import stable_hash

        digest = stable_hash({"a": 1})

        assert len(digest) == 64
        assert int(digest, 16) >= 0

    @given(value=json_values)
    def test_deterministic(self, value: object) -> None:
        from agentmanifest.core.canonical import stable_hash

        assert stable_hash(value) == stable_hash(value)

    @given(data=st.dictionaries(st.text(), st.integers(min_value=0, max_value=10**6), min_size=2, max_size=6))
    def test_insertion_order_irrelevant(self, data: dict[str, int]) -> None:
        from agentmanifest.core.canonical import stable_hash

        reversed_data = dict(reversed(list(data.items())))

        assert stable_hash(data) == stable_hash(reversed_data)
