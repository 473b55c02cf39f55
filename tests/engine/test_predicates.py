# tests/engine/test_predicates.py
"""Tests for the restricted predicate language."""

from typing import Any

import pytest
from hypothesis import given
from hypothesis import strategies as st


class RecordingQuery:
    """QueryFn double that records calls and returns a fixed count."""

    def __init__(self, count: int = 1) -> None:
        self.count = count
        self.calls: list[tuple[str, str]] = []

    def __call__(self, table: str, where_clause: str) -> int:
        self.calls.append((table, where_clause))
        return self.count


class TestParsing:
    """Predicates parse into Comparison / Membership under an Existence root."""

    def test_comparison_with_template(self) -> None:
        from agentmanifest.engine.predicates import (
            ColumnRef,
            Comparison,
            TemplateValue,
            parse_predicate,
        )

        predicate = parse_predicate("leads.id = {{ lead_id }}")

        assert predicate.table is None
        assert predicate.conditions == (
            Comparison(ColumnRef("leads", "id"), "=", TemplateValue("{{ lead_id }}")),
        )

    def test_exists_prefix(self) -> None:
        from agentmanifest.engine.predicates import parse_predicate

        predicate = parse_predicate("EXISTS leads WHERE id = 1 AND status = 'new'")

        assert predicate.table == "leads"
        assert len(predicate.conditions) == 2

    def test_keywords_are_case_insensitive(self) -> None:
        from agentmanifest.engine.predicates import parse_predicate

        predicate = parse_predicate("exists leads where status not in ('a') and id is not null")

        assert predicate.table == "leads"
        assert len(predicate.conditions) == 2

    def test_angle_not_equal_normalized(self) -> None:
        from agentmanifest.engine.predicates import Comparison, parse_predicate

        condition = parse_predicate("status <> 'done'").conditions[0]
        assert isinstance(condition, Comparison)
        assert condition.operator == "!="

    def test_membership(self) -> None:
        from agentmanifest.engine.predicates import LiteralValue, Membership, parse_predicate

        condition = parse_predicate("status IN ('new', 'enriched')").conditions[0]

        assert isinstance(condition, Membership)
        assert condition.negated is False
        assert condition.operands == (LiteralValue("new"), LiteralValue("enriched"))

    def test_not_in(self) -> None:
        from agentmanifest.engine.predicates import Membership, parse_predicate

        condition = parse_predicate("status NOT IN ('x')").conditions[0]
        assert isinstance(condition, Membership)
        assert condition.negated is True

    def test_is_null(self) -> None:
        from agentmanifest.engine.predicates import Comparison, parse_predicate

        condition = parse_predicate("deleted_at IS NULL").conditions[0]
        assert isinstance(condition, Comparison)
        assert condition.operator == "IS"

    @pytest.mark.parametrize(
        ("text", "expected"),
        [
            ("n = 42", 42),
            ("n = -3", -3),
            ("n = 0.5", 0.5),
            ("n = 1e3", 1000.0),
            ("n = TRUE", True),
            ("n = false", False),
            ("n = 'it''s'", "it's"),
            ("n = active", "active"),
        ],
    )
    def test_literal_values(self, text: str, expected: Any) -> None:
        from agentmanifest.engine.predicates import parse_predicate

        assert parse_predicate(text).literal_values() == (expected,)

    def test_params(self) -> None:
        from agentmanifest.engine.predicates import parse_predicate

        assert parse_predicate("org_id = :actor").params() == ("actor",)

    def test_quoted_template_is_a_template(self) -> None:
        from agentmanifest.engine.predicates import TemplateValue, parse_predicate

        operands = list(parse_predicate("id = '{{ lead_id }}'").operands())
        assert operands == [TemplateValue("{{ lead_id }}")]

    def test_literal_mode_keeps_braces_as_text(self) -> None:
        from agentmanifest.engine.predicates import LiteralValue, parse_predicate

        operands = list(parse_predicate("id = '{{ x }}'", allow_templates=False).operands())
        assert operands == [LiteralValue("{{ x }}")]


class TestUnsupportedSyntax:
    """Anything outside the grammar fails closed."""

    @pytest.mark.parametrize(
        "expression",
        [
            "",
            "a = 1 OR b = 2",
            "(a = 1)",
            "lower(name) = 'x'",
            "created_at < now()",
            "a = b.c",
            "name = 'unterminated",
            "a = 1 AND",
            "a == 1",
            "a LIKE 'x%'",
            "a IN ()",
            "EXISTS WHERE a = 1",
            "a.b.c = 1",
        ],
    )
    def test_rejected(self, expression: str) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import parse_predicate

        with pytest.raises(UnsupportedPredicateError):
            parse_predicate(expression)

    def test_error_carries_expression(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import parse_predicate

        with pytest.raises(UnsupportedPredicateError) as exc_info:
            parse_predicate("a = 1 OR b = 2")

        assert exc_info.value.expression == "a = 1 OR b = 2"
        assert "OR" in exc_info.value.reason

    def test_invalid_embedded_template(self) -> None:
        from agentmanifest.contracts import TemplateSyntaxError
        from agentmanifest.engine.predicates import parse_predicate

        with pytest.raises(TemplateSyntaxError):
            parse_predicate("id = {{ a + b }}")


class TestCompileWhere:
    """Binding happens after parsing and renders SQL literals."""

    def test_template_bound_as_literal(self) -> None:
        from agentmanifest.engine.predicates import compile_where

        assert compile_where("id = {{ lead_id }}", {"lead_id": "abc"}) == "id = 'abc'"

    def test_qualifier_dropped(self) -> None:
        from agentmanifest.engine.predicates import compile_where

        assert compile_where("leads.score >= {{ s }}", {"s": 5}) == "score >= 5"

    def test_equals_null_becomes_is_null(self) -> None:
        from agentmanifest.engine.predicates import compile_where

        assert compile_where("deleted_at = NULL", {}) == "deleted_at IS NULL"
        assert compile_where("deleted_at != {{ v }}", {"v": None}) == "deleted_at IS NOT NULL"

    def test_list_template_expands_in_membership(self) -> None:
        from agentmanifest.engine.predicates import compile_where

        where = compile_where("status IN ({{ allowed }})", {"allowed": ["a", "b"]})
        assert where == "status IN ('a', 'b')"

    def test_structured_value_rejected_in_comparison(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import compile_where

        with pytest.raises(UnsupportedPredicateError):
            compile_where("id = {{ v }}", {"v": {"nested": 1}})

    def test_missing_template_raises(self) -> None:
        from agentmanifest.contracts import UnresolvedReferenceError
        from agentmanifest.engine.predicates import compile_where

        with pytest.raises(UnresolvedReferenceError):
            compile_where("id = {{ lead_id }}", {})

    def test_missing_param_raises(self) -> None:
        from agentmanifest.contracts import UnresolvedReferenceError
        from agentmanifest.engine.predicates import compile_where

        with pytest.raises(UnresolvedReferenceError) as exc_info:
            compile_where("org_id = :actor", {})

        assert exc_info.value.path == ":actor"

    def test_injected_value_cannot_change_structure(self) -> None:
        from agentmanifest.engine.predicates import compile_where, parse_predicate

        hostile = "x' OR 1=1 --"
        where = compile_where("id = {{ v }}", {"v": hostile})

        reparsed = parse_predicate(where, allow_templates=False)
        assert len(reparsed.conditions) == 1
        assert reparsed.literal_values() == (hostile,)


class TestEvaluate:
    """Existence predicates go through query_fn."""

    def test_row_found(self) -> None:
        from agentmanifest.engine.predicates import evaluate

        query = RecordingQuery(count=1)

        assert evaluate("leads.id = {{ lead_id }}", {"lead_id": "abc"}, query) is True
        assert query.calls == [("leads", "id = 'abc'")]

    def test_no_rows(self) -> None:
        from agentmanifest.engine.predicates import evaluate

        assert evaluate("leads.id = 1", {}, RecordingQuery(count=0)) is False

    def test_explicit_exists_table(self) -> None:
        from agentmanifest.engine.predicates import evaluate

        query = RecordingQuery()
        evaluate("EXISTS leads WHERE status = 'new'", {}, query)
        assert query.calls[0][0] == "leads"

    def test_default_table_argument(self) -> None:
        from agentmanifest.engine.predicates import evaluate

        query = RecordingQuery()
        evaluate("status = 'new'", {}, query, table="leads")
        assert query.calls[0][0] == "leads"

    def test_undeterminable_table(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import evaluate

        query = RecordingQuery()
        with pytest.raises(UnsupportedPredicateError):
            evaluate("status = 'new'", {}, query)
        assert query.calls == []

    def test_conflicting_qualifiers(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import evaluate

        with pytest.raises(UnsupportedPredicateError):
            evaluate("leads.id = 1 AND orgs.id = 2", {}, RecordingQuery())

    def test_exists_table_must_match_qualifier(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import evaluate

        with pytest.raises(UnsupportedPredicateError):
            evaluate("EXISTS leads WHERE orgs.id = 1", {}, RecordingQuery())

    def test_unresolved_reference_issues_no_query(self) -> None:
        from agentmanifest.contracts import UnresolvedReferenceError
        from agentmanifest.engine.predicates import evaluate

        query = RecordingQuery()
        with pytest.raises(UnresolvedReferenceError):
            evaluate("leads.id = {{ lead_id }}", {}, query)
        assert query.calls == []


class TestEvaluateState:
    """State predicates compare in memory against the current state."""

    def test_membership(self) -> None:
        from agentmanifest.engine.predicates import evaluate_state

        assert evaluate_state("status IN ('new', 'enriched')", {}, "new") is True
        assert evaluate_state("status IN ('new', 'enriched')", {}, "matched") is False

    def test_not_in(self) -> None:
        from agentmanifest.engine.predicates import evaluate_state

        assert evaluate_state("status NOT IN ('rejected')", {}, "new") is True

    def test_equality_with_template(self) -> None:
        from agentmanifest.engine.predicates import evaluate_state

        assert evaluate_state("status = {{ expected }}", {"expected": "new"}, "new") is True
        assert evaluate_state("status != {{ expected }}", {"expected": "new"}, "new") is False

    def test_unknown_current_state(self) -> None:
        from agentmanifest.engine.predicates import evaluate_state

        assert evaluate_state("status = 'new'", {}, None) is False
        assert evaluate_state("status IS NULL", {}, None) is True

    def test_conjunction_requires_all(self) -> None:
        from agentmanifest.engine.predicates import evaluate_state

        expression = "status IN ('new', 'enriched') AND status != 'enriched'"
        assert evaluate_state(expression, {}, "new") is True
        assert evaluate_state(expression, {}, "enriched") is False

    def test_ordering_rejected(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import evaluate_state

        with pytest.raises(UnsupportedPredicateError):
            evaluate_state("status > 'a'", {}, "b")

    def test_exists_rejected(self) -> None:
        from agentmanifest.contracts import UnsupportedPredicateError
        from agentmanifest.engine.predicates import evaluate_state

        with pytest.raises(UnsupportedPredicateError):
            evaluate_state("EXISTS leads WHERE status = 'new'", {}, "new")


class TestBindingProperties:
    """Property tests: resolved values stay values."""

    @given(value=st.text(max_size=40))
    def test_any_string_round_trips_as_single_literal(self, value: str) -> None:
        from agentmanifest.engine.predicates import compile_where, parse_predicate

        where = compile_where("id = {{ v }}", {"v": value})
        reparsed = parse_predicate(where, allow_templates=False)

        assert len(reparsed.conditions) == 1
        assert reparsed.literal_values() == (value,)

    @given(values=st.lists(st.integers(), min_size=1, max_size=5))
    def test_membership_expansion_preserves_items(self, values: list[int]) -> None:
        from agentmanifest.engine.predicates import compile_where, parse_predicate

        where = compile_where("n IN ({{ items }})", {"items": values})
        assert parse_predicate(where).literal_values() == tuple(values)
