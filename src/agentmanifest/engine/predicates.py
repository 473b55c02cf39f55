# src/agentmanifest/engine/predicates.py
"""Restricted SQL-like predicates for flow rules and access policies.

Grammar (keywords are case-insensitive):

    predicate  := [EXISTS table WHERE] clause (AND clause)*
    clause     := column op value
                | column [NOT] IN ( value (, value)* )
                | column IS [NOT] NULL
    column     := name | table.name
    op         := = | != | <> | < | <= | > | >=
    value      := 'string' | number | TRUE | FALSE | NULL | bare_word
                | {{ template }} | :param

That is the whole language. OR, parentheses, functions and column-to-column
comparisons are rejected with UnsupportedPredicateError instead of being
guessed at, because these expressions gate data access.

Templates and params are bound AFTER parsing, so a resolved value can only
ever be a value: it can never add a clause or change an operator.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from functools import lru_cache
from typing import Any, Literal, Protocol

from agentmanifest.contracts.errors import (
    UnresolvedReferenceError,
    UnsupportedPredicateError,
)
from agentmanifest.engine.templates import Template

_TOKEN_PATTERN = re.compile(
    r"""
    (?P<ws>\s+)
  | (?P<template>\{\{.*?\}\})
  | (?P<string>'(?:[^']|'')*')
  | (?P<number>-?\d+(?:\.\d+)?(?:[eE][-+]?\d+)?)
  | (?P<param>:[A-Za-z_][A-Za-z0-9_]*)
  | (?P<op><=|>=|<>|!=|=|<|>)
  | (?P<lparen>\()
  | (?P<rparen>\))
  | (?P<comma>,)
  | (?P<word>[A-Za-z_][A-Za-z0-9_]*(?:\.[A-Za-z_][A-Za-z0-9_]*)*)
    """,
    re.VERBOSE | re.DOTALL,
)

_KEYWORDS = frozenset(
    {"AND", "OR", "IN", "NOT", "IS", "EXISTS", "WHERE", "TRUE", "FALSE", "NULL"}
)

ComparisonOperator = Literal["=", "!=", "<", "<=", ">", ">=", "IS", "IS NOT"]


@dataclass(frozen=True)
class _Token:
    kind: str
    text: str
    position: int

    @property
    def keyword(self) -> str | None:
        if self.kind == "word" and self.text.upper() in _KEYWORDS:
            return self.text.upper()
        return None


# === AST ===


@dataclass(frozen=True)
class ColumnRef:
    table: str | None
    name: str

    def __str__(self) -> str:
        return f"{self.table}.{self.name}" if self.table else self.name


@dataclass(frozen=True)
class LiteralValue:
    value: Any


@dataclass(frozen=True)
class TemplateValue:
    source: str


@dataclass(frozen=True)
class ParamValue:
    name: str


Operand = LiteralValue | TemplateValue | ParamValue


@dataclass(frozen=True)
class Comparison:
    column: ColumnRef
    operator: ComparisonOperator
    operand: Operand


@dataclass(frozen=True)
class Membership:
    column: ColumnRef
    operands: tuple[Operand, ...]
    negated: bool = False


Condition = Comparison | Membership


@dataclass(frozen=True)
class Existence:
    """Root node: a conjunction of conditions over one table's rows.

    ``table`` is the explicit ``EXISTS table WHERE`` target, if any.
    """

    table: str | None
    conditions: tuple[Condition, ...]

    @property
    def qualifiers(self) -> frozenset[str]:
        return frozenset(c.column.table for c in self.conditions if c.column.table)

    @property
    def columns(self) -> tuple[ColumnRef, ...]:
        return tuple(c.column for c in self.conditions)

    def operands(self) -> Iterator[Operand]:
        for condition in self.conditions:
            if isinstance(condition, Comparison):
                yield condition.operand
            else:
                yield from condition.operands

    def literal_values(self) -> tuple[Any, ...]:
        return tuple(o.value for o in self.operands() if isinstance(o, LiteralValue))

    def params(self) -> tuple[str, ...]:
        return tuple(o.name for o in self.operands() if isinstance(o, ParamValue))

    def target_table(self, expression: str, default: str | None = None) -> str:
        """Table whose rows the predicate ranges over.

        Raises:
            UnsupportedPredicateError: Qualifiers disagree, or no table can
                be determined
        """
        qualifiers = self.qualifiers
        if len(qualifiers) > 1:
            raise UnsupportedPredicateError(
                expression, f"columns reference several tables: {sorted(qualifiers)}"
            )
        qualifier = next(iter(qualifiers), None)
        if self.table is not None:
            if qualifier is not None and qualifier != self.table:
                raise UnsupportedPredicateError(
                    expression,
                    f"column table '{qualifier}' does not match EXISTS table '{self.table}'",
                )
            return self.table
        if qualifier is not None:
            return qualifier
        if default is not None:
            return default
        raise UnsupportedPredicateError(
            expression, "cannot determine table (qualify a column or use EXISTS table WHERE)"
        )


# === Parsing ===


def _tokenize(expression: str) -> list[_Token]:
    tokens: list[_Token] = []
    position = 0
    while position < len(expression):
        match = _TOKEN_PATTERN.match(expression, position)
        if match is None:
            snippet = expression[position : position + 10]
            raise UnsupportedPredicateError(
                expression, f"unexpected input at offset {position}: {snippet!r}"
            )
        kind = match.lastgroup or ""
        if kind != "ws":
            tokens.append(_Token(kind, match.group(), position))
        position = match.end()
    return tokens


class _Parser:
    def __init__(self, expression: str, allow_templates: bool = True) -> None:
        self._expression = expression
        self._allow_templates = allow_templates
        self._tokens = _tokenize(expression)
        self._index = 0

    def _fail(self, reason: str) -> UnsupportedPredicateError:
        return UnsupportedPredicateError(self._expression, reason)

    def _peek(self) -> _Token | None:
        if self._index < len(self._tokens):
            return self._tokens[self._index]
        return None

    def _next(self, expected: str) -> _Token:
        token = self._peek()
        if token is None:
            raise self._fail(f"expected {expected}, got end of expression")
        self._index += 1
        return token

    def _accept_keyword(self, keyword: str) -> bool:
        token = self._peek()
        if token is not None and token.keyword == keyword:
            self._index += 1
            return True
        return False

    def _expect_keyword(self, keyword: str) -> None:
        token = self._next(keyword)
        if token.keyword != keyword:
            raise self._fail(f"expected {keyword}, got {token.text!r}")

    def parse(self) -> Existence:
        if not self._tokens:
            raise self._fail("empty predicate")
        table: str | None = None
        if self._accept_keyword("EXISTS"):
            token = self._next("table name")
            if token.kind != "word" or token.keyword or "." in token.text:
                raise self._fail(f"expected table name after EXISTS, got {token.text!r}")
            table = token.text
            self._expect_keyword("WHERE")

        conditions = [self._clause()]
        while (token := self._peek()) is not None:
            if token.keyword == "AND":
                self._index += 1
                conditions.append(self._clause())
            elif token.keyword == "OR":
                raise self._fail("OR is not supported; split into separate rules")
            else:
                raise self._fail(f"unexpected {token.text!r}")
        return Existence(table=table, conditions=tuple(conditions))

    def _column(self) -> ColumnRef:
        token = self._next("column")
        if token.kind == "lparen":
            raise self._fail("parentheses are not supported")
        if token.kind != "word" or token.keyword:
            raise self._fail(f"expected column, got {token.text!r}")
        parts = token.text.split(".")
        if len(parts) > 2:
            raise self._fail(f"column reference too deep: {token.text!r}")
        if len(parts) == 2:
            return ColumnRef(table=parts[0], name=parts[1])
        return ColumnRef(table=None, name=parts[0])

    def _clause(self) -> Condition:
        column = self._column()
        token = self._next("operator")

        if token.kind == "op":
            operator = "!=" if token.text == "<>" else token.text
            return Comparison(column, operator, self._value())  # type: ignore[arg-type]

        if token.keyword == "IS":
            negated = self._accept_keyword("NOT")
            self._expect_keyword("NULL")
            return Comparison(column, "IS NOT" if negated else "IS", LiteralValue(None))

        negated = False
        if token.keyword == "NOT":
            negated = True
            token = self._next("IN")
        if token.keyword == "IN":
            return Membership(column, self._value_list(), negated)

        if token.kind == "lparen":
            raise self._fail(f"function calls are not supported: {column}(")
        raise self._fail(f"expected operator after {column}, got {token.text!r}")

    def _value_list(self) -> tuple[Operand, ...]:
        token = self._next("(")
        if token.kind != "lparen":
            raise self._fail(f"expected '(' after IN, got {token.text!r}")
        values = [self._value()]
        while True:
            token = self._next("',' or ')'")
            if token.kind == "rparen":
                return tuple(values)
            if token.kind != "comma":
                raise self._fail(f"expected ',' or ')', got {token.text!r}")
            values.append(self._value())

    def _value(self) -> Operand:
        token = self._next("value")
        if token.kind == "string":
            text = token.text[1:-1].replace("''", "'")
            if self._allow_templates and "{{" in text:
                # quoted template: the quotes are SQL habit, the value is still bound
                Template(text)
                return TemplateValue(text)
            return LiteralValue(text)
        if token.kind == "number":
            text = token.text
            return LiteralValue(float(text) if any(c in text for c in ".eE") else int(text))
        if token.kind == "template":
            if not self._allow_templates:
                raise self._fail("templates are not allowed in a rendered clause")
            Template(token.text)  # syntax check now, not at bind time
            return TemplateValue(token.text)
        if token.kind == "param":
            return ParamValue(token.text[1:])
        if token.kind == "word":
            keyword = token.keyword
            if keyword == "TRUE":
                return LiteralValue(True)
            if keyword == "FALSE":
                return LiteralValue(False)
            if keyword == "NULL":
                return LiteralValue(None)
            if keyword is not None:
                raise self._fail(f"expected value, got keyword {token.text!r}")
            if "." in token.text:
                raise self._fail(
                    f"column-to-column comparison is not supported: {token.text!r}"
                )
            follower = self._peek()
            if follower is not None and follower.kind == "lparen":
                raise self._fail(f"function calls are not supported: {token.text}(")
            return LiteralValue(token.text)
        raise self._fail(f"expected value, got {token.text!r}")


@lru_cache(maxsize=1024)
def parse_predicate(expression: str, *, allow_templates: bool = True) -> Existence:
    """Parse a predicate expression.

    With ``allow_templates=False`` (rendered where clauses) every quoted
    string is a literal, even one containing ``{{``.

    Raises:
        UnsupportedPredicateError: Expression is outside the grammar
        TemplateSyntaxError: An embedded {{ template }} is invalid
    """
    return _Parser(expression, allow_templates).parse()


# === Binding and rendering ===


@dataclass(frozen=True)
class BoundCondition:
    """A condition with every operand resolved to a concrete value."""

    column: str
    operator: str  # =, !=, <, <=, >, >=, IS, IS NOT, IN, NOT IN
    value: Any


def _bind_operand(operand: Operand, context: Mapping[str, Any], expression: str) -> Any:
    if isinstance(operand, LiteralValue):
        return operand.value
    if isinstance(operand, ParamValue):
        if operand.name not in context:
            raise UnresolvedReferenceError(f":{operand.name}", expression)
        return context[operand.name]
    return Template(operand.source).resolve_value(context)


def _check_scalar(value: Any, expression: str) -> Any:
    if isinstance(value, (Mapping, list, tuple, set)):
        raise UnsupportedPredicateError(
            expression, f"cannot compare a column to a structured value: {value!r}"
        )
    return value


def bind(
    predicate: Existence,
    context: Mapping[str, Any],
    expression: str,
) -> tuple[BoundCondition, ...]:
    """Resolve templates and params in every condition.

    A lone template inside IN (...) that resolves to a list expands into
    its items.

    Raises:
        UnresolvedReferenceError: A template path or param is absent
    """
    bound: list[BoundCondition] = []
    for condition in predicate.conditions:
        if isinstance(condition, Comparison):
            value = _check_scalar(_bind_operand(condition.operand, context, expression), expression)
            operator = condition.operator
            if value is None and operator == "=":
                operator = "IS"
            elif value is None and operator == "!=":
                operator = "IS NOT"
            elif value is None and operator not in ("IS", "IS NOT"):
                raise UnsupportedPredicateError(
                    expression, f"cannot order-compare {condition.column} with NULL"
                )
            bound.append(BoundCondition(condition.column.name, operator, value))
        else:
            values: list[Any] = []
            for operand in condition.operands:
                value = _bind_operand(operand, context, expression)
                if isinstance(value, (list, tuple)) and len(condition.operands) == 1:
                    values.extend(_check_scalar(v, expression) for v in value)
                else:
                    values.append(_check_scalar(value, expression))
            if not values:
                raise UnsupportedPredicateError(expression, f"IN list for {condition.column} is empty")
            operator = "NOT IN" if condition.negated else "IN"
            bound.append(BoundCondition(condition.column.name, operator, tuple(values)))
    return tuple(bound)


def sql_literal(value: Any) -> str:
    """Render a bound value as a SQL literal."""
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return "TRUE" if value else "FALSE"
    if isinstance(value, (int, float)):
        return repr(value)
    text = str(value).replace("'", "''")
    return f"'{text}'"


def render_where(conditions: tuple[BoundCondition, ...]) -> str:
    """Render bound conditions as a where clause over unqualified columns.

    The output is itself a valid predicate (literals only), which is how
    store adapters parse it back into bound parameters with
    ``parse_predicate(clause, allow_templates=False)``.
    """
    parts: list[str] = []
    for condition in conditions:
        if condition.operator in ("IN", "NOT IN"):
            items = ", ".join(sql_literal(v) for v in condition.value)
            parts.append(f"{condition.column} {condition.operator} ({items})")
        elif condition.operator in ("IS", "IS NOT"):
            parts.append(f"{condition.column} {condition.operator} NULL")
        else:
            parts.append(f"{condition.column} {condition.operator} {sql_literal(condition.value)}")
    return " AND ".join(parts)


def compile_where(expression: str, context: Mapping[str, Any]) -> str:
    """Parse, bind and render a predicate in one step."""
    predicate = parse_predicate(expression)
    return render_where(bind(predicate, context, expression))


# === Evaluation ===


class QueryFn(Protocol):
    """Row-count query owned by the external data store."""

    def __call__(self, table: str, where_clause: str) -> int: ...


def evaluate(
    expression: str,
    context: Mapping[str, Any],
    query_fn: QueryFn | Callable[[str, str], int],
    *,
    table: str | None = None,
) -> bool:
    """Evaluate an existence predicate: does at least one row match?

    Args:
        expression: Predicate in the grammar above
        context: Values for {{ templates }} and :params
        query_fn: Store capability returning the matching row count
        table: Table to use when the expression names none

    Raises:
        UnsupportedPredicateError: Expression outside the grammar
        UnresolvedReferenceError: A referenced value is absent
    """
    predicate = parse_predicate(expression)
    target = predicate.target_table(expression, default=table)
    where_clause = render_where(bind(predicate, context, expression))
    return query_fn(target, where_clause) > 0


_STATE_OPERATORS: dict[str, Callable[[Any, Any], bool]] = {
    "=": lambda a, b: a == b,
    "!=": lambda a, b: a != b,
    "IS": lambda a, b: a is None,
    "IS NOT": lambda a, b: a is not None,
}


def evaluate_state(
    expression: str,
    context: Mapping[str, Any],
    current_state: str | None,
) -> bool:
    """Evaluate a state predicate against the entity's current state.

    The left-hand column is implicit (the entity's own state column), so
    its name is not consulted. Pure in-memory comparison; never queries.

    Raises:
        UnsupportedPredicateError: Ordering operators, which are
            meaningless for state names
    """
    predicate = parse_predicate(expression)
    if predicate.table is not None:
        raise UnsupportedPredicateError(expression, "state predicates cannot use EXISTS")
    for condition in bind(predicate, context, expression):
        if condition.operator in ("IN", "NOT IN"):
            matched = current_state in condition.value
            if condition.operator == "NOT IN":
                matched = not matched
        elif condition.operator in _STATE_OPERATORS:
            matched = _STATE_OPERATORS[condition.operator](current_state, condition.value)
        else:
            raise UnsupportedPredicateError(
                expression, f"operator {condition.operator} is not valid for states"
            )
        if not matched:
            return False
    return True
