# src/agentmanifest/engine/persistence.py
"""Persist actions: static checks and execution.

Persist actions run after a COMMITTED invocation. Execution is two-phase:

1. Resolve: every action's templates are resolved against the result
   context. ``where`` clauses resolve strictly, so a missing reference
   fails here, before the store sees a single call.
2. Apply: actions run in order. A failing update/insert/custom stops the
   list and raises PersistError; log failures are recorded and swallowed.

Applied actions are never rolled back here; transactions belong to the
store.
"""

from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Protocol

from agentmanifest.contracts.diagnostics import Diagnostic, format_path
from agentmanifest.contracts.enums import DiagnosticKind, MutationKind, MutationStatus, Severity
from agentmanifest.contracts.errors import (
    PersistError,
    TemplateSyntaxError,
    UnsupportedPredicateError,
)
from agentmanifest.contracts.results import MutationRecord
from agentmanifest.core.logging import get_logger
from agentmanifest.core.manifest import (
    CustomAction,
    InsertAction,
    LogAction,
    PersistAction,
    Table,
    UpdateAction,
)
from agentmanifest.engine.predicates import compile_where, parse_predicate
from agentmanifest.engine.templates import Template, resolve_value

logger = get_logger(__name__)

CustomActionFn = Callable[[Mapping[str, Any]], Any]


class DataStore(Protocol):
    """Mutation capability owned by the external data store."""

    def update(self, table: str, values: Mapping[str, Any], where: str | None) -> int | None: ...

    def insert(self, table: str, values: Mapping[str, Any]) -> None: ...

    def log(self, table: str, values: Mapping[str, Any]) -> None: ...


# === Static checks ===


def _cross_ref(path: Sequence[str | int], code: str, message: str, severity: Severity = Severity.ERROR) -> Diagnostic:
    return Diagnostic(
        path=format_path(path),
        kind=DiagnosticKind.CROSS_REFERENCE,
        code=code,
        message=message,
        severity=severity,
    )


def _check_values(
    values: Mapping[str, Any],
    table: Table,
    path: tuple[str | int, ...],
) -> list[Diagnostic]:
    diagnostics: list[Diagnostic] = []
    known = table.column_names
    for column, value in values.items():
        if known is not None and column not in known:
            diagnostics.append(
                _cross_ref(
                    (*path, column),
                    "unknown_column",
                    f"column '{column}' is not declared on table '{table.name}'",
                )
            )
        if isinstance(value, str):
            try:
                Template(value)
            except TemplateSyntaxError as e:
                diagnostics.append(_cross_ref((*path, column), "template_syntax", str(e)))
    return diagnostics


def _check_where(where: str, table: Table, path: tuple[str | int, ...]) -> list[Diagnostic]:
    try:
        predicate = parse_predicate(where)
        target = predicate.target_table(where, default=table.name)
    except (UnsupportedPredicateError, TemplateSyntaxError) as e:
        return [_cross_ref(path, "invalid_predicate", str(e))]
    diagnostics: list[Diagnostic] = []
    if target != table.name:
        diagnostics.append(
            _cross_ref(path, "where_table_mismatch", f"where clause targets '{target}', not '{table.name}'")
        )
    known = table.column_names
    if known is not None:
        for column in predicate.columns:
            if column.name not in known:
                diagnostics.append(
                    _cross_ref(
                        path,
                        "unknown_column",
                        f"where clause column '{column.name}' is not declared on table '{table.name}'",
                    )
                )
    return diagnostics


def compile_persist_actions(
    actions: Sequence[PersistAction],
    tables: Mapping[str, Table],
    *,
    custom_actions: Mapping[str, CustomActionFn] | None = None,
    path: tuple[str | int, ...] = (),
) -> list[Diagnostic]:
    """Statically check persist actions against the data model.

    Args:
        actions: The step's persist list
        tables: Declared tables by name
        custom_actions: Registry to check ``custom`` refs against; None skips
            the check
        path: Document path of the persist list

    Returns:
        Diagnostics, empty when every action is sound
    """
    diagnostics: list[Diagnostic] = []
    for i, action in enumerate(actions):
        action_path = (*path, i)
        if isinstance(action, CustomAction):
            if custom_actions is not None and action.ref not in custom_actions:
                diagnostics.append(
                    _cross_ref(
                        (*action_path, "ref"),
                        "unknown_custom_action",
                        f"custom action '{action.ref}' is not registered",
                    )
                )
            continue

        table = tables.get(action.table)
        if table is None:
            diagnostics.append(
                _cross_ref(
                    (*action_path, "table"),
                    "unknown_table",
                    f"table '{action.table}' is not declared",
                )
            )
            continue

        if isinstance(action, UpdateAction):
            diagnostics.extend(_check_values(action.set_, table, (*action_path, "set")))
            if action.where is None:
                diagnostics.append(
                    _cross_ref(
                        action_path,
                        "update_without_where",
                        f"update on '{table.name}' has no where clause and affects every row",
                        Severity.WARNING,
                    )
                )
            else:
                diagnostics.extend(_check_where(action.where, table, (*action_path, "where")))
        elif isinstance(action, InsertAction):
            diagnostics.extend(_check_values(action.values, table, (*action_path, "values")))
        else:
            diagnostics.extend(_check_values(action.data, table, (*action_path, "data")))
    return diagnostics


# === Execution ===


@dataclass(frozen=True)
class _Prepared:
    index: int
    action: PersistAction
    values: Mapping[str, Any] = field(default_factory=dict)
    where: str | None = None
    empty_columns: tuple[str, ...] = ()


def _resolve_values(values: Mapping[str, Any], context: Mapping[str, Any]) -> tuple[dict[str, Any], tuple[str, ...]]:
    resolved: dict[str, Any] = {}
    empty: list[str] = []
    for column, template in values.items():
        missing: list[str] = []
        resolved[column] = resolve_value(template, context, allow_missing=True, missing=missing)
        if missing:
            empty.append(column)
    return resolved, tuple(empty)


class PersistenceExecutor:
    """Applies persist actions against a DataStore.

    Holds no per-invocation state; one executor may serve concurrent
    invocations.
    """

    def __init__(
        self,
        store: DataStore,
        custom_actions: Mapping[str, CustomActionFn] | None = None,
    ) -> None:
        self._store = store
        self._custom_actions = dict(custom_actions or {})

    def prepare(self, actions: Sequence[PersistAction], context: Mapping[str, Any]) -> list[_Prepared]:
        """Resolve every action's templates without touching the store.

        Raises:
            UnresolvedReferenceError: A where clause references an absent value
            UnsupportedPredicateError: A where clause is outside the grammar
        """
        prepared: list[_Prepared] = []
        for index, action in enumerate(actions):
            if isinstance(action, UpdateAction):
                values, empty = _resolve_values(action.set_, context)
                where = compile_where(action.where, context) if action.where is not None else None
                prepared.append(_Prepared(index, action, values, where, empty))
            elif isinstance(action, InsertAction):
                values, empty = _resolve_values(action.values, context)
                prepared.append(_Prepared(index, action, values, None, empty))
            elif isinstance(action, LogAction):
                values, empty = _resolve_values(action.data, context)
                prepared.append(_Prepared(index, action, values, None, empty))
            else:
                prepared.append(_Prepared(index, action))
        return prepared

    def apply(self, actions: Sequence[PersistAction], result_context: Mapping[str, Any]) -> list[MutationRecord]:
        """Resolve and apply actions in order.

        Args:
            actions: Persist actions of the committed step
            result_context: Trigger payload at top level, output under ``result``

        Returns:
            One MutationRecord per action

        Raises:
            UnresolvedReferenceError: Before any mutation, if a where clause
                cannot be resolved
            PersistError: An update, insert or custom action failed; earlier
                actions stay applied, later ones were skipped
        """
        prepared = self.prepare(actions, result_context)
        records: list[MutationRecord] = []
        for item in prepared:
            if item.empty_columns:
                logger.warning(
                    "persist_empty_columns",
                    action_index=item.index,
                    table=getattr(item.action, "table", None),
                    columns=list(item.empty_columns),
                )
            if isinstance(item.action, LogAction):
                records.append(self._apply_log(item))
                continue
            try:
                records.append(self._apply(item, result_context))
            except Exception as e:
                skipped = [p.index for p in prepared if p.index > item.index]
                logger.error(
                    "persist_action_failed",
                    action_index=item.index,
                    kind=item.action.action,
                    error=str(e),
                    skipped=skipped,
                )
                raise PersistError(
                    applied=records,
                    failed_index=item.index,
                    skipped=skipped,
                    cause=e,
                ) from e
        return records

    def _apply(self, item: _Prepared, context: Mapping[str, Any]) -> MutationRecord:
        action = item.action
        if isinstance(action, UpdateAction):
            rows = self._store.update(action.table, item.values, item.where)
            return MutationRecord(
                index=item.index,
                kind=MutationKind.UPDATE,
                table=action.table,
                values=item.values,
                where=item.where,
                empty_columns=item.empty_columns,
                rows_affected=rows,
            )
        if isinstance(action, InsertAction):
            self._store.insert(action.table, item.values)
            return MutationRecord(
                index=item.index,
                kind=MutationKind.INSERT,
                table=action.table,
                values=item.values,
                empty_columns=item.empty_columns,
                rows_affected=1,
            )
        assert isinstance(action, CustomAction)
        handler = self._custom_actions.get(action.ref)
        if handler is None:
            raise LookupError(f"custom action '{action.ref}' is not registered")
        handler(context)
        return MutationRecord(index=item.index, kind=MutationKind.CUSTOM, table=None, ref=action.ref)

    def _apply_log(self, item: _Prepared) -> MutationRecord:
        action = item.action
        assert isinstance(action, LogAction)
        try:
            self._store.log(action.table, item.values)
        except Exception as e:
            # Log actions are best-effort: record, never fail the flow
            logger.warning("log_action_failed", table=action.table, error=str(e))
            return MutationRecord(
                index=item.index,
                kind=MutationKind.LOG,
                table=action.table,
                values=item.values,
                status=MutationStatus.FAILED,
                empty_columns=item.empty_columns,
                error=str(e),
            )
        return MutationRecord(
            index=item.index,
            kind=MutationKind.LOG,
            table=action.table,
            values=item.values,
            empty_columns=item.empty_columns,
        )
