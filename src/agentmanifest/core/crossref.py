# src/agentmanifest/core/crossref.py
"""Cross-reference validation.

Runs on a structurally valid Manifest and checks everything that needs to
look at more than one part of the document: names resolve, graphs are
sound, predicates and templates parse against the declared data model.

Every problem is collected; nothing here raises for bad manifests.
"""

from collections.abc import Callable, Iterable, Mapping
from typing import Any

from agentmanifest.contracts.diagnostics import Diagnostic, format_path
from agentmanifest.contracts.enums import DiagnosticKind, Severity
from agentmanifest.contracts.errors import TemplateSyntaxError, UnsupportedPredicateError
from agentmanifest.core.config import CompilerSettings
from agentmanifest.core.graph import EventGraph, StateGraph
from agentmanifest.core.manifest import (
    Agent,
    Contract,
    CronFunction,
    EventDefinition,
    EventWebhook,
    FanInFunction,
    FunctionWebhook,
    Manifest,
    RoutingFunction,
    Step,
    Table,
    WebhookFunction,
)
from agentmanifest.core.policies import mentions_actor
from agentmanifest.engine.persistence import compile_persist_actions
from agentmanifest.engine.predicates import LiteralValue, parse_predicate
from agentmanifest.engine.templates import Template

Path = tuple[str | int, ...]


class CrossReferenceValidator:
    """Collects cross-reference diagnostics for one manifest.

    Usage:
        diagnostics = CrossReferenceValidator(manifest, settings).validate()
    """

    def __init__(
        self,
        manifest: Manifest,
        settings: CompilerSettings | None = None,
        custom_actions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self._manifest = manifest
        self._settings = settings or CompilerSettings()
        self._custom_actions = custom_actions
        self._diagnostics: list[Diagnostic] = []

        # First declaration wins; later duplicates are reported separately.
        self._states = {s.name: s for s in reversed(manifest.state_machine.states)}
        self._events: dict[str, EventDefinition] = {
            e.name: e for e in reversed(manifest.events.definitions)
        }
        self._tables: dict[str, Table] = {t.name: t for t in reversed(manifest.database.tables)}
        self._actors = {a.name for a in manifest.database.actors}
        self._crons = {c.name for c in manifest.crons}
        self._webhooks = {w.name for w in manifest.webhooks}
        self._functions = {f.name: f for f in reversed(manifest.functions)}

    def _report(
        self,
        path: Path,
        code: str,
        message: str,
        severity: Severity = Severity.ERROR,
    ) -> None:
        self._diagnostics.append(
            Diagnostic(
                path=format_path(path),
                kind=DiagnosticKind.CROSS_REFERENCE,
                code=code,
                message=message,
                severity=severity,
            )
        )

    def validate(self) -> list[Diagnostic]:
        self._check_duplicates()
        self._check_state_machine()
        self._check_events()
        self._check_webhooks_and_crons()
        self._check_policies()
        for path, step in self._manifest.steps():
            self._check_step(path, step)
        if self._settings.report_unconsumed_events:
            self._check_unconsumed_events()
        return self._diagnostics

    # === Names ===

    def _check_unique(self, what: str, items: Iterable[tuple[Path, str]]) -> None:
        seen: set[str] = set()
        for path, name in items:
            if name in seen:
                self._report(path, f"duplicate_{what}", f"duplicate {what} name '{name}'")
            seen.add(name)

    def _check_duplicates(self) -> None:
        m = self._manifest
        self._check_unique(
            "state",
            ((("state_machine", "states", i, "name"), s.name) for i, s in enumerate(m.state_machine.states)),
        )
        self._check_unique(
            "event",
            ((("events", "definitions", i, "name"), e.name) for i, e in enumerate(m.events.definitions)),
        )
        self._check_unique("step", (((*path, "name"), step.name) for path, step in m.steps()))
        self._check_unique(
            "table",
            ((("database", "tables", i, "name"), t.name) for i, t in enumerate(m.database.tables)),
        )
        self._check_unique(
            "actor",
            ((("database", "actors", i, "name"), a.name) for i, a in enumerate(m.database.actors)),
        )
        self._check_unique(
            "webhook", ((("webhooks", i, "name"), w.name) for i, w in enumerate(m.webhooks))
        )
        self._check_unique("cron", ((("crons", i, "name"), c.name) for i, c in enumerate(m.crons)))
        for t, table in enumerate(m.database.tables):
            self._check_unique(
                "column",
                (
                    (("database", "tables", t, "columns", c, "name"), column.name)
                    for c, column in enumerate(table.columns or ())
                ),
            )

    # === State machine ===

    def _check_state_machine(self) -> None:
        machine = self._manifest.state_machine
        if machine.initial not in self._states:
            self._report(
                ("state_machine", "initial"),
                "unknown_state",
                f"initial state '{machine.initial}' is not declared",
            )
        for i, state in enumerate(machine.states):
            for j, target in enumerate(state.transitions_to):
                if target not in self._states:
                    self._report(
                        ("state_machine", "states", i, "transitions_to", j),
                        "unknown_state",
                        f"state '{state.name}' transitions to undeclared state '{target}'",
                    )

        graph = StateGraph.from_state_machine(machine)
        index = {s.name: i for i, s in reversed(list(enumerate(machine.states)))}
        for name in graph.dead_ends():
            self._report(
                ("state_machine", "states", index[name]),
                "dead_end_state",
                f"state '{name}' is not terminal but has no transitions",
                self._settings.severity(self._settings.dead_end_states),
            )
        for name in graph.unreachable_states():
            self._report(
                ("state_machine", "states", index[name]),
                "unreachable_state",
                f"state '{name}' is not reachable from '{machine.initial}'",
                self._settings.severity(self._settings.unreachable_states),
            )

    def _check_state_name(self, path: Path, name: str) -> None:
        if name not in self._states:
            self._report(path, "unknown_state", f"state '{name}' is not declared")

    # === Events ===

    def _check_event_name(self, path: Path, name: str) -> EventDefinition | None:
        event = self._events.get(name)
        if event is None:
            self._report(path, "unknown_event", f"event '{name}' is not declared")
        return event

    def _check_events(self) -> None:
        for i, event in enumerate(self._manifest.events.definitions):
            key = event.idempotency_key
            if key is not None and key not in event.payload:
                self._report(
                    ("events", "definitions", i, "idempotency_key"),
                    "unknown_payload_field",
                    f"idempotency_key '{key}' is not a payload field of event '{event.name}'",
                )

    def _check_unconsumed_events(self) -> None:
        graph = EventGraph.from_manifest(self._manifest)
        index = {e.name: i for i, e in reversed(list(enumerate(self._manifest.events.definitions)))}
        for name in graph.unconsumed_events():
            self._report(
                ("events", "definitions", index[name]),
                "unconsumed_event",
                f"no step is triggered by event '{name}'",
                Severity.INFO,
            )

    # === Webhooks and crons ===

    def _check_webhooks_and_crons(self) -> None:
        for i, webhook in enumerate(self._manifest.webhooks):
            if isinstance(webhook, EventWebhook):
                self._check_event_name(("webhooks", i, "emits"), webhook.emits)
            elif isinstance(webhook, FunctionWebhook):
                function = self._functions.get(webhook.function)
                if function is None:
                    self._report(
                        ("webhooks", i, "function"),
                        "unknown_function",
                        f"function '{webhook.function}' is not declared",
                    )
                elif not isinstance(function, WebhookFunction):
                    self._report(
                        ("webhooks", i, "function"),
                        "function_pattern_mismatch",
                        f"function '{webhook.function}' must use pattern "
                        f"'inngest-first-webhook' to receive webhook '{webhook.name}'",
                    )
        for i, cron in enumerate(self._manifest.crons):
            if cron.function not in self._functions:
                self._report(
                    ("crons", i, "function"),
                    "unknown_function",
                    f"function '{cron.function}' is not declared",
                )

    # === Database ===

    def _check_policies(self) -> None:
        for t, table in enumerate(self._manifest.database.tables):
            for p, policy in enumerate(table.access):
                path: Path = ("database", "tables", t, "access", p)
                if policy.actor not in self._actors:
                    self._report(
                        (*path, "actor"),
                        "unknown_actor",
                        f"actor '{policy.actor}' is not declared",
                    )
                if not mentions_actor(policy.condition):
                    self._report(
                        (*path, "condition"),
                        "condition_missing_actor",
                        "condition must reference :actor",
                    )
                self._check_predicate_columns((*path, "condition"), policy.condition, table)

    def _check_predicate_columns(self, path: Path, expression: str, table: Table) -> None:
        try:
            predicate = parse_predicate(expression)
            target = predicate.target_table(expression, default=table.name)
        except (UnsupportedPredicateError, TemplateSyntaxError) as e:
            self._report(path, "invalid_predicate", str(e))
            return
        if target != table.name:
            self._report(
                path,
                "predicate_table_mismatch",
                f"predicate targets '{target}', not '{table.name}'",
            )
            return
        known = table.column_names
        if known is None:
            return
        for column in predicate.columns:
            if column.name not in known:
                self._report(
                    path,
                    "unknown_column",
                    f"column '{column.name}' is not declared on table '{table.name}'",
                )

    # === Steps ===

    def _trigger_definitions(self, path: Path, step: Step) -> list[EventDefinition]:
        """Check every trigger reference; return the declared trigger events."""
        definitions: list[EventDefinition] = []
        if isinstance(step, Agent):
            refs = [((*path, "triggers", i, "event"), t.event) for i, t in enumerate(step.triggers)]
        elif isinstance(step, FanInFunction):
            refs = [((*path, "trigger", "primary"), step.trigger.primary)]
            refs.extend(
                ((*path, "trigger", "wait_for", i), name)
                for i, name in enumerate(step.trigger.wait_for)
            )
        elif isinstance(step, CronFunction):
            if step.trigger.cron not in self._crons:
                self._report(
                    (*path, "trigger", "cron"),
                    "unknown_cron",
                    f"cron '{step.trigger.cron}' is not declared",
                )
            refs = []
        elif isinstance(step, WebhookFunction):
            if step.trigger.webhook not in self._webhooks:
                self._report(
                    (*path, "trigger", "webhook"),
                    "unknown_webhook",
                    f"webhook '{step.trigger.webhook}' is not declared",
                )
            refs = []
        else:
            refs = [((*path, "trigger", "event"), step.trigger.event)]
        for ref_path, name in refs:
            definition = self._check_event_name(ref_path, name)
            if definition is not None:
                definitions.append(definition)
        return definitions

    def _check_step(self, path: Path, step: Step) -> None:
        triggers = self._trigger_definitions(path, step)
        for event, emit_path in step.emitted_events():
            self._check_event_name((*path, *emit_path), event)

        if isinstance(step, FanInFunction):
            key = step.trigger.correlation_key
            for definition in triggers:
                if key not in definition.payload:
                    self._report(
                        (*path, "trigger", "correlation_key"),
                        "correlation_key_missing",
                        f"correlation_key '{key}' is not a payload field of event '{definition.name}'",
                    )
        if isinstance(step, RoutingFunction) and triggers:
            route_on = step.trigger.route_on
            if route_on not in triggers[0].payload:
                self._report(
                    (*path, "trigger", "route_on"),
                    "unknown_payload_field",
                    f"route_on '{route_on}' is not a payload field of event '{triggers[0].name}'",
                )

        if step.contract is not None:
            self._check_contract((*path, "contract"), step.contract)
        self._check_flow_fields(path, step, triggers)

    def _check_contract(self, path: Path, contract: Contract) -> None:
        for i, name in enumerate(contract.state_in):
            self._check_state_name((*path, "state_in", i), name)
        self._check_state_name((*path, "state_out"), contract.state_out)
        out = contract.state_out
        if out in self._states:
            for name in contract.state_in:
                state = self._states.get(name)
                if state is not None and out != name and out not in state.transitions_to:
                    self._report(
                        (*path, "state_out"),
                        "undeclared_transition",
                        f"state_out '{out}' is not a declared transition from '{name}'",
                        self._settings.severity(self._settings.undeclared_transitions),
                    )

        for i, source in enumerate(contract.context_in.from_db):
            source_path = (*path, "context_in", "from_db", i)
            table = self._tables.get(source.table)
            if table is None:
                self._report(
                    (*source_path, "table"),
                    "unknown_table",
                    f"table '{source.table}' is not declared",
                )
            elif table.column_names is not None:
                for j, name in enumerate(source.must_have):
                    if name not in table.column_names:
                        self._report(
                            (*source_path, "must_have", j),
                            "unknown_column",
                            f"column '{name}' is not declared on table '{table.name}'",
                        )
            if source.template is not None:
                self._check_template((*source_path, "template"), source.template)
        for i, artifact in enumerate(contract.context_out.artifacts):
            self._check_template((*path, "context_out", "artifacts", i, "file"), artifact.file)

    def _check_template(self, path: Path, source: str) -> None:
        try:
            Template(source)
        except TemplateSyntaxError as e:
            self._report(path, "template_syntax", str(e))

    def _check_flow_fields(self, path: Path, step: Step, triggers: list[EventDefinition]) -> None:
        rule = step.validate_input
        rule_path = (*path, "validate_input")

        # Only checkable when every trigger event resolved
        if triggers and len(triggers) == len(step.trigger_events()):
            for i, name in enumerate(rule.payload):
                if not any(name in d.payload for d in triggers):
                    self._report(
                        (*rule_path, "payload", i),
                        "unknown_payload_field",
                        f"'{name}' is not a payload field of any trigger event",
                    )

        if rule.exists is not None:
            self._check_exists((*rule_path, "exists"), rule.exists)
        if rule.state is not None:
            self._check_state_predicate((*rule_path, "state"), rule.state)
        for i, template in enumerate(rule.files):
            self._check_template((*rule_path, "files", i), template)

        self._diagnostics.extend(
            compile_persist_actions(
                step.persist,
                self._tables,
                custom_actions=self._custom_actions,
                path=(*path, "persist"),
            )
        )

    def _check_exists(self, path: Path, expression: str) -> None:
        try:
            predicate = parse_predicate(expression)
            target = predicate.target_table(expression)
        except (UnsupportedPredicateError, TemplateSyntaxError) as e:
            self._report(path, "invalid_predicate", str(e))
            return
        table = self._tables.get(target)
        if table is None:
            self._report(path, "unknown_table", f"table '{target}' is not declared")
            return
        self._check_predicate_columns(path, expression, table)

    def _check_state_predicate(self, path: Path, expression: str) -> None:
        try:
            predicate = parse_predicate(expression)
        except (UnsupportedPredicateError, TemplateSyntaxError) as e:
            self._report(path, "invalid_predicate", str(e))
            return
        if predicate.table is not None:
            self._report(path, "invalid_predicate", "state predicates cannot use EXISTS")
        for condition in predicate.conditions:
            operator = getattr(condition, "operator", None)
            if operator in ("<", "<=", ">", ">="):
                self._report(
                    path,
                    "invalid_predicate",
                    f"operator {operator} is not valid for states",
                )
        for operand in predicate.operands():
            if isinstance(operand, LiteralValue) and operand.value is not None:
                if str(operand.value) not in self._states:
                    self._report(
                        path,
                        "unknown_state",
                        f"state '{operand.value}' is not declared",
                    )


def validate_references(
    manifest: Manifest,
    settings: CompilerSettings | None = None,
    custom_actions: Mapping[str, Callable[..., Any]] | None = None,
) -> list[Diagnostic]:
    """Run every cross-reference check.

    Args:
        manifest: Structurally valid manifest
        settings: Severity policy; defaults when None
        custom_actions: Registry for ``custom`` persist refs; None skips that check

    Returns:
        All findings, errors and warnings alike, in document order per check
    """
    return CrossReferenceValidator(manifest, settings, custom_actions).validate()
