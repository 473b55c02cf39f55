# src/agentmanifest/core/ir.py
"""Intermediate representation of a compiled manifest.

The IR is a value: frozen, indexed by name, and keyed by a canonical
fingerprint of the source document. It is produced only from a manifest
with no blocking diagnostics, so every name it indexes resolves.
"""

from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from types import MappingProxyType
from typing import Any

from agentmanifest.contracts.diagnostics import Diagnostic
from agentmanifest.core.canonical import CANONICAL_VERSION, stable_hash
from agentmanifest.core.graph import EventGraph
from agentmanifest.core.manifest import (
    Actor,
    Agent,
    EventDefinition,
    InsertAction,
    LogAction,
    Manifest,
    StateDefinition,
    Step,
    Table,
    UpdateAction,
)
from agentmanifest.core.policies import TablePolicies, compile_table_policies


def manifest_fingerprint(manifest: Manifest) -> str:
    """Canonical hash of the manifest as loaded (defaults applied)."""
    return stable_hash(manifest.model_dump(mode="json", by_alias=True))


@dataclass(frozen=True)
class ManifestIR:
    """Validated, cross-referenced manifest.

    Consumers look things up by name; the original typed tree stays
    available as ``manifest``.

    The name indexes are read-only views and the models are frozen, but
    dict-valued model fields (event payloads, persist ``set``/``values``/
    ``data``, routing ``routes``) are plain dicts. Treat them as read-only;
    mutating one invalidates ``fingerprint``.
    """

    manifest: Manifest
    fingerprint: str
    states: Mapping[str, StateDefinition]
    events: Mapping[str, EventDefinition]
    steps: Mapping[str, Step]
    tables: Mapping[str, Table]
    actors: Mapping[str, Actor]
    policies: Mapping[str, TablePolicies]
    triggers: Mapping[str, tuple[str, ...]]
    warnings: tuple[Diagnostic, ...] = ()

    def step(self, name: str) -> Step:
        """Look up an agent or function.

        Raises:
            KeyError: If no step has that name
        """
        try:
            return self.steps[name]
        except KeyError:
            raise KeyError(f"Step '{name}' is not declared. Known: {sorted(self.steps)}") from None

    def consumers(self, event: str) -> tuple[str, ...]:
        """Steps triggered by ``event``."""
        return self.triggers.get(event, ())

    @property
    def requires_store(self) -> bool:
        """Whether any step queries or mutates the data store."""
        for step in self.steps.values():
            if step.validate_input.exists is not None:
                return True
            if any(isinstance(a, (UpdateAction, InsertAction, LogAction)) for a in step.persist):
                return True
        return False

    def to_dict(self) -> dict[str, Any]:
        """JSON-safe summary for external tooling."""
        return {
            "product": self.manifest.product.name,
            "version": self.manifest.product.version,
            "fingerprint": self.fingerprint,
            "fingerprint_version": CANONICAL_VERSION,
            "initial_state": self.manifest.state_machine.initial,
            "states": {
                name: {"transitions_to": list(s.transitions_to), "terminal": s.terminal}
                for name, s in self.states.items()
            },
            "events": sorted(self.events),
            "steps": {
                name: "agent" if isinstance(step, Agent) else step.pattern
                for name, step in self.steps.items()
            },
            "triggers": {event: list(steps) for event, steps in self.triggers.items()},
            "policies": {
                table: {
                    "rules": [
                        {"actor": r.actor, "operation": r.operation.value, "condition": r.condition}
                        for r in compiled.rules
                    ],
                    "uncovered": [op.value for op in compiled.uncovered],
                }
                for table, compiled in self.policies.items()
            },
            "warnings": [w.to_dict() for w in self.warnings],
        }


def build_ir(manifest: Manifest, warnings: Sequence[Diagnostic] = ()) -> ManifestIR:
    """Index a cross-reference-clean manifest.

    Raises:
        PolicyCompileError: If a table's policies cannot be compiled
    """
    actors = {a.name: a for a in manifest.database.actors}
    tables = {t.name: t for t in manifest.database.tables}
    return ManifestIR(
        manifest=manifest,
        fingerprint=manifest_fingerprint(manifest),
        states=MappingProxyType({s.name: s for s in manifest.state_machine.states}),
        events=MappingProxyType({e.name: e for e in manifest.events.definitions}),
        steps=MappingProxyType({step.name: step for _, step in manifest.steps()}),
        tables=MappingProxyType(tables),
        actors=MappingProxyType(actors),
        policies=MappingProxyType(
            {name: compile_table_policies(table, actors) for name, table in tables.items()}
        ),
        triggers=MappingProxyType(EventGraph.from_manifest(manifest).trigger_index()),
        warnings=tuple(warnings),
    )
