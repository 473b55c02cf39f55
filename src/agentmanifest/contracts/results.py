"""Operation outcomes and results.

These types answer: "What did an invocation or a persist action produce?"
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any

from agentmanifest.contracts.enums import InvocationPhase, MutationKind, MutationStatus


@dataclass(frozen=True)
class MutationRecord:
    """One persist action after template resolution and execution.

    empty_columns lists columns whose template resolved to an empty
    string because a referenced field was absent. The column IS written
    with the empty value; the record flags it rather than skipping it.
    """

    index: int
    kind: MutationKind
    table: str | None
    values: Mapping[str, Any] = field(default_factory=dict)
    where: str | None = None
    status: MutationStatus = MutationStatus.APPLIED
    empty_columns: tuple[str, ...] = ()
    ref: str | None = None
    error: str | None = None
    rows_affected: int | None = None

    @property
    def applied(self) -> bool:
        return self.status is MutationStatus.APPLIED


@dataclass(frozen=True)
class InvocationResult:
    """Final state of one agent/function invocation.

    Use the factory methods to create instances. ``phases`` records every
    phase the invocation passed through, in order, ending with ``phase``.
    """

    step: str
    phase: InvocationPhase
    phases: tuple[InvocationPhase, ...]
    output: Mapping[str, Any] | None = None
    error: Exception | None = None
    mutations: tuple[MutationRecord, ...] = ()
    persist_error: Exception | None = None

    @classmethod
    def rejected(
        cls,
        step: str,
        phases: tuple[InvocationPhase, ...],
        error: Exception,
        *,
        output: Mapping[str, Any] | None = None,
    ) -> "InvocationResult":
        """Create a result for an input or output rejection."""
        return cls(step=step, phase=phases[-1], phases=phases, output=output, error=error)

    @classmethod
    def committed(
        cls,
        step: str,
        phases: tuple[InvocationPhase, ...],
        output: Mapping[str, Any],
        mutations: tuple[MutationRecord, ...],
        persist_error: Exception | None = None,
    ) -> "InvocationResult":
        """Create a result for an invocation that reached COMMITTED."""
        return cls(
            step=step,
            phase=InvocationPhase.COMMITTED,
            phases=phases,
            output=output,
            mutations=mutations,
            persist_error=persist_error,
        )

    @property
    def is_committed(self) -> bool:
        return self.phase is InvocationPhase.COMMITTED

    @property
    def is_rejected(self) -> bool:
        return self.phase in (
            InvocationPhase.INPUT_REJECTED,
            InvocationPhase.OUTPUT_REJECTED,
        )

    @property
    def body_invoked(self) -> bool:
        return InvocationPhase.PROCESSING in self.phases
