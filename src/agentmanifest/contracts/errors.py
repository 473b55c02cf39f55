"""Exception taxonomy.

Compile-time problems are never raised one at a time; they are collected as
Diagnostics and surfaced together through ManifestCompileError. Everything
else here is raised at invocation time and fails a single invocation:

- Template/predicate errors: the manifest's expression could not be applied
- FlowRejection subclasses: a business rule rejected the invocation
- PersistError: persist actions were partially applied
"""

from collections.abc import Sequence
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from agentmanifest.contracts.diagnostics import Diagnostic
    from agentmanifest.contracts.results import MutationRecord


class AgentManifestError(Exception):
    """Base exception for agentmanifest."""


class ManifestCompileError(AgentManifestError):
    """Raised by CompilationResult.unwrap() when compilation failed."""

    def __init__(self, diagnostics: "Sequence[Diagnostic]") -> None:
        self.diagnostics = tuple(diagnostics)
        count = len(self.diagnostics)
        noun = "error" if count == 1 else "errors"
        super().__init__(f"Manifest rejected with {count} {noun}")


class TemplateError(AgentManifestError):
    """Error in a {{ placeholder }} template."""


class TemplateSyntaxError(TemplateError):
    """Template uses syntax outside the substitution-only subset."""


class UnresolvedReferenceError(TemplateError):
    """A placeholder path is absent from the context and has no default."""

    def __init__(self, path: str, template: str | None = None) -> None:
        self.path = path
        self.template = template
        message = f"Unresolved reference '{path}'"
        if template is not None:
            message += f" in template {template!r}"
        super().__init__(message)


class UnsupportedPredicateError(AgentManifestError):
    """Predicate uses syntax outside the supported grammar."""

    def __init__(self, expression: str, reason: str) -> None:
        self.expression = expression
        self.reason = reason
        super().__init__(f"Unsupported predicate {expression!r}: {reason}")


class FlowRejection(AgentManifestError):
    """A flow validation rule rejected an invocation."""

    code = "flow_rejected"


class MissingPayloadField(FlowRejection):
    code = "missing_payload_field"

    def __init__(self, field: str) -> None:
        self.field = field
        super().__init__(f"Required payload field '{field}' is missing")


class PreconditionNotMet(FlowRejection):
    code = "precondition_not_met"

    def __init__(self, expression: str, table: str) -> None:
        self.expression = expression
        self.table = table
        super().__init__(f"No row in '{table}' matches {expression!r}")


class StateMismatch(FlowRejection):
    code = "state_mismatch"

    def __init__(self, expression: str, current_state: str | None) -> None:
        self.expression = expression
        self.current_state = current_state
        super().__init__(
            f"Current state {current_state!r} does not satisfy {expression!r}"
        )


class MissingArtifact(FlowRejection):
    code = "missing_artifact"

    def __init__(self, path: str) -> None:
        self.path = path
        super().__init__(f"Required artifact '{path}' is missing")


class OutputRejected(FlowRejection):
    code = "output_rejected"

    def __init__(self, reason: str, *, problems: Sequence[str] = ()) -> None:
        self.reason = reason
        self.problems = tuple(problems)
        super().__init__(reason)


class PersistError(AgentManifestError):
    """Persist actions were partially applied.

    Already-applied actions are NOT rolled back; rollback belongs to the
    store's transaction support. ``applied`` lists what took effect,
    ``failed_index`` names the action that failed, and ``skipped`` lists the
    indices that never ran.
    """

    def __init__(
        self,
        *,
        applied: "Sequence[MutationRecord]",
        failed_index: int,
        skipped: Sequence[int],
        cause: Exception,
    ) -> None:
        self.applied = tuple(applied)
        self.failed_index = failed_index
        self.skipped = tuple(skipped)
        self.cause = cause
        super().__init__(
            f"Persist action {failed_index} failed after {len(self.applied)} "
            f"applied ({len(self.skipped)} skipped): {cause}"
        )


class PolicyCompileError(AgentManifestError):
    """A table's access policies cannot be compiled into enforced rules."""
