"""Shared contracts for cross-boundary data types.

Import pattern:
    from agentmanifest.contracts import Diagnostic, InvocationPhase, PersistError
"""

# isort: skip_file
# Import order is load-bearing: errors references results and diagnostics
# only under TYPE_CHECKING, so enums must load first.

from agentmanifest.contracts.enums import (
    DiagnosticKind,
    InvocationPhase,
    MutationKind,
    MutationStatus,
    Operation,
    Severity,
)
from agentmanifest.contracts.diagnostics import Diagnostic, errors_only, format_path
from agentmanifest.contracts.errors import (
    AgentManifestError,
    FlowRejection,
    ManifestCompileError,
    MissingArtifact,
    MissingPayloadField,
    OutputRejected,
    PersistError,
    PolicyCompileError,
    PreconditionNotMet,
    StateMismatch,
    TemplateError,
    TemplateSyntaxError,
    UnresolvedReferenceError,
    UnsupportedPredicateError,
)
from agentmanifest.contracts.results import InvocationResult, MutationRecord

__all__ = [
    # diagnostics
    "Diagnostic",
    "errors_only",
    "format_path",
    # enums
    "DiagnosticKind",
    "InvocationPhase",
    "MutationKind",
    "MutationStatus",
    "Operation",
    "Severity",
    # errors
    "AgentManifestError",
    "FlowRejection",
    "ManifestCompileError",
    "MissingArtifact",
    "MissingPayloadField",
    "OutputRejected",
    "PersistError",
    "PolicyCompileError",
    "PreconditionNotMet",
    "StateMismatch",
    "TemplateError",
    "TemplateSyntaxError",
    "UnresolvedReferenceError",
    "UnsupportedPredicateError",
    # results
    "InvocationResult",
    "MutationRecord",
]
