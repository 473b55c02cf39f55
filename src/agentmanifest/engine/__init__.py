"""Invocation-time engine: templates, predicates, flow validation, persistence."""

from agentmanifest.engine.flow import ArtifactExists, FlowEngine, StepOutput
from agentmanifest.engine.persistence import (
    DataStore,
    PersistenceExecutor,
    compile_persist_actions,
)
from agentmanifest.engine.predicates import (
    QueryFn,
    evaluate,
    evaluate_state,
    parse_predicate,
)
from agentmanifest.engine.templates import Template, resolve, resolve_value

__all__ = [
    "ArtifactExists",
    "DataStore",
    "FlowEngine",
    "PersistenceExecutor",
    "QueryFn",
    "StepOutput",
    "Template",
    "compile_persist_actions",
    "evaluate",
    "evaluate_state",
    "parse_predicate",
    "resolve",
    "resolve_value",
]
