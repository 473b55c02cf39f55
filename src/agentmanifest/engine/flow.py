# src/agentmanifest/engine/flow.py
"""Flow validation engine.

Drives one agent/function invocation through its phases:

    pending -> input_validating -> input_rejected
                                -> processing -> output_validating -> output_rejected
                                                                   -> committed

Input checks fail fast and in a fixed order (payload fields, exists, state,
files). On any rejection the step body is never called. Persistence runs
only from committed.
"""

from collections.abc import Callable, Mapping
from typing import Any, Protocol

from pydantic import BaseModel, ConfigDict, ValidationError

from agentmanifest.contracts.enums import InvocationPhase
from agentmanifest.contracts.errors import (
    FlowRejection,
    MissingArtifact,
    MissingPayloadField,
    OutputRejected,
    PersistError,
    PreconditionNotMet,
    StateMismatch,
    TemplateError,
    UnsupportedPredicateError,
)
from agentmanifest.contracts.results import InvocationResult, MutationRecord
from agentmanifest.core.ir import ManifestIR
from agentmanifest.core.logging import get_logger
from agentmanifest.core.manifest import CustomAction, Step
from agentmanifest.engine.persistence import CustomActionFn, DataStore, PersistenceExecutor
from agentmanifest.engine.predicates import QueryFn, evaluate, evaluate_state, parse_predicate
from agentmanifest.engine.templates import has_path, resolve

logger = get_logger(__name__)

StepBody = Callable[[Mapping[str, Any]], Mapping[str, Any]]


class ArtifactExists(Protocol):
    """Artifact storage capability: does a file exist at ``path``?"""

    def __call__(self, path: str) -> bool: ...


class StepOutput(BaseModel):
    """Base for registered output schemas.

    Every step reports ``success`` and, on failure, an ``error`` message;
    schemas add their own fields.
    """

    model_config = ConfigDict(extra="allow")

    success: bool
    error: str | None = None


class FlowEngine:
    """Validates invocations of the steps in one IR.

    The engine holds no per-invocation state, so one instance may serve
    concurrent invocations; consistency between a state check and a later
    write is the store's job.

    Example:
        engine = FlowEngine(ir, query_fn=store, store=store)
        result = engine.invoke("enricher", payload, current_state="new", body=run_agent)
    """

    def __init__(
        self,
        ir: ManifestIR,
        query_fn: QueryFn | Callable[[str, str], int] | None = None,
        artifact_exists: ArtifactExists | Callable[[str], bool] | None = None,
        store: DataStore | None = None,
        custom_actions: Mapping[str, CustomActionFn] | None = None,
        output_schemas: Mapping[str, type[BaseModel]] | None = None,
    ) -> None:
        self._ir = ir
        self._query_fn = query_fn
        self._artifact_exists = artifact_exists
        self._output_schemas = dict(output_schemas or {})
        self._executor = PersistenceExecutor(store, custom_actions) if store is not None else None
        self._check_capabilities(store, custom_actions or {})

    def _check_capabilities(self, store: DataStore | None, custom_actions: Mapping[str, CustomActionFn]) -> None:
        """Fail at construction when a step needs a capability nobody provided."""
        for name, step in self._ir.steps.items():
            if step.validate_input.exists is not None and self._query_fn is None:
                raise ValueError(f"step '{name}' uses validate_input.exists but no query_fn was given")
            needs_files = bool(step.validate_input.files) or (
                step.validate_output.require_artifacts and step.contract is not None
            )
            if needs_files and self._artifact_exists is None:
                raise ValueError(f"step '{name}' checks artifacts but no artifact_exists was given")
            if step.persist and store is None:
                raise ValueError(f"step '{name}' has persist actions but no store was given")
            for action in step.persist:
                if isinstance(action, CustomAction) and action.ref not in custom_actions:
                    raise ValueError(f"step '{name}' uses custom action '{action.ref}' but it is not registered")

    # === Input ===

    def check_input(
        self,
        step: Step,
        payload: Mapping[str, Any],
        current_state: str | None,
    ) -> None:
        """Run input checks in order, raising on the first failure.

        Raises:
            MissingPayloadField, PreconditionNotMet, StateMismatch, MissingArtifact
            UnresolvedReferenceError: A predicate or path references an absent value
            UnsupportedPredicateError: A predicate is outside the grammar
        """
        rule = step.validate_input
        for field in rule.payload:
            if payload.get(field) is None:
                raise MissingPayloadField(field)

        if rule.exists is not None:
            assert self._query_fn is not None
            if not evaluate(rule.exists, payload, self._query_fn):
                table = parse_predicate(rule.exists).target_table(rule.exists)
                raise PreconditionNotMet(rule.exists, table)

        if rule.state is not None and not evaluate_state(rule.state, payload, current_state):
            raise StateMismatch(rule.state, current_state)

        for template in rule.files:
            path = resolve(template, payload)
            assert self._artifact_exists is not None
            if not self._artifact_exists(path):
                raise MissingArtifact(path)

    # === Output ===

    def check_output(
        self,
        step: Step,
        output: Any,
        payload: Mapping[str, Any],
    ) -> None:
        """Validate what the step body reported.

        Raises:
            OutputRejected: Output is malformed, reports failure, misses
                fields, fails its schema or lacks required artifacts
        """
        if not isinstance(output, Mapping):
            raise OutputRejected(f"step output must be a mapping, got {type(output).__name__}")

        rule = step.validate_output
        if rule.require_success and output.get("success") is not True:
            error = output.get("error")
            raise OutputRejected(
                "step did not report success",
                problems=[str(error)] if error else (),
            )

        missing = [f for f in rule.required_fields if not has_path(output, f)]
        if missing:
            raise OutputRejected(
                f"output is missing required fields: {', '.join(missing)}",
                problems=missing,
            )

        contract = step.contract
        if contract is None:
            return

        schema = self._output_schemas.get(contract.output_schema)
        if schema is not None:
            try:
                schema.model_validate(dict(output))
            except ValidationError as e:
                problems = [
                    f"{'.'.join(str(x) for x in err['loc'])}: {err['msg']}" for err in e.errors()
                ]
                raise OutputRejected(
                    f"output does not match schema '{contract.output_schema}'",
                    problems=problems,
                ) from e

        if rule.require_artifacts:
            assert self._artifact_exists is not None
            context = {**payload, "result": output}
            absent = [
                path
                for path in (
                    resolve(a.file, context) for a in contract.context_out.artifacts if a.required
                )
                if not self._artifact_exists(path)
            ]
            if absent:
                raise OutputRejected(
                    f"required artifacts were not produced: {', '.join(absent)}",
                    problems=absent,
                )

    # === Invocation ===

    def invoke(
        self,
        step_name: str,
        payload: Mapping[str, Any],
        *,
        current_state: str | None = None,
        body: StepBody,
    ) -> InvocationResult:
        """Validate, run and persist one invocation.

        Args:
            step_name: Agent or function name
            payload: Trigger event payload
            current_state: Entity's recorded lifecycle state, for ``state`` rules
            body: The external step; called with the payload, returns its output

        Returns:
            InvocationResult; rejections are results, not exceptions

        Raises:
            KeyError: Unknown step name
        """
        step = self._ir.step(step_name)
        phases = [InvocationPhase.PENDING, InvocationPhase.INPUT_VALIDATING]

        try:
            self.check_input(step, payload, current_state)
        except (FlowRejection, TemplateError, UnsupportedPredicateError) as e:
            phases.append(InvocationPhase.INPUT_REJECTED)
            logger.info(
                "invocation_rejected",
                step=step_name,
                phase=InvocationPhase.INPUT_REJECTED.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            return InvocationResult.rejected(step_name, tuple(phases), e)

        phases.append(InvocationPhase.PROCESSING)
        output = body(payload)

        phases.append(InvocationPhase.OUTPUT_VALIDATING)
        try:
            self.check_output(step, output, payload)
        except (OutputRejected, TemplateError) as e:
            phases.append(InvocationPhase.OUTPUT_REJECTED)
            logger.info(
                "invocation_rejected",
                step=step_name,
                phase=InvocationPhase.OUTPUT_REJECTED.value,
                error_type=type(e).__name__,
                error=str(e),
            )
            return InvocationResult.rejected(
                step_name,
                tuple(phases),
                e,
                output=output if isinstance(output, Mapping) else None,
            )

        phases.append(InvocationPhase.COMMITTED)
        mutations: tuple[MutationRecord, ...] = ()
        persist_error: Exception | None = None
        if step.persist:
            assert self._executor is not None
            try:
                mutations = tuple(self._executor.apply(step.persist, {**payload, "result": output}))
            except PersistError as e:
                persist_error = e
                mutations = e.applied
            except (TemplateError, UnsupportedPredicateError) as e:
                persist_error = e
                logger.error("persist_unresolved", step=step_name, error=str(e))

        logger.debug(
            "invocation_committed",
            step=step_name,
            mutations=len(mutations),
            persist_failed=persist_error is not None,
        )
        return InvocationResult.committed(
            step_name, tuple(phases), output, mutations, persist_error=persist_error
        )
