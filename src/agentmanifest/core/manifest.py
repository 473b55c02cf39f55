# src/agentmanifest/core/manifest.py
"""Typed manifest tree.

Pydantic models define the document's shape. Validation here is strictly
structural (types, required keys, enums, ranges, discriminated unions);
anything that needs to look at another part of the document belongs to
the cross-reference pass. Models are frozen after construction and unknown
keys are rejected so typos surface as errors instead of being ignored.

Defaults are applied here (limits, workspace cleanup, artifact persistence,
flow rules) so downstream code never asks "was this provided?".
"""

import re
from collections.abc import Iterator
from typing import Annotated, Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

from agentmanifest.contracts.enums import Operation

# SQL identifiers: tables, columns, actors
_IDENTIFIER_PATTERN = re.compile(r"^[a-zA-Z_][a-zA-Z0-9_]*$")
_DURATION_PATTERN = re.compile(r"^\d+(ms|s|m|h|d)$")
_CRON_FIELD_PATTERN = re.compile(r"^[\d*/,\-A-Za-z?LW#]+$")

ModelName = Literal["haiku", "sonnet", "opus"]
TemplateLiteral = str | int | float | bool | None


def _check_identifier(value: str, what: str) -> str:
    if not _IDENTIFIER_PATTERN.match(value):
        raise ValueError(f"{what} '{value}' must be a valid identifier")
    return value


class ManifestModel(BaseModel):
    """Base for every manifest node."""

    model_config = ConfigDict(frozen=True, extra="forbid", populate_by_name=True, allow_inf_nan=False)


# === Product and infrastructure ===


class Product(ManifestModel):
    name: str = Field(min_length=1)
    description: str
    version: str = Field(min_length=1)


class InngestSettings(ManifestModel):
    app_id: str
    signing_key: str
    event_key: str


class SupabaseSettings(ManifestModel):
    project_ref: str
    url: str
    anon_key: str
    service_key: str


class AnthropicSettings(ManifestModel):
    api_key: str
    default_model: ModelName


class DeploymentSettings(ManifestModel):
    platform: Literal["vercel", "railway", "docker"]
    region: str | None = None


class Infrastructure(ManifestModel):
    """Deployment targets. Opaque to validation beyond shape."""

    inngest: InngestSettings
    supabase: SupabaseSettings
    anthropic: AnthropicSettings
    deployment: DeploymentSettings


class TenancyIsolation(ManifestModel):
    database: Literal["rls", "schema", "database"]
    storage: Literal["prefix", "bucket"]
    workspace: Literal["prefix"]


class Tenancy(ManifestModel):
    enabled: bool
    identifier: str
    isolation: TenancyIsolation


# === State machine ===


class StateDefinition(ManifestModel):
    name: str = Field(min_length=1)
    transitions_to: tuple[str, ...] = ()
    terminal: bool = False

    @model_validator(mode="after")
    def validate_terminal_has_no_transitions(self) -> "StateDefinition":
        """A terminal state cannot lead anywhere."""
        if self.terminal and self.transitions_to:
            raise ValueError(
                f"terminal state '{self.name}' cannot have transitions_to "
                f"(found {list(self.transitions_to)})"
            )
        return self


class StateMachine(ManifestModel):
    initial: str = Field(min_length=1)
    states: tuple[StateDefinition, ...] = Field(min_length=1)

    @property
    def state_names(self) -> frozenset[str]:
        return frozenset(s.name for s in self.states)


# === Events ===


class EventField(ManifestModel):
    type: Literal["string", "number", "boolean", "object"]
    required: bool = False
    enum: tuple[str, ...] | None = None
    min: float | None = None
    max: float | None = None

    @model_validator(mode="after")
    def validate_constraints_match_type(self) -> "EventField":
        if self.enum is not None and self.type != "string":
            raise ValueError("enum is only valid for string fields")
        if self.enum is not None and not self.enum:
            raise ValueError("enum must list at least one value")
        if (self.min is not None or self.max is not None) and self.type != "number":
            raise ValueError("min/max are only valid for number fields")
        if self.min is not None and self.max is not None and self.min > self.max:
            raise ValueError(f"min ({self.min}) cannot exceed max ({self.max})")
        return self


class EventDefinition(ManifestModel):
    name: str = Field(min_length=1)
    description: str | None = None
    payload: dict[str, EventField] = Field(default_factory=dict)
    idempotency_key: str | None = None


class Events(ManifestModel):
    namespace: str = Field(min_length=1)
    definitions: tuple[EventDefinition, ...] = ()


# === Contract ===


class DbSource(ManifestModel):
    table: str
    as_: str = Field(alias="as")
    template: str | None = None
    must_have: tuple[str, ...] = ()


class StaticSource(ManifestModel):
    source: str
    dest: str


class ArtifactSpec(ManifestModel):
    file: str = Field(min_length=1)
    required: bool = True
    persist_to: Literal["supabase_storage", "database", "none"] = "supabase_storage"


class ContextIn(ManifestModel):
    from_db: tuple[DbSource, ...] = ()
    static: tuple[StaticSource, ...] = ()


class ContextOut(ManifestModel):
    artifacts: tuple[ArtifactSpec, ...] = ()


class Contract(ManifestModel):
    state_in: tuple[str, ...] = Field(min_length=1)
    state_out: str
    context_in: ContextIn = Field(default_factory=ContextIn)
    context_out: ContextOut = Field(default_factory=ContextOut)
    output_schema: str

    @field_validator("state_in", mode="before")
    @classmethod
    def normalize_state_in(cls, v: Any) -> Any:
        """A single state name is shorthand for a one-element list."""
        if isinstance(v, str):
            return (v,)
        return v


# === Agent configuration ===


class Subagent(ManifestModel):
    name: str
    description: str | None = None
    model: ModelName
    tools: tuple[str, ...] = ()


class McpServer(ManifestModel):
    name: str
    url: str


class AgentConfig(ManifestModel):
    model: ModelName
    allowed_tools: tuple[str, ...] = ()
    permission_mode: Literal["default", "acceptEdits", "bypassPermissions"] = "default"
    subagents: tuple[Subagent, ...] = ()
    mcp_servers: tuple[McpServer, ...] = ()


class AgentLimits(ManifestModel):
    max_tokens: int = Field(default=50000, gt=0)
    max_tool_calls: int = Field(default=50, gt=0)
    timeout_seconds: int = Field(default=300, gt=0)
    max_retries: int = Field(default=3, ge=0)


class Workspace(ManifestModel):
    base: str | None = None
    cleanup: Literal["on_success", "on_complete", "never"] = "on_success"
    snapshot_on_failure: bool = True


# === Flow fields ===


class ValidationRule(ManifestModel):
    """Pre-conditions checked before the step body runs.

    An empty rule checks nothing.
    """

    payload: tuple[str, ...] = ()
    exists: str | None = None
    state: str | None = None
    files: tuple[str, ...] = ()


class OutputRule(ManifestModel):
    """Post-conditions checked before any persist action runs."""

    require_success: bool = True
    require_artifacts: bool = False
    required_fields: tuple[str, ...] = ()


class UpdateAction(ManifestModel):
    action: Literal["update"]
    table: str
    set_: dict[str, TemplateLiteral] = Field(alias="set", min_length=1)
    where: str | None = None


class InsertAction(ManifestModel):
    action: Literal["insert"]
    table: str
    values: dict[str, TemplateLiteral] = Field(min_length=1)


class LogAction(ManifestModel):
    action: Literal["log"]
    table: str
    data: dict[str, TemplateLiteral] = Field(default_factory=dict)


class CustomAction(ManifestModel):
    action: Literal["custom"]
    ref: str = Field(min_length=1)


PersistAction = Annotated[
    UpdateAction | InsertAction | LogAction | CustomAction,
    Field(discriminator="action"),
]


class FlowFields(ManifestModel):
    """Flow validation and persistence shared by agents and functions."""

    validate_input: ValidationRule = Field(default_factory=ValidationRule)
    validate_output: OutputRule = Field(default_factory=OutputRule)
    persist: tuple[PersistAction, ...] = ()


# === Agents ===


class TriggerRef(ManifestModel):
    event: str


class EmitSpec(ManifestModel):
    event: str
    when: str | None = None
    delay: str | None = None

    @field_validator("delay")
    @classmethod
    def validate_delay(cls, v: str | None) -> str | None:
        if v is not None and not _DURATION_PATTERN.match(v):
            raise ValueError(f"delay '{v}' must be a duration like 30s, 5m, 2h or 1d")
        return v


class Agent(FlowFields):
    name: str = Field(min_length=1)
    description: str
    triggers: tuple[TriggerRef, ...] = Field(min_length=1)
    emits: tuple[EmitSpec, ...] = ()
    contract: Contract
    config: AgentConfig
    limits: AgentLimits = Field(default_factory=AgentLimits)
    workspace: Workspace = Field(default_factory=Workspace)

    def trigger_events(self) -> tuple[str, ...]:
        return tuple(t.event for t in self.triggers)

    def emitted_events(self) -> Iterator[tuple[str, tuple[str | int, ...]]]:
        """(event, path-within-step) for every event this step may emit."""
        for i, emit in enumerate(self.emits):
            yield emit.event, ("emits", i, "event")


# === Functions ===


class SimpleTrigger(ManifestModel):
    event: str


class FanInTrigger(ManifestModel):
    primary: str
    wait_for: tuple[str, ...] = Field(min_length=1)
    correlation_key: str
    timeout: str | None = None

    @field_validator("timeout")
    @classmethod
    def validate_timeout(cls, v: str | None) -> str | None:
        if v is not None and not _DURATION_PATTERN.match(v):
            raise ValueError(f"timeout '{v}' must be a duration like 30s, 5m, 2h or 1d")
        return v


class CronTrigger(ManifestModel):
    cron: str
    schedule: str


class Route(ManifestModel):
    emit: str
    then: str | None = None


class RoutingTrigger(ManifestModel):
    event: str
    route_on: str
    routes: dict[str, Route] = Field(min_length=1)
    default_route: str | None = None


class WebhookTrigger(ManifestModel):
    webhook: str


class FunctionBase(FlowFields):
    name: str = Field(min_length=1)
    description: str
    emits: tuple[str, ...] = ()
    actions: tuple[str, ...] = ()
    integrations: tuple[str, ...] = ()
    context: str | None = None
    open_questions: tuple[str, ...] = ()
    contract: Contract | None = None

    def trigger_events(self) -> tuple[str, ...]:
        return ()

    def emitted_events(self) -> Iterator[tuple[str, tuple[str | int, ...]]]:
        for i, event in enumerate(self.emits):
            yield event, ("emits", i)


class SimpleFunction(FunctionBase):
    pattern: Literal["simple"]
    trigger: SimpleTrigger

    def trigger_events(self) -> tuple[str, ...]:
        return (self.trigger.event,)


class FanInFunction(FunctionBase):
    pattern: Literal["fan-in"]
    trigger: FanInTrigger

    def trigger_events(self) -> tuple[str, ...]:
        return (self.trigger.primary, *self.trigger.wait_for)


class CronFunction(FunctionBase):
    pattern: Literal["cron"]
    trigger: CronTrigger


class RoutingFunction(FunctionBase):
    pattern: Literal["routing"]
    trigger: RoutingTrigger

    @model_validator(mode="after")
    def validate_default_route(self) -> "RoutingFunction":
        default = self.trigger.default_route
        if default is not None and default not in self.trigger.routes:
            raise ValueError(
                f"default_route '{default}' is not one of the routes: "
                f"{sorted(self.trigger.routes)}"
            )
        return self

    def trigger_events(self) -> tuple[str, ...]:
        return (self.trigger.event,)

    def emitted_events(self) -> Iterator[tuple[str, tuple[str | int, ...]]]:
        yield from super().emitted_events()
        for key, route in self.trigger.routes.items():
            yield route.emit, ("trigger", "routes", key, "emit")
            if route.then is not None:
                yield route.then, ("trigger", "routes", key, "then")


class WebhookFunction(FunctionBase):
    pattern: Literal["inngest-first-webhook"]
    trigger: WebhookTrigger


Function = Annotated[
    SimpleFunction | FanInFunction | CronFunction | RoutingFunction | WebhookFunction,
    Field(discriminator="pattern"),
]

Step = Agent | SimpleFunction | FanInFunction | CronFunction | RoutingFunction | WebhookFunction


# === Webhooks and crons ===


class WebhookHandler(ManifestModel):
    validation: tuple[str, ...] = ()
    transform: tuple[str, ...] = ()


class WebhookBase(ManifestModel):
    name: str = Field(min_length=1)
    path: str
    auth: Literal["hmac", "api_key", "bearer", "none"]
    secret: str | None = None
    description: str | None = None

    @field_validator("path")
    @classmethod
    def validate_path(cls, v: str) -> str:
        if not v.startswith("/"):
            raise ValueError(f"webhook path '{v}' must start with '/'")
        return v

    @model_validator(mode="after")
    def validate_secret(self) -> "WebhookBase":
        if self.auth != "none" and not self.secret:
            raise ValueError(f"webhook '{self.name}': auth '{self.auth}' requires a secret")
        return self


class EventWebhook(WebhookBase):
    """Webhook that emits an event directly."""

    routing: Literal["event"]
    emits: str
    transform: str | None = None
    handler: WebhookHandler | None = None


class FunctionWebhook(WebhookBase):
    """Webhook handed to an inngest-first-webhook function."""

    routing: Literal["function"]
    function: str


Webhook = Annotated[EventWebhook | FunctionWebhook, Field(discriminator="routing")]


class Cron(ManifestModel):
    name: str = Field(min_length=1)
    schedule: str
    function: str
    description: str | None = None

    @field_validator("schedule")
    @classmethod
    def validate_schedule(cls, v: str) -> str:
        fields = v.split()
        if len(fields) != 5 or not all(_CRON_FIELD_PATTERN.match(f) for f in fields):
            raise ValueError(f"schedule '{v}' must be a 5-field cron expression")
        return v


# === Database ===


class Column(ManifestModel):
    name: str
    type: str
    nullable: bool = True
    default: str | None = None
    references: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_identifier(v, "column name")


class AccessPolicy(ManifestModel):
    actor: str
    operations: tuple[Literal["SELECT", "INSERT", "UPDATE", "DELETE", "ALL"], ...] = Field(
        min_length=1
    )
    condition: str = Field(min_length=1)

    @field_validator("operations", mode="before")
    @classmethod
    def normalize_operations(cls, v: Any) -> Any:
        if isinstance(v, str):
            v = [v]
        if isinstance(v, (list, tuple)):
            return tuple(op.upper() if isinstance(op, str) else op for op in v)
        return v

    @property
    def expanded_operations(self) -> tuple[Operation, ...]:
        """Operations in canonical order, with ALL expanded."""
        if "ALL" in self.operations:
            return tuple(Operation)
        return tuple(op for op in Operation if op.value in self.operations)


class Table(ManifestModel):
    name: str
    columns: tuple[Column, ...] | None = None
    access: tuple[AccessPolicy, ...] = Field(
        min_length=1,
        description="Row-level access policies; at least one (default deny)",
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_identifier(v, "table name")

    @property
    def column_names(self) -> frozenset[str] | None:
        """Declared column names, or None when columns are not declared."""
        if self.columns is None:
            return None
        return frozenset(c.name for c in self.columns)


class Actor(ManifestModel):
    name: str
    identifier: str = Field(min_length=1)
    description: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        return _check_identifier(v, "actor name")


class Database(ManifestModel):
    migrations_dir: str = "supabase/migrations/"
    actors: tuple[Actor, ...] = ()
    tables: tuple[Table, ...] = ()


# === Observability ===


class LoggingOptions(ManifestModel):
    level: Literal["debug", "info", "warn", "error"] = "info"
    format: Literal["json", "pretty"] = "json"


class TracingOptions(ManifestModel):
    enabled: bool = True
    trace_id_field: str = "trace_id"


class Observability(ManifestModel):
    logging: LoggingOptions = Field(default_factory=LoggingOptions)
    tracing: TracingOptions = Field(default_factory=TracingOptions)


# === Manifest ===


class Manifest(ManifestModel):
    """Top-level manifest document.

    This is the typed tree produced by the loader; the compiler turns it
    into a ManifestIR after cross-reference validation.
    """

    product: Product
    infrastructure: Infrastructure | None = None
    tenancy: Tenancy | None = None
    state_machine: StateMachine
    events: Events
    agents: tuple[Agent, ...] = ()
    functions: tuple[Function, ...] = ()
    database: Database = Field(default_factory=Database)
    crons: tuple[Cron, ...] = ()
    webhooks: tuple[Webhook, ...] = ()
    observability: Observability = Field(default_factory=Observability)

    def steps(self) -> Iterator[tuple[tuple[str | int, ...], Step]]:
        """Every agent and function with its document path."""
        for i, agent in enumerate(self.agents):
            yield ("agents", i), agent
        for i, function in enumerate(self.functions):
            yield ("functions", i), function
