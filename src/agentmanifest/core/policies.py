# src/agentmanifest/core/policies.py
"""Access policy compilation.

Each table's ``access`` entries become enforced row-level rules: one rule per
(actor, operation), with the ``:actor`` placeholder replaced by the actor's
identifier expression. Tables without policies are refused outright; there
is no implicit "allow".
"""

import re
from collections.abc import Iterable, Mapping
from dataclasses import dataclass

from agentmanifest.contracts.enums import Operation
from agentmanifest.contracts.errors import PolicyCompileError
from agentmanifest.core.manifest import Actor, Table

_ACTOR_PLACEHOLDER = re.compile(r":actor\b")


def mentions_actor(condition: str) -> bool:
    return _ACTOR_PLACEHOLDER.search(condition) is not None


def substitute_actor(condition: str, identifier: str) -> str:
    """Replace every ``:actor`` with the actor's identifier expression."""
    # Function replacement: identifiers may contain backslashes
    return _ACTOR_PLACEHOLDER.sub(lambda _: identifier, condition)


@dataclass(frozen=True)
class EnforcedRule:
    """One compiled row-level rule."""

    table: str
    actor: str
    operation: Operation
    condition: str
    source_condition: str

    @property
    def name(self) -> str:
        return f"{self.table}_{self.actor}_{self.operation.value.lower()}"

    def to_sql(self) -> str:
        """PostgreSQL CREATE POLICY statement for this rule."""
        clause = "WITH CHECK" if self.operation is Operation.INSERT else "USING"
        return (
            f"CREATE POLICY {self.name} ON {self.table} "
            f"FOR {self.operation.value} {clause} ({self.condition});"
        )


@dataclass(frozen=True)
class TablePolicies:
    """Compiled rules for one table.

    ``uncovered`` lists operations no rule grants; they are denied.
    """

    table: str
    rules: tuple[EnforcedRule, ...]
    uncovered: tuple[Operation, ...]

    def rules_for(self, operation: Operation) -> tuple[EnforcedRule, ...]:
        return tuple(r for r in self.rules if r.operation is operation)

    def to_sql(self) -> str:
        statements = [f"ALTER TABLE {self.table} ENABLE ROW LEVEL SECURITY;"]
        statements.extend(rule.to_sql() for rule in self.rules)
        return "\n".join(statements)


def compile_table_policies(table: Table, actors: Iterable[Actor] | Mapping[str, Actor]) -> TablePolicies:
    """Compile a table's access policies into enforced rules.

    Args:
        table: Table with its ``access`` list
        actors: Declared actors, as a sequence or a name -> Actor mapping

    Raises:
        PolicyCompileError: No policies, an undeclared actor, or a condition
            without ``:actor``
    """
    if isinstance(actors, Mapping):
        by_name = dict(actors)
    else:
        by_name = {a.name: a for a in actors}

    # The structural layer enforces min_length=1, but a table built with
    # model_construct() skips validation; refuse it here as well.
    if not table.access:
        raise PolicyCompileError(f"table '{table.name}' has no access policies")

    rules: list[EnforcedRule] = []
    for policy in table.access:
        actor = by_name.get(policy.actor)
        if actor is None:
            raise PolicyCompileError(
                f"table '{table.name}': policy references undeclared actor '{policy.actor}'"
            )
        if not mentions_actor(policy.condition):
            raise PolicyCompileError(
                f"table '{table.name}': condition for actor '{policy.actor}' "
                f"does not reference :actor"
            )
        condition = substitute_actor(policy.condition, actor.identifier)
        for operation in policy.expanded_operations:
            rules.append(
                EnforcedRule(
                    table=table.name,
                    actor=actor.name,
                    operation=operation,
                    condition=condition,
                    source_condition=policy.condition,
                )
            )

    covered = {r.operation for r in rules}
    uncovered = tuple(op for op in Operation if op not in covered)
    return TablePolicies(table=table.name, rules=tuple(rules), uncovered=uncovered)
