# src/agentmanifest/core/graph.py
"""Graph views of a manifest.

Uses NetworkX for graph operations including:
- Reachability of lifecycle states from the initial state
- Dead-end detection (non-terminal states with no way out)
- Event routing: which steps consume and produce each event
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import networkx as nx
from networkx import DiGraph

from agentmanifest.core.manifest import EventWebhook

if TYPE_CHECKING:
    from agentmanifest.core.manifest import Manifest, StateMachine


class StateGraph:
    """Lifecycle transition graph.

    Wraps NetworkX DiGraph. Transitions to undeclared states are kept out of
    the graph; the cross-reference pass reports them separately.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()
        self._terminal: set[str] = set()
        self._initial: str | None = None

    @property
    def node_count(self) -> int:
        return self._graph.number_of_nodes()

    @property
    def edge_count(self) -> int:
        return self._graph.number_of_edges()

    def has_state(self, name: str) -> bool:
        return self._graph.has_node(name)

    def has_transition(self, from_state: str, to_state: str) -> bool:
        return self._graph.has_edge(from_state, to_state)

    def add_state(self, name: str, *, terminal: bool = False) -> None:
        self._graph.add_node(name)
        if terminal:
            self._terminal.add(name)

    def add_transition(self, from_state: str, to_state: str) -> None:
        self._graph.add_edge(from_state, to_state)

    def reachable_from(self, start: str) -> set[str]:
        """States reachable from ``start``, including itself."""
        if not self._graph.has_node(start):
            return set()
        return {start} | nx.descendants(self._graph, start)

    def unreachable_states(self) -> list[str]:
        """States that cannot be reached from the initial state.

        Returns an empty list when the initial state is undeclared (that is
        reported on its own and would otherwise flag every state).
        """
        if self._initial is None or not self._graph.has_node(self._initial):
            return []
        reachable = self.reachable_from(self._initial)
        return [n for n in self._graph.nodes if n not in reachable]

    def dead_ends(self) -> list[str]:
        """Non-terminal states with no outgoing transitions."""
        return [
            n
            for n in self._graph.nodes
            if n not in self._terminal and self._graph.out_degree(n) == 0
        ]

    def can_terminate(self, state: str) -> bool:
        """Whether some terminal state is reachable from ``state``."""
        return any(t in self._terminal for t in self.reachable_from(state))

    @classmethod
    def from_state_machine(cls, machine: StateMachine) -> StateGraph:
        graph = cls()
        graph._initial = machine.initial
        for state in machine.states:
            graph.add_state(state.name, terminal=state.terminal)
        declared = machine.state_names
        for state in machine.states:
            for target in state.transitions_to:
                if target in declared:
                    graph.add_transition(state.name, target)
        return graph


class EventGraph:
    """Bipartite graph of events and the steps that consume/produce them.

    Event nodes are prefixed ``event:`` and step nodes ``step:`` so an event
    and a step may share a name.
    """

    def __init__(self) -> None:
        self._graph: DiGraph[str] = nx.DiGraph()

    @staticmethod
    def _event_node(name: str) -> str:
        return f"event:{name}"

    @staticmethod
    def _step_node(name: str) -> str:
        return f"step:{name}"

    def add_event(self, name: str) -> None:
        self._graph.add_node(self._event_node(name), node_type="event", name=name)

    def add_step(self, name: str) -> None:
        self._graph.add_node(self._step_node(name), node_type="step", name=name)

    def add_consumer(self, event: str, step: str) -> None:
        self._graph.add_edge(self._event_node(event), self._step_node(step))

    def add_producer(self, step: str, event: str) -> None:
        self._graph.add_edge(self._step_node(step), self._event_node(event))

    def consumers(self, event: str) -> tuple[str, ...]:
        node = self._event_node(event)
        if not self._graph.has_node(node):
            return ()
        return tuple(sorted(self._graph.nodes[s]["name"] for s in self._graph.successors(node)))

    def producers(self, event: str) -> tuple[str, ...]:
        node = self._event_node(event)
        if not self._graph.has_node(node):
            return ()
        return tuple(sorted(self._graph.nodes[s]["name"] for s in self._graph.predecessors(node)))

    def events(self) -> list[str]:
        return [
            data["name"]
            for _, data in self._graph.nodes(data=True)
            if data.get("node_type") == "event"
        ]

    def unconsumed_events(self) -> list[str]:
        """Declared events no step is triggered by."""
        return [e for e in self.events() if not self.consumers(e)]

    def trigger_index(self) -> dict[str, tuple[str, ...]]:
        """event name -> steps it triggers, for every event with consumers."""
        return {e: self.consumers(e) for e in sorted(self.events()) if self.consumers(e)}

    @classmethod
    def from_manifest(cls, manifest: Manifest) -> EventGraph:
        """Build from a manifest, ignoring references to undeclared events."""
        graph = cls()
        declared = {e.name for e in manifest.events.definitions}
        for definition in manifest.events.definitions:
            graph.add_event(definition.name)
        for _, step in manifest.steps():
            graph.add_step(step.name)
            for event in step.trigger_events():
                if event in declared:
                    graph.add_consumer(event, step.name)
            for event, _ in step.emitted_events():
                if event in declared:
                    graph.add_producer(step.name, event)
        for webhook in manifest.webhooks:
            if isinstance(webhook, EventWebhook) and webhook.emits in declared:
                graph.add_step(f"webhook:{webhook.name}")
                graph.add_producer(f"webhook:{webhook.name}", webhook.emits)
        return graph
