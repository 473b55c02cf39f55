# tests/conftest.py
"""Shared test fixtures and helpers.

The ``manifest_data`` fixture returns a fresh, valid manifest mapping per
test; tests mutate it freely to produce invalid variants.

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/
"""

import os
from typing import Any

import pytest
from hypothesis import Phase, Verbosity, settings

# =============================================================================
# Hypothesis Configuration
# =============================================================================

# CI profile: Fast tests for continuous integration
settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

# Nightly profile: Thorough testing for scheduled runs
settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Debug profile: Minimal examples with verbose output for debugging
settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

# Load profile from environment, default to "ci"
settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Manifest fixtures
# =============================================================================


def sample_manifest() -> dict[str, Any]:
    """A small lead-enrichment product that compiles without errors."""
    return {
        "product": {
            "name": "leadflow",
            "description": "Lead enrichment and matching",
            "version": "1.0.0",
        },
        "state_machine": {
            "initial": "new",
            "states": [
                {"name": "new", "transitions_to": ["enriched", "rejected"]},
                {"name": "enriched", "transitions_to": ["matched"]},
                {"name": "matched", "terminal": True},
                {"name": "rejected", "terminal": True},
            ],
        },
        "events": {
            "namespace": "leadflow",
            "definitions": [
                {
                    "name": "lead.ingested",
                    "payload": {
                        "lead_id": {"type": "string", "required": True},
                        "org_id": {"type": "string"},
                    },
                    "idempotency_key": "lead_id",
                },
                {
                    "name": "lead.enriched",
                    "payload": {"lead_id": {"type": "string", "required": True}},
                },
                {
                    "name": "lead.matched",
                    "payload": {"lead_id": {"type": "string", "required": True}},
                },
            ],
        },
        "agents": [
            {
                "name": "enricher",
                "description": "Enriches a freshly ingested lead",
                "triggers": [{"event": "lead.ingested"}],
                "emits": [{"event": "lead.enriched"}],
                "contract": {
                    "state_in": "new",
                    "state_out": "enriched",
                    "context_in": {
                        "from_db": [{"table": "leads", "as": "lead", "must_have": ["id", "status"]}]
                    },
                    "context_out": {"artifacts": [{"file": "reports/{{ lead_id }}.md"}]},
                    "output_schema": "EnrichmentOutput",
                },
                "config": {"model": "sonnet", "allowed_tools": ["Read", "Write"]},
                "validate_input": {
                    "payload": ["lead_id"],
                    "exists": "leads.id = {{ lead_id }}",
                    "state": "status IN ('new')",
                },
                "persist": [
                    {
                        "action": "update",
                        "table": "leads",
                        "set": {"status": "{{ result.new_status }}"},
                        "where": "id = {{ lead_id }}",
                    },
                    {
                        "action": "log",
                        "table": "lead_events",
                        "data": {"lead_id": "{{ lead_id }}", "event": "enriched"},
                    },
                ],
            }
        ],
        "functions": [
            {
                "name": "matcher",
                "pattern": "simple",
                "description": "Matches enriched leads",
                "trigger": {"event": "lead.enriched"},
                "emits": ["lead.matched"],
            }
        ],
        "database": {
            "actors": [{"name": "tenant", "identifier": "current_tenant()"}],
            "tables": [
                {
                    "name": "leads",
                    "columns": [
                        {"name": "id", "type": "uuid", "nullable": False},
                        {"name": "org_id", "type": "uuid"},
                        {"name": "status", "type": "text"},
                    ],
                    "access": [
                        {"actor": "tenant", "operations": ["SELECT"], "condition": "org_id = :actor"}
                    ],
                },
                {
                    "name": "lead_events",
                    "columns": [
                        {"name": "lead_id", "type": "uuid"},
                        {"name": "org_id", "type": "uuid"},
                        {"name": "event", "type": "text"},
                    ],
                    "access": [
                        {
                            "actor": "tenant",
                            "operations": ["SELECT", "INSERT"],
                            "condition": "org_id = :actor",
                        }
                    ],
                },
            ],
        },
    }


@pytest.fixture
def manifest_data() -> dict[str, Any]:
    """Fresh valid manifest mapping."""
    return sample_manifest()


@pytest.fixture
def compiled_ir(manifest_data: dict[str, Any]) -> Any:
    """ManifestIR for the sample manifest."""
    from agentmanifest.core.compiler import compile_manifest

    return compile_manifest(manifest_data).unwrap()
