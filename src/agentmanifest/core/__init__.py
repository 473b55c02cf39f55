# src/agentmanifest/core/__init__.py
"""Core: manifest model, loading, graphs, policies, settings, logging.

The compiler facade lives in ``agentmanifest.core.compiler``; it is not
re-exported here because it depends on the engine package.
"""

from agentmanifest.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
)
from agentmanifest.core.config import (
    CompilerSettings,
    load_settings,
)
from agentmanifest.core.graph import (
    EventGraph,
    StateGraph,
)
from agentmanifest.core.loader import (
    LoadResult,
    load_manifest,
    load_manifest_file,
    load_manifest_text,
)
from agentmanifest.core.logging import (
    configure_logging,
    get_logger,
)
from agentmanifest.core.manifest import Manifest
from agentmanifest.core.policies import (
    EnforcedRule,
    TablePolicies,
    compile_table_policies,
)

__all__ = [
    "CANONICAL_VERSION",
    "CompilerSettings",
    "EnforcedRule",
    "EventGraph",
    "LoadResult",
    "Manifest",
    "StateGraph",
    "TablePolicies",
    "canonical_json",
    "compile_table_policies",
    "configure_logging",
    "get_logger",
    "load_manifest",
    "load_manifest_file",
    "load_manifest_text",
    "load_settings",
    "stable_hash",
]
