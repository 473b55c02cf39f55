# src/agentmanifest/core/config.py
"""
Compiler settings and loading.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field

from agentmanifest.contracts.enums import Severity


class CompilerSettings(BaseModel):
    """Policy knobs for compilation plus logging setup.

    Example YAML:
        unreachable_states: error
        dead_end_states: error
        log_level: debug
        log_format: console
    """

    model_config = {"frozen": True}

    unreachable_states: Literal["warning", "error"] = Field(
        default="warning",
        description="Severity for states that cannot be reached from the initial state",
    )
    dead_end_states: Literal["warning", "error"] = Field(
        default="error",
        description="Severity for non-terminal states with no outgoing transitions",
    )
    undeclared_transitions: Literal["warning", "error"] = Field(
        default="warning",
        description="Severity for contracts whose state_out is not a declared transition",
    )
    report_unconsumed_events: bool = Field(
        default=True,
        description="Emit an info diagnostic for events no step is triggered by",
    )
    log_level: Literal["debug", "info", "warning", "error"] = Field(
        default="info",
        description="Minimum log level",
    )
    log_format: Literal["json", "console"] = Field(
        default="console",
        description="json for machine-readable logs, console for humans",
    )

    def severity(self, policy: Literal["warning", "error"]) -> Severity:
        return Severity.ERROR if policy == "error" else Severity.WARNING


def load_settings(config_path: Path | None = None) -> CompilerSettings:
    """Load settings from a YAML file with environment variable overrides.

    Uses Dynaconf for multi-source loading with precedence:
    1. Environment variables (AGENTMANIFEST_*) - highest priority
    2. Config file
    3. Defaults from Pydantic schema - lowest priority

    Args:
        config_path: Path to YAML configuration file. None loads from the
            environment only.

    Returns:
        Validated CompilerSettings instance

    Raises:
        ValidationError: If configuration fails Pydantic validation
        FileNotFoundError: If config file doesn't exist
    """
    from dynaconf import Dynaconf

    # Explicit check for file existence (Dynaconf silently accepts missing files)
    if config_path is not None and not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    dynaconf_settings = Dynaconf(
        envvar_prefix="AGENTMANIFEST",
        settings_files=[str(config_path)] if config_path is not None else [],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    )

    # Dynaconf returns uppercase keys; convert to lowercase for Pydantic
    internal_keys = {"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES"}
    known_fields = set(CompilerSettings.model_fields)
    raw_config: dict[str, Any] = {
        k.lower(): v
        for k, v in dynaconf_settings.as_dict().items()
        if k not in internal_keys and k.lower() in known_fields
    }
    return CompilerSettings(**raw_config)
