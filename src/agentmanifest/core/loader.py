# src/agentmanifest/core/loader.py
"""Manifest loading and structural validation.

Turns a raw document (mapping, YAML/JSON text or file) into a typed
Manifest. Every Pydantic error is converted to a structural Diagnostic so
authors see all shape problems in one pass.
"""

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml
from pydantic import ValidationError

from agentmanifest.contracts.diagnostics import Diagnostic, errors_only, format_path
from agentmanifest.contracts.enums import DiagnosticKind
from agentmanifest.core.manifest import Manifest

_VALUE_ERROR_PREFIX = "Value error, "


@dataclass(frozen=True)
class LoadResult:
    """Typed tree (None when shape errors exist) plus diagnostics."""

    manifest: Manifest | None
    diagnostics: tuple[Diagnostic, ...] = ()

    @property
    def ok(self) -> bool:
        return self.manifest is not None and not errors_only(self.diagnostics)


# Collections holding discriminated unions, and the tags Pydantic inserts
# into error locations for them.
_UNION_TAGS: dict[str, frozenset[str]] = {
    "functions": frozenset({"simple", "fan-in", "cron", "routing", "inngest-first-webhook"}),
    "webhooks": frozenset({"event", "function"}),
    "persist": frozenset({"update", "insert", "log", "custom"}),
}


def _loc_for_document(loc: tuple[str | int, ...]) -> tuple[str | int, ...]:
    """Drop discriminator tags so paths match the document.

    ``("functions", 0, "simple", "trigger")`` -> ``("functions", 0, "trigger")``
    """
    cleaned: list[str | int] = []
    for i, item in enumerate(loc):
        if i >= 2 and isinstance(loc[i - 1], int):
            tags = _UNION_TAGS.get(str(loc[i - 2]))
            if tags is not None and item in tags:
                continue
        cleaned.append(item)
    return tuple(cleaned)


def diagnostics_from_validation_error(error: ValidationError) -> list[Diagnostic]:
    """Convert Pydantic errors into structural diagnostics."""
    diagnostics: list[Diagnostic] = []
    for detail in error.errors():
        message = detail["msg"]
        if message.startswith(_VALUE_ERROR_PREFIX):
            message = message[len(_VALUE_ERROR_PREFIX) :]
        diagnostics.append(
            Diagnostic(
                path=format_path(_loc_for_document(tuple(detail["loc"]))),
                kind=DiagnosticKind.STRUCTURAL,
                code=detail["type"],
                message=message,
            )
        )
    return diagnostics


def load_manifest(raw: Mapping[str, Any] | Any) -> LoadResult:
    """Structurally validate a raw manifest mapping.

    Never raises for bad input: problems come back as diagnostics.
    """
    if not isinstance(raw, Mapping):
        return LoadResult(
            manifest=None,
            diagnostics=(
                Diagnostic(
                    path="$",
                    kind=DiagnosticKind.STRUCTURAL,
                    code="document_type",
                    message=f"manifest must be a mapping, got {type(raw).__name__}",
                ),
            ),
        )
    try:
        manifest = Manifest.model_validate(dict(raw))
    except ValidationError as e:
        return LoadResult(manifest=None, diagnostics=tuple(diagnostics_from_validation_error(e)))
    return LoadResult(manifest=manifest)


def load_manifest_text(text: str) -> LoadResult:
    """Parse YAML (or JSON, which is YAML) text and validate it."""
    try:
        raw = yaml.safe_load(text)
    except yaml.YAMLError as e:
        return LoadResult(
            manifest=None,
            diagnostics=(
                Diagnostic(
                    path="$",
                    kind=DiagnosticKind.STRUCTURAL,
                    code="yaml_syntax",
                    message=f"invalid YAML: {e}",
                ),
            ),
        )
    return load_manifest(raw)


def load_manifest_file(path: Path) -> LoadResult:
    """Read and validate a manifest file.

    Raises:
        FileNotFoundError: If the file does not exist
    """
    return load_manifest_text(path.read_text(encoding="utf-8"))
