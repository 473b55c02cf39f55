"""Diagnostics reported to manifest authors.

A diagnostic answers: "Where in the document is the problem, and what is it?"
Paths use the document's own keys, e.g. ``agents[2].contract.state_in``.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from typing import Any

from agentmanifest.contracts.enums import DiagnosticKind, Severity


def format_path(loc: Sequence[str | int]) -> str:
    """Render a location tuple as a document path.

    >>> format_path(("agents", 0, "contract", "state_in"))
    'agents[0].contract.state_in'
    """
    if not loc:
        return "$"
    parts: list[str] = []
    for item in loc:
        if isinstance(item, int):
            parts.append(f"[{item}]")
        elif parts:
            parts.append(f".{item}")
        else:
            parts.append(str(item))
    return "".join(parts)


@dataclass(frozen=True)
class Diagnostic:
    """A single structural or cross-reference finding."""

    path: str
    kind: DiagnosticKind
    code: str
    message: str
    severity: Severity = Severity.ERROR

    @property
    def is_error(self) -> bool:
        return self.severity is Severity.ERROR

    def __str__(self) -> str:
        return f"{self.path}: {self.message} [{self.code}]"

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": self.path,
            "kind": self.kind.value,
            "code": self.code,
            "message": self.message,
            "severity": self.severity.value,
        }


def errors_only(diagnostics: Iterable[Diagnostic]) -> tuple[Diagnostic, ...]:
    """Filter to blocking diagnostics, preserving order."""
    return tuple(d for d in diagnostics if d.is_error)
