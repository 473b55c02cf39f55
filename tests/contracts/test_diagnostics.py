# tests/contracts/test_diagnostics.py
"""Tests for diagnostics and document paths."""

import pytest


class TestFormatPath:
    @pytest.mark.parametrize(
        ("loc", "expected"),
        [
            ((), "$"),
            (("product",), "product"),
            (("agents", 0, "contract", "state_in"), "agents[0].contract.state_in"),
            (("state_machine", "states", 2, "transitions_to", 1), "state_machine.states[2].transitions_to[1]"),
            ((0, "table"), "[0].table"),
        ],
    )
    def test_paths(self, loc: tuple[str | int, ...], expected: str) -> None:
        from agentmanifest.contracts import format_path

        assert format_path(loc) == expected


class TestDiagnostic:
    def test_defaults_to_error(self) -> None:
        from agentmanifest.contracts import Diagnostic, DiagnosticKind

        diagnostic = Diagnostic(
            path="agents[0].triggers[0].event",
            kind=DiagnosticKind.CROSS_REFERENCE,
            code="unknown_event",
            message="event 'x' is not declared",
        )

        assert diagnostic.is_error
        assert str(diagnostic) == "agents[0].triggers[0].event: event 'x' is not declared [unknown_event]"

    def test_to_dict_uses_values(self) -> None:
        from agentmanifest.contracts import Diagnostic, DiagnosticKind, Severity

        diagnostic = Diagnostic(
            path="events.definitions[2]",
            kind=DiagnosticKind.CROSS_REFERENCE,
            code="unconsumed_event",
            message="no step is triggered by 'lead.matched'",
            severity=Severity.INFO,
        )

        assert diagnostic.to_dict() == {
            "path": "events.definitions[2]",
            "kind": "cross_reference",
            "code": "unconsumed_event",
            "message": "no step is triggered by 'lead.matched'",
            "severity": "info",
        }

    def test_errors_only_preserves_order(self) -> None:
        from agentmanifest.contracts import Diagnostic, DiagnosticKind, Severity, errors_only

        def make(code: str, severity: Severity) -> Diagnostic:
            return Diagnostic(path="$", kind=DiagnosticKind.STRUCTURAL, code=code, message=code, severity=severity)

        diagnostics = [
            make("a", Severity.ERROR),
            make("b", Severity.WARNING),
            make("c", Severity.ERROR),
            make("d", Severity.INFO),
        ]

        assert [d.code for d in errors_only(diagnostics)] == ["a", "c"]
