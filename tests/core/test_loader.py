# tests/core/test_loader.py
"""Tests for manifest loading and structural validation."""

from pathlib import Path
from typing import Any

import pytest


def _paths(result: Any) -> list[str]:
    return [d.path for d in result.diagnostics]


class TestLoadManifest:
    """Valid documents load with defaults applied."""

    def test_sample_manifest_loads(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        result = load_manifest(manifest_data)

        assert result.ok
        assert result.diagnostics == ()
        assert result.manifest is not None
        assert result.manifest.product.name == "leadflow"

    def test_defaults_applied(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest = load_manifest(manifest_data).manifest
        assert manifest is not None
        agent = manifest.agents[0]

        assert agent.limits.max_tokens == 50000
        assert agent.limits.max_tool_calls == 50
        assert agent.limits.timeout_seconds == 300
        assert agent.limits.max_retries == 3
        assert agent.workspace.cleanup == "on_success"
        assert agent.workspace.snapshot_on_failure is True
        assert agent.contract.context_out.artifacts[0].required is True
        assert agent.contract.context_out.artifacts[0].persist_to == "supabase_storage"
        assert agent.validate_output.require_success is True
        assert manifest.database.migrations_dir == "supabase/migrations/"

    def test_state_in_string_normalized(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest = load_manifest(manifest_data).manifest
        assert manifest is not None
        assert manifest.agents[0].contract.state_in == ("new",)

    def test_all_operation_expands(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.contracts import Operation
        from agentmanifest.core.loader import load_manifest

        manifest_data["database"]["tables"][0]["access"][0]["operations"] = ["all"]
        manifest = load_manifest(manifest_data).manifest
        assert manifest is not None

        policy = manifest.database.tables[0].access[0]
        assert policy.expanded_operations == tuple(Operation)

    def test_models_are_frozen(self, manifest_data: dict[str, Any]) -> None:
        from pydantic import ValidationError

        from agentmanifest.core.loader import load_manifest

        manifest = load_manifest(manifest_data).manifest
        assert manifest is not None
        with pytest.raises(ValidationError):
            manifest.product.name = "other"  # type: ignore[misc]


class TestStructuralErrors:
    """Shape problems come back as path-tagged diagnostics, all at once."""

    def test_collects_all_errors(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        del manifest_data["product"]["version"]
        manifest_data["agents"][0]["limits"] = {"max_tokens": 0}
        manifest_data["agents"][0]["config"]["model"] = "gpt"

        result = load_manifest(manifest_data)

        assert not result.ok
        assert result.manifest is None
        paths = _paths(result)
        assert "product.version" in paths
        assert "agents[0].limits.max_tokens" in paths
        assert "agents[0].config.model" in paths

    def test_diagnostics_are_structural(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.contracts import DiagnosticKind
        from agentmanifest.core.loader import load_manifest

        del manifest_data["events"]
        result = load_manifest(manifest_data)

        assert all(d.kind is DiagnosticKind.STRUCTURAL for d in result.diagnostics)

    def test_unknown_keys_rejected(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["agents"][0]["trigers"] = []
        result = load_manifest(manifest_data)

        assert "agents[0].trigers" in _paths(result)

    def test_terminal_state_with_transitions_rejected(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["state_machine"]["states"][2]["transitions_to"] = ["new"]
        result = load_manifest(manifest_data)

        assert not result.ok
        assert "state_machine.states[2]" in _paths(result)
        message = result.diagnostics[0].message
        assert message.startswith("terminal state 'matched'")

    def test_table_without_policies_rejected(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["database"]["tables"][0]["access"] = []
        result = load_manifest(manifest_data)

        assert "database.tables[0].access" in _paths(result)

    def test_enum_only_for_strings(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        payload = manifest_data["events"]["definitions"][0]["payload"]
        payload["score"] = {"type": "number", "enum": ["a"]}
        result = load_manifest(manifest_data)

        assert "events.definitions[0].payload.score" in _paths(result)

    def test_min_greater_than_max(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        payload = manifest_data["events"]["definitions"][0]["payload"]
        payload["score"] = {"type": "number", "min": 10, "max": 1}

        assert not load_manifest(manifest_data).ok

    def test_function_discriminated_by_pattern(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["functions"][0]["pattern"] = "fan-in"
        result = load_manifest(manifest_data)

        # fan-in requires primary/wait_for/correlation_key; tag is not in the path
        assert any(p.startswith("functions[0].trigger") for p in _paths(result))

    def test_unknown_pattern(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["functions"][0]["pattern"] = "map-reduce"
        result = load_manifest(manifest_data)

        assert not result.ok
        assert any(p.startswith("functions[0]") for p in _paths(result))

    def test_webhook_discriminated_by_routing(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        # Has 'emits' (event shape) but says routing: function
        manifest_data["webhooks"] = [
            {
                "name": "crm",
                "path": "/hooks/crm",
                "auth": "none",
                "routing": "function",
                "emits": "lead.ingested",
            }
        ]
        result = load_manifest(manifest_data)

        paths = _paths(result)
        assert "webhooks[0].function" in paths
        assert "webhooks[0].emits" in paths

    def test_webhook_secret_required(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["webhooks"] = [
            {"name": "crm", "path": "/hooks/crm", "auth": "hmac", "routing": "event", "emits": "lead.ingested"}
        ]
        assert not load_manifest(manifest_data).ok

    def test_persist_action_tag_dropped_from_path(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["agents"][0]["persist"][0]["set"] = {}
        result = load_manifest(manifest_data)

        assert "agents[0].persist[0].set" in _paths(result)

    @pytest.mark.parametrize("value", [float("inf"), float("nan")])
    def test_non_finite_numbers_rejected(self, manifest_data: dict[str, Any], value: float) -> None:
        from agentmanifest.core.loader import load_manifest

        payload = manifest_data["events"]["definitions"][0]["payload"]
        payload["score"] = {"type": "number", "max": value}
        manifest_data["agents"][0]["persist"][0]["set"]["score"] = value

        paths = _paths(load_manifest(manifest_data))

        assert "events.definitions[0].payload.score.max" in paths
        assert any(p.startswith("agents[0].persist[0].set.score") for p in paths)

    def test_non_finite_numbers_reported_by_compiler(self, manifest_data: dict[str, Any]) -> None:
        import yaml

        from agentmanifest.core.compiler import compile_manifest

        raw = yaml.safe_load("type: number\nmin: .nan\nmax: .inf\n")
        manifest_data["events"]["definitions"][0]["payload"]["score"] = raw

        result = compile_manifest(manifest_data)

        assert not result.ok
        assert "events.definitions[0].payload.score.min" in [d.path for d in result.errors]

    def test_bad_cron_schedule(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["crons"] = [{"name": "nightly", "schedule": "every day", "function": "matcher"}]

        assert "crons[0].schedule" in _paths(load_manifest(manifest_data))

    def test_bad_identifier(self, manifest_data: dict[str, Any]) -> None:
        from agentmanifest.core.loader import load_manifest

        manifest_data["database"]["tables"][0]["name"] = "leads; drop"

        assert "database.tables[0].name" in _paths(load_manifest(manifest_data))

    def test_non_mapping_document(self) -> None:
        from agentmanifest.core.loader import load_manifest

        result = load_manifest(["not", "a", "mapping"])

        assert not result.ok
        assert _paths(result) == ["$"]


class TestLoadFromText:
    """YAML parsing."""

    def test_yaml_error_is_single_root_diagnostic(self) -> None:
        from agentmanifest.core.loader import load_manifest_text

        result = load_manifest_text("product:\n  name: [unclosed")

        assert not result.ok
        assert len(result.diagnostics) == 1
        assert result.diagnostics[0].path == "$"
        assert result.diagnostics[0].code == "yaml_syntax"

    def test_load_file(self, tmp_path: Path, manifest_data: dict[str, Any]) -> None:
        import yaml

        from agentmanifest.core.loader import load_manifest_file

        path = tmp_path / "manifest.yaml"
        path.write_text(yaml.safe_dump(manifest_data))

        assert load_manifest_file(path).ok

    def test_missing_file_raises(self, tmp_path: Path) -> None:
        from agentmanifest.core.loader import load_manifest_file

        with pytest.raises(FileNotFoundError):
            load_manifest_file(tmp_path / "absent.yaml")
