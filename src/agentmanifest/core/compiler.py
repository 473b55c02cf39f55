# src/agentmanifest/core/compiler.py
"""Manifest compiler facade.

raw document -> structural validation -> cross-reference validation -> IR

The result carries either a ManifestIR or the complete set of blocking
diagnostics, never a partial IR.
"""

from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from agentmanifest.contracts.diagnostics import Diagnostic, errors_only
from agentmanifest.contracts.enums import DiagnosticKind, Severity
from agentmanifest.contracts.errors import ManifestCompileError, PolicyCompileError
from agentmanifest.core.config import CompilerSettings
from agentmanifest.core.crossref import validate_references
from agentmanifest.core.ir import ManifestIR, build_ir
from agentmanifest.core.loader import LoadResult, load_manifest, load_manifest_file
from agentmanifest.core.logging import get_logger
from agentmanifest.core.manifest import Manifest

logger = get_logger(__name__)


@dataclass(frozen=True)
class CompilationResult:
    """Outcome of compiling one manifest document."""

    ir: ManifestIR | None
    diagnostics: tuple[Diagnostic, ...]

    @property
    def ok(self) -> bool:
        return self.ir is not None

    @property
    def errors(self) -> tuple[Diagnostic, ...]:
        return errors_only(self.diagnostics)

    @property
    def warnings(self) -> tuple[Diagnostic, ...]:
        return tuple(d for d in self.diagnostics if d.severity is Severity.WARNING)

    def unwrap(self) -> ManifestIR:
        """Return the IR or raise with every blocking diagnostic.

        Raises:
            ManifestCompileError: If compilation failed
        """
        if self.ir is None:
            raise ManifestCompileError(self.errors)
        return self.ir


class ManifestCompiler:
    """Compiles manifests under one set of settings.

    Example:
        compiler = ManifestCompiler(CompilerSettings(unreachable_states="error"))
        ir = compiler.compile_file(Path("manifest.yaml")).unwrap()
    """

    def __init__(
        self,
        settings: CompilerSettings | None = None,
        custom_actions: Mapping[str, Callable[..., Any]] | None = None,
    ) -> None:
        self._settings = settings or CompilerSettings()
        self._custom_actions = custom_actions

    def compile(self, raw: Mapping[str, Any]) -> CompilationResult:
        return self._finish(load_manifest(raw))

    def compile_file(self, path: Path) -> CompilationResult:
        """Compile a YAML/JSON manifest file.

        Raises:
            FileNotFoundError: If the file does not exist
        """
        return self._finish(load_manifest_file(path), source=str(path))

    def compile_tree(self, manifest: Manifest) -> CompilationResult:
        """Compile an already-loaded manifest (skips structural validation)."""
        return self._finish(LoadResult(manifest=manifest))

    def _finish(self, loaded: LoadResult, source: str | None = None) -> CompilationResult:
        if loaded.manifest is None:
            return self._rejected(loaded.diagnostics, source)

        diagnostics = [
            *loaded.diagnostics,
            *validate_references(loaded.manifest, self._settings, self._custom_actions),
        ]
        if errors_only(diagnostics):
            return self._rejected(diagnostics, source)

        try:
            ir = build_ir(loaded.manifest, warnings=diagnostics)
        except PolicyCompileError as e:
            diagnostics.append(
                Diagnostic(
                    path="database.tables",
                    kind=DiagnosticKind.CROSS_REFERENCE,
                    code="policy_compile",
                    message=str(e),
                )
            )
            return self._rejected(diagnostics, source)

        logger.info(
            "manifest_compiled",
            source=source,
            product=loaded.manifest.product.name,
            fingerprint=ir.fingerprint,
            steps=len(ir.steps),
            warnings=len(diagnostics),
        )
        return CompilationResult(ir=ir, diagnostics=tuple(diagnostics))

    def _rejected(self, diagnostics: Any, source: str | None) -> CompilationResult:
        diagnostics = tuple(diagnostics)
        logger.info(
            "manifest_rejected",
            source=source,
            errors=len(errors_only(diagnostics)),
        )
        return CompilationResult(ir=None, diagnostics=diagnostics)


def compile_manifest(
    raw: Mapping[str, Any],
    settings: CompilerSettings | None = None,
    custom_actions: Mapping[str, Callable[..., Any]] | None = None,
) -> CompilationResult:
    """Compile a raw manifest mapping with one-off settings."""
    return ManifestCompiler(settings, custom_actions).compile(raw)
