# src/agentmanifest/cli.py
"""agentmanifest Command Line Interface.

Entry point for the agentmanifest CLI tool.
"""

import json
from pathlib import Path

import typer
from pydantic import ValidationError

from agentmanifest import __version__
from agentmanifest.contracts.diagnostics import Diagnostic
from agentmanifest.core.compiler import CompilationResult, ManifestCompiler
from agentmanifest.core.config import CompilerSettings, load_settings
from agentmanifest.core.logging import configure_logging

app = typer.Typer(
    name="agentmanifest",
    help="agentmanifest: validate and compile agent workflow manifests.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"agentmanifest version {__version__}")
        raise typer.Exit()


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
) -> None:
    """agentmanifest: validate and compile agent workflow manifests."""
    pass


def _load_settings(settings: str | None) -> CompilerSettings:
    try:
        config = load_settings(Path(settings) if settings else None)
    except FileNotFoundError:
        typer.echo(f"Error: Settings file not found: {settings}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None
    configure_logging(config.log_level, json_output=config.log_format == "json")
    return config


def _compile(manifest: str, settings: str | None) -> CompilationResult:
    config = _load_settings(settings)
    try:
        return ManifestCompiler(config).compile_file(Path(manifest))
    except FileNotFoundError:
        typer.echo(f"Error: Manifest file not found: {manifest}", err=True)
        raise typer.Exit(1) from None


def _echo_diagnostics(diagnostics: tuple[Diagnostic, ...]) -> None:
    for diagnostic in diagnostics:
        typer.echo(f"  {diagnostic.severity.value}: {diagnostic}", err=diagnostic.is_error)


@app.command()
def validate(
    manifest: str = typer.Argument(..., help="Path to manifest YAML/JSON file."),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to compiler settings YAML file.",
    ),
) -> None:
    """Validate a manifest without producing output.

    Exits 1 when the manifest has any blocking error.
    """
    result = _compile(manifest, settings)
    if not result.ok:
        typer.echo(f"Manifest invalid ({len(result.errors)} errors):", err=True)
        _echo_diagnostics(result.diagnostics)
        raise typer.Exit(1)

    typer.echo("Manifest valid.")
    _echo_diagnostics(result.diagnostics)


@app.command("compile")
def compile_command(
    manifest: str = typer.Argument(..., help="Path to manifest YAML/JSON file."),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to compiler settings YAML file.",
    ),
    json_output: bool = typer.Option(
        False,
        "--json",
        help="Output the IR summary as JSON.",
    ),
) -> None:
    """Compile a manifest and summarize its IR."""
    result = _compile(manifest, settings)

    if json_output:
        if result.ir is None:
            payload = {
                "status": "error",
                "diagnostics": [d.to_dict() for d in result.diagnostics],
            }
            typer.echo(json.dumps(payload, indent=2))
            raise typer.Exit(1)
        typer.echo(json.dumps({"status": "ok", "ir": result.ir.to_dict()}, indent=2))
        return

    if result.ir is None:
        typer.echo(f"Manifest invalid ({len(result.errors)} errors):", err=True)
        _echo_diagnostics(result.diagnostics)
        raise typer.Exit(1)

    ir = result.ir
    typer.echo(f"Compiled {ir.manifest.product.name} {ir.manifest.product.version}")
    typer.echo(f"  Fingerprint: {ir.fingerprint}")
    typer.echo(f"  States: {len(ir.states)} (initial: {ir.manifest.state_machine.initial})")
    typer.echo(f"  Events: {len(ir.events)}")
    typer.echo(f"  Steps: {len(ir.steps)}")
    typer.echo(f"  Tables: {len(ir.tables)}")
    for event, steps in ir.triggers.items():
        typer.echo(f"  {event} -> {', '.join(steps)}")
    _echo_diagnostics(result.diagnostics)


@app.command()
def policies(
    manifest: str = typer.Argument(..., help="Path to manifest YAML/JSON file."),
    table: str | None = typer.Option(
        None,
        "--table",
        "-t",
        help="Only show this table.",
    ),
    sql: bool = typer.Option(
        False,
        "--sql",
        help="Print CREATE POLICY statements instead of a summary.",
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to compiler settings YAML file.",
    ),
) -> None:
    """Show compiled access policies and uncovered operations."""
    result = _compile(manifest, settings)
    if result.ir is None:
        typer.echo(f"Manifest invalid ({len(result.errors)} errors):", err=True)
        _echo_diagnostics(result.diagnostics)
        raise typer.Exit(1)

    compiled = result.ir.policies
    if table is not None:
        if table not in compiled:
            typer.echo(f"Error: Table '{table}' is not declared", err=True)
            raise typer.Exit(1)
        compiled = {table: compiled[table]}

    for name, table_policies in compiled.items():
        if sql:
            typer.echo(table_policies.to_sql())
            continue
        typer.echo(f"{name}:")
        for rule in table_policies.rules:
            typer.echo(f"  {rule.operation.value} {rule.actor}: {rule.condition}")
        if table_policies.uncovered:
            uncovered = ", ".join(op.value for op in table_policies.uncovered)
            typer.echo(f"  uncovered (denied): {uncovered}")


if __name__ == "__main__":
    app()
