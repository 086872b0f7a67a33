# src/edmc/cli.py
"""edmc Command Line Interface.

Entry point for the edmc CLI tool.
"""

from __future__ import annotations

import json
from collections.abc import Iterable
from pathlib import Path
from typing import Any

import typer
import yaml
from pydantic import ValidationError

from edmc import __version__
from edmc.api import compile_csn, prepare_csn
from edmc.contracts import Diagnostic, MessageSink, ModelLoadError, Severity
from edmc.core.config import CompilerOptions, load_options

__all__ = ["app"]

app = typer.Typer(
    name="edmc",
    help="edmc: compile schema graphs into OData entity data models.",
    no_args_is_help=True,
)


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"edmc version {__version__}")
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
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """edmc: compile schema graphs into OData entity data models."""
    from edmc.core.logging import configure_logging

    log_level = "DEBUG" if verbose else "WARNING"
    configure_logging(json_output=json_logs, level=log_level)


def _load_model(path: Path) -> dict[str, Any]:
    try:
        loaded = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError:
        typer.echo(f"Error: Model file not found: {path}", err=True)
        raise typer.Exit(1) from None
    except json.JSONDecodeError as e:
        typer.echo(f"JSON syntax error in {path}: {e}", err=True)
        raise typer.Exit(1) from None
    if not isinstance(loaded, dict):
        typer.echo(f"Error: Model file {path} must contain a JSON object", err=True)
        raise typer.Exit(1)
    return loaded


def _resolve_options(options_path: Path | None, services: list[str] | None) -> CompilerOptions:
    try:
        options = load_options(options_path) if options_path is not None else CompilerOptions()
        if services:
            options = CompilerOptions(**{**options.model_dump(), "service_names": tuple(services)})
    except FileNotFoundError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    except ValidationError as e:
        typer.echo("Configuration errors:", err=True)
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            typer.echo(f"  - {loc}: {error['msg']}", err=True)
        raise typer.Exit(1) from None
    except ValueError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None
    return options


def _print_diagnostics(diagnostics: Iterable[Diagnostic]) -> int:
    """Print diagnostics, return the number of errors."""
    errors = 0
    for diagnostic in diagnostics:
        if diagnostic.severity is Severity.ERROR:
            errors += 1
        typer.echo(str(diagnostic))
    return errors


@app.command("compile")
def compile_model_command(
    model: Path = typer.Argument(..., help="Path to the model JSON file."),
    options_path: Path | None = typer.Option(
        None,
        "--options",
        "-o",
        help="Path to the compiler options YAML file.",
    ),
    vocabulary: Path | None = typer.Option(
        None,
        "--vocabulary",
        help="Path to a vocabulary dictionary YAML file (bundled one by default).",
    ),
    service: list[str] | None = typer.Option(
        None,
        "--service",
        "-s",
        help="Service to compile; repeat for several (all services by default).",
    ),
) -> None:
    """Compile a model and print a summary per service."""
    from edmc.annotations.vocabulary import VocabularyDictionary

    csn = _load_model(model)
    options = _resolve_options(options_path, service)
    try:
        dictionary = VocabularyDictionary.load(vocabulary)
    except (FileNotFoundError, ValueError, yaml.YAMLError) as e:
        typer.echo(f"Error loading vocabulary dictionary: {e}", err=True)
        raise typer.Exit(1) from None

    try:
        result = compile_csn(csn, options, dictionary, raise_on_error=False)
    except ModelLoadError as e:
        typer.echo(f"Model error: {e}", err=True)
        raise typer.Exit(1) from None

    for service_result in result.services:
        compiled = service_result.compiled
        typer.echo(f"Service {compiled.name} (OData {options.version_label})")
        typer.echo(f"  Schemas: {', '.join(s.name for s in compiled.schemas) or '-'}")
        for entity_set in compiled.entity_sets:
            kind = "singleton" if entity_set.is_singleton else "entity set"
            typer.echo(f"  {kind} {entity_set.name}: {entity_set.entity_type}")
        for entity, paths in compiled.key_paths.items():
            typer.echo(f"  keys {entity}: {', '.join(paths)}")
        targets = service_result.annotations.targets
        typer.echo(f"  Annotation targets: {len(targets)}")
        for target in targets:
            typer.echo(f"    {target}")
        vocabularies = ", ".join(ref.alias for ref in service_result.used_vocabularies)
        typer.echo(f"  Vocabularies: {vocabularies}")

    errors = _print_diagnostics(result.diagnostics)
    if errors:
        typer.echo(f"Compilation failed with {errors} error(s).", err=True)
        raise typer.Exit(1)


@app.command()
def check(
    model: Path = typer.Argument(..., help="Path to the model JSON file."),
    options_path: Path | None = typer.Option(
        None,
        "--options",
        "-o",
        help="Path to the compiler options YAML file.",
    ),
    service: list[str] | None = typer.Option(
        None,
        "--service",
        "-s",
        help="Service to check; repeat for several (all services by default).",
    ),
) -> None:
    """Run the preprocessing passes and print their diagnostics."""
    csn = _load_model(model)
    options = _resolve_options(options_path, service)
    sink = MessageSink()
    try:
        prepared = prepare_csn(csn, options, sink)
    except ModelLoadError as e:
        typer.echo(f"Model error: {e}", err=True)
        raise typer.Exit(1) from None

    errors = _print_diagnostics(sink.diagnostics)
    if errors:
        typer.echo(f"Check failed with {errors} error(s).", err=True)
        raise typer.Exit(1)
    typer.echo(f"Model valid: {len(prepared.requested)} definition(s) in {len(prepared.services.requested)} service(s).")


if __name__ == "__main__":
    app()
