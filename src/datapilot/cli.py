"""CLI commands for inspecting schemas, contracts and value recovery."""

from __future__ import annotations

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import typer

from .contracts.intent import intent_contract_issues
from .errors import DatapilotError, SchemaDialectError, ValueRecoveryError
from .recovery import coerce_chat_response, coerce_json_object, parse_json_array
from .schema import SCHEMA_REGISTRY, SchemaDialect, get_schema
from .settings import DEFAULT_CONFIG_NAME, ConfigError, load_settings

APP_HELP = "Datapilot structured-output toolkit."

app = typer.Typer(help=APP_HELP)

# (label, candidate, expected to pass)
CONTRACT_SAMPLES: List[Tuple[str, Dict[str, Any], bool]] = [
    ("aggregate with csv.aggregate", {"intent": "aggregate", "tool": "csv.aggregate"}, True),
    ("aggregate with csv.profile", {"intent": "aggregate", "tool": "csv.profile"}, False),
    ("ask_clarify without awaitUser", {"intent": "ask_clarify", "tool": None, "awaitUser": False}, False),
    (
        "ask_clarify with a tool",
        {"intent": "ask_clarify", "tool": "csv.aggregate", "awaitUser": True},
        False,
    ),
]

RECOVERY_KINDS = ("object", "array", "chat")


def _read_source(source: str) -> str:
    if source == "-":
        return sys.stdin.read()
    path = Path(source)
    if not path.exists():
        raise typer.BadParameter(f"File not found: {path}")
    return path.read_text(encoding="utf-8")


def _parse_dialect(value: str) -> SchemaDialect:
    try:
        return SchemaDialect(value.strip().lower())
    except ValueError as error:
        valid = ", ".join(dialect.value for dialect in SchemaDialect)
        raise typer.BadParameter(f"Unknown dialect '{value}'. Expected one of: {valid}") from error


@app.command()
def status(
    config: str = typer.Option(
        DEFAULT_CONFIG_NAME,
        "--config",
        "-c",
        help="Path to the datapilot configuration file.",
    )
) -> None:
    """Validate configuration and report the resolved provider settings."""
    config_path = Path(config)
    try:
        settings = load_settings(config_path)
    except ConfigError as error:
        typer.echo(str(error))
        raise typer.Exit(code=1) from error

    source = config_path if config_path.exists() else "defaults"
    model = settings.models.gemini if settings.provider == "gemini" else settings.models.openai
    key = settings.models.gemini_api_key if settings.provider == "gemini" else settings.models.openai_api_key
    typer.echo(f"Loaded configuration from {source}")
    typer.echo(f"Provider: {settings.provider} ({model})")
    typer.echo(f"API key: {'set' if key else 'missing'}")
    typer.echo(f"Retry: {settings.retry.max_attempts} attempt(s), {settings.retry.delay}s delay")
    typer.echo(
        f"Plans: {settings.plans.candidate_count} candidates, "
        f"floor {settings.plans.floor}, ceiling {settings.plans.ceiling}"
    )


@app.command()
def schema(
    name: str = typer.Argument(..., help="Registered schema name, e.g. AnalysisPlanList."),
    dialect: str = typer.Option("json_schema", "--dialect", "-d", help="gemini or json_schema."),
) -> None:
    """Print the compiled schema payload for one provider dialect."""
    try:
        definition = get_schema(name)
    except KeyError as error:
        typer.echo(error.args[0])
        raise typer.Exit(code=1) from error
    try:
        payload = definition.compile(_parse_dialect(dialect))
    except SchemaDialectError as error:
        typer.echo(f"Failed to compile {name}: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(json.dumps(payload, indent=2))


@app.command("verify-schemas")
def verify_schemas() -> None:
    """Check every registered schema's policy paths and compile both dialects."""
    failures = 0
    for name, definition in sorted(SCHEMA_REGISTRY.items()):
        problems = definition.problems()
        for dialect in SchemaDialect:
            try:
                definition.compile(dialect)
            except SchemaDialectError as error:
                problems.append(f"{dialect.value}: {error}")
        if problems:
            failures += 1
            typer.echo(f"FAIL {name}")
            for problem in problems:
                typer.echo(f"  - {problem}")
        else:
            typer.echo(f"ok   {name}")
    if failures:
        raise typer.Exit(code=1)


@app.command("verify-contracts")
def verify_contracts(
    source: Optional[str] = typer.Argument(
        None, help="JSON file (or '-' for stdin) holding one intent contract. Built-in samples when omitted."
    ),
) -> None:
    """Validate intent contracts and list every broken rule."""
    if source is not None:
        try:
            candidate = coerce_json_object(_read_source(source))
        except ValueRecoveryError as error:
            typer.echo(str(error))
            raise typer.Exit(code=1) from error
        contract, issues = intent_contract_issues(candidate)
        if contract is None:
            typer.echo("Intent contract is invalid:")
            for issue in issues:
                typer.echo(f"  - {issue.render()}")
            raise typer.Exit(code=1)
        typer.echo(json.dumps(contract.to_payload(), indent=2))
        return

    mismatches = 0
    for label, candidate, expected in CONTRACT_SAMPLES:
        contract, issues = intent_contract_issues(candidate)
        passed = contract is not None
        marker = "ok  " if passed == expected else "FAIL"
        mismatches += passed != expected
        verdict = "valid" if passed else "; ".join(issue.render() for issue in issues)
        typer.echo(f"{marker} {label}: {verdict}")
    if mismatches:
        raise typer.Exit(code=1)


@app.command()
def recover(
    source: str = typer.Argument(..., help="File holding a raw model response, or '-' for stdin."),
    kind: str = typer.Option("object", "--kind", "-k", help="object, array or chat."),
) -> None:
    """Recover structured JSON from a raw, possibly fenced, model response."""
    if kind not in RECOVERY_KINDS:
        raise typer.BadParameter(f"Unknown kind '{kind}'. Expected one of: {', '.join(RECOVERY_KINDS)}")
    raw = _read_source(source)
    try:
        if kind == "array":
            value: Any = parse_json_array(raw)
        elif kind == "chat":
            value = coerce_chat_response(raw)
        else:
            value = coerce_json_object(raw)
    except DatapilotError as error:
        typer.echo(f"Recovery failed: {error}")
        raise typer.Exit(code=1) from error
    typer.echo(json.dumps(value, indent=2))


if __name__ == "__main__":
    app()
