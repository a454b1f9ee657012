#!/usr/bin/env python3
"""
CLI for the form mapping engine.

Usage:
    mapping run flow.json --token <bearer>
    mapping validate-logic "1 AND (2 OR 3)" --count 3
    mapping evaluate-formula "{price} * {qty}" --values '{"price": 2, "qty": 3}'
    mapping config
"""
import asyncio
import json
import sys
from pathlib import Path

import click
from dotenv import load_dotenv
from rich.console import Console
from rich.panel import Panel
from rich.table import Table
from rich import box

# Load .env before importing engine modules
load_dotenv()

console = Console()

# Global verbose flag
VERBOSE = False


@click.group()
@click.version_option(version="0.1.0", prog_name="mapping")
@click.option('--verbose', '-v', is_flag=True, help='Show full error tracebacks for debugging')
def cli(verbose: bool):
    """
    Form mapping engine.

    Runs a form's mapping flow against the CRM and spreadsheets, and checks
    the expressions used inside flow definitions.

    \b
    Examples:
      mapping run flow.json --token $TOKEN
      mapping validate-logic "1 AND 2" --count 2
    """
    global VERBOSE
    VERBOSE = verbose


def _fail(message: str, exc: Exception = None):
    console.print(f"[bold red]Error:[/bold red] {message}")
    if VERBOSE and exc is not None:
        console.print_exception()
    sys.exit(1)


def _result_row(node_id: str, result: dict):
    if not isinstance(result, dict):
        return node_id, "-", str(result)
    if result.get("error"):
        status = "[red]failed[/red]" if result.get("status") != "skipped" else "[yellow]skipped[/yellow]"
        return node_id, status, str(result["error"])
    if result.get("status") == "skipped":
        return node_id, "[yellow]skipped[/yellow]", str(result.get("reason") or result.get("message") or "")
    if result.get("status") == "partial":
        return node_id, "[yellow]partial[/yellow]", f"{len(result.get('failedRecords') or [])} records failed"
    detail = result.get("message") or result.get("recordId") or result.get("ids") or result.get("output") or ""
    return node_id, "[green]ok[/green]", str(detail)


@cli.command()
@click.argument('flow_file', type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option('--token', envvar='MAPPING_ACCESS_TOKEN', required=True, help='CRM bearer token')
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def run(flow_file: Path, token: str, fmt: str):
    """
    Run a flow request file.

    The file holds the same body the HTTP endpoint accepts:
    userId, instanceUrl, formVersionId, formData, nodes and submissionId.
    """
    from api.mappings import models as api_models
    from api.mappings import services

    try:
        payload = api_models.RunMappingRequest.model_validate(json.loads(flow_file.read_text()))
    except (ValueError, OSError) as e:
        _fail(f"Could not read flow file: {e}", e)

    status_code, body = asyncio.run(services.run_mapping(payload, f"Bearer {token}"))

    if fmt == 'json':
        console.print(json.dumps({"status": status_code, **body}, indent=2, default=str))
    else:
        results = body.get("results") or {}
        table = Table(title=f"Flow results ({status_code})", box=box.ROUNDED)
        table.add_column("Node", style="cyan")
        table.add_column("Status", justify="center")
        table.add_column("Detail")
        for node_id, result in results.items():
            table.add_row(*_result_row(node_id, result))
        console.print(table)
        message = body.get("message") or body.get("error")
        if message:
            console.print(f"[dim]{message}[/dim]")
        if body.get("newAccessToken"):
            console.print("[dim]Access token was refreshed during the run.[/dim]")

    if status_code >= 400:
        sys.exit(1)


@cli.command('validate-logic')
@click.argument('expression')
@click.option('--count', '-n', type=int, required=True, help='Number of conditions the expression refers to')
def validate_logic(expression: str, count: int):
    """Validate a custom logic expression such as "1 AND (2 OR 3)"."""
    from mapping_engine.expr.custom_logic import validate_custom_logic

    errors = validate_custom_logic(expression, count)
    if not errors:
        console.print("[green]✓[/green] Expression is valid")
        return
    for error in errors:
        console.print(f"[red]✗[/red] {error}")
    sys.exit(1)


@cli.command('evaluate-formula')
@click.argument('formula')
@click.option('--values', 'values_json', default='{}', help='JSON object of field values')
def evaluate_formula(formula: str, values_json: str):
    """Evaluate a calculation formula against field values."""
    from mapping_engine.expr.formula import evaluate_formula as evaluate

    try:
        values = json.loads(values_json)
    except ValueError as e:
        _fail(f"--values is not valid JSON: {e}", e)
    if not isinstance(values, dict):
        _fail("--values must be a JSON object")

    result = evaluate(formula, values)
    if isinstance(result, str) and result.startswith("Error:"):
        _fail(result[len("Error:"):].strip())
    console.print(result)


@cli.command()
@click.option('--format', '-f', 'fmt', type=click.Choice(['json', 'table']), default='table', help='Output format')
def config(fmt: str):
    """
    Show current configuration.

    Displays configuration values loaded from environment variables and .env file.
    """
    from shared.config import config as engine_config

    console.print(Panel.fit(
        "[bold cyan]Mapping Engine Configuration[/bold cyan]",
        border_style="cyan"
    ))

    sections = {
        "CRM": [
            ("salesforce_api_version", "SALESFORCE_API_VERSION", False),  # (attr, env_var, is_secret)
            ("salesforce_batch_size", "SALESFORCE_BATCH_SIZE", False),
            ("access_token_endpoint", "ACCESS_TOKEN_ENDPOINT", False),
            ("http_timeout_seconds", "HTTP_TIMEOUT_SECONDS", False),
        ],
        "Google Sheets": [
            ("GOOGLE_CLIENT_ID", "GOOGLE_CLIENT_ID", False),
            ("GOOGLE_CLIENT_SECRET", "GOOGLE_CLIENT_SECRET", True),
            ("google_token_ttl_seconds", "GOOGLE_TOKEN_TTL_SECONDS", False),
            ("google_credential_object", "GOOGLE_CREDENTIAL_OBJECT", False),
            ("sheet_row_window", "SHEET_ROW_WINDOW", False),
        ],
        "Logging": [
            ("log_level", "LOG_LEVEL", False),
        ],
    }

    if fmt == 'json':
        output = {}
        for section, items in sections.items():
            output[section] = {}
            for attr, env_var, is_secret in items:
                value = getattr(engine_config, attr, None)
                if is_secret and value:
                    output[section][attr] = "***" + value[-4:] if len(str(value)) > 4 else "***"
                else:
                    output[section][attr] = value
        console.print(json.dumps(output, indent=2, default=str))
    else:
        for section, items in sections.items():
            table = Table(title=section, box=box.ROUNDED)
            table.add_column("Setting", style="cyan")
            table.add_column("Env Variable", style="dim")
            table.add_column("Value")
            table.add_column("Status", justify="center")

            for attr, env_var, is_secret in items:
                value = getattr(engine_config, attr, None)
                if value is None or value == "":
                    display_value = "[dim]not set[/dim]"
                    status = "[yellow]○[/yellow]"
                elif is_secret:
                    display_value = "***" + str(value)[-4:] if len(str(value)) > 4 else "***"
                    status = "[green]●[/green]"
                else:
                    display_value = str(value)
                    status = "[green]●[/green]"

                table.add_row(attr, env_var, display_value, status)

            console.print(table)
            console.print()


def main():
    """Main entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
