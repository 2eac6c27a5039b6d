"""
CLI entrypoint for Visibility Probe.

Provides a dual-mode command-line interface with:
- Human-friendly output: Rich spinners, tables, progress bars, colored text
- Agent-friendly output: Structured JSON for AI automation
- Quiet mode: Tab-separated minimal output for shell scripts

Commands:
    run: Generate a visibility report from a configuration file
    validate: Validate configuration without calling any model
    show: Show a stored report
    latest: Show the most recent report for a company URL
    competitors: Competitor leaderboard of a report
    sources: Most cited domains of a report
    export: Write a full report as JSON
    wait: Wait until a report is completed or failed

Exit codes:
    0: Success
    1: Configuration error (invalid YAML, missing API keys)
    2: Database error (cannot create/access SQLite, unknown report)
    3: Report failed
    4: Report still generating when wait gave up

Examples:
    # Human-friendly output with progress bars
    visibility-probe run --config probe.config.yaml

    # Agent-friendly JSON output (no spinners, no colors)
    visibility-probe run --config probe.config.yaml --format json

    # Top 5 cited domains of report 7, tab-separated
    visibility-probe sources 7 --limit 5 --quiet

Security:
    - API keys are loaded from environment variables only
    - Errors may contain file paths but never API keys
"""

import asyncio
import sqlite3
import traceback
from pathlib import Path

import typer
from rich.traceback import install as install_rich_traceback

from visibility_probe.config.constants import (
    DEFAULT_SQLITE_DB_PATH,
    DEFAULT_TOP_SOURCES_LIMIT,
)
from visibility_probe.config.loader import load_config
from visibility_probe.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
    DatabaseError,
    PipelineError,
    PromptGenerationError,
    ReportNotFoundError,
)
from visibility_probe.llm_runner.runner import generate_report
from visibility_probe.storage.db import connect, init_db_if_needed
from visibility_probe.storage.exporter import export_report_json
from visibility_probe.storage.queries import (
    ReportFailed,
    ReportReady,
    get_company_by_url,
    get_competitor_leaderboard,
    get_full_report,
    get_latest_report,
    get_top_sources,
    wait_for_report,
)
from visibility_probe.utils.console import (
    create_progress_bar,
    error,
    info,
    output_mode,
    print_banner,
    print_competitor_table,
    print_report_summary,
    print_sources_table,
    spinner,
    success,
    warning,
)
from visibility_probe.utils.logging import setup_logging

install_rich_traceback(show_locals=False)

# Exit codes
EXIT_SUCCESS = 0
EXIT_CONFIG_ERROR = 1
EXIT_DB_ERROR = 2
EXIT_REPORT_FAILED = 3
EXIT_REPORT_PENDING = 4

app = typer.Typer(
    name="visibility-probe",
    help="Measure how often AI assistants mention your business",
    add_completion=False,
)

FORMAT_OPTION = typer.Option(
    "text",
    "--format",
    "-f",
    help="Output format: 'text' (human-friendly) or 'json' (machine-readable)",
)
QUIET_OPTION = typer.Option(
    False,
    "--quiet",
    "-q",
    help="Minimal output (tab-separated values)",
)
DB_OPTION = typer.Option(
    DEFAULT_SQLITE_DB_PATH,
    "--db",
    help="Path to SQLite database",
    exists=True,
    file_okay=True,
    dir_okay=False,
)


def _set_output_mode(format: str, quiet: bool = False) -> None:
    try:
        output_mode.reset(format, quiet)
    except ValueError as e:
        raise typer.BadParameter(str(e), param_hint="--format") from e


def _open_db(db: Path) -> sqlite3.Connection:
    try:
        return connect(str(db))
    except DatabaseError as e:
        error(str(e))
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)


@app.command()
def run(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    correlation_id: str = typer.Option(
        None,
        "--correlation-id",
        help="Inbound message id; a repeated id returns the existing report",
    ),
    email_from: str = typer.Option(
        None,
        "--email-from",
        help="Requester address stored on the report",
    ),
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Enable debug logging"),
):
    """
    Generate a visibility report.

    This command will:
    1. Load your configuration (company, services, report settings)
    2. Generate customer prompts (unless the config lists them)
    3. Probe every prompt runs_per_prompt times against every service
    4. Aggregate mentions, ranks, competitors and sources into SQLite
    5. Print the report summary

    Exit codes:
      0: Report completed (or already existed for --correlation-id)
      1: Configuration error
      2: Database error
      3: Report failed
    """
    _set_output_mode(format, quiet)
    setup_logging(verbose=verbose, quiet_logs=output_mode.is_human())
    print_banner(_read_version())

    try:
        with spinner("Loading configuration..."):
            runtime_config = load_config(config)
        success(
            f"Loaded configuration for {runtime_config.company.name} "
            f"({', '.join(runtime_config.service_ids)})"
        )
    except ConfigFileNotFoundError as e:
        error(f"Configuration file not found: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)
    except APIKeyMissingError as e:
        error(f"API key missing: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)
    except ConfigValidationError as e:
        error(f"Configuration validation failed: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)

    db_path = runtime_config.report_settings.sqlite_db_path
    try:
        with spinner("Initializing database..."):
            init_db_if_needed(db_path)
        conn = connect(db_path)
        success(f"Database ready: {db_path}")
    except DatabaseError as e:
        error(f"Failed to initialize database: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)

    settings = runtime_config.report_settings
    total_prompts = len(runtime_config.prompts or []) or settings.prompt_count
    info(
        f"Will run {total_prompts} prompts x {settings.runs_per_prompt} runs "
        f"x {len(runtime_config.services)} services"
    )

    try:
        progress = create_progress_bar()
        with progress:
            task = progress.add_task("Probing prompts", total=total_prompts)
            outcome = asyncio.run(
                generate_report(
                    runtime_config,
                    conn,
                    correlation_id=correlation_id,
                    email_from=email_from,
                    progress_callback=lambda: progress.advance(task),
                )
            )
    except PromptGenerationError as e:
        error(f"Prompt generation failed: {e}")
        output_mode.flush_json()
        conn.close()
        raise typer.Exit(EXIT_REPORT_FAILED)
    except PipelineError as e:
        error(str(e))
        if verbose:
            traceback.print_exc()
        output_mode.add_json("report_id", e.report_id)
        output_mode.flush_json()
        conn.close()
        raise typer.Exit(EXIT_REPORT_FAILED)
    except DatabaseError as e:
        error(f"Database error: {e}")
        output_mode.flush_json()
        conn.close()
        raise typer.Exit(EXIT_DB_ERROR)

    if not outcome.created:
        warning(
            f"Correlation id {correlation_id!r} already has report {outcome.report_id}"
        )
    else:
        success(f"Report {outcome.report_id} completed")
    for failure in outcome.persistence_errors:
        warning(
            f"Runs for prompt {failure['prompt_id']}/{failure['service']} "
            f"were not stored: {failure['error']}"
        )

    print_report_summary(get_full_report(conn, outcome.report_id))
    conn.close()


@app.command()
def validate(
    config: Path = typer.Option(
        ...,
        "--config",
        "-c",
        help="Path to YAML configuration file",
        exists=True,
        file_okay=True,
        dir_okay=False,
    ),
    format: str = FORMAT_OPTION,
):
    """
    Validate configuration file without calling any model.

    Checks YAML syntax, field rules, selected services and that every
    required API key environment variable is set.

    Exit codes:
      0: Configuration is valid
      1: Configuration is invalid
    """
    _set_output_mode(format)

    try:
        with spinner("Validating configuration..."):
            runtime_config = load_config(config)
    except (ConfigFileNotFoundError, ConfigValidationError, APIKeyMissingError) as e:
        error(f"Validation failed: {e}")
        if output_mode.is_agent():
            output_mode.add_json("valid", False)
            output_mode.add_json("error_type", type(e).__name__)
            output_mode.flush_json()
        raise typer.Exit(EXIT_CONFIG_ERROR)

    settings = runtime_config.report_settings
    success("Configuration is valid")
    info(f"Company: {runtime_config.company.name} ({runtime_config.company.url})")
    info(f"Services: {', '.join(runtime_config.service_ids)}")
    if runtime_config.prompts:
        info(f"Prompts: {len(runtime_config.prompts)} configured")
    else:
        info(f"Prompts: {settings.prompt_count} generated")
    info(f"Runs per prompt: {settings.runs_per_prompt}")

    if output_mode.is_agent():
        output_mode.add_json("valid", True)
        output_mode.add_json("company", runtime_config.company.name)
        output_mode.add_json("services", runtime_config.service_ids)
        output_mode.add_json(
            "prompt_count", len(runtime_config.prompts or []) or settings.prompt_count
        )
        output_mode.add_json("runs_per_prompt", settings.runs_per_prompt)
        output_mode.flush_json()


@app.command()
def show(
    report_id: int = typer.Argument(..., help="Report id"),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """Show a stored report with per-service metrics and prompts."""
    _set_output_mode(format, quiet)
    conn = _open_db(db)
    try:
        full_report = get_full_report(conn, report_id)
    finally:
        conn.close()

    if full_report is None:
        error(f"Report {report_id} does not exist")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)

    print_report_summary(full_report)


@app.command()
def latest(
    url: str = typer.Option(..., "--url", "-u", help="Company URL"),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """Show the most recent report for a company."""
    _set_output_mode(format, quiet)
    conn = _open_db(db)
    try:
        company = get_company_by_url(conn, url)
        full_report = get_latest_report(conn, company["id"]) if company else None
    finally:
        conn.close()

    if full_report is None:
        error(f"No reports for {url}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)

    print_report_summary(full_report)


@app.command()
def competitors(
    report_id: int = typer.Argument(..., help="Report id"),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """Competitor leaderboard: total mentions and mean rank per name."""
    _set_output_mode(format, quiet)
    conn = _open_db(db)
    try:
        leaderboard = get_competitor_leaderboard(conn, report_id)
    finally:
        conn.close()
    print_competitor_table(leaderboard)


@app.command()
def sources(
    report_id: int = typer.Argument(..., help="Report id"),
    limit: int = typer.Option(
        DEFAULT_TOP_SOURCES_LIMIT, "--limit", "-n", min=1, help="Number of domains"
    ),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """Most cited source domains of a report."""
    _set_output_mode(format, quiet)
    conn = _open_db(db)
    try:
        top_sources = get_top_sources(conn, report_id, limit=limit)
    finally:
        conn.close()
    print_sources_table(top_sources)


@app.command()
def export(
    report_id: int = typer.Argument(..., help="Report id"),
    output: Path = typer.Option(..., "--output", "-o", help="Output JSON file"),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
):
    """Export a full report (prompts, runs, competitors, sources) as JSON."""
    _set_output_mode(format)
    conn = _open_db(db)
    try:
        with spinner(f"Exporting report {report_id}..."):
            path = export_report_json(conn, report_id, output)
    except ReportNotFoundError as e:
        error(str(e))
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)
    except OSError as e:
        error(f"Export failed: {e}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)
    finally:
        conn.close()

    success(f"Exported report {report_id} to {path}")
    output_mode.add_json("output", str(path))
    output_mode.flush_json()


@app.command()
def wait(
    report_id: int = typer.Argument(..., help="Report id"),
    timeout: float = typer.Option(
        300.0, "--timeout", "-t", min=0, help="Seconds to wait before giving up"
    ),
    db: Path = DB_OPTION,
    format: str = FORMAT_OPTION,
    quiet: bool = QUIET_OPTION,
):
    """
    Wait until a report is completed or failed.

    Exit codes:
      0: Report completed
      2: Report does not exist
      3: Report failed
      4: Still generating after --timeout seconds
    """
    _set_output_mode(format, quiet)
    conn = _open_db(db)
    try:
        with spinner(f"Waiting for report {report_id}..."):
            result = wait_for_report(conn, report_id, max_wait_seconds=timeout)
    except ReportNotFoundError as e:
        error(str(e))
        output_mode.flush_json()
        raise typer.Exit(EXIT_DB_ERROR)
    finally:
        conn.close()

    if isinstance(result, ReportReady):
        print_report_summary(result.report)
        return
    if isinstance(result, ReportFailed):
        error(f"Report {report_id} failed: {result.error_message}")
        output_mode.flush_json()
        raise typer.Exit(EXIT_REPORT_FAILED)

    warning(f"Report {report_id} is still {result.status} after {timeout:g}s")
    output_mode.flush_json()
    raise typer.Exit(EXIT_REPORT_PENDING)


@app.callback(invoke_without_command=True)
def main(
    ctx: typer.Context,
    version: bool = typer.Option(False, "--version", "-V", help="Show version and exit"),
):
    """
    Visibility Probe - measure how often AI assistants mention your business.

    Sends customer-style prompts to AI answer services several times each,
    then aggregates mentions, ranks, competitors and cited sources into a
    visibility score.

    Use 'visibility-probe COMMAND --help' for detailed command documentation.
    """
    if version:
        from rich.console import Console

        Console().print(f"[bold cyan]visibility-probe[/bold cyan] version {_read_version()}")
        raise typer.Exit(EXIT_SUCCESS)

    if ctx.invoked_subcommand is None:
        from rich.console import Console

        console = Console()
        console.print("[yellow]Use --help to see available commands[/yellow]")
        console.print()
        console.print("Quick start:")
        console.print("  visibility-probe run --config probe.config.yaml")


def _read_version() -> str:
    """Read version from package metadata."""
    from importlib.metadata import PackageNotFoundError, version

    try:
        return version("visibility-probe")
    except PackageNotFoundError:
        return "0.1.0"


if __name__ == "__main__":
    app()
