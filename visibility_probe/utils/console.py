"""
Rich console utilities for dual-mode CLI output.

Human Mode (--format text):
    - Rich spinners, progress bars, colored tables and panels

Agent Mode (--format json):
    - Structured JSON output to stdout, no ANSI codes or spinners

Quiet Mode (--quiet):
    - Minimal tab-separated output, no decorations

Every print_* function takes the plain dicts returned by
storage.queries, so stored reports render the same way whether they were
just generated or looked up later.

Examples:
    >>> from visibility_probe.utils.console import output_mode, spinner, success
    >>> with spinner("Loading config..."):
    ...     config = load_config(path)
    >>> success("Config loaded successfully")

    >>> output_mode.format = "json"
    >>> success("Config loaded")  # Buffers to JSON
    >>> output_mode.flush_json()   # Outputs JSON to stdout
"""

from __future__ import annotations

import json
import sys
from contextlib import contextmanager
from typing import Any

from rich import box
from rich.console import Console
from rich.panel import Panel
from rich.progress import (
    BarColumn,
    Progress,
    SpinnerColumn,
    TaskProgressColumn,
    TextColumn,
    TimeElapsedColumn,
)
from rich.table import Table


class OutputMode:
    """
    Output mode configuration for dual-mode CLI.

    Attributes:
        format: Output format - "text" (human) or "json" (agent)
        quiet: If True, suppress non-essential output
    """

    def __init__(self, format_type: str = "text", quiet: bool = False):
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")

        self.format = format_type
        self.quiet = quiet
        self._json_buffer: dict[str, Any] = {}

    def is_human(self) -> bool:
        return self.format == "text"

    def is_agent(self) -> bool:
        return self.format == "json"

    def add_json(self, key: str, value: Any) -> None:
        """Add key-value pair to the JSON buffer flushed by flush_json()."""
        self._json_buffer[key] = value

    def flush_json(self) -> None:
        """Output buffered JSON to stdout and clear the buffer (agent mode only)."""
        if self.is_agent() and self._json_buffer:
            json.dump(self._json_buffer, sys.stdout, indent=2, default=str)
            sys.stdout.write("\n")
            sys.stdout.flush()
            self._json_buffer.clear()

    def reset(self, format_type: str = "text", quiet: bool = False) -> None:
        """Switch mode and drop anything buffered (one CLI invocation each)."""
        if format_type not in ["text", "json"]:
            raise ValueError(f"Invalid format: {format_type}. Must be 'text' or 'json'")
        self.format = format_type
        self.quiet = quiet
        self._json_buffer.clear()


# Global output mode instance (set by CLI flags)
output_mode = OutputMode()

console = Console()  # stdout
console_err = Console(stderr=True)  # stderr


@contextmanager
def spinner(message: str):
    """Show a spinner during an operation in human mode; silent otherwise."""
    if output_mode.is_human() and not output_mode.quiet:
        with console.status(f"[bold blue]{message}", spinner="dots") as status:
            yield status
    else:
        yield None


class NoOpProgress:
    """Same interface as Rich Progress, does nothing (agent and quiet modes)."""

    def __enter__(self):
        return self

    def __exit__(self, *args):
        pass

    def add_task(self, _description: str, total: int | None = None) -> int:
        return 0

    def advance(self, _task_id: int, _advance: float = 1.0) -> None:
        pass


def create_progress_bar() -> Progress | NoOpProgress:
    """
    Progress bar for prompt processing.

    Returns a transient Rich Progress in human mode, NoOpProgress otherwise.
    """
    if output_mode.is_human() and not output_mode.quiet:
        return Progress(
            SpinnerColumn(),
            TextColumn("[bold blue]{task.description}"),
            BarColumn(),
            TaskProgressColumn(),
            TimeElapsedColumn(),
            console=console,
            transient=True,
        )
    return NoOpProgress()


def success(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[green]✓[/green] {message}")
    elif output_mode.is_agent():
        output_mode.add_json("status", "success")
        output_mode.add_json("message", message)


def error(message: str) -> None:
    if output_mode.is_human():
        console_err.print(f"[red]✗[/red] {message}", style="red")
    elif output_mode.is_agent():
        output_mode.add_json("status", "error")
        output_mode.add_json("error", message)


def warning(message: str) -> None:
    if output_mode.is_human():
        console.print(f"[yellow]⚠[/yellow] {message}", style="yellow")
    elif output_mode.is_agent():
        output_mode.add_json("warning", message)


def info(message: str) -> None:
    if output_mode.is_human() and not output_mode.quiet:
        console.print(f"[blue]ℹ[/blue] {message}")


def print_banner(version: str) -> None:
    """Print the startup banner (human mode only)."""
    if not output_mode.is_human() or output_mode.quiet:
        return

    banner = f"""
[bold cyan]╔{"═" * 39}╗
║   Visibility Probe v{version:<17} ║
║   How often do AI answers name you?   ║
╚{"═" * 39}╝[/bold cyan]
"""
    console.print(banner)


def format_rank(rank: float | None) -> str:
    """
    Format an average rank for display.

    >>> format_rank(1.5), format_rank(None)
    ('1.5', '-')
    """
    return f"{rank:.1f}" if rank is not None else "-"


def _status_markup(status: str) -> str:
    if status == "completed":
        return "[green]completed[/green]"
    if status == "failed":
        return "[red]failed[/red]"
    return f"[yellow]{status}[/yellow]"


def print_report_summary(full_report: dict[str, Any]) -> None:
    """
    Print a stored report: header panel, per-service metrics and prompts.

    Agent mode buffers the whole payload under "report" and flushes it.
    Quiet mode prints report id, status, score, coverage and mention rate
    tab-separated.

    Args:
        full_report: Payload from storage.queries.get_full_report()
    """
    report = full_report["report"]
    company = full_report.get("company") or {}
    overall = full_report["summary"]["overall"] or {}

    if output_mode.is_agent():
        output_mode.add_json("report", full_report)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        print(
            f"{report['id']}\t{report['status']}\t{overall.get('visibility_score', '')}\t"
            f"{overall.get('query_coverage', '')}\t{overall.get('mention_rate', '')}"
        )
        return

    lines = [
        f"[bold]Company:[/bold] {company.get('name', '?')} ({company.get('url', '?')})",
        f"[bold]Status:[/bold] {_status_markup(report['status'])}",
        f"[bold]Prompts:[/bold] {report['total_prompts']} x "
        f"{report['runs_per_prompt']} runs on {', '.join(report['services'])}",
    ]
    if overall:
        lines += [
            f"[bold]Visibility score:[/bold] {overall['visibility_score']}",
            f"[bold]Query coverage:[/bold] {overall['query_coverage']:.1f}%",
            f"[bold]Mention rate:[/bold] {overall['mention_rate']:.1f}%",
            f"[bold]Average rank:[/bold] {format_rank(overall['average_rank'])}",
        ]
    if report["visibility_level"]:
        lines.append(f"[bold]Visibility level:[/bold] {report['visibility_level']}")
    if report["error_message"]:
        lines.append(f"[bold]Error:[/bold] [red]{report['error_message']}[/red]")

    border_style = {"completed": "green", "failed": "red"}.get(report["status"], "yellow")
    console.print(
        Panel(
            "\n".join(lines),
            title=f"[bold]Report {report['id']}[/bold]",
            border_style=border_style,
            box=box.ROUNDED,
        )
    )

    services = full_report["summary"]["services"]
    if services:
        table = Table(title="Services", box=box.ROUNDED)
        table.add_column("Service", style="cyan", no_wrap=True)
        table.add_column("Score", justify="right")
        table.add_column("Coverage", justify="right")
        table.add_column("Mention rate", justify="right")
        table.add_column("Avg rank", justify="right")
        table.add_column("Runs", justify="right")
        for metrics in services.values():
            table.add_row(
                metrics["service"],
                str(metrics["visibility_score"]),
                f"{metrics['query_coverage']:.1f}%",
                f"{metrics['mention_rate']:.1f}%",
                format_rank(metrics["average_rank"]),
                f"{metrics['mentioned_runs']}/{metrics['total_runs']}",
            )
        console.print(table)

    print_prompt_table(full_report["prompts"], report["services"])
    print_recommendations_table(full_report.get("recommendations", []))


def print_prompt_table(prompts: list[dict[str, Any]], services: list[str]) -> None:
    """One row per prompt (display order) with mention probability per service."""
    if not prompts or not output_mode.is_human() or output_mode.quiet:
        return

    table = Table(title="Prompts", box=box.ROUNDED)
    table.add_column("#", justify="right")
    table.add_column("Category", style="magenta")
    table.add_column("Prompt", style="cyan")
    for service in services:
        table.add_column(service, justify="right")

    for prompt in prompts:
        cells = []
        for service in services:
            aggregate = prompt["aggregates"].get(service)
            if aggregate is None:
                cells.append("-")
                continue
            cell = f"{aggregate['mention_probability']:.0f}%"
            if aggregate["average_rank"] is not None:
                cell += f" (#{aggregate['average_rank']:.1f})"
            color = "green" if aggregate["business_mentioned"] else "red"
            cells.append(f"[{color}]{cell}[/{color}]")
        table.add_row(
            str(prompt["order_index"] + 1), prompt["category"], prompt["prompt_text"], *cells
        )

    console.print(table)


def print_recommendations_table(recommendations: list[dict[str, Any]]) -> None:
    """Stored recommendations, highest priority first."""
    if not recommendations or not output_mode.is_human() or output_mode.quiet:
        return

    colors = {"High": "red", "Medium": "yellow", "Low": "green"}
    table = Table(title="Recommendations", box=box.ROUNDED)
    table.add_column("Priority", no_wrap=True)
    table.add_column("Recommendation", style="cyan")
    table.add_column("Details")
    for recommendation in recommendations:
        color = colors.get(recommendation["priority"], "white")
        table.add_row(
            f"[{color}]{recommendation['priority']}[/{color}]",
            recommendation["title"],
            recommendation["description"],
        )
    console.print(table)

def print_competitor_table(leaderboard: list[dict[str, Any]]) -> None:
    """Competitor leaderboard from get_competitor_leaderboard()."""
    if output_mode.is_agent():
        output_mode.add_json("competitors", leaderboard)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        for row in leaderboard:
            print(f"{row['name']}\t{row['total_mentions']}\t{format_rank(row['average_rank'])}")
        return

    if not leaderboard:
        info("No competitors were mentioned")
        return

    table = Table(title="Competitors", box=box.ROUNDED)
    table.add_column("Competitor", style="cyan")
    table.add_column("Mentions", justify="right")
    table.add_column("Avg rank", justify="right")
    for row in leaderboard:
        table.add_row(row["name"], str(row["total_mentions"]), format_rank(row["average_rank"]))
    console.print(table)


def print_sources_table(sources: list[dict[str, Any]]) -> None:
    """Top cited domains from get_top_sources()."""
    if output_mode.is_agent():
        output_mode.add_json("sources", sources)
        output_mode.flush_json()
        return

    if output_mode.quiet:
        for row in sources:
            print(f"{row['domain']}\t{row['count']}")
        return

    if not sources:
        info("No sources were cited")
        return

    table = Table(title="Top Sources", box=box.ROUNDED)
    table.add_column("Domain", style="cyan")
    table.add_column("Citations", justify="right")
    for row in sources:
        table.add_row(row["domain"], str(row["count"]))
    console.print(table)
