"""
Read side of the Visibility Probe database.

Every function takes an open connection (see storage.db.connect) and
returns plain dicts ready for JSON output or rendering.

Prompts are always returned in order_index order, the order they were
generated in, regardless of which batch finished first.

Polling for a report uses a tagged result instead of "missing means not
ready yet":

    >>> result = lookup_report_result(conn, report_id)
    >>> match result:
    ...     case ReportReady(report=report): ...
    ...     case ReportNotYetAvailable(status=status): ...
    ...     case ReportFailed(error_message=message): ...

wait_for_report() retries only on ReportNotYetAvailable, with exponential
backoff (tenacity).
"""

import json
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from tenacity import Retrying, retry_if_result, stop_after_delay, wait_exponential

from visibility_probe.config.constants import (
    DEFAULT_TOP_SOURCES_LIMIT,
    STATUS_COMPLETED,
    STATUS_FAILED,
)
from visibility_probe.exceptions import ReportNotFoundError
from visibility_probe.report.aggregator import (
    OVERALL,
    build_competitor_leaderboard,
    count_source_domains,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReportReady:
    """Report completed; report is the get_full_report() payload."""

    report_id: int
    report: dict[str, Any]


@dataclass(frozen=True)
class ReportNotYetAvailable:
    """Report exists but is still generating."""

    report_id: int
    status: str


@dataclass(frozen=True)
class ReportFailed:
    """Report generation failed; error_message is never empty."""

    report_id: int
    error_message: str


ReportResult = ReportReady | ReportNotYetAvailable | ReportFailed


def _company_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "url": row["url"],
        "name": row["name"],
        "description": row["description"],
        "industry": row["industry"],
        "products_services": row["products_services"],
        "target_customers": row["target_customers"],
        "location": row["location"],
        "additional_context": row["additional_context"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _report_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "id": row["id"],
        "company_id": row["company_id"],
        "status": row["status"],
        "total_prompts": row["total_prompts"],
        "runs_per_prompt": row["runs_per_prompt"],
        "services": json.loads(row["services_json"]),
        "visibility_score": row["visibility_score"],
        "query_coverage": row["query_coverage"],
        "mention_rate": row["mention_rate"],
        "average_rank": row["average_rank"],
        "visibility_level": row["visibility_level"],
        "visibility_factors": json.loads(row["visibility_factors_json"]),
        "execution_time_ms": row["execution_time_ms"],
        "error_message": row["error_message"],
        "correlation_id": row["correlation_id"],
        "email_from": row["email_from"],
        "generated_at": row["generated_at"],
        "created_at": row["created_at"],
        "updated_at": row["updated_at"],
    }


def _metrics_dict(row: sqlite3.Row) -> dict[str, Any]:
    return {
        "service": row["service"],
        "visibility_score": row["visibility_score"],
        "query_coverage": row["query_coverage"],
        "mention_rate": row["mention_rate"],
        "average_rank": row["average_rank"],
        "total_runs": row["total_runs"],
        "mentioned_runs": row["mentioned_runs"],
        "total_prompts": row["total_prompts"],
        "mentioned_prompts": row["mentioned_prompts"],
    }


def get_company_by_url(conn: sqlite3.Connection, url: str) -> dict[str, Any] | None:
    """Return the company stored for url, or None."""
    row = conn.execute("SELECT * FROM companies WHERE url = ?", (url,)).fetchone()
    return _company_dict(row) if row else None


def get_report(conn: sqlite3.Connection, report_id: int) -> dict[str, Any] | None:
    """Return the report row (without prompts), or None."""
    row = conn.execute("SELECT * FROM reports WHERE id = ?", (report_id,)).fetchone()
    return _report_dict(row) if row else None


def get_report_by_correlation_id(
    conn: sqlite3.Connection, correlation_id: str
) -> dict[str, Any] | None:
    """Return the report that claimed correlation_id, or None."""
    row = conn.execute(
        """
        SELECT r.* FROM report_claims c
        JOIN reports r ON r.id = c.report_id
        WHERE c.correlation_id = ?
        """,
        (correlation_id,),
    ).fetchone()
    return _report_dict(row) if row else None


def list_company_reports(
    conn: sqlite3.Connection, company_id: int, limit: int | None = None
) -> list[dict[str, Any]]:
    """Reports of a company, newest first."""
    query = "SELECT * FROM reports WHERE company_id = ? ORDER BY created_at DESC, id DESC"
    params: list[Any] = [company_id]
    if limit is not None:
        query += " LIMIT ?"
        params.append(limit)
    return [_report_dict(row) for row in conn.execute(query, params).fetchall()]


def get_competitor_leaderboard(
    conn: sqlite3.Connection, report_id: int
) -> list[dict[str, Any]]:
    """
    Competitors of a report with total mentions and mean rank.

    Returns:
        [{"name", "total_mentions", "average_rank"}, ...], most mentioned first
    """
    rows = conn.execute(
        """
        SELECT competitor_name, rank FROM competitor_mentions
        WHERE report_id = ?
        ORDER BY id
        """,
        (report_id,),
    ).fetchall()
    return build_competitor_leaderboard((row[0], row[1]) for row in rows)


def get_top_sources(
    conn: sqlite3.Connection, report_id: int, limit: int = DEFAULT_TOP_SOURCES_LIMIT
) -> list[dict[str, Any]]:
    """
    Most cited domains of a report.

    Example:
        >>> get_top_sources(conn, report_id, limit=1)
        [{'domain': 'a.com', 'count': 4}]
    """
    rows = conn.execute(
        "SELECT source_domain FROM source_citations WHERE report_id = ? ORDER BY id",
        (report_id,),
    ).fetchall()
    return count_source_domains((row[0] for row in rows), limit=limit)


def _report_summary(conn: sqlite3.Connection, report: dict[str, Any]) -> dict[str, Any]:
    rows = conn.execute(
        "SELECT * FROM report_service_metrics WHERE report_id = ? ORDER BY id",
        (report["id"],),
    ).fetchall()

    overall = None
    if report["status"] == STATUS_COMPLETED:
        overall = {
            "service": OVERALL,
            "visibility_score": report["visibility_score"],
            "query_coverage": report["query_coverage"],
            "mention_rate": report["mention_rate"],
            "average_rank": report["average_rank"],
        }

    return {
        "overall": overall,
        "services": {row["service"]: _metrics_dict(row) for row in rows},
    }


def _prompt_details(conn: sqlite3.Connection, report_id: int) -> list[dict[str, Any]]:
    prompts = conn.execute(
        "SELECT * FROM prompts WHERE report_id = ? ORDER BY order_index",
        (report_id,),
    ).fetchall()

    aggregates: dict[int, dict[str, Any]] = {}
    for row in conn.execute(
        "SELECT * FROM prompt_aggregates WHERE report_id = ? ORDER BY id", (report_id,)
    ):
        aggregates.setdefault(row["prompt_id"], {})[row["service"]] = {
            "business_mentioned": bool(row["business_mentioned"]),
            "mention_probability": row["mention_probability"],
            "average_rank": row["average_rank"],
            "total_sources": row["total_sources"],
            "total_runs": row["total_runs"],
            "mentioned_runs": row["mentioned_runs"],
        }

    competitors: dict[int, list[dict[str, Any]]] = {}
    for row in conn.execute(
        "SELECT * FROM competitor_mentions WHERE report_id = ? ORDER BY id", (report_id,)
    ):
        competitors.setdefault(row["prompt_run_id"], []).append(
            {
                "name": row["competitor_name"],
                "rank": row["rank"],
                "source_url": row["source_url"],
                "mention_context": row["mention_context"],
            }
        )

    sources: dict[int, list[str]] = {}
    for row in conn.execute(
        "SELECT prompt_run_id, source_url FROM source_citations "
        "WHERE report_id = ? ORDER BY id",
        (report_id,),
    ):
        sources.setdefault(row[0], []).append(row[1])

    runs: dict[int, list[dict[str, Any]]] = {}
    for row in conn.execute(
        "SELECT * FROM prompt_runs WHERE report_id = ? ORDER BY service, run_number",
        (report_id,),
    ):
        runs.setdefault(row["prompt_id"], []).append(
            {
                "service": row["service"],
                "run_number": row["run_number"],
                "business_mentioned": bool(row["business_mentioned"]),
                "rank": row["rank"],
                "mention_context": row["mention_context"],
                "failed": bool(row["failed"]),
                "error": row["error"],
                "execution_time_ms": row["execution_time_ms"],
                "tokens_used": row["tokens_used"],
                "response_text": row["response_text"],
                "competitors": competitors.get(row["id"], []),
                "sources": sources.get(row["id"], []),
            }
        )

    return [
        {
            "id": prompt["id"],
            "order_index": prompt["order_index"],
            "category": prompt["category"],
            "prompt_text": prompt["prompt_text"],
            "aggregates": aggregates.get(prompt["id"], {}),
            "runs": runs.get(prompt["id"], []),
        }
        for prompt in prompts
    ]


def get_recommendations(
    conn: sqlite3.Connection, report_id: int
) -> list[dict[str, Any]]:
    """Recommendations of a report in stored order."""
    rows = conn.execute(
        """
        SELECT title, description, priority, category, order_index
        FROM recommendations
        WHERE report_id = ?
        ORDER BY order_index
        """,
        (report_id,),
    ).fetchall()
    return [dict(row) for row in rows]


def get_full_report(conn: sqlite3.Connection, report_id: int) -> dict[str, Any] | None:
    """
    Everything stored for one report.

    Returns:
        dict with keys report, company, summary, prompts, competitors,
        top_sources and recommendations; None if the report does not exist

    Example:
        >>> full = get_full_report(conn, 7)
        >>> full["summary"]["overall"]["visibility_score"]
        25
        >>> [p["order_index"] for p in full["prompts"]]
        [0, 1, 2, 3, 4]
    """
    report = get_report(conn, report_id)
    if report is None:
        return None

    company_row = conn.execute(
        "SELECT * FROM companies WHERE id = ?", (report["company_id"],)
    ).fetchone()

    return {
        "report": report,
        "company": _company_dict(company_row) if company_row else None,
        "summary": _report_summary(conn, report),
        "prompts": _prompt_details(conn, report_id),
        "competitors": get_competitor_leaderboard(conn, report_id),
        "top_sources": get_top_sources(conn, report_id),
        "recommendations": get_recommendations(conn, report_id),
    }


def get_latest_report(conn: sqlite3.Connection, company_id: int) -> dict[str, Any] | None:
    """Full payload of the company's most recent report, or None."""
    latest = list_company_reports(conn, company_id, limit=1)
    if not latest:
        return None
    return get_full_report(conn, latest[0]["id"])


def lookup_report_result(conn: sqlite3.Connection, report_id: int) -> ReportResult:
    """
    Look up a report as a tagged result.

    Raises:
        ReportNotFoundError: If no report with this id exists
    """
    report = get_report(conn, report_id)
    if report is None:
        raise ReportNotFoundError(f"Report {report_id} does not exist", report_id=report_id)

    if report["status"] == STATUS_COMPLETED:
        return ReportReady(report_id=report_id, report=get_full_report(conn, report_id))
    if report["status"] == STATUS_FAILED:
        return ReportFailed(report_id=report_id, error_message=report["error_message"])
    return ReportNotYetAvailable(report_id=report_id, status=report["status"])


def _not_yet_available(result: ReportResult) -> bool:
    return isinstance(result, ReportNotYetAvailable)


def _log_poll(retry_state) -> None:
    logger.debug(
        f"Report not ready yet (attempt {retry_state.attempt_number}), "
        f"retrying in {retry_state.next_action.sleep:.1f}s"
    )


def wait_for_report(
    conn: sqlite3.Connection,
    report_id: int,
    max_wait_seconds: float = 300.0,
    min_interval_seconds: float = 1.0,
    max_interval_seconds: float = 30.0,
    sleep: Callable[[float], None] = time.sleep,
) -> ReportResult:
    """
    Poll until a report is completed or failed, or max_wait_seconds pass.

    Only ReportNotYetAvailable is retried; ReportNotFoundError and database
    errors propagate immediately.

    Returns:
        The last ReportResult (ReportNotYetAvailable when time ran out)
    """
    retryer = Retrying(
        retry=retry_if_result(_not_yet_available),
        wait=wait_exponential(
            multiplier=min_interval_seconds,
            min=min_interval_seconds,
            max=max_interval_seconds,
        ),
        stop=stop_after_delay(max_wait_seconds),
        before_sleep=_log_poll,
        retry_error_callback=lambda retry_state: retry_state.outcome.result(),
        sleep=sleep,
    )
    return retryer(lookup_report_result, conn, report_id)
