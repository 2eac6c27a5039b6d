"""
SQLite persistence and report lifecycle for Visibility Probe.

This module owns the schema (with versioned migrations) and every write the
report pipeline performs. All timestamps are stored in ISO 8601 format with
'Z' suffix (UTC).

The database tracks:
- companies: One row per business URL, overwritten in place on re-runs
- reports: One report generation attempt with its lifecycle status
- report_claims: Correlation ids already turned into a report
- report_service_metrics: Per-service summary of a completed report
- prompts: Customer prompts of a report, in display order
- prompt_aggregates: Per (prompt, service) fold of the prompt's runs
- prompt_runs: Immutable result of one probe
- competitor_mentions / source_citations: Exploded per-run signals
- recommendations: Prioritized improvement actions of a report

Report lifecycle:
    generating -> completed
    generating -> failed
Both transitions happen at most once. They are guarded UPDATEs
(WHERE status = 'generating'), so a second attempt changes nothing and
raises ReportStateError.

Example usage:
    >>> from visibility_probe.storage.db import connect, init_db_if_needed
    >>> init_db_if_needed("./output/visibility.db")
    >>> conn = connect("./output/visibility.db")
    >>> company_id = upsert_company(conn, company)

Security:
    - ALL queries use parameterized statements to prevent SQL injection
    - NO API keys are ever stored in the database
"""

import json
import logging
import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from itertools import count
from pathlib import Path
from typing import TYPE_CHECKING

from visibility_probe.config.constants import (
    STATUS_COMPLETED,
    STATUS_FAILED,
    STATUS_GENERATING,
    UNKNOWN_ERROR_MESSAGE,
)
from visibility_probe.exceptions import (
    DatabaseInitError,
    DatabaseQueryError,
    ReportNotFoundError,
    ReportStateError,
)
from visibility_probe.utils.domains import source_domain
from visibility_probe.utils.time import utc_timestamp

if TYPE_CHECKING:
    from visibility_probe.config.schema import CompanyConfig
    from visibility_probe.extractor.recommendation_generator import Recommendation
    from visibility_probe.report.aggregator import PromptAggregate, ReportSummary

logger = logging.getLogger(__name__)

# Current schema version - increment when migrations are added
CURRENT_SCHEMA_VERSION = 1

_savepoint_ids = count(1)


@dataclass(frozen=True)
class ClaimResult:
    """
    Outcome of claiming a correlation id.

    Attributes:
        report_id: Report that owns the correlation id
        created: True if this call created the report, False if the id had
            already been claimed by an earlier report
    """

    report_id: int
    created: bool


def connect(db_path: str) -> sqlite3.Connection:
    """
    Open a connection configured the way the pipeline expects.

    The connection runs in autocommit mode; multi-statement writes go
    through transaction(). Rows are returned as sqlite3.Row.

    Raises:
        DatabaseInitError: If the file cannot be opened
    """
    try:
        conn = sqlite3.connect(db_path, isolation_level=None)
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Cannot open database {db_path}: {e}") from e

    conn.row_factory = sqlite3.Row
    # Foreign key constraints are disabled by default in SQLite
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


@contextmanager
def transaction(conn: sqlite3.Connection) -> Iterator[sqlite3.Connection]:
    """
    Run a block atomically.

    Opens a transaction, or a savepoint when one is already open, so
    helpers that need atomicity can be nested inside a caller's transaction.
    Any exception rolls the block back and propagates.

    Example:
        >>> with transaction(conn):
        ...     run_id = insert_prompt_run(conn, ...)
        ...     update_prompt_aggregate(conn, prompt_id, aggregate)
    """
    if conn.in_transaction:
        name = f"sp_{next(_savepoint_ids)}"
        conn.execute(f"SAVEPOINT {name}")
        try:
            yield conn
        except BaseException:
            conn.execute(f"ROLLBACK TO SAVEPOINT {name}")
            conn.execute(f"RELEASE SAVEPOINT {name}")
            raise
        conn.execute(f"RELEASE SAVEPOINT {name}")
        return

    conn.execute("BEGIN")
    try:
        yield conn
    except BaseException:
        conn.rollback()
        raise
    conn.commit()


def init_db_if_needed(db_path: str) -> None:
    """
    Initialize the SQLite database with schema versioning.

    Creates the database file (and its parent directory) if needed, then
    applies any missing migrations. Idempotent: a database already at
    CURRENT_SCHEMA_VERSION is left as is.

    Args:
        db_path: Filesystem path to SQLite database file

    Raises:
        DatabaseInitError: If the file cannot be created or migrated, or its
            schema is newer than this software
    """
    try:
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise DatabaseInitError(f"Cannot create directory for {db_path}: {e}") from e

    conn = connect(db_path)
    try:
        conn.execute("""
            CREATE TABLE IF NOT EXISTS schema_version (
                version INTEGER PRIMARY KEY,
                applied_at TEXT NOT NULL
            )
        """)

        current_version = get_schema_version(conn)

        if current_version < CURRENT_SCHEMA_VERSION:
            logger.info(
                f"Database schema upgrade needed: "
                f"v{current_version} -> v{CURRENT_SCHEMA_VERSION}"
            )
            apply_migrations(conn, current_version, CURRENT_SCHEMA_VERSION)
            logger.info(f"Database schema upgraded to v{CURRENT_SCHEMA_VERSION}")
        elif current_version == CURRENT_SCHEMA_VERSION:
            logger.debug(f"Database schema is current (v{CURRENT_SCHEMA_VERSION})")
        else:
            raise DatabaseInitError(
                f"Database schema version {current_version} is newer than "
                f"expected {CURRENT_SCHEMA_VERSION}. Update your software or "
                f"use a different database file."
            )
    except sqlite3.Error as e:
        raise DatabaseInitError(f"Failed to initialize database {db_path}: {e}") from e
    finally:
        conn.close()


def get_schema_version(conn: sqlite3.Connection) -> int:
    """
    Get current schema version from database.

    Returns:
        int: Current schema version (0 if no migrations applied yet)
    """
    result = conn.execute("SELECT MAX(version) FROM schema_version").fetchone()[0]
    return result if result is not None else 0


def apply_migrations(
    conn: sqlite3.Connection, from_version: int, to_version: int
) -> None:
    """
    Apply schema migrations from one version to another.

    Each migration runs in its own transaction and is recorded in
    schema_version once committed. A failing migration is rolled back and
    leaves the database at the previous version.

    Raises:
        sqlite3.Error: If any migration SQL fails
        ValueError: If from_version > to_version (downgrades not supported)
    """
    if from_version > to_version:
        raise ValueError(
            f"Cannot downgrade schema from v{from_version} to v{to_version}. "
            f"Downgrades are not supported. Use a database backup instead."
        )

    for target_version in range(from_version + 1, to_version + 1):
        logger.info(f"Applying migration to schema version {target_version}")

        try:
            conn.execute("BEGIN")

            if target_version == 1:
                _migrate_to_v1(conn)
            else:
                raise ValueError(f"No migration defined for version {target_version}")

            timestamp = utc_timestamp()
            conn.execute(
                "INSERT INTO schema_version (version, applied_at) VALUES (?, ?)",
                (target_version, timestamp),
            )
            conn.commit()
            logger.info(
                f"Successfully migrated to schema version {target_version} at {timestamp}"
            )

        except Exception as e:
            conn.rollback()
            logger.error(
                f"Migration to version {target_version} failed: {e}", exc_info=True
            )
            raise sqlite3.Error(
                f"Failed to migrate database to version {target_version}: {e}"
            ) from e


def _migrate_to_v1(conn: sqlite3.Connection) -> None:
    """
    Create the initial schema.

    Ownership runs report -> prompts -> runs -> competitor mentions and
    citations; a company is referenced by many reports. Invariants the
    database can enforce are expressed as constraints:
    - a company is unique by URL
    - a run has a rank only when it mentions the business
    - one run per (prompt, service, run_number)
    - one aggregate per (prompt, service)
    - a correlation id belongs to at most one report
    """
    conn.execute("""
        CREATE TABLE IF NOT EXISTS companies (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            url TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            description TEXT NOT NULL,
            industry TEXT NOT NULL,
            products_services TEXT NOT NULL,
            target_customers TEXT NOT NULL,
            location TEXT,
            additional_context TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS reports (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            company_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'generating'
                CHECK (status IN ('generating', 'completed', 'failed')),
            total_prompts INTEGER NOT NULL,
            runs_per_prompt INTEGER NOT NULL,
            services_json TEXT NOT NULL,
            visibility_score INTEGER,
            query_coverage REAL,
            mention_rate REAL,
            average_rank REAL,
            visibility_level TEXT
                CHECK (visibility_level IS NULL
                       OR visibility_level IN ('High', 'Medium', 'Low')),
            visibility_factors_json TEXT NOT NULL DEFAULT '[]',
            execution_time_ms INTEGER,
            error_message TEXT,
            correlation_id TEXT UNIQUE,
            email_from TEXT,
            generated_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (company_id) REFERENCES companies(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS report_claims (
            correlation_id TEXT PRIMARY KEY,
            report_id INTEGER NOT NULL,
            claimed_at TEXT NOT NULL,
            FOREIGN KEY (report_id) REFERENCES reports(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS report_service_metrics (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            report_id INTEGER NOT NULL,
            service TEXT NOT NULL,
            visibility_score INTEGER NOT NULL,
            query_coverage REAL NOT NULL,
            mention_rate REAL NOT NULL,
            average_rank REAL,
            total_runs INTEGER NOT NULL,
            mentioned_runs INTEGER NOT NULL,
            total_prompts INTEGER NOT NULL,
            mentioned_prompts INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (report_id) REFERENCES reports(id),
            UNIQUE(report_id, service)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            report_id INTEGER NOT NULL,
            company_id INTEGER NOT NULL,
            prompt_text TEXT NOT NULL,
            category TEXT NOT NULL,
            order_index INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (report_id) REFERENCES reports(id),
            FOREIGN KEY (company_id) REFERENCES companies(id),
            UNIQUE(report_id, order_index)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_aggregates (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            prompt_id INTEGER NOT NULL,
            report_id INTEGER NOT NULL,
            service TEXT NOT NULL,
            business_mentioned INTEGER NOT NULL DEFAULT 0,
            mention_probability REAL NOT NULL DEFAULT 0,
            average_rank REAL,
            total_sources INTEGER NOT NULL DEFAULT 0,
            total_runs INTEGER NOT NULL DEFAULT 0,
            mentioned_runs INTEGER NOT NULL DEFAULT 0,
            finalized INTEGER NOT NULL DEFAULT 0,
            updated_at TEXT,
            FOREIGN KEY (prompt_id) REFERENCES prompts(id),
            FOREIGN KEY (report_id) REFERENCES reports(id),
            UNIQUE(prompt_id, service)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS prompt_runs (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            prompt_id INTEGER NOT NULL,
            report_id INTEGER NOT NULL,
            company_id INTEGER NOT NULL,
            service TEXT NOT NULL,
            run_number INTEGER NOT NULL CHECK (run_number >= 1),
            response_text TEXT NOT NULL,
            business_mentioned INTEGER NOT NULL,
            rank INTEGER CHECK (rank IS NULL OR (business_mentioned = 1 AND rank >= 1)),
            mention_context TEXT,
            execution_time_ms INTEGER NOT NULL DEFAULT 0,
            tokens_used INTEGER,
            failed INTEGER NOT NULL DEFAULT 0,
            error TEXT,
            analysis_schema_version INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (prompt_id) REFERENCES prompts(id),
            FOREIGN KEY (report_id) REFERENCES reports(id),
            FOREIGN KEY (company_id) REFERENCES companies(id),
            UNIQUE(prompt_id, service, run_number)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS competitor_mentions (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            prompt_run_id INTEGER NOT NULL,
            prompt_id INTEGER NOT NULL,
            report_id INTEGER NOT NULL,
            company_id INTEGER NOT NULL,
            service TEXT NOT NULL,
            competitor_name TEXT NOT NULL,
            rank INTEGER NOT NULL CHECK (rank >= 1),
            source_url TEXT,
            mention_context TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (prompt_run_id) REFERENCES prompt_runs(id),
            FOREIGN KEY (prompt_id) REFERENCES prompts(id),
            FOREIGN KEY (report_id) REFERENCES reports(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS source_citations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            prompt_run_id INTEGER NOT NULL,
            report_id INTEGER NOT NULL,
            company_id INTEGER NOT NULL,
            service TEXT NOT NULL,
            source_url TEXT NOT NULL,
            source_domain TEXT NOT NULL,
            source_title TEXT,
            mentioned_our_company INTEGER NOT NULL DEFAULT 0,
            mentioned_competitors_json TEXT NOT NULL DEFAULT '[]',
            created_at TEXT NOT NULL,
            FOREIGN KEY (prompt_run_id) REFERENCES prompt_runs(id),
            FOREIGN KEY (report_id) REFERENCES reports(id)
        )
    """)

    conn.execute("""
        CREATE TABLE IF NOT EXISTS recommendations (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            report_id INTEGER NOT NULL,
            company_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            description TEXT NOT NULL,
            priority TEXT NOT NULL CHECK (priority IN ('High', 'Medium', 'Low')),
            category TEXT NOT NULL,
            order_index INTEGER NOT NULL,
            created_at TEXT NOT NULL,
            FOREIGN KEY (report_id) REFERENCES reports(id),
            FOREIGN KEY (company_id) REFERENCES companies(id),
            UNIQUE(report_id, order_index)
        )
    """)

    # companies.url and reports.correlation_id are indexed by their UNIQUE
    # constraints
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reports_company ON reports(company_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_reports_status ON reports(status)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_prompts_report ON prompts(report_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_prompt ON prompt_runs(prompt_id)")
    conn.execute("CREATE INDEX IF NOT EXISTS idx_runs_report ON prompt_runs(report_id)")
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_competitors_run ON competitor_mentions(prompt_run_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_competitors_report ON competitor_mentions(report_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_competitors_report_name "
        "ON competitor_mentions(report_id, competitor_name)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_citations_run ON source_citations(prompt_run_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_citations_report ON source_citations(report_id)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_citations_report_domain "
        "ON source_citations(report_id, source_domain)"
    )
    conn.execute(
        "CREATE INDEX IF NOT EXISTS idx_recommendations_report ON recommendations(report_id)"
    )

    logger.debug("Created schema v1 tables and indexes")


# ============================================================================
# Companies
# ============================================================================


def upsert_company(conn: sqlite3.Connection, company: "CompanyConfig") -> int:
    """
    Insert a company or overwrite the existing row with the same URL.

    Re-running for the same URL never creates a second row: descriptive
    fields are replaced in place, created_at is kept and updated_at moves.

    Args:
        conn: Active SQLite database connection
        company: Business profile from the configuration

    Returns:
        int: Company id
    """
    now = utc_timestamp()
    conn.execute(
        """
        INSERT INTO companies (
            url, name, description, industry, products_services,
            target_customers, location, additional_context,
            created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        ON CONFLICT(url) DO UPDATE SET
            name = excluded.name,
            description = excluded.description,
            industry = excluded.industry,
            products_services = excluded.products_services,
            target_customers = excluded.target_customers,
            location = excluded.location,
            additional_context = excluded.additional_context,
            updated_at = excluded.updated_at
        """,
        (
            company.url,
            company.name,
            company.description,
            company.industry,
            company.products_services,
            company.target_customers,
            company.location,
            company.additional_context,
            now,
            now,
        ),
    )
    company_id = conn.execute(
        "SELECT id FROM companies WHERE url = ?", (company.url,)
    ).fetchone()[0]

    logger.debug(f"Upserted company {company_id} ({company.url})")
    return company_id


# ============================================================================
# Reports and lifecycle
# ============================================================================


def create_report(
    conn: sqlite3.Connection,
    company_id: int,
    total_prompts: int,
    runs_per_prompt: int,
    services: list[str],
    correlation_id: str | None = None,
    email_from: str | None = None,
) -> int:
    """
    Insert a new report in 'generating'.

    Use claim_correlation_id() instead when the report answers an inbound
    message that may be delivered more than once.

    Returns:
        int: Report id
    """
    now = utc_timestamp()
    cursor = conn.execute(
        """
        INSERT INTO reports (
            company_id, status, total_prompts, runs_per_prompt, services_json,
            correlation_id, email_from, created_at, updated_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            company_id,
            STATUS_GENERATING,
            total_prompts,
            runs_per_prompt,
            json.dumps(services),
            correlation_id,
            email_from,
            now,
            now,
        ),
    )
    report_id = cursor.lastrowid
    logger.debug(
        f"Created report {report_id} for company {company_id}: "
        f"{total_prompts} prompts x {runs_per_prompt} runs x {len(services)} services"
    )
    return report_id


def _claimed_report_id(conn: sqlite3.Connection, correlation_id: str) -> int | None:
    row = conn.execute(
        "SELECT report_id FROM report_claims WHERE correlation_id = ?",
        (correlation_id,),
    ).fetchone()
    return row[0] if row else None


def claim_correlation_id(
    conn: sqlite3.Connection,
    correlation_id: str,
    company_id: int,
    total_prompts: int,
    runs_per_prompt: int,
    services: list[str],
    email_from: str | None = None,
) -> ClaimResult:
    """
    Atomically turn a correlation id into exactly one report.

    The claim marker and the report row are written in one transaction. A
    correlation id that was already claimed is coalesced onto the existing
    report instead of creating a new one.

    Args:
        conn: Active SQLite database connection
        correlation_id: Inbound message id (e.g. email Message-ID)
        company_id: Company the report belongs to
        total_prompts: Number of prompts in the report
        runs_per_prompt: Probes per (prompt, service)
        services: Service ids the report queries
        email_from: Requester address for the report, if known

    Returns:
        ClaimResult(report_id, created)
    """
    existing = _claimed_report_id(conn, correlation_id)
    if existing is not None:
        logger.info(f"Correlation id {correlation_id!r} already claimed by report {existing}")
        return ClaimResult(report_id=existing, created=False)

    with transaction(conn):
        report_id = create_report(
            conn,
            company_id,
            total_prompts,
            runs_per_prompt,
            services,
            correlation_id=correlation_id,
            email_from=email_from,
        )
        cursor = conn.execute(
            """
            INSERT OR IGNORE INTO report_claims (correlation_id, report_id, claimed_at)
            VALUES (?, ?, ?)
            """,
            (correlation_id, report_id, utc_timestamp()),
        )
        claimed = cursor.rowcount == 1

    if claimed:
        return ClaimResult(report_id=report_id, created=True)

    # Unreachable on a single connection: the report insert would already
    # have failed on the UNIQUE correlation_id
    existing = _claimed_report_id(conn, correlation_id)
    raise DatabaseQueryError(
        f"Correlation id {correlation_id!r} was claimed concurrently by report {existing}"
    )


def get_report_status(conn: sqlite3.Connection, report_id: int) -> str | None:
    """Return the stored status of a report, or None if it does not exist."""
    row = conn.execute("SELECT status FROM reports WHERE id = ?", (report_id,)).fetchone()
    return row[0] if row else None


def _reject_transition(
    conn: sqlite3.Connection, report_id: int, requested_status: str
) -> None:
    current_status = get_report_status(conn, report_id)
    if current_status is None:
        raise ReportNotFoundError(f"Report {report_id} does not exist", report_id=report_id)
    raise ReportStateError(
        f"Cannot mark report {report_id} as {requested_status}: "
        f"it is already {current_status}",
        report_id=report_id,
        current_status=current_status,
        requested_status=requested_status,
    )


def complete_report(
    conn: sqlite3.Connection,
    report_id: int,
    summary: "ReportSummary",
    execution_time_ms: int,
) -> None:
    """
    Transition a report generating -> completed and store its summary.

    The summary (pooled metrics on the report row, one
    report_service_metrics row per service) is written in the same
    transaction as the transition and never afterwards.

    Raises:
        ReportStateError: If the report is not 'generating'; nothing changes
        ReportNotFoundError: If the report does not exist
    """
    now = utc_timestamp()
    overall = summary.overall

    with transaction(conn):
        cursor = conn.execute(
            """
            UPDATE reports SET
                status = ?,
                visibility_score = ?,
                query_coverage = ?,
                mention_rate = ?,
                average_rank = ?,
                visibility_level = ?,
                visibility_factors_json = ?,
                execution_time_ms = ?,
                generated_at = ?,
                updated_at = ?
            WHERE id = ? AND status = ?
            """,
            (
                STATUS_COMPLETED,
                overall.visibility_score,
                overall.query_coverage,
                overall.mention_rate,
                overall.average_rank,
                summary.visibility_level,
                json.dumps(summary.visibility_factors),
                execution_time_ms,
                now,
                now,
                report_id,
                STATUS_GENERATING,
            ),
        )
        if cursor.rowcount == 0:
            _reject_transition(conn, report_id, STATUS_COMPLETED)

        for service_summary in summary.services.values():
            conn.execute(
                """
                INSERT INTO report_service_metrics (
                    report_id, service, visibility_score, query_coverage,
                    mention_rate, average_rank, total_runs, mentioned_runs,
                    total_prompts, mentioned_prompts, created_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    report_id,
                    service_summary.service,
                    service_summary.visibility_score,
                    service_summary.query_coverage,
                    service_summary.mention_rate,
                    service_summary.average_rank,
                    service_summary.total_runs,
                    service_summary.mentioned_runs,
                    service_summary.total_prompts,
                    service_summary.mentioned_prompts,
                    now,
                ),
            )

    logger.info(
        f"Report {report_id} completed: score={overall.visibility_score}, "
        f"coverage={overall.query_coverage:.1f}%, mention_rate={overall.mention_rate:.1f}%"
    )


def fail_report(
    conn: sqlite3.Connection,
    report_id: int,
    error_message: str | None,
    execution_time_ms: int | None = None,
) -> None:
    """
    Transition a report generating -> failed.

    A blank message is stored as "Unknown error" so a failed report always
    says something.

    Raises:
        ReportStateError: If the report is not 'generating'; nothing changes
        ReportNotFoundError: If the report does not exist
    """
    message = (error_message or "").strip() or UNKNOWN_ERROR_MESSAGE
    now = utc_timestamp()

    cursor = conn.execute(
        """
        UPDATE reports SET
            status = ?,
            error_message = ?,
            execution_time_ms = ?,
            updated_at = ?
        WHERE id = ? AND status = ?
        """,
        (STATUS_FAILED, message, execution_time_ms, now, report_id, STATUS_GENERATING),
    )
    if cursor.rowcount == 0:
        _reject_transition(conn, report_id, STATUS_FAILED)

    logger.warning(f"Report {report_id} failed: {message}")


# ============================================================================
# Prompts and aggregates
# ============================================================================


def create_prompt(
    conn: sqlite3.Connection,
    report_id: int,
    company_id: int,
    prompt_text: str,
    category: str,
    order_index: int,
    services: list[str],
) -> int:
    """
    Insert a prompt together with a neutral aggregate per service.

    The neutral aggregates (not mentioned, 0%, no rank) stand until the
    prompt's batch is persisted, so a prompt whose batch never lands still
    reads as "not mentioned".

    Returns:
        int: Prompt id
    """
    now = utc_timestamp()
    with transaction(conn):
        cursor = conn.execute(
            """
            INSERT INTO prompts (
                report_id, company_id, prompt_text, category, order_index, created_at
            ) VALUES (?, ?, ?, ?, ?, ?)
            """,
            (report_id, company_id, prompt_text, category, order_index, now),
        )
        prompt_id = cursor.lastrowid

        conn.executemany(
            """
            INSERT INTO prompt_aggregates (prompt_id, report_id, service)
            VALUES (?, ?, ?)
            """,
            [(prompt_id, report_id, service) for service in services],
        )

    return prompt_id


def update_prompt_aggregate(
    conn: sqlite3.Connection, prompt_id: int, aggregate: "PromptAggregate"
) -> None:
    """
    Overwrite the neutral aggregate of (prompt, aggregate.service).

    Aggregates are computed from the complete batch and written once; they
    are never incremented or rewritten.

    Raises:
        DatabaseQueryError: If the aggregate does not exist or was already written
    """
    cursor = conn.execute(
        """
        UPDATE prompt_aggregates SET
            business_mentioned = ?,
            mention_probability = ?,
            average_rank = ?,
            total_sources = ?,
            total_runs = ?,
            mentioned_runs = ?,
            finalized = 1,
            updated_at = ?
        WHERE prompt_id = ? AND service = ? AND finalized = 0
        """,
        (
            int(aggregate.business_mentioned),
            aggregate.mention_probability,
            aggregate.average_rank,
            aggregate.total_sources,
            aggregate.total_runs,
            aggregate.mentioned_count,
            utc_timestamp(),
            prompt_id,
            aggregate.service,
        ),
    )

    if cursor.rowcount == 0:
        exists = conn.execute(
            "SELECT 1 FROM prompt_aggregates WHERE prompt_id = ? AND service = ?",
            (prompt_id, aggregate.service),
        ).fetchone()
        if exists:
            raise DatabaseQueryError(
                f"Aggregate for prompt {prompt_id}/{aggregate.service} was already written"
            )
        raise DatabaseQueryError(
            f"No aggregate for prompt {prompt_id}/{aggregate.service}. "
            f"Call create_prompt() first."
        )


# ============================================================================
# Runs and exploded signals
# ============================================================================


def insert_prompt_run(
    conn: sqlite3.Connection,
    prompt_id: int,
    report_id: int,
    company_id: int,
    service: str,
    run_number: int,
    response_text: str,
    business_mentioned: bool,
    rank: int | None,
    analysis_schema_version: int,
    mention_context: str | None = None,
    execution_time_ms: int = 0,
    tokens_used: int | None = None,
    failed: bool = False,
    error: str | None = None,
) -> int:
    """
    Insert the immutable record of one probe.

    Raises:
        DatabaseQueryError: If a rank is given for a run without a mention
        sqlite3.IntegrityError: If (prompt, service, run_number) already exists

    Returns:
        int: Prompt run id
    """
    if rank is not None and not business_mentioned:
        raise DatabaseQueryError(
            f"Run {run_number} of prompt {prompt_id}/{service} has rank {rank} "
            f"but does not mention the business"
        )

    cursor = conn.execute(
        """
        INSERT INTO prompt_runs (
            prompt_id, report_id, company_id, service, run_number,
            response_text, business_mentioned, rank, mention_context,
            execution_time_ms, tokens_used, failed, error,
            analysis_schema_version, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            prompt_id,
            report_id,
            company_id,
            service,
            run_number,
            response_text,
            int(business_mentioned),
            rank,
            mention_context,
            execution_time_ms,
            tokens_used,
            int(failed),
            error,
            analysis_schema_version,
            utc_timestamp(),
        ),
    )
    return cursor.lastrowid


def insert_competitor_mention(
    conn: sqlite3.Connection,
    prompt_run_id: int,
    prompt_id: int,
    report_id: int,
    company_id: int,
    service: str,
    competitor_name: str,
    rank: int,
    source_url: str | None = None,
    mention_context: str | None = None,
) -> int:
    """Insert one competitor named in a run. Not de-duplicated."""
    cursor = conn.execute(
        """
        INSERT INTO competitor_mentions (
            prompt_run_id, prompt_id, report_id, company_id, service,
            competitor_name, rank, source_url, mention_context, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            prompt_run_id,
            prompt_id,
            report_id,
            company_id,
            service,
            competitor_name,
            rank,
            source_url,
            mention_context,
            utc_timestamp(),
        ),
    )
    return cursor.lastrowid


def insert_source_citation(
    conn: sqlite3.Connection,
    prompt_run_id: int,
    report_id: int,
    company_id: int,
    service: str,
    source_url: str,
    mentioned_our_company: bool,
    mentioned_competitors: list[str] | None = None,
    source_title: str | None = None,
) -> int | None:
    """
    Insert one URL cited by a run. Not de-duplicated.

    Returns:
        Citation id, or None when the URL has no usable domain (skipped)
    """
    domain = source_domain(source_url)
    if domain is None:
        logger.warning(f"Skipping citation without a domain: {source_url!r}")
        return None

    cursor = conn.execute(
        """
        INSERT INTO source_citations (
            prompt_run_id, report_id, company_id, service, source_url,
            source_domain, source_title, mentioned_our_company,
            mentioned_competitors_json, created_at
        ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (
            prompt_run_id,
            report_id,
            company_id,
            service,
            source_url,
            domain,
            source_title,
            int(mentioned_our_company),
            json.dumps(mentioned_competitors or []),
            utc_timestamp(),
        ),
    )
    return cursor.lastrowid


# ============================================================================
# Recommendations
# ============================================================================


def insert_recommendations(
    conn: sqlite3.Connection,
    report_id: int,
    company_id: int,
    recommendations: list["Recommendation"],
) -> int:
    """
    Store a report's recommendations in one transaction, list order becoming
    order_index.

    Returns:
        int: Number of rows inserted
    """
    now = utc_timestamp()
    with transaction(conn):
        conn.executemany(
            """
            INSERT INTO recommendations (
                report_id, company_id, title, description, priority,
                category, order_index, created_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            [
                (
                    report_id,
                    company_id,
                    recommendation.title,
                    recommendation.description,
                    recommendation.priority,
                    recommendation.category,
                    order_index,
                    now,
                )
                for order_index, recommendation in enumerate(recommendations)
            ],
        )
    return len(recommendations)
