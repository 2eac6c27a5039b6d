"""
Report export for Visibility Probe.

Writes the full stored payload of a report (company, summary, prompts in
display order with their aggregates and runs, competitor leaderboard and
top sources) as JSON for external analysis.

Example:
    >>> export_report_json(conn, 7, "./output/report-7.json")
    PosixPath('output/report-7.json')

Security:
    - Read-only database access
    - UTF-8 encoding
"""

import json
import logging
import sqlite3
from pathlib import Path

from visibility_probe.exceptions import ReportNotFoundError

from .queries import get_full_report

logger = logging.getLogger(__name__)


def export_report_json(
    conn: sqlite3.Connection, report_id: int, output_path: str | Path
) -> Path:
    """
    Export one report to a JSON file.

    Args:
        conn: Active SQLite database connection
        report_id: Report to export
        output_path: Destination file, parent directories are created

    Returns:
        Path of the written file

    Raises:
        ReportNotFoundError: If the report does not exist
        OSError: If the file cannot be written
    """
    payload = get_full_report(conn, report_id)
    if payload is None:
        raise ReportNotFoundError(f"Report {report_id} does not exist", report_id=report_id)

    path = Path(output_path)
    path.parent.mkdir(parents=True, exist_ok=True)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, ensure_ascii=False)

    logger.info(f"Exported report {report_id} to {path}")
    return path
