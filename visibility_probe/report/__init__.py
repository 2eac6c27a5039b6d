"""
Report aggregation for Visibility Probe.

Pure folds from per-run observations to prompt-level and report-level
metrics, plus the competitor and source leaderboards.
"""

from .aggregator import (
    OVERALL,
    PromptAggregate,
    ReportSummary,
    ServiceSummary,
    aggregate_prompt,
    build_competitor_leaderboard,
    count_source_domains,
    finalize,
    round_half_up,
)

__all__ = [
    "OVERALL",
    "PromptAggregate",
    "ReportSummary",
    "ServiceSummary",
    "aggregate_prompt",
    "build_competitor_leaderboard",
    "count_source_domains",
    "finalize",
    "round_half_up",
]
