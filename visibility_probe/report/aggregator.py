"""
Aggregation rules for Visibility Probe.

Two levels, both pure functions with no side effects:

Prompt level (aggregate_prompt), over the n runs of one (prompt, service):
    mentioned_count     = runs with business_mentioned
    mention_probability = mentioned_count / n * 100          (0 when n == 0)
    average_rank        = mean rank over mentioned runs that have a rank,
                          None when there is none (never 0)
    unique_sources      = distinct cited URLs, first-seen order

Report level (finalize), per service and pooled across services:
    mention_rate     = sum(mentioned runs) / sum(runs) * 100
    query_coverage   = prompts with a mention / total prompts * 100
    average_rank     = mean of every qualifying per-run rank
    visibility_score = round_half_up(coverage/100 * rate/100 * 1/avg_rank * 100)

avg_rank falls back to MIN_AVERAGE_RANK when no run produced a rank, and the
score is 0 whenever there are no mentions at all.

Aggregates are always recomputed from the full set of runs; nothing here is
incremental.
"""

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import TYPE_CHECKING, Any

from visibility_probe.config.constants import MIN_AVERAGE_RANK

if TYPE_CHECKING:
    from visibility_probe.llm_runner.probe import RunResult

OVERALL = "overall"


@dataclass
class PromptAggregate:
    """
    Aggregate of one prompt's runs against one service.

    Attributes:
        service: Service id the runs came from
        total_runs: Configured runs for the batch (the denominator)
        mentioned_count: Runs that mentioned the business
        mention_probability: mentioned_count / total_runs * 100
        average_rank: Mean of ranks, None if no mentioned run had a rank
        unique_sources: Distinct cited URLs in first-seen order
        business_mentioned: True if any run mentioned the business
        ranks: Qualifying ranks, kept so report averages widen exactly
        prompt_id: Stored prompt id, set by the pipeline
    """

    service: str
    total_runs: int
    mentioned_count: int = 0
    mention_probability: float = 0.0
    average_rank: float | None = None
    unique_sources: list[str] = field(default_factory=list)
    business_mentioned: bool = False
    ranks: list[int] = field(default_factory=list)
    prompt_id: int | None = None

    @property
    def total_sources(self) -> int:
        return len(self.unique_sources)


@dataclass
class ServiceSummary:
    """Report-level metrics for one service (or OVERALL)."""

    service: str
    visibility_score: int
    query_coverage: float
    mention_rate: float
    average_rank: float | None
    total_runs: int
    mentioned_runs: int
    total_prompts: int
    mentioned_prompts: int


@dataclass
class ReportSummary:
    """
    Everything a completed report stores.

    Attributes:
        services: Per-service summaries in configured order
        overall: Summary pooled across every service
        total_prompts: Prompts in the report
        visibility_level: Qualitative level, copied verbatim
        visibility_factors: Qualitative factors, copied verbatim
    """

    services: dict[str, ServiceSummary]
    overall: ServiceSummary
    total_prompts: int
    visibility_level: str | None = None
    visibility_factors: list[str] = field(default_factory=list)


def round_half_up(value: float) -> int:
    """
    Round to the nearest integer, halves away from zero.

    Python's round() uses banker's rounding (round(2.5) == 2); scores use
    the conventional rule.

    >>> round_half_up(2.5), round_half_up(1.49), round_half_up(0.5)
    (3, 1, 1)
    """
    return int(Decimal(str(value)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def _mean(values: Sequence[float]) -> float | None:
    return sum(values) / len(values) if values else None


def aggregate_prompt(
    results: Sequence["RunResult"], n: int, service: str = ""
) -> PromptAggregate:
    """
    Fold the RunResults of one (prompt, service) batch.

    Args:
        results: RunResults of the batch (failed runs included)
        n: Configured runs per prompt, the probability denominator
        service: Service id, taken from the first result when empty

    Returns:
        PromptAggregate

    Example:
        Four runs mentioned {T, F, T, F} with ranks {2, None, 1, None}:
        mentioned_count=2, mention_probability=50.0, average_rank=1.5
    """
    if not service and results:
        service = results[0].service

    mentioned_count = sum(1 for r in results if r.business_mentioned)
    ranks = [r.rank for r in results if r.business_mentioned and r.rank is not None]

    unique_sources: list[str] = []
    seen: set[str] = set()
    for result in results:
        for url in result.sources:
            if url not in seen:
                seen.add(url)
                unique_sources.append(url)

    return PromptAggregate(
        service=service,
        total_runs=n,
        mentioned_count=mentioned_count,
        mention_probability=(mentioned_count / n * 100) if n > 0 else 0.0,
        average_rank=_mean(ranks),
        unique_sources=unique_sources,
        business_mentioned=mentioned_count > 0,
        ranks=ranks,
    )


def _summarize(
    service: str,
    aggregates: Sequence[PromptAggregate],
    total_prompts: int,
    mentioned_prompts: int,
) -> ServiceSummary:
    total_runs = sum(a.total_runs for a in aggregates)
    mentioned_runs = sum(a.mentioned_count for a in aggregates)
    ranks = [rank for a in aggregates for rank in a.ranks]

    mention_rate = (mentioned_runs / total_runs * 100) if total_runs > 0 else 0.0
    query_coverage = (mentioned_prompts / total_prompts * 100) if total_prompts > 0 else 0.0
    average_rank = _mean(ranks)

    if mentioned_runs == 0:
        visibility_score = 0
    else:
        rank_for_score = average_rank if average_rank is not None else MIN_AVERAGE_RANK
        visibility_score = round_half_up(
            (query_coverage / 100) * (mention_rate / 100) * (1 / rank_for_score) * 100
        )

    return ServiceSummary(
        service=service,
        visibility_score=visibility_score,
        query_coverage=query_coverage,
        mention_rate=mention_rate,
        average_rank=average_rank,
        total_runs=total_runs,
        mentioned_runs=mentioned_runs,
        total_prompts=total_prompts,
        mentioned_prompts=mentioned_prompts,
    )


def finalize(
    aggregates_by_service: dict[str, list[PromptAggregate]],
    total_prompts: int,
    visibility_level: str | None = None,
    visibility_factors: list[str] | None = None,
) -> ReportSummary:
    """
    Fold every PromptAggregate of a report into a ReportSummary.

    Args:
        aggregates_by_service: Service id -> one PromptAggregate per prompt
        total_prompts: Number of prompts in the report
        visibility_level: Qualitative level, stored verbatim
        visibility_factors: Qualitative factors, stored verbatim

    Returns:
        ReportSummary with per-service and pooled metrics
    """
    services: dict[str, ServiceSummary] = {}
    mentioned_prompt_keys: set[Any] = set()

    for service, aggregates in aggregates_by_service.items():
        mentioned_prompts = sum(1 for a in aggregates if a.business_mentioned)
        services[service] = _summarize(service, aggregates, total_prompts, mentioned_prompts)

        for position, aggregate in enumerate(aggregates):
            if aggregate.business_mentioned:
                key = aggregate.prompt_id if aggregate.prompt_id is not None else position
                mentioned_prompt_keys.add(key)

    all_aggregates = [a for aggregates in aggregates_by_service.values() for a in aggregates]
    overall = _summarize(OVERALL, all_aggregates, total_prompts, len(mentioned_prompt_keys))

    return ReportSummary(
        services=services,
        overall=overall,
        total_prompts=total_prompts,
        visibility_level=visibility_level,
        visibility_factors=list(visibility_factors or []),
    )


def build_competitor_leaderboard(
    mentions: Iterable[tuple[str, int | None]],
) -> list[dict[str, Any]]:
    """
    Total mentions and mean rank per competitor name.

    Names are grouped case-insensitively and displayed with their first-seen
    spelling. Ordered by mentions (desc), then mean rank (asc, unranked
    last), then name.

    Args:
        mentions: (competitor_name, rank) pairs, one per stored mention

    Returns:
        [{"name", "total_mentions", "average_rank"}, ...]
    """
    groups: dict[str, dict[str, Any]] = {}
    for name, rank in mentions:
        name = (name or "").strip()
        if not name:
            continue
        key = name.casefold()
        group = groups.setdefault(key, {"name": name, "total_mentions": 0, "ranks": []})
        group["total_mentions"] += 1
        if rank is not None:
            group["ranks"].append(rank)

    leaderboard = [
        {
            "name": group["name"],
            "total_mentions": group["total_mentions"],
            "average_rank": _mean(group["ranks"]),
        }
        for group in groups.values()
    ]
    leaderboard.sort(
        key=lambda row: (
            -row["total_mentions"],
            row["average_rank"] if row["average_rank"] is not None else float("inf"),
            row["name"].casefold(),
        )
    )
    return leaderboard


def count_source_domains(
    domains: Iterable[str], limit: int | None = None
) -> list[dict[str, Any]]:
    """
    Count citations per domain, most cited first, capped at limit.

    Ties are broken by domain name so the output is stable.

    >>> count_source_domains(["a.com", "a.com", "a.com", "b.com", "a.com"], limit=1)
    [{'domain': 'a.com', 'count': 4}]
    """
    counts: dict[str, int] = {}
    for domain in domains:
        if domain:
            counts[domain] = counts.get(domain, 0) + 1

    ranked = sorted(counts.items(), key=lambda item: (-item[1], item[0]))
    if limit is not None:
        ranked = ranked[: max(limit, 0)]
    return [{"domain": domain, "count": count} for domain, count in ranked]
