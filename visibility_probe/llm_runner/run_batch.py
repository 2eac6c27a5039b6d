"""
Run Batch: n concurrent probes of one prompt against one service.

Probes cannot raise, so the batch is a plain asyncio.gather over all n
probes. Each probe writes only its own slot of the result list; results come
back ordered by run number regardless of completion order.

run_services() issues one batch per configured service concurrently and
keeps the results partitioned by service. Aggregation is always scoped to a
single (prompt, service) pair.
"""

import asyncio
import logging
from dataclasses import dataclass

from visibility_probe.report.aggregator import PromptAggregate, aggregate_prompt

from .probe import RunResult, ServiceProbeContext, probe

logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    """All n RunResults of a batch and their PromptAggregate."""

    service: str
    results: list[RunResult]
    aggregate: PromptAggregate


async def run_batch(
    prompt: str,
    business_name: str,
    service: ServiceProbeContext,
    n: int,
    report_id: int | None = None,
) -> BatchResult:
    """
    Probe one prompt n times against one service.

    Args:
        prompt: Customer prompt
        business_name: Business the analysis looks for
        service: Service clients and time budget
        n: Number of probes (runs_per_prompt)
        report_id: Report being generated, for log context only

    Returns:
        BatchResult with exactly n results (run numbers 1..n)
    """
    results = await asyncio.gather(
        *(
            probe(prompt, business_name, service, run_number=i, report_id=report_id)
            for i in range(1, n + 1)
        )
    )
    aggregate = aggregate_prompt(list(results), n, service=service.service_id)

    failed = sum(1 for r in results if r.failed)
    logger.info(
        f"Batch complete: service={service.service_id}, "
        f"mentions={aggregate.mentioned_count}/{n} "
        f"({aggregate.mention_probability:.1f}%), failed={failed}"
    )

    return BatchResult(service=service.service_id, results=list(results), aggregate=aggregate)


async def run_services(
    prompt: str,
    business_name: str,
    services: list[ServiceProbeContext],
    n: int,
    report_id: int | None = None,
) -> dict[str, BatchResult]:
    """
    Run one batch per service concurrently.

    Returns:
        Mapping of service id to its BatchResult, in configured service order
    """
    batches = await asyncio.gather(
        *(run_batch(prompt, business_name, service, n, report_id) for service in services)
    )
    return {batch.service: batch for batch in batches}
