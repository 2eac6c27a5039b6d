"""
Probe: one answer-generation call plus one analysis call for one prompt.

A probe NEVER raises. Network errors, timeouts, empty answers and analysis
output that fails the schema are all caught here and turned into a neutral
failed RunResult, so a batch of n probes always yields exactly n results
and the mention-probability denominator stays n.

Example:
    >>> result = await probe(
    ...     prompt="Best coffee roasters in Portland?",
    ...     business_name="Bean There Coffee",
    ...     service=ServiceProbeContext("gpt", answer_client, analyzer, 90.0),
    ...     run_number=1,
    ... )
    >>> result.failed, result.business_mentioned, result.rank
    (False, True, 2)
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Protocol

from visibility_probe.exceptions import LLMResponseError, LLMTimeoutError
from visibility_probe.extractor.analysis_schema import (
    ANALYSIS_SCHEMA_VERSION,
    CompetitorMention,
)
from visibility_probe.llm_runner.models import LLMClient
from visibility_probe.utils.logging import log_with_context
from visibility_probe.utils.time import elapsed_ms

logger = logging.getLogger(__name__)


class AnswerAnalyzerProtocol(Protocol):
    """Anything with the AnswerAnalyzer.analyze signature (scripted in tests)."""

    async def analyze(
        self,
        prompt: str,
        answer_text: str,
        business_name: str,
        sources: list[str],
    ): ...


@dataclass
class ServiceProbeContext:
    """
    Everything a probe needs to reach one service.

    Attributes:
        service_id: Service identifier stored on each run ("gpt", "perplexity")
        answer_client: Client for the answer-generating service
        analyzer: Answer analyzer (returns AnalysisOutcome)
        timeout_seconds: Time budget for each of the two external calls
    """

    service_id: str
    answer_client: LLMClient
    analyzer: AnswerAnalyzerProtocol
    timeout_seconds: float


@dataclass
class RunResult:
    """
    Outcome of one probe.

    A failed probe has business_mentioned=False, rank=None and empty
    sources and competitors, with the reason in error.
    """

    run_number: int
    service: str
    business_mentioned: bool = False
    rank: int | None = None
    mention_context: str | None = None
    sources: list[str] = field(default_factory=list)
    competitors: list[CompetitorMention] = field(default_factory=list)
    response_text: str = ""
    execution_time_ms: int = 0
    tokens_used: int | None = None
    failed: bool = False
    error: str | None = None
    analysis_schema_version: int = ANALYSIS_SCHEMA_VERSION

    @classmethod
    def neutral(
        cls,
        run_number: int,
        service: str,
        error: str,
        response_text: str = "",
        execution_time_ms: int = 0,
        tokens_used: int | None = None,
    ) -> "RunResult":
        """Failed result that counts as a run without a mention."""
        return cls(
            run_number=run_number,
            service=service,
            response_text=response_text,
            execution_time_ms=execution_time_ms,
            tokens_used=tokens_used,
            failed=True,
            error=error or "Probe failed",
        )


async def _bounded(awaitable, timeout_seconds: float, what: str):
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as e:
        raise LLMTimeoutError(f"{what} timed out after {timeout_seconds:g}s") from e


async def probe(
    prompt: str,
    business_name: str,
    service: ServiceProbeContext,
    run_number: int = 1,
    report_id: int | None = None,
) -> RunResult:
    """
    Generate one answer for the prompt and analyze it.

    Args:
        prompt: Customer prompt sent to the service
        business_name: Business the analysis looks for
        service: Service clients and time budget
        run_number: 1-based identity of this run within its batch
        report_id: Report being generated, for log context only

    Returns:
        RunResult; failed=True with neutral values on any error
    """
    started = time.perf_counter()
    response_text = ""
    tokens_used: int | None = None

    try:
        response = await _bounded(
            service.answer_client.generate_answer(prompt),
            service.timeout_seconds,
            "Answer generation",
        )
        response_text = response.answer_text or ""
        tokens_used = response.tokens_used

        if not response_text.strip():
            raise LLMResponseError(f"Service '{service.service_id}' returned an empty answer")

        outcome = await _bounded(
            service.analyzer.analyze(prompt, response_text, business_name, response.sources),
            service.timeout_seconds,
            "Answer analysis",
        )
        analysis = outcome.analysis
        tokens_used = (tokens_used or 0) + (outcome.tokens_used or 0)

    except Exception as e:
        log_with_context(
            logger,
            logging.WARNING,
            f"Probe failed: {type(e).__name__}: {e}",
            context={
                "service": service.service_id,
                "run_number": run_number,
                "prompt": prompt[:80],
            },
            report_id=report_id,
        )
        return RunResult.neutral(
            run_number=run_number,
            service=service.service_id,
            error=f"{type(e).__name__}: {e}",
            response_text=response_text,
            execution_time_ms=elapsed_ms(started),
            tokens_used=tokens_used,
        )

    mention_context = analysis.mention_context
    if analysis.business_mentioned and not mention_context and analysis.rank is not None:
        mention_context = f"Rank: {analysis.rank}"

    return RunResult(
        run_number=run_number,
        service=service.service_id,
        business_mentioned=analysis.business_mentioned,
        rank=analysis.rank,
        mention_context=mention_context,
        sources=list(response.sources),
        competitors=list(analysis.competitors),
        response_text=response_text,
        execution_time_ms=elapsed_ms(started),
        tokens_used=tokens_used,
        analysis_schema_version=analysis.schema_version,
    )
