"""
Report pipeline for Visibility Probe.

generate_report() is the in-process API the CLI calls:

    1. coalesce onto an existing report when the correlation id was seen
    2. obtain prompts (configured verbatim, or generated)
    3. run the qualitative visibility analysis and generate recommendations
    4. run_report(): persist the company and a 'generating' report, then
       probe every prompt against every service and finalize

run_report() processes prompts concurrently, bounded by
max_concurrent_prompts. For each prompt it runs one batch per service and
persists each (prompt, service) batch in its own transaction:

    runs -> competitor mentions -> citations -> aggregate overwrite

A run insert failure rolls back that batch and leaves its aggregate
neutral; other prompts and services carry on. A competitor or citation
insert failure only skips that row.

Any other error moves the report to 'failed' (partial data is kept) and is
re-raised as PipelineError. Cancellation (Ctrl-C under asyncio.run) also
moves it to 'failed' before the CancelledError propagates unchanged, so a
report never stays 'generating' once run_report has returned or raised.

Example:
    >>> config = load_config("examples/probe.config.yaml")
    >>> conn = connect(config.report_settings.sqlite_db_path)
    >>> outcome = await generate_report(config, conn)
    >>> outcome.summary.overall.visibility_score
    25
"""

import asyncio
import logging
import sqlite3
import time
from collections.abc import Callable
from dataclasses import dataclass, field

from visibility_probe.config.constants import STATUS_COMPLETED
from visibility_probe.config.schema import (
    CompanyConfig,
    PromptConfig,
    ReportSettings,
    RuntimeConfig,
    RuntimeService,
)
from visibility_probe.exceptions import (
    DatabaseError,
    DatabaseQueryError,
    PipelineError,
)
from visibility_probe.extractor.answer_analyzer import AnswerAnalyzer
from visibility_probe.extractor.prompt_generator import PromptGenerator
from visibility_probe.extractor.recommendation_generator import (
    Recommendation,
    RecommendationGenerator,
)
from visibility_probe.extractor.visibility_analyzer import (
    VisibilityAnalyzer,
    VisibilityAssessment,
)
from visibility_probe.report.aggregator import PromptAggregate, ReportSummary, finalize
from visibility_probe.storage.db import (
    claim_correlation_id,
    complete_report,
    create_prompt,
    create_report,
    fail_report,
    insert_competitor_mention,
    insert_recommendations,
    insert_prompt_run,
    insert_source_citation,
    transaction,
    update_prompt_aggregate,
    upsert_company,
)
from visibility_probe.storage.queries import get_report_by_correlation_id
from visibility_probe.utils.logging import log_with_context
from visibility_probe.utils.time import elapsed_ms

from .models import build_client
from .probe import RunResult, ServiceProbeContext
from .run_batch import BatchResult, run_services

logger = logging.getLogger(__name__)

OUTCOME_DUPLICATE = "duplicate"

# Stored on a report whose generation was cancelled or interrupted
CANCELLED_MESSAGE = "Cancelled"

# Tool list for OpenAI services with web search enabled
WEB_SEARCH_TOOLS = [{"type": "web_search"}]


@dataclass
class ReportOutcome:
    """
    Result of one report generation attempt.

    Attributes:
        report_id: Report that was generated (or the existing one, for a
            duplicate correlation id)
        status: "completed", or "duplicate" when nothing new was generated
        summary: Finalized metrics, None for a duplicate
        execution_time_ms: Wall time of the attempt
        persistence_errors: Batches whose runs could not be stored
    """

    report_id: int
    status: str
    summary: ReportSummary | None = None
    execution_time_ms: int = 0
    persistence_errors: list[dict] = field(default_factory=list)

    @property
    def created(self) -> bool:
        return self.status != OUTCOME_DUPLICATE


def _mentioned_competitors(result: RunResult, url: str) -> list[str]:
    return [c.name for c in result.competitors if c.source_url == url]


def _existing_report_id(
    conn: sqlite3.Connection, correlation_id: str | None
) -> int | None:
    if not correlation_id:
        return None
    report = get_report_by_correlation_id(conn, correlation_id)
    return report["id"] if report else None


def _mark_failed(
    conn: sqlite3.Connection, report_id: int, message: str, started: float
) -> None:
    try:
        fail_report(conn, report_id, message, elapsed_ms(started))
    except (sqlite3.Error, DatabaseError) as fail_error:
        logger.error(f"Could not mark report {report_id} as failed: {fail_error}")


def _persist_batch(
    conn: sqlite3.Connection,
    report_id: int,
    company_id: int,
    prompt_id: int,
    batch: BatchResult,
) -> None:
    """Store one (prompt, service) batch atomically and overwrite its aggregate."""
    with transaction(conn):
        for result in batch.results:
            run_id = insert_prompt_run(
                conn,
                prompt_id=prompt_id,
                report_id=report_id,
                company_id=company_id,
                service=batch.service,
                run_number=result.run_number,
                response_text=result.response_text,
                business_mentioned=result.business_mentioned,
                rank=result.rank,
                analysis_schema_version=result.analysis_schema_version,
                mention_context=result.mention_context,
                execution_time_ms=result.execution_time_ms,
                tokens_used=result.tokens_used,
                failed=result.failed,
                error=result.error,
            )

            for competitor in result.competitors:
                try:
                    with transaction(conn):
                        insert_competitor_mention(
                            conn,
                            prompt_run_id=run_id,
                            prompt_id=prompt_id,
                            report_id=report_id,
                            company_id=company_id,
                            service=batch.service,
                            competitor_name=competitor.name,
                            rank=competitor.rank,
                            source_url=competitor.source_url,
                            mention_context=competitor.mention_context,
                        )
                except (sqlite3.Error, DatabaseError) as e:
                    logger.warning(
                        f"Skipping competitor '{competitor.name}' for run {run_id}: {e}"
                    )

            for url in result.sources:
                try:
                    with transaction(conn):
                        insert_source_citation(
                            conn,
                            prompt_run_id=run_id,
                            report_id=report_id,
                            company_id=company_id,
                            service=batch.service,
                            source_url=url,
                            mentioned_our_company=result.business_mentioned,
                            mentioned_competitors=_mentioned_competitors(result, url),
                        )
                except (sqlite3.Error, DatabaseError) as e:
                    logger.warning(f"Skipping citation {url!r} for run {run_id}: {e}")

        update_prompt_aggregate(conn, prompt_id, batch.aggregate)


async def run_report(
    conn: sqlite3.Connection,
    company: CompanyConfig,
    prompts: list[PromptConfig],
    settings: ReportSettings,
    services: list[ServiceProbeContext],
    visibility: VisibilityAssessment | None = None,
    recommendations: list[Recommendation] | None = None,
    correlation_id: str | None = None,
    email_from: str | None = None,
    progress_callback: Callable[[], None] | None = None,
) -> ReportOutcome:
    """
    Generate one report for a company from a fixed list of prompts.

    Args:
        conn: Open connection to an initialized database
        company: Business being measured
        prompts: Customer prompts; list order becomes display order
        settings: Report shape (runs per prompt, concurrency)
        services: One probe context per service, in configured order
        visibility: Qualitative assessment stored verbatim on the report
        recommendations: Stored with the report in list order
        correlation_id: Inbound message id; a repeated id is not re-run
        email_from: Requester address stored on the report
        progress_callback: Called after each prompt finishes

    Returns:
        ReportOutcome

    Raises:
        DatabaseError / sqlite3.Error: If the company or report cannot be
            created (no report exists in that case)
        PipelineError: If generation failed after the report was created;
            the report has been moved to 'failed'
        asyncio.CancelledError / KeyboardInterrupt: Re-raised unchanged after
            the report has been moved to 'failed'
    """
    started = time.perf_counter()
    service_ids = [service.service_id for service in services]

    existing_id = _existing_report_id(conn, correlation_id)
    if existing_id is not None:
        logger.info(f"Correlation id {correlation_id!r} already has report {existing_id}")
        return ReportOutcome(report_id=existing_id, status=OUTCOME_DUPLICATE)

    company_id = upsert_company(conn, company)

    if correlation_id:
        claim = claim_correlation_id(
            conn,
            correlation_id,
            company_id=company_id,
            total_prompts=len(prompts),
            runs_per_prompt=settings.runs_per_prompt,
            services=service_ids,
            email_from=email_from,
        )
        if not claim.created:
            return ReportOutcome(report_id=claim.report_id, status=OUTCOME_DUPLICATE)
        report_id = claim.report_id
    else:
        report_id = create_report(
            conn,
            company_id,
            total_prompts=len(prompts),
            runs_per_prompt=settings.runs_per_prompt,
            services=service_ids,
            email_from=email_from,
        )

    log_with_context(
        logger,
        logging.INFO,
        f"Generating report for {company.name}",
        context={
            "prompts": len(prompts),
            "runs_per_prompt": settings.runs_per_prompt,
            "services": service_ids,
        },
        report_id=report_id,
    )

    persistence_errors: list[dict] = []

    try:
        prompt_ids = [
            create_prompt(
                conn,
                report_id=report_id,
                company_id=company_id,
                prompt_text=prompt.prompt,
                category=prompt.category,
                order_index=order_index,
                services=service_ids,
            )
            for order_index, prompt in enumerate(prompts)
        ]

        if recommendations:
            insert_recommendations(conn, report_id, company_id, recommendations)

        semaphore = asyncio.Semaphore(settings.max_concurrent_prompts)

        async def _process_prompt(
            prompt_id: int, prompt: PromptConfig
        ) -> dict[str, PromptAggregate]:
            async with semaphore:
                batches = await run_services(
                    prompt.prompt,
                    company.name,
                    services,
                    settings.runs_per_prompt,
                    report_id=report_id,
                )

            aggregates: dict[str, PromptAggregate] = {}
            for service_id, batch in batches.items():
                batch.aggregate.prompt_id = prompt_id
                try:
                    _persist_batch(conn, report_id, company_id, prompt_id, batch)
                    aggregates[service_id] = batch.aggregate
                except (sqlite3.Error, DatabaseError) as e:
                    log_with_context(
                        logger,
                        logging.ERROR,
                        f"Failed to store batch: {e}",
                        context={"prompt_id": prompt_id, "service": service_id},
                        report_id=report_id,
                    )
                    persistence_errors.append(
                        {"prompt_id": prompt_id, "service": service_id, "error": str(e)}
                    )
                    # Stored aggregate stays neutral, so the summary does too
                    aggregates[service_id] = PromptAggregate(
                        service=service_id, total_runs=0, prompt_id=prompt_id
                    )

            if progress_callback:
                progress_callback()
            return aggregates

        tasks = [
            asyncio.create_task(_process_prompt(prompt_id, prompt))
            for prompt_id, prompt in zip(prompt_ids, prompts, strict=True)
        ]
        try:
            per_prompt = await asyncio.gather(*tasks)
        except BaseException:
            # Stop the remaining prompts before the report is marked failed
            for task in tasks:
                task.cancel()
            await asyncio.gather(*tasks, return_exceptions=True)
            raise

        aggregates_by_service = {
            service_id: [aggregates[service_id] for aggregates in per_prompt]
            for service_id in service_ids
        }
        summary = finalize(
            aggregates_by_service,
            total_prompts=len(prompts),
            visibility_level=visibility.overall_assessment if visibility else None,
            visibility_factors=visibility.key_factors if visibility else None,
        )
        execution_time_ms = elapsed_ms(started)
        complete_report(conn, report_id, summary, execution_time_ms)

    except Exception as e:
        message = str(e) or type(e).__name__
        _mark_failed(conn, report_id, message, started)
        raise PipelineError(
            f"Report {report_id} failed: {message}", report_id=report_id
        ) from e
    except BaseException:
        logger.warning(f"Report {report_id} cancelled, marking it failed")
        _mark_failed(conn, report_id, CANCELLED_MESSAGE, started)
        raise

    return ReportOutcome(
        report_id=report_id,
        status=STATUS_COMPLETED,
        summary=summary,
        execution_time_ms=execution_time_ms,
        persistence_errors=persistence_errors,
    )


def build_service_contexts(config: RuntimeConfig) -> list[ServiceProbeContext]:
    """
    Build one probe context per selected service.

    All services share a single answer analyzer built from analysis_model.
    """
    analyzer = AnswerAnalyzer.from_runtime(config.analysis_model, config.company)
    timeout = config.report_settings.probe_timeout_seconds
    return [
        ServiceProbeContext(
            service_id=service.service_id,
            answer_client=_build_answer_client(service),
            analyzer=analyzer,
            timeout_seconds=timeout,
        )
        for service in config.services
    ]


def _build_answer_client(service: RuntimeService):
    tools = None
    if service.provider == "openai" and service.web_search:
        tools = WEB_SEARCH_TOOLS
    return build_client(
        provider=service.provider,
        model_name=service.model_name,
        api_key=service.api_key,
        system_prompt=service.system_prompt,
        tools=tools,
    )


async def generate_report(
    config: RuntimeConfig,
    conn: sqlite3.Connection,
    correlation_id: str | None = None,
    email_from: str | None = None,
    progress_callback: Callable[[], None] | None = None,
    prompt_generator: PromptGenerator | None = None,
    visibility_analyzer: VisibilityAnalyzer | None = None,
    recommendation_generator: RecommendationGenerator | None = None,
    services: list[ServiceProbeContext] | None = None,
) -> ReportOutcome:
    """
    Generate a complete report from a resolved configuration.

    A correlation id that already has a report is coalesced onto it before
    any model is called: nothing is generated and the company row is left
    untouched.

    Prompts come from config.prompts when present; otherwise the prompt
    generator produces report_settings.prompt_count of them. Prompt
    generation, the visibility analysis and the recommendations all run
    before any report row exists, so a generation failure leaves nothing
    behind.

    The optional prompt_generator, visibility_analyzer,
    recommendation_generator and services replace the ones built from
    config (tests pass scripted clients here).

    Raises:
        PromptGenerationError: If prompts are generated and none are usable
        DatabaseError / sqlite3.Error: If the report cannot be created
        PipelineError: If generation failed after the report was created
    """
    settings = config.report_settings

    try:
        existing_id = _existing_report_id(conn, correlation_id)
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Could not look up correlation id: {e}") from e
    if existing_id is not None:
        logger.info(
            f"Correlation id {correlation_id!r} already has report {existing_id}, "
            f"skipping generation"
        )
        return ReportOutcome(report_id=existing_id, status=OUTCOME_DUPLICATE)

    if config.prompts:
        prompts = list(config.prompts)
        logger.info(f"Using {len(prompts)} configured prompts")
    else:
        generator = prompt_generator or PromptGenerator.from_runtime(config.analysis_model)
        prompts = await generator.generate(config.company, settings.prompt_count)
        logger.info(f"Generated {len(prompts)} prompts for {config.company.name}")

    analyzer = visibility_analyzer or VisibilityAnalyzer.from_runtime(config.analysis_model)
    visibility = await analyzer.analyze(config.company)

    recommender = recommendation_generator or RecommendationGenerator.from_runtime(
        config.analysis_model
    )
    recommendations = await recommender.generate(config.company, visibility)

    if services is None:
        services = build_service_contexts(config)

    try:
        return await run_report(
            conn,
            config.company,
            prompts,
            settings,
            services,
            visibility=visibility,
            recommendations=recommendations,
            correlation_id=correlation_id,
            email_from=email_from,
            progress_callback=progress_callback,
        )
    except sqlite3.Error as e:
        raise DatabaseQueryError(f"Could not create report: {e}") from e
