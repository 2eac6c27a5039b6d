"""
Single-answer analysis for Visibility Probe.

Given one generated answer, the analysis model decides whether the business
was mentioned, its rank, and which competitors appeared (with the source
each came from). The model output is validated against the strict schema in
analysis_schema; anything unparseable raises AnalysisSchemaError so the probe
records the run as failed rather than storing malformed data.

Example:
    >>> analyzer = AnswerAnalyzer.from_runtime(config.analysis_model, config.company)
    >>> outcome = await analyzer.analyze(
    ...     prompt="Best coffee roasters in Portland?",
    ...     answer_text="1. Stumptown [1] 2. Bean There Coffee [2]",
    ...     business_name="Bean There Coffee",
    ...     sources=["https://a.com/x", "https://b.com/y"],
    ... )
    >>> outcome.analysis.rank
    2
"""

import logging
from dataclasses import dataclass

from visibility_probe.config.schema import CompanyConfig, RuntimeAnalysisModel
from visibility_probe.exceptions import AnalysisSchemaError
from visibility_probe.llm_runner.models import LLMClient, build_client

from .analysis_schema import AnswerAnalysis, parse_analysis
from .function_schemas import ANALYZE_ANSWER_FUNCTION
from .json_output import decode_function_call, extract_json

logger = logging.getLogger(__name__)

ANALYSIS_TEMPERATURE = 0.3


@dataclass
class AnalysisOutcome:
    """Validated analysis plus the tokens the analysis call consumed."""

    analysis: AnswerAnalysis
    tokens_used: int = 0


def build_analysis_prompt(
    prompt: str,
    answer_text: str,
    business_name: str,
    sources: list[str],
    company: CompanyConfig | None = None,
) -> str:
    """
    Build the user message for the analysis model.

    Sources are numbered from 1 so the model can attribute competitors by
    source_index.
    """
    numbered_sources = (
        "\n".join(f"{i}. {url}" for i, url in enumerate(sources, start=1))
        if sources
        else "(no sources)"
    )

    business_lines = [f"- Name: {business_name}"]
    if company is not None:
        if company.url:
            business_lines.append(f"- Website: {company.url}")
        if company.industry:
            business_lines.append(f"- Industry: {company.industry}")
        if company.products_services:
            business_lines.append(f"- Products/Services: {company.products_services}")

    return f"""Analyze this answer to determine if the business "{business_name}" was mentioned, and extract ALL competitors/alternatives mentioned.

Original Query: {prompt}

Answer:
\"\"\"
{answer_text}
\"\"\"

Sources:
{numbered_sources}

Business Information:
{chr(10).join(business_lines)}

Return a JSON object with:
- business_mentioned (boolean): true only if the business was explicitly mentioned or recommended
- rank (integer or null): the business's position among businesses in the answer (1 = first), null if not mentioned or not ranked
- mention_context (string or null): brief excerpt showing how the business was mentioned
- competitors (array): every other business mentioned, each with name, rank, and source_index (the source number above, or null)

Only return the JSON object, no additional text."""


class AnswerAnalyzer:
    """
    Answer-analysis capability backed by an LLM client.

    Attributes:
        client: LLM client used for analysis calls
        company: Optional company details added to the analysis prompt
    """

    def __init__(self, client: LLMClient, company: CompanyConfig | None = None):
        self.client = client
        self.company = company

    @classmethod
    def from_runtime(
        cls, model: RuntimeAnalysisModel, company: CompanyConfig | None = None
    ) -> "AnswerAnalyzer":
        """Build an analyzer from the resolved analysis model config."""
        tools = None
        tool_choice = "auto"
        if model.provider == "openai":
            tools = [ANALYZE_ANSWER_FUNCTION]
            tool_choice = "required"

        client = build_client(
            provider=model.provider,
            model_name=model.model_name,
            api_key=model.api_key,
            system_prompt=model.analysis_prompt,
            tools=tools,
            tool_choice=tool_choice,
            temperature=ANALYSIS_TEMPERATURE,
        )
        return cls(client, company)

    async def analyze(
        self,
        prompt: str,
        answer_text: str,
        business_name: str,
        sources: list[str],
    ) -> AnalysisOutcome:
        """
        Analyze one answer.

        Raises:
            AnalysisSchemaError: If the model output is not valid analysis JSON
            Exception: Transport errors from the client propagate unchanged
        """
        analysis_prompt = build_analysis_prompt(
            prompt, answer_text, business_name, sources, self.company
        )
        response = await self.client.generate_answer(analysis_prompt)

        try:
            payload = decode_function_call(response.answer_text, "analyze_answer")
            if payload is None:
                payload = extract_json(response.answer_text, dict)
        except ValueError as e:
            raise AnalysisSchemaError(f"Unparseable analysis output: {e}") from e

        analysis = parse_analysis(payload, sources)

        logger.debug(
            f"Analysis for '{business_name}': mentioned={analysis.business_mentioned}, "
            f"rank={analysis.rank}, competitors={len(analysis.competitors)}"
        )

        return AnalysisOutcome(analysis=analysis, tokens_used=response.tokens_used)
