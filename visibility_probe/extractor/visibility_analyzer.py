"""
Qualitative visibility assessment.

Asks the analysis model how visible the business is likely to be in AI
assistant answers. The level and key factors are stored verbatim on the
report. This step never fails a report: unparseable output, an unknown
level or a failed call all fall back to FALLBACK_ASSESSMENT.
"""

import logging
from dataclasses import dataclass, field

from visibility_probe.config.constants import VISIBILITY_LEVELS
from visibility_probe.config.schema import CompanyConfig, RuntimeAnalysisModel
from visibility_probe.llm_runner.models import LLMClient, build_client

from .company_context import format_company_for_prompt
from .json_output import extract_json

logger = logging.getLogger(__name__)

VISIBILITY_TEMPERATURE = 0.5


@dataclass
class VisibilityAssessment:
    """
    Qualitative visibility analysis.

    Attributes:
        overall_assessment: "High", "Medium" or "Low"
        key_factors: Factors affecting visibility, stored on the report
        strengths: Current strengths (informational, not stored)
        opportunities: Gaps to work on (informational, not stored)
    """

    overall_assessment: str
    key_factors: list[str]
    strengths: list[str] = field(default_factory=list)
    opportunities: list[str] = field(default_factory=list)


def fallback_assessment() -> VisibilityAssessment:
    return VisibilityAssessment(
        overall_assessment="Medium",
        key_factors=["Unable to analyze at this time"],
    )


def build_visibility_prompt(company: CompanyConfig) -> str:
    return f"""Analyze the potential visibility of this business in AI assistant (like ChatGPT) conversations when users ask for recommendations.

{format_company_for_prompt(company)}

Provide an analysis with:
1. Overall assessment (High/Medium/Low visibility)
2. Key factors affecting their visibility (size, reputation, online presence, niche specificity, location)
3. Current strengths that help visibility
4. Opportunities and gaps

Return the response as a JSON object with this structure:
{{
  "overallAssessment": "High|Medium|Low",
  "keyFactors": ["factor 1", "factor 2"],
  "strengths": ["strength 1"],
  "opportunities": ["opportunity 1"]
}}

Only return the JSON object, no additional text."""


def _string_list(value) -> list[str]:
    if not isinstance(value, list):
        return []
    return [str(item).strip() for item in value if str(item).strip()]


def parse_visibility_output(text: str) -> VisibilityAssessment:
    """
    Parse the model output into a VisibilityAssessment.

    Raises:
        ValueError: If the output is not a JSON object with a known level
    """
    data = extract_json(text, dict)

    level = data.get("overallAssessment", data.get("overall_assessment"))
    if isinstance(level, str):
        level = level.strip().capitalize()
    if level not in VISIBILITY_LEVELS:
        raise ValueError(f"Unknown visibility level: {level!r}")

    return VisibilityAssessment(
        overall_assessment=level,
        key_factors=_string_list(data.get("keyFactors", data.get("key_factors"))),
        strengths=_string_list(data.get("strengths")),
        opportunities=_string_list(data.get("opportunities")),
    )


class VisibilityAnalyzer:
    """Qualitative visibility-analysis capability backed by an LLM client."""

    def __init__(self, client: LLMClient):
        self.client = client

    @classmethod
    def from_runtime(cls, model: RuntimeAnalysisModel) -> "VisibilityAnalyzer":
        client = build_client(
            provider=model.provider,
            model_name=model.model_name,
            api_key=model.api_key,
            system_prompt=model.visibility_prompt,
            temperature=VISIBILITY_TEMPERATURE,
        )
        return cls(client)

    async def analyze(self, company: CompanyConfig) -> VisibilityAssessment:
        """Assess the company's likely AI-answer visibility. Never raises."""
        try:
            response = await self.client.generate_answer(build_visibility_prompt(company))
            assessment = parse_visibility_output(response.answer_text)
        except Exception as e:
            logger.warning(
                f"Visibility analysis failed for {company.name}, using fallback: {e}"
            )
            return fallback_assessment()

        logger.info(
            f"Visibility assessment for {company.name}: {assessment.overall_assessment}"
        )
        return assessment
