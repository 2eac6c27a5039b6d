"""
Improvement recommendations for a report.

Asks the analysis model for 3-5 actions that would raise the business's
visibility in AI assistant answers, given the qualitative assessment.
Numeric priorities (1 = highest impact) are mapped onto the stored
High/Medium/Low scale and the list is ordered by priority.

Like the visibility assessment, this step never fails a report: unparseable
output or a failed call yields no recommendations.
"""

import logging
from dataclasses import dataclass

from visibility_probe.config.schema import CompanyConfig, RuntimeAnalysisModel
from visibility_probe.llm_runner.models import LLMClient, build_client

from .company_context import format_company_for_prompt
from .json_output import extract_json
from .visibility_analyzer import VisibilityAssessment

logger = logging.getLogger(__name__)

RECOMMENDATIONS_TEMPERATURE = 0.7

MAX_RECOMMENDATIONS = 5

# Used when the model omits a priority or returns one outside 1-5
DEFAULT_PRIORITY = 3

DEFAULT_CATEGORY = "general"


@dataclass
class Recommendation:
    """
    One prioritized improvement action.

    Attributes:
        title: Short headline
        description: What to do, specific to the business
        priority: "High", "Medium" or "Low"
        category: Free-form grouping, "general" unless the model gives one
    """

    title: str
    description: str
    priority: str
    category: str = DEFAULT_CATEGORY


def priority_label(priority: int) -> str:
    """Map a 1-5 impact priority (1 highest) to High/Medium/Low."""
    if priority <= 2:
        return "High"
    if priority == 3:
        return "Medium"
    return "Low"


def build_recommendations_prompt(
    company: CompanyConfig, visibility: VisibilityAssessment
) -> str:
    return f"""Based on this business information and visibility analysis, generate 3-5 specific, actionable recommendations to improve their visibility in AI assistant conversations.

Business Information:
{format_company_for_prompt(company)}

Visibility Analysis:
- Overall Assessment: {visibility.overall_assessment}
- Key Factors: {", ".join(visibility.key_factors)}
- Strengths: {", ".join(visibility.strengths)}
- Opportunities: {", ".join(visibility.opportunities)}

Generate recommendations prioritized by impact. Each recommendation should be specific to their business type and market.

Return the response as a JSON array with objects containing "title", "description", and "priority" (1-5, where 1 is highest) fields.
Example format:
[
  {{
    "title": "Expand Online Content Strategy",
    "description": "Create detailed blog posts about your specialty coffee sourcing process...",
    "priority": 1
  }}
]

Only return the JSON array, no additional text."""


def _priority(value) -> int:
    if isinstance(value, bool):
        return DEFAULT_PRIORITY
    try:
        priority = int(value)
    except (TypeError, ValueError):
        return DEFAULT_PRIORITY
    return priority if 1 <= priority <= 5 else DEFAULT_PRIORITY


def parse_recommendations_output(text: str) -> list[Recommendation]:
    """
    Parse the model output into at most MAX_RECOMMENDATIONS recommendations,
    highest priority first. Entries without a title or description are
    skipped.

    Raises:
        ValueError: If the output is not a JSON array
    """
    items = extract_json(text, list)

    ranked: list[tuple[int, Recommendation]] = []
    for item in items:
        if not isinstance(item, dict):
            continue
        title = str(item.get("title") or "").strip()
        description = str(item.get("description") or "").strip()
        if not title or not description:
            logger.debug(f"Skipping incomplete recommendation: {item!r}")
            continue

        priority = _priority(item.get("priority"))
        category = str(item.get("category") or "").strip() or DEFAULT_CATEGORY
        ranked.append(
            (
                priority,
                Recommendation(
                    title=title,
                    description=description,
                    priority=priority_label(priority),
                    category=category,
                ),
            )
        )

    # sorted() is stable, so equal priorities keep the model's order
    ranked = sorted(ranked, key=lambda entry: entry[0])
    return [recommendation for _, recommendation in ranked[:MAX_RECOMMENDATIONS]]


class RecommendationGenerator:
    """Recommendation capability backed by an LLM client."""

    def __init__(self, client: LLMClient):
        self.client = client

    @classmethod
    def from_runtime(cls, model: RuntimeAnalysisModel) -> "RecommendationGenerator":
        client = build_client(
            provider=model.provider,
            model_name=model.model_name,
            api_key=model.api_key,
            system_prompt=model.recommendations_prompt,
            temperature=RECOMMENDATIONS_TEMPERATURE,
        )
        return cls(client)

    async def generate(
        self, company: CompanyConfig, visibility: VisibilityAssessment
    ) -> list[Recommendation]:
        """Generate recommendations for the company. Never raises."""
        try:
            response = await self.client.generate_answer(
                build_recommendations_prompt(company, visibility)
            )
            recommendations = parse_recommendations_output(response.answer_text)
        except Exception as e:
            logger.warning(
                f"Recommendation generation failed for {company.name}: {e}"
            )
            return []

        logger.info(
            f"Generated {len(recommendations)} recommendations for {company.name}"
        )
        return recommendations
