"""
Customer prompt generation.

Produces the ordered list of customer-style questions a report probes. The
list order becomes each prompt's order_index, so it is kept exactly as the
model returned it (after dropping invalid entries and capping at count).
"""

import logging

import httpx
from pydantic import ValidationError

from visibility_probe.config.schema import CompanyConfig, PromptConfig, RuntimeAnalysisModel
from visibility_probe.exceptions import PromptGenerationError
from visibility_probe.llm_runner.models import LLMClient, build_client

from .company_context import format_company_for_prompt
from .json_output import extract_json

logger = logging.getLogger(__name__)

GENERATION_TEMPERATURE = 0.7

# A generated prompt is the same shape as one supplied in the config file
CustomerPrompt = PromptConfig


def build_generation_prompt(company: CompanyConfig, count: int) -> str:
    return f"""Given the following business information, generate {count} realistic customer prompts that someone might use when asking an AI assistant for recommendations or information related to this business.

{format_company_for_prompt(company)}

Generate prompts in different categories such as:
- Finding/discovering this type of business
- Comparing options in this industry
- Specific product/service needs
- Local recommendations
- Quality and reputation inquiries

Do not mention the business by name in the prompts.

Return the response as a JSON array with objects containing "category" and "prompt" fields.
Example format:
[
  {{"category": "Finding a business", "prompt": "What are the best coffee roasters in Portland?"}},
  {{"category": "Comparing options", "prompt": "How do specialty coffee roasters differ from regular ones?"}}
]

Only return the JSON array, no additional text."""


class PromptGenerator:
    """Prompt-generation capability backed by an LLM client."""

    def __init__(self, client: LLMClient):
        self.client = client

    @classmethod
    def from_runtime(cls, model: RuntimeAnalysisModel) -> "PromptGenerator":
        client = build_client(
            provider=model.provider,
            model_name=model.model_name,
            api_key=model.api_key,
            system_prompt=model.generation_prompt,
            temperature=GENERATION_TEMPERATURE,
        )
        return cls(client)

    async def generate(self, company: CompanyConfig, count: int) -> list[CustomerPrompt]:
        """
        Generate up to `count` customer prompts for the company.

        Args:
            company: Business the prompts are about
            count: Number of prompts wanted (extra prompts are dropped)

        Returns:
            Non-empty list of CustomerPrompt in generation order

        Raises:
            PromptGenerationError: If the call fails or its output yields no
                usable prompt
        """
        try:
            response = await self.client.generate_answer(
                build_generation_prompt(company, count)
            )
        except (httpx.HTTPError, RuntimeError, ValueError) as e:
            raise PromptGenerationError(f"Prompt generation call failed: {e}") from e

        try:
            items = extract_json(response.answer_text, list)
        except ValueError as e:
            raise PromptGenerationError(f"Unparseable prompt list: {e}") from e

        prompts: list[CustomerPrompt] = []
        for item in items:
            try:
                prompts.append(CustomerPrompt.model_validate(item))
            except ValidationError as e:
                logger.warning(f"Skipping invalid generated prompt {item!r}: {e}")

        if not prompts:
            raise PromptGenerationError(
                f"Prompt generation returned no usable prompts for {company.name}"
            )

        if len(prompts) > count:
            logger.debug(f"Dropping {len(prompts) - count} extra generated prompts")
            prompts = prompts[:count]

        logger.info(f"Generated {len(prompts)} customer prompts for {company.name}")
        return prompts
