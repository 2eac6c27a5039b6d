"""
Tests for extractor.prompt_generator and extractor.visibility_analyzer.

Tests cover:
- Generation prompt contents
- Prompt lists kept in model order, capped at count
- Invalid entries skipped, empty results rejected
- Visibility output parsing and the Medium fallback
"""

import json

import httpx
import pytest

from visibility_probe.config.schema import CompanyConfig
from visibility_probe.exceptions import PromptGenerationError
from visibility_probe.extractor.company_context import format_company_for_prompt
from visibility_probe.extractor.prompt_generator import (
    PromptGenerator,
    build_generation_prompt,
)
from visibility_probe.extractor.visibility_analyzer import (
    VisibilityAnalyzer,
    fallback_assessment,
    parse_visibility_output,
)
from visibility_probe.llm_runner.mock_client import MockLLMClient


@pytest.fixture
def company():
    return CompanyConfig(
        name="Bean There Coffee",
        url="https://beanthere.example",
        industry="Specialty coffee roasting",
        location="Portland, OR",
    )


def prompt_list(*prompts):
    return json.dumps([{"category": "Finding a business", "prompt": p} for p in prompts])


# ============================================================================
# Company context and prompt building
# ============================================================================


def test_format_company_skips_empty_fields(company):
    text = format_company_for_prompt(company)

    assert text.splitlines() == [
        "Business Name: Bean There Coffee",
        "Industry: Specialty coffee roasting",
        "Location: Portland, OR",
        "Website: https://beanthere.example",
    ]


def test_build_generation_prompt(company):
    text = build_generation_prompt(company, 7)

    assert "generate 7 realistic customer prompts" in text
    assert "Business Name: Bean There Coffee" in text


# ============================================================================
# PromptGenerator
# ============================================================================


@pytest.mark.asyncio
async def test_generate_keeps_order(company):
    client = MockLLMClient(default_response=prompt_list("First?", "Second?", "Third?"))

    prompts = await PromptGenerator(client).generate(company, 3)

    assert [p.prompt for p in prompts] == ["First?", "Second?", "Third?"]
    assert prompts[0].category == "Finding a business"


@pytest.mark.asyncio
async def test_generate_caps_at_count(company):
    client = MockLLMClient(default_response=prompt_list("A?", "B?", "C?", "D?"))

    prompts = await PromptGenerator(client).generate(company, 2)

    assert [p.prompt for p in prompts] == ["A?", "B?"]


@pytest.mark.asyncio
async def test_generate_skips_invalid_entries(company, caplog):
    client = MockLLMClient(
        default_response=json.dumps(
            [
                {"category": "A", "prompt": ""},
                {"category": "B"},
                "not an object",
                {"prompt": "Valid?"},
            ]
        )
    )

    prompts = await PromptGenerator(client).generate(company, 5)

    assert [p.prompt for p in prompts] == ["Valid?"]
    assert prompts[0].category == "General"
    assert "Skipping invalid generated prompt" in caplog.text


@pytest.mark.asyncio
async def test_generate_no_usable_prompts(company):
    client = MockLLMClient(default_response=json.dumps([{"category": "A"}]))

    with pytest.raises(PromptGenerationError, match="no usable prompts"):
        await PromptGenerator(client).generate(company, 5)


@pytest.mark.asyncio
async def test_generate_unparseable_output(company):
    client = MockLLMClient(default_response="Sorry, I cannot help with that.")

    with pytest.raises(PromptGenerationError, match="Unparseable prompt list"):
        await PromptGenerator(client).generate(company, 5)


@pytest.mark.asyncio
async def test_generate_call_failure(company):
    client = MockLLMClient(sequence=[httpx.ConnectError("connection refused")])

    with pytest.raises(PromptGenerationError, match="Prompt generation call failed"):
        await PromptGenerator(client).generate(company, 5)


# ============================================================================
# Visibility assessment
# ============================================================================


def test_parse_visibility_output():
    assessment = parse_visibility_output(
        json.dumps(
            {
                "overallAssessment": "high",
                "keyFactors": ["Strong local reputation", " "],
                "strengths": ["Reviews"],
                "opportunities": ["Blog content"],
            }
        )
    )

    assert assessment.overall_assessment == "High"
    assert assessment.key_factors == ["Strong local reputation"]
    assert assessment.strengths == ["Reviews"]


def test_parse_visibility_snake_case():
    assessment = parse_visibility_output(
        '{"overall_assessment": "Low", "key_factors": "not a list"}'
    )

    assert assessment.overall_assessment == "Low"
    assert assessment.key_factors == []


def test_parse_visibility_unknown_level():
    with pytest.raises(ValueError, match="Unknown visibility level"):
        parse_visibility_output('{"overallAssessment": "Excellent"}')


@pytest.mark.asyncio
async def test_visibility_analyzer_success(company):
    client = MockLLMClient(
        default_response='{"overallAssessment": "Medium", "keyFactors": ["Niche market"]}'
    )

    assessment = await VisibilityAnalyzer(client).analyze(company)

    assert assessment.overall_assessment == "Medium"
    assert assessment.key_factors == ["Niche market"]


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "scripted",
    ["not json at all", '{"overallAssessment": "Unknown"}', RuntimeError("API down")],
)
async def test_visibility_analyzer_falls_back(company, caplog, scripted):
    client = MockLLMClient(sequence=[scripted])

    assessment = await VisibilityAnalyzer(client).analyze(company)

    assert assessment == fallback_assessment()
    assert assessment.key_factors == ["Unable to analyze at this time"]
    assert "using fallback" in caplog.text
