"""
Tests for extractor.answer_analyzer.

Tests cover:
- Analysis prompt contents (numbered sources, business details)
- Function-call and plain JSON analysis output
- Unparseable output raising AnalysisSchemaError
- Token usage passthrough
- from_runtime() client wiring per provider
"""

import json

import pytest

from visibility_probe.config.schema import CompanyConfig, RuntimeAnalysisModel
from visibility_probe.exceptions import AnalysisSchemaError
from visibility_probe.extractor.answer_analyzer import (
    AnswerAnalyzer,
    build_analysis_prompt,
)
from visibility_probe.llm_runner.mock_client import MockLLMClient
from visibility_probe.llm_runner.openai_client import OpenAIClient
from visibility_probe.llm_runner.perplexity_client import PerplexityClient

SOURCES = ["https://a.com/1", "https://b.com/2"]


@pytest.fixture
def company():
    return CompanyConfig(
        name="Bean There Coffee",
        url="https://beanthere.example",
        industry="Specialty coffee roasting",
    )


def runtime_model(provider="openai"):
    return RuntimeAnalysisModel(
        provider=provider,
        model_name="gpt-4o-mini" if provider == "openai" else "sonar",
        api_key="sk-test",
        analysis_prompt="Analyze answers.",
        generation_prompt="Generate prompts.",
        visibility_prompt="Assess visibility.",
        recommendations_prompt="Recommend improvements.",
    )


def test_build_analysis_prompt_numbers_sources(company):
    text = build_analysis_prompt(
        "Best roaster?", "Try Stumptown.", "Bean There Coffee", SOURCES, company
    )

    assert "1. https://a.com/1" in text
    assert "2. https://b.com/2" in text
    assert "Original Query: Best roaster?" in text
    assert "- Website: https://beanthere.example" in text
    assert "- Industry: Specialty coffee roasting" in text


def test_build_analysis_prompt_without_sources():
    text = build_analysis_prompt("q", "answer", "Bean There Coffee", [])

    assert "(no sources)" in text
    assert "- Website" not in text


@pytest.mark.asyncio
async def test_analyze_function_call_output(company):
    """Test that OpenAI function-call output is decoded and validated."""
    arguments = {
        "business_mentioned": True,
        "rank": 2,
        "competitors": [{"name": "Stumptown", "rank": 1, "source_index": 2}],
    }
    client = MockLLMClient(
        default_response=json.dumps(
            {"_function_call": {"name": "analyze_answer", "arguments": arguments}}
        ),
        tokens_per_response=42,
    )

    outcome = await AnswerAnalyzer(client, company).analyze(
        "Best roaster?", "1. Stumptown 2. Bean There", "Bean There Coffee", SOURCES
    )

    assert outcome.tokens_used == 42
    assert outcome.analysis.rank == 2
    assert outcome.analysis.competitors[0].source_url == "https://b.com/2"
    assert "Bean There Coffee" in client.calls[0]


@pytest.mark.asyncio
async def test_analyze_plain_json_output():
    client = MockLLMClient(
        default_response='```json\n{"business_mentioned": false, "competitors": []}\n```'
    )

    outcome = await AnswerAnalyzer(client).analyze("q", "answer", "Bean There", [])

    assert outcome.analysis.business_mentioned is False
    assert outcome.analysis.rank is None


@pytest.mark.asyncio
async def test_analyze_unparseable_output():
    client = MockLLMClient(default_response="I could not find the business.")

    with pytest.raises(AnalysisSchemaError, match="Unparseable analysis output"):
        await AnswerAnalyzer(client).analyze("q", "answer", "Bean There", [])


@pytest.mark.asyncio
async def test_analyze_wrong_function_called():
    client = MockLLMClient(
        default_response=json.dumps({"_function_call": {"name": "other", "arguments": {}}})
    )

    with pytest.raises(AnalysisSchemaError, match="Unexpected function"):
        await AnswerAnalyzer(client).analyze("q", "answer", "Bean There", [])


@pytest.mark.asyncio
async def test_analyze_transport_error_propagates():
    client = MockLLMClient(sequence=[RuntimeError("OpenAI API error 400")])

    with pytest.raises(RuntimeError, match="400"):
        await AnswerAnalyzer(client).analyze("q", "answer", "Bean There", [])


def test_from_runtime_openai_requires_function_call(company):
    analyzer = AnswerAnalyzer.from_runtime(runtime_model("openai"), company)

    assert isinstance(analyzer.client, OpenAIClient)
    assert analyzer.client.tool_choice == "required"
    assert analyzer.client.tools[0]["name"] == "analyze_answer"
    assert analyzer.company is company


def test_from_runtime_perplexity():
    analyzer = AnswerAnalyzer.from_runtime(runtime_model("perplexity"))

    assert isinstance(analyzer.client, PerplexityClient)
    assert analyzer.client.system_prompt == "Analyze answers."
