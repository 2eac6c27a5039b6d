"""
Tests for llm_runner.models module.

Tests cover:
- LLMResponse defaults
- build_client() provider dispatch and argument pass-through
"""

import pytest

from visibility_probe.llm_runner.models import LLMResponse, build_client
from visibility_probe.llm_runner.openai_client import OpenAIClient
from visibility_probe.llm_runner.perplexity_client import PerplexityClient


class TestLLMResponse:
    """Test suite for LLMResponse dataclass."""

    def test_defaults(self):
        response = LLMResponse(
            answer_text="Try Bean There Coffee.",
            tokens_used=450,
            provider="openai",
            model_name="gpt-4o",
            timestamp_utc="2026-03-02T08:30:45Z",
        )

        assert response.sources == []
        assert response.prompt_tokens == 0
        assert response.completion_tokens == 0

    def test_sources_not_shared(self):
        a = LLMResponse("a", 1, "mock", "m", "2026-03-02T08:30:45Z")
        b = LLMResponse("b", 1, "mock", "m", "2026-03-02T08:30:45Z")

        a.sources.append("https://a.com")

        assert b.sources == []


class TestBuildClient:
    """Test suite for build_client() factory."""

    def test_openai(self):
        client = build_client(
            "openai",
            "gpt-4o",
            "sk-test",
            "You are a helpful assistant.",
            tools=[{"type": "web_search"}],
            tool_choice="required",
            temperature=0.2,
        )

        assert isinstance(client, OpenAIClient)
        assert client.tools == [{"type": "web_search"}]
        assert client.tool_choice == "required"
        assert client.temperature == 0.2

    def test_perplexity(self):
        client = build_client("perplexity", "sonar", "pplx-test", "You are helpful.")

        assert isinstance(client, PerplexityClient)
        assert client.model_name == "sonar"

    def test_unsupported_provider(self):
        with pytest.raises(ValueError, match="Unsupported provider: 'anthropic'"):
            build_client("anthropic", "claude", "key", "prompt")
