"""
Tests for llm_runner.mock_client module.

MockLLMClient stands in for real services in probe, batch and pipeline
tests, so its scripting behavior is pinned down here.
"""

import pytest
from freezegun import freeze_time

from visibility_probe.llm_runner.mock_client import MockLLMClient
from visibility_probe.llm_runner.models import LLMResponse


class TestMockLLMClient:
    """Test suite for MockLLMClient."""

    @pytest.mark.asyncio
    async def test_configured_response(self):
        client = MockLLMClient(responses={"Best roaster?": "Bean There Coffee"})

        response = await client.generate_answer("Best roaster?")

        assert isinstance(response, LLMResponse)
        assert response.answer_text == "Bean There Coffee"
        assert response.provider == "mock"
        assert response.model_name == "mock-model"

    @pytest.mark.asyncio
    async def test_default_response(self):
        client = MockLLMClient()

        response = await client.generate_answer("anything")

        assert response.answer_text == "Mock LLM response."

    @pytest.mark.asyncio
    async def test_sources_attached_to_every_response(self):
        client = MockLLMClient(sources=["https://a.com/1"])

        first = await client.generate_answer("q1")
        second = await client.generate_answer("q2")

        assert first.sources == ["https://a.com/1"]
        assert second.sources == ["https://a.com/1"]
        # Each response gets its own list
        first.sources.append("https://b.com")
        assert client.sources == ["https://a.com/1"]

    @pytest.mark.asyncio
    async def test_sequence_then_fallback(self):
        client = MockLLMClient(sequence=["first", "second"], default_response="fallback")

        answers = [(await client.generate_answer("q")).answer_text for _ in range(3)]

        assert answers == ["first", "second", "fallback"]

    @pytest.mark.asyncio
    async def test_sequence_raises_exceptions(self):
        client = MockLLMClient(sequence=[RuntimeError("boom"), "recovered"])

        with pytest.raises(RuntimeError, match="boom"):
            await client.generate_answer("q")

        assert (await client.generate_answer("q")).answer_text == "recovered"

    @pytest.mark.asyncio
    async def test_records_calls(self):
        client = MockLLMClient()

        await client.generate_answer("one")
        await client.generate_answer("two")

        assert client.calls == ["one", "two"]

    @pytest.mark.asyncio
    async def test_token_counts(self):
        client = MockLLMClient(tokens_per_response=300)

        response = await client.generate_answer("q")

        assert response.tokens_used == 300
        assert response.prompt_tokens == 150
        assert response.completion_tokens == 150

    @pytest.mark.asyncio
    @freeze_time("2026-03-02T08:30:45Z")
    async def test_timestamp(self):
        response = await MockLLMClient().generate_answer("q")

        assert response.timestamp_utc == "2026-03-02T08:30:45Z"
