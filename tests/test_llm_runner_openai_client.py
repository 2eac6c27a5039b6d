"""
Tests for llm_runner.openai_client module.

Tests cover:
- OpenAIClient initialization and validation
- Responses API request payload (developer/user input, tools, temperature)
- Answer text, token usage and cited source extraction
- Function calls surfaced as JSON
- Retry logic on transient failures (429, 5xx)
- Immediate failure on non-retryable errors (401, 400, 404, 403, 422)
- Never logging API keys
"""

import json
import logging

import httpx
import pytest
from freezegun import freeze_time
from tenacity import wait_none

from visibility_probe.llm_runner.models import LLMResponse
from visibility_probe.llm_runner.openai_client import OPENAI_API_URL, OpenAIClient

SYSTEM_PROMPT = "You are a helpful assistant."


@pytest.fixture(autouse=True)
def no_retry_wait(monkeypatch):
    """Skip exponential backoff between retries."""
    monkeypatch.setattr(OpenAIClient.generate_answer.retry, "wait", wait_none())


def message_output(text, annotations=None):
    return {
        "type": "message",
        "role": "assistant",
        "content": [
            {"type": "output_text", "text": text, "annotations": annotations or []}
        ],
    }


def responses_body(output, usage=None):
    body = {"id": "resp_123", "model": "gpt-4o", "output": output}
    if usage is not False:
        body["usage"] = usage or {"input_tokens": 100, "output_tokens": 50, "total_tokens": 150}
    return body


class TestOpenAIClientInit:
    """Test suite for OpenAIClient initialization."""

    def test_init_success(self):
        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        assert client.model_name == "gpt-4o"
        assert client.api_key == "sk-test123"
        assert client.tools is None
        assert client.temperature is None

    @pytest.mark.parametrize(
        "args,message",
        [
            (("", "sk-test", SYSTEM_PROMPT), "model_name cannot be empty"),
            (("gpt-4o", "   ", SYSTEM_PROMPT), "api_key cannot be empty"),
            (("gpt-4o", "sk-test", ""), "system_prompt cannot be empty"),
        ],
    )
    def test_init_validation(self, args, message):
        with pytest.raises(ValueError, match=message):
            OpenAIClient(*args)

    def test_init_logs_model_not_api_key(self, caplog):
        """Test that initialization logs model name but NEVER logs API key."""
        caplog.set_level(logging.DEBUG)

        OpenAIClient("gpt-4o-mini", "sk-secret123", SYSTEM_PROMPT)

        assert "gpt-4o-mini" in caplog.text
        assert "sk-secret123" not in caplog.text


class TestGenerateAnswerSuccess:
    """Test suite for successful Responses API calls."""

    @pytest.mark.asyncio
    @freeze_time("2026-03-02T08:30:45Z")
    async def test_generate_answer_success(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            json=responses_body([message_output("Try Bean There Coffee.")]),
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("Best roaster in Portland?")

        assert isinstance(response, LLMResponse)
        assert response.answer_text == "Try Bean There Coffee."
        assert response.tokens_used == 150
        assert response.prompt_tokens == 100
        assert response.completion_tokens == 50
        assert response.provider == "openai"
        assert response.model_name == "gpt-4o"
        assert response.timestamp_utc == "2026-03-02T08:30:45Z"
        assert response.sources == []

    @pytest.mark.asyncio
    async def test_request_payload(self, httpx_mock):
        """Test the developer/user input structure and auth header."""
        httpx_mock.add_response(
            method="POST", url=OPENAI_API_URL, json=responses_body([message_output("ok")])
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT, temperature=0.3)
        await client.generate_answer("Best roaster?")

        request = httpx_mock.get_request()
        payload = json.loads(request.content)
        assert request.headers["Authorization"] == "Bearer sk-test123"
        assert payload["model"] == "gpt-4o"
        assert payload["input"][0]["role"] == "developer"
        assert payload["input"][0]["content"][0]["text"] == SYSTEM_PROMPT
        assert payload["input"][1]["content"][0]["text"] == "Best roaster?"
        assert payload["temperature"] == 0.3
        assert "tools" not in payload

    @pytest.mark.asyncio
    async def test_web_search_tools_in_payload(self, httpx_mock):
        httpx_mock.add_response(
            method="POST", url=OPENAI_API_URL, json=responses_body([message_output("ok")])
        )

        client = OpenAIClient(
            "gpt-4o", "sk-test123", SYSTEM_PROMPT, tools=[{"type": "web_search"}]
        )
        await client.generate_answer("Best roaster?")

        payload = json.loads(httpx_mock.get_request().content)
        assert payload["tools"] == [{"type": "web_search"}]
        assert payload["tool_choice"] == "auto"
        assert "temperature" not in payload

    @pytest.mark.asyncio
    async def test_sources_from_citations_and_search_calls(self, httpx_mock):
        """Test that cited URLs are collected in first-seen order without duplicates."""
        output = [
            {
                "type": "web_search_call",
                "status": "completed",
                "action": {
                    "type": "search",
                    "sources": [
                        {"type": "url", "url": "https://a.com/1"},
                        {"type": "url", "url": "https://c.com/3"},
                    ],
                },
            },
            message_output(
                "Stumptown and Bean There are popular.",
                annotations=[
                    {"type": "url_citation", "url": "https://b.com/2", "title": "B"},
                    {"type": "url_citation", "url": "https://a.com/1", "title": "A"},
                ],
            ),
        ]
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=responses_body(output))

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("Best roaster?")

        assert response.answer_text == "Stumptown and Bean There are popular."
        assert response.sources == ["https://a.com/1", "https://c.com/3", "https://b.com/2"]

    @pytest.mark.asyncio
    async def test_function_call_serialized(self, httpx_mock):
        output = [
            {
                "type": "function_call",
                "name": "analyze_answer",
                "call_id": "call_1",
                "arguments": json.dumps({"business_mentioned": True, "rank": 1}),
            }
        ]
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json=responses_body(output))

        client = OpenAIClient("gpt-4o-mini", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("Analyze")

        decoded = json.loads(response.answer_text)
        assert decoded["_function_call"]["name"] == "analyze_answer"
        assert decoded["_function_call"]["arguments"] == {"business_mentioned": True, "rank": 1}

    @pytest.mark.asyncio
    async def test_missing_usage_defaults_to_zero(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            json=responses_body([message_output("ok")], usage=False),
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("q")

        assert response.tokens_used == 0


class TestGenerateAnswerValidation:
    """Test suite for prompt validation and malformed responses."""

    @pytest.mark.asyncio
    async def test_empty_prompt(self):
        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(ValueError, match="Prompt cannot be empty"):
            await client.generate_answer("   ")

    @pytest.mark.asyncio
    async def test_prompt_too_long(self):
        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(ValueError, match="maximum length"):
            await client.generate_answer("x" * 100_001)

    @pytest.mark.asyncio
    async def test_missing_output(self, httpx_mock):
        httpx_mock.add_response(method="POST", url=OPENAI_API_URL, json={"id": "resp_1"})

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(RuntimeError, match="missing 'output' array"):
            await client.generate_answer("q")

    @pytest.mark.asyncio
    async def test_output_without_text(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            json=responses_body([{"type": "web_search_call", "status": "completed"}]),
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(RuntimeError, match="no text content"):
            await client.generate_answer("q")


class TestGenerateAnswerNonRetryableErrors:
    """Test suite for non-retryable errors (401, 400, 404)."""

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [400, 401, 404])
    async def test_fails_immediately(self, httpx_mock, status_code):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=status_code,
            json={"error": {"message": "Invalid API key"}},
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(RuntimeError, match="non-retryable"):
            await client.generate_answer("q")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    @pytest.mark.parametrize("status_code", [403, 422])
    async def test_other_client_errors_not_retried(self, httpx_mock, status_code):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=status_code,
            json={"error": {"message": "Forbidden"}},
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(httpx.HTTPStatusError):
            await client.generate_answer("q")

        assert len(httpx_mock.get_requests()) == 1

    @pytest.mark.asyncio
    async def test_error_never_contains_api_key(self, httpx_mock, caplog):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=401,
            json={"error": {"message": "Incorrect API key provided"}},
        )

        client = OpenAIClient("gpt-4o", "sk-secret999", SYSTEM_PROMPT)

        with pytest.raises(RuntimeError) as exc_info:
            await client.generate_answer("q")

        assert "sk-secret999" not in str(exc_info.value)
        assert "sk-secret999" not in caplog.text


class TestGenerateAnswerRetryableErrors:
    """Test suite for retryable errors (429, 5xx) with retry logic."""

    @pytest.mark.asyncio
    async def test_429_then_success(self, httpx_mock):
        httpx_mock.add_response(
            method="POST",
            url=OPENAI_API_URL,
            status_code=429,
            json={"error": {"message": "Rate limit exceeded"}},
        )
        httpx_mock.add_response(
            method="POST", url=OPENAI_API_URL, json=responses_body([message_output("Recovered")])
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("q")

        assert response.answer_text == "Recovered"
        assert len(httpx_mock.get_requests()) == 2

    @pytest.mark.asyncio
    async def test_502_exhausts_retries(self, httpx_mock):
        for _ in range(3):
            httpx_mock.add_response(
                method="POST",
                url=OPENAI_API_URL,
                status_code=502,
                json={"error": {"message": "Bad gateway"}},
            )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)

        with pytest.raises(httpx.HTTPStatusError):
            await client.generate_answer("q")

        assert len(httpx_mock.get_requests()) == 3

    @pytest.mark.asyncio
    async def test_connect_error_retried(self, httpx_mock):
        httpx_mock.add_exception(httpx.ConnectError("Connection refused"))
        httpx_mock.add_response(
            method="POST", url=OPENAI_API_URL, json=responses_body([message_output("ok")])
        )

        client = OpenAIClient("gpt-4o", "sk-test123", SYSTEM_PROMPT)
        response = await client.generate_answer("q")

        assert response.answer_text == "ok"
