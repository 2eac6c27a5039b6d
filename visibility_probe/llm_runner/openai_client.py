"""
OpenAI API client implementation for Visibility Probe.

Provides an asynchronous HTTP client for the OpenAI Responses API with
automatic retry logic, exponential backoff and error handling.

Key features:
- Async HTTP client (httpx.AsyncClient) so probes run concurrently
- Retry on transient failures (429, 5xx) with exponential backoff
- Fail fast on permanent errors (401, 400, 404)
- Optional web search tool, with cited URLs collected as answer sources
- Function calls surfaced as JSON for the answer analyzer
- Security: NEVER logs API keys

Example:
    >>> client = OpenAIClient("gpt-4o", api_key="sk-...",
    ...     system_prompt="You are a helpful assistant.",
    ...     tools=[{"type": "web_search"}])
    >>> response = await client.generate_answer("Best coffee roasters in Portland?")
    >>> response.sources
    ['https://www.example.com/portland-coffee']
"""

import json
import logging
from typing import Any

import httpx

from visibility_probe.config.constants import MAX_PROMPT_LENGTH
from visibility_probe.llm_runner.models import LLMResponse
from visibility_probe.llm_runner.retry_config import (
    NO_RETRY_STATUS_CODES,
    REQUEST_TIMEOUT,
    create_retry_decorator,
)
from visibility_probe.utils.time import utc_timestamp

# Suppress HTTPX request logging to prevent test interference
httpx_logger = logging.getLogger("httpx")
httpx_logger.setLevel(logging.WARNING)

OPENAI_API_URL = "https://api.openai.com/v1/responses"

logger = logging.getLogger(__name__)


class OpenAIClient:
    """
    OpenAI Responses API client with async retry logic.

    Attributes:
        model_name: OpenAI model identifier (e.g., "gpt-4o", "gpt-4o-mini")
        api_key: OpenAI API key for authentication (NEVER logged)
        system_prompt: Developer message sent with every request
        tools: Optional tool configurations passed through to the API
        tool_choice: Tool selection mode ("auto", "required", "none")
        temperature: Sampling temperature, omitted from the payload when None

    Retry behavior:
        - Retries on: 429, 500, 502, 503, 504
        - Fails immediately on: 400, 401, 404
        - Max attempts and backoff from retry_config
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        system_prompt: str,
        tools: list[dict] | None = None,
        tool_choice: str = "auto",
        temperature: float | None = None,
    ):
        """
        Initialize the client.

        Raises:
            ValueError: If model_name, api_key, or system_prompt is empty

        Security:
            The api_key parameter is NEVER logged.
        """
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")

        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        if not system_prompt or system_prompt.isspace():
            raise ValueError("system_prompt cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.tools = tools
        self.tool_choice = tool_choice
        self.temperature = temperature

        tools_enabled = "with tools" if tools else "without tools"
        logger.debug(
            f"Initialized OpenAI client for model: {model_name} ({tools_enabled})"
        )

    @create_retry_decorator()
    async def generate_answer(self, prompt: str) -> LLMResponse:
        """
        Send a prompt to the Responses API and return the structured response.

        Args:
            prompt: Customer prompt (or analysis prompt) to send

        Returns:
            LLMResponse with answer text, cited sources and token usage

        Raises:
            ValueError: If prompt is empty or exceeds MAX_PROMPT_LENGTH
            RuntimeError: On permanent failures (auth errors, invalid requests)
                or an unparseable response
            httpx.HTTPStatusError: On HTTP errors after retries exhausted
            httpx.ConnectError: On connection failures after retries exhausted
            httpx.TimeoutException: On timeout after retries exhausted
        """
        if not prompt or prompt.isspace():
            raise ValueError("Prompt cannot be empty")

        if len(prompt) > MAX_PROMPT_LENGTH:
            raise ValueError(
                f"Prompt exceeds maximum length of {MAX_PROMPT_LENGTH:,} characters "
                f"(received {len(prompt):,} characters). "
                f"Please shorten your prompt to stay within the limit."
            )

        # Responses API uses an 'input' array with typed content objects
        payload: dict[str, Any] = {
            "model": self.model_name,
            "input": [
                {
                    "role": "developer",
                    "content": [{"type": "input_text", "text": self.system_prompt}],
                },
                {"role": "user", "content": [{"type": "input_text", "text": prompt}]},
            ],
        }

        if self.temperature is not None:
            payload["temperature"] = self.temperature

        if self.tools:
            payload["tools"] = self.tools
            payload["tool_choice"] = self.tool_choice
            logger.debug(
                f"Enabled tools: {self.tools} with tool_choice={self.tool_choice}"
            )

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(f"Sending request to OpenAI: model={self.model_name}")

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(
                    OPENAI_API_URL,
                    json=payload,
                    headers=headers,
                )

                if response.status_code in NO_RETRY_STATUS_CODES:
                    error_detail = self._extract_error_detail(response)
                    raise RuntimeError(
                        f"OpenAI API error (non-retryable): "
                        f"status={response.status_code}, "
                        f"model={self.model_name}, "
                        f"detail={error_detail}"
                    )

                # Only RETRY_STATUS_CODES are retried by the decorator
                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            error_detail = self._extract_error_detail(e.response)
            logger.error(
                f"OpenAI API HTTP error: "
                f"status={e.response.status_code}, "
                f"model={self.model_name}, "
                f"detail={error_detail}"
            )
            raise

        except httpx.ConnectError as e:
            logger.error(
                f"OpenAI API connection error: model={self.model_name}, error={e}"
            )
            raise

        except httpx.TimeoutException as e:
            logger.error(f"OpenAI API timeout: model={self.model_name}, error={e}")
            raise

        try:
            data = response.json()
        except ValueError as e:
            raise RuntimeError(f"Failed to parse OpenAI response JSON: {e}") from e

        answer_text = self._extract_answer_text(data)
        tokens_used, prompt_tokens, completion_tokens = self._extract_token_usage(data)
        sources = self._extract_sources(data)

        return LLMResponse(
            answer_text=answer_text,
            tokens_used=tokens_used,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            provider="openai",
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
            sources=sources,
        )

    def _extract_answer_text(self, data: dict[str, Any]) -> str:
        """
        Extract answer text from a Responses API response.

        Function calls take precedence over text: they are serialized as
        {"_function_call": {"name", "arguments", "call_id"}} so the analyzer
        can parse them from answer_text.

        Raises:
            RuntimeError: If the response has no output or no text content
        """
        output = data.get("output")
        if not output or not isinstance(output, list):
            raise RuntimeError("OpenAI response missing 'output' array")

        for output_item in output:
            if not isinstance(output_item, dict):
                continue

            if output_item.get("type") == "function_call":
                function_name = output_item.get("name")
                arguments_str = output_item.get("arguments", "{}")

                try:
                    arguments = (
                        json.loads(arguments_str)
                        if isinstance(arguments_str, str)
                        else arguments_str
                    )
                except json.JSONDecodeError:
                    logger.warning(
                        f"Failed to parse function arguments: {arguments_str}"
                    )
                    arguments = {}

                logger.debug(f"Detected function call: {function_name}")
                return json.dumps(
                    {
                        "_function_call": {
                            "name": function_name,
                            "arguments": arguments,
                            "call_id": output_item.get("call_id"),
                        }
                    }
                )

        # With tools the output may be [web_search_call, message, ...]
        for output_item in output:
            if not isinstance(output_item, dict):
                continue

            item_type = output_item.get("type")
            if item_type and item_type != "message":
                continue

            content_array = output_item.get("content")
            if isinstance(content_array, list):
                for content_item in content_array:
                    if (
                        isinstance(content_item, dict)
                        and content_item.get("type") == "output_text"
                        and content_item.get("text")
                    ):
                        return str(content_item["text"])
            elif content_array:
                return str(content_array)

        raise RuntimeError(
            "OpenAI response contains no text content. "
            f"Output items: {[item.get('type') for item in output if isinstance(item, dict)]}"
        )

    def _extract_sources(self, data: dict[str, Any]) -> list[str]:
        """
        Collect cited URLs from url_citation annotations and web search calls.

        Order is first appearance; duplicates are dropped. Returns an empty
        list when the model did not search.
        """
        sources: list[str] = []

        def add(url: Any) -> None:
            if isinstance(url, str) and url and url not in sources:
                sources.append(url)

        for item in data.get("output") or []:
            if not isinstance(item, dict):
                continue

            if item.get("type") == "message" and isinstance(item.get("content"), list):
                for content_item in item["content"]:
                    if not isinstance(content_item, dict):
                        continue
                    for annotation in content_item.get("annotations") or []:
                        if (
                            isinstance(annotation, dict)
                            and annotation.get("type") == "url_citation"
                        ):
                            add(annotation.get("url"))

            elif item.get("type") == "web_search_call":
                action = item.get("action")
                if isinstance(action, dict):
                    for source in action.get("sources") or []:
                        if isinstance(source, dict):
                            add(source.get("url"))

        return sources

    def _extract_token_usage(self, data: dict[str, Any]) -> tuple[int, int, int]:
        """
        Extract (total, prompt, completion) token counts.

        Returns (0, 0, 0) when usage is missing.
        """
        usage = data.get("usage")
        if not usage or not isinstance(usage, dict):
            logger.warning(
                f"OpenAI response missing 'usage' data for model={self.model_name}"
            )
            return 0, 0, 0

        # Responses API uses input/output, Chat Completions used prompt/completion
        prompt_tokens = usage.get("input_tokens") or usage.get("prompt_tokens", 0)
        completion_tokens = usage.get("output_tokens") or usage.get(
            "completion_tokens", 0
        )
        total_tokens = usage.get("total_tokens") or (prompt_tokens + completion_tokens)

        return int(total_tokens or 0), int(prompt_tokens or 0), int(completion_tokens or 0)

    def _extract_error_detail(self, response: httpx.Response) -> str:
        """Extract the API error message, never including credentials."""
        try:
            error_data = response.json()
            error = error_data.get("error", {})
            return str(error.get("message", "Unknown error"))
        except Exception:
            return f"HTTP {response.status_code}"
