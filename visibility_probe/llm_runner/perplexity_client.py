"""
Perplexity API client implementation for Visibility Probe.

Perplexity's Sonar models search the web on every request and return the
URLs they used in a top-level `citations` array, which becomes the answer's
source list.

Key features:
- Async HTTP client (httpx.AsyncClient), OpenAI-compatible chat completions
- Retry on transient failures (429, 5xx) with exponential backoff
- Fail fast on permanent errors (401, 400, 404)
- Security: NEVER logs API keys
"""

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

httpx_logger = logging.getLogger("httpx")
httpx_logger.setLevel(logging.WARNING)

PERPLEXITY_API_URL = "https://api.perplexity.ai/chat/completions"

logger = logging.getLogger(__name__)


class PerplexityClient:
    """
    Perplexity chat completions client with async retry logic.

    Attributes:
        model_name: Perplexity model identifier (e.g., "sonar", "sonar-pro")
        api_key: Perplexity API key (NEVER logged)
        system_prompt: System message sent with every request
        temperature: Sampling temperature, omitted from the payload when None
    """

    def __init__(
        self,
        model_name: str,
        api_key: str,
        system_prompt: str,
        temperature: float | None = None,
    ):
        if not model_name or model_name.isspace():
            raise ValueError("model_name cannot be empty")

        if not api_key or api_key.isspace():
            raise ValueError("api_key cannot be empty")

        if not system_prompt or system_prompt.isspace():
            raise ValueError("system_prompt cannot be empty")

        self.model_name = model_name
        self.api_key = api_key
        self.system_prompt = system_prompt
        self.temperature = temperature

        logger.debug(f"Initialized Perplexity client for model: {model_name}")

    @create_retry_decorator()
    async def generate_answer(self, prompt: str) -> LLMResponse:
        """
        Send a prompt to Perplexity and return the answer with its citations.

        Raises:
            ValueError: If prompt is empty or exceeds MAX_PROMPT_LENGTH
            RuntimeError: On permanent failures or an unparseable response
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

        payload: dict[str, Any] = {
            "model": self.model_name,
            "messages": [
                {"role": "system", "content": self.system_prompt},
                {"role": "user", "content": prompt},
            ],
        }
        if self.temperature is not None:
            payload["temperature"] = self.temperature

        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }

        logger.debug(f"Sending request to Perplexity: model={self.model_name}")

        try:
            async with httpx.AsyncClient(timeout=REQUEST_TIMEOUT) as client:
                response = await client.post(
                    PERPLEXITY_API_URL,
                    json=payload,
                    headers=headers,
                )

                if response.status_code in NO_RETRY_STATUS_CODES:
                    error_detail = self._extract_error_detail(response)
                    raise RuntimeError(
                        f"Perplexity API error (non-retryable): "
                        f"status={response.status_code}, "
                        f"model={self.model_name}, "
                        f"detail={error_detail}"
                    )

                response.raise_for_status()

        except httpx.HTTPStatusError as e:
            logger.error(
                f"Perplexity API HTTP error: "
                f"status={e.response.status_code}, "
                f"model={self.model_name}, "
                f"detail={self._extract_error_detail(e.response)}"
            )
            raise

        except httpx.ConnectError as e:
            logger.error(
                f"Perplexity API connection error: model={self.model_name}, error={e}"
            )
            raise

        except httpx.TimeoutException as e:
            logger.error(f"Perplexity API timeout: model={self.model_name}, error={e}")
            raise

        try:
            data = response.json()
        except ValueError as e:
            raise RuntimeError(f"Failed to parse Perplexity response JSON: {e}") from e

        answer_text = self._extract_answer_text(data)
        tokens_used, prompt_tokens, completion_tokens = self._extract_token_usage(data)

        return LLMResponse(
            answer_text=answer_text,
            tokens_used=tokens_used,
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            provider="perplexity",
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
            sources=self._extract_sources(data),
        )

    def _extract_answer_text(self, data: dict[str, Any]) -> str:
        try:
            choices = data["choices"]
            if not choices:
                raise RuntimeError("Perplexity response has empty 'choices' array")
            content = choices[0]["message"]["content"]
        except (KeyError, IndexError, TypeError) as e:
            raise RuntimeError(f"Invalid Perplexity response structure: {e}") from e

        if content is None:
            raise RuntimeError("Perplexity response message has no content")

        return str(content)

    def _extract_sources(self, data: dict[str, Any]) -> list[str]:
        """
        Collect cited URLs in the order Perplexity returned them.

        The answer text refers to citations by 1-based position ("[1]"), so
        the order is kept and only exact duplicates are removed.
        """
        raw: list[Any] = list(data.get("citations") or [])
        if not raw:
            # Newer responses carry search_results [{title, url}] instead
            raw = [
                result.get("url")
                for result in data.get("search_results") or []
                if isinstance(result, dict)
            ]

        sources: list[str] = []
        for url in raw:
            if isinstance(url, str) and url and url not in sources:
                sources.append(url)
        return sources

    def _extract_token_usage(self, data: dict[str, Any]) -> tuple[int, int, int]:
        usage = data.get("usage")
        if not usage or not isinstance(usage, dict):
            logger.warning(
                f"Perplexity response missing 'usage' data for model={self.model_name}"
            )
            return 0, 0, 0

        prompt_tokens = int(usage.get("prompt_tokens") or 0)
        completion_tokens = int(usage.get("completion_tokens") or 0)
        total_tokens = int(usage.get("total_tokens") or prompt_tokens + completion_tokens)
        return total_tokens, prompt_tokens, completion_tokens

    def _extract_error_detail(self, response: httpx.Response) -> str:
        try:
            error_data = response.json()
            error = error_data.get("error")
            if isinstance(error, dict):
                return str(error.get("message", "Unknown error"))
            return str(error_data.get("message") or error or "Unknown error")
        except Exception:
            return f"HTTP {response.status_code}"
