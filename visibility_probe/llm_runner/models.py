"""
LLM client abstraction and factory for Visibility Probe.

Answer-generating services and the analysis model are reached through the
same Protocol, so the probe never depends on a concrete provider.

Key components:
- LLMResponse: Structured dataclass holding one model response
- LLMClient: Protocol defining the provider-agnostic interface
- build_client: Factory function creating the right client for a provider

Example:
    >>> from visibility_probe.llm_runner.models import build_client
    >>> client = build_client("perplexity", "sonar", api_key,
    ...     system_prompt="You are a helpful assistant.")
    >>> response = await client.generate_answer("Best coffee roasters in Portland?")
    >>> response.sources
    ['https://www.example.com/portland-coffee', ...]
"""

from dataclasses import dataclass, field
from typing import Protocol


@dataclass
class LLMResponse:
    """
    Structured response from a model query.

    Attributes:
        answer_text: The model's complete response text (or a serialized
            function call when tools force one)
        tokens_used: Total tokens consumed (prompt + completion)
        provider: Provider name ("openai", "perplexity", "mock")
        model_name: Specific model identifier
        timestamp_utc: ISO 8601 timestamp with 'Z' suffix when the response arrived
        sources: URLs the answer cites, in the order the provider returned them
        prompt_tokens: Tokens in the prompt/input
        completion_tokens: Tokens in the completion/output

    Example:
        >>> response = LLMResponse(
        ...     answer_text="1. Stumptown 2. Bean There Coffee",
        ...     tokens_used=450,
        ...     provider="perplexity",
        ...     model_name="sonar",
        ...     timestamp_utc="2025-11-02T08:30:45Z",
        ...     sources=["https://a.com/best-coffee"],
        ... )
        >>> response.sources[0]
        'https://a.com/best-coffee'
    """

    answer_text: str
    tokens_used: int
    provider: str
    model_name: str
    timestamp_utc: str
    sources: list[str] = field(default_factory=list)
    prompt_tokens: int = 0
    completion_tokens: int = 0


class LLMClient(Protocol):
    """
    Provider-agnostic interface for model clients.

    Implementations MUST:
    - Use httpx.AsyncClient for non-blocking I/O
    - Retry transient failures (429, 5xx) with exponential backoff
    - Fail fast on 400, 401, 404
    - Never log API keys
    - Use UTC timestamps from utils.time
    """

    async def generate_answer(self, prompt: str) -> LLMResponse:
        """
        Send a prompt and return the structured response.

        Raises:
            ValueError: If prompt is empty or too long
            RuntimeError: On permanent failures or unparseable responses
            httpx.HTTPError: On transport failures after retries are exhausted
        """
        ...


def build_client(
    provider: str,
    model_name: str,
    api_key: str,
    system_prompt: str,
    tools: list[dict] | None = None,
    tool_choice: str = "auto",
    temperature: float | None = None,
) -> LLMClient:
    """
    Factory function to create the client for a provider.

    Supported providers:
    - "openai": OpenAI Responses API (optionally with web search)
    - "perplexity": Perplexity chat completions (always searches, returns citations)

    Args:
        provider: Provider identifier (lowercase string)
        model_name: Model identifier (e.g., "gpt-4o", "sonar")
        api_key: API key for authentication (NEVER logged or persisted)
        system_prompt: System message sent with every request
        tools: Optional tool configurations (e.g., [{"type": "web_search"}])
        tool_choice: Tool selection mode ("auto", "required", "none")
        temperature: Sampling temperature, provider default when None

    Returns:
        LLMClient implementation for the provider

    Raises:
        ValueError: If provider is not supported
    """
    if provider == "openai":
        # Import here to keep provider modules lazy
        from visibility_probe.llm_runner.openai_client import OpenAIClient

        return OpenAIClient(
            model_name=model_name,
            api_key=api_key,
            system_prompt=system_prompt,
            tools=tools,
            tool_choice=tool_choice,
            temperature=temperature,
        )

    if provider == "perplexity":
        from visibility_probe.llm_runner.perplexity_client import PerplexityClient

        return PerplexityClient(
            model_name=model_name,
            api_key=api_key,
            system_prompt=system_prompt,
            temperature=temperature,
        )

    raise ValueError(
        f"Unsupported provider: '{provider}'. Supported providers: openai, perplexity"
    )
