"""
Mock LLM client for testing.

Provides MockLLMClient that implements the LLMClient protocol without making
real API calls. Used for deterministic testing of probes, batches and the
report pipeline without mocking HTTP.

Example:
    >>> client = MockLLMClient(
    ...     responses={"Best coffee in Portland?": "1. Stumptown 2. Bean There"},
    ...     sources=["https://a.com/coffee"],
    ... )
    >>> response = await client.generate_answer("Best coffee in Portland?")
    >>> response.answer_text
    '1. Stumptown 2. Bean There'
    >>> response.sources
    ['https://a.com/coffee']

Scripted sequence:
    >>> client = MockLLMClient(sequence=["first", "", "third"])
    >>> [(await client.generate_answer("q")).answer_text for _ in range(3)]
    ['first', '', 'third']
"""

import asyncio
import logging
from dataclasses import dataclass, field

from visibility_probe.llm_runner.models import LLMResponse
from visibility_probe.utils.time import utc_timestamp

logger = logging.getLogger(__name__)


@dataclass
class MockLLMClient:
    """
    Mock LLM client for testing that implements the LLMClient protocol.

    Attributes:
        responses: Dict mapping prompts to answers
        default_response: Answer for prompts not in responses
        sequence: Answers returned in call order, regardless of prompt. An
            Exception instance in the sequence is raised instead of returned.
            Once exhausted, lookups fall back to responses/default_response.
        sources: Source URLs attached to every response
        model_name: Model identifier to return in responses
        provider: Provider name to return in responses
        tokens_per_response: Number of tokens reported for each response
        delay_seconds: Simulated latency before answering
        calls: Prompts received, in call order (for assertions)
    """

    responses: dict[str, str] | None = None
    default_response: str = "Mock LLM response."
    sequence: list[str | Exception] | None = None
    sources: list[str] = field(default_factory=list)
    model_name: str = "mock-model"
    provider: str = "mock"
    tokens_per_response: int = 100
    delay_seconds: float = 0.0
    calls: list[str] = field(default_factory=list)

    def __post_init__(self):
        if self.responses is None:
            self.responses = {}
        self._sequence_index = 0

        logger.debug(
            f"Initialized MockLLMClient with {len(self.responses)} configured responses"
        )

    async def generate_answer(self, prompt: str) -> LLMResponse:
        """
        Return the configured answer for the prompt.

        Raises:
            Exception: Whatever exception instance the sequence holds at this call
        """
        self.calls.append(prompt)

        if self.delay_seconds > 0:
            await asyncio.sleep(self.delay_seconds)

        if self.sequence is not None and self._sequence_index < len(self.sequence):
            scripted = self.sequence[self._sequence_index]
            self._sequence_index += 1
            if isinstance(scripted, Exception):
                raise scripted
            answer_text = scripted
        else:
            answer_text = self.responses.get(prompt, self.default_response)

        logger.debug(f"MockLLMClient returning answer for prompt: {prompt[:50]}...")

        return LLMResponse(
            answer_text=answer_text,
            tokens_used=self.tokens_per_response,
            prompt_tokens=self.tokens_per_response // 2,
            completion_tokens=self.tokens_per_response // 2,
            provider=self.provider,
            model_name=self.model_name,
            timestamp_utc=utc_timestamp(),
            sources=list(self.sources),
        )
