"""
LLM runner module for Visibility Probe.

- models: LLMClient protocol, LLMResponse and the build_client factory
- openai_client / perplexity_client: answer-generating services
- probe: one answer + analysis, never raises
- run_batch: n concurrent probes per (prompt, service)
- runner: the report pipeline

Only the client contract is re-exported here; import probe, run_batch and
runner from their modules.
"""

from .models import LLMClient, LLMResponse, build_client

__all__ = [
    "LLMClient",
    "LLMResponse",
    "build_client",
]
