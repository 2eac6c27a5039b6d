"""System prompt library for Visibility Probe.

Prompts are stored as JSON files organized by purpose:
- answer/: sent to answer-generating services
- analysis/: single-answer analysis
- generation/: customer prompt generation
- visibility/: qualitative visibility assessment

User prompts in ~/.config/visibility-probe/system_prompts/ take precedence
over package defaults.
"""

from visibility_probe.system_prompts.prompt_loader import (
    PromptNotFoundError,
    SystemPrompt,
    get_purpose_default,
    load_prompt,
)

__all__ = [
    "SystemPrompt",
    "load_prompt",
    "get_purpose_default",
    "PromptNotFoundError",
]
