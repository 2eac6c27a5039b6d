"""System prompt loader for Visibility Probe.

Loads system prompts from JSON files with support for:
- Package defaults (bundled with the tool)
- User overrides (~/.config/visibility-probe/system_prompts/)
- Purpose-specific defaults (answer, analysis, generation, visibility,
  recommendations)

Path resolution order:
1. User config directory (~/.config/visibility-probe/system_prompts/)
2. Package directory (visibility_probe/system_prompts/)
"""

import json
import logging
from pathlib import Path

from pydantic import BaseModel, Field, field_validator

logger = logging.getLogger(__name__)


class PromptNotFoundError(Exception):
    """Raised when a requested system prompt file cannot be found."""

    pass


class SystemPrompt(BaseModel):
    """Schema for system prompt JSON files.

    Example JSON:
    {
        "name": "answer-default",
        "description": "Neutral assistant prompt used when probing services",
        "purpose": "answer",
        "prompt": "You are a helpful assistant...",
        "metadata": {"version": "v1"}
    }
    """

    name: str = Field(description="Short identifier for this prompt")
    description: str = Field(description="Human-readable description")
    purpose: str = Field(description="Where the prompt is used (answer, analysis, ...)")
    prompt: str = Field(description="The actual system prompt text")
    metadata: dict[str, str] | None = Field(
        default=None, description="Optional metadata (version, author, etc.)"
    )

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Ensure name is not empty."""
        if not v or v.isspace():
            raise ValueError("Prompt name cannot be empty")
        return v

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        """Ensure prompt is not empty."""
        if not v or v.isspace():
            raise ValueError("System prompt text cannot be empty")
        return v


def _get_package_prompts_dir() -> Path:
    """Get the package-bundled system_prompts directory."""
    return Path(__file__).parent


def _get_user_prompts_dir() -> Path:
    """Get the user config directory for custom system prompts.

    Note: Does not create the directory if it doesn't exist.
    """
    return Path.home() / ".config" / "visibility-probe" / "system_prompts"


def _resolve_prompt_path(relative_path: str) -> Path:
    """Resolve a relative prompt path to an absolute path.

    Checks user directory first, then package directory.

    Args:
        relative_path: Relative path like "answer/default"

    Returns:
        Absolute path to the JSON file

    Raises:
        PromptNotFoundError: If the prompt file is not found in either location
    """
    if not relative_path.endswith(".json"):
        relative_path = f"{relative_path}.json"

    user_path = _get_user_prompts_dir() / relative_path
    if user_path.exists():
        logger.debug(f"Using user prompt: {user_path}")
        return user_path

    package_path = _get_package_prompts_dir() / relative_path
    if package_path.exists():
        logger.debug(f"Using package prompt: {package_path}")
        return package_path

    raise PromptNotFoundError(
        f"System prompt not found: {relative_path}\n"
        f"Searched in:\n"
        f"  - User dir: {user_path}\n"
        f"  - Package dir: {package_path}"
    )


def load_prompt(relative_path: str) -> SystemPrompt:
    """Load a system prompt from a JSON file.

    Args:
        relative_path: Relative path like "answer/default" or "analysis/strict"

    Returns:
        Validated SystemPrompt object

    Raises:
        PromptNotFoundError: If the prompt file cannot be found
        ValueError: If the file contains invalid JSON or fails validation
    """
    prompt_path = _resolve_prompt_path(relative_path)

    try:
        with prompt_path.open("r", encoding="utf-8") as f:
            data = json.load(f)

        prompt = SystemPrompt.model_validate(data)
        logger.debug(f"Loaded system prompt '{prompt.name}' from {prompt_path}")
        return prompt

    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON in prompt file {prompt_path}: {e}") from e
    except Exception as e:
        raise ValueError(f"Failed to load prompt from {prompt_path}: {e}") from e


def get_purpose_default(purpose: str) -> SystemPrompt:
    """Load the default system prompt for a purpose ("answer", "analysis", ...)."""
    return load_prompt(f"{purpose}/default")
