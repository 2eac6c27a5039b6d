"""
Configuration schema models for Visibility Probe.

This module defines Pydantic models for validating and parsing the
probe.config.yaml file. All models use Pydantic v2 field validators.

Models:
    CompanyConfig: The business being measured (keyed by URL)
    ServiceConfig: One answer-generating service (provider, model, API key env var)
    AnalysisModelConfig: Model used for prompt generation and answer analysis
    PromptConfig: A fixed customer prompt (skips prompt generation)
    ReportSettings: Report shape (prompt count, runs per prompt, services, limits)
    ProbeConfig: Root configuration model (validates entire YAML)
    RuntimeService: Resolved service configuration with API key
    RuntimeAnalysisModel: Resolved analysis model with API key
    RuntimeConfig: Runtime configuration with resolved API keys
"""

import re
from typing import Literal
from urllib.parse import urlsplit

from pydantic import BaseModel, Field, field_validator, model_validator

from .constants import (
    DEFAULT_MAX_CONCURRENT_PROMPTS,
    DEFAULT_PROBE_TIMEOUT_SECONDS,
    DEFAULT_PROMPT_COUNT,
    DEFAULT_RUNS_PER_PROMPT,
    DEFAULT_SQLITE_DB_PATH,
)

# Service ids are stored on every run row, keep them short and slug-like
SERVICE_ID_PATTERN = re.compile(r"^[a-z][a-z0-9_-]{0,31}$")


def _require_text(value: str, field_name: str) -> str:
    if not value or value.isspace():
        raise ValueError(f"{field_name} cannot be empty")
    return value


class CompanyConfig(BaseModel):
    """
    The business whose AI-answer visibility is measured.

    A company is identified by its URL; running twice for the same URL
    updates the stored company instead of creating a second one.

    Attributes:
        name: Business name the analyzer looks for in answers
        url: Canonical website URL (http or https)
        description: Short description of the business
        industry: Industry or market category
        products_services: Products and services offered
        target_customers: Who the business sells to
        location: Optional location (city, region) for local businesses
        additional_context: Optional free-text context for prompt generation
    """

    name: str
    url: str
    description: str = ""
    industry: str = ""
    products_services: str = ""
    target_customers: str = ""
    location: str | None = None
    additional_context: str | None = None

    @field_validator("name")
    @classmethod
    def validate_name(cls, v: str) -> str:
        """Validate name is non-empty and strip surrounding whitespace."""
        return _require_text(v, "name").strip()

    @field_validator("url")
    @classmethod
    def validate_url(cls, v: str) -> str:
        """Validate url is an absolute http(s) URL with a hostname."""
        v = _require_text(v, "url").strip()
        parts = urlsplit(v)
        if parts.scheme not in ("http", "https") or not parts.hostname:
            raise ValueError(f"url must be an absolute http(s) URL, got: {v}")
        return v


class ServiceConfig(BaseModel):
    """
    Answer-generating service configuration.

    Attributes:
        provider: API family used to reach the service
        model_name: Model identifier (e.g., "gpt-4o", "sonar")
        env_api_key: Environment variable name containing the API key
        system_prompt: Optional relative path to a system prompt JSON
                      (e.g., "answer/default"). Defaults to "answer/default".
        web_search: Ask the model to search the web (OpenAI only; Perplexity
                   always searches)
    """

    provider: Literal["openai", "perplexity"]
    model_name: str
    env_api_key: str
    system_prompt: str | None = None
    web_search: bool = True

    @field_validator("model_name")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        """Validate model_name is non-empty."""
        return _require_text(v, "model_name")

    @field_validator("env_api_key")
    @classmethod
    def validate_env_api_key(cls, v: str) -> str:
        """Validate env_api_key is non-empty."""
        return _require_text(v, "env_api_key")


def _default_services() -> dict[str, ServiceConfig]:
    return {
        "gpt": ServiceConfig(
            provider="openai",
            model_name="gpt-4o",
            env_api_key="OPENAI_API_KEY",
        ),
        "perplexity": ServiceConfig(
            provider="perplexity",
            model_name="sonar",
            env_api_key="PERPLEXITY_API_KEY",
        ),
    }


class AnalysisModelConfig(BaseModel):
    """
    Model used for the helper capabilities around the probing engine.

    The same model generates customer prompts, analyzes single answers, and
    produces the qualitative visibility assessment.

    Attributes:
        provider: LLM provider name
        model_name: Specific model identifier (e.g., "gpt-4o-mini")
        env_api_key: Environment variable name containing the API key
    """

    provider: Literal["openai", "perplexity"] = "openai"
    model_name: str = "gpt-4o-mini"
    env_api_key: str = "OPENAI_API_KEY"

    @field_validator("model_name")
    @classmethod
    def validate_model_name(cls, v: str) -> str:
        """Validate model_name is non-empty."""
        return _require_text(v, "model_name")

    @field_validator("env_api_key")
    @classmethod
    def validate_env_api_key(cls, v: str) -> str:
        """Validate env_api_key is non-empty."""
        return _require_text(v, "env_api_key")


class PromptConfig(BaseModel):
    """
    A customer-style prompt supplied verbatim in the config.

    Attributes:
        category: Prompt category (e.g., "Comparing options")
        prompt: The question sent to every service
    """

    category: str = "General"
    prompt: str

    @field_validator("prompt")
    @classmethod
    def validate_prompt(cls, v: str) -> str:
        """Validate prompt is non-empty and strip surrounding whitespace."""
        return _require_text(v, "prompt").strip()


class ReportSettings(BaseModel):
    """
    Shape and limits of a single report.

    Attributes:
        prompt_count: Number of prompts to generate (ignored when prompts are given)
        runs_per_prompt: Probes per prompt per service. Range: 1-20.
        services: Service ids to probe, each must be defined under `services`
        max_concurrent_prompts: Prompts processed at the same time. Range: 1-20.
        probe_timeout_seconds: Time budget for each external call inside a probe
        sqlite_db_path: Path to SQLite database
    """

    prompt_count: int = DEFAULT_PROMPT_COUNT
    runs_per_prompt: int = DEFAULT_RUNS_PER_PROMPT
    services: list[str] = Field(default_factory=lambda: ["gpt", "perplexity"])
    max_concurrent_prompts: int = DEFAULT_MAX_CONCURRENT_PROMPTS
    probe_timeout_seconds: float = DEFAULT_PROBE_TIMEOUT_SECONDS
    sqlite_db_path: str = DEFAULT_SQLITE_DB_PATH

    @field_validator("prompt_count")
    @classmethod
    def validate_prompt_count(cls, v: int) -> int:
        """Validate prompt_count is within 1-50."""
        if not 1 <= v <= 50:
            raise ValueError(f"prompt_count must be between 1 and 50 (got: {v})")
        return v

    @field_validator("runs_per_prompt")
    @classmethod
    def validate_runs_per_prompt(cls, v: int) -> int:
        """
        Validate runs_per_prompt is within 1-20.

        Zero runs would make every mention probability undefined.
        """
        if not 1 <= v <= 20:
            raise ValueError(f"runs_per_prompt must be between 1 and 20 (got: {v})")
        return v

    @field_validator("services")
    @classmethod
    def validate_services(cls, v: list[str]) -> list[str]:
        """Validate services is non-empty, slug-like and free of duplicates."""
        if not v:
            raise ValueError("At least one service must be configured")

        for service_id in v:
            if not SERVICE_ID_PATTERN.match(service_id):
                raise ValueError(
                    f"Invalid service id '{service_id}'. Use lowercase letters, "
                    f"digits, '-' or '_' (max 32 chars), starting with a letter."
                )

        if len(v) != len(set(v)):
            duplicates = {s for s in v if v.count(s) > 1}
            raise ValueError(f"Duplicate service ids found: {duplicates}")

        return v

    @field_validator("max_concurrent_prompts")
    @classmethod
    def validate_max_concurrent_prompts(cls, v: int) -> int:
        """Validate max_concurrent_prompts is within 1-20."""
        if not 1 <= v <= 20:
            raise ValueError(
                f"max_concurrent_prompts must be between 1 and 20 (got: {v})"
            )
        return v

    @field_validator("probe_timeout_seconds")
    @classmethod
    def validate_probe_timeout(cls, v: float) -> float:
        """Validate probe_timeout_seconds is positive."""
        if v <= 0:
            raise ValueError(f"probe_timeout_seconds must be positive (got: {v})")
        return v

    @field_validator("sqlite_db_path")
    @classmethod
    def validate_sqlite_db_path(cls, v: str) -> str:
        """Validate sqlite_db_path is non-empty."""
        return _require_text(v, "sqlite_db_path")


class ProbeConfig(BaseModel):
    """
    Root configuration model for probe.config.yaml.

    Example:
        company:
          name: "Bean There Coffee"
          url: "https://beanthere.example"
          industry: "Specialty coffee roasting"
        report_settings:
          runs_per_prompt: 4
          services: ["gpt", "perplexity"]
        prompts:
          - category: "Finding a business"
            prompt: "Who roasts the best coffee in Portland?"
    """

    company: CompanyConfig
    report_settings: ReportSettings = Field(default_factory=ReportSettings)
    services: dict[str, ServiceConfig] = Field(default_factory=_default_services)
    analysis_model: AnalysisModelConfig = Field(default_factory=AnalysisModelConfig)
    prompts: list[PromptConfig] | None = None

    @field_validator("prompts")
    @classmethod
    def validate_prompts(cls, v: list[PromptConfig] | None) -> list[PromptConfig] | None:
        """Validate that an explicit prompt list is not empty."""
        if v is not None and not v:
            raise ValueError("prompts cannot be an empty list (omit it to generate)")
        return v

    @model_validator(mode="after")
    def validate_selected_services_defined(self) -> "ProbeConfig":
        """
        Validate every service in report_settings.services has a definition.

        Raises:
            ValueError: If a selected service id is missing from `services`
        """
        missing = [s for s in self.report_settings.services if s not in self.services]
        if missing:
            raise ValueError(
                f"report_settings.services references undefined services: {missing}. "
                f"Defined services: {sorted(self.services)}"
            )
        return self


class RuntimeService(BaseModel):
    """
    Resolved service configuration with API key and system prompt.

    Attributes:
        service_id: Id stored on every run produced by this service
        provider: API family ("openai" or "perplexity")
        model_name: Model identifier
        api_key: Resolved API key from environment (NEVER log this)
        system_prompt: Resolved system prompt text
        web_search: Whether web search tooling is requested
    """

    service_id: str
    provider: str
    model_name: str
    api_key: str
    system_prompt: str
    web_search: bool = True

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key is non-empty."""
        return _require_text(v, "API key")


class RuntimeAnalysisModel(BaseModel):
    """
    Resolved analysis model with API key.

    Attributes:
        provider: LLM provider name
        model_name: Model identifier
        api_key: Resolved API key from environment (NEVER log this)
        analysis_prompt: System prompt for single-answer analysis
        generation_prompt: System prompt for customer prompt generation
        visibility_prompt: System prompt for the qualitative assessment
        recommendations_prompt: System prompt for improvement recommendations
    """

    provider: str
    model_name: str
    api_key: str
    analysis_prompt: str
    generation_prompt: str
    visibility_prompt: str
    recommendations_prompt: str

    @field_validator("api_key")
    @classmethod
    def validate_api_key(cls, v: str) -> str:
        """Validate API key is non-empty."""
        return _require_text(v, "API key")


class RuntimeConfig(BaseModel):
    """
    Runtime configuration with resolved API keys.

    Created by config.loader after validating YAML and resolving
    environment variables. This is the contract passed to the runner.

    Attributes:
        company: Company being measured
        report_settings: Report shape and limits
        services: Selected services in configured order, keys resolved
        analysis_model: Helper model with resolved key
        prompts: Fixed prompts, or None to generate them
    """

    company: CompanyConfig
    report_settings: ReportSettings
    services: list[RuntimeService]
    analysis_model: RuntimeAnalysisModel
    prompts: list[PromptConfig] | None = None

    @property
    def service_ids(self) -> list[str]:
        """Service ids in configured order."""
        return [service.service_id for service in self.services]
