"""
Configuration loader for Visibility Probe.

This module loads YAML configuration files, validates them with Pydantic models,
and resolves API keys from environment variables to create a RuntimeConfig.

The loader keeps configuration specification (ProbeConfig from YAML) apart
from runtime configuration (RuntimeConfig with resolved API keys), so secrets
never get committed to version control.

Functions:
    load_config: Main entrypoint to load and validate probe.config.yaml
    resolve_services: Resolve the selected services to RuntimeService models
    resolve_analysis_model: Resolve the helper model and its system prompts
"""

import os
from pathlib import Path

import yaml
from pydantic import ValidationError

from visibility_probe.exceptions import (
    APIKeyMissingError,
    ConfigFileNotFoundError,
    ConfigValidationError,
)
from visibility_probe.system_prompts import get_purpose_default, load_prompt

from .schema import ProbeConfig, RuntimeAnalysisModel, RuntimeConfig, RuntimeService


def load_config(config_path: str | Path) -> RuntimeConfig:
    """
    Load probe.config.yaml and resolve API keys from environment variables.

    This function:
    1. Loads YAML from the specified path
    2. Validates structure using the ProbeConfig Pydantic model
    3. Resolves API key environment variables to actual secrets
    4. Returns RuntimeConfig ready for the report pipeline

    Args:
        config_path: Path to probe.config.yaml file (relative or absolute)

    Returns:
        RuntimeConfig with resolved API keys and validated configuration

    Raises:
        ConfigFileNotFoundError: If config file doesn't exist at the specified path
        ConfigValidationError: If YAML is invalid or config validation fails
        APIKeyMissingError: If required API keys are missing from environment

    Security:
        - API keys are loaded from environment variables only
        - API keys are NEVER logged or written to disk
        - Uses yaml.safe_load() to prevent code injection
    """
    config_path = Path(config_path)

    if not config_path.exists():
        raise ConfigFileNotFoundError(f"Configuration file not found: {config_path}")

    try:
        with config_path.open(encoding="utf-8") as f:
            raw_config = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise ConfigValidationError(f"Invalid YAML syntax in {config_path}: {e}") from e
    except OSError as e:
        raise ConfigValidationError(
            f"Failed to read configuration file {config_path}: {e}"
        ) from e

    if raw_config is None:
        raise ConfigValidationError(f"Configuration file is empty: {config_path}")

    try:
        probe_config = ProbeConfig.model_validate(raw_config)
    except ValidationError as e:
        error_messages = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            msg = error["msg"]
            error_messages.append(f"  - {loc}: {msg}")

        raise ConfigValidationError(
            f"Configuration validation failed in {config_path}:\n"
            + "\n".join(error_messages)
        ) from e

    services = resolve_services(probe_config)
    analysis_model = resolve_analysis_model(probe_config)

    return RuntimeConfig(
        company=probe_config.company,
        report_settings=probe_config.report_settings,
        services=services,
        analysis_model=analysis_model,
        prompts=probe_config.prompts,
    )


def _resolve_env_key(env_var_name: str, required_for: str) -> str:
    api_key = os.environ.get(env_var_name)

    if not api_key:
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} not set "
            f"(required for {required_for}). "
            f"Please set it in your environment or .env file."
        )

    if api_key.isspace():
        raise APIKeyMissingError(
            f"Environment variable ${env_var_name} is empty or whitespace "
            f"(required for {required_for})"
        )

    return api_key


def _resolve_prompt_text(relative_path: str | None, purpose: str, required_for: str) -> str:
    try:
        if relative_path:
            prompt_obj = load_prompt(relative_path)
        else:
            prompt_obj = get_purpose_default(purpose)
    except Exception as e:
        raise ConfigValidationError(
            f"Failed to load system prompt for {required_for}: {e}"
        ) from e
    return prompt_obj.prompt


def resolve_services(config: ProbeConfig) -> list[RuntimeService]:
    """
    Resolve the services selected in report_settings.services.

    Only selected services need an API key; defined but unused services are
    ignored. Order follows report_settings.services.

    Args:
        config: Validated ProbeConfig

    Returns:
        List of RuntimeService instances with resolved API keys and system prompts

    Raises:
        APIKeyMissingError: If any required environment variable is not set
        ConfigValidationError: If a system prompt file cannot be loaded

    Security:
        - NEVER logs API keys (not even partial values)
        - Fails fast if environment variable is missing
    """
    resolved: list[RuntimeService] = []

    for service_id in config.report_settings.services:
        service_config = config.services[service_id]
        required_for = (
            f"service '{service_id}' "
            f"({service_config.provider}/{service_config.model_name})"
        )

        api_key = _resolve_env_key(service_config.env_api_key, required_for)
        system_prompt = _resolve_prompt_text(
            service_config.system_prompt, "answer", required_for
        )

        resolved.append(
            RuntimeService(
                service_id=service_id,
                provider=service_config.provider,
                model_name=service_config.model_name,
                api_key=api_key,
                system_prompt=system_prompt,
                web_search=service_config.web_search,
            )
        )

    return resolved


def resolve_analysis_model(config: ProbeConfig) -> RuntimeAnalysisModel:
    """
    Resolve the analysis model's API key and its system prompts.

    Raises:
        APIKeyMissingError: If the analysis model's environment variable is not set
        ConfigValidationError: If a bundled system prompt cannot be loaded
    """
    model_config = config.analysis_model
    required_for = (
        f"analysis model {model_config.provider}/{model_config.model_name}"
    )

    api_key = _resolve_env_key(model_config.env_api_key, required_for)

    return RuntimeAnalysisModel(
        provider=model_config.provider,
        model_name=model_config.model_name,
        api_key=api_key,
        analysis_prompt=_resolve_prompt_text(None, "analysis", required_for),
        generation_prompt=_resolve_prompt_text(None, "generation", required_for),
        visibility_prompt=_resolve_prompt_text(None, "visibility", required_for),
        recommendations_prompt=_resolve_prompt_text(
            None, "recommendations", required_for
        ),
    )
