"""
Provider settings.

Credentials and connection options for every supported vendor. Settings can
be loaded from the environment (a ``.env`` file is honoured), from YAML, or
constructed programmatically.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields
from pathlib import Path
from typing import Any

import httpx
import yaml
from dotenv import find_dotenv, load_dotenv

from llm_relay.errors import ConfigurationError

DEFAULT_TIMEOUT_SECONDS = 600.0
DEFAULT_CONNECT_TIMEOUT_SECONDS = 30.0
DEFAULT_AZURE_API_VERSION = "2024-02-15-preview"

# Setting name -> environment variable
ENV_VARS: dict[str, str] = {
    "anthropic_api_key": "ANTHROPIC_API_KEY",
    "openai_api_key": "OPENAI_API_KEY",
    "groq_api_key": "GROQ_API_KEY",
    "azure_api_key": "AZURE_OPENAI_API_KEY",
    "azure_resource_name": "AZURE_OPENAI_RESOURCE",
    "azure_deployment_name": "AZURE_OPENAI_DEPLOYMENT",
    "azure_api_version": "AZURE_OPENAI_API_VERSION",
    "aws_access_key": "AMAZON_ACCESS_KEY",
    "aws_secret_key": "AMAZON_SECRET_ACCESS_KEY",
    "aws_region": "AMAZON_REGION",
}

SECRET_SETTINGS = {"anthropic_api_key", "openai_api_key", "groq_api_key", "azure_api_key", "aws_secret_key"}


@dataclass
class ProviderSettings:
    """
    Vendor credentials and connection options.

    Example YAML:
        anthropic_api_key: "sk-ant-..."
        openai_api_key: "sk-..."
        azure_api_key: "..."
        azure_resource_name: my-resource
        azure_deployment_name: gpt4
        azure_supports_images: false
        aws_region: eu-central-1
        timeout_seconds: 600
    """

    anthropic_api_key: str | None = None
    openai_api_key: str | None = None
    groq_api_key: str | None = None

    # Azure OpenAI
    azure_api_key: str | None = None
    azure_resource_name: str | None = None
    azure_deployment_name: str | None = None
    azure_api_version: str = DEFAULT_AZURE_API_VERSION
    azure_supports_images: bool = False

    # Amazon Bedrock
    aws_access_key: str | None = None
    aws_secret_key: str | None = None
    aws_region: str | None = None

    # Transport
    timeout_seconds: float = DEFAULT_TIMEOUT_SECONDS
    connect_timeout_seconds: float = DEFAULT_CONNECT_TIMEOUT_SECONDS

    @classmethod
    def from_env(cls, dotenv: bool = True, **overrides: Any) -> ProviderSettings:
        """Create settings from environment variables.

        A `.env` file found from the working directory upwards is loaded first
        unless `dotenv` is False. Variables already set take precedence.
        """
        if dotenv:
            load_dotenv(find_dotenv(usecwd=True))

        values: dict[str, Any] = {}
        for name, env_var in ENV_VARS.items():
            value = os.environ.get(env_var)
            if value:
                values[name] = value

        if os.environ.get("AZURE_OPENAI_SUPPORTS_IMAGES"):
            values["azure_supports_images"] = os.environ["AZURE_OPENAI_SUPPORTS_IMAGES"].lower() in (
                "1",
                "true",
                "yes",
            )
        if os.environ.get("LLM_RELAY_TIMEOUT"):
            values["timeout_seconds"] = float(os.environ["LLM_RELAY_TIMEOUT"])

        values.update(overrides)
        return cls(**values)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ProviderSettings:
        """Create settings from a dictionary. Unknown keys are ignored."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})

    @classmethod
    def from_yaml(cls, path: Path) -> ProviderSettings:
        """Load settings from a YAML file."""
        with open(path) as f:
            data = yaml.safe_load(f)
        return cls.from_dict(data or {})

    @classmethod
    def from_yaml_string(cls, content: str) -> ProviderSettings:
        """Load settings from a YAML string."""
        data = yaml.safe_load(content)
        return cls.from_dict(data or {})

    def to_dict(self, redact: bool = True) -> dict[str, Any]:
        """Convert settings to a dictionary, masking secrets unless ``redact`` is False."""
        result: dict[str, Any] = {}
        for f in fields(self):
            value = getattr(self, f.name)
            if redact and value and f.name in SECRET_SETTINGS:
                value = "***"
            result[f.name] = value
        return result

    def require(self, name: str) -> Any:
        """
        Get a mandatory setting.

        Raises:
            ConfigurationError: If the setting is not configured
        """
        value = getattr(self, name)
        if value is None or value == "":
            raise ConfigurationError(ENV_VARS.get(name, name))
        return value

    def has(self, *names: str) -> bool:
        """Check whether all named settings are configured."""
        return all(getattr(self, name) not in (None, "") for name in names)

    def timeout(self) -> httpx.Timeout:
        """Timeout applied to vendor HTTP clients."""
        return httpx.Timeout(self.timeout_seconds, connect=self.connect_timeout_seconds)
