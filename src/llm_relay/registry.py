"""
Registry of configured language models.

Models can be registered as instances or as lazy factories that receive the
provider settings the first time the model is requested.

Example:
    from llm_relay.config import ProviderSettings
    from llm_relay.registry import default_registry

    registry = default_registry(ProviderSettings.from_env())

    model = registry.get("gpt-4o")
    execution = model.execute(request)
"""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

from llm_relay.adapters.base import LanguageModel
from llm_relay.config import ProviderSettings
from llm_relay.logging import get_logger

logger = get_logger("registry")

# Type for model factory functions: (settings) -> LanguageModel
ModelFactory = Callable[[ProviderSettings], LanguageModel]


class _ModelEntry:
    """A registered model: the instance, or the factory that will build it."""

    __slots__ = ("vendor", "model", "factory")

    def __init__(
        self,
        vendor: str,
        model: LanguageModel | None = None,
        factory: ModelFactory | None = None,
    ) -> None:
        self.vendor = vendor
        self.model = model
        self.factory = factory


class ModelRegistry:
    """
    Language models by name.

    The first model registered is the default. Models registered through a
    factory are built from the registry's settings on first lookup, so
    vendors whose credentials are missing only fail when they are used.

    Args:
        settings: Provider settings passed to factories
    """

    def __init__(self, settings: ProviderSettings | None = None) -> None:
        self.settings = settings
        self._entries: dict[str, _ModelEntry] = {}
        self._default_name: str | None = None

    def _add(self, name: str, entry: _ModelEntry) -> None:
        if not name:
            raise ValueError("Model name must not be empty")
        if name in self._entries:
            logger.debug("Replacing model %s", name)
        self._entries[name] = entry
        if self._default_name is None:
            self._default_name = name

    def register(self, name: str, model: LanguageModel, vendor: str = "") -> None:
        """
        Register a ready model.

        Raises:
            ValueError: If name is empty
        """
        self._add(name, _ModelEntry(vendor, model=model))

    def register_factory(self, name: str, factory: ModelFactory, vendor: str = "") -> None:
        """
        Register a model that is built on first lookup.

        Raises:
            ValueError: If name is empty
        """
        self._add(name, _ModelEntry(vendor, factory=factory))

    def get(self, name: str) -> LanguageModel:
        """
        Look up a model, building it from its factory on first use.

        Raises:
            KeyError: If the model is not registered
            RuntimeError: If a factory needs settings but the registry has none
            ConfigurationError: If the factory misses a mandatory setting
        """
        entry = self._entries.get(name)
        if entry is None:
            available = ", ".join(self._entries) or "(none)"
            raise KeyError(f"Model '{name}' not found. Available: {available}")

        if entry.model is None:
            if self.settings is None:
                raise RuntimeError(f"Model '{name}' requires provider settings for creation")
            logger.debug("Building model %s (%s)", name, entry.vendor or "custom")
            entry.model = entry.factory(self.settings)
        return entry.model

    @property
    def default_name(self) -> str | None:
        return self._default_name

    def list_models(self) -> list[str]:
        """Registered names, in registration order."""
        return list(self._entries)

    def get_info(self, name: str) -> dict[str, Any]:
        """Name, vendor, whether the model was built and whether it is the default."""
        entry = self._entries[name]
        return {
            "name": name,
            "vendor": entry.vendor,
            "built": entry.model is not None,
            "is_default": name == self._default_name,
        }

    def __len__(self) -> int:
        return len(self._entries)


# ---------------------------------------------------------------------------
# Built-in vendors
# ---------------------------------------------------------------------------


def anthropic_client(settings: ProviderSettings) -> Any:
    from anthropic import AsyncAnthropic

    return AsyncAnthropic(
        api_key=settings.require("anthropic_api_key"),
        timeout=settings.timeout(),
        max_retries=0,
    )


def bedrock_client(settings: ProviderSettings) -> Any:
    from anthropic import AsyncAnthropicBedrock

    return AsyncAnthropicBedrock(
        aws_access_key=settings.require("aws_access_key"),
        aws_secret_key=settings.require("aws_secret_key"),
        aws_region=settings.require("aws_region"),
        timeout=settings.timeout(),
        max_retries=0,
    )


def openai_client(settings: ProviderSettings) -> Any:
    from openai import AsyncOpenAI

    return AsyncOpenAI(
        api_key=settings.require("openai_api_key"),
        timeout=settings.timeout(),
        max_retries=0,
    )


def groq_client(settings: ProviderSettings) -> Any:
    from openai import AsyncOpenAI

    from llm_relay.adapters.groq import BASE_URL

    return AsyncOpenAI(
        api_key=settings.require("groq_api_key"),
        base_url=BASE_URL,
        timeout=settings.timeout(),
        max_retries=0,
    )


def azure_client(settings: ProviderSettings) -> Any:
    from openai import AsyncAzureOpenAI

    resource = settings.require("azure_resource_name")
    return AsyncAzureOpenAI(
        api_key=settings.require("azure_api_key"),
        azure_endpoint=f"https://{resource}.openai.azure.com",
        azure_deployment=settings.require("azure_deployment_name"),
        api_version=settings.azure_api_version,
        timeout=settings.timeout(),
        max_retries=0,
    )


class _SharedClient:
    """Creates a vendor client once and hands it to every model of that vendor."""

    def __init__(self, build: Callable[[ProviderSettings], Any]) -> None:
        self._build = build
        self._client: Any = None

    def __call__(self, settings: ProviderSettings) -> Any:
        if self._client is None:
            self._client = self._build(settings)
        return self._client


def default_registry(
    settings: ProviderSettings,
    include_unconfigured: bool = False,
) -> ModelRegistry:
    """
    Create a registry with the built-in models of every configured vendor.

    Args:
        settings: Provider settings used by the factories
        include_unconfigured: Also register vendors whose credentials are
            missing; requesting such a model raises ConfigurationError

    Returns:
        A ModelRegistry with lazy factories
    """
    from llm_relay.adapters import anthropic, bedrock, groq, openai
    from llm_relay.adapters.azure import AzureOpenAIModel

    registry = ModelRegistry(settings)

    def enabled(*names: str) -> bool:
        return include_unconfigured or settings.has(*names)

    if enabled("anthropic_api_key"):
        anthropic_shared = _SharedClient(anthropic_client)
        for name in anthropic.KNOWN_MODELS:
            registry.register_factory(
                name,
                lambda s, n=name: anthropic.AnthropicModel(anthropic_shared(s), n),
                vendor="anthropic",
            )

    if enabled("openai_api_key"):
        openai_shared = _SharedClient(openai_client)
        for name in openai.KNOWN_MODELS:
            if name == openai.O1_PREVIEW:
                factory = lambda s, n=name: openai.ReasoningOpenAI(openai_shared(s), n)  # noqa: E731
            else:
                factory = lambda s, n=name: openai.VanillaOpenAI(openai_shared(s), n)  # noqa: E731
            registry.register_factory(name, factory, vendor="openai")

    if enabled("groq_api_key"):
        groq_shared = _SharedClient(groq_client)
        for name in groq.KNOWN_MODELS:
            registry.register_factory(
                name,
                lambda s, n=name: groq.GroqModel(groq_shared(s), n),
                vendor="groq",
            )

    if enabled("azure_api_key", "azure_resource_name", "azure_deployment_name"):
        resource = settings.azure_resource_name or "resource"
        deployment = settings.azure_deployment_name or "deployment"
        registry.register_factory(
            f"azure_{resource}_{deployment}",
            lambda s: AzureOpenAIModel(
                azure_client(s),
                s.require("azure_resource_name"),
                s.require("azure_deployment_name"),
                supports_image_inputs=s.azure_supports_images,
            ),
            vendor="azure",
        )

    if enabled("aws_access_key", "aws_secret_key", "aws_region"):
        bedrock_shared = _SharedClient(bedrock_client)
        for name in bedrock.KNOWN_MODELS:
            registry.register_factory(
                f"bedrock_{name}",
                lambda s, n=name: bedrock.BedrockModel(bedrock_shared(s), n),
                vendor="bedrock",
            )

    logger.debug("Default registry created with %d model(s)", len(registry))
    return registry
