"""
Azure OpenAI adapter.
"""

from __future__ import annotations

from openai import AsyncAzureOpenAI

from llm_relay.adapters.openai import OpenAIModelBase


class AzureOpenAIModel(OpenAIModelBase):
    """
    Azure OpenAI deployment.

    The deployment and API version are part of the client configuration; the
    identifier names the resource and deployment so several Azure models can
    be registered side by side.

    Example:
        from openai import AsyncAzureOpenAI

        client = AsyncAzureOpenAI(
            api_key=...,
            azure_endpoint="https://my-resource.openai.azure.com",
            azure_deployment="gpt4",
            api_version="2024-02-15-preview",
        )
        model = AzureOpenAIModel(client, "my-resource", "gpt4")
    """

    def __init__(
        self,
        client: AsyncAzureOpenAI,
        resource_name: str,
        deployment_name: str,
        supports_image_inputs: bool = False,
        supports_streaming: bool = True,
    ) -> None:
        super().__init__(client, deployment_name, supports_streaming=supports_streaming)
        self.resource_name = resource_name
        self.deployment_name = deployment_name
        self.supports_image_inputs = supports_image_inputs

    @property
    def identifier(self) -> str:
        return f"azure_{self.resource_name}_{self.deployment_name}"
