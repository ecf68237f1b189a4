"""
Anthropic models hosted on Amazon Bedrock.

Requires the 'bedrock' extra: pip install llm-relay[bedrock]
"""

from __future__ import annotations

from anthropic import AsyncAnthropicBedrock

from llm_relay.adapters.anthropic import AnthropicModel

SONNET_3 = "anthropic.claude-3-sonnet-20240229-v1:0"

KNOWN_MODELS = [SONNET_3]


class BedrockModel(AnthropicModel):
    """
    Bedrock adapter speaking the Anthropic Messages protocol.

    The Bedrock client supplies the API version and routes by model id, so
    request shaping and stream parsing are shared with :class:`AnthropicModel`.

    Example:
        from anthropic import AsyncAnthropicBedrock

        client = AsyncAnthropicBedrock(aws_region="us-east-1")
        model = BedrockModel(client, SONNET_3)
    """

    def __init__(self, client: AsyncAnthropicBedrock, model: str) -> None:
        super().__init__(client, model)  # type: ignore[arg-type]

    @property
    def identifier(self) -> str:
        return f"bedrock_{self.model}"
