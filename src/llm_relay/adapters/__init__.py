"""
Vendor adapters.

Each adapter translates requests into one vendor's wire format and turns the
vendor's (streamed) response back into text fragments and complete messages.
"""

from llm_relay.adapters.anthropic import AnthropicModel
from llm_relay.adapters.azure import AzureOpenAIModel
from llm_relay.adapters.base import LanguageModel
from llm_relay.adapters.bedrock import BedrockModel
from llm_relay.adapters.groq import GroqModel
from llm_relay.adapters.openai import OpenAIModelBase, ReasoningOpenAI, VanillaOpenAI

__all__ = [
    "AnthropicModel",
    "AzureOpenAIModel",
    "BedrockModel",
    "GroqModel",
    "LanguageModel",
    "OpenAIModelBase",
    "ReasoningOpenAI",
    "VanillaOpenAI",
]
