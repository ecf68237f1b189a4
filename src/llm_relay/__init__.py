"""
llm-relay - provider-agnostic streaming chat execution for LLM vendors.

Send one conversational request to Anthropic, OpenAI, Azure OpenAI, Groq or
Amazon Bedrock and consume a normalized result: text fragments as they are
generated and complete messages (chat turns, function invocations, function
results) as they are finalized. Function calls issued by the model are
resolved against the request's function catalog and fed back automatically.

Example:
    from llm_relay import ChatRequest, ProviderSettings, default_registry

    registry = default_registry(ProviderSettings.from_env())
    model = registry.get("claude-3-5-sonnet-20240620")

    async with model.execute(ChatRequest.from_prompt("Hello!")) as execution:
        async for fragment in execution.read_text_fragments():
            print(fragment, end="")
"""

from llm_relay.adapters import (
    AnthropicModel,
    AzureOpenAIModel,
    BedrockModel,
    GroqModel,
    LanguageModel,
    OpenAIModelBase,
    ReasoningOpenAI,
    VanillaOpenAI,
)
from llm_relay.config import ProviderSettings
from llm_relay.errors import (
    ApprovalRequiredError,
    ConfigurationError,
    LanguageModelError,
    ProtocolError,
    ProviderError,
)
from llm_relay.execution import (
    DECLINED_MESSAGE,
    ExecutionInProgress,
    concatenate_all,
    read_all,
    resolve_invocation,
)
from llm_relay.logging import get_logger, setup_logging
from llm_relay.messages import (
    ChatMessage,
    ChatRequest,
    Function,
    FunctionInvocation,
    FunctionReturnValue,
    ImageMessage,
    Message,
    ResponseFormat,
)
from llm_relay.registry import ModelRegistry, default_registry

__version__ = "0.1.0"

__all__ = [
    # Messages
    "ChatMessage",
    "ChatRequest",
    "Function",
    "FunctionInvocation",
    "FunctionReturnValue",
    "ImageMessage",
    "Message",
    "ResponseFormat",
    # Execution
    "DECLINED_MESSAGE",
    "ExecutionInProgress",
    "concatenate_all",
    "read_all",
    "resolve_invocation",
    # Adapters
    "AnthropicModel",
    "AzureOpenAIModel",
    "BedrockModel",
    "GroqModel",
    "LanguageModel",
    "OpenAIModelBase",
    "ReasoningOpenAI",
    "VanillaOpenAI",
    # Registry & config
    "ModelRegistry",
    "ProviderSettings",
    "default_registry",
    # Errors
    "ApprovalRequiredError",
    "ConfigurationError",
    "LanguageModelError",
    "ProtocolError",
    "ProviderError",
    # Logging
    "get_logger",
    "setup_logging",
]
