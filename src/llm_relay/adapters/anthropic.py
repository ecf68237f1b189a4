"""
Anthropic adapter.

Translates requests into the Messages API format and turns the streamed
events back into text fragments and complete messages.
"""

from __future__ import annotations

import json
from collections.abc import AsyncIterable, Iterable, Iterator
from typing import Any, TypedDict

from anthropic import APIConnectionError, APIStatusError, AsyncAnthropic

from llm_relay.adapters.base import (
    LanguageModel,
    iterate_events,
    parse_arguments,
    payload_excerpt,
    require,
    status_error_body,
)
from llm_relay.errors import ProtocolError, ProviderError
from llm_relay.execution import MessageWriter, TextWriter
from llm_relay.logging import get_logger
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

logger = get_logger("adapters.anthropic")

DEFAULT_MAX_TOKENS = 4096

SONNET_35 = "claude-3-5-sonnet-20240620"
SONNET_3 = "claude-3-sonnet-20240229"
HAIKU_3 = "claude-3-haiku-20240307"
OPUS_3 = "claude-3-opus-20240229"

KNOWN_MODELS = [SONNET_35, SONNET_3, HAIKU_3, OPUS_3]


class AnthropicTool(TypedDict):
    """Anthropic tool definition."""

    name: str
    description: str | None
    input_schema: dict[str, Any]


class AnthropicMessage(TypedDict):
    """Anthropic message format."""

    role: str
    content: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# Request shaping
# ---------------------------------------------------------------------------


def role_for(message: Message) -> str:
    """Role a message is sent under.

    Return values always belong to the user side and invocations to the
    assistant side, whatever the surrounding messages are.
    """
    if isinstance(message, (ChatMessage, ImageMessage)):
        return message.role
    if isinstance(message, FunctionReturnValue):
        return "user"
    if isinstance(message, FunctionInvocation):
        return "assistant"
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def content_blocks_for(message: Message) -> list[dict[str, Any]]:
    """Content blocks representing one message."""
    if isinstance(message, ChatMessage):
        return [{"type": "text", "text": message.text}]
    if isinstance(message, ImageMessage):
        return [
            {
                "type": "image",
                "source": {
                    "type": "base64",
                    "media_type": message.mime_type,
                    "data": message.data,
                },
            }
        ]
    if isinstance(message, FunctionReturnValue):
        return [
            {
                "type": "tool_result",
                "tool_use_id": message.id,
                "is_error": not message.successful,
                "content": [{"type": "text", "text": message.result}],
            }
        ]
    if isinstance(message, FunctionInvocation):
        return [
            {
                "type": "tool_use",
                "id": message.id,
                "name": message.name,
                "input": message.parameters,
            }
        ]
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def merge_messages_with_identical_roles(messages: Iterable[Message]) -> Iterator[list[Message]]:
    """
    Group consecutive messages sharing a role.

    The Messages API rejects two user (or two assistant) turns in a row but
    accepts several content blocks per turn, so each group becomes one turn.
    """
    batch: list[Message] = []
    for message in messages:
        if not batch or role_for(message) == role_for(batch[-1]):
            batch.append(message)
            continue
        yield batch
        batch = [message]

    if batch:
        yield batch


def anthropic_messages_for(messages: Iterable[Message]) -> list[AnthropicMessage]:
    """Convert messages into role-merged Anthropic turns."""
    return [
        {
            "role": role_for(batch[0]),
            "content": [block for message in batch for block in content_blocks_for(message)],
        }
        for batch in merge_messages_with_identical_roles(messages)
    ]


def tool_for(function: Function) -> AnthropicTool:
    return {
        "name": function.name,
        "description": function.description,
        "input_schema": function.input_schema,
    }


def prefills_json(request: ChatRequest) -> bool:
    """
    Whether the reply is steered into JSON by a prefilled ``"{"``.

    A forced tool call replies with a ``tool_use`` block, so the prefill is
    left out when the request has a mandatory function.
    """
    return request.response_format is ResponseFormat.JSON and request.mandatory_function is None


def request_payload_for(request: ChatRequest, model: str | None) -> dict[str, Any]:
    """
    Build the Messages API request body.

    Args:
        request: The request to translate
        model: Model name, or None when the transport supplies it

    Returns:
        Keyword arguments for ``messages.create``
    """
    messages: list[Message] = list(request.messages)
    if prefills_json(request):
        # Prefill the assistant turn so the reply continues a JSON object
        messages.append(ChatMessage("assistant", "{"))

    payload: dict[str, Any] = {
        "messages": anthropic_messages_for(messages),
        "max_tokens": request.max_tokens or DEFAULT_MAX_TOKENS,
        "temperature": request.temperature,
        "stream": True,
    }

    if model is not None:
        payload["model"] = model

    if request.functions:
        payload["tools"] = [tool_for(f) for f in request.functions]

    if request.mandatory_function is not None:
        payload["tool_choice"] = {"type": "tool", "name": request.mandatory_function.name}

    if request.system_prompt is not None:
        payload["system"] = request.system_prompt

    if request.end_user_identifier is not None:
        payload["metadata"] = {"user_id": request.end_user_identifier}

    return payload


# ---------------------------------------------------------------------------
# Response parsing
# ---------------------------------------------------------------------------


async def process_response(
    request: ChatRequest,
    events: AsyncIterable[dict[str, Any]],
    write_text: TextWriter,
    write_message: MessageWriter,
    model: str = "anthropic",
) -> None:
    """
    Drive the writers from a stream of Messages API events.

    Text deltas are forwarded as they arrive and collected into the current
    text run. Tool-use argument fragments are concatenated verbatim and only
    parsed when their block stops.

    Raises:
        ProtocolError: If an event is missing an expected field
        ProviderError: If the stream carries an error event
    """
    function_id: str | None = None
    function_name: str | None = None
    arguments: list[str] = []
    text: list[str] = []

    if prefills_json(request):
        text.append("{")
        await write_text("{")

    async for event in events:
        event_type = require(event, "type", "stream event")

        if event_type == "content_block_start":
            block = require(event, "content_block", event_type)
            block_type = require(block, "type", "content block")

            if block_type == "tool_use":
                function_id = require(block, "id", "tool_use block")
                function_name = require(block, "name", "tool_use block")
                arguments.clear()
            elif block_type == "text":
                initial = require(block, "text", "text block")
                if initial:
                    text.append(initial)
                    await write_text(initial)

        elif event_type == "content_block_delta":
            delta = require(event, "delta", event_type)
            delta_type = require(delta, "type", "content block delta")

            if delta_type == "text_delta":
                fragment = require(delta, "text", delta_type)
                if fragment:
                    text.append(fragment)
                    await write_text(fragment)
            elif delta_type == "input_json_delta":
                arguments.append(require(delta, "partial_json", delta_type))

        elif event_type == "content_block_stop":
            if text:
                message = ChatMessage("assistant", "".join(text))
                text.clear()
                await write_message(message)

            if function_name is not None:
                if function_id is None:
                    raise ProtocolError(f"tool_use block for {function_name} has no id")
                invocation = FunctionInvocation(
                    id=function_id,
                    name=function_name,
                    parameters=parse_arguments("".join(arguments), function_name),
                )
                function_id = None
                function_name = None
                arguments.clear()
                await write_message(invocation)

        elif event_type == "message_stop":
            return

        elif event_type == "error":
            error = event.get("error") or {}
            raise ProviderError(model, None, json.dumps(error))

        # ping, message_start, message_delta and unknown events carry nothing we need


# ---------------------------------------------------------------------------
# Adapter
# ---------------------------------------------------------------------------


class AnthropicModel(LanguageModel):
    """
    Anthropic Messages API adapter.

    Example:
        from anthropic import AsyncAnthropic
        from llm_relay.adapters.anthropic import AnthropicModel, SONNET_35

        model = AnthropicModel(AsyncAnthropic(max_retries=0), SONNET_35)
        text = await model.complete(ChatRequest.from_prompt("Hello"))
    """

    def __init__(self, client: AsyncAnthropic, model: str) -> None:
        self.client = client
        self.model = model

    @property
    def identifier(self) -> str:
        return self.model

    def payload_for(self, request: ChatRequest) -> dict[str, Any]:
        return request_payload_for(request, self.model)

    async def run(
        self,
        request: ChatRequest,
        write_text: TextWriter,
        write_message: MessageWriter,
    ) -> None:
        payload = self.payload_for(request)
        logger.debug(
            "Sending %d turn(s) to %s", len(payload["messages"]), self.identifier
        )

        try:
            stream = await self.client.messages.create(**payload)
            try:
                await process_response(
                    request,
                    iterate_events(stream),
                    write_text,
                    write_message,
                    model=self.identifier,
                )
            finally:
                await stream.close()
        except APIStatusError as e:
            raise ProviderError(
                self.identifier, e.status_code, status_error_body(e), payload_excerpt(payload)
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                self.identifier, None, str(e), payload_excerpt(payload)
            ) from e
