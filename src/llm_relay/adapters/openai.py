"""
OpenAI chat-completions adapter family.

The same protocol is spoken by OpenAI, Azure OpenAI and Groq. Variants share
:meth:`OpenAIModelBase.payload_for` and override it narrowly.
"""

from __future__ import annotations

import dataclasses
import json
from collections.abc import AsyncIterable, Iterable
from typing import Any, TypedDict

from openai import APIConnectionError, APIStatusError, AsyncOpenAI

from llm_relay.adapters.base import (
    LanguageModel,
    event_to_dict,
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

logger = get_logger("adapters.openai")

GPT_4 = "gpt-4"
GPT_4O = "gpt-4o"
GPT_35_TURBO = "gpt-3.5-turbo"
O1_PREVIEW = "o1-preview"

KNOWN_MODELS = [GPT_4, GPT_4O, GPT_35_TURBO, O1_PREVIEW]


class OpenAIFunction(TypedDict):
    """OpenAI function definition."""

    name: str
    description: str | None
    parameters: dict[str, Any]


class OpenAITool(TypedDict):
    """OpenAI tool definition."""

    type: str
    function: OpenAIFunction


def tool_for(function: Function) -> OpenAITool:
    return {
        "type": "function",
        "function": {
            "name": function.name,
            "description": function.description,
            "parameters": function.input_schema,
        },
    }


def message_payload_for(message: Message) -> dict[str, Any]:
    """Convert one message into the chat-completions format."""
    if isinstance(message, ChatMessage):
        return {"role": message.role, "content": message.text}
    if isinstance(message, ImageMessage):
        return {
            "role": message.role,
            "content": [
                {
                    "type": "image_url",
                    "image_url": {"url": f"data:{message.mime_type};base64,{message.data}"},
                }
            ],
        }
    if isinstance(message, FunctionInvocation):
        return {
            "role": "assistant",
            "content": None,
            "tool_calls": [
                {
                    "type": "function",
                    "id": message.id,
                    "function": {
                        "name": message.name,
                        "arguments": json.dumps(message.parameters),
                    },
                }
            ],
        }
    if isinstance(message, FunctionReturnValue):
        return {"role": "tool", "tool_call_id": message.id, "content": message.result}
    raise TypeError(f"Unsupported message type: {type(message).__name__}")


def messages_payload_for(messages: Iterable[Message]) -> list[dict[str, Any]]:
    """
    Convert a conversation into the chat-completions format.

    Consecutive function invocations, and an assistant text message directly
    followed by invocations, become one assistant message with several
    ``tool_calls``. Every ``tool`` message then follows the assistant message
    holding its call.
    """
    payload: list[dict[str, Any]] = []
    for message in messages:
        entry = message_payload_for(message)
        previous = payload[-1] if payload else None
        if (
            isinstance(message, FunctionInvocation)
            and previous is not None
            and previous["role"] == "assistant"
            and not isinstance(previous["content"], list)
        ):
            previous.setdefault("tool_calls", []).extend(entry["tool_calls"])
            continue
        payload.append(entry)
    return payload


class _PendingToolCall:
    __slots__ = ("id", "name", "arguments")

    def __init__(self, id: str | None, name: str | None) -> None:
        self.id = id
        self.name = name
        self.arguments: list[str] = []


async def process_stream(
    chunks: AsyncIterable[dict[str, Any]],
    write_text: TextWriter,
    write_message: MessageWriter,
) -> None:
    """
    Drive the writers from a stream of chat-completion chunks.

    Content deltas are forwarded verbatim. The current text run is flushed as
    an assistant message when tool-call deltas begin and at the end of the
    stream. Tool-call arguments are accumulated per index and each call is
    emitted once the stream ends, in the order the calls first appeared.

    Raises:
        ProtocolError: If a chunk is missing an expected field
    """
    text: list[str] = []
    tool_calls: dict[int, _PendingToolCall] = {}

    async def flush_text() -> None:
        if not text:
            return
        message = ChatMessage("assistant", "".join(text))
        text.clear()
        await write_message(message)

    async for chunk in chunks:
        choices = chunk.get("choices")
        if choices is None:
            raise ProtocolError("Missing 'choices' in chat completion chunk")
        if not choices:
            continue

        delta = choices[0].get("delta")
        if not delta:
            continue

        content = delta.get("content")
        if content:
            text.append(content)
            await write_text(content)

        deltas = delta.get("tool_calls")
        if deltas:
            await flush_text()

            for tool_call in deltas:
                index = tool_call.get("index")
                if index is None:
                    continue
                if not isinstance(index, int):
                    raise ProtocolError(f"Tool call index is not a number: {index!r}")

                function = require(tool_call, "function", "tool call delta")
                if "arguments" not in function:
                    raise ProtocolError("Missing 'arguments' in tool call delta")
                fragment = function["arguments"] or ""
                if not isinstance(fragment, str):
                    raise ProtocolError("Tool call arguments are not a string")

                pending = tool_calls.get(index)
                if pending is None:
                    pending = _PendingToolCall(tool_call.get("id"), function.get("name"))
                    tool_calls[index] = pending
                pending.arguments.append(fragment)

    await flush_text()

    for pending in tool_calls.values():
        if pending.id is None:
            raise ProtocolError("Missing 'id' in tool call")
        if pending.name is None:
            raise ProtocolError("Missing 'name' in tool call")
        await write_message(
            FunctionInvocation(
                id=pending.id,
                name=pending.name,
                parameters=parse_arguments("".join(pending.arguments), pending.name),
            )
        )


async def process_completion(
    completion: dict[str, Any],
    write_text: TextWriter,
    write_message: MessageWriter,
    model: str = "openai",
) -> None:
    """Drive the writers from a single, non-streamed chat completion."""
    if completion.get("object") is None:
        raise ProtocolError(f"{model}: Could not find object in response")
    if completion["object"] != "chat.completion":
        raise ProtocolError(
            f"{model}: expected chat.completion object but got {completion['object']}"
        )

    choices = completion.get("choices")
    if not choices:
        raise ProtocolError(f"{model}: Could not find choices in response")

    message = require(choices[0], "message", f"{model} first choice")
    role = require(message, "role", f"{model} message")
    content = message.get("content")
    tool_calls = message.get("tool_calls") or []

    if content is None and not tool_calls:
        raise ProtocolError(f"{model}: Could not find content in message in first choice")

    if content is not None:
        await write_text(content)
        await write_message(ChatMessage(role, content))

    for tool_call in tool_calls:
        function = require(tool_call, "function", f"{model} tool call")
        name = require(function, "name", f"{model} tool call")
        await write_message(
            FunctionInvocation(
                id=require(tool_call, "id", f"{model} tool call"),
                name=name,
                parameters=parse_arguments(function.get("arguments") or "", name),
            )
        )


class OpenAIModelBase(LanguageModel):
    """
    Shared chat-completions adapter.

    Args:
        client: SDK client (OpenAI, Azure or any compatible endpoint)
        model: Model name sent in the request body
        supports_streaming: Use server-sent events; otherwise one blocking call
    """

    def __init__(
        self,
        client: AsyncOpenAI,
        model: str,
        supports_streaming: bool = True,
    ) -> None:
        self.client = client
        self.model = model
        self.supports_streaming = supports_streaming

    @property
    def identifier(self) -> str:
        return self.model

    def payload_for(self, request: ChatRequest) -> dict[str, Any]:
        """Build the chat-completions request body."""
        messages: list[dict[str, Any]] = []
        if request.system_prompt is not None:
            messages.append({"role": "system", "content": request.system_prompt})
        messages.extend(messages_payload_for(request.messages))

        payload: dict[str, Any] = {
            "model": self.model,
            "temperature": request.temperature,
            "messages": messages,
            "stream": self.supports_streaming,
        }

        if request.end_user_identifier is not None:
            payload["user"] = request.end_user_identifier

        if request.functions:
            payload["tools"] = [tool_for(f) for f in request.functions]

        if request.response_format is ResponseFormat.JSON:
            payload["response_format"] = {"type": "json_object"}

        if request.max_tokens is not None:
            payload["max_tokens"] = request.max_tokens

        if request.mandatory_function is not None:
            payload["tool_choice"] = {
                "type": "function",
                "function": {"name": request.mandatory_function.name},
            }

        return payload

    async def run(
        self,
        request: ChatRequest,
        write_text: TextWriter,
        write_message: MessageWriter,
    ) -> None:
        payload = self.payload_for(request)
        logger.debug(
            "Sending %d message(s) to %s (stream=%s)",
            len(payload["messages"]),
            self.identifier,
            self.supports_streaming,
        )

        try:
            response = await self.client.chat.completions.create(**payload)
            if not self.supports_streaming:
                await process_completion(
                    event_to_dict(response), write_text, write_message, model=self.identifier
                )
                return

            try:
                await process_stream(iterate_events(response), write_text, write_message)
            finally:
                await response.close()
        except APIStatusError as e:
            raise ProviderError(
                self.identifier, e.status_code, status_error_body(e), payload_excerpt(payload)
            ) from e
        except APIConnectionError as e:
            raise ProviderError(
                self.identifier, None, str(e), payload_excerpt(payload)
            ) from e


class VanillaOpenAI(OpenAIModelBase):
    """
    OpenAI adapter.

    Example:
        from openai import AsyncOpenAI
        from llm_relay.adapters.openai import GPT_4O, VanillaOpenAI

        model = VanillaOpenAI(AsyncOpenAI(max_retries=0), GPT_4O)
    """

    pass


class ReasoningOpenAI(VanillaOpenAI):
    """
    Reasoning models (o1 family).

    These accept neither a system prompt nor a temperature other than 1 and
    do not stream, so the system prompt becomes the first user message.
    """

    def __init__(self, client: AsyncOpenAI, model: str = O1_PREVIEW) -> None:
        super().__init__(client, model, supports_streaming=False)

    def payload_for(self, request: ChatRequest) -> dict[str, Any]:
        if request.system_prompt is not None:
            request = request.with_messages(
                [ChatMessage("user", request.system_prompt), *request.messages]
            )
            request = dataclasses.replace(request, system_prompt=None)

        if request.temperature != 1:
            request = dataclasses.replace(request, temperature=1)

        return super().payload_for(request)
