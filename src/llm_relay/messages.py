"""
Vendor-neutral conversation model.

A conversation is an ordered sequence of messages. Four kinds exist:

    ChatMessage          a text turn (user, assistant, ...)
    ImageMessage         an image turn, base64 payload plus MIME type
    FunctionInvocation   the model asking for a function to be called
    FunctionReturnValue  the outcome of such a call, fed back to the model

Example:
    from llm_relay.messages import ChatMessage, ChatRequest, Function

    async def add(params):
        return str(params["a"] + params["b"])

    request = ChatRequest(
        system_prompt="You are a calculator.",
        messages=(ChatMessage("user", "What is 2 + 3?"),),
        functions=(
            Function(
                name="add",
                description="Add two numbers",
                input_schema={"type": "object", "properties": {...}},
                implementation=add,
            ),
        ),
    )
"""

from __future__ import annotations

import dataclasses
from collections.abc import Awaitable, Callable, Iterable
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Union


class ResponseFormat(str, Enum):
    """Response format hints understood by the adapters."""

    JSON = "json"


@dataclass(frozen=True)
class ChatMessage:
    """A text turn."""

    role: str  # "user", "assistant", ...
    text: str


@dataclass(frozen=True)
class ImageMessage:
    """An image turn. ``data`` is the base64 encoded payload."""

    role: str
    mime_type: str
    data: str


@dataclass(frozen=True)
class FunctionInvocation:
    """A function call issued by the model.

    ``id`` is assigned by the vendor and is unique within a conversation.
    ``parameters`` is the parsed argument document; it is not validated
    against the function's input schema.
    """

    id: str
    name: str
    parameters: Any


@dataclass(frozen=True)
class FunctionReturnValue:
    """Result of resolving a :class:`FunctionInvocation` with the same ``id``.

    On failure ``result`` holds a description of the error meant for the model.
    """

    id: str
    successful: bool
    result: str


Message = Union[ChatMessage, ImageMessage, FunctionInvocation, FunctionReturnValue]

FunctionImplementation = Callable[[Any], Awaitable[str]]


@dataclass(frozen=True)
class Function:
    """A callable capability exposed to the model.

    Entries without an ``implementation`` are descriptive only: the model can
    be told about them, but invocations are never executed and pass through
    unresolved.
    """

    name: str
    description: str | None
    input_schema: dict[str, Any]
    requires_explicit_approval: bool = False
    implementation: FunctionImplementation | None = field(default=None, compare=False)


FunctionApproval = Callable[[FunctionInvocation, Function], Awaitable[bool]]


@dataclass(frozen=True)
class ChatRequest:
    """An immutable request for one execution.

    Continuation rounds never mutate a request; they derive a new one with
    :meth:`with_messages`.
    """

    messages: tuple[Message, ...]
    system_prompt: str | None = None
    response_format: ResponseFormat | None = None
    temperature: float = 0.0
    max_tokens: int | None = None
    functions: tuple[Function, ...] = ()
    mandatory_function: Function | None = None
    end_user_identifier: str | None = None
    function_approval: FunctionApproval | None = field(default=None, compare=False)

    def __post_init__(self) -> None:
        # Accept any iterable from callers, store tuples
        object.__setattr__(self, "messages", tuple(self.messages))
        object.__setattr__(self, "functions", tuple(self.functions))

        seen: set[str] = set()
        for function in self.functions:
            if function.name in seen:
                raise ValueError(f"Duplicate function name in request: {function.name}")
            seen.add(function.name)

    @classmethod
    def from_prompt(cls, prompt: str, **kwargs: Any) -> ChatRequest:
        """Create a request holding a single user message."""
        return cls(messages=(ChatMessage("user", prompt),), **kwargs)

    def with_messages(self, messages: Iterable[Message]) -> ChatRequest:
        """Return a copy of this request with a different message list."""
        return dataclasses.replace(self, messages=tuple(messages))

    def find_function(self, name: str) -> Function | None:
        """Look up a catalog entry by name."""
        for function in self.functions:
            if function.name == name:
                return function
        return None
