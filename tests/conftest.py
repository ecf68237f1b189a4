"""Shared pytest fixtures for llm-relay tests."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any

import pytest

from llm_relay.messages import ChatMessage, ChatRequest, Function


class FakeStream:
    """Stand-in for an SDK event stream: async iterable with ``close()``."""

    def __init__(self, events: list[Any]) -> None:
        self.events = list(events)
        self.closed = False

    def __aiter__(self) -> FakeStream:
        return self

    async def __anext__(self) -> Any:
        if not self.events:
            raise StopAsyncIteration
        return self.events.pop(0)

    async def close(self) -> None:
        self.closed = True


class DumpedEvent:
    """Object exposing ``model_dump`` like the SDK's pydantic event types."""

    def __init__(self, data: dict[str, Any]) -> None:
        self.data = data

    def model_dump(self) -> dict[str, Any]:
        return self.data


async def add_numbers(params: dict[str, Any]) -> str:
    return str(params["a"] + params["b"])


ADD_SCHEMA = {
    "type": "object",
    "properties": {
        "a": {"type": "number"},
        "b": {"type": "number"},
    },
    "required": ["a", "b"],
}


@pytest.fixture
def fake_stream() -> Callable[[list[Any]], FakeStream]:
    """Factory for fake SDK streams."""
    return FakeStream


@pytest.fixture
def dumped_event() -> Callable[[dict[str, Any]], DumpedEvent]:
    """Factory for pydantic-like SDK events."""
    return DumpedEvent


@pytest.fixture
def add_function() -> Function:
    """A function adding two numbers."""
    return Function(
        name="add",
        description="Add two numbers",
        input_schema=ADD_SCHEMA,
        implementation=add_numbers,
    )


@pytest.fixture
def simple_request() -> ChatRequest:
    """A request with a single user message."""
    return ChatRequest(messages=(ChatMessage("user", "Hello"),))


@pytest.fixture
def calculator_request(add_function: Function) -> ChatRequest:
    """A request offering the add function."""
    return ChatRequest(
        messages=(ChatMessage("user", "What is 2 + 3?"),),
        system_prompt="You are a calculator.",
        functions=(add_function,),
    )
