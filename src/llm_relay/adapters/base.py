"""
Base language model adapter interface.
"""

from __future__ import annotations

import asyncio
import json
from abc import ABC, abstractmethod
from collections.abc import AsyncIterable, AsyncIterator
from typing import Any

from llm_relay.errors import ProtocolError
from llm_relay.execution import (
    ExecutionInProgress,
    MessageWriter,
    TextWriter,
    concatenate_all,
)
from llm_relay.logging import get_logger
from llm_relay.messages import ChatRequest

logger = get_logger("adapters")

PAYLOAD_EXCERPT_LENGTH = 500


class LanguageModel(ABC):
    """
    Abstract base class for vendor adapters.

    An adapter performs exactly one round trip per call to :meth:`run`. The
    orchestration (function resolution, continuation rounds, the two output
    streams) is provided by :meth:`execute`.

    Example implementation for a custom provider:

        class EchoModel(LanguageModel):
            identifier = "echo"

            async def run(self, request, write_text, write_message):
                text = request.messages[-1].text
                await write_text(text)
                await write_message(ChatMessage("assistant", text))
    """

    supports_function_calls: bool = True
    supports_image_inputs: bool = True

    @property
    @abstractmethod
    def identifier(self) -> str:
        """Model identifier, unique per configured model instance."""
        ...

    @abstractmethod
    async def run(
        self,
        request: ChatRequest,
        write_text: TextWriter,
        write_message: MessageWriter,
    ) -> None:
        """
        Perform one round trip against the vendor.

        Args:
            request: The request for this round
            write_text: Receives text fragments in generation order
            write_message: Receives each message once it is complete

        Raises:
            ProviderError: If the vendor rejects the request
            ProtocolError: If the response stream is malformed
        """
        ...

    def execute(
        self,
        request: ChatRequest,
        cancellation: asyncio.Event | None = None,
    ) -> ExecutionInProgress:
        """
        Start executing a request in the background.

        Must be called from within a running event loop.

        Args:
            request: The initial request
            cancellation: Optional event that cancels the execution when set

        Returns:
            A handle exposing the text-fragment and complete-message streams
        """
        logger.debug("Executing request on %s", self.identifier)
        return ExecutionInProgress(request, self.run, cancellation)

    async def complete(self, request: ChatRequest) -> str:
        """Execute a request and return all generated text."""
        async with self.execute(request) as execution:
            return await concatenate_all(execution.read_text_fragments())

    def __repr__(self) -> str:
        return f"{type(self).__name__}({self.identifier!r})"


def payload_excerpt(payload: dict[str, Any]) -> str:
    """First characters of a request payload, for error reports."""
    return json.dumps(payload, default=str)[:PAYLOAD_EXCERPT_LENGTH]


def status_error_body(error: Any) -> str:
    """Error body of an SDK status error as text."""
    body = getattr(error, "body", None)
    if body is None:
        return str(getattr(error, "message", error))
    if isinstance(body, str):
        return body
    return json.dumps(body, default=str)


def event_to_dict(event: Any) -> dict[str, Any]:
    """Convert an SDK event model into a plain dict."""
    if isinstance(event, dict):
        return event
    model_dump = getattr(event, "model_dump", None)
    if model_dump is None:
        raise ProtocolError(f"Unexpected event type: {type(event).__name__}")
    return model_dump()


async def iterate_events(stream: AsyncIterable[Any]) -> AsyncIterator[dict[str, Any]]:
    """Iterate an SDK stream as plain dicts."""
    async for event in stream:
        yield event_to_dict(event)


def require(data: dict[str, Any], key: str, context: str) -> Any:
    """Get a mandatory field from an event, raising ProtocolError if absent."""
    if not isinstance(data, dict) or data.get(key) is None:
        raise ProtocolError(f"Missing '{key}' in {context}")
    return data[key]


def parse_arguments(raw: str, function_name: str) -> Any:
    """Parse the accumulated argument text of a function call."""
    if not raw.strip():
        return {}
    try:
        return json.loads(raw)
    except json.JSONDecodeError as e:
        raise ProtocolError(f"Invalid arguments for {function_name}: {e}") from e
