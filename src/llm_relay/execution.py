"""
Execution orchestration.

An :class:`ExecutionInProgress` is returned as soon as a request is submitted.
A single background task drives the vendor adapter and feeds two independent
streams: raw text fragments and complete messages. When the model invokes
functions, the implementations are resolved and a new round is started with
the extended conversation, transparently continuing both streams.

Example:
    execution = model.execute(request)
    async with execution:
        async for fragment in execution.read_text_fragments():
            print(fragment, end="", flush=True)

        messages = await read_all(execution.read_complete_messages())
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any, Generic, TypeVar

from llm_relay.errors import ApprovalRequiredError
from llm_relay.logging import get_logger
from llm_relay.messages import (
    ChatRequest,
    FunctionInvocation,
    FunctionReturnValue,
    Message,
)

logger = get_logger("execution")

T = TypeVar("T")

TextWriter = Callable[[str], Awaitable[None]]
MessageWriter = Callable[[Message], Awaitable[None]]
ResponseRunner = Callable[[ChatRequest, TextWriter, MessageWriter], Awaitable[None]]

DECLINED_MESSAGE = "user manually declined function invocation request"

_COMPLETED = object()


class _Channel(Generic[T]):
    """Unbounded single-writer, single-reader channel.

    Writes never block. Completing the channel with an error re-raises that
    error to the reader once the buffered items are drained.
    """

    def __init__(self) -> None:
        self._queue: asyncio.Queue[Any] = asyncio.Queue()
        self._completed = False
        self._error: BaseException | None = None

    @property
    def completed(self) -> bool:
        return self._completed

    def write(self, item: T) -> None:
        if self._completed:
            raise RuntimeError("Cannot write to a completed channel")
        self._queue.put_nowait(item)

    def complete(self, error: BaseException | None = None) -> None:
        if self._completed:
            return
        self._completed = True
        self._error = error
        self._queue.put_nowait(_COMPLETED)

    async def read_all(self) -> AsyncIterator[T]:
        while True:
            item = await self._queue.get()
            if item is _COMPLETED:
                # Keep the marker so later readers also terminate
                self._queue.put_nowait(_COMPLETED)
                if self._error is not None:
                    raise self._error
                return
            yield item


async def resolve_invocation(
    invocation: FunctionInvocation,
    request: ChatRequest,
) -> FunctionReturnValue | None:
    """
    Resolve one function invocation against the request's function catalog.

    Returns None when the function is unknown or has no implementation; the
    invocation is then left for the caller to interpret.

    Raises:
        ApprovalRequiredError: If the function requires approval and the
            request carries no approval callback.
    """
    function = request.find_function(invocation.name)
    if function is None or function.implementation is None:
        logger.debug("No implementation for %s, leaving invocation unresolved", invocation.name)
        return None

    if function.requires_explicit_approval:
        if request.function_approval is None:
            raise ApprovalRequiredError(invocation.name)

        try:
            approved = await request.function_approval(invocation, function)
        except Exception as e:
            logger.warning("Approval callback failed for %s: %s", invocation.name, e)
            return FunctionReturnValue(
                invocation.id,
                False,
                "user wanted to manually approve this request, "
                f"but an exception happened during approval: {e!r}",
            )

        if not approved:
            logger.info("Invocation of %s declined", invocation.name)
            return FunctionReturnValue(invocation.id, False, DECLINED_MESSAGE)

    try:
        result = await function.implementation(invocation.parameters)
    except Exception as e:
        logger.warning("Function %s failed: %s", invocation.name, e)
        return FunctionReturnValue(invocation.id, False, str(e))

    return FunctionReturnValue(invocation.id, True, result)


class ExecutionInProgress:
    """
    Handle for a running execution.

    Both streams can be consumed concurrently and at different rates. Closing
    the handle cancels the background task and waits for it to settle.

    Args:
        request: The request for the first round.
        runner: Adapter callable performing one round trip to the vendor.
        cancellation: Optional event; setting it cancels the execution.
    """

    def __init__(
        self,
        request: ChatRequest,
        runner: ResponseRunner,
        cancellation: asyncio.Event | None = None,
    ) -> None:
        self._runner = runner
        self._text_fragments: _Channel[str] = _Channel()
        self._complete_messages: _Channel[Message] = _Channel()
        self._error: BaseException | None = None
        self.rounds = 0
        self._task = asyncio.get_running_loop().create_task(self._execute(request))
        # Runs even if the task is cancelled before _execute starts
        self._task.add_done_callback(self._on_task_done)
        self._watcher: asyncio.Task[None] | None = None
        if cancellation is not None:
            self._watcher = asyncio.get_running_loop().create_task(
                self._cancel_when_set(cancellation)
            )

    # -- consumer API ------------------------------------------------------

    def read_text_fragments(self) -> AsyncIterator[str]:
        """Incremental text in generation order."""
        return self._text_fragments.read_all()

    def read_complete_messages(self) -> AsyncIterator[Message]:
        """Chat turns, function invocations and return values as they complete."""
        return self._complete_messages.read_all()

    @property
    def done(self) -> bool:
        return self._task.done()

    def cancel(self) -> None:
        """Request cancellation without waiting for it."""
        self._task.cancel()

    async def aclose(self) -> None:
        """Cancel the execution and wait for it to finish.

        Cancellation is swallowed. Any other failure of the execution is
        re-raised.
        """
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        finally:
            self._complete(None)
            if self._watcher is not None:
                self._watcher.cancel()

        if self._error is not None:
            raise self._error

    async def wait(self) -> None:
        """Wait for the execution to finish without cancelling it."""
        try:
            await asyncio.shield(self._task)
        except asyncio.CancelledError:
            if not self._task.done():
                raise
        if self._error is not None:
            raise self._error

    async def __aenter__(self) -> ExecutionInProgress:
        return self

    async def __aexit__(self, exc_type: Any, exc_value: Any, traceback: Any) -> None:
        try:
            await self.aclose()
        except Exception as error:
            if error is not exc_value:
                raise

    # -- background task ---------------------------------------------------

    async def _cancel_when_set(self, cancellation: asyncio.Event) -> None:
        await cancellation.wait()
        logger.debug("Cancellation requested")
        self._task.cancel()

    def _on_task_done(self, task: asyncio.Task[None]) -> None:
        self._complete(self._error)
        if self._watcher is not None:
            self._watcher.cancel()

    def _complete(self, error: BaseException | None) -> None:
        self._text_fragments.complete(error)
        self._complete_messages.complete(error)

    async def _execute(self, request: ChatRequest) -> None:
        try:
            await self._run_round(request)
        except asyncio.CancelledError:
            logger.debug("Execution cancelled after %d round(s)", self.rounds)
        except Exception as e:
            logger.exception("Execution failed in round %d", self.rounds)
            self._error = e

    async def _run_round(self, request: ChatRequest) -> None:
        self.rounds += 1
        round_number = self.rounds
        logger.debug(
            "Starting round %d with %d message(s)", round_number, len(request.messages)
        )

        received: list[Message] = []
        return_values: list[FunctionReturnValue] = []
        resolutions: list[asyncio.Task[None]] = []

        async def resolve(invocation: FunctionInvocation) -> None:
            value = await resolve_invocation(invocation, request)
            if value is not None:
                return_values.append(value)

        async def write_text(text: str) -> None:
            self._text_fragments.write(text)

        async def write_message(message: Message) -> None:
            received.append(message)
            if isinstance(message, FunctionInvocation):
                resolutions.append(asyncio.create_task(resolve(message)))
            self._complete_messages.write(message)

        try:
            await self._runner(request, write_text, write_message)
            await self._wait_for_resolutions(resolutions)
        finally:
            for task in resolutions:
                if not task.done():
                    task.cancel()
                elif not task.cancelled():
                    # Retrieve failures so they are not reported as unhandled
                    task.exception()

        if not return_values:
            logger.debug("Round %d finished without function results", round_number)
            return

        for value in return_values:
            self._complete_messages.write(value)

        logger.info(
            "Round %d resolved %d function call(s), continuing", round_number, len(return_values)
        )
        await self._run_round(
            request.with_messages([*request.messages, *received, *return_values])
        )

    @staticmethod
    async def _wait_for_resolutions(resolutions: list[asyncio.Task[None]]) -> None:
        if not resolutions:
            return

        gathered = asyncio.gather(*resolutions)
        try:
            await asyncio.shield(gathered)
        except asyncio.CancelledError:
            # Resolutions in flight finish before cancellation is honoured
            await asyncio.wait([gathered])
            if not gathered.cancelled():
                gathered.exception()
            raise


async def concatenate_all(fragments: AsyncIterator[str]) -> str:
    """Drain a text stream into one string."""
    parts = [fragment async for fragment in fragments]
    return "".join(parts)


async def read_all(items: AsyncIterator[T]) -> list[T]:
    """Drain a stream into a list."""
    return [item async for item in items]
