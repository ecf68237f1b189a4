"""Tests for execution orchestration."""

from __future__ import annotations

import asyncio
import gc
from typing import Any

import pytest

from llm_relay.adapters.base import LanguageModel
from llm_relay.errors import ApprovalRequiredError, ProviderError
from llm_relay.execution import (
    DECLINED_MESSAGE,
    MessageWriter,
    TextWriter,
    concatenate_all,
    read_all,
    resolve_invocation,
)
from llm_relay.messages import (
    ChatMessage,
    ChatRequest,
    Function,
    FunctionInvocation,
    FunctionReturnValue,
)


class ScriptedModel(LanguageModel):
    """Model replaying one script per round.

    A script step is a text fragment (str), a message, an exception to raise
    or a zero-argument coroutine function to await.
    """

    def __init__(self, rounds: list[list[Any]]) -> None:
        self.rounds = rounds
        self.requests: list[ChatRequest] = []

    @property
    def identifier(self) -> str:
        return "scripted"

    async def run(
        self,
        request: ChatRequest,
        write_text: TextWriter,
        write_message: MessageWriter,
    ) -> None:
        self.requests.append(request)
        index = len(self.requests) - 1
        steps = self.rounds[index] if index < len(self.rounds) else []

        for step in steps:
            if isinstance(step, str):
                await write_text(step)
            elif isinstance(step, BaseException):
                raise step
            elif isinstance(step, (ChatMessage, FunctionInvocation, FunctionReturnValue)):
                await write_message(step)
            else:
                await step()


def guarded(name: str, implementation: Any = None) -> Function:
    return Function(
        name=name,
        description=f"{name} (needs approval)",
        input_schema={"type": "object"},
        requires_explicit_approval=True,
        implementation=implementation,
    )


@pytest.mark.asyncio
class TestSingleRound:
    """Executions that finish after one round."""

    async def test_text_only(self, simple_request: ChatRequest) -> None:
        """Should stream fragments and the final message."""
        model = ScriptedModel([["Hel", "lo", ChatMessage("assistant", "Hello")]])

        execution = model.execute(simple_request)
        fragments = await read_all(execution.read_text_fragments())
        messages = await read_all(execution.read_complete_messages())
        await execution.aclose()

        assert fragments == ["Hel", "lo"]
        assert messages == [ChatMessage("assistant", "Hello")]
        assert model.requests == [simple_request]
        assert execution.rounds == 1

    async def test_fragments_match_message_texts(self, simple_request: ChatRequest) -> None:
        """Concatenated fragments should equal the concatenated chat texts."""
        model = ScriptedModel(
            [
                [
                    "Let me ",
                    "look.",
                    ChatMessage("assistant", "Let me look."),
                    FunctionInvocation("call_1", "lookup", {}),
                    " Done",
                    ChatMessage("assistant", " Done"),
                ]
            ]
        )

        async with model.execute(simple_request) as execution:
            text = await concatenate_all(execution.read_text_fragments())
            messages = await read_all(execution.read_complete_messages())

        chat_text = "".join(m.text for m in messages if isinstance(m, ChatMessage))
        assert text == chat_text == "Let me look. Done"

    async def test_unknown_function_passes_through(self, calculator_request: ChatRequest) -> None:
        """Invocations of unknown functions should end the execution."""
        invocation = FunctionInvocation("call_1", "lookup", {"q": "x"})
        model = ScriptedModel([[invocation]])

        async with model.execute(calculator_request) as execution:
            messages = await read_all(execution.read_complete_messages())

        assert messages == [invocation]
        assert execution.rounds == 1
        assert len(model.requests) == 1

    async def test_descriptive_function_passes_through(self) -> None:
        """Invocations of functions without implementation should not be resolved."""
        function = Function(name="lookup", description=None, input_schema={"type": "object"})
        request = ChatRequest.from_prompt("Find x", functions=(function,))
        invocation = FunctionInvocation("call_1", "lookup", {})
        model = ScriptedModel([[invocation]])

        async with model.execute(request) as execution:
            messages = await read_all(execution.read_complete_messages())

        assert messages == [invocation]
        assert len(model.requests) == 1

    async def test_streams_can_be_read_again(self, simple_request: ChatRequest) -> None:
        """A drained stream should stay terminated for later readers."""
        model = ScriptedModel([["Hi", ChatMessage("assistant", "Hi")]])

        execution = model.execute(simple_request)
        await read_all(execution.read_complete_messages())

        assert await read_all(execution.read_complete_messages()) == []
        await execution.aclose()

    async def test_wait(self, simple_request: ChatRequest) -> None:
        """wait() should return once the execution finished."""
        model = ScriptedModel([["Hi", ChatMessage("assistant", "Hi")]])

        execution = model.execute(simple_request)
        await execution.wait()

        assert execution.done
        assert await read_all(execution.read_text_fragments()) == ["Hi"]

    async def test_complete(self, simple_request: ChatRequest) -> None:
        """complete() should return all generated text."""
        model = ScriptedModel([["Hel", "lo", ChatMessage("assistant", "Hello")]])

        assert await model.complete(simple_request) == "Hello"


@pytest.mark.asyncio
class TestContinuation:
    """Executions resolving functions and continuing."""

    async def test_add_numbers(self, calculator_request: ChatRequest) -> None:
        """Should resolve the call and continue with the result."""
        invocation = FunctionInvocation("call_1", "add", {"a": 2, "b": 3})
        answer = ChatMessage("assistant", "2 + 3 = 5")
        model = ScriptedModel([[invocation], ["2 + 3 = 5", answer]])

        async with model.execute(calculator_request) as execution:
            text = await concatenate_all(execution.read_text_fragments())
            messages = await read_all(execution.read_complete_messages())

        return_value = FunctionReturnValue("call_1", True, "5")
        assert messages == [invocation, return_value, answer]
        assert text == "2 + 3 = 5"
        assert execution.rounds == 2

        second = model.requests[1]
        assert second.messages == (*calculator_request.messages, invocation, return_value)
        assert second.system_prompt == calculator_request.system_prompt
        assert second.functions == calculator_request.functions
        # The submitted request is never modified
        assert len(calculator_request.messages) == 1

    async def test_resolution_starts_before_round_ends(self) -> None:
        """Implementations should run while the vendor is still streaming."""
        started = asyncio.Event()

        async def record(params: Any) -> str:
            started.set()
            return "recorded"

        function = Function(name="record", description=None, input_schema={}, implementation=record)
        request = ChatRequest.from_prompt("Go", functions=(function,))
        invocation = FunctionInvocation("call_1", "record", {})
        model = ScriptedModel(
            [
                [invocation, lambda: asyncio.wait_for(started.wait(), 1)],
                [ChatMessage("assistant", "ok")],
            ]
        )

        async with model.execute(request) as execution:
            messages = await read_all(execution.read_complete_messages())

        assert FunctionReturnValue("call_1", True, "recorded") in messages

    async def test_return_values_in_completion_order(self) -> None:
        """Return values should be emitted in the order their resolutions finish."""
        gate = asyncio.Event()

        async def slow(params: Any) -> str:
            await gate.wait()
            return "slow"

        async def fast(params: Any) -> str:
            gate.set()
            return "fast"

        request = ChatRequest.from_prompt(
            "Go",
            functions=(
                Function(name="slow", description=None, input_schema={}, implementation=slow),
                Function(name="fast", description=None, input_schema={}, implementation=fast),
            ),
        )
        model = ScriptedModel(
            [
                [FunctionInvocation("call_1", "slow", {}), FunctionInvocation("call_2", "fast", {})],
                [],
            ]
        )

        async with model.execute(request) as execution:
            messages = await read_all(execution.read_complete_messages())

        return_values = [m for m in messages if isinstance(m, FunctionReturnValue)]
        assert [v.id for v in return_values] == ["call_2", "call_1"]

    async def test_implementation_failure(self) -> None:
        """Failing implementations should produce failed return values."""

        async def broken(params: Any) -> str:
            raise ValueError("boom")

        function = Function(name="broken", description=None, input_schema={}, implementation=broken)
        request = ChatRequest.from_prompt("Go", functions=(function,))
        model = ScriptedModel([[FunctionInvocation("call_1", "broken", {})], ["Sorry"]])

        async with model.execute(request) as execution:
            messages = await read_all(execution.read_complete_messages())

        assert FunctionReturnValue("call_1", False, "boom") in messages
        assert execution.rounds == 2

    async def test_declined_approval(self) -> None:
        """Declined invocations should continue with a failed return value."""
        calls: list[Any] = []

        async def delete(params: Any) -> str:
            calls.append(params)
            return "deleted"

        async def decline(invocation: FunctionInvocation, function: Function) -> bool:
            return False

        request = ChatRequest.from_prompt(
            "Delete it",
            functions=(guarded("delete", delete),),
            function_approval=decline,
        )
        model = ScriptedModel([[FunctionInvocation("call_1", "delete", {})], ["Okay"]])

        async with model.execute(request) as execution:
            messages = await read_all(execution.read_complete_messages())

        assert FunctionReturnValue("call_1", False, DECLINED_MESSAGE) in messages
        assert calls == []
        assert len(model.requests) == 2

    async def test_missing_approval_is_fatal(self) -> None:
        """A guarded function without approval callback should fail the execution."""

        async def delete(params: Any) -> str:
            return "deleted"

        request = ChatRequest.from_prompt("Delete it", functions=(guarded("delete", delete),))
        invocation = FunctionInvocation("call_1", "delete", {})
        model = ScriptedModel([[invocation]])

        execution = model.execute(request)
        messages = execution.read_complete_messages()

        assert await messages.__anext__() == invocation
        with pytest.raises(ApprovalRequiredError, match="delete"):
            await messages.__anext__()
        with pytest.raises(ApprovalRequiredError):
            await read_all(execution.read_text_fragments())
        with pytest.raises(ApprovalRequiredError):
            await execution.aclose()
        assert len(model.requests) == 1


@pytest.mark.asyncio
class TestFailures:
    """Fatal failures surface on both streams."""

    async def test_provider_error_on_both_streams(self, simple_request: ChatRequest) -> None:
        """Should re-raise after the buffered items were delivered."""
        model = ScriptedModel([["Hi", ProviderError("scripted", 500, "boom")]])

        execution = model.execute(simple_request)
        fragments = execution.read_text_fragments()

        assert await fragments.__anext__() == "Hi"
        with pytest.raises(ProviderError):
            await fragments.__anext__()
        with pytest.raises(ProviderError):
            await read_all(execution.read_complete_messages())
        with pytest.raises(ProviderError) as exc_info:
            await execution.aclose()

        assert exc_info.value.status_code == 500

    async def test_context_manager_reraises_once(self, simple_request: ChatRequest) -> None:
        """The error seen by the consumer should propagate from the block."""
        error = ProviderError("scripted", 400, "bad request")
        model = ScriptedModel([[error]])

        with pytest.raises(ProviderError) as exc_info:
            async with model.execute(simple_request) as execution:
                await read_all(execution.read_complete_messages())

        assert exc_info.value is error

    async def test_failed_resolution_retrieved_when_round_fails(self) -> None:
        """A resolution failure preempted by an adapter failure should not leak."""
        reported: list[dict[str, Any]] = []
        loop = asyncio.get_running_loop()
        loop.set_exception_handler(lambda loop, context: reported.append(context))

        async def yield_once() -> None:
            await asyncio.sleep(0)

        async def delete(params: Any) -> str:
            return "deleted"

        request = ChatRequest.from_prompt("Delete it", functions=(guarded("delete", delete),))
        model = ScriptedModel(
            [
                [
                    FunctionInvocation("call_1", "delete", {}),
                    yield_once,
                    yield_once,
                    ProviderError("scripted", 502, "bad gateway"),
                ]
            ]
        )

        try:
            execution = model.execute(request)
            with pytest.raises(ProviderError):
                await execution.wait()
            del execution
            gc.collect()
        finally:
            loop.set_exception_handler(None)

        assert reported == []


@pytest.mark.asyncio
class TestCancellation:
    """Cancellation behaviour."""

    async def test_close_mid_stream(self, simple_request: ChatRequest) -> None:
        """Closing should complete both streams without error."""
        never = asyncio.Event()
        model = ScriptedModel([["partial", never.wait]])

        execution = model.execute(simple_request)
        fragments = execution.read_text_fragments()
        assert await fragments.__anext__() == "partial"

        await execution.aclose()

        assert await read_all(fragments) == []
        assert await read_all(execution.read_complete_messages()) == []
        assert execution.done

    async def test_cancellation_event(self, simple_request: ChatRequest) -> None:
        """Setting the cancellation event should end the execution cleanly."""
        never = asyncio.Event()
        cancellation = asyncio.Event()
        model = ScriptedModel([["partial", never.wait]])

        execution = model.execute(simple_request, cancellation=cancellation)
        fragments = execution.read_text_fragments()
        assert await fragments.__anext__() == "partial"

        cancellation.set()

        assert await read_all(fragments) == []
        assert await read_all(execution.read_complete_messages()) == []
        await execution.aclose()

    async def test_leaving_context_cancels(self, simple_request: ChatRequest) -> None:
        """Leaving the async with block should stop the execution."""
        never = asyncio.Event()
        model = ScriptedModel([["partial", never.wait]])

        async with model.execute(simple_request) as execution:
            fragments = execution.read_text_fragments()
            await fragments.__anext__()

        assert execution.done

    async def test_resolution_finishes_before_cancel(self) -> None:
        """Running implementations should complete, but no new round starts."""
        started = asyncio.Event()
        gate = asyncio.Event()
        finished: list[bool] = []

        async def slow(params: Any) -> str:
            started.set()
            await gate.wait()
            finished.append(True)
            return "done"

        request = ChatRequest.from_prompt(
            "Go",
            functions=(Function(name="slow", description=None, input_schema={}, implementation=slow),),
        )
        invocation = FunctionInvocation("call_1", "slow", {})
        model = ScriptedModel([[invocation], ["never sent"]])

        execution = model.execute(request)
        await asyncio.wait_for(started.wait(), 1)
        execution.cancel()
        await asyncio.sleep(0)
        gate.set()

        messages = await read_all(execution.read_complete_messages())
        await execution.aclose()

        assert finished == [True]
        assert messages == [invocation]
        assert len(model.requests) == 1

    async def test_cancel_before_first_round(self, simple_request: ChatRequest) -> None:
        """Cancelling right after execute should still complete both streams."""
        model = ScriptedModel([["never sent"]])

        execution = model.execute(simple_request)
        execution.cancel()

        assert await asyncio.wait_for(read_all(execution.read_text_fragments()), 1) == []
        assert await asyncio.wait_for(read_all(execution.read_complete_messages()), 1) == []
        await execution.aclose()
        assert model.requests == []

    async def test_cancellation_event_already_set(self, simple_request: ChatRequest) -> None:
        """An event set before execute should end the execution cleanly."""
        never = asyncio.Event()
        cancellation = asyncio.Event()
        cancellation.set()
        model = ScriptedModel([[never.wait]])

        execution = model.execute(simple_request, cancellation=cancellation)

        assert await asyncio.wait_for(read_all(execution.read_text_fragments()), 1) == []
        assert await asyncio.wait_for(read_all(execution.read_complete_messages()), 1) == []
        await execution.aclose()
        assert execution.done


@pytest.mark.asyncio
class TestResolveInvocation:
    """Tests for resolve_invocation."""

    async def test_unknown_function(self, calculator_request: ChatRequest) -> None:
        """Unknown functions should be left unresolved."""
        invocation = FunctionInvocation("call_1", "missing", {})

        assert await resolve_invocation(invocation, calculator_request) is None

    async def test_success(self, calculator_request: ChatRequest) -> None:
        """Should return the implementation's result."""
        invocation = FunctionInvocation("call_1", "add", {"a": 1, "b": 1})

        value = await resolve_invocation(invocation, calculator_request)

        assert value == FunctionReturnValue("call_1", True, "2")

    async def test_approved(self) -> None:
        """Approved invocations should run the implementation."""
        seen: list[str] = []

        async def approve(invocation: FunctionInvocation, function: Function) -> bool:
            seen.append(function.name)
            return True

        async def delete(params: Any) -> str:
            return "deleted"

        request = ChatRequest.from_prompt(
            "x", functions=(guarded("delete", delete),), function_approval=approve
        )

        value = await resolve_invocation(FunctionInvocation("call_1", "delete", {}), request)

        assert value == FunctionReturnValue("call_1", True, "deleted")
        assert seen == ["delete"]

    async def test_approval_callback_failure(self) -> None:
        """A failing approval callback should produce a failed return value."""

        async def explode(invocation: FunctionInvocation, function: Function) -> bool:
            raise RuntimeError("dialog closed")

        async def delete(params: Any) -> str:
            return "deleted"

        request = ChatRequest.from_prompt(
            "x", functions=(guarded("delete", delete),), function_approval=explode
        )

        value = await resolve_invocation(FunctionInvocation("call_1", "delete", {}), request)

        assert value is not None
        assert value.successful is False
        assert "exception happened during approval" in value.result
        assert "dialog closed" in value.result

    async def test_guarded_without_implementation(self) -> None:
        """Descriptive guarded functions should not ask for approval."""
        request = ChatRequest.from_prompt("x", functions=(guarded("delete"),))

        assert await resolve_invocation(FunctionInvocation("call_1", "delete", {}), request) is None
