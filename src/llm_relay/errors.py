"""
Exceptions raised by llm-relay.

Only transport and configuration failures escape an execution. Failures of
function implementations or approval callbacks are turned into failed
``FunctionReturnValue`` messages instead.
"""

from __future__ import annotations


class LanguageModelError(Exception):
    """Base class for all llm-relay errors."""

    pass


class ProviderError(LanguageModelError):
    """The vendor rejected a request or the transport failed."""

    def __init__(
        self,
        model: str,
        status_code: int | None,
        body: str = "",
        payload_excerpt: str = "",
    ) -> None:
        self.model = model
        self.status_code = status_code
        self.body = body
        self.payload_excerpt = payload_excerpt

        message = f"{model}: {status_code if status_code is not None else 'error'} {body}".rstrip()
        if payload_excerpt:
            message = f"{message} (request: {payload_excerpt})"
        super().__init__(message)


class ProtocolError(LanguageModelError):
    """A streamed event or response did not have the expected shape."""

    pass


class ApprovalRequiredError(LanguageModelError, ValueError):
    """A function requires explicit approval but no approval callback was given."""

    def __init__(self, function_name: str) -> None:
        self.function_name = function_name
        super().__init__(
            f"{function_name} requires explicit approval, "
            "but no approval mechanism was provided"
        )


class ConfigurationError(LanguageModelError):
    """A mandatory setting is missing."""

    def __init__(self, key: str) -> None:
        self.key = key
        super().__init__(f"No config found for {key}")
