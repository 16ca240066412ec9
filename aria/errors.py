from __future__ import annotations

from enum import Enum


class AriaError(Exception):
    """Base class for every typed failure raised by the assistant core."""


class LLMError(AriaError):
    """Language-model call failed."""


class LLMCredentialsMissing(LLMError):
    pass


class LLMNetworkUnavailable(LLMError):
    pass


class LLMRateLimited(LLMError):
    def __init__(self, message: str = "rate limited", retry_after_s: float | None = None) -> None:
        super().__init__(message)
        self.retry_after_s = retry_after_s


class LLMTimeout(LLMError):
    pass


class LLMInvalidResponse(LLMError):
    pass


class LLMModelUnavailable(LLMError):
    def __init__(self, model: str) -> None:
        super().__init__(f"model '{model}' is not available")
        self.model = model


class MemoryStoreError(AriaError):
    """Memory store failure. Subclasses narrow the cause."""


class MemoryDatabaseError(MemoryStoreError):
    pass


class DuplicateMemory(MemoryStoreError):
    pass


class MemoryNotFound(MemoryStoreError):
    def __init__(self, memory_id: str) -> None:
        super().__init__(f"memory '{memory_id}' not found")
        self.memory_id = memory_id


class CorruptMemoryStore(MemoryStoreError):
    pass


class ToolErrorKind(str, Enum):
    NOT_FOUND = "not_found"
    INVALID_ARGUMENTS = "invalid_arguments"
    EXECUTION_FAILED = "execution_failed"
    PERMISSION_DENIED = "permission_denied"


class ToolPermissionDenied(AriaError):
    """Raised inside tool handlers; converted to a failed result at the tool boundary."""


class PipelineError(AriaError):
    pass


class NoProviderAvailable(PipelineError):
    pass


class ParseFailed(PipelineError):
    def __init__(self, message: str, raw: str | None = None) -> None:
        super().__init__(message)
        self.raw = raw


class EmptyResponse(PipelineError):
    pass


GENERIC_APOLOGY = "Sorry, something went wrong on my end. Please try again."

_APOLOGIES: tuple[tuple[type[BaseException], str], ...] = (
    (LLMCredentialsMissing, "I'm not connected to a language model yet. Please add an API key."),
    (LLMNetworkUnavailable, "I can't reach the network right now. Please try again in a moment."),
    (LLMRateLimited, "I'm getting too many requests right now. Give me a moment and try again."),
    (LLMTimeout, "That took too long to answer. Please try again."),
    (LLMModelUnavailable, "The model I'm configured to use isn't available right now."),
    (NoProviderAvailable, "I don't have a language model available right now."),
    (EmptyResponse, "Sorry, I didn't get a response. Could you say that again?"),
    (ParseFailed, "Sorry, I got confused by my own answer. Could you rephrase that?"),
    (MemoryStoreError, "Sorry, I had trouble with my memory just now."),
)


def apology_for(exc: BaseException) -> str:
    """Short spoken fallback for a failed turn. Never exposes the raw error text."""
    for error_type, message in _APOLOGIES:
        if isinstance(exc, error_type):
            return message
    return GENERIC_APOLOGY


__all__ = [
    "AriaError",
    "LLMError",
    "LLMCredentialsMissing",
    "LLMNetworkUnavailable",
    "LLMRateLimited",
    "LLMTimeout",
    "LLMInvalidResponse",
    "LLMModelUnavailable",
    "MemoryStoreError",
    "MemoryDatabaseError",
    "DuplicateMemory",
    "MemoryNotFound",
    "CorruptMemoryStore",
    "ToolErrorKind",
    "ToolPermissionDenied",
    "PipelineError",
    "NoProviderAvailable",
    "ParseFailed",
    "EmptyResponse",
    "GENERIC_APOLOGY",
    "apology_for",
]
