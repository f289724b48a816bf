# app/errors.py
"""Layered errors for node execution.

Each layer is a single exception class tagged with an enum naming the variant.
The wrapped lower-layer error travels as ``__cause__`` (``raise ... from e``) and
``str()`` prints the layer's message followed by the cause on the next line:

    PilotError -> AINodeError -> DeepSeekError
"""
from __future__ import annotations

from enum import Enum
from typing import Optional


class DeepSeekErrorType(str, Enum):
    REQUEST_PARAM = "RequestParamError"   # local validation failed, nothing sent
    REQUEST = "RequestError"              # transport failure or non-2xx status
    API_KEY = "ApiKeyError"               # credential source missing/unreadable
    RESPONSE = "ResponseError"            # malformed or incomplete response body


class AINodeErrorType(str, Enum):
    DEEPSEEK = "DeepSeekError"


class PilotErrorType(str, Enum):
    AI_NODE = "AINodeError"


class DeepSeekError(RuntimeError):
    def __init__(self, error_type: DeepSeekErrorType, message: str) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message

    def __str__(self) -> str:
        return f"{self.error_type.value}: {self.message}"


class _LayeredError(RuntimeError):
    """Base for errors that wrap a lower layer."""

    def __init__(self, error_type: Enum, message: str) -> None:
        super().__init__(message)
        self.error_type = error_type
        self.message = message

    def __str__(self) -> str:
        head = f"{self.error_type.value}: {self.message}"
        if self.__cause__ is None:
            return head
        return f"{head}\n{self.__cause__}"


class AINodeError(_LayeredError):
    def __init__(self, error_type: AINodeErrorType, message: str) -> None:
        super().__init__(error_type, message)


class PilotError(_LayeredError):
    def __init__(self, error_type: PilotErrorType, message: str) -> None:
        super().__init__(error_type, message)


def root_cause(exc: BaseException) -> BaseException:
    """Follow ``__cause__`` down to the innermost tagged error."""
    seen = exc
    while isinstance(seen.__cause__, (DeepSeekError, _LayeredError)):
        seen = seen.__cause__
    return seen


def root_error_type(exc: BaseException) -> Optional[Enum]:
    return getattr(root_cause(exc), "error_type", None)
