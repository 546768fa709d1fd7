"""
LogDigest - Error Types
=======================

Exceptions raised by the analysis pipeline and its collaborators. Each one
carries the context needed to tell which container, stage or chunk failed.
"""

from enum import Enum
from typing import Optional


class ErrorCategory(str, Enum):
    """Broad classes of completion failures."""
    API_ERROR = "api_error"                 # Provider returned an error payload
    HTTP_ERROR = "http_error"               # Non-200 status without an error payload
    NETWORK = "network"                     # Connection failed or was reset
    TIMEOUT = "timeout"                     # Request exceeded its deadline
    INVALID_RESPONSE = "invalid_response"   # Unparseable body or no choices


class LogDigestError(Exception):
    """Base class for all LogDigest errors."""
    pass


class FilterPatternError(LogDigestError):
    """A line-filter pattern failed to compile."""

    def __init__(self, index: int, pattern: str, reason: str, container: Optional[str] = None):
        self.index = index
        self.pattern = pattern
        self.reason = reason
        self.container = container
        where = f" for container {container}" if container else ""
        super().__init__(
            f"failed to compile pattern at index {index} ({pattern!r}){where}: {reason}"
        )


class PromptRenderError(LogDigestError):
    """A prompt template could not be loaded or rendered."""

    def __init__(self, prompt_name: str, reason: str):
        self.prompt_name = prompt_name
        self.reason = reason
        super().__init__(f"failed to render {prompt_name}: {reason}")


class CompletionError(LogDigestError):
    """
    A completion request failed.

    Attributes:
        message: Human-readable description
        category: ErrorCategory tag
        code: Provider error code, when the provider sent one
        status_code: HTTP status, when there was a response
    """

    def __init__(
        self,
        message: str,
        category: ErrorCategory,
        code: Optional[str] = None,
        status_code: Optional[int] = None
    ):
        self.message = message
        self.category = category
        self.code = code
        self.status_code = status_code
        super().__init__(f"{code}: {message}" if code else message)


class PipelineError(LogDigestError):
    """
    An analysis run was aborted by a completion failure.

    ``chunk_index`` is 0-based; the message uses 1-based "chunk i/n".
    The underlying CompletionError is available as ``__cause__``.
    """

    def __init__(
        self,
        message: str,
        container: str,
        stage: str,
        chunk_index: Optional[int] = None,
        chunk_total: Optional[int] = None,
        record_count: Optional[int] = None,
        token_count: Optional[int] = None
    ):
        self.container = container
        self.stage = stage
        self.chunk_index = chunk_index
        self.chunk_total = chunk_total
        self.record_count = record_count
        self.token_count = token_count
        super().__init__(message)
