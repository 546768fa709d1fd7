"""
LogDigest - Core Data Types
===========================

Immutable values that flow through the analysis pipeline.
"""

from dataclasses import dataclass, asdict
from enum import Enum
from typing import Any, Optional


class LogStream(str, Enum):
    """Output stream a container log line was written to."""
    STDOUT = "stdout"
    STDERR = "stderr"


@dataclass(frozen=True)
class LogRecord:
    """One demultiplexed container log line, in delivery order."""
    message: str
    timestamp: Optional[str] = None
    stream: LogStream = LogStream.STDOUT


@dataclass(frozen=True)
class FilterOutcome:
    """Counts from one filtering pass. total == excluded + kept."""
    total_lines: int = 0
    excluded_lines: int = 0
    kept_lines: int = 0

    @classmethod
    def passthrough(cls, count: int) -> "FilterOutcome":
        return cls(total_lines=count, excluded_lines=0, kept_lines=count)


@dataclass(frozen=True)
class Chunk:
    """A token-bounded, order-preserving group of records."""
    records: tuple[LogRecord, ...]
    token_count: int
    index: int = 0
    total: int = 0


@dataclass(frozen=True)
class TokenUsage:
    """Token usage reported by the completion provider."""
    prompt_tokens: int = 0
    completion_tokens: int = 0
    total_tokens: int = 0


@dataclass(frozen=True)
class AnalysisResult:
    """Outcome of one pipeline run, handed to reporting as-is."""
    analysis: str
    tokens_used: int = 0
    chunks_used: int = 0
    original_count: int = 0
    processed_count: int = 0
    deduplicated: bool = False
    filter_outcome: FilterOutcome = FilterOutcome()

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)
