"""
LogDigest - API Schemas
=======================

Pydantic models for the log analysis API.
"""

from typing import Optional
from pydantic import BaseModel, Field

from logdigest.core.models import AnalysisResult, FilterOutcome, LogRecord, LogStream


class LogEntry(BaseModel):
    """A single container log line."""

    timestamp: Optional[str] = Field(
        None,
        description="Timestamp as delivered by the log reader, kept verbatim"
    )
    stream: LogStream = Field(
        default=LogStream.STDOUT,
        description="Output stream (stdout, stderr)"
    )
    message: str = Field(
        ...,
        description="Log message content"
    )

    def to_record(self) -> LogRecord:
        return LogRecord(message=self.message, timestamp=self.timestamp, stream=self.stream)

    @classmethod
    def from_record(cls, record: LogRecord) -> "LogEntry":
        return cls(timestamp=record.timestamp, stream=record.stream, message=record.message)


class LogBatch(BaseModel):
    """Ordered log lines of one container."""

    container: str = Field(
        ...,
        min_length=1,
        description="Container or service name; selects the line filter"
    )
    logs: list[LogEntry] = Field(
        default_factory=list,
        description="Log lines in chronological order"
    )

    def to_records(self) -> list[LogRecord]:
        return [entry.to_record() for entry in self.logs]


class FilterStats(BaseModel):
    """Line counts from one filtering pass."""

    total_lines: int = Field(..., ge=0)
    excluded_lines: int = Field(..., ge=0)
    kept_lines: int = Field(..., ge=0)

    @classmethod
    def from_outcome(cls, outcome: FilterOutcome) -> "FilterStats":
        return cls(
            total_lines=outcome.total_lines,
            excluded_lines=outcome.excluded_lines,
            kept_lines=outcome.kept_lines,
        )


class AnalysisResponse(BaseModel):
    """Result of analyzing one container's logs."""

    container: str
    analysis: str = Field(..., description="Natural-language analysis")
    tokens_used: int = Field(..., ge=0)
    chunks_used: int = Field(..., ge=0)
    original_count: int = Field(..., ge=0, description="Lines received")
    processed_count: int = Field(..., ge=0, description="Lines sent after deduplication and filtering")
    deduplicated: bool
    filter_stats: FilterStats

    @classmethod
    def from_result(cls, container: str, result: AnalysisResult) -> "AnalysisResponse":
        return cls(
            container=container,
            analysis=result.analysis,
            tokens_used=result.tokens_used,
            chunks_used=result.chunks_used,
            original_count=result.original_count,
            processed_count=result.processed_count,
            deduplicated=result.deduplicated,
            filter_stats=FilterStats.from_outcome(result.filter_outcome),
        )


class DeduplicationResponse(BaseModel):
    """Deduplicated log lines with counts."""

    container: str
    logs: list[LogEntry]
    original_count: int
    deduplicated_count: int
    saved_count: int


class FilterResponse(BaseModel):
    """Log lines left after the container's line filter."""

    container: str
    logs: list[LogEntry]
    filter_stats: FilterStats
    patterns: list[str] = Field(
        default_factory=list,
        description="Patterns configured for the container"
    )
