"""
LogDigest - Deduplicator
========================

Collapses runs of identical consecutive log lines into a single
"[REPEAT xN] message" record, and renders records as the text that is sent
to the model.
"""

from typing import Iterable, Optional, Sequence

from logdigest.core.models import LogRecord

# Minimum run length that gets collapsed
DEDUPLICATE_THRESHOLD = 3

REPEAT_MARKER = "[REPEAT x{count}] {message}"


def deduplicate(logs: Optional[Sequence[LogRecord]]) -> Optional[list[LogRecord]]:
    """
    Collapse runs of consecutive records with identical messages.

    A run shorter than DEDUPLICATE_THRESHOLD is emitted unchanged. A longer
    run becomes one record with the first record's timestamp and stream and
    the message "[REPEAT xN] original".

    Single left-to-right pass tracking where the current run started; the
    run is flushed when the message changes and once more at the end.

    ``None`` and empty input are returned as given.
    """
    if not logs:
        return logs

    result: list[LogRecord] = []
    run_start = 0

    def flush(end: int) -> None:
        run_length = end - run_start
        first = logs[run_start]
        if run_length >= DEDUPLICATE_THRESHOLD:
            result.append(LogRecord(
                message=REPEAT_MARKER.format(count=run_length, message=first.message),
                timestamp=first.timestamp,
                stream=first.stream,
            ))
        else:
            result.extend(logs[run_start:end])

    for i in range(1, len(logs)):
        if logs[i].message != logs[run_start].message:
            flush(i)
            run_start = i

    flush(len(logs))
    return result


def deduplication_stats(
    original: Optional[Sequence[LogRecord]],
    deduplicated: Optional[Sequence[LogRecord]]
) -> tuple[int, int, int]:
    """Return (original_count, deduplicated_count, saved_count)."""
    original_count = len(original or ())
    deduplicated_count = len(deduplicated or ())
    return original_count, deduplicated_count, original_count - deduplicated_count


def format_record(record: LogRecord) -> str:
    """Render one record as "[timestamp] message\\n", or "message\\n" without a timestamp."""
    if record.timestamp:
        return f"[{record.timestamp}] {record.message}\n"
    return f"{record.message}\n"


def format_logs(logs: Iterable[LogRecord]) -> str:
    """Render records in order, one line each."""
    return "".join(format_record(record) for record in logs)
