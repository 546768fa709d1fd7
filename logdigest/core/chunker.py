"""
LogDigest - Chunk Splitter
==========================

Splits an ordered list of records into groups that each fit a token limit,
without ever splitting a record.
"""

from typing import Sequence

from logdigest.core.deduplicator import format_logs, format_record
from logdigest.core.models import Chunk, LogRecord
from logdigest.core.tokenizer import TokenEstimator


def chunk_logs(
    logs: Sequence[LogRecord],
    max_tokens_per_chunk: int,
    tokenizer: TokenEstimator
) -> list[Chunk]:
    """
    Greedily pack records into chunks of at most ``max_tokens_per_chunk``.

    Each record costs the tokens of its formatted line (the text actually
    sent for analysis). A record is appended to the current chunk when it
    fits, otherwise the chunk is closed and a new one starts with that
    record. A record that alone exceeds the limit gets a chunk of its own
    whose token_count is over the limit.

    Index (0-based) and total are set once all chunks exist. Empty input
    gives no chunks.

    Example:
        chunks = chunk_logs(records, 1000, estimator)
        for chunk in chunks:
            print(f"Chunk {chunk.index + 1}/{chunk.total}: {chunk.token_count} tokens")
    """
    if not logs:
        return []

    built: list[tuple[list[LogRecord], int]] = []
    current: list[LogRecord] = []
    current_tokens = 0

    for record in logs:
        record_tokens = tokenizer.count_tokens(format_record(record))

        if current and current_tokens + record_tokens > max_tokens_per_chunk:
            built.append((current, current_tokens))
            current = [record]
            current_tokens = record_tokens
        else:
            current.append(record)
            current_tokens += record_tokens

    if current:
        built.append((current, current_tokens))

    total = len(built)
    return [
        Chunk(records=tuple(records), token_count=tokens, index=i, total=total)
        for i, (records, tokens) in enumerate(built)
    ]


def format_chunk(chunk: Chunk) -> str:
    """Render a chunk's records as "[timestamp] message" lines."""
    return format_logs(chunk.records)

