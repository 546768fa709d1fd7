"""
LogDigest - Test Doubles
========================

Deterministic stand-ins for the token estimator, completion provider and
prompt renderer, so budgets and chunk counts can be computed by hand.
"""

import math
from typing import Optional

from logdigest.core.errors import CompletionError, ErrorCategory
from logdigest.core.llm_client import CompletionClient
from logdigest.core.models import LogRecord, TokenUsage
from logdigest.core.tokenizer import TokenEstimator


class LinearTokenEstimator(TokenEstimator):
    """Costs ceil(len(text) * ratio) tokens; ratio 1.0 means one token per character."""

    def __init__(self, ratio: float = 1.0):
        self.ratio = ratio

    def count_tokens(self, text: str) -> int:
        return math.ceil(len(text) * self.ratio)


class ScriptedCompletionClient(CompletionClient):
    """
    Records every call and answers from a script.

    ``fail_chunk`` makes summarize_chunk raise on that call number (0-based);
    ``fail_analyze`` makes analyze raise.
    """

    def __init__(
        self,
        usage_total: int = 321,
        fail_chunk: Optional[int] = None,
        fail_analyze: bool = False,
        chunk_exception: Optional[BaseException] = None
    ):
        self.usage_total = usage_total
        self.fail_chunk = fail_chunk
        self.fail_analyze = fail_analyze
        self.chunk_exception = chunk_exception
        self.analyze_calls: list[tuple[str, str, str]] = []
        self.chunk_calls: list[tuple[str, str, str]] = []
        self.closed = False

    async def analyze(self, container_name, system_prompt, user_prompt):
        self.analyze_calls.append((container_name, system_prompt, user_prompt))
        if self.fail_analyze:
            raise CompletionError("model overloaded", ErrorCategory.API_ERROR, code="overloaded")
        return "final analysis", TokenUsage(
            prompt_tokens=self.usage_total - 21,
            completion_tokens=21,
            total_tokens=self.usage_total,
        )

    async def summarize_chunk(self, container_name, system_prompt, chunk_prompt):
        call = len(self.chunk_calls)
        self.chunk_calls.append((container_name, system_prompt, chunk_prompt))
        if self.fail_chunk == call:
            if self.chunk_exception is not None:
                raise self.chunk_exception
            raise CompletionError("connection reset", ErrorCategory.NETWORK)
        return f"summary {call + 1}"

    async def close(self):
        self.closed = True


class TinyPrompts:
    """Prompt renderer with fixed, tiny templates."""

    SYSTEM = "SYS"

    def system_prompt(self, ignore_instructions=""):
        return self.SYSTEM + ignore_instructions

    def analysis_prompt(self, container_name, logs, log_count):
        return f"A:{logs}"

    def chunk_summary_prompt(self, container_name, chunk_num, total_chunks, logs):
        return f"C{chunk_num}/{total_chunks}:{logs}"

    def synthesis_prompt(self, container_name, summaries):
        return "S:" + "|".join(summaries)

    def prompt_sources(self):
        return {}


def make_records(count: int, width: int = 24, timestamp: Optional[str] = None) -> list[LogRecord]:
    """Distinct records whose messages are exactly ``width`` characters long."""
    return [
        LogRecord(message=f"line-{i:03d}".ljust(width, "x"), timestamp=timestamp)
        for i in range(count)
    ]
