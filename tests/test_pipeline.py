"""
LogDigest - Analysis Pipeline Tests
===================================

Budgets are computed by hand: the estimator costs one token per
character and the prompts are a few characters long, so the system prompt
"SYS" costs 3 + 4 overhead = 7 tokens and the base user prompt "A:" costs 2.
"""

import asyncio
import logging
from unittest.mock import AsyncMock

import pytest

from logdigest.config import Settings
from logdigest.core.errors import CompletionError, PipelineError, PromptRenderError
from logdigest.core.line_filter import FilterRegistry, RegexpFilter
from logdigest.core.llm_client import CompletionClient, MockCompletionClient
from logdigest.core.models import FilterOutcome, LogRecord, TokenUsage
from logdigest.core.pipeline import (
    NO_CHUNKS_ANALYSIS,
    NO_LOGS_ANALYSIS,
    RESPONSE_RESERVE_TOKENS,
    AnalysisPipeline,
)
from logdigest.core.prompts import PromptLoader
from logdigest.core.tokenizer import ApproximateTokenEstimator
from logdigest.utils.logging import get_log_context

from helpers import ScriptedCompletionClient, TinyPrompts, make_records

# available = 4107 - 4000 - 7 = 100, so chunks hold at most 50 tokens
CHUNKED_MAX_TOKENS = RESPONSE_RESERVE_TOKENS + 107


def make_pipeline(estimator, client, prompts=None, max_tokens=128000, **kwargs):
    return AnalysisPipeline(
        tokenizer=estimator,
        client=client,
        prompts=prompts or TinyPrompts(),
        max_tokens=max_tokens,
        **kwargs
    )


class TestEmptyInput:
    """Tests for runs with nothing to analyze."""

    @pytest.mark.asyncio
    async def test_no_logs(self, estimator, scripted_client):
        """Test that empty input makes no requests."""
        pipeline = make_pipeline(estimator, scripted_client)

        result = await pipeline.analyze_logs("web", [])

        assert result.analysis == NO_LOGS_ANALYSIS
        assert result.tokens_used == 0
        assert result.chunks_used == 0
        assert scripted_client.analyze_calls == []
        assert scripted_client.chunk_calls == []


class TestDirectAnalysis:
    """Tests for logs that fit in one request."""

    @pytest.mark.asyncio
    async def test_single_request(self, estimator, scripted_client):
        records = make_records(3, timestamp="t")
        pipeline = make_pipeline(estimator, scripted_client)

        result = await pipeline.analyze_logs("web", records)

        assert result.analysis == "final analysis"
        assert result.chunks_used == 1
        assert result.tokens_used == 321
        assert result.original_count == 3
        assert result.processed_count == 3
        assert result.deduplicated is False
        assert scripted_client.chunk_calls == []

        container, system_prompt, user_prompt = scripted_client.analyze_calls[0]
        assert container == "web"
        assert system_prompt == "SYS"
        assert user_prompt == "A:" + "".join(f"[t] {r.message}\n" for r in records)

    @pytest.mark.asyncio
    async def test_uses_reported_usage(self, estimator):
        """Test that the direct path reports the provider's usage, not an estimate."""
        client = AsyncMock(spec=CompletionClient)
        client.analyze.return_value = ("ok", TokenUsage(prompt_tokens=40, completion_tokens=2, total_tokens=42))
        pipeline = make_pipeline(estimator, client)

        result = await pipeline.analyze_logs("web", make_records(2))

        assert result.tokens_used == 42
        client.analyze.assert_awaited_once()
        client.summarize_chunk.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_exact_fit_is_direct(self, estimator, scripted_client):
        """Test that total + reserve == max still takes the direct path."""
        records = make_records(4)  # 100 tokens of logs
        max_tokens = 7 + 2 + 100 + RESPONSE_RESERVE_TOKENS
        pipeline = make_pipeline(estimator, scripted_client, max_tokens=max_tokens)

        result = await pipeline.analyze_logs("web", records)

        assert result.chunks_used == 1
        assert scripted_client.chunk_calls == []

    @pytest.mark.asyncio
    async def test_failure_is_wrapped(self, estimator):
        client = ScriptedCompletionClient(fail_analyze=True)
        pipeline = make_pipeline(estimator, client)

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.analyze_logs("web", make_records(2))

        error = exc_info.value
        assert error.stage == "analyze"
        assert error.container == "web"
        assert error.record_count == 2
        assert isinstance(error.__cause__, CompletionError)
        assert "overloaded: model overloaded" in str(error)


class TestChunkedAnalysis:
    """Tests for logs that need chunking and synthesis."""

    @pytest.mark.asyncio
    async def test_chunk_then_synthesize(self, estimator, scripted_client):
        """Test six 25-token records with a 50-token chunk limit."""
        records = make_records(6)
        pipeline = make_pipeline(estimator, scripted_client, max_tokens=CHUNKED_MAX_TOKENS)

        result = await pipeline.analyze_logs("web", records)

        assert result.analysis == "final analysis"
        assert result.chunks_used == 3
        # three 50-token chunks, three 9-token summaries, synthesis usage
        assert result.tokens_used == 3 * 50 + 3 * 9 + 321

        chunk_prompts = [call[2] for call in scripted_client.chunk_calls]
        assert chunk_prompts == [
            "C1/3:" + "".join(f"{r.message}\n" for r in records[0:2]),
            "C2/3:" + "".join(f"{r.message}\n" for r in records[2:4]),
            "C3/3:" + "".join(f"{r.message}\n" for r in records[4:6]),
        ]
        assert len(scripted_client.analyze_calls) == 1
        assert scripted_client.analyze_calls[0][2] == "S:summary 1|summary 2|summary 3"

    @pytest.mark.asyncio
    async def test_no_room_for_chunks(self, estimator, scripted_client):
        """Test that a context smaller than the reserve yields no chunks."""
        pipeline = make_pipeline(estimator, scripted_client, max_tokens=RESPONSE_RESERVE_TOKENS)

        result = await pipeline.analyze_logs("web", make_records(3))

        assert result.analysis == NO_CHUNKS_ANALYSIS
        assert result.tokens_used == 0
        assert result.chunks_used == 0
        assert result.original_count == 3
        assert scripted_client.analyze_calls == []
        assert scripted_client.chunk_calls == []

    @pytest.mark.asyncio
    async def test_chunk_failure_aborts(self, estimator):
        """Test that a failing chunk names its position and stops the run."""
        client = ScriptedCompletionClient(fail_chunk=1)
        pipeline = make_pipeline(estimator, client, max_tokens=CHUNKED_MAX_TOKENS)

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.analyze_logs("web", make_records(6))

        error = exc_info.value
        assert error.stage == "summarize_chunk"
        assert error.chunk_index == 1
        assert error.chunk_total == 3
        assert error.record_count == 2
        assert error.token_count == 50
        assert "chunk 2/3" in str(error)
        assert "connection reset" in str(error)
        assert len(client.chunk_calls) == 2
        assert client.analyze_calls == []

    @pytest.mark.asyncio
    async def test_synthesis_failure(self, estimator):
        client = ScriptedCompletionClient(fail_analyze=True)
        pipeline = make_pipeline(estimator, client, max_tokens=CHUNKED_MAX_TOKENS)

        with pytest.raises(PipelineError) as exc_info:
            await pipeline.analyze_logs("web", make_records(6))

        assert exc_info.value.stage == "synthesize"
        assert exc_info.value.chunk_total == 3
        assert len(client.chunk_calls) == 3

    @pytest.mark.asyncio
    async def test_cancellation_propagates(self, estimator):
        """Test that cancellation is not turned into a pipeline error."""
        client = ScriptedCompletionClient(fail_chunk=0, chunk_exception=asyncio.CancelledError())
        pipeline = make_pipeline(estimator, client, max_tokens=CHUNKED_MAX_TOKENS)

        with pytest.raises(asyncio.CancelledError):
            await pipeline.analyze_logs("web", make_records(6))

    @pytest.mark.asyncio
    async def test_prompt_error_propagates(self, estimator, scripted_client):
        class BrokenChunkPrompts(TinyPrompts):
            def chunk_summary_prompt(self, container_name, chunk_num, total_chunks, logs):
                raise PromptRenderError("chunk_summary_prompt", "unknown template field 'x'")

        pipeline = make_pipeline(
            estimator, scripted_client, prompts=BrokenChunkPrompts(), max_tokens=CHUNKED_MAX_TOKENS
        )

        with pytest.raises(PromptRenderError):
            await pipeline.analyze_logs("web", make_records(6))

        assert scripted_client.chunk_calls == []


class TestReduction:
    """Tests for deduplication and filtering inside a run."""

    @pytest.mark.asyncio
    async def test_repeats_are_collapsed(self, estimator, scripted_client):
        records = [LogRecord(message="retrying", timestamp=f"t{i}") for i in range(5)]
        pipeline = make_pipeline(estimator, scripted_client)

        result = await pipeline.analyze_logs("web", records)

        assert result.deduplicated is True
        assert result.original_count == 5
        assert result.processed_count == 1
        assert scripted_client.analyze_calls[0][2] == "A:[t0] [REPEAT x5] retrying\n"

    @pytest.mark.asyncio
    async def test_filters_applied(self, estimator, scripted_client):
        filters = FilterRegistry({"web": RegexpFilter([r"GET /health"])})
        records = [
            LogRecord(message="GET /health 200"),
            LogRecord(message="POST /orders 500"),
            LogRecord(message="GET /health 200 slow"),
        ]
        pipeline = make_pipeline(estimator, scripted_client, filters=filters)

        result = await pipeline.analyze_logs("web", records)

        assert result.processed_count == 1
        assert result.filter_outcome == FilterOutcome(total_lines=3, excluded_lines=2, kept_lines=1)
        assert scripted_client.analyze_calls[0][2] == "A:POST /orders 500\n"

    @pytest.mark.asyncio
    async def test_everything_filtered_still_analyzes(self, estimator, scripted_client):
        """Test that a fully filtered input is still sent, with no log lines."""
        filters = FilterRegistry({"web": RegexpFilter([r"."])})
        pipeline = make_pipeline(estimator, scripted_client, filters=filters)

        result = await pipeline.analyze_logs("web", make_records(2))

        assert result.processed_count == 0
        assert result.chunks_used == 1
        assert scripted_client.analyze_calls[0][2] == "A:"

    @pytest.mark.asyncio
    async def test_ignore_instructions(self, estimator, scripted_client, tmp_path):
        (tmp_path / "web.md").write_text(" skip cron", encoding="utf-8")
        pipeline = make_pipeline(estimator, scripted_client, ignore_dir=str(tmp_path))

        await pipeline.analyze_logs("web", make_records(1))
        await pipeline.analyze_logs("db", make_records(1))

        assert scripted_client.analyze_calls[0][1] == "SYS skip cron"
        assert scripted_client.analyze_calls[1][1] == "SYS"

    @pytest.mark.asyncio
    async def test_undecodable_ignore_file_is_skipped(self, estimator, scripted_client, tmp_path):
        (tmp_path / "web.md").write_bytes(b"\xff\xfe skip cron")
        pipeline = make_pipeline(estimator, scripted_client, ignore_dir=str(tmp_path))

        result = await pipeline.analyze_logs("web", make_records(2))

        assert result.chunks_used == 1
        assert scripted_client.analyze_calls[0][1] == "SYS"


class ContextCapturingClient(ScriptedCompletionClient):
    """Remembers the bound log context at every request."""

    def __init__(self):
        super().__init__()
        self.contexts: list[dict] = []

    async def analyze(self, container_name, system_prompt, user_prompt):
        self.contexts.append(get_log_context())
        return await super().analyze(container_name, system_prompt, user_prompt)

    async def summarize_chunk(self, container_name, system_prompt, chunk_prompt):
        self.contexts.append(get_log_context())
        return await super().summarize_chunk(container_name, system_prompt, chunk_prompt)


class TestLogContext:
    """Tests for the fields bound to log lines during a run."""

    @pytest.mark.asyncio
    async def test_direct_request_context(self, estimator):
        client = ContextCapturingClient()

        await make_pipeline(estimator, client).analyze_logs("web", make_records(2))

        assert client.contexts == [{"container": "web", "stage": "analyze"}]
        assert get_log_context() == {}

    @pytest.mark.asyncio
    async def test_chunked_request_context(self, estimator, caplog):
        caplog.set_level(logging.DEBUG, logger="logdigest.core.pipeline")
        client = ContextCapturingClient()
        pipeline = make_pipeline(estimator, client, max_tokens=CHUNKED_MAX_TOKENS)

        await pipeline.analyze_logs("web", make_records(4))

        assert client.contexts == [
            {"container": "web", "stage": "summarize_chunk", "chunk": "1/2"},
            {"container": "web", "stage": "summarize_chunk", "chunk": "2/2"},
            {"container": "web", "stage": "synthesize"},
        ]
        chunk_lines = [r for r in caplog.records if r.getMessage().startswith("Summarizing chunk")]
        assert [(r.container, r.chunk) for r in chunk_lines] == [("web", "1/2"), ("web", "2/2")]

    @pytest.mark.asyncio
    async def test_context_is_reset_after_failure(self, estimator):
        pipeline = make_pipeline(estimator, ScriptedCompletionClient(fail_chunk=0), max_tokens=CHUNKED_MAX_TOKENS)

        with pytest.raises(PipelineError):
            await pipeline.analyze_logs("web", make_records(4))

        assert get_log_context() == {}


class TestEndToEnd:
    """Runs with the packaged prompts and the offline provider."""

    @pytest.mark.asyncio
    async def test_mock_provider_chunked(self):
        estimator = ApproximateTokenEstimator()
        pipeline = AnalysisPipeline(
            tokenizer=estimator,
            client=MockCompletionClient(estimator),
            prompts=PromptLoader(Settings(_env_file=None)),
            max_tokens=6000,
        )
        records = [
            LogRecord(message=f"request {i} ERROR upstream timed out".ljust(100, "."), timestamp=f"t{i}")
            for i in range(200)
        ]

        result = await pipeline.analyze_logs("web", records)

        assert result.chunks_used > 1
        assert result.tokens_used > 0
        assert result.analysis.startswith("## web")

    @pytest.mark.asyncio
    async def test_concurrent_runs_are_independent(self, estimator):
        client = ScriptedCompletionClient()
        pipeline = make_pipeline(estimator, client)

        first, second = await asyncio.gather(
            pipeline.analyze_logs("web", make_records(3)),
            pipeline.analyze_logs("db", make_records(5)),
        )

        assert first.processed_count == 3
        assert second.processed_count == 5
        assert sorted(call[0] for call in client.analyze_calls) == ["db", "web"]
