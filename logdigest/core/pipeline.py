"""
LogDigest - Analysis Pipeline
=============================

Turns a container's log records into one natural-language analysis that
fits the model's context window.

Pipeline steps:
1. Collapse repeated lines (deduplicator)
2. Drop lines matching the container's exclusion patterns (line filter)
3. Estimate the token cost of system prompt, prompt template and logs
4. Either analyze everything in one request, or split into chunks,
   summarize each chunk in order and synthesize the summaries

All requests for one run are issued sequentially. A failing request aborts
the run; nothing partial is returned. Every log line of a run carries the
container, and during requests the stage and chunk, through log_context.
"""

from typing import Optional, Sequence

from logdigest.core.chunker import chunk_logs, format_chunk
from logdigest.core.deduplicator import deduplicate, format_logs
from logdigest.core.errors import CompletionError, PipelineError
from logdigest.core.line_filter import FilterRegistry
from logdigest.core.llm_client import CompletionClient
from logdigest.core.models import AnalysisResult, Chunk, LogRecord
from logdigest.core.prompts import PromptLoader, load_ignore_instructions
from logdigest.core.tokenizer import TokenEstimator
from logdigest.utils.logging import get_logger, log_context

logger = get_logger(__name__)

# Completion headroom kept free in every request
RESPONSE_RESERVE_TOKENS = 4000

# Expected size of the system prompt; context limits below
# RESPONSE_RESERVE_TOKENS + SYSTEM_PROMPT_RESERVE_TOKENS leave no room for logs
SYSTEM_PROMPT_RESERVE_TOKENS = 500

# Chunks use at most 1/CHUNK_SIZE_DIVISOR of the available tokens
CHUNK_SIZE_DIVISOR = 2

NO_LOGS_ANALYSIS = "No logs to analyze"
NO_CHUNKS_ANALYSIS = "No logs could be processed within token limits"

STAGE_ANALYZE = "analyze"
STAGE_SUMMARIZE_CHUNK = "summarize_chunk"
STAGE_SYNTHESIZE = "synthesize"


class AnalysisPipeline:
    """
    Drives one analysis per call to :meth:`analyze_logs`.

    Everything a run computes lives in local variables, so one instance can
    serve concurrent runs for different containers. The only state shared
    between runs is the prompt loader's record of where each template was
    loaded from, which is the same for every run.

    Attributes:
        tokenizer: Token estimator used for budgeting and chunking
        client: Completion provider
        prompts: Prompt renderer
        filters: Per-container line filters
        max_tokens: Context window of the model
        ignore_dir: Directory of per-container ignore instructions
    """

    def __init__(
        self,
        tokenizer: TokenEstimator,
        client: CompletionClient,
        prompts: PromptLoader,
        max_tokens: int,
        filters: Optional[FilterRegistry] = None,
        ignore_dir: str = ""
    ):
        self.tokenizer = tokenizer
        self.client = client
        self.prompts = prompts
        self.max_tokens = max_tokens
        self.filters = filters if filters is not None else FilterRegistry()
        self.ignore_dir = ignore_dir

        if max_tokens <= RESPONSE_RESERVE_TOKENS + SYSTEM_PROMPT_RESERVE_TOKENS:
            logger.warning(
                f"Context window of {max_tokens} tokens is below the reserved response and system prompt budget",
                extra={"max_tokens": max_tokens}
            )

    async def analyze_logs(
        self,
        container_name: str,
        logs: Sequence[LogRecord]
    ) -> AnalysisResult:
        """
        Analyze a container's logs.

        Raises:
            PromptRenderError: a prompt could not be rendered
            PipelineError: a completion request failed
        """
        if not logs:
            return AnalysisResult(analysis=NO_LOGS_ANALYSIS)

        with log_context(container=container_name):
            return await self._run(container_name, logs)

    async def _run(self, container_name: str, logs: Sequence[LogRecord]) -> AnalysisResult:
        original_count = len(logs)

        deduplicated = deduplicate(logs)
        processed, filter_outcome = self.filters.apply(container_name, deduplicated)

        logs_text = format_logs(processed)

        ignore_instructions = ""
        if self.ignore_dir:
            ignore_instructions = load_ignore_instructions(container_name, self.ignore_dir)
        system_prompt = self.prompts.system_prompt(ignore_instructions)
        user_prompt_base = self.prompts.analysis_prompt(container_name, "", len(processed))

        system_tokens = self.tokenizer.estimate_system_prompt_tokens(system_prompt)
        base_user_tokens = self.tokenizer.count_tokens(user_prompt_base)
        logs_tokens = self.tokenizer.count_tokens(logs_text)
        total_tokens = system_tokens + base_user_tokens + logs_tokens
        available_tokens = self.max_tokens - RESPONSE_RESERVE_TOKENS - system_tokens

        direct = total_tokens + RESPONSE_RESERVE_TOKENS <= self.max_tokens
        logger.info(
            f"Analyzing {len(processed)} log lines for {container_name} "
            f"({'direct' if direct else 'chunked'})",
            extra={
                "original_count": original_count,
                "processed_count": len(processed),
                "excluded_lines": filter_outcome.excluded_lines,
                "total_tokens": total_tokens,
                "available_tokens": available_tokens,
            }
        )

        if direct:
            analysis, tokens_used = await self._analyze_directly(
                container_name, processed, system_prompt, logs_text
            )
            chunks_used = 1
        else:
            analysis, tokens_used, chunks_used = await self._analyze_with_chunking(
                container_name, processed, system_prompt, available_tokens
            )

        return AnalysisResult(
            analysis=analysis,
            tokens_used=tokens_used,
            chunks_used=chunks_used,
            original_count=original_count,
            processed_count=len(processed),
            deduplicated=len(deduplicated) < original_count,
            filter_outcome=filter_outcome,
        )

    async def _analyze_directly(
        self,
        container_name: str,
        logs: Sequence[LogRecord],
        system_prompt: str,
        logs_text: str
    ) -> tuple[str, int]:
        user_prompt = self.prompts.analysis_prompt(container_name, logs_text, len(logs))
        with log_context(stage=STAGE_ANALYZE):
            try:
                analysis, usage = await self.client.analyze(container_name, system_prompt, user_prompt)
            except CompletionError as e:
                raise PipelineError(
                    f"failed to analyze {len(logs)} logs for container {container_name}: {e}",
                    container=container_name,
                    stage=STAGE_ANALYZE,
                    record_count=len(logs),
                ) from e
        return analysis, usage.total_tokens

    async def _analyze_with_chunking(
        self,
        container_name: str,
        logs: Sequence[LogRecord],
        system_prompt: str,
        available_tokens: int
    ) -> tuple[str, int, int]:
        chunk_limit = available_tokens // CHUNK_SIZE_DIVISOR
        chunks: list[Chunk] = chunk_logs(logs, chunk_limit, self.tokenizer) if chunk_limit > 0 else []

        if not chunks:
            logger.warning(
                f"No chunks could be built for {container_name}",
                extra={"chunk_limit": chunk_limit}
            )
            return NO_CHUNKS_ANALYSIS, 0, 0

        summaries: list[str] = []
        tokens_used = 0

        for chunk in chunks:
            chunk_text = format_chunk(chunk)
            chunk_prompt = self.prompts.chunk_summary_prompt(
                container_name, chunk.index + 1, chunk.total, chunk_text
            )

            with log_context(stage=STAGE_SUMMARIZE_CHUNK, chunk=f"{chunk.index + 1}/{chunk.total}"):
                logger.debug(
                    f"Summarizing chunk {chunk.index + 1}/{chunk.total} for {container_name}",
                    extra={"chunk_records": len(chunk.records), "chunk_tokens": chunk.token_count}
                )

                try:
                    summary = await self.client.summarize_chunk(container_name, system_prompt, chunk_prompt)
                except CompletionError as e:
                    raise PipelineError(
                        f"failed to summarize chunk {chunk.index + 1}/{chunk.total} "
                        f"(length: {len(chunk.records)} logs, {chunk.token_count} tokens) "
                        f"for container {container_name}: {e}",
                        container=container_name,
                        stage=STAGE_SUMMARIZE_CHUNK,
                        chunk_index=chunk.index,
                        chunk_total=chunk.total,
                        record_count=len(chunk.records),
                        token_count=chunk.token_count,
                    ) from e

            summaries.append(summary)
            # Chunk summaries report no usage; estimate input plus output
            tokens_used += self.tokenizer.count_tokens(chunk_text) + self.tokenizer.count_tokens(summary)

        synthesis_prompt = self.prompts.synthesis_prompt(container_name, summaries)
        with log_context(stage=STAGE_SYNTHESIZE):
            try:
                analysis, usage = await self.client.analyze(container_name, system_prompt, synthesis_prompt)
            except CompletionError as e:
                raise PipelineError(
                    f"failed to synthesize {len(summaries)} chunk summaries "
                    f"for container {container_name}: {e}",
                    container=container_name,
                    stage=STAGE_SYNTHESIZE,
                    chunk_total=len(chunks),
                ) from e

        tokens_used += usage.total_tokens
        return analysis, tokens_used, len(chunks)
