"""
LogDigest - API Routes
======================

FastAPI endpoints for log reduction and analysis.

Collaborators are built once in the application lifespan and read from
``app.state``; routes never construct their own.
"""

from fastapi import APIRouter, Depends, HTTPException, Request

from logdigest.api.schemas import (
    LogBatch,
    LogEntry,
    AnalysisResponse,
    DeduplicationResponse,
    FilterResponse,
    FilterStats,
)
from logdigest.core.deduplicator import deduplicate, deduplication_stats
from logdigest.core.errors import PipelineError, PromptRenderError
from logdigest.core.line_filter import FilterRegistry
from logdigest.core.pipeline import AnalysisPipeline
from logdigest.core.prompts import PromptLoader
from logdigest.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(tags=["logdigest"])


def get_pipeline(request: Request) -> AnalysisPipeline:
    return request.app.state.pipeline


def get_filters(request: Request) -> FilterRegistry:
    return request.app.state.pipeline.filters


def get_prompt_loader(request: Request) -> PromptLoader:
    return request.app.state.pipeline.prompts


# =============================================================================
# ANALYSIS
# =============================================================================

@router.post("/logs/analyze", response_model=AnalysisResponse)
async def analyze_logs(
    batch: LogBatch,
    pipeline: AnalysisPipeline = Depends(get_pipeline)
):
    """
    Analyze a container's logs.

    Deduplicates and filters the lines, then analyzes them in one request
    or in summarized chunks depending on the token budget.
    """
    try:
        result = await pipeline.analyze_logs(batch.container, batch.to_records())
    except PipelineError as e:
        logger.error(
            f"Analysis failed for {batch.container}: {e}",
            extra={
                "container": batch.container,
                "stage": e.stage,
                "chunk_index": e.chunk_index,
            }
        )
        raise HTTPException(status_code=502, detail=str(e))
    except PromptRenderError as e:
        logger.error(f"Prompt rendering failed: {e}", extra={"prompt": e.prompt_name})
        raise HTTPException(status_code=500, detail=str(e))

    logger.info(
        f"Analyzed {result.original_count} lines for {batch.container}",
        extra={
            "container": batch.container,
            "chunks_used": result.chunks_used,
            "tokens_used": result.tokens_used,
        }
    )

    return AnalysisResponse.from_result(batch.container, result)


# =============================================================================
# REDUCTION
# =============================================================================

@router.post("/logs/deduplicate", response_model=DeduplicationResponse)
async def deduplicate_logs(batch: LogBatch):
    """Collapse repeated consecutive lines without calling the model."""
    records = batch.to_records()
    deduplicated = deduplicate(records)
    original_count, deduplicated_count, saved_count = deduplication_stats(records, deduplicated)

    return DeduplicationResponse(
        container=batch.container,
        logs=[LogEntry.from_record(r) for r in deduplicated],
        original_count=original_count,
        deduplicated_count=deduplicated_count,
        saved_count=saved_count,
    )


@router.post("/logs/filter", response_model=FilterResponse)
async def filter_logs(
    batch: LogBatch,
    filters: FilterRegistry = Depends(get_filters)
):
    """Apply the container's exclusion patterns."""
    kept, outcome = filters.apply(batch.container, batch.to_records())
    line_filter = filters.get(batch.container)

    return FilterResponse(
        container=batch.container,
        logs=[LogEntry.from_record(r) for r in kept],
        filter_stats=FilterStats.from_outcome(outcome),
        patterns=list(line_filter.patterns) if line_filter else [],
    )


# =============================================================================
# INTROSPECTION
# =============================================================================

@router.get("/prompts/sources")
async def prompt_sources(prompts: PromptLoader = Depends(get_prompt_loader)):
    """Where each prompt loaded so far came from (built-in or override file)."""
    return {"sources": prompts.prompt_sources()}


@router.get("/filters")
async def list_filters(filters: FilterRegistry = Depends(get_filters)):
    """Configured line filters by container."""
    return {
        "filters": {
            container: list(line_filter.patterns)
            for container, line_filter in filters.items()
        }
    }
