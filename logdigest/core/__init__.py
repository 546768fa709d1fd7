"""
LogDigest - Core Package
"""

from logdigest.core.models import LogRecord, LogStream, FilterOutcome, Chunk, AnalysisResult, TokenUsage
from logdigest.core.deduplicator import deduplicate, format_logs
from logdigest.core.line_filter import RegexpFilter, FilterRegistry
from logdigest.core.tokenizer import TokenEstimator, create_token_estimator
from logdigest.core.chunker import chunk_logs, format_chunk
from logdigest.core.llm_client import CompletionClient, create_completion_client
from logdigest.core.prompts import PromptLoader
from logdigest.core.pipeline import AnalysisPipeline

__all__ = [
    "LogRecord",
    "LogStream",
    "FilterOutcome",
    "Chunk",
    "AnalysisResult",
    "TokenUsage",
    "deduplicate",
    "format_logs",
    "RegexpFilter",
    "FilterRegistry",
    "TokenEstimator",
    "create_token_estimator",
    "chunk_logs",
    "format_chunk",
    "CompletionClient",
    "create_completion_client",
    "PromptLoader",
    "AnalysisPipeline",
]
