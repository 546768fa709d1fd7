"""
LogDigest - Shared Utilities
============================

Structured logging and request retry helpers.
"""

from logdigest.utils.logging import get_logger, log_context, setup_logging
from logdigest.utils.retry import RetryPolicy, send_with_retry

__all__ = [
    "get_logger",
    "log_context",
    "setup_logging",
    "RetryPolicy",
    "send_with_retry",
]
