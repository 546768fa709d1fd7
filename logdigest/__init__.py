"""
LogDigest
=========

Reduces a container's log stream with deduplication and per-container line
filters, then analyzes it with a language model, splitting the work into
summarized chunks when it does not fit the model's context window.
"""

__version__ = "0.1.0"
