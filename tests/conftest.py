"""
LogDigest - Shared Test Fixtures
================================
"""

import pytest

from logdigest.config import Settings, TokenizerBackend

from helpers import LinearTokenEstimator, ScriptedCompletionClient, TinyPrompts


@pytest.fixture
def estimator() -> LinearTokenEstimator:
    """One token per character."""
    return LinearTokenEstimator(1.0)


@pytest.fixture
def scripted_client() -> ScriptedCompletionClient:
    return ScriptedCompletionClient()


@pytest.fixture
def tiny_prompts() -> TinyPrompts:
    return TinyPrompts()


@pytest.fixture
def offline_settings(tmp_path) -> Settings:
    """Settings that need no network: mock provider, approximate tokenizer."""
    return Settings(
        _env_file=None,
        tokenizer_backend=TokenizerBackend.APPROXIMATE,
        ignore_dir=str(tmp_path / "ignore"),
        regexp_filters={"web": {"patterns": ["GET /health", "(?i)debug"]}},
    )
