"""
LogDigest - Token Estimation Tests
==================================
"""

from unittest.mock import MagicMock, patch

import pytest

from logdigest.config import Settings, TokenizerBackend
from logdigest.core.tokenizer import (
    MESSAGE_OVERHEAD_TOKENS,
    ApproximateTokenEstimator,
    TiktokenEstimator,
    create_token_estimator,
)


def fake_encoding(name: str) -> MagicMock:
    """Encoding whose tokens are whitespace-separated words."""
    encoding = MagicMock()
    encoding.name = name
    encoding.encode.side_effect = lambda text, disallowed_special=(): text.split()
    return encoding


class TestApproximateTokenEstimator:
    """Tests for the character-ratio estimator."""

    def test_rounds_up(self):
        estimator = ApproximateTokenEstimator()

        assert estimator.count_tokens("") == 0
        assert estimator.count_tokens("abcd") == 1
        assert estimator.count_tokens("abcde") == 2

    def test_custom_ratio(self):
        assert ApproximateTokenEstimator(chars_per_token=2.0).count_tokens("abcde") == 3

    def test_rejects_non_positive_ratio(self):
        with pytest.raises(ValueError):
            ApproximateTokenEstimator(chars_per_token=0)

    def test_prompt_overheads(self):
        """Test that system and user prompts add the per-message overhead."""
        estimator = ApproximateTokenEstimator()

        assert estimator.estimate_system_prompt_tokens("abcdefgh") == 2 + MESSAGE_OVERHEAD_TOKENS
        assert estimator.estimate_user_prompt_tokens("") == MESSAGE_OVERHEAD_TOKENS

    def test_will_fit_in_context(self):
        estimator = ApproximateTokenEstimator()

        assert estimator.will_fit_in_context("a" * 40, 10) is True
        assert estimator.will_fit_in_context("a" * 41, 10) is False


class TestTiktokenEstimator:
    """Tests for the tiktoken-backed estimator, with encodings mocked."""

    def test_uses_model_encoding(self):
        with patch("tiktoken.encoding_for_model", return_value=fake_encoding("o200k_base")) as for_model:
            estimator = TiktokenEstimator("gpt-4o-mini")

        for_model.assert_called_once_with("gpt-4o-mini")
        assert estimator.encoding_name == "o200k_base"
        assert estimator.count_tokens("three word line") == 3

    def test_unknown_model_falls_back(self):
        """Test that an unknown model uses cl100k_base."""
        with patch("tiktoken.encoding_for_model", side_effect=KeyError("llama")), \
                patch("tiktoken.get_encoding", return_value=fake_encoding("cl100k_base")) as get_encoding:
            estimator = TiktokenEstimator("llama-3-70b")

        get_encoding.assert_called_once_with("cl100k_base")
        assert estimator.encoding_name == "cl100k_base"

    def test_special_token_text_is_allowed(self):
        """Test that log text resembling special tokens is encoded as plain text."""
        encoding = fake_encoding("cl100k_base")
        with patch("tiktoken.encoding_for_model", return_value=encoding):
            estimator = TiktokenEstimator("gpt-4")

        estimator.count_tokens("<|endoftext|> in a log line")

        encoding.encode.assert_called_once_with("<|endoftext|> in a log line", disallowed_special=())


class TestCreateTokenEstimator:
    """Tests for backend selection."""

    def test_approximate_backend(self):
        settings = Settings(_env_file=None, tokenizer_backend=TokenizerBackend.APPROXIMATE)

        assert isinstance(create_token_estimator(settings), ApproximateTokenEstimator)

    def test_tiktoken_backend(self):
        settings = Settings(_env_file=None, llm_model="gpt-4o-mini")

        with patch("tiktoken.encoding_for_model", return_value=fake_encoding("o200k_base")):
            estimator = create_token_estimator(settings)

        assert isinstance(estimator, TiktokenEstimator)
        assert estimator.model == "gpt-4o-mini"
