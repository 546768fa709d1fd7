"""
LogDigest - Token Estimation
============================

Pluggable token counting. The chunker and the pipeline only depend on the
TokenEstimator interface, so budgets can be tested against a synthetic
estimator and run in production against tiktoken.
"""

from abc import ABC, abstractmethod
import math

import tiktoken

from logdigest.config import Settings, TokenizerBackend
from logdigest.utils.logging import get_logger

logger = get_logger(__name__)

# Per-message framing tokens added by chat APIs
MESSAGE_OVERHEAD_TOKENS = 4

FALLBACK_ENCODING = "cl100k_base"


class TokenEstimator(ABC):
    """Base class for token estimators. Must be deterministic per input."""

    @abstractmethod
    def count_tokens(self, text: str) -> int:
        """Return the token count of ``text``."""
        pass

    def estimate_system_prompt_tokens(self, system_prompt: str) -> int:
        return self.count_tokens(system_prompt) + MESSAGE_OVERHEAD_TOKENS

    def estimate_user_prompt_tokens(self, user_prompt: str) -> int:
        return self.count_tokens(user_prompt) + MESSAGE_OVERHEAD_TOKENS

    def will_fit_in_context(self, content: str, max_tokens: int) -> bool:
        return self.count_tokens(content) <= max_tokens


class TiktokenEstimator(TokenEstimator):
    """
    Exact counts using the model's tiktoken encoding.

    Models tiktoken does not know fall back to cl100k_base.
    """

    def __init__(self, model: str):
        self.model = model
        try:
            self._encoding = tiktoken.encoding_for_model(model)
        except KeyError:
            logger.info(
                f"No tiktoken encoding for model {model}, using {FALLBACK_ENCODING}",
                extra={"model": model}
            )
            self._encoding = tiktoken.get_encoding(FALLBACK_ENCODING)

    @property
    def encoding_name(self) -> str:
        return self._encoding.name

    def count_tokens(self, text: str) -> int:
        # Logs may contain special-token text such as "<|endoftext|>"
        return len(self._encoding.encode(text, disallowed_special=()))


class ApproximateTokenEstimator(TokenEstimator):
    """Character-ratio estimate for when no tokenizer data is available."""

    def __init__(self, chars_per_token: float = 4.0):
        if chars_per_token <= 0:
            raise ValueError("chars_per_token must be positive")
        self.chars_per_token = chars_per_token

    def count_tokens(self, text: str) -> int:
        return math.ceil(len(text) / self.chars_per_token)


def create_token_estimator(settings: Settings) -> TokenEstimator:
    """Build the estimator selected by ``settings.tokenizer_backend``."""
    if settings.tokenizer_backend == TokenizerBackend.APPROXIMATE:
        return ApproximateTokenEstimator()
    return TiktokenEstimator(settings.llm_model)
