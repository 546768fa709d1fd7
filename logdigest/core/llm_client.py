"""
LogDigest - Completion Clients
==============================

The completion capability used by the analysis pipeline.
Supports multiple providers: Mock (offline, deterministic) and any
OpenAI-compatible chat completions API.

Clients report failures as CompletionError. The HTTP client retries
transport errors and 5xx responses itself; callers never retry.
"""

from abc import ABC, abstractmethod
from typing import Any, Optional
import re

import httpx

from logdigest.config import Settings, LLMProvider
from logdigest.core.errors import CompletionError, ErrorCategory
from logdigest.core.interaction_log import InteractionLogger
from logdigest.core.models import TokenUsage
from logdigest.core.tokenizer import TokenEstimator
from logdigest.utils.logging import get_logger, get_correlation_id
from logdigest.utils.retry import RetryPolicy, send_with_retry

logger = get_logger(__name__)

ANALYZE_OPERATION = "analyze"
SUMMARIZE_OPERATION = "summarize_chunk"


class CompletionClient(ABC):
    """Base class for completion providers."""

    @abstractmethod
    async def analyze(
        self,
        container_name: str,
        system_prompt: str,
        user_prompt: str
    ) -> tuple[str, TokenUsage]:
        """Run a full analysis request and return the text with provider usage."""
        pass

    @abstractmethod
    async def summarize_chunk(
        self,
        container_name: str,
        system_prompt: str,
        chunk_prompt: str
    ) -> str:
        """Summarize one chunk of a larger log."""
        pass

    async def close(self) -> None:
        """Release any held resources."""
        pass


def _usage_count(raw_usage: dict[str, Any], key: str) -> int:
    value = raw_usage.get(key) or 0
    try:
        return int(value)
    except (TypeError, ValueError) as e:
        raise CompletionError(
            f"usage field {key} is not a number: {value!r}",
            ErrorCategory.INVALID_RESPONSE,
        ) from e


class OpenAICompatibleClient(CompletionClient):
    """
    Client for OpenAI-compatible ``/chat/completions`` endpoints.

    When an InteractionLogger is given, every successful exchange is written
    to it with the prompt that produced it.

    Example:
        client = OpenAICompatibleClient("https://api.openai.com/v1", "sk-...", "gpt-4o-mini")
        text, usage = await client.analyze("nginx", system_prompt, user_prompt)
        await client.close()
    """

    def __init__(
        self,
        base_url: str,
        api_key: Optional[str],
        model: str,
        temperature: float = 0.3,
        analysis_max_tokens: int = 4000,
        chunk_max_tokens: int = 2000,
        timeout_seconds: float = 120.0,
        max_retries: int = 3,
        interaction_logger: Optional[InteractionLogger] = None
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.model = model
        self.temperature = temperature
        self.analysis_max_tokens = analysis_max_tokens
        self.chunk_max_tokens = chunk_max_tokens
        self.timeout_seconds = timeout_seconds
        self.retry_policy = RetryPolicy(max_attempts=max(1, max_retries), base_delay=1.0)
        self.interaction_logger = interaction_logger
        self._client: Optional[httpx.AsyncClient] = None

    @classmethod
    def from_settings(cls, settings: Settings) -> "OpenAICompatibleClient":
        interaction_logger = None
        if settings.llm_log_enabled:
            interaction_logger = InteractionLogger(settings.llm_log_dir)
            logger.info(
                f"Writing model interactions to {settings.llm_log_dir}",
                extra={"llm_log_dir": settings.llm_log_dir}
            )

        return cls(
            base_url=settings.llm_base_url,
            api_key=settings.llm_api_key,
            model=settings.llm_model,
            temperature=settings.llm_temperature,
            analysis_max_tokens=settings.llm_analysis_max_tokens,
            chunk_max_tokens=settings.llm_chunk_max_tokens,
            timeout_seconds=settings.llm_timeout_seconds,
            max_retries=settings.llm_max_retries,
            interaction_logger=interaction_logger,
        )

    @property
    def endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=httpx.Timeout(self.timeout_seconds))
        return self._client

    def _build_headers(self) -> dict:
        headers = {"Content-Type": "application/json"}
        if self.api_key:
            headers["Authorization"] = f"Bearer {self.api_key}"
        correlation_id = get_correlation_id()
        if correlation_id:
            headers["X-Correlation-ID"] = correlation_id
        return headers

    async def chat_completion(
        self,
        messages: list[dict[str, str]],
        max_tokens: int
    ) -> tuple[dict[str, Any], dict[str, Any]]:
        """
        Send a chat completion request.

        Returns the request payload and the decoded response body.

        Raises:
            CompletionError: on transport failure, non-200 status, provider
                error payload or an undecodable body
        """
        payload = {
            "model": self.model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": max_tokens,
        }
        client = await self._get_client()

        try:
            response = await send_with_retry(
                lambda: client.post(self.endpoint, json=payload, headers=self._build_headers()),
                self.retry_policy,
                model=self.model,
                endpoint=self.endpoint,
            )
        except httpx.TimeoutException as e:
            raise CompletionError(
                f"request to {self.endpoint} for model {self.model} timed out: {e}",
                ErrorCategory.TIMEOUT,
            ) from e
        except httpx.TransportError as e:
            raise CompletionError(
                f"request to {self.endpoint} for model {self.model} failed: {e}",
                ErrorCategory.NETWORK,
            ) from e

        try:
            body = response.json()
        except ValueError:
            body = None

        api_error = body.get("error") if isinstance(body, dict) else None
        if isinstance(api_error, dict):
            raise CompletionError(
                api_error.get("message") or "unknown provider error",
                ErrorCategory.API_ERROR,
                code=str(api_error["code"]) if api_error.get("code") is not None else None,
                status_code=response.status_code,
            )

        if response.status_code != 200:
            raise CompletionError(
                f"API {self.endpoint} returned status {response.status_code} "
                f"for model {self.model}: {response.text[:500]}",
                ErrorCategory.HTTP_ERROR,
                status_code=response.status_code,
            )

        if not isinstance(body, dict):
            raise CompletionError(
                f"failed to parse response from {self.endpoint} for model {self.model}",
                ErrorCategory.INVALID_RESPONSE,
                status_code=response.status_code,
            )

        return payload, body

    def _first_choice(self, body: dict[str, Any], container_name: str) -> str:
        choices = body.get("choices")
        if not isinstance(choices, list) or not choices:
            raise CompletionError(
                f"no choices in response for container {container_name} from model {self.model}",
                ErrorCategory.INVALID_RESPONSE,
            )

        first = choices[0]
        message = first.get("message") if isinstance(first, dict) else None
        content = message.get("content") if isinstance(message, dict) else None
        if not isinstance(message, dict) or not isinstance(content, (str, type(None))):
            raise CompletionError(
                f"malformed choice in response for container {container_name} from model {self.model}",
                ErrorCategory.INVALID_RESPONSE,
            )
        return content or ""

    def _parse_usage(self, body: dict[str, Any]) -> TokenUsage:
        raw_usage = body.get("usage") or {}
        if not isinstance(raw_usage, dict):
            raise CompletionError(
                f"malformed usage in response from model {self.model}",
                ErrorCategory.INVALID_RESPONSE,
            )
        return TokenUsage(
            prompt_tokens=_usage_count(raw_usage, "prompt_tokens"),
            completion_tokens=_usage_count(raw_usage, "completion_tokens"),
            total_tokens=_usage_count(raw_usage, "total_tokens"),
        )

    def _record_interaction(
        self,
        container_name: str,
        operation: str,
        prompt: str,
        payload: dict[str, Any],
        body: dict[str, Any]
    ) -> None:
        if self.interaction_logger is not None:
            self.interaction_logger.record(container_name, operation, prompt, payload, body)

    async def analyze(
        self,
        container_name: str,
        system_prompt: str,
        user_prompt: str
    ) -> tuple[str, TokenUsage]:
        payload, body = await self.chat_completion(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": user_prompt},
            ],
            self.analysis_max_tokens,
        )
        content = self._first_choice(body, container_name)
        usage = self._parse_usage(body)
        self._record_interaction(container_name, ANALYZE_OPERATION, user_prompt, payload, body)

        logger.debug(
            f"Analysis completed for {container_name}",
            extra={"container": container_name, "total_tokens": usage.total_tokens}
        )
        return content, usage

    async def summarize_chunk(
        self,
        container_name: str,
        system_prompt: str,
        chunk_prompt: str
    ) -> str:
        payload, body = await self.chat_completion(
            [
                {"role": "system", "content": system_prompt},
                {"role": "user", "content": chunk_prompt},
            ],
            self.chunk_max_tokens,
        )
        content = self._first_choice(body, container_name)
        self._record_interaction(container_name, SUMMARIZE_OPERATION, chunk_prompt, payload, body)
        return content

    async def close(self) -> None:
        if self._client:
            await self._client.aclose()
            self._client = None


class MockCompletionClient(CompletionClient):
    """
    Offline completion provider for development and testing.

    Counts error and warning lines in the prompt and answers with a short
    deterministic Markdown report. Usage is estimated with the given
    token estimator.
    """

    ERROR_RE = re.compile(r"(?i)\b(error|fatal|panic|exception|critical|traceback)\b")
    WARNING_RE = re.compile(r"(?i)\bwarn(ing)?\b")
    REPEAT_RE = re.compile(r"\[REPEAT x(\d+)\]")

    def __init__(self, estimator: TokenEstimator):
        self.estimator = estimator

    def _describe(self, prompt: str) -> str:
        lines = prompt.splitlines()
        errors = sum(1 for line in lines if self.ERROR_RE.search(line))
        warnings = sum(1 for line in lines if self.WARNING_RE.search(line))
        repeats = sum(int(m.group(1)) for m in self.REPEAT_RE.finditer(prompt))

        if errors == 0 and warnings == 0:
            health = "No errors or warnings found."
        else:
            health = f"Found {errors} error lines and {warnings} warning lines."
        if repeats:
            health += f" Collapsed repeats cover {repeats} lines."
        return health

    async def analyze(
        self,
        container_name: str,
        system_prompt: str,
        user_prompt: str
    ) -> tuple[str, TokenUsage]:
        text = f"## {container_name}\n\n**Summary**: {self._describe(user_prompt)}\n"
        prompt_tokens = (
            self.estimator.estimate_system_prompt_tokens(system_prompt)
            + self.estimator.estimate_user_prompt_tokens(user_prompt)
        )
        completion_tokens = self.estimator.count_tokens(text)
        return text, TokenUsage(
            prompt_tokens=prompt_tokens,
            completion_tokens=completion_tokens,
            total_tokens=prompt_tokens + completion_tokens,
        )

    async def summarize_chunk(
        self,
        container_name: str,
        system_prompt: str,
        chunk_prompt: str
    ) -> str:
        return f"{container_name}: {self._describe(chunk_prompt)}"


def create_completion_client(settings: Settings, estimator: TokenEstimator) -> CompletionClient:
    """Build the client selected by ``settings.llm_provider``."""
    if settings.llm_provider == LLMProvider.OPENAI:
        logger.info(
            f"Using OpenAI-compatible provider at {settings.llm_base_url}",
            extra={"model": settings.llm_model}
        )
        return OpenAICompatibleClient.from_settings(settings)
    return MockCompletionClient(estimator)
