"""
LogDigest - Prompt Loader
=========================

Renders the system, analysis, chunk-summary and synthesis prompts from
Markdown templates. Built-in templates ship with the package; each one can
be replaced by a file named in the settings.

Templates use ``str.format`` named fields:
- analysis:       {container_name} {log_count} {logs}
- chunk summary:  {container_name} {chunk_num} {total_chunks} {logs}
- synthesis:      {container_name} {summaries}
"""

from importlib import resources
from pathlib import Path
from typing import Any, Sequence

from logdigest.config import Settings
from logdigest.core.errors import PromptRenderError
from logdigest.utils.logging import get_logger

logger = get_logger(__name__)

SYSTEM_PROMPT = "system_prompt"
ANALYSIS_PROMPT = "analysis_prompt"
CHUNK_SUMMARY_PROMPT = "chunk_summary_prompt"
SYNTHESIS_PROMPT = "synthesis_prompt"

INTERNAL_SOURCE = "INTERNAL DEFAULT"


class PromptLoader:
    """
    Loads prompt templates and renders them with analysis context.

    Attributes:
        settings: Provides the optional override paths
    """

    def __init__(self, settings: Settings):
        self.settings = settings
        self._sources: dict[str, str] = {}

    def _override_path(self, name: str) -> str:
        return {
            SYSTEM_PROMPT: self.settings.system_prompt_path,
            ANALYSIS_PROMPT: self.settings.analysis_prompt_path,
            CHUNK_SUMMARY_PROMPT: self.settings.chunk_summary_prompt_path,
            SYNTHESIS_PROMPT: self.settings.synthesis_prompt_path,
        }[name]

    def _load(self, name: str) -> str:
        """Read the override file if configured and readable, else the built-in."""
        override = self._override_path(name)
        if override:
            path = Path(override)
            try:
                content = path.read_text(encoding="utf-8")
                self._sources[name] = f"EXTERNAL: {path}"
                return content
            except OSError as e:
                logger.warning(
                    f"Could not read {name} from {path}, falling back to built-in default",
                    extra={"prompt": name, "path": str(path), "error": str(e)}
                )

        try:
            content = resources.files("logdigest").joinpath(f"templates/{name}.md").read_text(encoding="utf-8")
        except OSError as e:
            raise PromptRenderError(name, f"built-in template missing: {e}") from e

        self._sources[name] = INTERNAL_SOURCE
        return content

    def _render(self, name: str, **fields: Any) -> str:
        template = self._load(name)
        try:
            return template.format(**fields)
        except KeyError as e:
            raise PromptRenderError(name, f"unknown template field {e}") from e
        except (ValueError, IndexError) as e:
            raise PromptRenderError(name, f"malformed template: {e}") from e

    def system_prompt(self, ignore_instructions: str = "") -> str:
        """Return the system prompt, with container instructions appended if any."""
        prompt = self._load(SYSTEM_PROMPT)
        if ignore_instructions:
            prompt += f"\n\nUser Instructions for this container:\n{ignore_instructions}"
        return prompt

    def analysis_prompt(self, container_name: str, logs: str, log_count: int) -> str:
        return self._render(
            ANALYSIS_PROMPT,
            container_name=container_name,
            logs=logs,
            log_count=log_count,
        )

    def chunk_summary_prompt(
        self,
        container_name: str,
        chunk_num: int,
        total_chunks: int,
        logs: str
    ) -> str:
        """Render the summary request for chunk ``chunk_num`` (1-based) of ``total_chunks``."""
        return self._render(
            CHUNK_SUMMARY_PROMPT,
            container_name=container_name,
            chunk_num=chunk_num,
            total_chunks=total_chunks,
            logs=logs,
        )

    def synthesis_prompt(self, container_name: str, summaries: Sequence[str]) -> str:
        combined = "".join(
            f"\n--- Chunk {i} Summary ---\n{summary}\n"
            for i, summary in enumerate(summaries, start=1)
        )
        return self._render(
            SYNTHESIS_PROMPT,
            container_name=container_name,
            summaries=combined,
        )

    def prompt_sources(self) -> dict[str, str]:
        """Where each prompt loaded so far came from."""
        return dict(self._sources)


def load_ignore_instructions(container_name: str, ignore_dir: str) -> str:
    """
    Read free-text instructions for a container from ``<ignore_dir>/<name>.md``.

    "/" in container names becomes "_". A missing file yields "", and so
    does an unreadable or non-UTF-8 one, after a warning.
    """
    safe_name = container_name.replace("/", "_")
    path = Path(ignore_dir) / f"{safe_name}.md"
    if not path.is_file():
        return ""

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        logger.warning(
            f"Could not read ignore instructions for {container_name}, continuing without them",
            extra={"container": container_name, "path": str(path), "error": str(e)}
        )
        return ""

    logger.info(
        f"Ignore instructions found for container {container_name}",
        extra={"container": container_name, "path": str(path)}
    )
    return content
