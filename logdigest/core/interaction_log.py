"""
LogDigest - Model Interaction Log
=================================

Optional audit trail of every completion exchange. Each request and the
decoded response are written to their own Markdown file under
``<base_dir>/<container>/`` for debugging, cost auditing and prompt work.
Writing is best-effort: a failed write is logged and never fails the
analysis.
"""

from datetime import datetime, timezone
import itertools
import json
from pathlib import Path
import re
from typing import Any, Optional

from logdigest.utils.logging import get_logger

logger = get_logger(__name__)

_UNSAFE_FILENAME_CHARS = re.compile(r'[/\\:*?"<>|]')

INTERACTION_TEMPLATE = """# LLM Interaction Log

**Container**: {container_name}
**Operation**: {operation}
**Timestamp**: {timestamp}

## Original Input

{original_input}

## Request Sent to LLM

```json
{request}
```

## LLM Response

```json
{response}
```
"""


def safe_filename(name: str) -> str:
    """Replace characters that are not allowed in file names with "_"."""
    return _UNSAFE_FILENAME_CHARS.sub("_", name)


class InteractionLogger:
    """
    Writes one Markdown file per completion exchange.

    Files are named ``<UTC timestamp>-<sequence>.md`` so exchanges within
    the same second keep their order and never overwrite each other.
    """

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)
        self._sequence = itertools.count(1)

    def record(
        self,
        container_name: str,
        operation: str,
        original_input: str,
        request: dict[str, Any],
        response: dict[str, Any]
    ) -> Optional[Path]:
        """
        Write one exchange and return the file path, or None if writing failed.
        """
        now = datetime.now(timezone.utc)
        container_dir = self.base_dir / safe_filename(container_name)
        path = container_dir / f"{now.strftime('%Y-%m-%dT%H-%M-%SZ')}-{next(self._sequence):06d}.md"

        content = INTERACTION_TEMPLATE.format(
            container_name=container_name,
            operation=operation,
            timestamp=now.isoformat(),
            original_input=original_input,
            request=json.dumps(request, indent=2, ensure_ascii=False, default=str),
            response=json.dumps(response, indent=2, ensure_ascii=False, default=str),
        )

        try:
            container_dir.mkdir(parents=True, exist_ok=True, mode=0o750)
            path.write_text(content, encoding="utf-8")
            path.chmod(0o600)
        except OSError as e:
            logger.warning(
                f"Failed to write model interaction log for {container_name}: {e}",
                extra={"container": container_name, "path": str(path)}
            )
            return None

        return path
