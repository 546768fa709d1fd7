"""
LogDigest - Line Filter
=======================

Regex-based exclusion of log lines before they reach the model. Patterns
are compiled once; a compiled filter is never mutated afterwards and can be
shared between concurrent analyses.
"""

import re
from types import MappingProxyType
from typing import Iterator, Mapping, Optional, Sequence

from logdigest.config import RegexpFilterConfig
from logdigest.core.errors import FilterPatternError
from logdigest.core.models import FilterOutcome, LogRecord
from logdigest.utils.logging import get_logger

logger = get_logger(__name__)


class RegexpFilter:
    """
    Drops lines that match any of a set of regular expressions.

    Matching uses ``re.search`` and is case-sensitive unless a pattern
    carries its own ``(?i)`` flag. With no patterns every line is kept.
    """

    def __init__(self, patterns: Sequence[str] = ()):
        compiled = []
        for i, pattern in enumerate(patterns):
            try:
                compiled.append(re.compile(pattern))
            except re.error as e:
                raise FilterPatternError(i, pattern, str(e)) from e
        self._patterns: tuple[re.Pattern, ...] = tuple(compiled)

    @property
    def patterns(self) -> tuple[str, ...]:
        return tuple(p.pattern for p in self._patterns)

    def filter(self, lines: Sequence[str]) -> tuple[list[str], FilterOutcome]:
        """
        Return the lines that match no pattern, in order, with counts.

        Pattern testing for a line stops at the first match.
        """
        if not self._patterns:
            return list(lines), FilterOutcome.passthrough(len(lines))

        kept = [line for line in lines if not self.matches_any(line)]
        return kept, FilterOutcome(
            total_lines=len(lines),
            excluded_lines=len(lines) - len(kept),
            kept_lines=len(kept),
        )

    def matches_any(self, text: str) -> bool:
        """True if any pattern matches somewhere in ``text``."""
        if not text:
            return False
        return any(p.search(text) for p in self._patterns)

    def __len__(self) -> int:
        return len(self._patterns)


class FilterRegistry(Mapping[str, RegexpFilter]):
    """
    Read-only map of container name to its compiled filter.

    Built once at startup; containers without an entry are not filtered.
    """

    def __init__(self, filters: Optional[Mapping[str, RegexpFilter]] = None):
        self._filters = MappingProxyType(dict(filters or {}))

    @classmethod
    def from_config(cls, config: Mapping[str, RegexpFilterConfig]) -> "FilterRegistry":
        """
        Compile every enabled, non-empty filter configuration.

        Raises:
            FilterPatternError: naming the container, pattern index and text
        """
        filters: dict[str, RegexpFilter] = {}
        for container, filter_config in config.items():
            if not filter_config.enabled or not filter_config.patterns:
                continue
            try:
                filters[container] = RegexpFilter(filter_config.patterns)
            except FilterPatternError as e:
                raise FilterPatternError(e.index, e.pattern, e.reason, container=container) from e

        logger.info(
            f"Compiled line filters for {len(filters)} containers",
            extra={"containers": sorted(filters)}
        )
        return cls(filters)

    def __getitem__(self, container: str) -> RegexpFilter:
        return self._filters[container]

    def __iter__(self) -> Iterator[str]:
        return iter(self._filters)

    def __len__(self) -> int:
        return len(self._filters)

    def apply(
        self,
        container: str,
        records: Sequence[LogRecord]
    ) -> tuple[list[LogRecord], FilterOutcome]:
        """
        Filter records by message using the container's patterns.

        Returns the kept records in order and the filter outcome.
        """
        line_filter = self._filters.get(container)
        if line_filter is None:
            return list(records), FilterOutcome.passthrough(len(records))

        kept = [r for r in records if not line_filter.matches_any(r.message)]
        outcome = FilterOutcome(
            total_lines=len(records),
            excluded_lines=len(records) - len(kept),
            kept_lines=len(kept),
        )

        if outcome.excluded_lines:
            logger.debug(
                f"Filtered {outcome.excluded_lines} of {outcome.total_lines} lines for {container}",
                extra={"container": container, "excluded": outcome.excluded_lines}
            )

        return kept, outcome
