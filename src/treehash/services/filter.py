"""Name-based exclusion filter.

A single pattern is compiled once at startup and shared read-only by every
walker thread. It is tested against the base name of each directory entry;
a matching directory prunes its whole subtree, a matching file is skipped.
"""

import fnmatch
import logging
import re
from typing import Optional

logger = logging.getLogger(__name__)

FILTER_SYNTAXES = ("regex", "glob")


class NameFilter:
    """Decides whether a directory entry is excluded from processing.

    Regex patterns use an unanchored search, so ``skip`` excludes
    ``skip``, ``skipped`` and ``noskip`` alike; anchor with ``^skip$`` for
    an exact name. Glob patterns must match the whole name.

    An empty pattern, or one that fails to compile, produces a no-op
    filter that excludes nothing.
    """

    def __init__(self, pattern: Optional[str] = None, syntax: str = "regex"):
        """Compile the filter.

        Args:
            pattern: Regular expression or glob pattern; empty disables filtering
            syntax: Either "regex" or "glob"

        Raises:
            ValueError: If syntax is not a supported filter syntax
        """
        if syntax not in FILTER_SYNTAXES:
            raise ValueError(f"Unsupported filter syntax: {syntax} (expected one of {FILTER_SYNTAXES})")

        self.pattern = pattern or ""
        self.syntax = syntax
        self._regex: Optional[re.Pattern[str]] = None

        if not self.pattern:
            return

        source = fnmatch.translate(self.pattern) if syntax == "glob" else self.pattern
        try:
            self._regex = re.compile(source)
        except re.error as e:
            logger.warning(f"Ignoring invalid filter pattern {self.pattern!r}: {e}")
            self._regex = None

    @property
    def active(self) -> bool:
        """Whether this filter can exclude anything at all."""
        return self._regex is not None

    def matches(self, name: str) -> bool:
        """Check whether an entry name is excluded.

        Args:
            name: Base name of a file or directory (not a full path)

        Returns:
            True if the entry must be skipped
        """
        if self._regex is None:
            return False
        if self.syntax == "glob":
            return self._regex.fullmatch(name) is not None
        return self._regex.search(name) is not None

    def __repr__(self) -> str:
        return f"NameFilter(pattern={self.pattern!r}, syntax={self.syntax!r}, active={self.active})"
