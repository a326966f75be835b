"""Built-in CORS policies: AllowAll, AllowMatching, Whitelist.

Each takes the filter's ``policy_param`` string as its only positional
argument, so all three can be built by the same registry call.

Null-origin behaviour differs on purpose:
  - AllowAll.is_allowed(None)      → True
  - AllowMatching.is_allowed(None) → False
  - Whitelist.is_allowed(None)     → False
The filter never emits headers without an origin, so AllowAll's True only
shows up through evaluate_origin().
"""

from __future__ import annotations

import os
from typing import Optional

import re2  # google-re2. NEVER: import re

from corsgate.constants import (
    DEFAULT_MATCH_PATTERN,
    DEFAULT_WATCH_DEBOUNCE_MS,
    DEFAULT_WATCH_READY_TIMEOUT_S,
)
from corsgate.utils.logger import get_logger
from corsgate.whitelist.patterns import PatternSet
from corsgate.whitelist.source import WhitelistSource

logger = get_logger(__name__)


class AllowAll:
    """Adds CORS headers for every request that carries an Origin header.

    The parameter is accepted for symmetry with the other policies and ignored.
    """

    def __init__(self, param: Optional[str] = None) -> None:
        pass

    def is_allowed(self, origin: Optional[str]) -> bool:
        return True

    def __repr__(self) -> str:
        return "AllowAll()"


class AllowMatching:
    """Allows origins that full-match a single regex.

    An empty or missing parameter means ``^.*$`` — equivalent to AllowAll for
    any origin that is present.

    Raises:
        re2.error: At construction, if the parameter is not a valid regex.
                   PolicyResolver logs this and denies (fail-closed).
    """

    def __init__(self, param: Optional[str] = None) -> None:
        self._pattern = param or DEFAULT_MATCH_PATTERN
        self._regex = re2.compile(self._pattern)

    @property
    def match_pattern(self) -> str:
        return self._pattern

    def is_allowed(self, origin: Optional[str]) -> bool:
        return origin is not None and self._regex.fullmatch(origin) is not None

    def __repr__(self) -> str:
        return f"AllowMatching({self._pattern!r})"


class Whitelist:
    """Allows origins matching any pattern in a hot-reloaded whitelist file.

    The parameter is a file path; ``~`` and ``$VARS`` are expanded. A missing
    or empty parameter, like a missing or broken file, falls back to the
    allow-all whitelist with an ERROR log (fail-open).
    """

    def __init__(
        self,
        param: Optional[str] = None,
        *,
        watch: bool = True,
        debounce_ms: int = DEFAULT_WATCH_DEBOUNCE_MS,
        ready_timeout_s: float = DEFAULT_WATCH_READY_TIMEOUT_S,
    ) -> None:
        self._source: Optional[WhitelistSource] = None
        self._fallback: Optional[PatternSet] = None

        file_path = os.path.expanduser(os.path.expandvars(param)) if param else ""
        if not file_path:
            logger.error(
                "policy_param should be configured with the path to a whitelist file — "
                "reverting to default whitelist that allows all origins"
            )
            self._fallback = PatternSet.allow_all()
            return

        self._source = WhitelistSource(
            file_path,
            watch=watch,
            debounce_ms=debounce_ms,
            ready_timeout_s=ready_timeout_s,
        )

    @property
    def file_path(self) -> Optional[str]:
        return self._source.path if self._source is not None else None

    @property
    def source(self) -> Optional[WhitelistSource]:
        return self._source

    def get_whitelist(self) -> PatternSet:
        """Current rule set (reloading first if the file changed)."""
        if self._source is None:
            assert self._fallback is not None
            return self._fallback
        return self._source.get_current()

    def is_allowed(self, origin: Optional[str]) -> bool:
        if origin is None:
            return False
        return self.get_whitelist().matches(origin)

    def close(self) -> None:
        if self._source is not None:
            self._source.close()

    def __repr__(self) -> str:
        return f"Whitelist({self.file_path!r})"
