"""Ordered, immutable sets of origin patterns.

A PatternSet is what a whitelist file compiles to. Every rule is applied as a
FULL-string match (anchored at both ends), never a search — the pattern
`example\\.org` does not admit `https://example.org.evil.com`.

IMPORT RULES:
  - `import re2` ONLY — google-re2 runs in linear time, so a hostile or careless
    whitelist line cannot stall a request thread with catastrophic backtracking.
  - re2 has no lookarounds and no backreferences. A whitelist line using them
    fails to compile, which fails the whole file open (see source.load).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Iterable, Iterator, Optional

import re2  # google-re2. NEVER: import re

from corsgate.constants import DEFAULT_MATCH_PATTERN
from corsgate.errors import WhitelistError

# Lines starting with one of these (after trimming) are comments.
COMMENT_PREFIXES: tuple[str, ...] = ("#", "//")


# ─── PatternRule ──────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PatternRule:
    """A single compiled whitelist rule.

    Fields:
        pattern: The regex source text as written in the whitelist file.
        regex:   The compiled google-re2 object.
        line_no: 1-based line number in the source file (0 when not file-backed).
    """

    pattern: str
    regex: Any
    line_no: int = 0

    @classmethod
    def compile(cls, pattern: str, line_no: int = 0) -> "PatternRule":
        """Compile ``pattern`` into a rule.

        Raises:
            re2.error: If the pattern is not a valid google-re2 regex.
        """
        return cls(pattern=pattern, regex=re2.compile(pattern), line_no=line_no)

    def matches(self, origin: str) -> bool:
        return self.regex.fullmatch(origin) is not None


# ─── PatternSet ───────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PatternSet:
    """An ordered, immutable collection of PatternRule objects.

    Order is the whitelist file's line order. Evaluation is first-match-wins;
    since the only observable result is a boolean, order matters for speed only.

    Instances are never mutated after construction. WhitelistSource publishes a
    new PatternSet on reload instead of editing the current one, so a reader
    always sees a complete rule set.

    A PatternSet always holds at least one rule.

    Raises:
        WhitelistError: If constructed with no rules.
    """

    rules: tuple[PatternRule, ...]

    def __post_init__(self) -> None:
        if not self.rules:
            raise WhitelistError("A whitelist needs at least one origin pattern")

    @classmethod
    def allow_all(cls) -> "PatternSet":
        """Return the one-rule fallback set that matches every origin."""
        return cls(rules=(PatternRule.compile(DEFAULT_MATCH_PATTERN),))

    @classmethod
    def from_lines(cls, lines: Iterable[str], source: Optional[str] = None) -> "PatternSet":
        """Parse whitelist-file lines into a PatternSet.

        Grammar, per line:
          - surrounding whitespace is trimmed
          - empty lines are skipped
          - lines starting with ``#`` or ``//`` are comments
          - anything else is a regex

        A line that fails to compile is fatal for the whole file: no partial
        set is ever returned.

        Raises:
            WhitelistError: On the first line that is not a valid regex, or if
                            no line holds a pattern.
        """
        rules: list[PatternRule] = []
        for line_no, raw in enumerate(lines, start=1):
            line = raw.strip()
            if not line or line.startswith(COMMENT_PREFIXES):
                continue
            try:
                rules.append(PatternRule.compile(line, line_no=line_no))
            except re2.error as exc:
                where = f"{source}:{line_no}" if source else f"line {line_no}"
                raise WhitelistError(
                    f"Invalid origin pattern at {where}: {line!r} ({exc})",
                    path=source,
                ) from exc
        if not rules:
            where = f": {source}" if source else ""
            raise WhitelistError(f"Whitelist file contains no patterns{where}", path=source)
        return cls(rules=tuple(rules))

    def matches(self, origin: Optional[str]) -> bool:
        """Return True iff any rule full-matches ``origin``.

        ``None`` never matches; callers decide what an absent origin means.
        """
        if origin is None:
            return False
        for rule in self.rules:
            if rule.matches(origin):
                return True
        return False

    @property
    def patterns(self) -> tuple[str, ...]:
        """The source text of every rule, in order."""
        return tuple(rule.pattern for rule in self.rules)

    def __len__(self) -> int:
        return len(self.rules)

    def __iter__(self) -> Iterator[PatternRule]:
        return iter(self.rules)
