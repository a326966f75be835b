"""File-backed whitelist with watchfiles hot-reload.

Loads origin patterns from a plain text file (one regex per line, ``#`` and
``//`` comments) and keeps them fresh when the file is edited.

DESIGN:
  - Each WhitelistSource owns one daemon thread running ``watchfiles.watch()``
    on the file's directory. The thread never touches the rule set: it only
    bumps a generation counter when an event names the whitelist file.
  - get_current() compares that counter against the generation of the last
    load. On a mismatch the calling thread reloads, then publishes the new
    PatternSet with a single reference assignment. Readers never wait: while
    one thread reloads, the others keep returning the previous snapshot.
  - Load failures never raise out of this module. A missing, unreadable,
    empty or invalid file degrades to the allow-all fallback and is logged at
    ERROR (fail-open). Policy resolution failures elsewhere fail closed; the
    asymmetry is intentional and covered by tests.
  - Visibility latency after an edit is the watcher debounce plus the
    platform's notification latency. Best effort, not real-time.
"""

from __future__ import annotations

import os
import threading
from typing import Optional

import watchfiles

from corsgate.constants import (
    DEFAULT_WATCH_DEBOUNCE_MS,
    DEFAULT_WATCH_READY_TIMEOUT_S,
    WATCH_IDLE_TIMEOUT_MS,
    WATCH_STEP_MS,
)
from corsgate.errors import WhitelistError
from corsgate.utils.logger import PerformanceLogger, get_logger
from corsgate.whitelist.patterns import PatternSet

logger = get_logger(__name__)

# (mtime_ns, size, inode) of the whitelist file, or None when it cannot be stat'ed.
FileSignature = Optional[tuple[int, int, int]]


# ─── Loading ──────────────────────────────────────────────────────────────────


def load(path: str) -> PatternSet:
    """Read and compile a whitelist file.

    The file is UTF-8; a leading byte-order mark is tolerated and dropped.

    Patterns are google-re2 syntax. Lookarounds (``(?=``, ``(?!``) and
    backreferences (``\\1``) do not compile, and one such line makes the whole
    file invalid. WhitelistSource then falls back to allow-all: a line meant
    as "everything except evil", such as ``^(?!evil).*$``, ends up allowing
    every origin, evil included. Express exclusions as positive patterns.

    Raises:
        WhitelistError: If the path is missing, is a directory, cannot be read,
                        contains no patterns, or contains an invalid regex.
    """
    if not os.path.exists(path):
        raise WhitelistError(f"Whitelist file does not exist: {path}", path=path)
    if os.path.isdir(path):
        raise WhitelistError(
            f"Whitelist path is a directory. File expected: {path}", path=path
        )

    try:
        with open(path, encoding="utf-8-sig") as fh:
            lines = fh.read().splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        raise WhitelistError(f"Unable to read whitelist file {path}: {exc}", path=path) from exc

    return PatternSet.from_lines(lines, source=path)


def _file_signature(path: str) -> FileSignature:
    try:
        st = os.stat(path)
    except OSError:
        return None
    return (st.st_mtime_ns, st.st_size, st.st_ino)


# ─── WhitelistSource ─────────────────────────────────────────────────────────


class WhitelistSource:
    """Owns the current PatternSet for one whitelist file.

    Usage:
        source = WhitelistSource("/etc/corsgate/whitelist.txt")
        source.get_current().matches("https://example.org")
        ...
        source.close()

    Thread-safety:
        get_current() may be called from any number of threads at once. The
        cached PatternSet is immutable and swapped by reference; a reload is
        performed by at most one caller at a time (non-blocking try-lock).
    """

    def __init__(
        self,
        path: str,
        *,
        watch: bool = True,
        debounce_ms: int = DEFAULT_WATCH_DEBOUNCE_MS,
        ready_timeout_s: float = DEFAULT_WATCH_READY_TIMEOUT_S,
    ) -> None:
        self._path = os.path.abspath(path)
        self._name = os.path.basename(self._path)
        self._debounce_ms = debounce_ms

        # Bumped only by the watcher thread; compared by readers.
        self._generation = 0
        self._loaded_generation = 0
        self._reload_lock = threading.Lock()

        self._stop_event = threading.Event()
        self._ready = threading.Event()
        self._watcher_thread: Optional[threading.Thread] = None

        self._signature: FileSignature = None
        self._rules = self._load_or_default()
        logger.info("Whitelist loaded", path=self._path, count=len(self._rules))

        if watch:
            self._start_watcher(ready_timeout_s)

    # ── Public read API ───────────────────────────────────────────────────────

    @property
    def path(self) -> str:
        return self._path

    @property
    def generation(self) -> int:
        """Number of change events seen by the watcher so far."""
        return self._generation

    @property
    def watching(self) -> bool:
        thread = self._watcher_thread
        return thread is not None and thread.is_alive()

    def get_current(self) -> PatternSet:
        """Return the freshest known PatternSet (never empty, never None).

        If the watcher reported a change since the last load, reload first.
        Never blocks on filesystem events: it only reads a counter the watcher
        thread has already updated.
        """
        if self._generation != self._loaded_generation:
            self._maybe_reload()
        return self._rules

    def reload(self) -> PatternSet:
        """Force a reload from disk, regardless of watcher state."""
        with self._reload_lock:
            self._loaded_generation = self._generation
            self._rules = self._load_or_default()
        return self._rules

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def close(self, timeout: float = 5.0) -> None:
        """Stop the watcher thread. Idempotent."""
        self._stop_event.set()
        thread = self._watcher_thread
        if thread is not None and thread is not threading.current_thread():
            thread.join(timeout)
            if thread.is_alive():
                logger.warning("Whitelist watcher did not stop in time", path=self._path)
        self._watcher_thread = None

    def __enter__(self) -> "WhitelistSource":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __repr__(self) -> str:
        return f"WhitelistSource(path={self._path!r}, rules={len(self._rules)})"

    # ── Reload ────────────────────────────────────────────────────────────────

    def _maybe_reload(self) -> None:
        if not self._reload_lock.acquire(blocking=False):
            # Another thread is reloading; keep serving the current snapshot.
            return
        try:
            generation = self._generation
            if generation == self._loaded_generation:
                return
            # Record the generation before reading, so an edit that lands
            # mid-read triggers one more reload on the next call.
            self._loaded_generation = generation
            with PerformanceLogger("whitelist reload", logger):
                rules = self._load_or_default()
            self._rules = rules
            logger.info(
                "Whitelist hot-reloaded",
                path=self._path,
                count=len(rules),
                generation=generation,
            )
        finally:
            self._reload_lock.release()

    def _load_or_default(self) -> PatternSet:
        """Load the file, or return the allow-all fallback on any failure."""
        self._signature = _file_signature(self._path)
        try:
            return load(self._path)
        except WhitelistError as exc:
            logger.error(
                "Whitelist unavailable — reverting to default whitelist that allows all origins",
                path=self._path,
                reason=str(exc),
            )
            return PatternSet.allow_all()

    # ── Watcher thread ────────────────────────────────────────────────────────

    def _start_watcher(self, ready_timeout_s: float) -> None:
        directory = os.path.dirname(self._path)
        if not os.path.isdir(directory):
            logger.warning(
                "Whitelist directory does not exist — hot-reload disabled",
                path=self._path,
                directory=directory,
            )
            return

        thread = threading.Thread(
            target=self._watch,
            args=(directory,),
            name=f"whitelist-watcher:{self._name}",
            daemon=True,
        )
        self._watcher_thread = thread
        thread.start()

        if not self._ready.wait(ready_timeout_s):
            logger.warning(
                "Whitelist watcher not ready yet — early edits may be picked up late",
                path=self._path,
                timeout_s=ready_timeout_s,
            )

    def _is_whitelist_change(self, change: watchfiles.Change, path: str) -> bool:
        return os.path.basename(path) == self._name

    def _watch(self, directory: str) -> None:
        """Thread body: translate filesystem events into generation bumps."""
        logger.debug("Whitelist watcher started", path=self._path, directory=directory)
        try:
            for changes in watchfiles.watch(
                directory,
                watch_filter=self._is_whitelist_change,
                debounce=self._debounce_ms,
                step=WATCH_STEP_MS,
                stop_event=self._stop_event,
                rust_timeout=WATCH_IDLE_TIMEOUT_MS,
                yield_on_timeout=True,
                recursive=False,
            ):
                if not self._ready.is_set():
                    self._ready.set()
                    # Edits that happened between the initial load and the
                    # watcher being armed produced no event.
                    if not changes and _file_signature(self._path) != self._signature:
                        self._generation += 1
                if changes:
                    self._generation += 1
                    logger.debug(
                        "Whitelist change detected",
                        path=self._path,
                        events=len(changes),
                        generation=self._generation,
                    )
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Whitelist watcher error (watcher stopped, hot-reload disabled)",
                path=self._path,
                error=str(exc),
                error_type=type(exc).__name__,
            )
        finally:
            self._ready.set()
            logger.debug("Whitelist watcher stopped", path=self._path)
