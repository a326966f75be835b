"""Policy Protocol — the origin-admission capability.

A policy answers one question: should CORS headers be emitted for this
origin? Implementations are constructed from a single string parameter
(regex, file path, or ignored) by a factory registered in PolicyRegistry.

Layout:
    base.py     — Policy Protocol + PolicyFactory alias + close_policy()
    builtin.py  — AllowAll, AllowMatching, Whitelist
    resolver.py — PolicyRegistry, PolicyConfig, PolicyResolver
"""

from __future__ import annotations

from typing import Callable, Optional, Protocol, runtime_checkable

from corsgate.utils.logger import get_logger

logger = get_logger(__name__)


@runtime_checkable
class Policy(Protocol):
    """Pluggable origin-admission interface.

    is_allowed() is called once per request from a worker thread, possibly
    from many threads at once; implementations must be safe for concurrent
    use and must be cheap in the steady state.

    Policies holding resources (file watchers) may also define ``close()``;
    it is optional and looked up with close_policy().
    """

    def is_allowed(self, origin: Optional[str]) -> bool:
        """Return True if CORS headers should be added for ``origin``.

        ``origin`` is the raw Origin request header, or None when absent.
        """
        ...


PolicyFactory = Callable[[str], Policy]


def close_policy(policy: Optional[Policy]) -> None:
    """Release whatever ``policy`` holds, if it defines close(). Never raises."""
    close = getattr(policy, "close", None)
    if not callable(close):
        return
    try:
        close()
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "Policy close error (non-fatal)",
            policy=type(policy).__name__,
            error=str(exc),
        )
