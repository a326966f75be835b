"""CorsFilter — the per-request CORS decision.

Combines the three gates a request passes before it receives CORS headers:

  1. URL gate    — the full request URL (with query string) full-matches
                   filter.url_pattern
  2. Origin gate — the request carries an Origin header
  3. Policy gate — PolicyResolver.evaluate_origin() allows the origin

decide() is synchronous and may read the whitelist file on the rare reload
path, so async callers run it in a worker thread.
"""

from __future__ import annotations

import threading
from typing import Optional

import re2  # google-re2. NEVER: import re

from corsgate.config import Config
from corsgate.cors.headers import build_cors_headers
from corsgate.policy.base import Policy
from corsgate.policy.resolver import PolicyConfig, PolicyRegistry, PolicyResolver
from corsgate.utils.logger import get_logger

logger = get_logger(__name__)


class CorsFilter:
    """Decides, per request, which CORS headers (if any) to add.

    Usage:
        cors_filter = CorsFilter(load_config())
        headers = cors_filter.decide(url, origin)   # None → add nothing
        ...
        cors_filter.close()

    The policy is built lazily on first use (or eagerly via warm_up()) and
    cached until update_policy() changes the configuration.
    """

    def __init__(self, config: Config, registry: Optional[PolicyRegistry] = None) -> None:
        self._config = config
        self._url_regex = re2.compile(config.filter.url_pattern)
        if registry is None:
            registry = PolicyRegistry.builtin(
                debounce_ms=config.whitelist.debounce_ms,
                watch_ready_timeout_s=config.whitelist.watch_ready_timeout_s,
            )
        self._resolver = PolicyResolver(registry)
        # (policy configuration, resolver epoch) swapped as one reference, so a
        # request never pairs a new configuration with an old epoch.
        self._active: tuple[PolicyConfig, int] = (
            PolicyConfig(config.filter.policy_class, config.filter.policy_param),
            self._resolver.epoch,
        )
        self._update_lock = threading.Lock()

    # ── Properties ────────────────────────────────────────────────────────────

    @property
    def config(self) -> Config:
        return self._config

    @property
    def policy_config(self) -> PolicyConfig:
        return self._active[0]

    @property
    def resolver(self) -> PolicyResolver:
        return self._resolver

    # ── Decision API ──────────────────────────────────────────────────────────

    def applies_to(self, url: str) -> bool:
        """True if the filter is configured to handle ``url``."""
        return self._url_regex.fullmatch(url) is not None

    def policy(self) -> Optional[Policy]:
        """The active policy instance, or None if it cannot be built."""
        cfg, epoch = self._active
        return self._resolver.resolve(cfg.policy_class, cfg.policy_param, epoch)

    def evaluate(self, origin: Optional[str]) -> bool:
        """Policy decision for ``origin``. Never raises.

        A request that races update_policy() is decided against the
        configuration it started with; if that policy has already been dropped
        it is denied rather than rebuilt.
        """
        cfg, epoch = self._active
        return self._resolver.evaluate_origin(cfg.policy_class, cfg.policy_param, origin, epoch)

    def headers_for(self, origin: str) -> dict[str, str]:
        """Recommended CORS headers for an allowed ``origin``."""
        return build_cors_headers(origin, self._config.headers)

    def decide(self, url: str, origin: Optional[str]) -> Optional[dict[str, str]]:
        """Return the CORS headers to add for this request, or None.

        None when the URL is out of scope, the origin is absent, or the
        policy denies (including when it could not be built).
        """
        if origin is None or not self.applies_to(url):
            return None
        allowed = self.evaluate(origin)
        logger.debug(
            "CORS decision",
            origin=origin,
            allowed=allowed,
            policy_class=self._active[0].policy_class,
        )
        return self.headers_for(origin) if allowed else None

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def warm_up(self) -> bool:
        """Build the policy now instead of on the first request.

        Returns True if the policy was built successfully.
        """
        return self.policy() is not None

    def update_policy(self, policy_class: str, policy_param: Optional[str] = "") -> None:
        """Switch to a different policy configuration.

        The cached policy is dropped (closing its whitelist watcher) only when
        the configuration actually changes.
        """
        new_config = PolicyConfig(policy_class, policy_param or "")
        with self._update_lock:
            old_config = self._active[0]
            if new_config == old_config:
                return
            epoch = self._resolver.invalidate()
            self._active = (new_config, epoch)
        logger.info(
            "CORS policy configuration changed",
            old_policy_class=old_config.policy_class,
            new_policy_class=new_config.policy_class,
            new_policy_param=new_config.policy_param,
        )

    def close(self) -> None:
        self._resolver.close()
