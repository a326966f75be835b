"""Policy registry and per-configuration policy cache.

PolicyRegistry maps policy names to factories. It replaces class lookup by
name: the built-ins are registered up front, and custom policies are added
explicitly with register().

PolicyResolver turns a (policy_class, policy_param) pair into a Policy and
keeps it for the lifetime of the filter configuration, so the whitelist file
is read and regexes are compiled once, not once per request.

Failure posture:
  - Unknown name or a factory that raises → ERROR log, cached None, every
    request denied (fail-closed). The failure is cached too, so a broken
    configuration logs once instead of once per request.
  - evaluate_origin() NEVER raises.
"""

from __future__ import annotations

import functools
import threading
from dataclasses import dataclass
from typing import Iterator, Optional

from corsgate.constants import DEFAULT_WATCH_DEBOUNCE_MS, DEFAULT_WATCH_READY_TIMEOUT_S
from corsgate.errors import PolicyResolutionError
from corsgate.policy.base import Policy, PolicyFactory, close_policy
from corsgate.policy.builtin import AllowAll, AllowMatching, Whitelist
from corsgate.utils.logger import get_logger

logger = get_logger(__name__)

# Prefix under which the built-ins are also registered, for configurations
# that spell policies as dotted class paths.
_LEGACY_PREFIX = "corsgate."


# ─── PolicyConfig ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class PolicyConfig:
    """Identity of a policy instance: which factory, with which parameter."""

    policy_class: str
    policy_param: str = ""


# ─── PolicyRegistry ───────────────────────────────────────────────────────────


class PolicyRegistry:
    """Name → factory table.

    Usage:
        registry = PolicyRegistry.builtin()
        registry.register("AllowLocalhost", lambda param: AllowLocalhost())
    """

    def __init__(self) -> None:
        self._factories: dict[str, PolicyFactory] = {}
        self._lock = threading.Lock()

    @classmethod
    def builtin(
        cls,
        *,
        debounce_ms: int = DEFAULT_WATCH_DEBOUNCE_MS,
        watch_ready_timeout_s: float = DEFAULT_WATCH_READY_TIMEOUT_S,
    ) -> "PolicyRegistry":
        """Registry holding AllowAll, AllowMatching and Whitelist.

        Each is registered under its short name and under ``corsgate.<Name>``.
        The watcher options are bound into the Whitelist factory.
        """
        registry = cls()
        whitelist_factory = functools.partial(
            Whitelist,
            debounce_ms=debounce_ms,
            ready_timeout_s=watch_ready_timeout_s,
        )
        for name, factory in (
            ("AllowAll", AllowAll),
            ("AllowMatching", AllowMatching),
            ("Whitelist", whitelist_factory),
        ):
            registry.register(name, factory)
            registry.register(_LEGACY_PREFIX + name, factory)
        return registry

    def register(self, name: str, factory: PolicyFactory) -> None:
        """Register (or replace) the factory for ``name``."""
        if not name:
            raise ValueError("Policy name must be a non-empty string")
        if not callable(factory):
            raise TypeError(f"Policy factory for {name!r} is not callable")
        with self._lock:
            replaced = name in self._factories
            self._factories[name] = factory
        logger.debug("Policy registered", policy_class=name, replaced=replaced)

    def unregister(self, name: str) -> None:
        with self._lock:
            self._factories.pop(name, None)

    def get(self, name: str) -> Optional[PolicyFactory]:
        return self._factories.get(name)

    def create(self, name: str, param: str) -> Policy:
        """Construct a policy.

        Raises:
            PolicyResolutionError: Unknown name, or the factory raised.
        """
        factory = self.get(name)
        if factory is None:
            raise PolicyResolutionError(
                f"Policy class {name!r} not found. Registered: {sorted(self._factories)}",
                policy_class=name,
                policy_param=param,
            )
        try:
            return factory(param)
        except Exception as exc:
            raise PolicyResolutionError(
                f"Unable to instantiate policy class {name!r} with parameter {param!r}: {exc}",
                policy_class=name,
                policy_param=param,
            ) from exc

    def __contains__(self, name: object) -> bool:
        return name in self._factories

    def __iter__(self) -> Iterator[str]:
        return iter(sorted(self._factories))


# ─── PolicyResolver ───────────────────────────────────────────────────────────


class PolicyResolver:
    """Lazily builds and caches one Policy per PolicyConfig.

    Thread-safety:
        Cache hits are lock-free dict reads. Misses take a lock and re-check,
        so concurrent first use of the same configuration constructs the
        policy exactly once.

    Epochs:
        invalidate() starts a new epoch. A caller that read its configuration
        before the invalidation passes the epoch it saw to resolve(); a miss
        under a stale epoch is answered with None and never cached, so an
        in-flight request cannot resurrect a dropped policy.
    """

    def __init__(self, registry: Optional[PolicyRegistry] = None) -> None:
        self._registry = registry if registry is not None else PolicyRegistry.builtin()
        self._cache: dict[PolicyConfig, Optional[Policy]] = {}
        self._lock = threading.Lock()
        self._epoch = 0

    @property
    def registry(self) -> PolicyRegistry:
        return self._registry

    @property
    def epoch(self) -> int:
        """Incremented by every invalidate()."""
        return self._epoch

    def resolve(
        self,
        policy_class: str,
        policy_param: Optional[str] = "",
        epoch: Optional[int] = None,
    ) -> Optional[Policy]:
        """Return the cached policy for this configuration, building it on first use.

        Returns None when the policy cannot be built (already logged), or when
        ``epoch`` is given and the cache has been invalidated since.
        """
        key = PolicyConfig(policy_class, policy_param or "")
        try:
            return self._cache[key]
        except KeyError:
            pass

        with self._lock:
            if key in self._cache:
                return self._cache[key]
            if epoch is not None and epoch != self._epoch:
                logger.debug(
                    "Stale policy configuration — not rebuilding",
                    policy_class=key.policy_class,
                    epoch=epoch,
                    current_epoch=self._epoch,
                )
                return None
            policy = self._build(key)
            self._cache[key] = policy
            return policy

    def evaluate_origin(
        self,
        policy_class: str,
        policy_param: Optional[str],
        origin: Optional[str],
        epoch: Optional[int] = None,
    ) -> bool:
        """Decide whether CORS headers are allowed for ``origin``.

        INVARIANT: NEVER raises. Any failure → False (no headers).
        """
        policy = self.resolve(policy_class, policy_param, epoch)
        if policy is None:
            return False
        try:
            return bool(policy.is_allowed(origin))
        except Exception as exc:  # noqa: BLE001
            logger.error(
                "Policy evaluation error — treating origin as not allowed",
                policy_class=policy_class,
                origin=origin,
                error=str(exc),
                error_type=type(exc).__name__,
            )
            return False

    def invalidate(self) -> int:
        """Drop every cached policy, release its resources, and start a new epoch.

        Returns:
            The new epoch.
        """
        with self._lock:
            cached = list(self._cache.values())
            self._cache.clear()
            self._epoch += 1
            epoch = self._epoch
        for policy in cached:
            close_policy(policy)
        if cached:
            logger.debug("Policy cache invalidated", count=len(cached), epoch=epoch)
        return epoch

    def close(self) -> None:
        self.invalidate()

    def cached_configs(self) -> list[PolicyConfig]:
        return list(self._cache)

    def _build(self, key: PolicyConfig) -> Optional[Policy]:
        try:
            policy = self._registry.create(key.policy_class, key.policy_param)
        except PolicyResolutionError as exc:
            logger.error(
                "Policy resolution failed — CORS headers will not be added",
                policy_class=key.policy_class,
                policy_param=key.policy_param,
                error=str(exc),
                cause=type(exc.__cause__).__name__ if exc.__cause__ else None,
            )
            return None
        logger.info(
            "Policy created",
            policy_class=key.policy_class,
            policy_param=key.policy_param,
            policy=repr(policy),
        )
        return policy
