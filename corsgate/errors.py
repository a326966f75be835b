"""Exception types raised inside CorsGate.

None of these ever escape into the request path: WhitelistSource turns a
WhitelistError into the allow-all fallback, and PolicyResolver turns a
PolicyResolutionError into a cached "deny".
"""

from __future__ import annotations

from typing import Optional


class CorsGateError(Exception):
    """Base class for all CorsGate errors."""


class WhitelistError(CorsGateError):
    """The whitelist file could not be loaded.

    Raised for a missing path, a directory, an unreadable file, a file with no
    patterns, or a line that is not a valid regex.
    """

    def __init__(self, message: str, path: Optional[str] = None) -> None:
        super().__init__(message)
        self.path = path


class PolicyResolutionError(CorsGateError):
    """A policy name is unknown or its factory raised during construction."""

    def __init__(self, message: str, policy_class: str, policy_param: str = "") -> None:
        super().__init__(message)
        self.policy_class = policy_class
        self.policy_param = policy_param
