"""CorsGate policies — pluggable origin admission.

Public API:
    Policy          — Protocol: is_allowed(origin) -> bool
    AllowAll        — always allows
    AllowMatching   — allows origins full-matching one regex
    Whitelist       — allows origins matching a hot-reloaded whitelist file
    PolicyConfig    — (policy_class, policy_param) cache identity
    PolicyRegistry  — name → factory table (extension point for custom policies)
    PolicyResolver  — builds and caches policies; evaluate_origin()
"""
from corsgate.policy.base import Policy, PolicyFactory, close_policy
from corsgate.policy.builtin import AllowAll, AllowMatching, Whitelist
from corsgate.policy.resolver import PolicyConfig, PolicyRegistry, PolicyResolver

__all__ = [
    "AllowAll",
    "AllowMatching",
    "Policy",
    "PolicyConfig",
    "PolicyFactory",
    "PolicyRegistry",
    "PolicyResolver",
    "Whitelist",
    "close_policy",
]
