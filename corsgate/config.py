"""Config loading for CorsGate.

Reads `.corsgate/config.yaml` (or `~/.corsgate/config.yaml`).
Raises SystemExit on parse errors or missing `version` field.
If no config file is found, returns default values (safe to run without config).

Config search order:
  1. `config_path` argument (if provided — for testing or explicit override)
  2. CORSGATE_CONFIG environment variable (if set)
  3. `.corsgate/config.yaml` (working directory — for development)
  4. `~/.corsgate/config.yaml` (home directory — for production deployments)

Environment variable overrides (applied after the file, so they always win):
  CORSGATE_PORT          — server.port
  CORSGATE_URL_PATTERN   — filter.url_pattern
  CORSGATE_POLICY_CLASS  — filter.policy_class
  CORSGATE_POLICY_PARAM  — filter.policy_param

All dataclasses are frozen: defaults are applied once here, at parse time,
and nothing downstream mutates configuration.
"""

from __future__ import annotations

import dataclasses
import os
import sys
from dataclasses import dataclass, field
from typing import Any, NoReturn, Optional

import re2  # google-re2. NEVER: import re
import yaml

from corsgate.constants import (
    DEFAULT_ALLOW_CREDENTIALS,
    DEFAULT_ALLOW_HEADERS,
    DEFAULT_ALLOW_METHODS,
    DEFAULT_EXPOSE_HEADERS,
    DEFAULT_MAX_AGE,
    DEFAULT_POLICY_CLASS,
    DEFAULT_POLICY_PARAM,
    DEFAULT_URL_PATTERN,
    DEFAULT_WATCH_DEBOUNCE_MS,
    DEFAULT_WATCH_READY_TIMEOUT_S,
)
from corsgate.utils.logger import get_logger

logger = get_logger(__name__)

# ─── Version constants ────────────────────────────────────────────────────────

SUPPORTED_CONFIG_VERSION = 1

SUPPORTED_VERSIONS: frozenset[int] = frozenset({1})

# Default config search paths (CORSGATE_CONFIG env var prepended at runtime)
DEFAULT_CONFIG_PATHS = [
    ".corsgate/config.yaml",
    os.path.expanduser("~/.corsgate/config.yaml"),
]


# ─── Dataclasses ─────────────────────────────────────────────────────────────


@dataclass(frozen=True)
class FilterConfig:
    """Which requests the filter looks at, and which policy decides.

    url_pattern:  Regex full-matched against the request URL including query string.
    policy_class: Registered policy name (AllowAll | AllowMatching | Whitelist | custom).
    policy_param: String handed to the policy factory (regex, file path, or ignored).
    """

    url_pattern: str = DEFAULT_URL_PATTERN
    policy_class: str = DEFAULT_POLICY_CLASS
    policy_param: str = DEFAULT_POLICY_PARAM


@dataclass(frozen=True)
class HeadersConfig:
    """Values written to the CORS response headers (already header strings)."""

    allow_headers: str = DEFAULT_ALLOW_HEADERS
    allow_credentials: str = DEFAULT_ALLOW_CREDENTIALS
    allow_methods: str = DEFAULT_ALLOW_METHODS
    expose_headers: str = DEFAULT_EXPOSE_HEADERS
    max_age: str = DEFAULT_MAX_AGE


@dataclass(frozen=True)
class WhitelistConfig:
    """Whitelist file watcher tuning."""

    debounce_ms: int = DEFAULT_WATCH_DEBOUNCE_MS
    watch_ready_timeout_s: float = DEFAULT_WATCH_READY_TIMEOUT_S


@dataclass(frozen=True)
class ServerConfig:
    """Uvicorn binding configuration."""

    host: str = "127.0.0.1"
    port: int = 8080


@dataclass(frozen=True)
class Config:
    """Root configuration object populated from .corsgate/config.yaml.

    All fields have safe defaults — CorsGate can start without any config file.
    """

    version: int = SUPPORTED_CONFIG_VERSION
    filter: FilterConfig = field(default_factory=FilterConfig)
    headers: HeadersConfig = field(default_factory=HeadersConfig)
    whitelist: WhitelistConfig = field(default_factory=WhitelistConfig)
    server: ServerConfig = field(default_factory=ServerConfig)
    path: Optional[str] = None  # Path to the loaded config file

    @classmethod
    def defaults(cls) -> "Config":
        """Return a fully-default Config (no file required)."""
        return cls()

    @classmethod
    def from_dict(cls, raw: dict, path: Optional[str] = None) -> "Config":
        """Construct Config from a parsed YAML dict.

        Merges user-supplied values onto defaults; unknown keys are silently ignored.

        Raises:
            SystemExit(1): On an invalid url_pattern regex or a non-numeric
                           whitelist/server setting.
        """
        where = path or "<config>"

        # ── Filter ────────────────────────────────────────────────────────────
        filter_raw = _section(raw, "filter", where)
        filter_config = FilterConfig(
            url_pattern=_string(filter_raw.get("url_pattern"), DEFAULT_URL_PATTERN),
            policy_class=_string(filter_raw.get("policy_class"), DEFAULT_POLICY_CLASS),
            policy_param=_string(filter_raw.get("policy_param"), DEFAULT_POLICY_PARAM),
        )
        _validate_url_pattern(filter_config.url_pattern, where)

        # ── Headers ───────────────────────────────────────────────────────────
        headers_raw = _section(raw, "headers", where)
        headers = HeadersConfig(
            allow_headers=_header_value(headers_raw.get("allow_headers"), DEFAULT_ALLOW_HEADERS),
            allow_credentials=_header_value(
                headers_raw.get("allow_credentials"), DEFAULT_ALLOW_CREDENTIALS
            ),
            allow_methods=_header_value(headers_raw.get("allow_methods"), DEFAULT_ALLOW_METHODS),
            expose_headers=_header_value(
                headers_raw.get("expose_headers"), DEFAULT_EXPOSE_HEADERS
            ),
            max_age=_header_value(headers_raw.get("max_age"), DEFAULT_MAX_AGE),
        )

        # ── Whitelist watcher ─────────────────────────────────────────────────
        whitelist_raw = _section(raw, "whitelist", where)
        whitelist = WhitelistConfig(
            debounce_ms=_number(
                whitelist_raw.get("debounce_ms", DEFAULT_WATCH_DEBOUNCE_MS),
                int,
                "whitelist.debounce_ms",
                where,
            ),
            watch_ready_timeout_s=_number(
                whitelist_raw.get("watch_ready_timeout_s", DEFAULT_WATCH_READY_TIMEOUT_S),
                float,
                "whitelist.watch_ready_timeout_s",
                where,
            ),
        )

        # ── Server ────────────────────────────────────────────────────────────
        server_raw = _section(raw, "server", where)
        server = ServerConfig(
            host=_string(server_raw.get("host"), "127.0.0.1"),
            port=_number(server_raw.get("port", 8080), int, "server.port", where),
        )

        return cls(
            version=raw.get("version", SUPPORTED_CONFIG_VERSION),
            filter=filter_config,
            headers=headers,
            whitelist=whitelist,
            server=server,
            path=path,
        )


# ─── Config loading ───────────────────────────────────────────────────────────


def load_config(config_path: Optional[str] = None) -> Config:
    """Load and validate CorsGate configuration.

    Search order:
      1. ``config_path`` argument (if provided — for testing or explicit override)
      2. ``CORSGATE_CONFIG`` environment variable (if set)
      3. ``.corsgate/config.yaml`` (current working directory)
      4. ``~/.corsgate/config.yaml`` (home directory)

    If no file is found at any of these paths, returns default Config (not an error).
    If a file is found but invalid, writes error to stderr and raises SystemExit(1).

    Returns:
        Config object with all values populated (file values merged onto defaults),
        with environment overrides applied.

    Raises:
        SystemExit(1): On YAML parse error, missing ``version`` field, unsupported
                       version, invalid ``filter.url_pattern``, or invalid env override.
    """
    search_paths: list[str] = []
    if config_path:
        search_paths.append(config_path)
    env_config = os.environ.get("CORSGATE_CONFIG")
    if env_config:
        search_paths.append(env_config)
    search_paths.extend(DEFAULT_CONFIG_PATHS)

    found_path: Optional[str] = None
    for candidate in search_paths:
        expanded = os.path.expanduser(candidate)
        if os.path.isfile(expanded):
            found_path = expanded
            break

    # ── No config file found ─────────────────────────────────────────────────
    if found_path is None:
        logger.info("No config file found — using defaults", searched=search_paths)
        return _apply_env_overrides(Config.defaults())

    # ── Parse config file ─────────────────────────────────────────────────────
    logger.info("Loading config", path=found_path)

    try:
        with open(found_path, encoding="utf-8") as fh:
            raw = yaml.safe_load(fh)
    except yaml.YAMLError as exc:
        _fail(
            f"CONFIG ERROR: Failed to parse {found_path}: {exc}\n"
            "CorsGate refuses to start with an invalid config. "
            "Check the YAML syntax and try again."
        )
    except OSError as exc:
        _fail(f"CONFIG ERROR: Could not read {found_path}: {exc}")

    if not isinstance(raw, dict):
        if raw is None:
            _fail(
                f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
                "Add 'version: 1' to the top of your config file."
            )
        _fail(
            f"CONFIG ERROR: {found_path} is not a valid YAML mapping.\n"
            "The config file must be a YAML dictionary at the top level."
        )

    # ── Version validation ────────────────────────────────────────────────────
    version = raw.get("version")
    if version is None:
        _fail(
            f"CONFIG ERROR: {found_path} is missing the required 'version' field.\n"
            "Add 'version: 1' to the top of your config file."
        )
    if version not in SUPPORTED_VERSIONS:
        _fail(
            f"CONFIG ERROR: Unsupported config version: {version}. "
            f"Supported versions: {sorted(SUPPORTED_VERSIONS)}."
        )

    config = _apply_env_overrides(Config.from_dict(raw, path=found_path))

    if config.filter.policy_class in ("AllowAll", "corsgate.AllowAll") and (
        config.headers.allow_credentials == "true"
    ):
        logger.warning(
            "SECURITY WARNING: AllowAll echoes every Origin with "
            "Access-Control-Allow-Credentials: true. Any site can make credentialed "
            "requests. Use AllowMatching or Whitelist in production."
        )

    logger.info(
        "Config loaded",
        path=found_path,
        version=config.version,
        policy_class=config.filter.policy_class,
        url_pattern=config.filter.url_pattern,
    )
    return config


def _apply_env_overrides(config: Config) -> Config:
    """Return ``config`` with environment variable overrides applied.

    Called for both file-loaded and default configs so env vars always take
    precedence over any file value.

    Raises:
        SystemExit(1): If CORSGATE_PORT is not an integer or
                       CORSGATE_URL_PATTERN is not a valid regex.
    """
    filter_changes: dict[str, str] = {}
    for env_name, field_name in (
        ("CORSGATE_URL_PATTERN", "url_pattern"),
        ("CORSGATE_POLICY_CLASS", "policy_class"),
        ("CORSGATE_POLICY_PARAM", "policy_param"),
    ):
        value = os.environ.get(env_name)
        if value is not None:
            filter_changes[field_name] = value

    if "url_pattern" in filter_changes:
        _validate_url_pattern(filter_changes["url_pattern"], "CORSGATE_URL_PATTERN")
    if filter_changes:
        config = dataclasses.replace(
            config, filter=dataclasses.replace(config.filter, **filter_changes)
        )

    env_port = os.environ.get("CORSGATE_PORT")
    if env_port is not None:
        try:
            port = int(env_port)
        except ValueError:
            _fail(
                f"CONFIG ERROR: CORSGATE_PORT environment variable is not a valid "
                f"integer: '{env_port}'"
            )
        config = dataclasses.replace(config, server=dataclasses.replace(config.server, port=port))

    return config


# ─── Parsing helpers ──────────────────────────────────────────────────────────


def _fail(msg: str) -> NoReturn:
    print(msg, file=sys.stderr)
    raise SystemExit(1)


def _section(raw: dict, name: str, where: str) -> dict:
    value = raw.get(name)
    if value is None:
        return {}
    if not isinstance(value, dict):
        _fail(f"CONFIG ERROR: '{name}' in {where} must be a mapping, got {type(value).__name__}.")
    return value


def _string(value: Any, default: str) -> str:
    if value is None:
        return default
    return str(value)


def _header_value(value: Any, default: str) -> str:
    """Normalise a YAML scalar or list into a header value string.

    true/false → "true"/"false"; lists are comma-joined; numbers are stringified.
    """
    if value is None:
        return default
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (list, tuple)):
        return ",".join(str(item).strip() for item in value)
    return str(value).strip()


def _number(value: Any, kind: type, name: str, where: str) -> Any:
    if isinstance(value, bool):
        _fail(f"CONFIG ERROR: '{name}' in {where} must be a number, got {value!r}.")
    try:
        number = kind(value)
    except (TypeError, ValueError):
        _fail(f"CONFIG ERROR: '{name}' in {where} must be a number, got {value!r}.")
    if number < 0:
        _fail(f"CONFIG ERROR: '{name}' in {where} must not be negative, got {value!r}.")
    return number


def _validate_url_pattern(pattern: str, where: str) -> None:
    try:
        re2.compile(pattern)
    except re2.error as exc:
        _fail(f"CONFIG ERROR: Invalid url_pattern {pattern!r} in {where}: {exc}")
