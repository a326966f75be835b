"""Root test configuration for CorsGate.

Isolates every test from the developer's environment:
  - CORSGATE_* environment variables are cleared
  - the default config search paths (.corsgate/, ~/.corsgate/) are disabled

Also provides whitelist-file helpers shared by the unit and integration suites.
"""

import os
import time
from typing import Callable

import pytest

_ENV_VARS = (
    "CORSGATE_CONFIG",
    "CORSGATE_PORT",
    "CORSGATE_URL_PATTERN",
    "CORSGATE_POLICY_CLASS",
    "CORSGATE_POLICY_PARAM",
)

# The whitelist used throughout the suite: a blank line, two comment styles,
# then two patterns.
SAMPLE_WHITELIST = (
    "\n"
    "# Allow example.com and example.org, with or without www, http or https\n"
    "// Allow plain-http example.net only\n"
    "^http(s)?://(www\\.)?example\\.(com|org)$\n"
    "^http://example\\.net$\n"
)


@pytest.fixture(autouse=True)
def isolate_config(monkeypatch: pytest.MonkeyPatch) -> None:
    """Clear CorsGate env vars and disable the default config search paths."""
    for name in _ENV_VARS:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setattr("corsgate.config.DEFAULT_CONFIG_PATHS", [])


@pytest.fixture()
def write_whitelist(tmp_path) -> Callable[..., str]:
    """Return a helper that writes whitelist content and returns its path.

    Writes go through a temp file + os.replace so a concurrent reader never
    sees a half-written file.
    """

    def _write(content: str = SAMPLE_WHITELIST, name: str = "whitelist.txt") -> str:
        path = os.path.join(str(tmp_path), name)
        tmp = path + ".tmp"
        with open(tmp, "w", encoding="utf-8") as fh:
            fh.write(content)
        os.replace(tmp, path)
        return path

    return _write


@pytest.fixture()
def wait_until() -> Callable[..., bool]:
    """Return a helper polling ``predicate`` until true or ``timeout`` elapses."""

    def _wait(predicate: Callable[[], bool], timeout: float = 5.0, interval: float = 0.05) -> bool:
        deadline = time.monotonic() + timeout
        while time.monotonic() < deadline:
            if predicate():
                return True
            time.sleep(interval)
        return predicate()

    return _wait
