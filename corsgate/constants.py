"""Shared constants for CorsGate.

Default header values, default policy settings, and whitelist watcher timings
are defined here. No magic strings in other modules — import from here.
"""

# ─── Policy defaults ─────────────────────────────────────────────────────────

# Regex that matches every origin. Used by AllowMatching when no parameter is
# given, and as the single rule of the fallback whitelist.
DEFAULT_MATCH_PATTERN: str = "^.*$"

# Full request URL (including query string) pattern the filter applies to.
DEFAULT_URL_PATTERN: str = "^.*$"

DEFAULT_POLICY_CLASS: str = "AllowAll"
DEFAULT_POLICY_PARAM: str = ""

# ─── CORS response header defaults ───────────────────────────────────────────

DEFAULT_ALLOW_HEADERS: str = "Authorization,Content-Type,Link,X-Total-Count,Range"
DEFAULT_ALLOW_CREDENTIALS: str = "true"
DEFAULT_ALLOW_METHODS: str = "DELETE,GET,HEAD,OPTIONS,PATCH,POST,PUT"
DEFAULT_EXPOSE_HEADERS: str = (
    "Accept-Ranges,Content-Length,Content-Range,ETag,Link,Server,X-Total-Count"
)
DEFAULT_MAX_AGE: str = "864000"  # 10 days

# ─── Whitelist file watcher ──────────────────────────────────────────────────

# Quiet period watchfiles waits for after the first change before yielding.
# Bounds how quickly an edited whitelist becomes visible.
DEFAULT_WATCH_DEBOUNCE_MS: int = 300

# How long a WhitelistSource waits at construction for its watcher to be armed.
# Edits made before the watcher is armed are caught by a signature check.
DEFAULT_WATCH_READY_TIMEOUT_S: float = 2.0

# Idle wake-up interval of the watcher thread (milliseconds).
WATCH_IDLE_TIMEOUT_MS: int = 250

# Polling step inside the watcher while collecting a burst of changes.
WATCH_STEP_MS: int = 50
