"""Policy evaluation benchmark.

Measures steady-state p99 latency of the per-request CORS decision:

  1. AllowAll / AllowMatching — single compiled regex, expected < 0.05ms p99
  2. Whitelist (2 / 20 / 200 rules) — cached PatternSet, no file I/O
  3. CorsFilter.decide() — URL gate + policy + header dict

Whitelist rules are scanned in order, so the denied origin (no rule matches)
is the worst case for each size.

Usage (from project root, with .venv activated):
    python benchmarks/bench_policy.py
"""

from __future__ import annotations

import os
import statistics
import tempfile
import time
from typing import Any, Callable

from corsgate.config import Config
from corsgate.cors.filter import CorsFilter
from corsgate.policy.builtin import AllowAll, AllowMatching, Whitelist

# ---------------------------------------------------------------------------
# Inputs
# ---------------------------------------------------------------------------

ALLOWED_ORIGIN = "https://www.example.org"
DENIED_ORIGIN = "https://attacker.invalid"
REQUEST_URL = "http://api.internal/v1/items?page=2"

P99_LIMIT_MS = 1.0


def _write_whitelist(directory: str, size: int) -> str:
    path = os.path.join(directory, f"whitelist-{size}.txt")
    with open(path, "w", encoding="utf-8") as fh:
        fh.write("# generated for benchmarking\n")
        for i in range(size - 1):
            fh.write(f"^https://tenant{i}\\.example\\.com$\n")
        fh.write("^http(s)?://(www\\.)?example\\.(com|org)$\n")
    return path


# ---------------------------------------------------------------------------
# Benchmark runner
# ---------------------------------------------------------------------------


def measure_p99(fn: Callable[..., Any], *args: Any, n: int = 1_000) -> tuple[float, float, float]:
    """Run fn(*args) n times and return (p50, p99, max) in milliseconds."""
    latencies: list[float] = []
    for _ in range(n):
        start = time.perf_counter()
        fn(*args)
        latencies.append((time.perf_counter() - start) * 1_000)
    latencies.sort()
    return statistics.median(latencies), latencies[int(0.99 * n)], latencies[-1]


def run_benchmarks() -> bool:
    """Run all benchmarks. Returns True if every p99 is within the limit."""
    WARMUP = 100
    N = 2_000

    print("=" * 70)
    print("CorsGate policy evaluation benchmark")
    print(f"Warmup: {WARMUP} calls | Measurement: {N} calls each")
    print("=" * 70)

    with tempfile.TemporaryDirectory() as directory:
        whitelists = {size: Whitelist(_write_whitelist(directory, size), watch=False)
                      for size in (2, 20, 200)}
        cors_filter = CorsFilter(Config.defaults())

        scenarios: list[tuple[str, Callable[..., Any], tuple[Any, ...]]] = [
            ("AllowAll", AllowAll().is_allowed, (ALLOWED_ORIGIN,)),
            ("AllowMatching (allowed)", AllowMatching("^https://(www\\.)?example\\.org$").is_allowed,
             (ALLOWED_ORIGIN,)),
            ("CorsFilter.decide (AllowAll)", cors_filter.decide, (REQUEST_URL, ALLOWED_ORIGIN)),
        ]
        for size, policy in whitelists.items():
            scenarios.append((f"Whitelist {size} rules (allowed)", policy.is_allowed, (ALLOWED_ORIGIN,)))
            scenarios.append((f"Whitelist {size} rules (denied)", policy.is_allowed, (DENIED_ORIGIN,)))

        all_pass = True
        for name, fn, args in scenarios:
            for _ in range(WARMUP):
                fn(*args)

            p50, p99, worst = measure_p99(fn, *args, n=N)
            passed = p99 <= P99_LIMIT_MS
            all_pass = all_pass and passed
            status = "✓ PASS" if passed else "✗ FAIL"
            print(f"  [{status}] {name}")
            print(f"          p50={p50:.4f}ms  p99={p99:.4f}ms  worst={worst:.4f}ms")

        cors_filter.close()

    print("=" * 70)
    if all_pass:
        print(f"RESULT: ALL BENCHMARKS PASSED — p99 < {P99_LIMIT_MS}ms ✓")
    else:
        print(f"RESULT: SOME BENCHMARKS FAILED — p99 exceeded {P99_LIMIT_MS}ms ✗")
        print("        Large whitelists scale linearly; consider fewer, broader patterns.")
    print("=" * 70)

    return all_pass


if __name__ == "__main__":
    import sys

    sys.exit(0 if run_benchmarks() else 1)
