"""
CONTRACT: inline
ROLE: Monotonic timestamps shared by every stage.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - n/a

PERF / TIMING:
  - monotonic now_ns() for message stamps, now_s() for debounce deadlines

FAILURE MODES:
  - n/a

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_debounce.py injects a manual clock in place of now_s

CONTRACT DETAILS:
# Clock and timestamps

- t_ns is monotonic per stream.
- Debounce deadlines compare against a monotonic clock, never wall time.
- Convert wall time to t_ns only for logging.
"""

from __future__ import annotations

import time


def now_ns() -> int:
    return time.monotonic_ns()


def now_s() -> float:
    return time.monotonic()
