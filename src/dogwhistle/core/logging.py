"""
CONTRACT: inline
ROLE: Structured logging to the bus (log.events) and console.

INPUTS:
  - n/a
OUTPUTS:
  - Topic: log.events  Type: LogEvent

CONFIG KEYS:
  - logging.level: minimum console level

PERF / TIMING:
  - emit() never blocks; per-frame warnings go through emit_throttled()

FAILURE MODES:
  - n/a

LOG EVENTS:
  - n/a

CONTRACT DETAILS:
# Logging contract

- Structured LogEvent with module, level, run_id and event details.
- Audio-path warnings are throttled per (module, event) so a bad device cannot
  flood stdout at buffer cadence.
"""

from __future__ import annotations

import json
import threading
import time
from typing import Any, Dict, Optional, Tuple

from dogwhistle.core.clock import now_ns


LEVELS = {"debug": 10, "info": 20, "warning": 30, "error": 40}


class LogEmitter:
    """Emit structured LogEvents to the bus and stdout."""

    def __init__(self, bus: Optional[Any], min_level: str = "info", run_id: str = "") -> None:
        self._bus = bus
        self._min_level = LEVELS.get(min_level, 20)
        self._run_id = run_id
        self._throttle: Dict[Tuple[str, str], float] = {}
        self._throttle_lock = threading.Lock()

    def emit(self, level: str, module: str, event: str, payload: Optional[Dict[str, Any]] = None) -> None:
        record = {
            "t_ns": now_ns(),
            "level": level,
            "message": event,
            "run_id": self._run_id,
            "context": {
                "module": module,
                "event": event,
                "details": payload or {},
            },
        }
        if self._bus is not None:
            self._bus.publish("log.events", record)
        if LEVELS.get(level, 0) >= self._min_level:
            print(json.dumps(record, sort_keys=True, default=str))

    def emit_throttled(
        self,
        level: str,
        module: str,
        event: str,
        payload: Optional[Dict[str, Any]] = None,
        interval_s: float = 0.25,
    ) -> bool:
        """Emit at most once per interval for a (module, event) pair.

        Returns True when the event was emitted.
        """
        if not self.claim(module, event, interval_s):
            return False
        self.emit(level, module, event, payload)
        return True

    def claim(self, module: str, event: str, interval_s: float = 0.25) -> bool:
        """Take the (module, event) throttle slot without emitting.

        Lets callers build an expensive payload only when it will be logged.
        """
        key = (module, event)
        now_s = time.monotonic()
        with self._throttle_lock:
            last = self._throttle.get(key)
            if last is not None and now_s - last < interval_s:
                return False
            self._throttle[key] = now_s
        return True
