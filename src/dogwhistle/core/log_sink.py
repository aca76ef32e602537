"""dogwhistle.core.log_sink

CONTRACT: inline
ROLE: Persist log.events to <run_dir>/logs/events.jsonl.

INPUTS:
  - Topic: log.events  Type: LogEvent
OUTPUTS:
  - artifacts/<run_id>/logs/events.jsonl (+ events.NNN.jsonl after rotation)

CONFIG KEYS:
  - logging.file.enabled: write the file at all
  - logging.file.flush_interval_ms: flush cadence
  - logging.file.rotate_mb: roll over past this size (0 disables)
  - runtime.artifacts.dir_run: run directory path

FAILURE MODES:
  - disk error -> log_write_failed on the console, sink thread ends
  - rename during rotation fails -> rotate_failed, keep appending to the same file
"""

from __future__ import annotations

import json
import queue
import threading
import time
from pathlib import Path
from typing import Any, Dict, Optional


class JsonlWriter:
    """Append-only JSONL file with size-based rollover."""

    def __init__(self, path: Path, rotate_bytes: int = 0, logger: Optional[Any] = None) -> None:
        self.path = path
        self._rotate_bytes = max(0, int(rotate_bytes))
        self._logger = logger
        self._rotations = 0
        self._fh = open(path, "a", encoding="utf-8")

    def write(self, record: Any) -> None:
        self._fh.write(json.dumps(record, sort_keys=True, default=str))
        self._fh.write("\n")

    def flush(self) -> None:
        self._fh.flush()
        if self._rotate_bytes and self._fh.tell() >= self._rotate_bytes:
            self._roll()

    def close(self) -> None:
        if not self._fh.closed:
            self._fh.flush()
            self._fh.close()

    def _roll(self) -> None:
        self._fh.close()
        self._rotations += 1
        target = self.path.with_name(f"{self.path.stem}.{self._rotations:03d}{self.path.suffix}")
        try:
            self.path.rename(target)
        except OSError as exc:
            if self._logger is not None:
                self._logger.emit("warning", "core.log_sink", "rotate_failed", {"path": str(self.path), "error": str(exc)})
        self._fh = open(self.path, "a", encoding="utf-8")


def start_log_sink(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
) -> Optional[threading.Thread]:
    file_cfg = config.get("logging", {}).get("file", {})
    if not isinstance(file_cfg, dict) or not bool(file_cfg.get("enabled", False)):
        return None
    run_dir = config.get("runtime", {}).get("artifacts", {}).get("dir_run")
    if not run_dir:
        return None

    flush_every_s = float(file_cfg.get("flush_interval_ms", 200.0)) / 1000.0
    rotate_bytes = int(float(file_cfg.get("rotate_mb", 0.0)) * 1024 * 1024)
    logs_dir = Path(str(run_dir)) / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    path = logs_dir / "events.jsonl"
    q = bus.subscribe("log.events")

    def _run() -> None:
        writer: Optional[JsonlWriter] = None
        try:
            writer = JsonlWriter(path, rotate_bytes, logger)
            flush_at = time.monotonic() + flush_every_s
            while not stop_event.is_set():
                try:
                    writer.write(q.get(timeout=0.1))
                except queue.Empty:
                    pass
                if time.monotonic() >= flush_at:
                    writer.flush()
                    flush_at = time.monotonic() + flush_every_s
            # Drain what arrived before stop so shutdown events are kept.
            while True:
                try:
                    writer.write(q.get_nowait())
                except queue.Empty:
                    break
        except OSError as exc:
            logger.emit("warning", "core.log_sink", "log_write_failed", {"path": str(path), "error": str(exc)})
        finally:
            bus.unsubscribe("log.events", q)
            if writer is not None:
                writer.close()

    thread = threading.Thread(target=_run, name="log-sink", daemon=True)
    thread.start()
    return thread
