"""
CONTRACT: inline
ROLE: Orchestration entrypoint for the listen / beacon / emit modes.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: log.events  Type: LogEvent

CONFIG KEYS:
  - runtime.mode: listen | beacon | emit
  - config_path: path to YAML config (--config)

PERF / TIMING:
  - start stages in defined order; stop in reverse order

FAILURE MODES:
  - SetupError during start -> stop what started -> log setup_failed -> exit 2
  - invalid config -> log validation_failed -> exit 2

LOG EVENTS:
  - module=main.run, event=started, payload keys=mode, run_dir
  - module=main.run, event=setup_failed, payload keys=error
  - module=main.run, event=shutdown, payload keys=reason
  - module=core.bus, event=queue_full, payload keys=topic, depth

TESTS:
  - tests/test_end_to_end.py exercises the same wiring without audio devices

CONTRACT DETAILS:
# Start order

- artifacts -> bus -> logger -> log sink -> session controller + recording
  writer -> tone output -> listener -> capture.
- Stop: stop_event, then debounce stop (cancels timer, forces OFF), then
  session stop (closes any open recording), then join workers.
"""

from __future__ import annotations

import argparse
import json
import sys
import threading
import time
from typing import Any, Dict, List, Optional

from dogwhistle.audio.capture import start_audio_capture
from dogwhistle.audio.output.tone_sink import start_tone_output
from dogwhistle.audio.tone import ToneEmitter
from dogwhistle.core.artifacts import ensure_run_artifacts, recordings_dir
from dogwhistle.core.bus import Bus
from dogwhistle.core.clock import now_ns
from dogwhistle.core.config import MODES, get_path, load_config
from dogwhistle.core.errors import RecorderError, SetupError
from dogwhistle.core.log_sink import start_log_sink
from dogwhistle.core.logging import LogEmitter
from dogwhistle.detect.listener import ToneListener, build_listener, start_tone_listener
from dogwhistle.session.controller import SessionController, start_session_controller
from dogwhistle.session.notifier import LogNotifier
from dogwhistle.session.recorder import WavRecorder, start_recording_writer


def _start_pipeline(
    bus: Bus,
    config: Dict[str, Any],
    logger: LogEmitter,
    stop_event: threading.Event,
) -> tuple[List[threading.Thread], Optional[ToneListener], Optional[SessionController]]:
    threads: List[threading.Thread] = []
    listener: Optional[ToneListener] = None
    controller: Optional[SessionController] = None

    if bool(get_path(config, "detector.enabled", True)):
        listener = build_listener(config, logger)

    if bool(get_path(config, "session.enabled", False)):
        recorder = WavRecorder(recordings_dir(config), int(get_path(config, "audio.sample_rate_hz", 44100)), logger)
        controller = SessionController.from_config(config, recorder, LogNotifier(logger, bus), logger=logger)
        signal_state = listener.debounce.state if listener is not None else None
        threads.append(start_session_controller(bus, config, logger, stop_event, controller, signal_state))
        threads.append(start_recording_writer(bus, recorder, stop_event))

    if bool(get_path(config, "emitter.enabled", False)):
        threads.append(start_tone_output(config, logger, stop_event, ToneEmitter.from_config(config)))

    if listener is not None:
        threads.append(start_tone_listener(bus, config, logger, stop_event, listener))
        capture_thread = start_audio_capture(bus, config, logger, stop_event)
        if capture_thread is not None:
            threads.append(capture_thread)

    return threads, listener, controller


def _shutdown(
    threads: List[threading.Thread],
    listener: Optional[ToneListener],
    controller: Optional[SessionController],
    logger: LogEmitter,
    stop_event: threading.Event,
    reason: str,
) -> None:
    logger.emit("info", "main.run", "shutdown", {"reason": reason})
    stop_event.set()
    if listener is not None:
        listener.stop()
    if controller is not None:
        try:
            controller.stop()
        except RecorderError as exc:
            logger.emit("error", "main.run", "shutdown_failed", {"error": str(exc)})
    for thread in threads:
        thread.join(timeout=2.0)


def main(argv: Optional[List[str]] = None) -> int:
    parser = argparse.ArgumentParser(prog="dogwhistle", description="Ultrasonic tone detector and beacon")
    parser.add_argument("--config", default=None, help="Path to YAML config (defaults apply when omitted)")
    parser.add_argument("--mode", choices=MODES, default=None, help="Run mode; overrides runtime.mode")
    parser.add_argument("--run-seconds", type=float, default=0.0, help="Stop after N seconds (0 = until Ctrl+C)")
    args = parser.parse_args(argv)

    try:
        config = load_config(args.config, mode=args.mode)
    except (OSError, ValueError) as exc:
        print(json.dumps({"t_ns": now_ns(), "level": "error", "module": "core.config", "event": "validation_failed", "error": str(exc)}), file=sys.stderr)
        return 2

    run_dir = ensure_run_artifacts(config)
    bus = Bus.from_config(config)
    logger = LogEmitter(bus, min_level=str(get_path(config, "logging.level", "info")), run_id=str(get_path(config, "runtime.run_id", "")))
    stop_event = threading.Event()

    def _on_drop(topic: str, depth: int) -> None:
        if topic == "log.events":
            print(json.dumps({"t_ns": now_ns(), "level": "warning", "module": "core.bus", "event": "queue_full", "topic": topic, "depth": depth}), file=sys.stderr)
            return
        logger.emit_throttled("warning", "core.bus", "queue_full", {"topic": topic, "depth": depth})

    bus.set_drop_handler(_on_drop)

    threads: List[threading.Thread] = []
    log_thread = start_log_sink(bus, config, logger, stop_event)

    try:
        threads, listener, controller = _start_pipeline(bus, config, logger, stop_event)
    except SetupError as exc:
        logger.emit("error", "main.run", "setup_failed", {"error": str(exc)})
        stop_event.set()
        if log_thread is not None:
            log_thread.join(timeout=2.0)
        return 2

    mode = str(get_path(config, "runtime.mode"))
    logger.emit("info", "main.run", "started", {"mode": mode, "run_dir": str(run_dir)})
    deadline = time.monotonic() + args.run_seconds if args.run_seconds > 0 else None
    reason = "interrupted"
    try:
        while not stop_event.is_set():
            if deadline is not None and time.monotonic() >= deadline:
                reason = "run_seconds_elapsed"
                break
            time.sleep(0.2)
    except KeyboardInterrupt:
        reason = "interrupted"

    _shutdown(threads, listener, controller, logger, stop_event, reason)
    if log_thread is not None:
        log_thread.join(timeout=2.0)
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
