"""
CONTRACT: inline
ROLE: Run analyze -> decide -> debounce for every analysis frame.

INPUTS:
  - Topic: audio.frames  Type: AudioFrame (any block size; re-chunked to fft_size)
OUTPUTS:
  - Topic: signal.events  Type: SignalEvent (via debounce listener)
  - Topic: signal.state  Type: {"t_ns", "state"} on every stable state change

CONFIG KEYS:
  - detector.enabled: run the listener
  - detector.fft_size, detector.variant, detector.min_freq_hz,
    detector.target_freq_hz, detector.threshold, detector.debounce.*
  - audio.sample_rate_hz: sample rate

PERF / TIMING:
  - one FFT per frame; processing must stay under one frame period

FAILURE MODES:
  - bad FFT size / frequency -> SetupError from build_listener (fatal at start)
  - frame of wrong length -> InvalidFrameLength propagates (integration bug)
  - any other per-frame error -> decision False -> log frame_failed

LOG EVENTS:
  - module=detect.listener, event=started, payload keys=variant, fft_size, threshold, policy
  - module=detect.listener, event=frame_failed, payload keys=seq, error
  - module=detect.listener, event=slow_frame, payload keys=seq, elapsed_ms, budget_ms
  - module=detect.listener, event=peak, payload keys=freq_hz, magnitude (debug)

TESTS:
  - tests/test_listener_pipeline.py
"""

from __future__ import annotations

import queue
import threading
import time
from typing import Any, Dict, Optional

from dogwhistle.audio.framing import FrameBuffer
from dogwhistle.contracts.messages import AudioFrame, DetectionConfig
from dogwhistle.core.clock import now_ns
from dogwhistle.core.errors import InvalidFrameLength, SetupError
from dogwhistle.detect.debounce import DebounceStateMachine
from dogwhistle.detect.detection import build_detector, peak_in_band
from dogwhistle.dsp.spectrum import SpectrumAnalyzer


class ToneListener:
    """Per-frame detection pipeline feeding one debounce state machine."""

    def __init__(
        self,
        analyzer: SpectrumAnalyzer,
        detector: Any,
        debounce: DebounceStateMachine,
        logger: Optional[Any] = None,
    ) -> None:
        self.analyzer = analyzer
        self.detector = detector
        self.debounce = debounce
        self._logger = logger
        self.frames_processed = 0
        self.frames_failed = 0

    def process(self, frame: AudioFrame) -> bool:
        """Analyse one frame and feed the decision to the debounce machine.

        Returns the raw decision used for this frame.
        """
        started = time.perf_counter()
        decision = self._decide(frame)
        self.debounce.observe(decision)
        self.frames_processed += 1
        elapsed_s = time.perf_counter() - started
        budget_s = frame.duration_s
        if elapsed_s > budget_s and self._logger is not None:
            self._logger.emit_throttled(
                "warning",
                "detect.listener",
                "slow_frame",
                {"seq": frame.seq, "elapsed_ms": round(elapsed_s * 1000.0, 2), "budget_ms": round(budget_s * 1000.0, 2)},
                interval_s=1.0,
            )
        return decision

    def _decide(self, frame: AudioFrame) -> bool:
        try:
            spectrum = self.analyzer.analyze(frame)
            decision = bool(self.detector.decide(spectrum))
        except InvalidFrameLength:
            raise
        except Exception as exc:  # noqa: BLE001
            self.frames_failed += 1
            if self._logger is not None:
                self._logger.emit_throttled(
                    "warning", "detect.listener", "frame_failed", {"seq": frame.seq, "error": str(exc)}, interval_s=1.0
                )
            return False
        if decision and self._logger is not None and self._logger.claim("detect.listener", "peak", interval_s=0.5):
            if self.detector.variant == "band":
                freq_hz, magnitude = peak_in_band(spectrum, self.detector.min_freq_hz)
            else:
                freq_hz, magnitude = self.detector.target_freq_hz, self.detector.level(spectrum)
            self._logger.emit("debug", "detect.listener", "peak", {"freq_hz": round(freq_hz, 1), "magnitude": magnitude})
        return decision

    def stop(self) -> None:
        self.debounce.stop()


def build_listener(
    config: Dict[str, Any],
    logger: Optional[Any] = None,
    debounce: Optional[DebounceStateMachine] = None,
) -> ToneListener:
    """Wire analyzer, detector and debounce from config.

    Raises SetupError when any stage cannot be configured.
    """
    try:
        det_cfg = DetectionConfig.from_config(config)
    except (TypeError, ValueError) as exc:
        raise SetupError(f"invalid detector config: {exc}") from exc
    analyzer = SpectrumAnalyzer(det_cfg.fft_size, det_cfg.sample_rate_hz, logger=logger)
    detector = build_detector(det_cfg)
    if debounce is None:
        try:
            debounce = DebounceStateMachine.from_config(config, logger=logger)
        except ValueError as exc:
            raise SetupError(f"invalid debounce config: {exc}") from exc
    return ToneListener(analyzer, detector, debounce, logger=logger)


def start_tone_listener(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    listener: ToneListener,
) -> threading.Thread:
    """Consume audio.frames on a worker thread and publish stable state changes."""
    framer = FrameBuffer(listener.analyzer.fft_size, listener.analyzer.sample_rate_hz)
    q = bus.subscribe("audio.frames")
    listener.debounce.add_listener(lambda event: bus.publish("signal.events", event))
    listener.debounce.state.subscribe(lambda state: bus.publish("signal.state", {"t_ns": now_ns(), "state": state.value}))

    def _run() -> None:
        logger.emit(
            "info",
            "detect.listener",
            "started",
            {
                "variant": listener.detector.variant,
                "fft_size": listener.analyzer.fft_size,
                "threshold": listener.detector.threshold,
                "policy": listener.debounce.policy.value,
                "silence_s": listener.debounce.silence_s,
            },
        )
        while not stop_event.is_set():
            try:
                msg = q.get(timeout=0.1)
            except queue.Empty:
                listener.debounce.poll()
                continue
            for frame in framer.push(msg.samples):
                listener.process(frame)
        bus.unsubscribe("audio.frames", q)
        listener.stop()

    thread = threading.Thread(target=_run, name="tone-listener", daemon=True)
    thread.start()
    return thread
