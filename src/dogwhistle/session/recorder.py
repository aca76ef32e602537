"""dogwhistle.session.recorder

CONTRACT: inline
ROLE: WAV recorder driven by the session controller.

INPUTS:
  - Topic: audio.frames  Type: AudioFrame (via start_recording_writer)
OUTPUTS:
  - artifacts/<run_id>/recordings/<uuid>.wav (16-bit mono PCM)

CONFIG KEYS:
  - runtime.artifacts.dir_run: run directory path
  - audio.sample_rate_hz: sample rate written to the WAV header

PERF / TIMING:
  - disk writes run on the recording-writer thread, never in the analysis path

FAILURE MODES:
  - start while recording / stop while idle -> RecorderError
  - write error -> log write_failed

LOG EVENTS:
  - module=session.recorder, event=write_failed, payload keys=path, error
"""

from __future__ import annotations

import queue
import threading
import uuid
import wave
from pathlib import Path
from typing import Any, Optional

import numpy as np

from dogwhistle.core.errors import RecorderError


class WavRecorder:
    def __init__(self, out_dir: Path, sample_rate_hz: int, logger: Optional[Any] = None) -> None:
        self._out_dir = Path(out_dir)
        self._sample_rate = int(sample_rate_hz)
        self._logger = logger
        self._lock = threading.Lock()
        self._handle: Optional[wave.Wave_write] = None
        self._path: Optional[Path] = None
        self.frames_written = 0

    @property
    def recording(self) -> bool:
        with self._lock:
            return self._handle is not None

    def start(self) -> Path:
        with self._lock:
            if self._handle is not None:
                raise RecorderError(f"already recording to {self._path}")
            self._out_dir.mkdir(parents=True, exist_ok=True)
            path = self._out_dir / f"{uuid.uuid4()}.wav"
            try:
                handle = wave.open(str(path), "wb")
                handle.setnchannels(1)
                handle.setsampwidth(2)  # int16
                handle.setframerate(self._sample_rate)
            except (OSError, wave.Error) as exc:
                raise RecorderError(f"cannot open {path}: {exc}") from exc
            self._handle = handle
            self._path = path
            self.frames_written = 0
            return path

    def write(self, samples: np.ndarray) -> None:
        """Append samples while a recording is open; ignored otherwise."""
        with self._lock:
            if self._handle is None:
                return
            x = np.asarray(samples)
            if x.dtype.kind in {"i", "u"}:
                x = x.astype(np.float32) / float(np.iinfo(x.dtype).max)
            if x.ndim > 1:
                x = x.mean(axis=1)
            pcm16 = (np.clip(x, -1.0, 1.0) * 32767.0).astype(np.int16)
            try:
                self._handle.writeframes(pcm16.tobytes())
            except (OSError, wave.Error) as exc:
                if self._logger is not None:
                    self._logger.emit_throttled(
                        "warning", "session.recorder", "write_failed", {"path": str(self._path), "error": str(exc)}, interval_s=1.0
                    )
                return
            self.frames_written += int(pcm16.shape[0])

    def stop(self) -> Path:
        with self._lock:
            if self._handle is None or self._path is None:
                raise RecorderError("not recording")
            handle, path = self._handle, self._path
            self._handle = None
            self._path = None
            try:
                handle.close()
            except (OSError, wave.Error) as exc:
                raise RecorderError(f"cannot finalize {path}: {exc}") from exc
            return path


def start_recording_writer(
    bus: Any,
    recorder: WavRecorder,
    stop_event: threading.Event,
) -> threading.Thread:
    q = bus.subscribe("audio.frames", max_queue_depth=32)

    def _run() -> None:
        while not stop_event.is_set():
            try:
                msg = q.get(timeout=0.1)
            except queue.Empty:
                continue
            recorder.write(msg.samples)
        bus.unsubscribe("audio.frames", q)

    thread = threading.Thread(target=_run, name="recording-writer", daemon=True)
    thread.start()
    return thread
