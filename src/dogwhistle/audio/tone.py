"""
CONTRACT: inline
ROLE: Synthesize a continuous fixed-frequency sine for the output sink.

INPUTS:
  - n/a
OUTPUTS:
  - float32 sample blocks pulled by audio.output.tone_sink

CONFIG KEYS:
  - emitter.frequency_hz: tone frequency (default 19000)
  - emitter.amplitude: peak amplitude in (0, 1]
  - audio.sample_rate_hz: output sample rate

PERF / TIMING:
  - read() is called from the device callback; vectorised, no allocation beyond the block

FAILURE MODES:
  - frequency at or above Nyquist -> ValueError at construction

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_tone_emitter.py

CONTRACT DETAILS:
# Phase continuity

- Sample t of the stream is amplitude * sin(2*pi*f*t / rate), t = 0, 1, 2, ...
- The running index survives block boundaries, so blocks of any size join
  without a click.
- For integral f the index wraps at rate / gcd(f, rate) samples (one exact
  period of the sampled waveform) so float precision does not decay over long runs.
"""

from __future__ import annotations

import math
import threading
from typing import Any, Dict, Iterator, Optional

import numpy as np


class ToneEmitter:
    def __init__(self, frequency_hz: float, sample_rate_hz: int, amplitude: float = 1.0) -> None:
        if sample_rate_hz <= 0:
            raise ValueError("sample_rate_hz must be > 0")
        if not 0 < frequency_hz < sample_rate_hz / 2.0:
            raise ValueError(f"frequency_hz must be in (0, {sample_rate_hz / 2.0:g}), got {frequency_hz:g}")
        if not 0.0 < amplitude <= 1.0:
            raise ValueError(f"amplitude must be in (0, 1], got {amplitude!r}")
        self.frequency_hz = float(frequency_hz)
        self.sample_rate_hz = int(sample_rate_hz)
        self.amplitude = float(amplitude)
        self._period = _exact_period(self.frequency_hz, self.sample_rate_hz)
        self._t = 0
        self._lock = threading.Lock()

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "ToneEmitter":
        emitter_cfg = config.get("emitter", {})
        return cls(
            frequency_hz=float(emitter_cfg.get("frequency_hz", 19000.0)),
            sample_rate_hz=int(config.get("audio", {}).get("sample_rate_hz", 44100)),
            amplitude=float(emitter_cfg.get("amplitude", 1.0)),
        )

    @property
    def position(self) -> int:
        return self._t

    def reset(self) -> None:
        with self._lock:
            self._t = 0

    def read(self, frames: int) -> np.ndarray:
        """Return the next ``frames`` samples and advance the stream."""
        with self._lock:
            start = self._t
            self._t = start + int(frames)
            if self._period is not None:
                self._t %= self._period
        t = start + np.arange(int(frames), dtype=np.float64)
        return _sine(t, self.frequency_hz, self.sample_rate_hz, self.amplitude)

    def generate(self, seconds: Optional[float] = None, block_size: int = 1024) -> Iterator[np.ndarray]:
        """Yield blocks of samples.

        With ``seconds=None`` the stream loops until the consumer stops
        iterating; otherwise exactly ``round(seconds * rate)`` samples are produced.
        """
        if seconds is None:
            while True:
                yield self.read(block_size)
        remaining = int(round(float(seconds) * self.sample_rate_hz))
        while remaining > 0:
            n = min(block_size, remaining)
            remaining -= n
            yield self.read(n)


def tone_buffer(frequency_hz: float, sample_rate_hz: int, seconds: float = 1.0, amplitude: float = 1.0) -> np.ndarray:
    """Precompute a read-only loopable buffer.

    One second at an integral frequency always holds a whole number of cycles,
    so a sink that loops it does not click at the seam.
    """
    n = int(round(seconds * sample_rate_hz))
    samples = _sine(np.arange(n, dtype=np.float64), float(frequency_hz), int(sample_rate_hz), float(amplitude))
    samples.setflags(write=False)
    return samples


def _sine(t: np.ndarray, frequency_hz: float, sample_rate_hz: int, amplitude: float) -> np.ndarray:
    return (amplitude * np.sin(2.0 * np.pi * frequency_hz * t / sample_rate_hz)).astype(np.float32)


def _exact_period(frequency_hz: float, sample_rate_hz: int) -> Optional[int]:
    if not float(frequency_hz).is_integer():
        return None
    return sample_rate_hz // math.gcd(int(frequency_hz), sample_rate_hz)
