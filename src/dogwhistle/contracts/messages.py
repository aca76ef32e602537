"""
CONTRACT: inline
ROLE: Typed messages passed between pipeline stages.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: audio.frames  Type: AudioFrame
  - Topic: signal.events  Type: SignalEvent

CONFIG KEYS:
  - detector.*: see DetectionConfig.from_config

PERF / TIMING:
  - frames and spectra are handed off per cycle and never mutated after capture

FAILURE MODES:
  - inconsistent DetectionConfig -> ValueError at construction

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_spectrum_and_detection.py
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional

import numpy as np


class SignalState(str, Enum):
    OFF = "off"
    ON = "on"


class SessionState(str, Enum):
    IDLE = "idle"
    RECORDING = "recording"


class SignalEventKind(str, Enum):
    SIGNAL_ON = "signal_on"
    SIGNAL_OFF = "signal_off"


@dataclass(frozen=True)
class SignalEvent:
    kind: SignalEventKind
    t_ns: int
    seq: int

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind.value, "t_ns": self.t_ns, "seq": self.seq}


@dataclass(frozen=True)
class AudioFrame:
    """One mono analysis frame.

    The sample array is made read-only on construction so a frame cannot be
    changed by a later stage while another still holds it.
    """

    samples: np.ndarray
    sample_rate_hz: int
    seq: int = 0
    t_ns: int = 0

    def __post_init__(self) -> None:
        data = np.array(self.samples, dtype=np.float32, copy=True).reshape(-1)
        data.setflags(write=False)
        object.__setattr__(self, "samples", data)

    def __len__(self) -> int:
        return int(self.samples.shape[0])

    @property
    def duration_s(self) -> float:
        return len(self) / float(self.sample_rate_hz)


@dataclass(frozen=True)
class Spectrum:
    """Squared FFT magnitudes for bins 0 .. fft_size/2 - 1."""

    magnitudes: np.ndarray
    sample_rate_hz: int
    fft_size: int

    def __len__(self) -> int:
        return int(self.magnitudes.shape[0])

    @property
    def bin_width_hz(self) -> float:
        return self.sample_rate_hz / float(self.fft_size)

    def frequency_of(self, bin_index: int) -> float:
        return bin_index * self.sample_rate_hz / float(self.fft_size)


@dataclass(frozen=True)
class DetectionConfig:
    fft_size: int
    sample_rate_hz: int
    threshold: float
    min_freq_hz: Optional[float] = None
    target_freq_hz: Optional[float] = None

    def __post_init__(self) -> None:
        if (self.min_freq_hz is None) == (self.target_freq_hz is None):
            raise ValueError("DetectionConfig needs exactly one of min_freq_hz or target_freq_hz")

    @property
    def variant(self) -> str:
        return "band" if self.min_freq_hz is not None else "tone"

    @property
    def nyquist_hz(self) -> float:
        return self.sample_rate_hz / 2.0

    @classmethod
    def from_config(cls, config: Dict[str, Any]) -> "DetectionConfig":
        det_cfg = config.get("detector", {})
        audio_cfg = config.get("audio", {})
        variant = str(det_cfg.get("variant", "band"))
        common = {
            "fft_size": int(det_cfg.get("fft_size", 4096)),
            "sample_rate_hz": int(audio_cfg.get("sample_rate_hz", 44100)),
            "threshold": float(det_cfg.get("threshold", 10.0)),
        }
        if variant == "tone":
            return cls(target_freq_hz=float(det_cfg.get("target_freq_hz", 19000.0)), **common)
        return cls(min_freq_hz=float(det_cfg.get("min_freq_hz", 17000.0)), **common)
