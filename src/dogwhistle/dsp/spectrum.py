"""
CONTRACT: inline
ROLE: Convert one fixed-length AudioFrame into a magnitude Spectrum.

INPUTS:
  - AudioFrame of exactly fft_size mono samples
OUTPUTS:
  - Spectrum with fft_size/2 squared magnitudes

CONFIG KEYS:
  - detector.fft_size: FFT length, power of two
  - audio.sample_rate_hz: sample rate

PERF / TIMING:
  - one rfft per frame; must finish well inside one frame period
    (4096 samples @ 44.1 kHz = 93 ms)

FAILURE MODES:
  - fft_size not a power of two / bad rate -> SetupError at construction
  - frame length mismatch -> InvalidFrameLength (programming error, not degraded)
  - non-finite samples -> ValueError (caller degrades the frame to "absent")

LOG EVENTS:
  - module=dsp.spectrum, event=setup, payload keys=fft_size, sample_rate_hz, bin_width_hz

TESTS:
  - tests/test_spectrum_and_detection.py

CONTRACT DETAILS:
# Magnitude convention

- Periodic Hann window (built once per analyzer), then forward real FFT with
  no normalisation.
- Each bin holds re^2 + im^2 (squared magnitude, "power").
- Bins 0 .. N/2 - 1 are kept; the Nyquist bin is dropped.
- A sine of amplitude A centred on bin k gives (A * N / 4) ** 2 in bin k
  (the window halves the coherent gain). Off-centre tones lose at most
  about 1.4 dB. All detector thresholds are expressed in this unit.
- Sidelobes fall off at 18 dB per octave, so a loud tone a few hundred Hz
  below min_freq_hz stays out of the band.
"""

from __future__ import annotations

from typing import Any, Optional

import numpy as np

from dogwhistle.contracts.messages import AudioFrame, Spectrum
from dogwhistle.core.errors import InvalidFrameLength, SetupError


class SpectrumAnalyzer:
    """Stateless rfft-based analyzer bound to one FFT size."""

    def __init__(self, fft_size: int, sample_rate_hz: int, logger: Optional[Any] = None) -> None:
        if not _is_power_of_two(fft_size):
            raise SetupError(f"fft_size must be a power of two >= 2, got {fft_size!r}")
        if int(sample_rate_hz) <= 0:
            raise SetupError(f"sample_rate_hz must be > 0, got {sample_rate_hz!r}")
        self._fft_size = int(fft_size)
        self._sample_rate = int(sample_rate_hz)
        self._bins = self._fft_size // 2
        self._window = hann_window(self._fft_size)
        try:
            # Exercise the backend once so a broken numpy build fails at startup, not per frame.
            trial = np.fft.rfft(np.zeros(self._fft_size, dtype=np.float64))
        except Exception as exc:  # noqa: BLE001
            raise SetupError(f"FFT backend unavailable for size {self._fft_size}: {exc}") from exc
        if trial.shape[0] != self._bins + 1:
            raise SetupError(f"FFT backend returned {trial.shape[0]} bins for size {self._fft_size}")
        if logger is not None:
            logger.emit(
                "debug",
                "dsp.spectrum",
                "setup",
                {"fft_size": self._fft_size, "sample_rate_hz": self._sample_rate, "bin_width_hz": self.bin_width_hz},
            )

    @property
    def fft_size(self) -> int:
        return self._fft_size

    @property
    def sample_rate_hz(self) -> int:
        return self._sample_rate

    @property
    def bin_width_hz(self) -> float:
        return self._sample_rate / float(self._fft_size)

    def analyze(self, frame: AudioFrame) -> Spectrum:
        samples = frame.samples
        if samples.shape[0] != self._fft_size:
            raise InvalidFrameLength(self._fft_size, int(samples.shape[0]))
        x = samples.astype(np.float64)
        if not np.all(np.isfinite(x)):
            raise ValueError("frame contains non-finite samples")
        spec = np.fft.rfft(x * self._window)[: self._bins]
        power = spec.real * spec.real + spec.imag * spec.imag
        power.setflags(write=False)
        return Spectrum(magnitudes=power, sample_rate_hz=self._sample_rate, fft_size=self._fft_size)


def hann_window(n: int) -> np.ndarray:
    """Periodic Hann window of length n, read-only."""
    w = 0.5 - 0.5 * np.cos(2.0 * np.pi * np.arange(n, dtype=np.float64) / n)
    w.setflags(write=False)
    return w


def _is_power_of_two(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, np.integer)):
        return False
    n = int(value)
    return n >= 2 and (n & (n - 1)) == 0
