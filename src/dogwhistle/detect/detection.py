"""
CONTRACT: inline
ROLE: Turn a Spectrum into a raw per-frame present/absent decision.

INPUTS:
  - Spectrum from dsp.spectrum
OUTPUTS:
  - bool (RawDecision), one per frame

CONFIG KEYS:
  - detector.variant: band | tone
  - detector.min_freq_hz: lower edge of the band scan (band)
  - detector.target_freq_hz: frequency whose bin is read (tone)
  - detector.threshold: squared-magnitude threshold

PERF / TIMING:
  - O(bins) for band, O(1) for tone; no state

FAILURE MODES:
  - min/target frequency at or above Nyquist -> SetupError from build_detector

LOG EVENTS:
  - n/a

TESTS:
  - tests/test_spectrum_and_detection.py

CONTRACT DETAILS:
# Decision rule

- Present iff magnitude > threshold (strict). A magnitude exactly equal to the
  threshold is absent.
- band: maximum over bins int(min_freq / bin_width) .. N/2 - 1. Catches any
  strong ultrasonic energy, tolerant of emitter drift.
- tone: the single bin round(f / rate * N), clamped to [0, N/2 - 1].
"""

from __future__ import annotations

import math
from typing import Tuple

import numpy as np

from dogwhistle.contracts.messages import DetectionConfig, Spectrum
from dogwhistle.core.errors import SetupError


def bin_index_for(freq_hz: float, sample_rate_hz: float, fft_size: int) -> int:
    """Nearest bin to freq_hz, halves rounded up, clamped to the kept bins."""
    raw = int(math.floor(freq_hz / float(sample_rate_hz) * fft_size + 0.5))
    return max(0, min(fft_size // 2 - 1, raw))


def band_start_index(min_freq_hz: float, sample_rate_hz: float, fft_size: int) -> int:
    raw = int(min_freq_hz / (sample_rate_hz / float(fft_size)))
    return max(0, min(fft_size // 2 - 1, raw))


class BandDetector:
    """Present when any bin from min_freq_hz up to Nyquist exceeds the threshold."""

    variant = "band"

    def __init__(self, min_freq_hz: float, threshold: float) -> None:
        self.min_freq_hz = float(min_freq_hz)
        self.threshold = float(threshold)

    def level(self, spectrum: Spectrum) -> float:
        start = band_start_index(self.min_freq_hz, spectrum.sample_rate_hz, spectrum.fft_size)
        band = spectrum.magnitudes[start:]
        return float(np.max(band)) if band.size else 0.0

    def decide(self, spectrum: Spectrum) -> bool:
        return self.level(spectrum) > self.threshold


class ToneBinDetector:
    """Present when the bin nearest target_freq_hz exceeds the threshold."""

    variant = "tone"

    def __init__(self, target_freq_hz: float, threshold: float) -> None:
        self.target_freq_hz = float(target_freq_hz)
        self.threshold = float(threshold)

    def level(self, spectrum: Spectrum) -> float:
        idx = bin_index_for(self.target_freq_hz, spectrum.sample_rate_hz, spectrum.fft_size)
        return float(spectrum.magnitudes[idx])

    def decide(self, spectrum: Spectrum) -> bool:
        return self.level(spectrum) > self.threshold


def build_detector(cfg: DetectionConfig):
    if cfg.variant == "band":
        if cfg.min_freq_hz < 0 or cfg.min_freq_hz >= cfg.nyquist_hz:
            raise SetupError(f"min_freq_hz={cfg.min_freq_hz:g} outside [0, {cfg.nyquist_hz:g})")
        return BandDetector(cfg.min_freq_hz, cfg.threshold)
    if cfg.target_freq_hz < 0 or cfg.target_freq_hz >= cfg.nyquist_hz:
        raise SetupError(f"target_freq_hz={cfg.target_freq_hz:g} outside [0, {cfg.nyquist_hz:g})")
    return ToneBinDetector(cfg.target_freq_hz, cfg.threshold)


def peak_in_band(spectrum: Spectrum, min_freq_hz: float = 0.0) -> Tuple[float, float]:
    """Return (frequency_hz, magnitude) of the strongest bin at or above min_freq_hz."""
    start = band_start_index(min_freq_hz, spectrum.sample_rate_hz, spectrum.fft_size)
    band = spectrum.magnitudes[start:]
    if band.size == 0:
        return 0.0, 0.0
    idx = int(np.argmax(band))
    return spectrum.frequency_of(start + idx), float(band[idx])
