import math
import unittest

import numpy as np

from dogwhistle.contracts.messages import AudioFrame, DetectionConfig, Spectrum
from dogwhistle.core.errors import InvalidFrameLength, SetupError
from dogwhistle.detect.detection import (
    BandDetector,
    ToneBinDetector,
    band_start_index,
    bin_index_for,
    build_detector,
    peak_in_band,
)
from dogwhistle.dsp.spectrum import SpectrumAnalyzer, hann_window


SAMPLE_RATE = 44100


def _sine_frame(freq_hz: float, amplitude: float, n: int, sample_rate: int = SAMPLE_RATE) -> AudioFrame:
    t = np.arange(n, dtype=np.float64)
    return AudioFrame(samples=amplitude * np.sin(2.0 * np.pi * freq_hz * t / sample_rate), sample_rate_hz=sample_rate)


def _bin_centre(k: int, n: int, sample_rate: int = SAMPLE_RATE) -> float:
    return k * sample_rate / float(n)


class SpectrumAnalyzerTests(unittest.TestCase):
    def test_rejects_non_power_of_two(self) -> None:
        for bad in (0, 1, 1000, 3000, -2048, 2048.0):
            with self.assertRaises(SetupError):
                SpectrumAnalyzer(bad, SAMPLE_RATE)

    def test_rejects_bad_sample_rate(self) -> None:
        with self.assertRaises(SetupError):
            SpectrumAnalyzer(2048, 0)

    def test_wrong_frame_length_fails_fast(self) -> None:
        analyzer = SpectrumAnalyzer(2048, SAMPLE_RATE)
        with self.assertRaises(InvalidFrameLength) as ctx:
            analyzer.analyze(AudioFrame(samples=np.zeros(1024), sample_rate_hz=SAMPLE_RATE))
        self.assertEqual(ctx.exception.expected, 2048)
        self.assertEqual(ctx.exception.got, 1024)

    def test_half_size_spectrum_with_bin_mapping(self) -> None:
        analyzer = SpectrumAnalyzer(4096, SAMPLE_RATE)
        spectrum = analyzer.analyze(AudioFrame(samples=np.zeros(4096), sample_rate_hz=SAMPLE_RATE))
        self.assertEqual(len(spectrum), 2048)
        self.assertTrue(np.all(spectrum.magnitudes == 0.0))
        self.assertAlmostEqual(spectrum.bin_width_hz, SAMPLE_RATE / 4096.0)
        self.assertAlmostEqual(spectrum.frequency_of(100), 100 * SAMPLE_RATE / 4096.0)

    def test_squared_magnitude_convention(self) -> None:
        # Bin-centred sine of amplitude A -> (A * N / 4) ** 2 in that bin after the Hann window.
        n = 2048
        k = 882
        analyzer = SpectrumAnalyzer(n, SAMPLE_RATE)
        spectrum = analyzer.analyze(_sine_frame(_bin_centre(k, n), 0.25, n))
        expected = (0.25 * n / 4.0) ** 2
        self.assertAlmostEqual(spectrum.magnitudes[k] / expected, 1.0, places=4)
        self.assertEqual(int(np.argmax(spectrum.magnitudes)), k)
        self.assertTrue(np.all(spectrum.magnitudes >= 0.0))

    def test_analysis_is_pure(self) -> None:
        analyzer = SpectrumAnalyzer(1024, SAMPLE_RATE)
        frame = _sine_frame(5000.0, 0.5, 1024)
        first = analyzer.analyze(frame)
        second = analyzer.analyze(frame)
        np.testing.assert_array_equal(first.magnitudes, second.magnitudes)
        self.assertFalse(first.magnitudes.flags.writeable)

    def test_non_finite_samples_raise_value_error(self) -> None:
        analyzer = SpectrumAnalyzer(256, SAMPLE_RATE)
        samples = np.zeros(256)
        samples[10] = np.nan
        with self.assertRaises(ValueError):
            analyzer.analyze(AudioFrame(samples=samples, sample_rate_hz=SAMPLE_RATE))


class BinIndexTests(unittest.TestCase):
    def test_rounds_to_nearest_bin(self) -> None:
        # 19000 / 44100 * 2048 = 882.36
        self.assertEqual(bin_index_for(19000.0, SAMPLE_RATE, 2048), 882)
        # 19000 / 44100 * 4096 = 1764.72
        self.assertEqual(bin_index_for(19000.0, SAMPLE_RATE, 4096), 1765)

    def test_half_rounds_up(self) -> None:
        self.assertEqual(bin_index_for(2.5, 1024, 1024), 3)

    def test_clamped_to_kept_bins(self) -> None:
        self.assertEqual(bin_index_for(-100.0, SAMPLE_RATE, 1024), 0)
        self.assertEqual(bin_index_for(SAMPLE_RATE / 2.0, SAMPLE_RATE, 1024), 511)
        self.assertEqual(bin_index_for(SAMPLE_RATE * 2.0, SAMPLE_RATE, 1024), 511)

    def test_band_start_truncates(self) -> None:
        # 17000 / (44100 / 4096) = 1578.9
        self.assertEqual(band_start_index(17000.0, SAMPLE_RATE, 4096), 1578)


class BandDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.n = 4096
        self.analyzer = SpectrumAnalyzer(self.n, SAMPLE_RATE)
        self.detector = BandDetector(min_freq_hz=17000.0, threshold=10.0)

    def test_audible_energy_is_ignored(self) -> None:
        for k in (93, 465, 1000):
            frame = _sine_frame(_bin_centre(k, self.n), 1.0, self.n)
            self.assertFalse(self.detector.decide(self.analyzer.analyze(frame)), msg=f"bin {k}")

    def test_loud_off_bin_tone_below_band_is_ignored(self) -> None:
        for freq_hz in (16000.0, 16500.0, 16800.0):
            spectrum = self.analyzer.analyze(_sine_frame(freq_hz, 0.5, self.n))
            peak_bin = int(np.argmax(spectrum.magnitudes))
            self.assertLess(spectrum.frequency_of(peak_bin), 17000.0)
            self.assertFalse(self.detector.decide(spectrum), msg=f"{freq_hz} Hz level {self.detector.level(spectrum):.3g}")

    def test_window_is_periodic_hann(self) -> None:
        w = hann_window(8)
        np.testing.assert_allclose(w, [0.0, 0.1464466, 0.5, 0.8535534, 1.0, 0.8535534, 0.5, 0.1464466], atol=1e-6)
        self.assertAlmostEqual(float(np.sum(hann_window(4096))), 2048.0)
        self.assertFalse(w.flags.writeable)

    def test_ultrasonic_energy_detected_anywhere_in_band(self) -> None:
        for k in (1600, 1765, 2000):
            frame = _sine_frame(_bin_centre(k, self.n), 0.01, self.n)
            self.assertTrue(self.detector.decide(self.analyzer.analyze(frame)), msg=f"bin {k}")

    def test_silence_is_absent(self) -> None:
        frame = AudioFrame(samples=np.zeros(self.n), sample_rate_hz=SAMPLE_RATE)
        self.assertFalse(self.detector.decide(self.analyzer.analyze(frame)))

    def test_level_is_band_maximum(self) -> None:
        mags = np.zeros(2048)
        mags[100] = 1e6
        mags[1700] = 42.0
        spectrum = Spectrum(magnitudes=mags, sample_rate_hz=SAMPLE_RATE, fft_size=4096)
        self.assertEqual(self.detector.level(spectrum), 42.0)


class ToneBinDetectorTests(unittest.TestCase):
    def setUp(self) -> None:
        self.n = 2048
        self.k = 882
        self.threshold = 100.0
        self.target = _bin_centre(self.k, self.n)
        self.analyzer = SpectrumAnalyzer(self.n, SAMPLE_RATE)
        self.detector = ToneBinDetector(target_freq_hz=self.target, threshold=self.threshold)
        # Amplitude whose bin magnitude equals the threshold exactly.
        self.a_threshold = 4.0 * math.sqrt(self.threshold) / self.n

    def test_above_threshold_present(self) -> None:
        frame = _sine_frame(self.target, 2.0 * self.a_threshold, self.n)
        self.assertTrue(self.detector.decide(self.analyzer.analyze(frame)))

    def test_below_threshold_absent(self) -> None:
        frame = _sine_frame(self.target, 0.5 * self.a_threshold, self.n)
        self.assertFalse(self.detector.decide(self.analyzer.analyze(frame)))

    def test_exact_threshold_is_absent(self) -> None:
        mags = np.zeros(self.n // 2)
        mags[self.k] = self.threshold
        spectrum = Spectrum(magnitudes=mags, sample_rate_hz=SAMPLE_RATE, fft_size=self.n)
        self.assertFalse(self.detector.decide(spectrum))
        mags2 = mags.copy()
        mags2[self.k] = np.nextafter(self.threshold, np.inf)
        self.assertTrue(self.detector.decide(Spectrum(magnitudes=mags2, sample_rate_hz=SAMPLE_RATE, fft_size=self.n)))

    def test_other_tone_absent(self) -> None:
        frame = _sine_frame(_bin_centre(700, self.n), 1.0, self.n)
        self.assertFalse(self.detector.decide(self.analyzer.analyze(frame)))

    def test_off_centre_19k_tone_detected(self) -> None:
        detector = ToneBinDetector(target_freq_hz=19000.0, threshold=self.threshold)
        frame = _sine_frame(19000.0, 0.5, self.n)
        self.assertTrue(detector.decide(self.analyzer.analyze(frame)))


class BuildDetectorTests(unittest.TestCase):
    def test_variant_selection(self) -> None:
        band = build_detector(DetectionConfig(fft_size=4096, sample_rate_hz=SAMPLE_RATE, threshold=10.0, min_freq_hz=17000.0))
        tone = build_detector(DetectionConfig(fft_size=2048, sample_rate_hz=SAMPLE_RATE, threshold=100.0, target_freq_hz=19000.0))
        self.assertIsInstance(band, BandDetector)
        self.assertIsInstance(tone, ToneBinDetector)

    def test_above_nyquist_is_setup_error(self) -> None:
        with self.assertRaises(SetupError):
            build_detector(DetectionConfig(fft_size=2048, sample_rate_hz=SAMPLE_RATE, threshold=1.0, target_freq_hz=23000.0))
        with self.assertRaises(SetupError):
            build_detector(DetectionConfig(fft_size=2048, sample_rate_hz=SAMPLE_RATE, threshold=1.0, min_freq_hz=22050.0))

    def test_config_needs_exactly_one_frequency(self) -> None:
        with self.assertRaises(ValueError):
            DetectionConfig(fft_size=2048, sample_rate_hz=SAMPLE_RATE, threshold=1.0)
        with self.assertRaises(ValueError):
            DetectionConfig(fft_size=2048, sample_rate_hz=SAMPLE_RATE, threshold=1.0, min_freq_hz=1.0, target_freq_hz=2.0)


class PeakInBandTests(unittest.TestCase):
    def test_reports_strongest_ultrasonic_bin(self) -> None:
        n = 4096
        analyzer = SpectrumAnalyzer(n, SAMPLE_RATE)
        spectrum = analyzer.analyze(_sine_frame(_bin_centre(1800, n), 0.1, n))
        freq_hz, magnitude = peak_in_band(spectrum, 17000.0)
        self.assertAlmostEqual(freq_hz, _bin_centre(1800, n))
        self.assertGreater(magnitude, 10.0)


if __name__ == "__main__":
    unittest.main()
