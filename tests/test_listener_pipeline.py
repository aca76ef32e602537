import unittest
from unittest import mock

import numpy as np

from dogwhistle.audio.framing import FrameBuffer
from dogwhistle.contracts.messages import AudioFrame, SignalEventKind
from dogwhistle.core.errors import InvalidFrameLength, SetupError
from dogwhistle.core.logging import LogEmitter
from dogwhistle.detect.debounce import DebounceStateMachine
from dogwhistle.detect.detection import peak_in_band
from dogwhistle.detect.listener import build_listener


SAMPLE_RATE = 44100


class ManualClock:
    def __init__(self) -> None:
        self.now = 0.0

    def __call__(self) -> float:
        return self.now


def _tone(freq_hz: float, amplitude: float, n: int) -> np.ndarray:
    t = np.arange(n, dtype=np.float64)
    return amplitude * np.sin(2.0 * np.pi * freq_hz * t / SAMPLE_RATE)


def _config(**detector):
    det = {
        "fft_size": 2048,
        "variant": "tone",
        "target_freq_hz": 19000.0,
        "threshold": 100.0,
        "debounce": {"policy": "silence", "silence_s": 4.0},
    }
    det.update(detector)
    return {"audio": {"sample_rate_hz": SAMPLE_RATE}, "detector": det}


class FrameBufferTests(unittest.TestCase):
    def test_rechunks_to_exact_frames(self) -> None:
        framer = FrameBuffer(1024, SAMPLE_RATE)
        self.assertEqual(framer.push(np.zeros(700)), [])
        self.assertEqual(framer.pending, 700)
        frames = framer.push(np.zeros(2000))
        self.assertEqual([len(f) for f in frames], [1024, 1024])
        self.assertEqual([f.seq for f in frames], [1, 2])
        self.assertEqual(framer.pending, 652)
        framer.clear()
        self.assertEqual(framer.pending, 0)

    def test_keeps_sample_order_across_blocks(self) -> None:
        framer = FrameBuffer(4, SAMPLE_RATE)
        frames = framer.push(np.arange(3)) + framer.push(np.arange(3, 9))
        np.testing.assert_array_equal(frames[0].samples, [0, 1, 2, 3])
        np.testing.assert_array_equal(frames[1].samples, [4, 5, 6, 7])
        self.assertEqual(framer.pending, 1)

    def test_mixes_multichannel_to_mono(self) -> None:
        framer = FrameBuffer(2, SAMPLE_RATE)
        frames = framer.push(np.array([[1.0, 0.0], [0.5, 0.5]]))
        np.testing.assert_allclose(frames[0].samples, [0.5, 0.5])

    def test_rejects_empty_frame_size(self) -> None:
        with self.assertRaises(ValueError):
            FrameBuffer(0, SAMPLE_RATE)


class AudioFrameTests(unittest.TestCase):
    def test_frame_is_read_only_copy(self) -> None:
        source = np.ones(16, dtype=np.float32)
        frame = AudioFrame(samples=source, sample_rate_hz=SAMPLE_RATE)
        source[:] = 0.0
        self.assertTrue(np.all(frame.samples == 1.0))
        with self.assertRaises(ValueError):
            frame.samples[0] = 2.0
        self.assertAlmostEqual(frame.duration_s, 16 / SAMPLE_RATE)


class ToneListenerTests(unittest.TestCase):
    def setUp(self) -> None:
        self.clock = ManualClock()
        debounce = DebounceStateMachine(policy="silence", silence_s=4.0, clock=self.clock)
        self.listener = build_listener(_config(), LogEmitter(None, min_level="error"), debounce=debounce)
        self.events = []
        self.listener.debounce.add_listener(self.events.append)

    def _frame(self, samples: np.ndarray) -> AudioFrame:
        return AudioFrame(samples=samples, sample_rate_hz=SAMPLE_RATE)

    def test_tone_frame_turns_signal_on(self) -> None:
        self.assertFalse(self.listener.process(self._frame(np.zeros(2048))))
        self.assertTrue(self.listener.process(self._frame(_tone(19000.0, 0.5, 2048))))
        self.assertEqual([e.kind for e in self.events], [SignalEventKind.SIGNAL_ON])
        self.assertEqual(self.listener.frames_processed, 2)

    def test_wrong_length_propagates(self) -> None:
        with self.assertRaises(InvalidFrameLength):
            self.listener.process(self._frame(np.zeros(1000)))

    def test_bad_samples_degrade_to_absent(self) -> None:
        self.listener.process(self._frame(_tone(19000.0, 0.5, 2048)))
        samples = _tone(19000.0, 0.5, 2048)
        samples[5] = np.nan
        self.clock.now = 5.0
        self.assertFalse(self.listener.process(self._frame(samples)))
        self.assertEqual(self.listener.frames_failed, 1)
        self.assertEqual([e.kind for e in self.events], [SignalEventKind.SIGNAL_ON, SignalEventKind.SIGNAL_OFF])

    def test_stop_forces_off(self) -> None:
        self.listener.process(self._frame(_tone(19000.0, 0.5, 2048)))
        self.listener.stop()
        self.assertFalse(self.listener.debounce.is_on)

    def test_band_variant_from_config(self) -> None:
        listener = build_listener(
            _config(fft_size=4096, variant="band", min_freq_hz=17000.0, threshold=10.0, debounce={"policy": "timer", "silence_s": 1.5})
        )
        self.assertEqual(listener.detector.variant, "band")
        self.assertEqual(listener.analyzer.fft_size, 4096)
        self.assertEqual(listener.debounce.silence_s, 1.5)
        listener.stop()


    def test_band_peak_is_computed_only_when_the_peak_log_goes_out(self) -> None:
        logger = LogEmitter(None, min_level="error")
        listener = build_listener(
            _config(fft_size=4096, variant="band", min_freq_hz=17000.0, threshold=10.0), logger, debounce=DebounceStateMachine(policy="silence", silence_s=4.0, clock=self.clock)
        )
        frame = self._frame(_tone(19000.0, 0.5, 4096))
        with mock.patch("dogwhistle.detect.listener.peak_in_band", wraps=peak_in_band) as peak:
            for _ in range(20):
                self.assertTrue(listener.process(frame))
        self.assertEqual(peak.call_count, 1)
        self.assertFalse(logger.claim("detect.listener", "peak", interval_s=60.0))
        listener.stop()


class BuildListenerErrorTests(unittest.TestCase):
    def test_bad_fft_size(self) -> None:
        with self.assertRaises(SetupError):
            build_listener(_config(fft_size=3000))

    def test_target_above_nyquist(self) -> None:
        with self.assertRaises(SetupError):
            build_listener(_config(target_freq_hz=30000.0))

    def test_bad_debounce(self) -> None:
        with self.assertRaises(SetupError):
            build_listener(_config(debounce={"policy": "silence", "silence_s": 0}))
        with self.assertRaises(SetupError):
            build_listener(_config(debounce={"policy": "sometimes", "silence_s": 1.0}))

    def test_non_numeric_value(self) -> None:
        with self.assertRaises(SetupError):
            build_listener(_config(threshold="loud"))


if __name__ == "__main__":
    unittest.main()
