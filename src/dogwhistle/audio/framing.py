"""dogwhistle.audio.framing

ROLE: Re-chunk device blocks into fixed-size analysis frames.

Devices do not always honour the requested block size, so the listener keeps a
small carry-over buffer (mixed down to mono) and cuts exact fft_size frames
from it. Leftover samples wait for the next block.
"""

from __future__ import annotations

from typing import List

import numpy as np

from dogwhistle.contracts.messages import AudioFrame
from dogwhistle.core.clock import now_ns


class FrameBuffer:
    def __init__(self, frame_size: int, sample_rate_hz: int) -> None:
        if frame_size <= 0:
            raise ValueError("frame_size must be > 0")
        self._frame_size = int(frame_size)
        self._sample_rate = int(sample_rate_hz)
        self._buffer = np.zeros((0,), dtype=np.float32)
        self._seq = 0

    @property
    def pending(self) -> int:
        return int(self._buffer.shape[0])

    def push(self, block: np.ndarray) -> List[AudioFrame]:
        mono = _to_mono(np.asarray(block, dtype=np.float32))
        self._buffer = np.concatenate([self._buffer, mono])
        frames: List[AudioFrame] = []
        while self._buffer.shape[0] >= self._frame_size:
            chunk = self._buffer[: self._frame_size]
            self._buffer = self._buffer[self._frame_size :]
            self._seq += 1
            frames.append(AudioFrame(samples=chunk, sample_rate_hz=self._sample_rate, seq=self._seq, t_ns=now_ns()))
        return frames

    def clear(self) -> None:
        self._buffer = np.zeros((0,), dtype=np.float32)


def _to_mono(frame: np.ndarray) -> np.ndarray:
    if frame.ndim == 1:
        return frame
    if frame.ndim == 2:
        return np.mean(frame, axis=1)
    return frame.reshape(-1)
