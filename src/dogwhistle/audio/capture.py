"""
CONTRACT: inline
ROLE: Produce mono AudioFrame blocks on audio.frames from the microphone.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: audio.frames  Type: AudioFrame

CONFIG KEYS:
  - audio.sample_rate_hz: sample rate
  - audio.channels: input channels (mixed down to mono)
  - detector.fft_size: block size requested from the device
  - audio.device_index / audio.device_id: see audio.devices

PERF / TIMING:
  - fixed cadence at fft_size / sample_rate_hz
  - the callback only copies and publishes; analysis happens on the listener thread

FAILURE MODES:
  - backend missing / device cannot open -> SetupError (fatal at start)
  - input overflow -> log overflow (throttled)

LOG EVENTS:
  - module=audio.capture, event=started, payload keys=device_index, sample_rate_hz, block_size
  - module=audio.capture, event=overflow, payload keys=status
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict, Optional

try:
    import sounddevice as sd
except (ImportError, OSError):  # pragma: no cover
    sd = None

import numpy as np

from dogwhistle.audio.devices import resolve_input_device_index
from dogwhistle.contracts.messages import AudioFrame
from dogwhistle.core.clock import now_ns
from dogwhistle.core.errors import SetupError


def start_audio_capture(
    bus: Any,
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
) -> Optional[threading.Thread]:
    if sd is None:
        logger.emit("error", "audio.capture", "backend_missing", {"backend": "sounddevice"})
        raise SetupError("sounddevice is not available; install sounddevice and PortAudio")

    audio_cfg = config.get("audio", {})
    channels = max(1, int(audio_cfg.get("channels", 1)))
    sample_rate = int(audio_cfg.get("sample_rate_hz", 44100))
    block_size = int(config.get("detector", {}).get("fft_size", 4096))
    device_index = resolve_input_device_index(config, logger)
    seq = [0]

    def _callback(indata, frames, time_info, status) -> None:  # noqa: ARG001
        if status:
            logger.emit_throttled("warning", "audio.capture", "overflow", {"status": str(status)}, interval_s=1.0)
        data = np.array(indata, dtype=np.float32, copy=True)
        if data.ndim == 2 and data.shape[1] > 1:
            data = data.mean(axis=1)
        seq[0] += 1
        bus.publish("audio.frames", AudioFrame(samples=data, sample_rate_hz=sample_rate, seq=seq[0], t_ns=now_ns()))

    try:
        stream = sd.InputStream(
            samplerate=sample_rate,
            blocksize=block_size,
            channels=channels,
            dtype="float32",
            device=device_index,
            callback=_callback,
        )
    except Exception as exc:  # noqa: BLE001
        logger.emit("error", "audio.capture", "device_error", {"error": str(exc), "device_index": device_index})
        raise SetupError(f"cannot open input stream: {exc}") from exc

    def _run() -> None:
        with stream:
            logger.emit(
                "info",
                "audio.capture",
                "started",
                {"device_index": device_index, "sample_rate_hz": sample_rate, "block_size": block_size},
            )
            while not stop_event.is_set():
                time.sleep(0.05)

    thread = threading.Thread(target=_run, name="audio-capture", daemon=True)
    thread.start()
    return thread
