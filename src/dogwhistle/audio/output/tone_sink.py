"""dogwhistle.audio.output.tone_sink

CONTRACT: inline
ROLE: Play the ToneEmitter stream on the output device.

INPUTS:
  - ToneEmitter.read(frames) pulled from the device callback
OUTPUTS:
  - speaker / output device

CONFIG KEYS:
  - emitter.block_size: frames per device callback
  - emitter.device_index: explicit output device (optional)
  - audio.sample_rate_hz: output sample rate

PERF / TIMING:
  - the device pulls at its own cadence; the emitter never blocks

FAILURE MODES:
  - backend missing / device cannot open -> SetupError (fatal at start)
  - output underflow -> log underflow (throttled)

LOG EVENTS:
  - module=audio.output.tone_sink, event=started, payload keys=frequency_hz, sample_rate_hz, device_index
  - module=audio.output.tone_sink, event=underflow, payload keys=status
"""

from __future__ import annotations

import threading
import time
from typing import Any, Dict

try:
    import sounddevice as sd
except (ImportError, OSError):  # pragma: no cover
    sd = None

from dogwhistle.audio.devices import resolve_output_device_index
from dogwhistle.audio.tone import ToneEmitter
from dogwhistle.core.errors import SetupError


def start_tone_output(
    config: Dict[str, Any],
    logger: Any,
    stop_event: threading.Event,
    emitter: ToneEmitter,
) -> threading.Thread:
    if sd is None:
        logger.emit("error", "audio.output.tone_sink", "backend_missing", {"backend": "sounddevice"})
        raise SetupError("sounddevice is not available; install sounddevice and PortAudio")

    block_size = int(config.get("emitter", {}).get("block_size", 1024))
    device_index = resolve_output_device_index(config, logger)

    def _callback(outdata, frames, time_info, status) -> None:  # noqa: ARG001
        if status:
            logger.emit_throttled("warning", "audio.output.tone_sink", "underflow", {"status": str(status)}, interval_s=1.0)
        outdata[:, 0] = emitter.read(frames)

    try:
        stream = sd.OutputStream(
            samplerate=emitter.sample_rate_hz,
            blocksize=block_size,
            channels=1,
            dtype="float32",
            device=device_index,
            callback=_callback,
        )
    except Exception as exc:  # noqa: BLE001
        logger.emit("error", "audio.output.tone_sink", "device_error", {"error": str(exc), "device_index": device_index})
        raise SetupError(f"cannot open output stream: {exc}") from exc

    def _run() -> None:
        with stream:
            logger.emit(
                "info",
                "audio.output.tone_sink",
                "started",
                {"frequency_hz": emitter.frequency_hz, "sample_rate_hz": emitter.sample_rate_hz, "device_index": device_index},
            )
            while not stop_event.is_set():
                time.sleep(0.05)

    thread = threading.Thread(target=_run, name="tone-output", daemon=True)
    thread.start()
    return thread
