"""dogwhistle.audio.devices

CONTRACT: inline
ROLE: Enumerate sounddevice devices and pick the microphone and speaker to open.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - audio.device_index / audio.device_id: microphone (index wins over name)
  - emitter.device_index / emitter.device_id: speaker (index wins over name)

PERF / TIMING:
  - queried once at startup

FAILURE MODES:
  - no sounddevice -> empty device list
  - no matching name -> None (host default) -> log device_not_found
  - unusable index -> ignored -> log invalid_device_index

LOG EVENTS:
  - module=audio.devices, event=device_selected, payload keys=direction, device
  - module=audio.devices, event=device_not_found, payload keys=direction, device_id
  - module=audio.devices, event=invalid_device_index, payload keys=direction, device_index
"""

from __future__ import annotations

from dataclasses import asdict, dataclass
from typing import Any, Dict, List, Optional

try:
    import sounddevice as sd
except (ImportError, OSError):  # pragma: no cover
    sd = None


@dataclass(frozen=True)
class AudioDeviceInfo:
    index: int
    name: str
    hostapi: Optional[str]
    max_input_channels: int
    max_output_channels: int
    default_samplerate_hz: Optional[float]


def list_devices() -> List[AudioDeviceInfo]:
    if sd is None:
        return []
    apis = [api.get("name") if isinstance(api, dict) else None for api in sd.query_hostapis()]
    found: List[AudioDeviceInfo] = []
    for index, raw in enumerate(sd.query_devices()):
        if isinstance(raw, dict):
            found.append(_to_info(index, raw, apis))
    return found


def list_input_devices() -> List[AudioDeviceInfo]:
    return [d for d in list_devices() if d.max_input_channels > 0]


def list_output_devices() -> List[AudioDeviceInfo]:
    return [d for d in list_devices() if d.max_output_channels > 0]


def resolve_input_device_index(config: Dict[str, Any], logger: Any = None) -> Optional[int]:
    """Microphone index from audio.device_index, else audio.device_id, else None."""
    return _resolve(config.get("audio", {}), "input", list_input_devices, logger)


def resolve_output_device_index(config: Dict[str, Any], logger: Any = None) -> Optional[int]:
    """Speaker index from emitter.device_index, else emitter.device_id, else None."""
    return _resolve(config.get("emitter", {}), "output", list_output_devices, logger)


def _resolve(section: Any, direction: str, lister: Any, logger: Any) -> Optional[int]:
    if not isinstance(section, dict):
        return None
    raw_index = section.get("device_index")
    if raw_index is not None:
        index = _coerce_index(raw_index)
        if index is not None:
            return index
        _log(logger, "warning", "invalid_device_index", {"direction": direction, "device_index": raw_index})

    wanted = str(section.get("device_id") or "").strip()
    if not wanted:
        return None
    candidates = lister()
    matches = [d for d in candidates if d.name == wanted] or [d for d in candidates if wanted.lower() in d.name.lower()]
    if not matches:
        _log(logger, "error", "device_not_found", {"direction": direction, "device_id": wanted})
        return None
    channels = (lambda d: d.max_input_channels) if direction == "input" else (lambda d: d.max_output_channels)
    chosen = max(matches, key=channels)
    _log(logger, "info", "device_selected", {"direction": direction, "device": asdict(chosen)})
    return chosen.index


def _to_info(index: int, raw: Dict[str, Any], apis: List[Optional[str]]) -> AudioDeviceInfo:
    api_idx = raw.get("hostapi")
    rate = raw.get("default_samplerate")
    return AudioDeviceInfo(
        index=index,
        name=str(raw.get("name") or ""),
        hostapi=apis[api_idx] if isinstance(api_idx, int) and 0 <= api_idx < len(apis) else None,
        max_input_channels=int(raw.get("max_input_channels") or 0),
        max_output_channels=int(raw.get("max_output_channels") or 0),
        default_samplerate_hz=float(rate) if isinstance(rate, (int, float)) else None,
    )


def _coerce_index(value: object) -> Optional[int]:
    if isinstance(value, bool):
        return None
    try:
        index = int(value)
    except (TypeError, ValueError):
        return None
    return index if index >= 0 else None


def _log(logger: Any, level: str, event: str, payload: Dict[str, Any]) -> None:
    if logger is not None:
        logger.emit(level, "audio.devices", event, payload)
