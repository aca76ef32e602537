"""
CONTRACT: inline
ROLE: Load YAML config, apply run-mode presets, validate, expose dotted accessors.

INPUTS:
  - Topic: n/a  Type: n/a
OUTPUTS:
  - Topic: n/a  Type: n/a

CONFIG KEYS:
  - config_path: path to YAML file (optional; defaults alone are a valid config)
  - runtime.mode: listen | beacon | emit
  - runtime.enable_validation: enable validation (bool, default true)

PERF / TIMING:
  - load once at startup

FAILURE MODES:
  - missing/invalid key -> raise ValueError -> log validation_failed

LOG EVENTS:
  - module=core.config, event=validation_failed, payload keys=path, errors

TESTS:
  - tests/test_config.py covers presets, overrides and validation

CONTRACT DETAILS:
# Config contract

- Precedence: built-in defaults <- mode preset <- YAML file.
- listen: any energy above 17 kHz, 4096-point FFT, threshold 10, 1.5 s timer debounce.
- beacon: emit 19 kHz and record while 19 kHz is heard, 2048-point FFT,
  threshold 100, 4.0 s silence debounce.
- emit: tone output only.
- Thresholds are unscaled squared FFT magnitudes (see dsp.spectrum).
"""

from __future__ import annotations

import copy
from typing import Any, Dict, List, Optional

import yaml


MODES = ("listen", "beacon", "emit")
DETECTOR_VARIANTS = ("band", "tone")
DEBOUNCE_POLICIES = ("timer", "silence")


MODE_PRESETS: Dict[str, Dict[str, Any]] = {
    "listen": {
        "detector": {
            "enabled": True,
            "fft_size": 4096,
            "variant": "band",
            "threshold": 10.0,
            "debounce": {"policy": "timer", "silence_s": 1.5},
        },
        "emitter": {"enabled": False},
        "session": {"enabled": False},
    },
    "beacon": {
        "detector": {
            "enabled": True,
            "fft_size": 2048,
            "variant": "tone",
            "threshold": 100.0,
            "debounce": {"policy": "silence", "silence_s": 4.0},
        },
        "emitter": {"enabled": True},
        "session": {"enabled": True},
    },
    "emit": {
        "detector": {"enabled": False},
        "emitter": {"enabled": True},
        "session": {"enabled": False},
    },
}


def load_config(path: Optional[str] = None, mode: Optional[str] = None) -> Dict[str, Any]:
    """Load YAML config and apply defaults and the run-mode preset.

    An explicit ``mode`` argument overrides ``runtime.mode`` from the file.
    """
    data: Dict[str, Any] = {}
    if path:
        with open(path, "r", encoding="utf-8") as handle:
            data = yaml.safe_load(handle) or {}
        if not isinstance(data, dict):
            raise ValueError(f"Config {path} must be a mapping, got {type(data).__name__}")
    selected = str(mode or get_path(data, "runtime.mode", None) or get_path(_default_config(), "runtime.mode"))
    if selected not in MODE_PRESETS:
        raise ValueError(f"Unknown runtime.mode '{selected}' (expected one of {', '.join(MODES)})")
    merged = _merge_dicts(_default_config(), MODE_PRESETS[selected])
    merged = _merge_dicts(merged, data)
    merged["runtime"]["mode"] = selected
    if bool(get_path(merged, "runtime.enable_validation", True)):
        errors = validate_config(merged)
        if errors:
            joined = "\n".join(f"- {e}" for e in errors)
            raise ValueError(f"Config validation failed for {path or '<defaults>'}:\n{joined}")
    return merged


def get_path(config: Dict[str, Any], dotted_path: str, default: Any = None) -> Any:
    """Get a nested config value by dotted path."""
    node: Any = config
    for key in dotted_path.split("."):
        if not isinstance(node, dict) or key not in node:
            return default
        node = node[key]
    return node


def _default_config() -> Dict[str, Any]:
    return {
        "runtime": {
            "mode": "listen",
            "run_id": "",
            "enable_validation": True,
            "artifacts": {
                "dir": "artifacts",
                "retention": {
                    "max_runs": 10,
                },
            },
        },
        "audio": {
            "sample_rate_hz": 44100,
            "channels": 1,
            "device_index": None,
            "device_id": None,
        },
        "detector": {
            "enabled": True,
            "fft_size": 4096,
            "variant": "band",
            "min_freq_hz": 17000.0,
            "target_freq_hz": 19000.0,
            "threshold": 10.0,
            "debounce": {
                "policy": "timer",
                "silence_s": 1.5,
            },
        },
        "emitter": {
            "enabled": False,
            "frequency_hz": 19000.0,
            "amplitude": 1.0,
            "block_size": 1024,
            "device_index": None,
            "device_id": None,
        },
        "session": {
            "enabled": False,
            "notification": {
                "title": "DogWhistle",
                "body": "Conversation ended. Tap to review and give AI consent.",
            },
        },
        "bus": {
            "max_queue_depth": 8,
            "topic_depths": {},
        },
        "logging": {
            "level": "info",
            "file": {
                "enabled": True,
                "flush_interval_ms": 200,
                "rotate_mb": 50,
            },
        },
    }


def _merge_dicts(base: Dict[str, Any], override: Dict[str, Any]) -> Dict[str, Any]:
    result = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(result.get(key), dict):
            result[key] = _merge_dicts(result[key], value)
        else:
            result[key] = copy.deepcopy(value)
    return result


def validate_config(config: Dict[str, Any]) -> List[str]:
    """Return a list of validation errors for the merged config.

    Catches the "it runs but never detects anything" cases: a target above
    Nyquist, an FFT size the analyzer cannot set up, an unknown policy.
    """
    errors: List[str] = []

    mode = str(get_path(config, "runtime.mode", "") or "")
    if mode not in MODES:
        errors.append(f"runtime.mode must be one of {', '.join(MODES)}, got '{mode}'")

    sample_rate = _as_float(get_path(config, "audio.sample_rate_hz"))
    if sample_rate is None or sample_rate <= 0:
        errors.append("audio.sample_rate_hz must be > 0")
        sample_rate = None
    nyquist = sample_rate / 2.0 if sample_rate else None

    if bool(get_path(config, "detector.enabled", True)):
        fft_size = _as_int(get_path(config, "detector.fft_size"))
        if fft_size is None or fft_size < 2 or (fft_size & (fft_size - 1)) != 0:
            errors.append("detector.fft_size must be a power of two >= 2")
        threshold = _as_float(get_path(config, "detector.threshold"))
        if threshold is None or threshold < 0:
            errors.append("detector.threshold must be >= 0")
        variant = str(get_path(config, "detector.variant", "") or "")
        if variant not in DETECTOR_VARIANTS:
            errors.append(f"detector.variant must be one of {', '.join(DETECTOR_VARIANTS)}, got '{variant}'")
        freq_key = "detector.min_freq_hz" if variant == "band" else "detector.target_freq_hz"
        freq = _as_float(get_path(config, freq_key))
        if variant in DETECTOR_VARIANTS:
            if freq is None or freq < 0:
                errors.append(f"{freq_key} must be >= 0")
            elif nyquist is not None and freq >= nyquist:
                errors.append(f"{freq_key}={freq:g} must be below Nyquist ({nyquist:g} Hz)")
        policy = str(get_path(config, "detector.debounce.policy", "") or "")
        if policy not in DEBOUNCE_POLICIES:
            errors.append(f"detector.debounce.policy must be one of {', '.join(DEBOUNCE_POLICIES)}, got '{policy}'")
        silence_s = _as_float(get_path(config, "detector.debounce.silence_s"))
        if silence_s is None or silence_s <= 0:
            errors.append("detector.debounce.silence_s must be > 0")

    if bool(get_path(config, "emitter.enabled", False)):
        freq = _as_float(get_path(config, "emitter.frequency_hz"))
        if freq is None or freq <= 0:
            errors.append("emitter.frequency_hz must be > 0")
        elif nyquist is not None and freq >= nyquist:
            errors.append(f"emitter.frequency_hz={freq:g} must be below Nyquist ({nyquist:g} Hz)")
        amplitude = _as_float(get_path(config, "emitter.amplitude"))
        if amplitude is None or not 0.0 < amplitude <= 1.0:
            errors.append("emitter.amplitude must be in (0, 1]")
        block_size = _as_int(get_path(config, "emitter.block_size"))
        if block_size is None or block_size <= 0:
            errors.append("emitter.block_size must be > 0")

    if bool(get_path(config, "session.enabled", False)) and not bool(get_path(config, "detector.enabled", True)):
        errors.append("session.enabled=true requires detector.enabled=true")

    return errors


def _as_float(value: Any) -> Optional[float]:
    try:
        if value is None or isinstance(value, bool):
            return None
        return float(value)
    except (TypeError, ValueError):
        return None


def _as_int(value: Any) -> Optional[int]:
    try:
        if value is None or isinstance(value, bool):
            return None
        if isinstance(value, float) and not value.is_integer():
            return None
        return int(value)
    except (TypeError, ValueError):
        return None
