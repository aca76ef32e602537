#!/usr/bin/env python3
"""Preflight check for DogWhistle audio devices and config.

Lists input and output devices, loads the config for the selected mode and
checks that the device sample rates can carry the configured ultrasonic
frequencies.

Run:
  python3 scripts/preflight.py --mode beacon --config configs/beacon.yaml
"""

from __future__ import annotations

import argparse
from typing import Any, Dict, List, Optional

from dogwhistle.audio.devices import (
    AudioDeviceInfo,
    list_input_devices,
    list_output_devices,
    resolve_input_device_index,
    resolve_output_device_index,
)
from dogwhistle.core.config import MODES, get_path, load_config


def _print_devices(title: str, devices: List[AudioDeviceInfo]) -> None:
    print(f"=== {title} ===")
    for d in devices:
        print(
            f"[{d.index}] {d.name} | in={d.max_input_channels} | out={d.max_output_channels}"
            f" | hostapi={d.hostapi} | default_sr={d.default_samplerate_hz}"
        )


def _check_rate(label: str, device: Optional[AudioDeviceInfo], freq_hz: float, sample_rate_hz: float) -> int:
    if freq_hz >= sample_rate_hz / 2.0:
        print(f"{label}: {freq_hz:g} Hz is not below Nyquist for {sample_rate_hz:g} Hz")
        return 1
    if device is not None and device.default_samplerate_hz and device.default_samplerate_hz < sample_rate_hz:
        print(f"{label}: device '{device.name}' defaults to {device.default_samplerate_hz:g} Hz (< {sample_rate_hz:g} Hz)")
    print(f"{label}: {freq_hz:g} Hz at {sample_rate_hz:g} Hz OK")
    return 0


def _pick(devices: List[AudioDeviceInfo], index: Optional[int]) -> Optional[AudioDeviceInfo]:
    if index is None:
        return None
    for d in devices:
        if d.index == index:
            return d
    return None


def check(config: Dict[str, Any]) -> int:
    inputs = list_input_devices()
    outputs = list_output_devices()
    _print_devices("Audio inputs", inputs)
    _print_devices("Audio outputs", outputs)

    rc = 0
    sample_rate = float(get_path(config, "audio.sample_rate_hz", 44100))
    if bool(get_path(config, "detector.enabled", True)):
        if not inputs:
            print("No input-capable devices found")
            rc |= 1
        variant = str(get_path(config, "detector.variant", "band"))
        key = "detector.min_freq_hz" if variant == "band" else "detector.target_freq_hz"
        device = _pick(inputs, resolve_input_device_index(config))
        rc |= _check_rate(f"detector ({variant})", device, float(get_path(config, key, 0.0)), sample_rate)
    if bool(get_path(config, "emitter.enabled", False)):
        if not outputs:
            print("No output-capable devices found")
            rc |= 1
        device = _pick(outputs, resolve_output_device_index(config))
        rc |= _check_rate("emitter", device, float(get_path(config, "emitter.frequency_hz", 19000.0)), sample_rate)
    return rc


def main() -> int:
    parser = argparse.ArgumentParser(description="DogWhistle preflight checks")
    parser.add_argument("--config", default=None)
    parser.add_argument("--mode", choices=MODES, default=None)
    args = parser.parse_args()

    try:
        config = load_config(args.config, mode=args.mode)
    except (OSError, ValueError) as exc:
        print(f"Config invalid: {exc}")
        return 1
    print(f"DogWhistle preflight (mode={get_path(config, 'runtime.mode')})")
    rc = check(config)
    print("Preflight: FAILED" if rc else "Preflight: OK")
    return rc


if __name__ == "__main__":
    raise SystemExit(main())
