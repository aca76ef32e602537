"""dogwhistle.core.artifacts

CONTRACT: inline
ROLE: Per-run directories for logs and session recordings, plus run metadata.

OUTPUTS:
  - <artifacts>/<run_id>/logs
  - <artifacts>/<run_id>/recordings
  - <artifacts>/<run_id>/run_meta.json
  - <artifacts>/<run_id>/config_effective.yaml

CONFIG KEYS:
  - runtime.run_id: optional explicit run id (timestamp when empty)
  - runtime.artifacts.dir: base artifacts directory
  - runtime.artifacts.retention.max_runs: keep the newest N run directories
  - runtime.artifacts.dir_run: set here; read by the log sink and recorder
"""

from __future__ import annotations

import json
import platform
import shutil
import sys
import time
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from dogwhistle.core.clock import now_ns


RUN_SUBDIRS = ("logs", "recordings")


def create_run_dir(base_dir: str, run_id: Optional[str] = None, max_runs: int = 10) -> Path:
    """Make a fresh run directory under base_dir and prune old runs.

    A run id that is already taken gets a _02, _03, ... suffix.
    """
    base = Path(base_dir)
    base.mkdir(parents=True, exist_ok=True)
    name = (run_id or "").strip() or time.strftime("%Y%m%d_%H%M%S")
    run_dir = _unique_child(base, name)
    for sub in RUN_SUBDIRS:
        (run_dir / sub).mkdir(parents=True, exist_ok=True)
    apply_retention(base, max_runs=max_runs, keep_dir=run_dir)
    return run_dir


def apply_retention(base_dir: Path, max_runs: int, keep_dir: Optional[Path] = None) -> List[Path]:
    """Delete all but the newest max_runs directories; returns what was removed."""
    if max_runs <= 0:
        return []
    keep = keep_dir.resolve() if keep_dir is not None else None
    runs = sorted((p for p in base_dir.iterdir() if p.is_dir()), key=lambda p: p.stat().st_mtime, reverse=True)
    removed: List[Path] = []
    for stale in runs[max_runs:]:
        if keep is not None and stale.resolve() == keep:
            continue
        shutil.rmtree(stale, ignore_errors=True)
        removed.append(stale)
    return removed


def ensure_run_artifacts(config: Dict[str, Any]) -> Path:
    """Create the run directory for config, record it in runtime.* and write metadata."""
    runtime = config.setdefault("runtime", {})
    artifacts_cfg = runtime.setdefault("artifacts", {})
    retention = artifacts_cfg.get("retention")
    max_runs = int(retention.get("max_runs", 10)) if isinstance(retention, dict) else 10
    run_dir = create_run_dir(
        str(artifacts_cfg.get("dir", "artifacts")),
        run_id=str(runtime.get("run_id") or ""),
        max_runs=max_runs,
    )
    runtime["run_id"] = run_dir.name
    artifacts_cfg["dir_run"] = str(run_dir)
    write_run_metadata(run_dir, config)
    return run_dir


def recordings_dir(config: Dict[str, Any]) -> Path:
    """Where session recordings for this run go."""
    run_dir = config.get("runtime", {}).get("artifacts", {}).get("dir_run")
    if not run_dir:
        raise ValueError("runtime.artifacts.dir_run is not set; call ensure_run_artifacts first")
    return Path(str(run_dir)) / "recordings"


def write_run_metadata(run_dir: Path, config: Dict[str, Any]) -> None:
    meta = {
        "t_start_ns": now_ns(),
        "mode": config.get("runtime", {}).get("mode"),
        "platform": {
            "python": sys.version,
            "machine": platform.machine(),
            "system": platform.system(),
            "release": platform.release(),
        },
        "versions": _versions(),
        "config": config,
    }
    (run_dir / "run_meta.json").write_text(json.dumps(meta, indent=2, default=str), encoding="utf-8")
    with open(run_dir / "config_effective.yaml", "w", encoding="utf-8") as handle:
        yaml.safe_dump(config, handle, sort_keys=False)


def _unique_child(base: Path, name: str) -> Path:
    candidate = base / name
    suffix = 2
    while candidate.exists():
        candidate = base / f"{name}_{suffix:02d}"
        suffix += 1
    return candidate


def _versions() -> Dict[str, Optional[str]]:
    import numpy

    from dogwhistle.version import __version__

    versions: Dict[str, Optional[str]] = {"dogwhistle": __version__, "numpy": numpy.__version__, "sounddevice": None}
    try:
        import sounddevice
    except (ImportError, OSError):
        return versions
    versions["sounddevice"] = str(getattr(sounddevice, "__version__", None))
    return versions
