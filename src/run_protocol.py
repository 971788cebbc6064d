"""Run folders for cut jobs.

Each job gets ``<runs>/<UTC stamp>_<slug>/`` holding the copied input
photo, the cut artifacts, and the manifest/metrics/summary written by the
pipeline. ``<runs>/latest`` always points at the newest run.
"""

from __future__ import annotations

import json
import os
import re
import shutil
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional

import numpy as np

ARTIFACT_NAMES = {
    "layout": "layout.json",
    "fit_report": "fit_report.json",
    "dxf": "outline.dxf",
    "svg": "outline.svg",
}
LATEST_NAME = "latest"
LATEST_FALLBACK_FILE = "latest_run.txt"


@dataclass
class RunPaths:
    run_id: str
    run_dir: Path

    @property
    def input_dir(self) -> Path:
        return self.run_dir / "input"

    @property
    def artifacts_dir(self) -> Path:
        return self.run_dir / "artifacts"

    @property
    def manifest_path(self) -> Path:
        return self.run_dir / "manifest.json"

    @property
    def metrics_path(self) -> Path:
        return self.run_dir / "metrics.json"

    @property
    def summary_path(self) -> Path:
        return self.run_dir / "summary.md"

    def artifact(self, kind: str) -> Path:
        return self.artifacts_dir / ARTIFACT_NAMES[kind]

    @property
    def layout_path(self) -> Path:
        return self.artifact("layout")

    @property
    def fit_report_path(self) -> Path:
        return self.artifact("fit_report")

    @property
    def dxf_path(self) -> Path:
        return self.artifact("dxf")

    @property
    def svg_path(self) -> Path:
        return self.artifact("svg")


def slugify(value: str) -> str:
    """Lowercase, non-alphanumerics collapsed to single dashes."""
    return re.sub(r"[^a-z0-9]+", "-", value.strip().lower()).strip("-") or "run"


def create_run_id(job_name: str, now: Optional[datetime] = None) -> str:
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d_%H%M%S}_{slugify(job_name)}"


def prepare_run_dir(runs_root: str, job_name: str) -> RunPaths:
    """Create a fresh run folder; same-second runs get a numeric suffix."""
    root = Path(runs_root)
    base_id = create_run_id(job_name)
    run_id = base_id
    n = 1
    while (root / run_id).exists():
        n += 1
        run_id = f"{base_id}_{n}"

    paths = RunPaths(run_id=run_id, run_dir=root / run_id)
    for folder in (paths.input_dir, paths.artifacts_dir):
        folder.mkdir(parents=True, exist_ok=True)
    return paths


def copy_input_image(image_path: str, input_dir: Path) -> Path:
    src = Path(image_path)
    dst = input_dir / src.name
    if src.resolve() != dst.resolve():
        shutil.copy2(src, dst)
    return dst


def _to_jsonable(value: Any) -> Any:
    if isinstance(value, np.ndarray):
        return value.tolist()
    if isinstance(value, np.generic):
        return value.item()
    if isinstance(value, Path):
        return str(value)
    raise TypeError(f"Not JSON serializable: {type(value).__name__}")


def write_json(path: Path, payload: Any) -> None:
    """Pretty-printed JSON; numpy values and paths are converted."""
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(payload, indent=2, default=_to_jsonable), encoding="utf-8")


def write_text(path: Path, content: str) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(content, encoding="utf-8")


def _remove_latest(latest: Path) -> None:
    if latest.is_symlink() or latest.is_file():
        latest.unlink()
    elif latest.is_dir():
        shutil.rmtree(latest)


def update_latest_pointer(runs_root: str, run_dir: Path) -> None:
    """Point ``latest`` at *run_dir*: a relative symlink, or a text file
    naming the run where the filesystem has no symlinks."""
    root = Path(runs_root)
    latest = root / LATEST_NAME
    _remove_latest(latest)
    try:
        latest.symlink_to(os.path.relpath(run_dir, root))
    except OSError:
        latest.mkdir(parents=True, exist_ok=True)
        (latest / LATEST_FALLBACK_FILE).write_text(run_dir.name, encoding="utf-8")
