"""Run manifest — complete record of every generation run.

Every run produces a manifest containing:
  - Seed and the covariate settings the design supplied
  - The design that was executed (stages in order)
  - Row / subject / condition counts of the final table
  - A sha256 digest of the table (equal digests mean identical tables)
  - Environment info, timestamp and duration
"""
from __future__ import annotations

import json
import platform
import time
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List

import pandas as pd

from .hash_utils import stable_json_sha256, table_sha256


@dataclass
class GenerationManifest:
    """Complete manifest for one generation run."""
    run_id: str = ""
    timestamp: str = ""
    duration_s: float = 0.0

    seed: int = 0
    config: Dict[str, Any] = field(default_factory=dict)
    design: Dict[str, Any] = field(default_factory=dict)
    design_hash: str = ""

    n_rows: int = 0
    n_subjects: int = 0
    conditions: List[str] = field(default_factory=list)
    groups: List[str] = field(default_factory=list)
    table_sha256: str = ""

    # One entry per executed stage: kind, label, rows after the stage
    stage_log: List[Dict[str, Any]] = field(default_factory=list)

    environment: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "run_id": self.run_id,
            "timestamp": self.timestamp,
            "duration_s": self.duration_s,
            "seed": self.seed,
            "config": self.config,
            "design": self.design,
            "design_hash": self.design_hash,
            "n_rows": self.n_rows,
            "n_subjects": self.n_subjects,
            "conditions": self.conditions,
            "groups": self.groups,
            "table_sha256": self.table_sha256,
            "stage_log": self.stage_log,
            "environment": self.environment,
        }

    def save(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(json.dumps(self.to_dict(), indent=2), encoding="utf-8")

    @classmethod
    def load(cls, path: Path) -> "GenerationManifest":
        data = json.loads(path.read_text(encoding="utf-8"))
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})


def create_manifest(
    run_id: str,
    seed: int,
    design: Dict[str, Any],
    config: Dict[str, Any] | None = None,
) -> GenerationManifest:
    """Create a manifest for a run that is about to start."""
    return GenerationManifest(
        run_id=run_id,
        timestamp=time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime()),
        seed=int(seed),
        config=config or {},
        design=design,
        design_hash=stable_json_sha256(design),
        environment={
            "platform": platform.system(),
            "python": platform.python_version(),
            "cohortsim_version": _get_version(),
            "numpy": _module_version("numpy"),
            "pandas": pd.__version__,
        },
    )


def finalize_manifest(manifest: GenerationManifest, table: pd.DataFrame, started: float) -> GenerationManifest:
    manifest.duration_s = round(time.perf_counter() - started, 6)
    manifest.n_rows = int(len(table))
    manifest.n_subjects = int(table["subject_id"].nunique()) if len(table) else 0
    manifest.conditions = [str(c) for c in pd.unique(table["condition"])] if len(table) else []
    manifest.groups = [str(g) for g in pd.unique(table["group"])] if len(table) else []
    manifest.table_sha256 = table_sha256(table)
    return manifest


def _module_version(name: str) -> str:
    try:
        mod = __import__(name)
        return str(getattr(mod, "__version__", "unknown"))
    except ImportError:
        return "unknown"


def _get_version() -> str:
    try:
        from . import __version__
        return __version__
    except ImportError:
        return "unknown"
