from __future__ import annotations
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Union
import json
import math

from jsonschema import ValidationError, validate as js_validate

from .config import CovariateMode, parse_covariate_mode
from .errors import ConfigError

DEFAULT_SCHEMA_PATH = Path(__file__).resolve().parent / "schema" / "study_design_schema.json"

@dataclass(frozen=True)
class ConditionParams:
    mean: float
    sd: float

    def __post_init__(self) -> None:
        if not isinstance(self.mean, (int, float)) or not math.isfinite(self.mean):
            raise ConfigError(f"condition mean must be a finite number, got {self.mean!r}")
        if not isinstance(self.sd, (int, float)) or not math.isfinite(self.sd) or self.sd <= 0:
            raise ConfigError(f"condition sd must be a positive finite number, got {self.sd!r}")

@dataclass
class CohortSpec:
    group: str
    n_subjects: int
    conditions: Dict[str, ConditionParams]
    start_id: Optional[int] = None  # None: continue from the table's max id + 1

@dataclass
class CohortStage:
    """One or more cohorts simulated together; their covariates share one noise pass."""
    cohorts: List[CohortSpec]

@dataclass
class ConditionStage:
    """A new within-subject level added for every subject already in the table."""
    condition: str
    params_by_group: Dict[str, ConditionParams]

Stage = Union[CohortStage, ConditionStage]

@dataclass
class StudyDesign:
    stages: List[Stage]
    covariate_noise_mean: float = 0.10
    covariate_noise_sd: float = 0.02
    covariate_mode: CovariateMode = CovariateMode.STAGED
    name: str = "study"

    def to_dict(self) -> Dict[str, Any]:
        stages: List[Dict[str, Any]] = []
        for st in self.stages:
            if isinstance(st, CohortStage):
                stages.append({
                    "kind": "cohorts",
                    "cohorts": [
                        {
                            "group": c.group,
                            "n_subjects": c.n_subjects,
                            "conditions": {k: {"mean": p.mean, "sd": p.sd} for k, p in c.conditions.items()},
                            **({"start_id": c.start_id} if c.start_id is not None else {}),
                        }
                        for c in st.cohorts
                    ],
                })
            else:
                stages.append({
                    "kind": "condition",
                    "condition": st.condition,
                    "params_by_group": {g: {"mean": p.mean, "sd": p.sd} for g, p in st.params_by_group.items()},
                })
        return {
            "name": self.name,
            "covariate_noise": {"mean": self.covariate_noise_mean, "sd": self.covariate_noise_sd},
            "covariate_mode": self.covariate_mode.value,
            "stages": stages,
        }

def _params(d: Dict[str, Any]) -> ConditionParams:
    try:
        return ConditionParams(mean=float(d["mean"]), sd=float(d["sd"]))
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"invalid condition parameters {d!r}: {e}") from e

def design_from_dict(data: Dict[str, Any]) -> StudyDesign:
    stages: List[Stage] = []
    for i, st in enumerate(data.get("stages", [])):
        kind = st.get("kind")
        if kind == "cohorts":
            cohorts = [
                CohortSpec(
                    group=str(c["group"]),
                    n_subjects=int(c["n_subjects"]),
                    conditions={k: _params(v) for k, v in c["conditions"].items()},
                    start_id=int(c["start_id"]) if c.get("start_id") is not None else None,
                )
                for c in st["cohorts"]
            ]
            stages.append(CohortStage(cohorts=cohorts))
        elif kind == "condition":
            stages.append(ConditionStage(
                condition=str(st["condition"]),
                params_by_group={g: _params(v) for g, v in st["params_by_group"].items()},
            ))
        else:
            raise ConfigError(f"stage {i}: unknown kind {kind!r}")
    if not stages:
        raise ConfigError("design has no stages")

    noise = data.get("covariate_noise", {})
    return StudyDesign(
        stages=stages,
        covariate_noise_mean=float(noise.get("mean", 0.10)),
        covariate_noise_sd=float(noise.get("sd", 0.02)),
        covariate_mode=parse_covariate_mode(data.get("covariate_mode", "staged")),
        name=str(data.get("name", "study")),
    )

def load_design(path: Path, schema_path: Optional[Path] = DEFAULT_SCHEMA_PATH) -> StudyDesign:
    data = json.loads(Path(path).read_text(encoding="utf-8"))
    if schema_path is not None:
        schema = json.loads(Path(schema_path).read_text(encoding="utf-8"))
        try:
            js_validate(instance=data, schema=schema)
        except ValidationError as e:
            raise ConfigError(f"{path}: {e.message}") from e
    return design_from_dict(data)

@dataclass
class LintResult:
    ok: bool
    errors: List[str]
    warnings: List[str] = field(default_factory=list)

def lint_design(data: Dict[str, Any]) -> LintResult:
    errors: List[str] = []
    warnings: List[str] = []
    stages = data.get("stages")
    if not stages:
        errors.append("missing:stages")
        stages = []
    groups: set = set()
    levels: Optional[set] = None
    next_id: Optional[int] = None
    for i, st in enumerate(stages):
        if st.get("kind") == "cohorts":
            for c in st.get("cohorts", []):
                if c.get("group") in groups:
                    warnings.append(f"stage{i}:repeated_group:{c.get('group')}")
                groups.add(c.get("group"))
                n = int(c.get("n_subjects", 0) or 0)
                if n <= 0:
                    errors.append(f"stage{i}:n_subjects<=0:{c.get('group')}")
                conds = set((c.get("conditions") or {}).keys())
                if levels is None:
                    levels = conds
                elif conds != levels:
                    errors.append(f"stage{i}:condition_mismatch:{c.get('group')}")
                start = c.get("start_id")
                if start is None:
                    start = next_id if next_id is not None else 1
                elif next_id is not None and int(start) != next_id:
                    errors.append(f"stage{i}:start_id_gap:{c.get('group')}")
                next_id = int(start) + max(n, 0)
        elif st.get("kind") == "condition":
            missing = groups - set((st.get("params_by_group") or {}).keys())
            for g in sorted(missing, key=str):
                errors.append(f"stage{i}:missing_params:{g}")
            if levels is not None:
                levels = levels | {st.get("condition")}
        else:
            errors.append(f"stage{i}:unknown_kind")
    if "covariate_noise" not in data:
        warnings.append("defaulted:covariate_noise=0.10/0.02")
    return LintResult(ok=(len(errors) == 0), errors=errors, warnings=warnings)

def default_design() -> StudyDesign:
    """Three-stage food-temperature x hunger study used by the walkthrough."""
    p = ConditionParams
    return StudyDesign(
        name="food_temperature",
        stages=[
            CohortStage(cohorts=[
                CohortSpec("hungry", 30, {"cold": p(0.60, 0.13), "warm": p(0.75, 0.12)}),
                CohortSpec("not_hungry", 30, {"cold": p(0.55, 0.12), "warm": p(0.58, 0.13)}),
            ]),
            ConditionStage("frozen", {"hungry": p(0.45, 0.12), "not_hungry": p(0.50, 0.11)}),
            CohortStage(cohorts=[
                CohortSpec("superhungry", 30, {"cold": p(0.70, 0.12), "warm": p(0.90, 0.10), "frozen": p(0.55, 0.12)}),
            ]),
        ],
    )
