from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .config import CovariateMode, GeneratorConfig, get_config
from .errors import ConfigError
from .generator import (
    CONDITION,
    COVARIATE,
    GROUP,
    LONG_COLUMNS,
    OUTCOME,
    SUBJECT,
    aggregate_row_mean,
    append_cohort,
    append_condition,
    attach_covariate,
    condition_levels,
    next_subject_id,
    outcome_column,
    reshape_long_to_wide,
    simulate_cohort,
    validate_long_table,
)
from .logging_utils import log_event, new_run
from .run_manifest import GenerationManifest, create_manifest, finalize_manifest
from .specs import CohortStage, ConditionStage, StudyDesign

logger = logging.getLogger(__name__)


@dataclass
class GenerationResult:
    table: pd.DataFrame
    manifest: GenerationManifest


def _empty_table() -> pd.DataFrame:
    return pd.DataFrame({
        SUBJECT: pd.Series(dtype="int64"),
        CONDITION: pd.Series(dtype="object"),
        GROUP: pd.Series(dtype="object"),
        OUTCOME: pd.Series(dtype="float64"),
        COVARIATE: pd.Series(dtype="float64"),
    })[LONG_COLUMNS]


def build_dataset(
    design: StudyDesign,
    seed: Optional[int] = None,
    config: Optional[GeneratorConfig] = None,
    log_path: Optional[str] = None,
) -> GenerationResult:
    """Run every stage of ``design`` against one seeded generator.

    The generator is created once here and never reseeded. In staged
    covariate mode each stage attaches the covariate for the subjects it
    introduced, using only the conditions that exist at that point; a later
    condition stage leaves those values untouched. Deferred mode attaches
    the covariate once, after the last stage.
    """
    cfg = config or get_config()
    seed = int(cfg.seed if seed is None else seed)
    log_path = log_path or cfg.log_path
    mode = design.covariate_mode
    if not isinstance(mode, CovariateMode):
        raise ConfigError(f"unknown covariate mode: {mode!r}")

    started = time.perf_counter()
    runctx = new_run()
    effective = {
        **cfg.to_manifest_dict(),
        "seed": seed,
        "covariate_mode": mode.value,
        "covariate_noise_mean": design.covariate_noise_mean,
        "covariate_noise_sd": design.covariate_noise_sd,
    }
    manifest = create_manifest(runctx.run_id, seed, design.to_dict(), config=effective)
    log_event("run_start", {"run_id": runctx.run_id, "seed": seed, "design": design.name}, path=log_path)

    rng = np.random.default_rng(seed)
    table = _empty_table()

    for i, stage in enumerate(design.stages):
        if isinstance(stage, CohortStage):
            new_ids: List[int] = []
            for cohort in stage.cohorts:
                start = cohort.start_id if cohort.start_id is not None else next_subject_id(table)
                block = simulate_cohort(rng, cohort.group, cohort.n_subjects, cohort.conditions, start_id=start)
                table = append_cohort(table, block)
                new_ids.extend(int(s) for s in block[SUBJECT].unique())
            if mode == CovariateMode.STAGED:
                table = attach_covariate(
                    table, rng,
                    noise_mean=design.covariate_noise_mean,
                    noise_sd=design.covariate_noise_sd,
                    subjects=new_ids,
                )
            label = "+".join(c.group for c in stage.cohorts)
            kind = "cohorts"
        elif isinstance(stage, ConditionStage):
            table = append_condition(table, rng, stage.condition, stage.params_by_group)
            label = stage.condition
            kind = "condition"
        else:
            raise ConfigError(f"stage {i}: unsupported stage type {type(stage).__name__}")

        manifest.stage_log.append({"stage": i, "kind": kind, "label": label, "n_rows": int(len(table))})
        log_event("stage_done", {"run_id": runctx.run_id, "stage": i, "kind": kind, "label": label, "n_rows": int(len(table))}, path=log_path)
        logger.info("stage %d (%s %s): %d rows", i, kind, label, len(table))

    if mode == CovariateMode.DEFERRED:
        table = attach_covariate(table, rng, noise_mean=design.covariate_noise_mean, noise_sd=design.covariate_noise_sd)

    validate_long_table(table)
    finalize_manifest(manifest, table, started)
    log_event("run_end", {"run_id": runctx.run_id, "n_rows": manifest.n_rows, "table_sha256": manifest.table_sha256}, path=log_path)
    return GenerationResult(table=table, manifest=manifest)


def build_wide(
    data: Union[GenerationResult, pd.DataFrame],
    levels: Optional[Sequence[str]] = None,
    fill_missing: bool = False,
    mean_name: str = "outcome_mean",
) -> pd.DataFrame:
    """Wide table with one outcome column per condition plus their row mean."""
    table = data.table if isinstance(data, GenerationResult) else data
    levels = list(levels) if levels is not None else condition_levels(table)
    wide = reshape_long_to_wide(table, levels=levels, fill_missing=fill_missing)
    return aggregate_row_mean(wide, [outcome_column(c) for c in levels], name=mean_name)


def write_table(df: pd.DataFrame, path: Path) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    suffix = path.suffix.lower()
    if suffix == ".csv":
        df.to_csv(path, index=False)
    elif suffix == ".xlsx":
        df.to_excel(path, index=False, engine="openpyxl")
    else:
        raise ConfigError(f"unsupported table format: {suffix or '(none)'}; use .csv or .xlsx")
    logger.info("wrote %s (%d rows)", path, len(df))
    return path
