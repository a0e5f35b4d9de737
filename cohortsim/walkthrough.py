"""Narrated analysis of the food-temperature x hunger study.

The dataset grows the same way as the study does: first two hunger groups
with cold and warm food, then a frozen condition, then a superhungry cohort.
Each snapshot is rebuilt from the same seed with a prefix of the design, so
the rows of an earlier snapshot are exactly the rows the full run starts from.
"""
from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from . import analysis
from .config import GeneratorConfig, get_config
from .generator import CONDITION, COVARIATE, GROUP, OUTCOME, describe_cells, outcome_column
from .pipeline import GenerationResult, build_dataset, build_wide
from .specs import StudyDesign, default_design

logger = logging.getLogger(__name__)


def _snapshot(design: StudyDesign, n_stages: int, cfg: GeneratorConfig, log_path: Optional[str]) -> GenerationResult:
    prefix = StudyDesign(
        stages=design.stages[:n_stages],
        covariate_noise_mean=design.covariate_noise_mean,
        covariate_noise_sd=design.covariate_noise_sd,
        covariate_mode=design.covariate_mode,
        name=f"{design.name}[:{n_stages}]",
    )
    return build_dataset(prefix, config=cfg, log_path=log_path)


def _say(step: str, result: analysis.StatResult, alpha: float) -> Dict[str, Any]:
    logger.info("%s: %s = %.4f, %s", step, result.test, result.statistic, analysis.interpret_p(result.p_value, alpha))
    return result.to_dict()


def run_walkthrough(
    config: Optional[GeneratorConfig] = None,
    design: Optional[StudyDesign] = None,
    log_path: Optional[str] = None,
) -> Dict[str, Any]:
    cfg = config or get_config()
    design = design or default_design()
    alpha = cfg.alpha
    log_path = log_path or cfg.log_path
    out: Dict[str, Any] = {}

    # Two conditions, two groups
    first = _snapshot(design, 1, cfg, log_path)
    long1 = first.table
    wide1 = build_wide(first)
    groups1 = [str(g) for g in long1[GROUP].unique()]
    cold, warm = outcome_column("cold"), outcome_column("warm")

    out["normality"] = {k: _say(f"normality {k}", r, alpha) for k, r in analysis.normality_by_cell(long1).items()}
    out["variance_homogeneity"] = _say("variance", analysis.variance_homogeneity(wide1, "outcome_mean", GROUP), alpha)
    out["correlation"] = _say("correlation", analysis.correlation(wide1, COVARIATE, "outcome_mean"), alpha)

    simple = analysis.linear_regression(wide1, f"outcome_mean ~ {COVARIATE}")
    multiple = analysis.linear_regression(wide1, f"outcome_mean ~ {COVARIATE} + C({GROUP})")
    logger.info("regression: R2 %.3f -> %.3f after adding group", simple["r_squared"], multiple["r_squared"])
    out["regression"] = {"simple": simple, "with_group": multiple}

    out["paired_ttest"] = _say("paired t-test", analysis.paired_ttest(wide1, cold, warm), alpha)
    if len(groups1) == 2:
        out["independent_ttest"] = _say(
            "independent t-test",
            analysis.independent_ttest(wide1, "outcome_mean", GROUP, groups1),
            alpha,
        )

    # Third within-subject level
    second = _snapshot(design, min(2, len(design.stages)), cfg, log_path)
    rm = analysis.repeated_measures_anova(second.table, depvar=OUTCOME, within=[CONDITION])
    out["rm_anova"] = {k: _say("RM ANOVA", r, alpha) for k, r in rm.items()}

    # Full design
    full = build_dataset(design, config=cfg, log_path=log_path)
    wide = build_wide(full)
    out["cells"] = describe_cells(full.table)
    for cell, d in out["cells"].items():
        logger.info("cell %s: mean %.3f, sd %.3f, n %d", cell, d["mean"], d["sd"], d["n"])
    out["one_way_anova"] = _say("one-way ANOVA", analysis.one_way_anova(wide, "outcome_mean", GROUP), alpha)
    mixed = analysis.mixed_design_anova(full.table)
    out["mixed_design"] = {k: _say(f"mixed design {k}", r, alpha) for k, r in mixed.items()}

    lmm = analysis.mixed_model(full.table, f"{OUTCOME} ~ C({CONDITION}) * C({GROUP}) + {COVARIATE}")
    for term, p in lmm["p_values"].items():
        logger.info("LMM %s: %s", term, analysis.interpret_p(p, alpha))
    out["mixed_model"] = lmm

    out["manifest"] = full.manifest.to_dict()
    return out
