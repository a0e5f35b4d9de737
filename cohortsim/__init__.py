"""cohortsim — staged synthetic psychology-experiment datasets.

Long-format tables (one row per subject x condition) built cohort by cohort
from a single seeded generator, plus thin wrappers around scipy/statsmodels
for the inferential-statistics walkthrough.
"""

__version__ = "0.3.0"

from .errors import CohortSimError, ConfigError, ShapeError, RngError
from .config import CovariateMode, GeneratorConfig, get_config, set_config
from .specs import ConditionParams, CohortStage, ConditionStage, StudyDesign, default_design, load_design
from .generator import (
    simulate_cohort,
    attach_covariate,
    append_cohort,
    append_condition,
    sort_by_subject,
    reshape_long_to_wide,
    reshape_wide_to_long,
    aggregate_row_mean,
    outcome_column,
)
from .pipeline import GenerationResult, build_dataset, build_wide, write_table
