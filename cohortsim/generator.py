"""Long-format experiment tables: cohorts, conditions, covariate, reshaping.

Every public function returns a new DataFrame; inputs are never modified.
Row order is always restored with ``sort_by_subject`` after a structural
change, so within a subject the rows keep the order in which their
conditions were simulated.
"""
from __future__ import annotations

import logging
import math
from typing import Any, Dict, Iterable, List, Mapping, Optional, Sequence, Union

import numpy as np
import pandas as pd

from .errors import ConfigError, RngError, ShapeError
from .specs import ConditionParams

logger = logging.getLogger(__name__)

SUBJECT = "subject_id"
CONDITION = "condition"
GROUP = "group"
OUTCOME = "outcome"
COVARIATE = "covariate"

LONG_COLUMNS = [SUBJECT, CONDITION, GROUP, OUTCOME, COVARIATE]
DEFAULT_ROW_KEY = (SUBJECT, GROUP, COVARIATE)

RngLike = Union[np.random.Generator, int]
ParamsLike = Union[ConditionParams, Sequence[float], Mapping[str, float]]


def outcome_column(condition: str, prefix: str = OUTCOME) -> str:
    """Wide-format column holding ``prefix`` for one condition level."""
    return f"{prefix}_{condition}"


def _as_generator(rng: RngLike) -> np.random.Generator:
    if isinstance(rng, np.random.Generator):
        return rng
    if isinstance(rng, (int, np.integer)) and not isinstance(rng, bool):
        return np.random.default_rng(int(rng))
    raise ConfigError(f"expected a numpy Generator or an integer seed, got {type(rng).__name__}")


def _as_params(value: ParamsLike, label: str) -> ConditionParams:
    if isinstance(value, ConditionParams):
        return value
    try:
        if isinstance(value, Mapping):
            return ConditionParams(mean=float(value["mean"]), sd=float(value["sd"]))
        mean, sd = value
        return ConditionParams(mean=float(mean), sd=float(sd))
    except (KeyError, TypeError, ValueError) as e:
        raise ConfigError(f"{label}: expected (mean, sd), got {value!r}") from e


def _require_columns(df: pd.DataFrame, cols: Iterable[str]) -> None:
    missing = [c for c in cols if c not in df.columns]
    if missing:
        raise ShapeError(f"missing column(s): {missing}")


def sample_normal(rng: np.random.Generator, mean: float, sd: float, count: int) -> np.ndarray:
    draws = np.asarray(rng.normal(loc=mean, scale=sd, size=count), dtype=float)
    if draws.shape != (count,):
        raise RngError(f"requested {count} draws, sampler returned shape {draws.shape}")
    return draws


def sort_by_subject(table: pd.DataFrame) -> pd.DataFrame:
    """Stable sort by subject id with a fresh index."""
    return table.sort_values(SUBJECT, kind="mergesort").reset_index(drop=True)


def next_subject_id(table: Optional[pd.DataFrame]) -> int:
    if table is None or table.empty:
        return 1
    return int(table[SUBJECT].max()) + 1


def condition_levels(table: pd.DataFrame) -> List[str]:
    """Condition levels in order of first appearance."""
    return [str(c) for c in pd.unique(table[CONDITION])]


def simulate_cohort(
    rng: RngLike,
    group_label: str,
    n_subjects: int,
    condition_params: Mapping[str, ParamsLike],
    start_id: int = 1,
) -> pd.DataFrame:
    """Simulate one between-subject cohort across the given conditions.

    Draws happen condition by condition in the mapping's order, each one
    covering every subject of the cohort. The covariate column is left NaN.
    """
    if not isinstance(group_label, str) or not group_label:
        raise ConfigError(f"group label must be a non-empty string, got {group_label!r}")
    if isinstance(n_subjects, bool) or not isinstance(n_subjects, (int, np.integer)) or n_subjects <= 0:
        raise ConfigError(f"cohort {group_label!r}: n_subjects must be a positive integer, got {n_subjects!r}")
    if not condition_params:
        raise ConfigError(f"cohort {group_label!r}: no conditions declared")
    if isinstance(start_id, bool) or not isinstance(start_id, (int, np.integer)) or start_id < 1:
        raise ConfigError(f"cohort {group_label!r}: start_id must be >= 1, got {start_id!r}")

    params = {str(c): _as_params(p, f"{group_label}/{c}") for c, p in condition_params.items()}
    gen = _as_generator(rng)
    n = int(n_subjects)
    ids = np.arange(int(start_id), int(start_id) + n, dtype=np.int64)

    frames = []
    for cond, p in params.items():
        draws = sample_normal(gen, p.mean, p.sd, n)
        frames.append(pd.DataFrame({
            SUBJECT: ids,
            CONDITION: cond,
            GROUP: group_label,
            OUTCOME: draws,
            COVARIATE: np.nan,
        }))
    table = sort_by_subject(pd.concat(frames, ignore_index=True))
    logger.debug("simulated cohort %s: ids %d..%d, conditions %s", group_label, ids[0], ids[-1], list(params))
    return table


def attach_covariate(
    table: pd.DataFrame,
    rng: RngLike,
    noise_mean: float = 0.10,
    noise_sd: float = 0.02,
    subjects: Optional[Iterable[int]] = None,
) -> pd.DataFrame:
    """Set each subject's covariate to its mean outcome plus one noise draw.

    Only the rows present right now enter the mean. With ``subjects`` given,
    every other subject keeps whatever covariate it already had. Noise is
    drawn for the selected subjects in ascending id order.
    """
    _require_columns(table, [SUBJECT, OUTCOME])
    if not math.isfinite(noise_mean) or not (math.isfinite(noise_sd) and noise_sd > 0):
        raise ConfigError(f"invalid covariate noise (mean={noise_mean!r}, sd={noise_sd!r})")
    gen = _as_generator(rng)

    out = table.copy()
    if COVARIATE not in out.columns:
        out[COVARIATE] = np.nan

    means = out.groupby(SUBJECT, sort=True)[OUTCOME].mean()
    if subjects is not None:
        wanted = sorted({int(s) for s in subjects})
        unknown = [s for s in wanted if s not in means.index]
        if unknown:
            raise ShapeError(f"no rows for subject(s) {unknown[:5]}")
        means = means.loc[wanted]
    if means.empty:
        return out

    noise = sample_normal(gen, noise_mean, noise_sd, len(means))
    cov = pd.Series(means.to_numpy() + noise, index=means.index)
    mask = out[SUBJECT].isin(cov.index)
    out.loc[mask, COVARIATE] = out.loc[mask, SUBJECT].map(cov).astype(float)
    return out


def append_cohort(base: pd.DataFrame, new: pd.DataFrame) -> pd.DataFrame:
    """Concatenate a new cohort onto the table and restore subject order.

    The cohort must carry exactly one row per subject for each condition the
    table already defines, and its ids must continue from the table's
    max id + 1 without a gap.
    """
    _require_columns(new, [SUBJECT, CONDITION, GROUP, OUTCOME])
    dup = new.duplicated([SUBJECT, CONDITION])
    if dup.any():
        raise ShapeError(f"duplicate (subject, condition) rows in new cohort: {int(dup.sum())}")
    if base is None or base.empty:
        return sort_by_subject(new.copy())
    _require_columns(base, [SUBJECT, CONDITION, GROUP, OUTCOME])

    levels = set(base[CONDITION].unique())
    seen = set(new[CONDITION].unique())
    if seen != levels:
        raise ShapeError(
            f"new cohort conditions {sorted(seen)} do not match the table's {sorted(levels)}"
        )
    per_subject = new.groupby(SUBJECT)[CONDITION].nunique()
    short = per_subject[per_subject != len(levels)]
    if not short.empty:
        raise ShapeError(f"subject(s) {[int(s) for s in short.index[:5]]} lack some of {sorted(levels)}")

    expected = next_subject_id(base)
    clash = sorted(set(base[SUBJECT].unique()) & set(new[SUBJECT].unique()))
    if clash:
        raise ConfigError(
            f"subject ids already in use: {clash[:5]}{' ...' if len(clash) > 5 else ''} "
            f"(next free id is {expected})"
        )
    first = int(new[SUBJECT].min())
    if first != expected:
        raise ConfigError(f"new cohort starts at id {first}; ids must continue from {expected}")
    return sort_by_subject(pd.concat([base, new], ignore_index=True))


def append_condition(
    table: pd.DataFrame,
    rng: RngLike,
    condition: str,
    params_by_group: Mapping[str, ParamsLike],
) -> pd.DataFrame:
    """Add one within-subject level for every subject already present.

    Groups are drawn in the mapping's order, subjects ascending within each.
    New rows copy the subject's group and current covariate; the covariate
    is not recomputed.
    """
    _require_columns(table, LONG_COLUMNS)
    if not isinstance(condition, str) or not condition:
        raise ConfigError(f"condition must be a non-empty string, got {condition!r}")
    if condition in set(table[CONDITION].unique()):
        raise ConfigError(f"condition {condition!r} already present")
    params = {str(g): _as_params(p, f"{g}/{condition}") for g, p in params_by_group.items()}

    subj = table.drop_duplicates(SUBJECT)[[SUBJECT, GROUP, COVARIATE]].sort_values(SUBJECT, kind="mergesort")
    present = [str(g) for g in pd.unique(subj[GROUP])]
    missing = [g for g in present if g not in params]
    if missing:
        raise ConfigError(f"condition {condition!r}: no parameters for group(s) {missing}")
    extra = [g for g in params if g not in present]
    if extra:
        logger.warning("condition %r: ignoring parameters for absent group(s) %s", condition, extra)

    gen = _as_generator(rng)
    frames = [table]
    for g, p in params.items():
        members = subj[subj[GROUP] == g]
        if members.empty:
            continue
        draws = sample_normal(gen, p.mean, p.sd, len(members))
        frames.append(pd.DataFrame({
            SUBJECT: members[SUBJECT].to_numpy(),
            CONDITION: condition,
            GROUP: g,
            OUTCOME: draws,
            COVARIATE: members[COVARIATE].to_numpy(dtype=float),
        }))
    logger.debug("appended condition %s for %d subjects", condition, len(subj))
    return sort_by_subject(pd.concat(frames, ignore_index=True))


def validate_long_table(table: pd.DataFrame, levels: Optional[Sequence[str]] = None) -> None:
    """Raise ShapeError unless the table satisfies the long-format invariants."""
    _require_columns(table, LONG_COLUMNS)
    if table.empty:
        return
    levels = list(levels) if levels is not None else condition_levels(table)

    dup = table.duplicated([SUBJECT, CONDITION])
    if dup.any():
        first = table.loc[dup, [SUBJECT, CONDITION]].iloc[0].tolist()
        raise ShapeError(f"duplicate (subject, condition) row: {first}")

    per_subject = table.groupby(SUBJECT)
    bad_group = per_subject[GROUP].nunique(dropna=False)
    if (bad_group > 1).any():
        raise ShapeError(f"group varies within subject(s) {bad_group[bad_group > 1].index.tolist()[:5]}")
    bad_cov = per_subject[COVARIATE].nunique(dropna=False)
    if (bad_cov > 1).any():
        raise ShapeError(f"covariate varies within subject(s) {bad_cov[bad_cov > 1].index.tolist()[:5]}")

    counts = per_subject[CONDITION].nunique()
    ragged = counts[counts != len(levels)]
    if not ragged.empty or not set(table[CONDITION].unique()) <= set(levels):
        raise ShapeError(f"subject(s) {ragged.index.tolist()[:5]} do not have exactly one row per level {levels}")


def reshape_long_to_wide(
    table: pd.DataFrame,
    row_key: Sequence[str] = DEFAULT_ROW_KEY,
    pivot_column: str = CONDITION,
    value_column: str = OUTCOME,
    levels: Optional[Sequence[str]] = None,
    fill_missing: bool = False,
) -> pd.DataFrame:
    """One row per subject, one ``<value>_<level>`` column per pivot level.

    The first entry of ``row_key`` identifies the row; the remaining entries
    must be constant within it. A subject without a row for some level is
    rejected with ShapeError unless ``fill_missing`` is set, in which case
    the cell is NaN.
    """
    row_key = list(row_key)
    if not row_key:
        raise ShapeError("row_key must name at least the identifier column")
    _require_columns(table, row_key + [pivot_column, value_column])
    id_col, attrs = row_key[0], row_key[1:]
    levels = [str(x) for x in levels] if levels is not None else [str(x) for x in pd.unique(table[pivot_column])]

    undeclared = sorted(set(map(str, table[pivot_column].unique())) - set(levels))
    if undeclared:
        raise ShapeError(f"rows for undeclared {pivot_column} level(s) {undeclared}")
    if table.duplicated([id_col, pivot_column]).any():
        raise ShapeError(f"more than one row per ({id_col}, {pivot_column})")
    if attrs:
        varying = table.groupby(id_col)[attrs].nunique(dropna=False)
        if (varying > 1).any().any():
            raise ShapeError(f"row key column(s) vary within {id_col}: {varying.columns[(varying > 1).any()].tolist()}")

    presence = (
        table.groupby([id_col, pivot_column]).size()
        .unstack(fill_value=0)
        .reindex(columns=levels, fill_value=0)
    )
    gaps = presence == 0
    if gaps.any().any():
        if not fill_missing:
            ragged = presence.index[gaps.any(axis=1)].tolist()
            raise ShapeError(f"{id_col}(s) {ragged[:5]} lack a row for some of {levels}")
        logger.info("reshape: filling %d missing cell(s) with NaN", int(gaps.to_numpy().sum()))

    values = table.pivot(index=id_col, columns=pivot_column, values=value_column).reindex(columns=levels)
    values.columns = [outcome_column(c, prefix=value_column) for c in levels]
    keys = table.drop_duplicates(id_col)[row_key].set_index(id_col)
    wide = keys.join(values).sort_index().reset_index()
    wide.columns.name = None
    return wide


def reshape_wide_to_long(
    wide: pd.DataFrame,
    levels: Sequence[str],
    id_vars: Sequence[str] = DEFAULT_ROW_KEY,
    pivot_column: str = CONDITION,
    value_column: str = OUTCOME,
) -> pd.DataFrame:
    """Unpivot ``<value>_<level>`` columns back to one row per (id, level); NaN cells are dropped."""
    col_to_level: Dict[str, str] = {outcome_column(l, prefix=value_column): str(l) for l in levels}
    _require_columns(wide, list(col_to_level))
    id_vars = [c for c in id_vars if c in wide.columns]
    if not id_vars:
        raise ShapeError("none of the id columns are present")

    long = wide.melt(id_vars=id_vars, value_vars=list(col_to_level), var_name=pivot_column, value_name=value_column)
    long[pivot_column] = long[pivot_column].map(col_to_level)
    long = long.dropna(subset=[value_column])
    rank = long[pivot_column].map({l: i for i, l in enumerate(col_to_level.values())})
    long = long.assign(_rank=rank).sort_values([id_vars[0], "_rank"], kind="mergesort").drop(columns="_rank")
    ordered = [c for c in LONG_COLUMNS if c in long.columns]
    rest = [c for c in long.columns if c not in ordered]
    return long[ordered + rest].reset_index(drop=True)


def aggregate_row_mean(wide: pd.DataFrame, columns: Sequence[str], name: str = "outcome_mean") -> pd.DataFrame:
    """Per-row mean of ``columns``, skipping NaN cells."""
    columns = list(columns)
    if not columns:
        raise ShapeError("aggregate_row_mean needs at least one column")
    _require_columns(wide, columns)
    out = wide.copy()
    out[name] = out[columns].mean(axis=1, skipna=True)
    return out


def describe_cells(table: pd.DataFrame) -> Dict[str, Any]:
    """Mean/sd/n of the outcome per (condition, group) cell, keyed ``condition|group``."""
    _require_columns(table, [CONDITION, GROUP, OUTCOME])
    g = table.groupby([CONDITION, GROUP], sort=False)[OUTCOME].agg(["mean", "std", "count"])
    return {
        f"{c}|{grp}": {"mean": float(r["mean"]), "sd": float(r["std"]), "n": int(r["count"])}
        for (c, grp), r in g.iterrows()
    }
