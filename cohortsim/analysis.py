"""Inferential tests over the generated tables.

Thin wrappers: every statistic comes from scipy.stats or statsmodels. The
wrappers only select columns, split groups and package the numbers.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import numpy as np
import pandas as pd
import statsmodels.formula.api as smf
from scipy import stats
from statsmodels.stats.anova import AnovaRM

from .errors import ShapeError
from .generator import CONDITION, GROUP, OUTCOME, SUBJECT

logger = logging.getLogger(__name__)


@dataclass
class StatResult:
    test: str
    statistic: float
    p_value: float
    df: Optional[Tuple[float, ...]] = None
    effect_size: Optional[float] = None
    effect_size_name: str = ""
    extra: Dict[str, Any] = field(default_factory=dict)

    def significant(self, alpha: float = 0.05) -> bool:
        return bool(self.p_value < alpha)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "test": self.test,
            "statistic": self.statistic,
            "p_value": self.p_value,
            "df": list(self.df) if self.df is not None else None,
            "effect_size": self.effect_size,
            "effect_size_name": self.effect_size_name,
            **self.extra,
        }


def interpret_p(p_value: float, alpha: float = 0.05) -> str:
    if not np.isfinite(p_value):
        return "not testable (p undefined)"
    if p_value < alpha:
        return f"significant (p = {p_value:.4f} < {alpha})"
    return f"not significant (p = {p_value:.4f} >= {alpha})"


def _column(df: pd.DataFrame, col: str) -> pd.Series:
    if col not in df.columns:
        raise ShapeError(f"missing column: {col}")
    return df[col]


def _split(df: pd.DataFrame, value: str, by: str, levels: Optional[Sequence[str]] = None) -> List[np.ndarray]:
    _column(df, value)
    keys = list(levels) if levels is not None else list(pd.unique(_column(df, by)))
    out = [df.loc[df[by] == k, value].dropna().to_numpy(dtype=float) for k in keys]
    if any(len(x) == 0 for x in out):
        raise ShapeError(f"empty level in {by!r}: {keys}")
    return out


def normality(values: Sequence[float], label: str = "") -> StatResult:
    """Shapiro-Wilk; a small p-value speaks against normality."""
    x = np.asarray(values, dtype=float)
    x = x[np.isfinite(x)]
    w, p = stats.shapiro(x)
    return StatResult(test=f"Shapiro-Wilk{f' ({label})' if label else ''}", statistic=float(w), p_value=float(p), extra={"n": int(x.size)})


def normality_by_cell(table: pd.DataFrame, value: str = OUTCOME, by: Sequence[str] = (CONDITION, GROUP)) -> Dict[str, StatResult]:
    out: Dict[str, StatResult] = {}
    for key, sub in table.groupby(list(by), sort=False):
        key = key if isinstance(key, tuple) else (key,)
        label = "|".join(map(str, key))
        out[label] = normality(_column(sub, value).to_numpy(), label=label)
    return out


def variance_homogeneity(df: pd.DataFrame, value: str, by: str, center: str = "median") -> StatResult:
    """Levene's test across the levels of ``by``."""
    samples = _split(df, value, by)
    w, p = stats.levene(*samples, center=center)
    return StatResult(test=f"Levene ({by})", statistic=float(w), p_value=float(p), df=(len(samples) - 1, sum(map(len, samples)) - len(samples)))


def correlation(df: pd.DataFrame, x: str, y: str) -> StatResult:
    _column(df, x), _column(df, y)
    d = df[[x, y]].dropna()
    r, p = stats.pearsonr(d[x].to_numpy(dtype=float), d[y].to_numpy(dtype=float))
    return StatResult(test=f"Pearson r ({x}, {y})", statistic=float(r), p_value=float(p), df=(len(d) - 2,), effect_size=float(r) ** 2, effect_size_name="r2")


def linear_regression(df: pd.DataFrame, formula: str) -> Dict[str, Any]:
    fit = smf.ols(formula, data=df).fit()
    return {
        "formula": formula,
        "params": {k: float(v) for k, v in fit.params.items()},
        "p_values": {k: float(v) for k, v in fit.pvalues.items()},
        "r_squared": float(fit.rsquared),
        "adj_r_squared": float(fit.rsquared_adj),
        "f_statistic": float(fit.fvalue),
        "f_p_value": float(fit.f_pvalue),
        "n_obs": int(fit.nobs),
    }


def paired_ttest(wide: pd.DataFrame, a: str, b: str) -> StatResult:
    _column(wide, a), _column(wide, b)
    d = wide[[a, b]].dropna()
    t, p = stats.ttest_rel(d[a].to_numpy(dtype=float), d[b].to_numpy(dtype=float))
    diff = d[a] - d[b]
    sd = float(diff.std(ddof=1))
    dz = float(diff.mean()) / sd if sd > 0 else float("nan")
    return StatResult(test=f"paired t ({a} vs {b})", statistic=float(t), p_value=float(p), df=(len(d) - 1,), effect_size=dz, effect_size_name="d_z")


def independent_ttest(df: pd.DataFrame, value: str, by: str, levels: Sequence[str], equal_var: bool = True) -> StatResult:
    if len(levels) != 2:
        raise ShapeError(f"independent t-test needs exactly 2 levels, got {list(levels)}")
    x, y = _split(df, value, by, levels)
    t, p = stats.ttest_ind(x, y, equal_var=equal_var)
    pooled = np.sqrt(((len(x) - 1) * x.var(ddof=1) + (len(y) - 1) * y.var(ddof=1)) / (len(x) + len(y) - 2))
    d = float((x.mean() - y.mean()) / pooled) if pooled > 0 else float("nan")
    name = "Student" if equal_var else "Welch"
    return StatResult(test=f"{name} t ({value} by {by})", statistic=float(t), p_value=float(p), df=(len(x) + len(y) - 2,), effect_size=d, effect_size_name="cohen_d")


def one_way_anova(df: pd.DataFrame, value: str, by: str) -> StatResult:
    groups = _split(df, value, by)
    f, p = stats.f_oneway(*groups)
    allv = np.concatenate(groups)
    grand = allv.mean()
    ss_between = sum(len(g) * (g.mean() - grand) ** 2 for g in groups)
    ss_total = float(((allv - grand) ** 2).sum())
    eta_sq = float(ss_between / ss_total) if ss_total > 0 else 0.0
    return StatResult(
        test=f"one-way ANOVA ({value} by {by})",
        statistic=float(f),
        p_value=float(p),
        df=(len(groups) - 1, len(allv) - len(groups)),
        effect_size=eta_sq,
        effect_size_name="eta2",
    )


def _anova_table_results(table: pd.DataFrame, label: str) -> Dict[str, StatResult]:
    out: Dict[str, StatResult] = {}
    for effect, row in table.iterrows():
        out[str(effect)] = StatResult(
            test=f"{label} ({effect})",
            statistic=float(row["F Value"]),
            p_value=float(row["Pr > F"]),
            df=(float(row["Num DF"]), float(row["Den DF"])),
        )
    return out


def repeated_measures_anova(
    long: pd.DataFrame,
    depvar: str = OUTCOME,
    subject: str = SUBJECT,
    within: Sequence[str] = (CONDITION,),
) -> Dict[str, StatResult]:
    """Within-subject ANOVA; needs exactly one row per subject and within cell."""
    res = AnovaRM(data=long, depvar=depvar, subject=subject, within=list(within)).fit()
    return _anova_table_results(res.anova_table, "RM ANOVA")


def mixed_design_anova(
    long: pd.DataFrame,
    depvar: str = OUTCOME,
    subject: str = SUBJECT,
    within: str = CONDITION,
    between: str = GROUP,
) -> Dict[str, StatResult]:
    """Between effect on subject means, within effect across all subjects.

    The condition x group interaction is read from ``mixed_model`` instead.
    """
    means = long.groupby([subject, between], sort=False)[depvar].mean().reset_index()
    results = {between: one_way_anova(means, depvar, between)}
    results.update(repeated_measures_anova(long, depvar=depvar, subject=subject, within=[within]))
    return results


def mixed_model(long: pd.DataFrame, formula: str, groups: str = SUBJECT) -> Dict[str, Any]:
    """Linear mixed model with a random intercept per ``groups``."""
    model = smf.mixedlm(formula, long, groups=_column(long, groups))
    result = model.fit(method="lbfgs")
    if not result.converged:
        logger.warning("mixed model %r did not converge", formula)
    return {
        "formula": formula,
        "params": {k: float(v) for k, v in result.fe_params.items()},
        "p_values": {k: float(v) for k, v in result.pvalues.items() if k in result.fe_params.index},
        "group_variance": float(np.asarray(result.cov_re)[0, 0]),
        "residual_variance": float(result.scale),
        "log_likelihood": float(result.llf),
        "converged": bool(result.converged),
        "n_obs": int(result.nobs),
        "n_groups": int(long[groups].nunique()),
    }
