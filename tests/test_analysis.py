import numpy as np
import pandas as pd
import pytest

from cohortsim import analysis
from cohortsim.errors import ShapeError
from cohortsim.pipeline import build_dataset, build_wide
from cohortsim.specs import default_design


@pytest.fixture(scope="module")
def full():
    return build_dataset(default_design(), seed=234634)


def _valid(res):
    return np.isfinite(res.statistic) and 0.0 <= res.p_value <= 1.0


def test_normality_per_cell(two_group_table):
    cells = analysis.normality_by_cell(two_group_table)
    assert set(cells) == {"cold|hungry", "warm|hungry", "cold|not_hungry", "warm|not_hungry"}
    assert all(_valid(r) and r.extra["n"] == 30 for r in cells.values())


def test_levene_and_correlation(two_group_table):
    wide = build_wide(two_group_table)
    lev = analysis.variance_homogeneity(wide, "outcome_mean", "group")
    assert _valid(lev) and lev.df == (1, 58)
    corr = analysis.correlation(wide, "covariate", "outcome_mean")
    assert corr.statistic > 0.8
    assert corr.effect_size == pytest.approx(corr.statistic ** 2)


def test_regression(two_group_table):
    wide = build_wide(two_group_table)
    fit = analysis.linear_regression(wide, "outcome_mean ~ covariate")
    assert set(fit["params"]) == {"Intercept", "covariate"}
    assert fit["params"]["covariate"] > 0
    assert 0.0 <= fit["r_squared"] <= 1.0
    assert fit["n_obs"] == 60


def test_ttests(two_group_table):
    wide = build_wide(two_group_table)
    paired = analysis.paired_ttest(wide, "outcome_cold", "outcome_warm")
    assert _valid(paired) and paired.df == (59,)
    ind = analysis.independent_ttest(wide, "outcome_mean", "group", ["hungry", "not_hungry"])
    assert _valid(ind) and ind.df == (58,)
    with pytest.raises(ShapeError):
        analysis.independent_ttest(wide, "outcome_mean", "group", ["hungry"])


def test_one_way_anova_known_values():
    df = pd.DataFrame({"y": [1, 2, 3, 4, 5, 6], "g": ["a", "a", "a", "b", "b", "b"]})
    res = analysis.one_way_anova(df, "y", "g")
    assert res.statistic == pytest.approx(13.5)
    assert res.df == (1, 4)
    assert res.effect_size == pytest.approx(13.5 / 17.5)


def test_rm_anova(full):
    first_two_groups = full.table[full.table["subject_id"] <= 60].reset_index(drop=True)
    res = analysis.repeated_measures_anova(first_two_groups)
    assert set(res) == {"condition"}
    assert res["condition"].df == (2.0, 118.0)
    assert _valid(res["condition"])


def test_mixed_design(full):
    res = analysis.mixed_design_anova(full.table)
    assert set(res) == {"group", "condition"}
    assert res["group"].df == (2, 87)
    assert all(_valid(r) for r in res.values())


def test_mixed_model(full):
    out = analysis.mixed_model(full.table, "outcome ~ C(condition) + C(group) + covariate")
    assert out["n_groups"] == 90
    assert out["n_obs"] == 270
    assert "covariate" in out["params"]
    assert all(0.0 <= p <= 1.0 for p in out["p_values"].values())


def test_missing_column():
    df = pd.DataFrame({"a": [1.0, 2.0, 3.0]})
    with pytest.raises(ShapeError):
        analysis.correlation(df, "a", "b")


def test_interpret_p():
    assert analysis.interpret_p(0.01).startswith("significant")
    assert analysis.interpret_p(0.2).startswith("not significant")
    assert analysis.interpret_p(float("nan")).startswith("not testable")
