import json
from pathlib import Path

import numpy as np
import pandas as pd
import pytest

from cohortsim.config import CovariateMode, GeneratorConfig
from cohortsim.errors import ConfigError, ShapeError
from cohortsim.generator import validate_long_table
from cohortsim.pipeline import build_dataset, build_wide, write_table
from cohortsim.run_manifest import GenerationManifest
from cohortsim.specs import StudyDesign, default_design


def _prefix(design: StudyDesign, k: int) -> StudyDesign:
    return StudyDesign(stages=design.stages[:k], name=design.name)


def test_default_design_shape():
    res = build_dataset(default_design(), seed=234634)
    df = res.table
    assert len(df) == 90 * 3
    assert sorted(df["subject_id"].unique()) == list(range(1, 91))
    assert list(pd.unique(df["condition"])) == ["cold", "warm", "frozen"]
    assert df.groupby("group")["subject_id"].nunique().to_dict() == {"hungry": 30, "not_hungry": 30, "superhungry": 30}
    validate_long_table(df)


def test_build_is_deterministic():
    a = build_dataset(default_design(), seed=11)
    b = build_dataset(default_design(), seed=11)
    pd.testing.assert_frame_equal(a.table, b.table)
    assert a.manifest.table_sha256 == b.manifest.table_sha256
    c = build_dataset(default_design(), seed=12)
    assert c.manifest.table_sha256 != a.manifest.table_sha256


def test_seed_defaults_to_config():
    cfg = GeneratorConfig(seed=99)
    a = build_dataset(default_design(), config=cfg)
    b = build_dataset(default_design(), seed=99)
    pd.testing.assert_frame_equal(a.table, b.table)
    assert a.manifest.seed == 99


def test_first_stage_identical_to_prefix_run():
    design = default_design()
    first = build_dataset(_prefix(design, 1), seed=5).table
    full = build_dataset(design, seed=5).table
    head = full[full["subject_id"] <= 60]
    head = head[head["condition"].isin(["cold", "warm"])].reset_index(drop=True)
    pd.testing.assert_frame_equal(head, first)


def test_staged_covariate_ignores_later_condition():
    df = build_dataset(default_design(), seed=3).table
    early = df[df["subject_id"] <= 60]
    two = early[early["condition"] != "frozen"].groupby("subject_id")["outcome"].mean()
    cov = early.groupby("subject_id")["covariate"].first()
    assert (cov - two).between(0.0, 0.2).all()

    late = df[df["subject_id"] > 60]
    three = late.groupby("subject_id")["outcome"].mean()
    cov_late = late.groupby("subject_id")["covariate"].first()
    assert (cov_late - three).between(0.0, 0.2).all()


def test_deferred_covariate_uses_all_conditions():
    design = default_design()
    design.covariate_mode = CovariateMode.DEFERRED
    df = build_dataset(design, seed=3).table
    means = df.groupby("subject_id")["outcome"].mean()
    cov = df.groupby("subject_id")["covariate"].first()
    assert (cov - means).between(0.0, 0.2).all()
    assert (df.groupby("subject_id")["covariate"].nunique() == 1).all()


def test_build_wide_has_mean():
    res = build_dataset(default_design(), seed=1)
    wide = build_wide(res)
    assert len(wide) == 90
    cols = ["outcome_cold", "outcome_warm", "outcome_frozen"]
    assert np.allclose(wide["outcome_mean"], wide[cols].mean(axis=1))


def test_manifest_contents_and_roundtrip(tmp_path):
    res = build_dataset(default_design(), seed=234634)
    m = res.manifest
    assert m.n_rows == 270
    assert m.n_subjects == 90
    assert m.conditions == ["cold", "warm", "frozen"]
    assert [s["kind"] for s in m.stage_log] == ["cohorts", "condition", "cohorts"]
    assert [s["n_rows"] for s in m.stage_log] == [120, 180, 270]
    path = tmp_path / "manifest.json"
    m.save(path)
    loaded = GenerationManifest.load(path)
    assert loaded.table_sha256 == m.table_sha256
    assert loaded.design == m.design


def test_run_events_logged(tmp_path):
    log = tmp_path / "events.jsonl"
    build_dataset(default_design(), seed=1, log_path=str(log))
    events = [json.loads(line)["event"] for line in log.read_text(encoding="utf-8").splitlines()]
    assert events[0] == "run_start"
    assert events.count("stage_done") == 3
    assert events[-1] == "run_end"


def test_explicit_start_id_collision():
    design = default_design()
    design.stages[2].cohorts[0].start_id = 60
    with pytest.raises(ConfigError):
        build_dataset(design, seed=1)


def test_explicit_start_id_gap():
    design = default_design()
    design.stages[2].cohorts[0].start_id = 75
    with pytest.raises(ConfigError):
        build_dataset(design, seed=1)


def test_cohort_missing_existing_condition():
    design = default_design()
    del design.stages[2].cohorts[0].conditions["frozen"]
    with pytest.raises(ShapeError):
        build_dataset(design, seed=1)


def test_write_table_csv_and_xlsx(tmp_path):
    df = build_dataset(default_design(), seed=1).table
    csv_path = write_table(df, tmp_path / "out" / "long.csv")
    back = pd.read_csv(csv_path)
    assert back.shape == df.shape
    assert np.allclose(back["outcome"], df["outcome"])
    xlsx_path = write_table(df.head(10), tmp_path / "long.xlsx")
    assert Path(xlsx_path).exists()
    with pytest.raises(ConfigError):
        write_table(df, tmp_path / "long.parquet")
