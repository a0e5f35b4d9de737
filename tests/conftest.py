"""
Shared test configuration and fixtures.

Adds the project root to sys.path once so `import cohortsim` works from a
plain checkout, without an editable install.
"""

import os
import sys

import numpy as np
import pytest

PROJECT_ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if PROJECT_ROOT not in sys.path:
    sys.path.insert(0, PROJECT_ROOT)

from cohortsim.config import GeneratorConfig, set_config  # noqa: E402
from cohortsim.generator import append_cohort, attach_covariate, simulate_cohort  # noqa: E402

SEED = 234634
HUNGRY = {"cold": (0.60, 0.13), "warm": (0.75, 0.12)}
NOT_HUNGRY = {"cold": (0.55, 0.12), "warm": (0.58, 0.13)}


@pytest.fixture(autouse=True)
def _isolated_config(monkeypatch):
    for k in list(os.environ):
        if k.startswith("COHORTSIM_"):
            monkeypatch.delenv(k, raising=False)
    set_config(GeneratorConfig())
    yield
    set_config(None)


@pytest.fixture
def rng():
    return np.random.default_rng(SEED)


@pytest.fixture
def two_group_table(rng):
    hungry = simulate_cohort(rng, "hungry", 30, HUNGRY, start_id=1)
    not_hungry = simulate_cohort(rng, "not_hungry", 30, NOT_HUNGRY, start_id=31)
    return attach_covariate(append_cohort(hungry, not_hungry), rng)
