"""cohortsim configuration: seed, analysis defaults and the run-event log.

Values come from environment variables with safe defaults; nothing here is
exposed as a command-line surface. Covariate timing and noise belong to the
study design (``specs.StudyDesign``), not to this object.
"""
from __future__ import annotations

import os
from dataclasses import dataclass
from enum import Enum
from typing import Optional

from .errors import ConfigError

DEFAULT_SEED = 234634


class CovariateMode(str, Enum):
    """When the per-subject covariate is attached."""
    STAGED = "staged"      # end of every stage, for that stage's subjects only
    DEFERRED = "deferred"  # once, after every stage has run


@dataclass
class GeneratorConfig:
    """Runtime configuration for dataset generation and the walkthrough."""

    seed: int = DEFAULT_SEED

    # Significance level used when interpreting p-values
    alpha: float = 0.05

    # JSONL run-event log; events are dropped when unset
    log_path: Optional[str] = None

    def __post_init__(self) -> None:
        if not 0.0 < self.alpha < 1.0:
            raise ConfigError(f"alpha must lie in (0, 1), got {self.alpha}")

    @classmethod
    def from_env(cls) -> "GeneratorConfig":
        """Build config from environment variables with safe defaults."""
        try:
            seed = int(os.environ.get("COHORTSIM_SEED", DEFAULT_SEED))
            alpha = float(os.environ.get("COHORTSIM_ALPHA", 0.05))
        except ValueError as e:
            raise ConfigError(f"invalid numeric environment setting: {e}") from e

        return cls(
            seed=seed,
            alpha=alpha,
            log_path=os.environ.get("COHORTSIM_LOG_PATH") or None,
        )

    def to_manifest_dict(self) -> dict:
        return {"seed": self.seed, "alpha": self.alpha}


def parse_covariate_mode(value: str) -> CovariateMode:
    try:
        return CovariateMode(str(value).lower())
    except ValueError:
        raise ConfigError(f"unknown covariate mode: {value!r}") from None


# Singleton default config
_default_config: Optional[GeneratorConfig] = None


def get_config() -> GeneratorConfig:
    """Return the current global config (lazily initialised from env)."""
    global _default_config
    if _default_config is None:
        _default_config = GeneratorConfig.from_env()
    return _default_config


def set_config(cfg: Optional[GeneratorConfig]) -> None:
    """Override the global config (mainly for tests); None resets to env."""
    global _default_config
    _default_config = cfg
