"""Error types raised by the dataset generator.

All of them are raised at the point of violation; nothing in the package
catches them on the caller's behalf.
"""
from __future__ import annotations


class CohortSimError(RuntimeError):
    """Base class for generator failures."""


class ConfigError(CohortSimError):
    """Invalid cohort size, condition parameters, or colliding subject ids."""


class ShapeError(CohortSimError):
    """Table layout does not satisfy the long/wide invariants."""


class RngError(CohortSimError):
    """The sampler returned a different number of draws than requested."""
