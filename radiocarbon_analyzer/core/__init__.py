"""
Stable facade: core errors and seeding only. No calibration, testing, or cli.
Do not add exports without updating __all__.
"""

from __future__ import annotations

from .errors import (
    CalibrationError,
    CurveNotFoundError,
    InputValidationError,
    RadiocarbonAnalyzerError,
    SimulationError,
)
from .seeding import rng_for, rng_from_seed, seed_root

# Do not add exports without updating __all__.
__all__ = [
    "CalibrationError",
    "CurveNotFoundError",
    "InputValidationError",
    "RadiocarbonAnalyzerError",
    "SimulationError",
    "rng_for",
    "rng_from_seed",
    "seed_root",
]
