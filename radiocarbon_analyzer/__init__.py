"""
Top-level public API surface. Stable facades only.
Pipeline: calibrate -> spd -> model_test / perm_test -> sp_perm_test. Does not import cli or plotting.
"""

from __future__ import annotations

from . import core, rng
from ._version import __version__
from .binning import bin_medians, bin_prep
from .calibration import CalDates, calibrate, uncalibrate, uncalibrate_distribution
from .curves import CalibrationCurve, get_curve, linear_curve, load_curve, register_curve
from .model_test import ModelTestResult, model_test, p2p_test
from .multiple_testing import adjust
from .perm_test import PermTestResult, perm_test
from .spatial import SpPermTestResult, sp_perm_test, spweights
from .spd import SPD, spd, stack_spd

# Do not add exports without updating __all__.
__all__ = [
    "__version__",
    "CalDates",
    "CalibrationCurve",
    "ModelTestResult",
    "PermTestResult",
    "SPD",
    "SpPermTestResult",
    "adjust",
    "bin_medians",
    "bin_prep",
    "calibrate",
    "core",
    "get_curve",
    "linear_curve",
    "load_curve",
    "model_test",
    "p2p_test",
    "perm_test",
    "register_curve",
    "rng",
    "sp_perm_test",
    "spd",
    "spweights",
    "stack_spd",
    "uncalibrate",
    "uncalibrate_distribution",
]
