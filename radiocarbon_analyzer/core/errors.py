"""
Shared exception types for radiocarbon_analyzer.
Stable surface; extend only.
"""

from __future__ import annotations


class RadiocarbonAnalyzerError(Exception):
    """Base exception for radiocarbon_analyzer; catch this for any package-raised error."""

    pass


class InputValidationError(RadiocarbonAnalyzerError, ValueError):
    """Malformed input: mismatched lengths, non-positive errors, missing columns."""

    pass


class CurveNotFoundError(RadiocarbonAnalyzerError, LookupError):
    """Calibration curve name could not be resolved to a registered curve or a curve file."""

    pass


class CalibrationError(RadiocarbonAnalyzerError):
    """A date could not be calibrated (e.g. its age lies outside the calibration curve)."""

    pass


class SimulationError(RadiocarbonAnalyzerError):
    """A Monte-Carlo or permutation procedure could not run with the given inputs."""

    pass


__all__ = [
    "CalibrationError",
    "CurveNotFoundError",
    "InputValidationError",
    "RadiocarbonAnalyzerError",
    "SimulationError",
]
