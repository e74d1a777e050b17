from __future__ import annotations


class CamIspError(Exception):
    pass


class InputInvalid(CamIspError, ValueError):
    """Empty or malformed pixel buffer / point arrays."""


class PatternNotFound(CamIspError):
    pass


class InsufficientViews(CamIspError):
    pass


class SolverDivergence(CamIspError):
    """Numerical failure or degenerate view geometry during a calibration solve."""


class IOFailure(CamIspError, OSError):
    pass


class ConfigValidationError(CamIspError, ValueError):
    pass
