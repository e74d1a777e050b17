from camisp import errors
from camisp.calib import CalibrationFlags, CalibrationResult, CalibrationSession, PatternSpec, SolverCriteria, detect_corners
from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.isp import DemosaicMethod, ISPParameters, IspPipeline
from camisp.sources import FrameSource, ImageSequenceSource

__all__ = [
    "errors",
    "CalibrationFlags",
    "CalibrationResult",
    "CalibrationSession",
    "DemosaicMethod",
    "FrameSource",
    "ISPParameters",
    "ImageSequenceSource",
    "IspPipeline",
    "PatternSpec",
    "PixelBuffer",
    "PixelFormat",
    "SolverCriteria",
    "detect_corners",
]
