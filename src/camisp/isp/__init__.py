from camisp.isp.params import DemosaicMethod, ISPParameters, build_gamma_lut, gamma_lut
from camisp.isp.pipeline import IspPipeline, PipelineRun
from camisp.isp.stages import calibrate_white_balance, default_stages, gray_world_gains

__all__ = [
    "DemosaicMethod",
    "ISPParameters",
    "IspPipeline",
    "PipelineRun",
    "build_gamma_lut",
    "calibrate_white_balance",
    "default_stages",
    "gamma_lut",
    "gray_world_gains",
]
