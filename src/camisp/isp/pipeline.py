from __future__ import annotations

import logging
from dataclasses import dataclass, field

import numpy as np

from camisp.calib.model import CalibrationResult
from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.isp.params import ISPParameters
from camisp.isp.stages import Stage, WhiteBalanceStage, default_stages


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class PipelineRun:
    output: PixelBuffer
    stages_run: tuple[str, ...] = ()
    # (B, G, R) gains the white balance stage used, None if it did not run.
    wb_gains: tuple[float, float, float] | None = None
    params: ISPParameters | None = field(default=None, repr=False)


class IspPipeline:
    """
    Fixed-order ISP chain:

      demosaic -> lens correction -> white balance -> color correction
      -> gamma -> tone mapping -> denoise -> sharpen

    Stateless between runs. Each run works on a snapshot of the parameters, so
    the caller may keep editing its ISPParameters while frames are processed.
    """

    def __init__(self, stages: list[Stage] | None = None) -> None:
        self.stages: tuple[Stage, ...] = tuple(default_stages() if stages is None else stages)

    @property
    def stage_names(self) -> tuple[str, ...]:
        return tuple(s.name for s in self.stages)

    def run(
        self,
        buffer: PixelBuffer,
        params: ISPParameters,
        calibration: CalibrationResult | None = None,
    ) -> PipelineRun:
        snap = params.snapshot()
        if buffer.is_empty:
            return PipelineRun(output=PixelBuffer.empty(PixelFormat.BGR), params=snap)

        if calibration is not None and snap.camera_matrix is None:
            snap.camera_matrix = np.array(calibration.camera_matrix, dtype=np.float64)
            snap.distortion = np.array(calibration.distortion, dtype=np.float64)

        current = buffer
        if current.pixel_format is PixelFormat.GRAY:
            current = current.to_bgr()

        ran: list[str] = []
        wb_gains = None
        for stage in self.stages:
            if not stage.is_enabled(current, snap):
                continue
            if isinstance(stage, WhiteBalanceStage):
                wb_gains = stage.gains(current, snap)
            current = stage.transform(current, snap)
            ran.append(stage.name)
            logger.debug("stage %s -> %dx%d %s", stage.name, current.width, current.height, current.pixel_format.value)

        return PipelineRun(output=current, stages_run=tuple(ran), wb_gains=wb_gains, params=snap)

    def process(
        self,
        buffer: PixelBuffer,
        params: ISPParameters,
        calibration: CalibrationResult | None = None,
    ) -> PixelBuffer:
        return self.run(buffer, params, calibration).output
