from __future__ import annotations

import logging
from typing import Protocol

import cv2  # type: ignore
import numpy as np

from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.core.distortion import LensDistortion
from camisp.core.undistort import undistort_image
from camisp.isp.params import DemosaicMethod, ISPParameters


logger = logging.getLogger(__name__)


class Stage(Protocol):
    """
    One step of the ISP chain. `transform` returns a new buffer and never
    writes into its input.
    """

    name: str

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool: ...

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer: ...


_DEMOSAIC_SUFFIX = {
    DemosaicMethod.BILINEAR: "",
    DemosaicMethod.EDGE_AWARE: "_EA",
    DemosaicMethod.VNG: "_VNG",
}


def demosaic_code(pixel_format: PixelFormat, method: DemosaicMethod) -> int:
    """cv2.cvtColor code for a Bayer layout and interpolation method."""
    name = f"COLOR_Bayer{pixel_format.bayer_code}2BGR{_DEMOSAIC_SUFFIX[DemosaicMethod(method)]}"
    return int(getattr(cv2, name))


class DemosaicStage:
    name = "demosaic"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return buffer.is_raw

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        code = demosaic_code(buffer.pixel_format, params.demosaic_method)
        return PixelBuffer(cv2.cvtColor(buffer.data, code), PixelFormat.BGR)


class LensCorrectionStage:
    name = "lens_correction"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return bool(params.lens_correction) and params.camera_matrix is not None and params.distortion is not None

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        dist = LensDistortion.from_vector(params.distortion)
        if dist.is_zero:
            return buffer.copy()
        return buffer.with_data(undistort_image(buffer.data, params.camera_matrix, dist))


def gray_world_gains(buffer: PixelBuffer) -> tuple[float, float, float]:
    """
    Per-channel (B, G, R) gains that bring every channel mean to the mean of
    the channel means. A channel with zero mean keeps gain 1.
    """
    data = buffer.to_bgr().data if buffer.pixel_format is not PixelFormat.BGR else buffer.data
    if data.size == 0:
        return (1.0, 1.0, 1.0)
    means = data.reshape(-1, 3).mean(axis=0, dtype=np.float64)
    avg = float(means.mean())
    gains = [avg / float(m) if m > 0.0 else 1.0 for m in means]
    return (gains[0], gains[1], gains[2])


def apply_channel_gains(data: np.ndarray, gains_bgr: tuple[float, float, float]) -> np.ndarray:
    scaled = data.astype(np.float32) * np.asarray(gains_bgr, dtype=np.float32).reshape(1, 1, 3)
    return np.clip(np.floor(scaled + 0.5), 0, 255).astype(np.uint8)


class WhiteBalanceStage:
    name = "white_balance"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return True

    def gains(self, buffer: PixelBuffer, params: ISPParameters) -> tuple[float, float, float]:
        if params.auto_wb:
            return gray_world_gains(buffer)
        return params.wb_gains_bgr

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        gains = self.gains(buffer, params)
        if gains == (1.0, 1.0, 1.0):
            return buffer.copy()
        return buffer.with_data(apply_channel_gains(buffer.data, gains))


class ColorCorrectionStage:
    name = "color_correction"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return True

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        M = np.asarray(params.color_matrix, dtype=np.float64).reshape(3, 3)
        if np.array_equal(M, np.eye(3)):
            return buffer.copy()
        out = cv2.transform(buffer.data.astype(np.float32), M.astype(np.float32))
        return buffer.with_data(np.clip(np.floor(out + 0.5), 0, 255).astype(np.uint8))


class GammaStage:
    name = "gamma"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return True

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        return buffer.with_data(params.gamma_lut[buffer.data])


class ToneMappingStage:
    name = "tone_mapping"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return True

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        x = buffer.data.astype(np.float32) / np.float32(255.0)
        x = x * np.float32(params.exposure)
        x = x * np.float32(params.contrast) + np.float32(params.brightness)
        x = np.clip(x, 0.0, 1.0)
        return buffer.with_data(np.floor(x * np.float32(255.0) + np.float32(0.5)).astype(np.uint8))


def denoise_windows(strength: float) -> tuple[int, int]:
    """(template, search) window sizes for a denoise strength; (7, 21) at strength 1."""
    half = min(int(np.floor(float(strength) + 0.5)) + 2, 5)
    template = 2 * max(half, 1) + 1
    return template, 3 * template


class DenoiseStage:
    name = "denoise"

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return bool(params.denoise_enabled) and float(params.denoise_strength) > 0.0

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        h = float(params.denoise_strength)
        template, search = denoise_windows(h)
        out = cv2.fastNlMeansDenoisingColored(buffer.data, None, h, h * 0.5, template, search)
        return buffer.with_data(out)


class SharpenStage:
    name = "sharpen"

    sigma = 3.0

    def is_enabled(self, buffer: PixelBuffer, params: ISPParameters) -> bool:
        return bool(params.sharpen_enabled) and float(params.sharpen_strength) != 0.0

    def transform(self, buffer: PixelBuffer, params: ISPParameters) -> PixelBuffer:
        s = float(params.sharpen_strength)
        blurred = cv2.GaussianBlur(buffer.data, (0, 0), self.sigma)
        out = cv2.addWeighted(buffer.data, 1.0 + s, blurred, -s, 0.0)
        return buffer.with_data(out)


def default_stages() -> list[Stage]:
    return [
        DemosaicStage(),
        LensCorrectionStage(),
        WhiteBalanceStage(),
        ColorCorrectionStage(),
        GammaStage(),
        ToneMappingStage(),
        DenoiseStage(),
        SharpenStage(),
    ]


def calibrate_white_balance(params: ISPParameters, reference: PixelBuffer) -> tuple[float, float, float]:
    """
    Fix manual gains from a frame of a neutral target and switch auto WB off.
    Returns the (R, G, B) gains that were set.
    """
    b, g, r = gray_world_gains(reference)
    params.set_wb_gains(r, g, b)
    logger.info("white balance calibrated: r=%.4f g=%.4f b=%.4f", r, g, b)
    return (r, g, b)
