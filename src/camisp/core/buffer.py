from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

import numpy as np

from camisp.errors import InputInvalid


class PixelFormat(str, Enum):
    GRAY = "gray"
    BGR = "bgr"
    BAYER_BG = "bayer_bg"
    BAYER_GB = "bayer_gb"
    BAYER_RG = "bayer_rg"
    BAYER_GR = "bayer_gr"

    @property
    def channels(self) -> int:
        return 3 if self is PixelFormat.BGR else 1

    @property
    def is_raw(self) -> bool:
        return self.value.startswith("bayer_")

    @property
    def bayer_code(self) -> str:
        """OpenCV Bayer layout suffix, e.g. "BG" for COLOR_BayerBG2BGR."""
        if not self.is_raw:
            raise ValueError(f"{self.value} is not a Bayer format")
        return self.value.split("_", 1)[1].upper()


@dataclass(frozen=True)
class PixelBuffer:
    """
    One frame of 8-bit pixels.

    `data` is (H,W) for gray and Bayer mosaics, (H,W,3) for BGR. An empty
    buffer has a (0,0) payload. Stages never write into `data`; use `copy()`
    before any in-place edit.
    """

    data: np.ndarray
    pixel_format: PixelFormat = PixelFormat.BGR

    def __post_init__(self) -> None:
        fmt = PixelFormat(self.pixel_format)
        object.__setattr__(self, "pixel_format", fmt)
        data = self.data
        if not isinstance(data, np.ndarray):
            raise InputInvalid("pixel data must be a numpy array")
        if data.dtype != np.uint8:
            raise InputInvalid(f"pixel data must be uint8, got {data.dtype}")
        if data.size == 0:
            return
        if fmt.channels == 1 and data.ndim != 2:
            raise InputInvalid(f"{fmt.value} buffers must be (H,W), got shape {data.shape}")
        if fmt.channels == 3 and (data.ndim != 3 or data.shape[2] != 3):
            raise InputInvalid(f"{fmt.value} buffers must be (H,W,3), got shape {data.shape}")

    @classmethod
    def empty(cls, pixel_format: PixelFormat = PixelFormat.BGR) -> "PixelBuffer":
        return cls(np.zeros((0, 0), dtype=np.uint8), pixel_format)

    @classmethod
    def from_array(cls, arr: np.ndarray, pixel_format: PixelFormat | str | None = None, *, copy: bool = True) -> "PixelBuffer":
        """
        Wrap an array. The format defaults to gray for 2-D and BGR for 3-channel input.
        """
        arr = np.asarray(arr)
        if pixel_format is None:
            pixel_format = PixelFormat.BGR if arr.ndim == 3 else PixelFormat.GRAY
        if copy:
            arr = arr.copy()
        return cls(arr, PixelFormat(pixel_format))

    @classmethod
    def from_bytes(cls, payload: bytes, width: int, height: int, pixel_format: PixelFormat | str) -> "PixelBuffer":
        fmt = PixelFormat(pixel_format)
        width = int(width)
        height = int(height)
        if width < 0 or height < 0:
            raise InputInvalid("width and height must be >= 0")
        expected = width * height * fmt.channels
        if len(payload) != expected:
            raise InputInvalid(
                f"payload has {len(payload)} bytes, expected {expected} for {width}x{height} {fmt.value}"
            )
        if expected == 0:
            return cls.empty(fmt)
        arr = np.frombuffer(payload, dtype=np.uint8).copy()
        shape = (height, width, 3) if fmt.channels == 3 else (height, width)
        return cls(arr.reshape(shape), fmt)

    @property
    def width(self) -> int:
        return 0 if self.is_empty else int(self.data.shape[1])

    @property
    def height(self) -> int:
        return 0 if self.is_empty else int(self.data.shape[0])

    @property
    def size(self) -> tuple[int, int]:
        return (self.width, self.height)

    @property
    def channels(self) -> int:
        return self.pixel_format.channels

    @property
    def is_empty(self) -> bool:
        return self.data.size == 0

    @property
    def is_raw(self) -> bool:
        return self.pixel_format.is_raw

    def to_bytes(self) -> bytes:
        return np.ascontiguousarray(self.data).tobytes()

    def copy(self) -> "PixelBuffer":
        return PixelBuffer(self.data.copy(), self.pixel_format)

    def with_data(self, data: np.ndarray, pixel_format: PixelFormat | None = None) -> "PixelBuffer":
        return PixelBuffer(data, self.pixel_format if pixel_format is None else pixel_format)

    def to_gray(self) -> np.ndarray:
        """Gray uint8 (H,W) copy of the frame."""
        import cv2  # type: ignore

        if self.is_empty:
            return np.zeros((0, 0), dtype=np.uint8)
        if self.pixel_format is PixelFormat.BGR:
            return cv2.cvtColor(self.data, cv2.COLOR_BGR2GRAY)
        if self.is_raw:
            code = getattr(cv2, f"COLOR_Bayer{self.pixel_format.bayer_code}2GRAY")
            return cv2.cvtColor(self.data, code)
        return self.data.copy()

    def to_bgr(self) -> "PixelBuffer":
        import cv2  # type: ignore

        if self.is_empty:
            return PixelBuffer.empty(PixelFormat.BGR)
        if self.pixel_format is PixelFormat.BGR:
            return self.copy()
        if self.is_raw:
            code = getattr(cv2, f"COLOR_Bayer{self.pixel_format.bayer_code}2BGR")
            return PixelBuffer(cv2.cvtColor(self.data, code), PixelFormat.BGR)
        return PixelBuffer(cv2.cvtColor(self.data, cv2.COLOR_GRAY2BGR), PixelFormat.BGR)
