from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any

import cv2  # type: ignore
import numpy as np

from camisp.calib.model import CalibrationResult
from camisp.core.distortion import SUPPORTED_SIZES
from camisp.errors import IOFailure


# Suffixes handled by cv2.FileStorage; everything else is written as JSON.
OPENCV_SUFFIXES = (".yml", ".yaml", ".xml")

_KEYS = ("camera_matrix", "distortion_coefficients", "reprojection_error", "image_width", "image_height")


def _to_float_matrix(x: Any, shape: tuple[int, ...], name: str) -> np.ndarray:
    try:
        arr = np.asarray(x, dtype=np.float64).reshape(shape)
    except (TypeError, ValueError) as e:
        raise IOFailure(f"{name}: expected shape {shape}") from e
    if not np.all(np.isfinite(arr)):
        raise IOFailure(f"{name}: non-finite values")
    return arr


def _result_from_record(record: dict[str, Any], source: Path) -> CalibrationResult:
    missing = [k for k in _KEYS if record.get(k) is None]
    if missing:
        raise IOFailure(f"{source}: missing field(s) {', '.join(missing)}")

    K = _to_float_matrix(record["camera_matrix"], (3, 3), "camera_matrix")
    dist = _to_float_matrix(record["distortion_coefficients"], (-1,), "distortion_coefficients")
    if dist.size not in SUPPORTED_SIZES:
        raise IOFailure(f"{source}: distortion_coefficients must have one of {SUPPORTED_SIZES} entries, got {dist.size}")
    try:
        rms = float(record["reprojection_error"])
        w = int(record["image_width"])
        h = int(record["image_height"])
    except (TypeError, ValueError) as e:
        raise IOFailure(f"{source}: malformed scalar field: {e}") from e
    if w <= 0 or h <= 0:
        raise IOFailure(f"{source}: image size must be positive, got {w}x{h}")
    if K[0, 0] <= 0.0 or K[1, 1] <= 0.0:
        raise IOFailure(f"{source}: camera_matrix has a non-positive focal length")
    return CalibrationResult(camera_matrix=K, distortion=dist, rms_error=rms, image_size=(w, h))


def _atomic_write(path: Path, write) -> Path:
    """
    Run `write(tmp_path)` on a temporary file next to `path`, then move it into place.
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.stem}.", suffix=path.suffix, dir=str(path.parent))
    os.close(fd)
    tmp = Path(tmp_name)
    try:
        write(tmp)
        os.replace(tmp, path)
    except BaseException:
        tmp.unlink(missing_ok=True)
        raise
    return path


def save_calibration(path: str | Path, result: CalibrationResult) -> Path:
    """
    Write the calibration record (camera matrix, distortion, RMS, image size).

    `.yml` / `.yaml` / `.xml` use OpenCV FileStorage; any other suffix is JSON.
    The previous file, if any, is only replaced once the new one is complete.
    """
    p = Path(path)
    K = np.array(result.camera_matrix, dtype=np.float64)
    dist = np.array(result.distortion, dtype=np.float64).reshape(-1, 1)
    w, h = result.image_size

    if p.suffix.lower() in OPENCV_SUFFIXES:

        def write(tmp: Path) -> None:
            fs = cv2.FileStorage(str(tmp), cv2.FILE_STORAGE_WRITE)
            if not fs.isOpened():
                raise IOFailure(f"cannot open {tmp} for writing")
            try:
                fs.write("camera_matrix", K)
                fs.write("distortion_coefficients", dist)
                fs.write("reprojection_error", float(result.rms_error))
                fs.write("image_width", int(w))
                fs.write("image_height", int(h))
            finally:
                fs.release()

    else:
        record = {
            "camera_matrix": K.tolist(),
            "distortion_coefficients": dist.reshape(-1).tolist(),
            "reprojection_error": float(result.rms_error),
            "image_width": int(w),
            "image_height": int(h),
        }

        def write(tmp: Path) -> None:
            tmp.write_text(json.dumps(record, indent=2), encoding="utf-8")

    try:
        return _atomic_write(p, write)
    except IOFailure:
        raise
    except (OSError, cv2.error) as e:
        raise IOFailure(f"cannot write calibration to {p}: {e}") from e


def _read_opencv_record(p: Path) -> dict[str, Any]:
    try:
        fs = cv2.FileStorage(str(p), cv2.FILE_STORAGE_READ)
    except cv2.error as e:
        raise IOFailure(f"cannot parse {p}: {e}") from e
    if not fs.isOpened():
        raise IOFailure(f"cannot open {p}")
    try:
        record: dict[str, Any] = {}
        for key in ("camera_matrix", "distortion_coefficients"):
            node = fs.getNode(key)
            record[key] = None if node.empty() else node.mat()
        for key in ("reprojection_error", "image_width", "image_height"):
            node = fs.getNode(key)
            record[key] = None if node.empty() else node.real()
        return record
    finally:
        fs.release()


def load_calibration(path: str | Path) -> CalibrationResult:
    """
    Read a calibration record written by `save_calibration` (or by OpenCV tools
    using the same field names). Raises IOFailure on missing/invalid files.
    """
    p = Path(path)
    if not p.is_file():
        raise IOFailure(f"calibration file not found: {p}")

    if p.suffix.lower() in OPENCV_SUFFIXES:
        record = _read_opencv_record(p)
    else:
        try:
            record = json.loads(p.read_text(encoding="utf-8"))
        except (OSError, UnicodeDecodeError, json.JSONDecodeError) as e:
            raise IOFailure(f"cannot parse {p}: {e}") from e
        if not isinstance(record, dict):
            raise IOFailure(f"{p}: calibration record must be a JSON object")
    return _result_from_record(record, p)
