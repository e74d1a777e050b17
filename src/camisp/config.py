from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import cv2  # type: ignore
import numpy as np

from camisp.errors import ConfigValidationError, IOFailure
from camisp.isp.params import DemosaicMethod, ISPParameters


def _require(cond: bool, msg: str) -> None:
    if not cond:
        raise ConfigValidationError(msg)


def _float(data: dict[str, Any], key: str, default: float) -> float:
    raw = data.get(key, default)
    _require(isinstance(raw, (int, float)) and not isinstance(raw, bool), f"{key} must be a number")
    val = float(raw)
    _require(bool(np.isfinite(val)), f"{key} must be finite")
    return val


def _bool(data: dict[str, Any], key: str, default: bool) -> bool:
    raw = data.get(key, default)
    _require(isinstance(raw, bool), f"{key} must be true or false")
    return bool(raw)


def _matrix(raw: Any, key: str) -> np.ndarray:
    _require(isinstance(raw, (list, tuple)) and len(raw) == 3, f"{key} must be a 3x3 list of numbers")
    try:
        m = np.asarray(raw, dtype=np.float64)
    except (TypeError, ValueError) as e:
        raise ConfigValidationError(f"{key} must be a 3x3 list of numbers") from e
    _require(m.shape == (3, 3), f"{key} must be 3x3")
    _require(bool(np.all(np.isfinite(m))), f"{key} must be finite")
    return m


def parse_isp_parameters(data: dict[str, Any]) -> ISPParameters:
    """
    Build ISPParameters from a JSON-style dict. Missing keys keep their defaults.

    Layout:
      {"demosaic": "vng",
       "white_balance": {"auto": true, "red": 1.0, "green": 1.0, "blue": 1.0},
       "color_matrix": [[1,0,0],[0,1,0],[0,0,1]],
       "gamma": 2.2,
       "tone": {"exposure": 1.0, "contrast": 1.0, "brightness": 0.0},
       "denoise": {"enabled": true, "strength": 1.0},
       "sharpen": {"enabled": true, "strength": 0.5},
       "lens_correction": false}
    """
    _require(isinstance(data, dict), "ISP configuration must be a JSON object")
    p = ISPParameters()

    method = data.get("demosaic", p.demosaic_method.value)
    valid = [m.value for m in DemosaicMethod]
    _require(method in valid, f"demosaic must be one of {valid}")
    p.demosaic_method = DemosaicMethod(method)

    wb = data.get("white_balance", {})
    _require(isinstance(wb, dict), "white_balance must be an object")
    p.auto_wb = _bool(wb, "auto", p.auto_wb)
    p.wb_red = _float(wb, "red", p.wb_red)
    p.wb_green = _float(wb, "green", p.wb_green)
    p.wb_blue = _float(wb, "blue", p.wb_blue)
    _require(min(p.wb_red, p.wb_green, p.wb_blue) >= 0.0, "white balance gains must be >= 0")

    if "color_matrix" in data:
        p.color_matrix = _matrix(data["color_matrix"], "color_matrix")

    p.gamma = _float(data, "gamma", p.gamma)

    tone = data.get("tone", {})
    _require(isinstance(tone, dict), "tone must be an object")
    p.exposure = _float(tone, "exposure", p.exposure)
    p.contrast = _float(tone, "contrast", p.contrast)
    p.brightness = _float(tone, "brightness", p.brightness)
    _require(p.exposure >= 0.0, "tone.exposure must be >= 0")

    denoise = data.get("denoise", {})
    _require(isinstance(denoise, dict), "denoise must be an object")
    p.denoise_enabled = _bool(denoise, "enabled", p.denoise_enabled)
    p.denoise_strength = _float(denoise, "strength", p.denoise_strength)
    _require(p.denoise_strength >= 0.0, "denoise.strength must be >= 0")

    sharpen = data.get("sharpen", {})
    _require(isinstance(sharpen, dict), "sharpen must be an object")
    p.sharpen_enabled = _bool(sharpen, "enabled", p.sharpen_enabled)
    p.sharpen_strength = _float(sharpen, "strength", p.sharpen_strength)
    _require(p.sharpen_strength >= 0.0, "sharpen.strength must be >= 0")

    p.lens_correction = _bool(data, "lens_correction", p.lens_correction)
    return p


def isp_parameters_to_dict(params: ISPParameters) -> dict[str, Any]:
    """Inverse of parse_isp_parameters. Calibration data is not included."""
    return {
        "demosaic": params.demosaic_method.value,
        "white_balance": {
            "auto": bool(params.auto_wb),
            "red": float(params.wb_red),
            "green": float(params.wb_green),
            "blue": float(params.wb_blue),
        },
        "color_matrix": np.asarray(params.color_matrix, dtype=np.float64).reshape(3, 3).tolist(),
        "gamma": float(params.gamma),
        "tone": {
            "exposure": float(params.exposure),
            "contrast": float(params.contrast),
            "brightness": float(params.brightness),
        },
        "denoise": {"enabled": bool(params.denoise_enabled), "strength": float(params.denoise_strength)},
        "sharpen": {"enabled": bool(params.sharpen_enabled), "strength": float(params.sharpen_strength)},
        "lens_correction": bool(params.lens_correction),
    }


def load_isp_parameters(path: Path) -> ISPParameters:
    path = Path(path)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise IOFailure(f"cannot read {path}: {e}") from e
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"{path}: invalid JSON: {e}") from e
    return parse_isp_parameters(data)


def save_isp_parameters(path: Path, params: ISPParameters) -> Path:
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(json.dumps(isp_parameters_to_dict(params), indent=2, sort_keys=True), encoding="utf-8")
    return path


# Color matrices use the OpenCV FileStorage key of the capture application,
# so .yml/.xml files it wrote load as-is. Other suffixes are JSON.
COLOR_MATRIX_KEY = "ColorMatrix"


def load_color_matrix(path: Path) -> np.ndarray:
    path = Path(path)
    if not path.is_file():
        raise IOFailure(f"color matrix file not found: {path}")
    if path.suffix.lower() in (".yml", ".yaml", ".xml"):
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_READ)
        try:
            node = fs.getNode(COLOR_MATRIX_KEY)
            _require(not node.empty(), f"{path}: missing {COLOR_MATRIX_KEY}")
            raw = node.mat()
        finally:
            fs.release()
        _require(raw is not None, f"{path}: {COLOR_MATRIX_KEY} is not a matrix")
        return _matrix(np.asarray(raw, dtype=np.float64).tolist(), COLOR_MATRIX_KEY)
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        raise ConfigValidationError(f"{path}: invalid JSON: {e}") from e
    _require(isinstance(data, dict), f"{path}: expected a JSON object")
    return _matrix(data.get(COLOR_MATRIX_KEY), COLOR_MATRIX_KEY)


def save_color_matrix(path: Path, matrix: np.ndarray) -> Path:
    path = Path(path)
    m = _matrix(np.asarray(matrix, dtype=np.float64).tolist(), COLOR_MATRIX_KEY)
    path.parent.mkdir(parents=True, exist_ok=True)
    if path.suffix.lower() in (".yml", ".yaml", ".xml"):
        fs = cv2.FileStorage(str(path), cv2.FILE_STORAGE_WRITE)
        if not fs.isOpened():
            raise IOFailure(f"cannot open {path} for writing")
        try:
            fs.write(COLOR_MATRIX_KEY, m.astype(np.float32))
        finally:
            fs.release()
        return path
    path.write_text(json.dumps({COLOR_MATRIX_KEY: m.tolist()}, indent=2), encoding="utf-8")
    return path
