from __future__ import annotations

from pathlib import Path

import cv2
import numpy as np
import pytest

from camisp.calib.model import CalibrationResult
from camisp.config import load_color_matrix, save_color_matrix
from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.core.undistort import undistort_image
from camisp.errors import ConfigValidationError
from camisp.isp.params import DemosaicMethod, ISPParameters, build_gamma_lut, gamma_lut
from camisp.isp.pipeline import IspPipeline
from camisp.isp.stages import (
    ColorCorrectionStage,
    DemosaicStage,
    LensCorrectionStage,
    SharpenStage,
    ToneMappingStage,
    WhiteBalanceStage,
    calibrate_white_balance,
    default_stages,
    denoise_windows,
    gray_world_gains,
)
from camisp.sim.chessboard import default_camera_matrix


def _bgr(seed: int = 0, h: int = 48, w: int = 64) -> PixelBuffer:
    rng = np.random.default_rng(seed)
    return PixelBuffer(rng.integers(0, 256, size=(h, w, 3), dtype=np.uint8), PixelFormat.BGR)


def _smooth_bgr(h: int = 120, w: int = 160) -> PixelBuffer:
    yy, xx = np.mgrid[0:h, 0:w].astype(np.float64)
    b = 128 + 100 * np.sin(xx / 17.0)
    g = 128 + 100 * np.cos(yy / 13.0)
    r = 128 + 60 * np.sin((xx + yy) / 23.0)
    return PixelBuffer(np.clip(np.stack([b, g, r], axis=-1), 0, 255).astype(np.uint8), PixelFormat.BGR)


def test_gamma_lut_idempotent() -> None:
    a = build_gamma_lut(2.2)
    b = build_gamma_lut(2.2)
    np.testing.assert_array_equal(a, b)
    assert a.dtype == np.uint8 and a.shape == (256,)
    assert a[0] == 0 and a[255] == 255
    np.testing.assert_array_equal(build_gamma_lut(1.0), np.arange(256, dtype=np.uint8))
    assert gamma_lut(2.2) is gamma_lut(2.2)
    assert not gamma_lut(2.2).flags.writeable
    with pytest.raises(ValueError):
        build_gamma_lut(0.0)


def test_params_gamma_lut_follows_gamma() -> None:
    p = ISPParameters()
    np.testing.assert_array_equal(p.gamma_lut, build_gamma_lut(2.2))
    p.gamma = 1.8
    np.testing.assert_array_equal(p.gamma_lut, build_gamma_lut(1.8))
    # 255 * (64/255) ** (1/2.2) = 136.03
    assert int(build_gamma_lut(2.2)[64]) == 136


@pytest.mark.parametrize("bad", [0.0, -1.0, float("nan"), float("inf")])
def test_params_reject_bad_gamma(bad: float) -> None:
    with pytest.raises(ConfigValidationError):
        ISPParameters(gamma=bad)
    p = ISPParameters(gamma=1.8)
    with pytest.raises(ConfigValidationError):
        p.gamma = bad
    assert p.gamma == 1.8
    out = IspPipeline().process(_bgr(), p)
    assert out.data.shape == (48, 64, 3)


def test_identity_color_matrix_leaves_pixels() -> None:
    buf = _bgr()
    out = ColorCorrectionStage().transform(buf, ISPParameters())
    np.testing.assert_array_equal(out.data, buf.data)
    assert out.data is not buf.data


def test_color_matrix_multiplies_bgr_pixels(tmp_path: Path) -> None:
    data = np.zeros((2, 2, 3), dtype=np.uint8)
    data[...] = (10, 20, 30)
    M = np.array([[0.5, 0.0, 1.0], [0.0, 1.0, 0.0], [1.0, 0.0, 0.0]])
    # out = M @ (B, G, R)
    expected = [35, 20, 10]
    out = ColorCorrectionStage().transform(PixelBuffer(data, PixelFormat.BGR), ISPParameters(color_matrix=M))
    assert out.data[0, 0].tolist() == expected

    path = save_color_matrix(tmp_path / "ccm.yml", M)
    p = ISPParameters(color_matrix=load_color_matrix(path))
    out = ColorCorrectionStage().transform(PixelBuffer(data, PixelFormat.BGR), p)
    assert out.data[1, 1].tolist() == expected


def test_auto_white_balance_on_gray_is_neutral() -> None:
    gray = PixelBuffer(np.full((32, 32, 3), 128, dtype=np.uint8), PixelFormat.BGR)
    gains = gray_world_gains(gray)
    np.testing.assert_allclose(gains, (1.0, 1.0, 1.0), atol=1e-12)
    run = IspPipeline().run(gray, ISPParameters(denoise_enabled=False, sharpen_enabled=False))
    assert run.wb_gains is not None
    np.testing.assert_allclose(run.wb_gains, (1.0, 1.0, 1.0), atol=1e-12)


def test_auto_white_balance_equalises_channel_means() -> None:
    data = np.zeros((8, 8, 3), dtype=np.uint8)
    data[..., 0] = 50
    data[..., 1] = 100
    data[..., 2] = 150
    out = WhiteBalanceStage().transform(PixelBuffer(data, PixelFormat.BGR), ISPParameters())
    assert out.data.reshape(-1, 3).mean(axis=0).tolist() == [100.0, 100.0, 100.0]


def test_zero_channel_keeps_unit_gain() -> None:
    data = np.zeros((4, 4, 3), dtype=np.uint8)
    data[..., 1] = 90
    data[..., 2] = 30
    b, g, r = gray_world_gains(PixelBuffer(data, PixelFormat.BGR))
    assert b == 1.0
    assert g == pytest.approx(40.0 / 90.0)
    assert r == pytest.approx(40.0 / 30.0)


def test_manual_white_balance_and_calibration() -> None:
    p = ISPParameters()
    p.set_wb_gains(2.0, 1.0, 0.5)
    assert not p.auto_wb
    data = np.full((4, 4, 3), 100, dtype=np.uint8)
    out = WhiteBalanceStage().transform(PixelBuffer(data, PixelFormat.BGR), p)
    assert out.data[0, 0].tolist() == [50, 100, 200]

    ref = np.zeros((4, 4, 3), dtype=np.uint8)
    ref[..., 0] = 80
    ref[..., 1] = 120
    ref[..., 2] = 160
    r, g, b = calibrate_white_balance(p, PixelBuffer(ref, PixelFormat.BGR))
    assert (p.wb_red, p.wb_green, p.wb_blue) == (r, g, b)
    assert b == pytest.approx(1.5) and g == pytest.approx(1.0) and r == pytest.approx(0.75)
    assert not p.auto_wb
    neutral = WhiteBalanceStage().transform(PixelBuffer(ref, PixelFormat.BGR), p)
    assert neutral.data[0, 0].tolist() == [120, 120, 120]


def test_tone_mapping() -> None:
    data = np.full((2, 2, 3), 100, dtype=np.uint8)
    buf = PixelBuffer(data, PixelFormat.BGR)
    stage = ToneMappingStage()
    np.testing.assert_array_equal(stage.transform(buf, ISPParameters()).data, data)
    assert int(stage.transform(buf, ISPParameters(exposure=2.0)).data[0, 0, 0]) == 200
    assert int(stage.transform(buf, ISPParameters(brightness=0.9)).data[0, 0, 0]) == 255
    assert int(stage.transform(buf, ISPParameters(brightness=-1.0)).data[0, 0, 0]) == 0


def test_sharpen_keeps_flat_image() -> None:
    data = np.full((16, 16, 3), 77, dtype=np.uint8)
    out = SharpenStage().transform(PixelBuffer(data, PixelFormat.BGR), ISPParameters(sharpen_strength=1.5))
    np.testing.assert_array_equal(out.data, data)


def test_denoise_windows() -> None:
    assert denoise_windows(1.0) == (7, 21)
    assert denoise_windows(10.0) == (11, 33)


@pytest.mark.parametrize("fmt", [PixelFormat.BAYER_BG, PixelFormat.BAYER_GB, PixelFormat.BAYER_RG, PixelFormat.BAYER_GR])
@pytest.mark.parametrize("method", list(DemosaicMethod))
def test_demosaic_all_layouts(fmt: PixelFormat, method: DemosaicMethod) -> None:
    rng = np.random.default_rng(0)
    raw = PixelBuffer(rng.integers(0, 256, size=(32, 40), dtype=np.uint8), fmt)
    out = DemosaicStage().transform(raw, ISPParameters(demosaic_method=method))
    assert out.pixel_format is PixelFormat.BGR
    assert out.data.shape == (32, 40, 3)


def test_stages_do_not_mutate_input() -> None:
    params = ISPParameters(color_matrix=np.array([[0.9, 0.1, 0.0], [0.0, 1.0, 0.0], [0.1, 0.0, 0.9]]), gamma=1.8)
    buf = _bgr(3)
    before = buf.data.copy()
    for stage in default_stages():
        if stage.name == "demosaic":
            continue
        out = stage.transform(buf, params)
        assert out.data is not buf.data
        np.testing.assert_array_equal(buf.data, before)

    raw = PixelBuffer(buf.data[..., 1].copy(), PixelFormat.BAYER_BG)
    raw_before = raw.data.copy()
    DemosaicStage().transform(raw, params)
    np.testing.assert_array_equal(raw.data, raw_before)


def test_pipeline_empty_input_runs_nothing() -> None:
    run = IspPipeline().run(PixelBuffer.empty(PixelFormat.BAYER_BG), ISPParameters())
    assert run.output.is_empty
    assert run.stages_run == ()
    assert IspPipeline().process(PixelBuffer.empty(), ISPParameters()).is_empty


def test_pipeline_stage_order() -> None:
    pipe = IspPipeline()
    assert pipe.stage_names == (
        "demosaic",
        "lens_correction",
        "white_balance",
        "color_correction",
        "gamma",
        "tone_mapping",
        "denoise",
        "sharpen",
    )
    run = pipe.run(_bgr(1), ISPParameters())
    assert run.stages_run == ("white_balance", "color_correction", "gamma", "tone_mapping", "denoise", "sharpen")

    raw = PixelBuffer(_bgr(2).data[..., 0].copy(), PixelFormat.BAYER_RG)
    run = pipe.run(raw, ISPParameters(denoise_enabled=False, sharpen_enabled=False))
    assert run.stages_run == ("demosaic", "white_balance", "color_correction", "gamma", "tone_mapping")
    assert run.output.data.shape == (48, 64, 3)


def test_pipeline_gray_input_is_promoted() -> None:
    gray = PixelBuffer(np.full((10, 12), 90, dtype=np.uint8), PixelFormat.GRAY)
    out = IspPipeline().process(gray, ISPParameters(denoise_enabled=False, sharpen_enabled=False, gamma=1.0))
    assert out.pixel_format is PixelFormat.BGR
    assert out.data.shape == (10, 12, 3)
    assert np.all(out.data == 90)


def test_pipeline_snapshots_parameters() -> None:
    params = ISPParameters(denoise_enabled=False, sharpen_enabled=False)
    K = default_camera_matrix((64, 48), focal_px=60.0)
    calib = CalibrationResult(camera_matrix=K, distortion=np.zeros(5), rms_error=0.1, image_size=(64, 48))
    params.lens_correction = True
    run = IspPipeline().run(_bgr(4), params, calibration=calib)
    assert "lens_correction" in run.stages_run
    assert params.camera_matrix is None
    assert run.params is not None and run.params.camera_matrix is not None

    snap = params.snapshot()
    snap.color_matrix[0, 0] = 5.0
    assert params.color_matrix[0, 0] == 1.0


def test_lens_correction_needs_calibration() -> None:
    run = IspPipeline().run(_bgr(5), ISPParameters(lens_correction=True, denoise_enabled=False, sharpen_enabled=False))
    assert "lens_correction" not in run.stages_run


def test_lens_correction_zero_distortion_is_identity() -> None:
    buf = _bgr(6)
    K = default_camera_matrix(buf.size, focal_px=70.0)
    p = ISPParameters()
    p.set_calibration(K, np.zeros(5))
    np.testing.assert_array_equal(LensCorrectionStage().transform(buf, p).data, buf.data)
    np.testing.assert_array_equal(undistort_image(buf.data, K, np.zeros(5)), buf.data)


def test_lens_correction_matches_opencv_undistort() -> None:
    buf = _smooth_bgr()
    K = default_camera_matrix(buf.size, focal_px=150.0)
    dist = np.array([-0.2, 0.05, 0.0, 0.0, 0.0])
    p = ISPParameters()
    p.set_calibration(K, dist)
    ours = LensCorrectionStage().transform(buf, p).data.astype(np.int16)
    ref = cv2.undistort(buf.data, K, dist).astype(np.int16)
    inner = (slice(10, -10), slice(10, -10))
    diff = np.abs(ours[inner] - ref[inner])
    assert float(diff.mean()) < 0.5
    assert int(diff.max()) <= 3
