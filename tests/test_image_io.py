from __future__ import annotations

from pathlib import Path

import numpy as np
import pytest
from PIL import Image

from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.core.image_io import load_image, save_image
from camisp.errors import IOFailure
from camisp.sources import FrameSource, ImageSequenceSource


def test_load_png_and_webp_gray(tmp_path: Path) -> None:
    arr = (np.arange(64, dtype=np.uint8).reshape(8, 8) * 4) % 255
    Image.fromarray(arr, mode="L").save(tmp_path / "a.png")
    Image.fromarray(arr, mode="L").save(tmp_path / "a.webp", lossless=True)

    a = load_image(tmp_path / "a.png", PixelFormat.GRAY)
    b = load_image(tmp_path / "a.webp", PixelFormat.GRAY)
    assert a.size == (8, 8) and b.size == (8, 8)
    np.testing.assert_array_equal(a.data, arr)
    np.testing.assert_array_equal(b.data, arr)


def test_save_load_bgr(tmp_path: Path) -> None:
    rng = np.random.default_rng(0)
    buf = PixelBuffer(rng.integers(0, 256, size=(6, 9, 3), dtype=np.uint8), PixelFormat.BGR)
    path = save_image(tmp_path / "sub" / "x.png", buf)
    back = load_image(path)
    np.testing.assert_array_equal(back.data, buf.data)
    raw = load_image(path, "bayer_bg")
    assert raw.is_raw and raw.data.shape == (6, 9)


def test_load_errors(tmp_path: Path) -> None:
    with pytest.raises(IOFailure):
        load_image(tmp_path / "absent.png")
    (tmp_path / "junk.png").write_bytes(b"not an image")
    with pytest.raises(IOFailure):
        load_image(tmp_path / "junk.png")
    with pytest.raises(IOFailure):
        save_image(tmp_path / "empty.png", PixelBuffer.empty())


def test_image_sequence_source(tmp_path: Path) -> None:
    paths = []
    for k in range(3):
        p = tmp_path / f"f{k}.png"
        save_image(p, PixelBuffer(np.full((4, 5), 10 * k, dtype=np.uint8), PixelFormat.GRAY))
        paths.append(p)

    src = ImageSequenceSource.from_directory(tmp_path, pixel_format=PixelFormat.GRAY)
    assert isinstance(src, FrameSource)
    with pytest.raises(IOFailure):
        src.read_frame()
    with src:
        frames = list(src)
        assert [int(f.data[0, 0]) for f in frames] == [0, 10, 20]
        assert src.read_frame() is None
    assert not src.is_open

    with pytest.raises(IOFailure):
        ImageSequenceSource([tmp_path / "missing.png"]).open()
