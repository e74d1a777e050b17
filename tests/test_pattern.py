from __future__ import annotations

import numpy as np
import pytest

from camisp.calib.pattern import PatternSpec, generate_object_points, parse_pattern_size


def test_object_points_row_major() -> None:
    pts = generate_object_points((4, 3), 2.5)
    assert pts.shape == (12, 3)
    assert pts.dtype == np.float64
    for i in range(3):
        for j in range(4):
            np.testing.assert_array_equal(pts[i * 4 + j], [j * 2.5, i * 2.5, 0.0])


def test_pattern_spec_object_points_match_generator() -> None:
    spec = PatternSpec(9, 6, 25.0)
    assert spec.corner_count == 54
    assert spec.size == (9, 6)
    np.testing.assert_array_equal(spec.object_points(), generate_object_points((9, 6), 25.0))


@pytest.mark.parametrize("cols,rows,size", [(1, 6, 25.0), (9, 1, 25.0), (9, 6, 0.0), (9, 6, -1.0)])
def test_pattern_spec_rejects_bad_geometry(cols: int, rows: int, size: float) -> None:
    with pytest.raises(ValueError):
        PatternSpec(cols, rows, size)


def test_parse_pattern_size() -> None:
    assert parse_pattern_size("9x6") == (9, 6)
    assert parse_pattern_size("7X5") == (7, 5)
    with pytest.raises(ValueError):
        parse_pattern_size("9-6")
