from __future__ import annotations

from dataclasses import dataclass

import numpy as np


@dataclass(frozen=True)
class PatternSpec:
    """
    Planar chessboard: inner-corner grid (columns x rows) and square edge in mm.
    """

    columns: int
    rows: int
    square_size_mm: float

    def __post_init__(self) -> None:
        if int(self.columns) < 2 or int(self.rows) < 2:
            raise ValueError("a chessboard needs at least 2x2 inner corners")
        if not float(self.square_size_mm) > 0.0:
            raise ValueError("square_size_mm must be > 0")

    @property
    def size(self) -> tuple[int, int]:
        return (int(self.columns), int(self.rows))

    @property
    def corner_count(self) -> int:
        return int(self.columns) * int(self.rows)

    def object_points(self) -> np.ndarray:
        return generate_object_points(self.size, self.square_size_mm)


def generate_object_points(pattern_size: tuple[int, int], square_size: float) -> np.ndarray:
    """
    Board-frame corner positions (N,3), row-major: row i, column j -> (j*s, i*s, 0).
    """
    cols, rows = int(pattern_size[0]), int(pattern_size[1])
    ii, jj = np.meshgrid(np.arange(rows, dtype=np.float64), np.arange(cols, dtype=np.float64), indexing="ij")
    pts = np.zeros((rows * cols, 3), dtype=np.float64)
    pts[:, 0] = jj.reshape(-1) * float(square_size)
    pts[:, 1] = ii.reshape(-1) * float(square_size)
    return pts


def parse_pattern_size(text: str) -> tuple[int, int]:
    """"9x6" -> (9, 6)."""
    parts = text.lower().replace("*", "x").split("x")
    if len(parts) != 2:
        raise ValueError(f"pattern size must look like COLSxROWS, got {text!r}")
    return int(parts[0]), int(parts[1])
