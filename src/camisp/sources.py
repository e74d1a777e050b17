from __future__ import annotations

import logging
from pathlib import Path
from typing import Iterator, Protocol, runtime_checkable

from camisp.core.buffer import PixelBuffer, PixelFormat
from camisp.core.image_io import load_image
from camisp.errors import IOFailure


logger = logging.getLogger(__name__)


@runtime_checkable
class FrameSource(Protocol):
    """
    Frame acquisition backend. `read_frame` returns None once the source is exhausted.
    Device backends (V4L2, platform media frameworks) implement this outside the package.
    """

    def open(self) -> None: ...

    def read_frame(self) -> PixelBuffer | None: ...

    def close(self) -> None: ...


class ImageSequenceSource:
    """Frames from image files, in the given order."""

    def __init__(self, paths: list[Path] | list[str], pixel_format: PixelFormat | str = PixelFormat.BGR) -> None:
        self.paths = [Path(p) for p in paths]
        self.pixel_format = PixelFormat(pixel_format)
        self._next: int | None = None

    @classmethod
    def from_directory(
        cls,
        directory: Path,
        pattern: str = "*.png",
        pixel_format: PixelFormat | str = PixelFormat.BGR,
    ) -> "ImageSequenceSource":
        return cls(sorted(Path(directory).glob(pattern)), pixel_format)

    @property
    def is_open(self) -> bool:
        return self._next is not None

    def open(self) -> None:
        missing = [p for p in self.paths if not p.is_file()]
        if missing:
            raise IOFailure(f"missing frame file(s): {', '.join(str(p) for p in missing[:3])}")
        self._next = 0

    def read_frame(self) -> PixelBuffer | None:
        if self._next is None:
            raise IOFailure("source is not open")
        if self._next >= len(self.paths):
            return None
        path = self.paths[self._next]
        self._next += 1
        logger.debug("reading frame %s", path)
        return load_image(path, self.pixel_format)

    def close(self) -> None:
        self._next = None

    def __enter__(self) -> "ImageSequenceSource":
        self.open()
        return self

    def __exit__(self, *exc) -> None:
        self.close()

    def __iter__(self) -> Iterator[PixelBuffer]:
        while True:
            frame = self.read_frame()
            if frame is None:
                return
            yield frame
