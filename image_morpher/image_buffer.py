from __future__ import annotations

import logging
from typing import Iterable, Tuple

import numpy as np

from .errors import ValidationError

logger = logging.getLogger(__name__)

SUPPORTED_DTYPES = (np.dtype(np.uint8), np.dtype(np.uint16))


class ImageBuffer:
    """Read-only view of a decoded image laid out as (height, width, channels)."""

    __slots__ = ("_pixels",)

    def __init__(self, pixels: np.ndarray) -> None:
        array = np.asarray(pixels)
        if array.dtype not in SUPPORTED_DTYPES:
            raise ValidationError(f"Unsupported pixel dtype: {array.dtype}")
        if array.ndim == 2:
            array = array[..., None]
        if array.ndim != 3:
            raise ValidationError(f"Expected (H, W) or (H, W, C) pixels, got shape {array.shape}")
        if 0 in array.shape:
            raise ValidationError(f"Image dimensions must be non-empty, got shape {array.shape}")
        view = array.view()
        view.flags.writeable = False
        self._pixels = view

    @classmethod
    def from_flat(
        cls,
        width: int,
        height: int,
        channels: int,
        data: Iterable[int],
        dtype=np.uint8,
    ) -> "ImageBuffer":
        flat = np.asarray(list(data) if not isinstance(data, np.ndarray) else data)
        expected = width * height * channels
        if flat.ndim != 1 or flat.size != expected:
            raise ValidationError(
                f"Buffer length {flat.size} does not match {width}x{height}x{channels}={expected}"
            )
        limits = np.iinfo(np.dtype(dtype))
        if flat.size and (flat.min() < limits.min or flat.max() > limits.max):
            raise ValidationError(f"Channel values outside [{limits.min}, {limits.max}]")
        return cls(flat.astype(dtype).reshape(height, width, channels))

    @property
    def pixels(self) -> np.ndarray:
        return self._pixels

    @property
    def width(self) -> int:
        return self._pixels.shape[1]

    @property
    def height(self) -> int:
        return self._pixels.shape[0]

    @property
    def channels(self) -> int:
        return self._pixels.shape[2]

    @property
    def size(self) -> Tuple[int, int]:
        return self.width, self.height

    @property
    def dtype(self) -> np.dtype:
        return self._pixels.dtype

    @property
    def max_value(self) -> int:
        return int(np.iinfo(self._pixels.dtype).max)

    def pixel(self, x: int, y: int) -> Tuple[int, ...]:
        if not (0 <= x < self.width and 0 <= y < self.height):
            raise IndexError(f"Pixel ({x}, {y}) outside {self.width}x{self.height} image")
        return tuple(int(v) for v in self._pixels[y, x])

    def flat(self) -> np.ndarray:
        return self._pixels.reshape(-1)

    def same_layout(self, other: "ImageBuffer") -> bool:
        return self._pixels.shape == other._pixels.shape and self.dtype == other.dtype

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, ImageBuffer):
            return NotImplemented
        return self.same_layout(other) and bool(np.array_equal(self._pixels, other._pixels))

    __hash__ = None  # type: ignore[assignment]

    def __repr__(self) -> str:
        return f"ImageBuffer(width={self.width}, height={self.height}, channels={self.channels}, dtype={self.dtype})"
