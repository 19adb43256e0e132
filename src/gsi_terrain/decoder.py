"""Decoding of GSI elevation tile payloads into raw elevation grids.

Two encodings are published for the same pyramid:

- ``dem_png``: 24-bit big-endian signed fixed-point in the RGB channels,
  1 cm resolution, with ``(128, 0, 0)`` reserved for sea level.
- ``dem``: comma-separated meters, one line per row, ``e`` for no data.
"""

from __future__ import annotations

import io
import math
from dataclasses import dataclass
from enum import Enum, IntEnum
from typing import Final, Union

import numpy as np
from PIL import Image, UnidentifiedImageError

from .errors import MalformedPayloadError

DEFAULT_RAW_WIDTH: Final[int] = 256

SEA_LEVEL_RGB: Final[tuple[int, int, int]] = (128, 0, 0)
MISSING_CELL: Final[str] = "e"

CENTIMETERS_TO_METERS: Final[float] = 0.01
_SIGN_THRESHOLD: Final[int] = 1 << 23
_WRAP: Final[int] = 1 << 24


class PayloadFormat(str, Enum):
    COLOR_RASTER = "png"
    DELIMITED_TEXT = "txt"

    @property
    def extension(self) -> str:
        return self.value

    @classmethod
    def from_use_png(cls, use_png_data: bool) -> "PayloadFormat":
        return cls.COLOR_RASTER if use_png_data else cls.DELIMITED_TEXT


class SampleFlag(IntEnum):
    VALID = 0
    SEA = 1
    MISSING = 2


@dataclass(frozen=True)
class RawElevationGrid:
    """A square grid of elevations in meters with a per-cell sample flag.

    Flagged cells (sea, missing) always carry elevation 0.
    """

    heights_m: np.ndarray
    flags: np.ndarray

    def __post_init__(self) -> None:
        heights = np.array(self.heights_m, dtype=np.float64)
        flags = np.array(self.flags, dtype=np.uint8)
        if heights.ndim != 2:
            raise ValueError("heights_m must be a 2D array")
        if heights.shape[0] != heights.shape[1]:
            raise ValueError("heights_m must be a square grid")
        if flags.shape != heights.shape:
            raise ValueError(
                f"flags shape {flags.shape} does not match heights shape {heights.shape}"
            )
        heights.setflags(write=False)
        flags.setflags(write=False)
        object.__setattr__(self, "heights_m", heights)
        object.__setattr__(self, "flags", flags)

    @property
    def width(self) -> int:
        return int(self.heights_m.shape[0])

    @property
    def sea_mask(self) -> np.ndarray:
        return self.flags == int(SampleFlag.SEA)

    @property
    def missing_mask(self) -> np.ndarray:
        return self.flags == int(SampleFlag.MISSING)

    @staticmethod
    def from_heights(heights_m: np.ndarray) -> "RawElevationGrid":
        heights = np.array(heights_m, dtype=np.float64)
        return RawElevationGrid(
            heights_m=heights,
            flags=np.full(heights.shape, int(SampleFlag.VALID), dtype=np.uint8),
        )


def decode_color_raster(pixels: np.ndarray, *, raw_width: int = DEFAULT_RAW_WIDTH) -> RawElevationGrid:
    """Decode an RGB(A) plane of shape (raw_width, raw_width, 3|4)."""

    arr = np.asarray(pixels)
    if arr.ndim != 3 or arr.shape[2] not in (3, 4):
        raise MalformedPayloadError(
            f"Expected an RGB or RGBA pixel plane, got array of shape {arr.shape}"
        )
    if arr.shape[0] != raw_width or arr.shape[1] != raw_width:
        raise MalformedPayloadError(
            f"Expected a {raw_width}x{raw_width} image, got {arr.shape[1]}x{arr.shape[0]}"
        )
    if arr.dtype != np.uint8:
        raise MalformedPayloadError(f"Expected 8-bit channels, got dtype {arr.dtype}")

    r = arr[..., 0].astype(np.int64)
    g = arr[..., 1].astype(np.int64)
    b = arr[..., 2].astype(np.int64)

    value = r * 65536 + g * 256 + b
    value = np.where(value > _SIGN_THRESHOLD, value - _WRAP, value)
    heights = value.astype(np.float64) * CENTIMETERS_TO_METERS

    sea = (r == SEA_LEVEL_RGB[0]) & (g == SEA_LEVEL_RGB[1]) & (b == SEA_LEVEL_RGB[2])
    heights = np.where(sea, 0.0, heights)
    flags = np.where(sea, int(SampleFlag.SEA), int(SampleFlag.VALID)).astype(np.uint8)
    return RawElevationGrid(heights_m=heights, flags=flags)


def decode_png(data: bytes, *, raw_width: int = DEFAULT_RAW_WIDTH) -> RawElevationGrid:
    """Decode PNG bytes with Pillow, then decode the RGB plane."""

    try:
        with Image.open(io.BytesIO(data)) as img:
            rgb = np.array(img.convert("RGB"), dtype=np.uint8)
    except (UnidentifiedImageError, OSError, ValueError) as exc:
        raise MalformedPayloadError(f"Failed to decode PNG payload: {exc}") from exc
    return decode_color_raster(rgb, raw_width=raw_width)


def _parse_cell(cell: str, *, row: int, col: int) -> tuple[float, SampleFlag]:
    text = cell.strip()
    if text == MISSING_CELL:
        return 0.0, SampleFlag.MISSING
    try:
        value = float(text)
    except ValueError as exc:
        raise MalformedPayloadError(
            f"Non-numeric cell {cell!r} at row {row}, column {col}"
        ) from exc
    if not math.isfinite(value):
        raise MalformedPayloadError(
            f"Non-finite cell {cell!r} at row {row}, column {col}"
        )
    return value, SampleFlag.VALID


def decode_delimited_text(
    data: Union[str, bytes], *, raw_width: int = DEFAULT_RAW_WIDTH
) -> RawElevationGrid:
    if isinstance(data, bytes):
        try:
            text = data.decode("utf-8")
        except UnicodeDecodeError as exc:
            raise MalformedPayloadError("Text payload is not valid UTF-8") from exc
    else:
        text = data

    lines = [line[:-1] if line.endswith("\r") else line for line in text.split("\n")]
    while lines and lines[-1] == "":
        lines.pop()

    if len(lines) != raw_width:
        raise MalformedPayloadError(f"Expected {raw_width} rows, got {len(lines)}")

    heights = np.zeros((raw_width, raw_width), dtype=np.float64)
    flags = np.zeros((raw_width, raw_width), dtype=np.uint8)
    for i, line in enumerate(lines):
        cells = line.split(",")
        if len(cells) != raw_width:
            raise MalformedPayloadError(
                f"Expected {raw_width} columns in row {i}, got {len(cells)}"
            )
        for j, cell in enumerate(cells):
            value, flag = _parse_cell(cell, row=i, col=j)
            heights[i, j] = value
            flags[i, j] = int(flag)

    return RawElevationGrid(heights_m=heights, flags=flags)


PayloadData = Union[bytes, str, np.ndarray]


@dataclass(frozen=True)
class TilePayload:
    """A fetched upstream payload tagged with its encoding."""

    format: PayloadFormat
    data: PayloadData

    def decode(self, *, raw_width: int = DEFAULT_RAW_WIDTH) -> RawElevationGrid:
        if self.format is PayloadFormat.COLOR_RASTER:
            if isinstance(self.data, np.ndarray):
                return decode_color_raster(self.data, raw_width=raw_width)
            if isinstance(self.data, (bytes, bytearray, memoryview)):
                return decode_png(bytes(self.data), raw_width=raw_width)
            raise MalformedPayloadError(
                f"Color raster payload must be bytes or a pixel array, got {type(self.data).__name__}"
            )

        if self.format is PayloadFormat.DELIMITED_TEXT:
            if isinstance(self.data, (bytes, bytearray, memoryview)):
                return decode_delimited_text(bytes(self.data), raw_width=raw_width)
            if isinstance(self.data, str):
                return decode_delimited_text(self.data, raw_width=raw_width)
            raise MalformedPayloadError(
                f"Text payload must be str or bytes, got {type(self.data).__name__}"
            )

        raise ValueError(f"Unknown payload format: {self.format}")
