from __future__ import annotations

import logging
import math
from dataclasses import dataclass
from typing import Final, Optional

import numpy as np

from .decoder import RawElevationGrid
from .tile_address import EffectiveAddress

logger = logging.getLogger(__name__)

INT16_MIN: Final[int] = -32768
INT16_MAX: Final[int] = 32767


def round_half_up(values: np.ndarray) -> np.ndarray:
    # Ties go towards +inf, unlike numpy's round-half-to-even.
    return np.floor(np.asarray(values, dtype=np.float64) + 0.5)


@dataclass(frozen=True)
class QuantizationOverflow:
    """Samples whose scaled height fell outside the int16 range and were clamped."""

    clamped_count: int
    min_scaled: float
    max_scaled: float


@dataclass(frozen=True)
class QuantizedGrid:
    values: np.ndarray
    flags: np.ndarray
    overflow: Optional[QuantizationOverflow] = None

    @property
    def width(self) -> int:
        return int(self.values.shape[0])


def source_indices(
    address: EffectiveAddress, *, raw_width: int, output_width: int
) -> tuple[np.ndarray, np.ndarray]:
    """Nearest raw-grid (row, col) index for every output row and column."""

    if raw_width < 2:
        raise ValueError("raw_width must be >= 2")
    if output_width < 2:
        raise ValueError("output_width must be >= 2")

    steps = np.arange(output_width, dtype=np.float64)
    last = float(output_width - 1)

    row_frac = steps / address.y_divisor / last + address.frac_y
    col_frac = steps / address.x_divisor / last + address.frac_x

    rows = round_half_up(row_frac * (raw_width - 1))
    cols = round_half_up(col_frac * (raw_width - 1))
    rows = np.clip(rows, 0, raw_width - 1).astype(np.intp)
    cols = np.clip(cols, 0, raw_width - 1).astype(np.intp)
    return rows, cols


def quantize_heights(
    samples_m: np.ndarray, *, height_power: float
) -> tuple[np.ndarray, Optional[QuantizationOverflow]]:
    if not math.isfinite(float(height_power)):
        raise ValueError(f"height_power must be finite, got {height_power}")

    scaled = np.asarray(samples_m, dtype=np.float64) * float(height_power)
    rounded = round_half_up(scaled)

    out_of_range = (rounded < INT16_MIN) | (rounded > INT16_MAX)
    overflow: Optional[QuantizationOverflow] = None
    if bool(np.any(out_of_range)):
        overflow = QuantizationOverflow(
            clamped_count=int(np.count_nonzero(out_of_range)),
            min_scaled=float(np.min(scaled[out_of_range])),
            max_scaled=float(np.max(scaled[out_of_range])),
        )

    quantized = np.clip(rounded, INT16_MIN, INT16_MAX).astype(np.int16)
    return quantized, overflow


def resample_heightmap(
    grid: RawElevationGrid,
    address: EffectiveAddress,
    *,
    output_width: int,
    height_power: float = 1.0,
) -> QuantizedGrid:
    """Nearest-neighbor resample of a raw grid down to an output_width heightmap."""

    rows, cols = source_indices(
        address, raw_width=grid.width, output_width=output_width
    )
    samples = grid.heights_m[np.ix_(rows, cols)]
    flags = grid.flags[np.ix_(rows, cols)]

    values, overflow = quantize_heights(samples, height_power=height_power)
    if overflow is not None:
        logger.warning(
            "heightmap_quantization_clamped",
            extra={
                "level": address.level,
                "x": address.x,
                "y": address.y,
                "clamped_count": overflow.clamped_count,
                "min_scaled": overflow.min_scaled,
                "max_scaled": overflow.max_scaled,
            },
        )

    values.setflags(write=False)
    flags.setflags(write=False)
    return QuantizedGrid(values=values, flags=flags, overflow=overflow)
