from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Final

GSI_MAX_TERRAIN_LEVEL: Final[int] = 15

# The renderer's level 0 is 2 x 1 tiles while the GSI pyramid's level 0 is a
# single tile, so x always carries one more bit than y.
ROOT_X_SHIFT: Final[int] = 1


@dataclass(frozen=True)
class TileCoordinate:
    """Renderer tile coordinates (Web Mercator, two level-0 tiles in x)."""

    x: int
    y: int
    level: int

    def __post_init__(self) -> None:
        if self.level < 0:
            raise ValueError(f"Invalid level: {self.level}")
        if self.x < 0:
            raise ValueError(f"x must be >= 0, got {self.x}")
        if self.y < 0:
            raise ValueError(f"y must be >= 0, got {self.y}")


@dataclass(frozen=True)
class EffectiveAddress:
    """Upstream tile holding data for a requested tile.

    ``frac_x``/``frac_y`` locate the requested tile's footprint inside the
    upstream raw grid; ``span_x``/``span_y`` give its size as a fraction of it.
    """

    x: int
    y: int
    level: int
    shift_levels: int = 0
    frac_x: float = 0.0
    frac_y: float = 0.0
    x_root_shift: int = ROOT_X_SHIFT

    def __post_init__(self) -> None:
        if self.shift_levels < 0:
            raise ValueError(f"shift_levels must be >= 0, got {self.shift_levels}")
        if self.x_root_shift < 0:
            raise ValueError(f"x_root_shift must be >= 0, got {self.x_root_shift}")
        if not (0.0 <= self.frac_x < 1.0):
            raise ValueError(f"frac_x out of range: {self.frac_x}")
        if not (0.0 <= self.frac_y < 1.0):
            raise ValueError(f"frac_y out of range: {self.frac_y}")

    @property
    def x_divisor(self) -> int:
        return 1 << (self.shift_levels + self.x_root_shift)

    @property
    def y_divisor(self) -> int:
        return 1 << self.shift_levels

    @property
    def span_x(self) -> float:
        return 1.0 / self.x_divisor

    @property
    def span_y(self) -> float:
        return 1.0 / self.y_divisor

    @property
    def is_overzoomed(self) -> bool:
        return self.shift_levels > 0


def resolve_tile_address(
    coord: TileCoordinate,
    *,
    max_level: int = GSI_MAX_TERRAIN_LEVEL,
    x_root_shift: int = ROOT_X_SHIFT,
) -> EffectiveAddress:
    """Map a requested tile onto the upstream tile that holds its data."""

    if max_level < 0:
        raise ValueError(f"Invalid max_level: {max_level}")

    shift_levels = max(0, coord.level - max_level)
    level = coord.level - shift_levels

    x_bits = shift_levels + x_root_shift
    x_divisor = 1 << x_bits
    y_divisor = 1 << shift_levels

    return EffectiveAddress(
        x=coord.x >> x_bits,
        y=coord.y >> shift_levels,
        level=level,
        shift_levels=shift_levels,
        frac_x=(coord.x % x_divisor) / x_divisor,
        frac_y=(coord.y % y_divisor) / y_divisor,
        x_root_shift=x_root_shift,
    )


def num_tiles_x(level: int) -> int:
    """Number of renderer tiles in X at a level."""

    if level < 0:
        raise ValueError(f"Invalid level: {level}")
    return 1 << (level + ROOT_X_SHIFT)


def num_tiles_y(level: int) -> int:
    """Number of renderer tiles in Y at a level."""

    if level < 0:
        raise ValueError(f"Invalid level: {level}")
    return 1 << level


@dataclass(frozen=True)
class TileBounds:
    west: float
    south: float
    east: float
    north: float


def _tile_y_to_lat(y: float, n: int) -> float:
    lat_rad = math.atan(math.sinh(math.pi * (1.0 - 2.0 * y / n)))
    return math.degrees(lat_rad)


def tile_bounds_deg(coord: TileCoordinate) -> TileBounds:
    """Return Web Mercator bounds in degrees for a renderer tile (y origin at north)."""

    nx = num_tiles_x(coord.level)
    ny = num_tiles_y(coord.level)
    if coord.x >= nx:
        raise ValueError(f"x out of range at level={coord.level}: {coord.x}")
    if coord.y >= ny:
        raise ValueError(f"y out of range at level={coord.level}: {coord.y}")

    west = coord.x / nx * 360.0 - 180.0
    east = (coord.x + 1) / nx * 360.0 - 180.0
    north = _tile_y_to_lat(coord.y, ny)
    south = _tile_y_to_lat(coord.y + 1, ny)
    return TileBounds(west=west, south=south, east=east, north=north)
