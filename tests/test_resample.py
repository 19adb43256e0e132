from __future__ import annotations

import logging

import numpy as np
import pytest

from gsi_terrain.decoder import RawElevationGrid, SampleFlag, decode_delimited_text
from gsi_terrain.resample import (
    INT16_MAX,
    INT16_MIN,
    quantize_heights,
    resample_heightmap,
    source_indices,
)
from gsi_terrain.tile_address import EffectiveAddress, TileCoordinate, resolve_tile_address


def test_constant_grid_gives_constant_output() -> None:
    grid = RawElevationGrid.from_heights(np.full((256, 256), 123.4))
    address = resolve_tile_address(TileCoordinate(x=3, y=1, level=2))

    out = resample_heightmap(grid, address, output_width=32, height_power=2.0)

    assert out.values.shape == (32, 32)
    assert out.values.dtype == np.int16
    assert np.all(out.values == 247)
    assert out.overflow is None


def test_corner_samples_with_square_root() -> None:
    heights = np.zeros((256, 256))
    heights[0, 0] = 10
    heights[0, 255] = 20
    heights[255, 0] = 30
    heights[255, 255] = 40
    grid = RawElevationGrid.from_heights(heights)
    address = EffectiveAddress(x=0, y=0, level=0, x_root_shift=0)

    out = resample_heightmap(grid, address, output_width=2, height_power=1.0)

    assert out.values.tolist() == [[10, 20], [30, 40]]


def test_adjacent_halves_share_the_seam_column() -> None:
    left = resolve_tile_address(TileCoordinate(x=4, y=3, level=4))
    right = resolve_tile_address(TileCoordinate(x=5, y=3, level=4))

    left_rows, left_cols = source_indices(left, raw_width=256, output_width=32)
    right_rows, right_cols = source_indices(right, raw_width=256, output_width=32)

    assert left_cols[0] == 0
    assert left_cols[-1] == 128
    assert right_cols[0] == 128
    assert right_cols[-1] == 255
    assert left_rows.tolist() == right_rows.tolist()
    assert left_rows[0] == 0
    assert left_rows[-1] == 255


def test_overzoomed_indices_use_sub_tile_offset() -> None:
    address = resolve_tile_address(TileCoordinate(x=13, y=7, level=17))

    rows, cols = source_indices(address, raw_width=256, output_width=32)

    assert rows[0] == 191
    assert rows[-1] == 255
    assert cols[0] == 159
    assert cols[-1] == 191
    assert np.all(np.diff(rows) >= 0)
    assert np.all(np.diff(cols) >= 0)


def test_indices_never_leave_the_raw_grid() -> None:
    for level in (0, 5, 15, 16, 18):
        for x in (0, 1, 7):
            address = resolve_tile_address(TileCoordinate(x=x, y=x, level=level))
            rows, cols = source_indices(address, raw_width=256, output_width=32)
            assert rows.min() >= 0 and rows.max() <= 255
            assert cols.min() >= 0 and cols.max() <= 255


def test_quantize_rounds_half_up() -> None:
    values, overflow = quantize_heights(np.array([0.5, -0.5, 1.5, 2.5, -1.5]), height_power=1.0)

    assert values.tolist() == [1, 0, 2, 3, -1]
    assert overflow is None


def test_out_of_range_heights_are_clamped_not_wrapped(caplog: pytest.LogCaptureFixture) -> None:
    heights = np.full((4, 4), 100.0)
    heights[0, 0] = 40000.0
    heights[3, 3] = -40000.0
    grid = RawElevationGrid.from_heights(heights)
    address = EffectiveAddress(x=0, y=0, level=0, x_root_shift=0)

    with caplog.at_level(logging.WARNING, logger="gsi_terrain.resample"):
        out = resample_heightmap(grid, address, output_width=4, height_power=1.0)

    assert out.values[0, 0] == INT16_MAX
    assert out.values[3, 3] == INT16_MIN
    assert out.values[1, 1] == 100
    assert out.overflow is not None
    assert out.overflow.clamped_count == 2
    assert out.overflow.max_scaled == 40000.0
    assert out.overflow.min_scaled == -40000.0
    assert any(r.getMessage() == "heightmap_quantization_clamped" for r in caplog.records)


def test_height_power_must_be_finite() -> None:
    with pytest.raises(ValueError, match="finite"):
        quantize_heights(np.zeros((2, 2)), height_power=float("inf"))


def test_flags_follow_the_sampled_cells() -> None:
    grid = decode_delimited_text("1,2,e\n4,5,6\n7,8,9", raw_width=3)
    address = EffectiveAddress(x=0, y=0, level=0, x_root_shift=0)

    out = resample_heightmap(grid, address, output_width=3, height_power=1.0)

    assert out.values.tolist() == [[1, 2, 0], [4, 5, 6], [7, 8, 9]]
    assert out.flags[0, 2] == SampleFlag.MISSING
    assert out.flags[1, 1] == SampleFlag.VALID


def test_output_width_validation() -> None:
    grid = RawElevationGrid.from_heights(np.zeros((4, 4)))
    with pytest.raises(ValueError, match="output_width"):
        resample_heightmap(grid, EffectiveAddress(x=0, y=0, level=0), output_width=1)


def test_overflow_range_covers_only_clamped_samples() -> None:
    values, overflow = quantize_heights(np.array([[100.0, 40000.0], [-5.0, 50000.0]]), height_power=1.0)

    assert values.tolist() == [[100, INT16_MAX], [-5, INT16_MAX]]
    assert overflow is not None
    assert overflow.clamped_count == 2
    assert overflow.min_scaled == 40000.0
    assert overflow.max_scaled == 50000.0
