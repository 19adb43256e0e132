"""Terrain provider facade over the GSI elevation tile pyramid.

Fetching is left to the caller: the provider says *which* upstream tile to
fetch (``tile_url``) and turns the fetched payload into a heightmap
(``build_heightmap``).
"""

from __future__ import annotations

import logging
import math
from typing import Final, Optional, Protocol, runtime_checkable
from urllib.parse import quote

from .config import TerrainConfig
from .decoder import PayloadFormat, TilePayload
from .errors import MalformedPayloadError
from .heightmap import DEFAULT_CHILD_TILE_MASK, Heightmap, assemble_heightmap
from .resample import resample_heightmap
from .tile_address import (
    ROOT_X_SHIFT,
    EffectiveAddress,
    TileBounds,
    TileCoordinate,
    num_tiles_x,
    num_tiles_y,
    resolve_tile_address,
    tile_bounds_deg,
)

logger = logging.getLogger(__name__)

GSI_DEM_BASE_URL: Final[str] = "https://cyberjapandata.gsi.go.jp/xyz/dem"
GSI_DEM_PNG_BASE_URL: Final[str] = "https://cyberjapandata.gsi.go.jp/xyz/dem_png"

# Level 15 is served from the 5 m mesh (dem5a / dem5a_png).
DEM5A_LEVEL: Final[int] = 15
DEM5A_SUFFIX: Final[str] = "5a"

WGS84_MAXIMUM_RADIUS: Final[float] = 6378137.0
HEIGHTMAP_TERRAIN_QUALITY: Final[float] = 0.25

_URI_COMPONENT_SAFE: Final[str] = "!~*'()"


@runtime_checkable
class CancellationToken(Protocol):
    def is_set(self) -> bool: ...


def base_url(use_png_data: bool) -> str:
    return GSI_DEM_PNG_BASE_URL if use_png_data else GSI_DEM_BASE_URL


def proxy_url(proxy: str, url: str) -> str:
    """Route ``url`` through a query-string proxy such as ``/proxy/?``."""

    prefix = "?" if "?" not in proxy else ""
    return f"{proxy}{prefix}{quote(url, safe=_URI_COMPONENT_SAFE)}"


def tile_url(
    address: EffectiveAddress, *, use_png_data: bool, proxy: Optional[str] = None
) -> str:
    fmt = PayloadFormat.from_use_png(use_png_data)
    root = base_url(use_png_data)
    if address.level == DEM5A_LEVEL:
        root += DEM5A_SUFFIX
    url = f"{root}/{address.level}/{address.x}/{address.y}.{fmt.extension}"
    if proxy:
        url = proxy_url(proxy, url)
    return url


def _is_cancelled(cancel: Optional[CancellationToken]) -> bool:
    return cancel is not None and bool(cancel.is_set())


def build_heightmap(
    coord: TileCoordinate,
    payload: TilePayload,
    config: TerrainConfig,
    *,
    cancel: Optional[CancellationToken] = None,
) -> Optional[Heightmap]:
    """Decode, resample and assemble one tile.

    Returns ``None`` when ``cancel`` is set before decoding or before
    resampling. ``MalformedPayloadError`` propagates after being logged.
    """

    address = resolve_tile_address(coord, max_level=config.max_supported_level)
    log_fields = {
        "level": coord.level,
        "x": coord.x,
        "y": coord.y,
        "source_level": address.level,
        "source_x": address.x,
        "source_y": address.y,
    }

    if _is_cancelled(cancel):
        logger.info("terrain_tile_cancelled", extra={**log_fields, "stage": "decode"})
        return None

    try:
        grid = payload.decode(raw_width=config.raw_width)
    except MalformedPayloadError as exc:
        logger.warning(
            "terrain_tile_decode_failed",
            extra={**log_fields, "format": payload.format.value, "error": str(exc)},
        )
        raise

    if _is_cancelled(cancel):
        logger.info("terrain_tile_cancelled", extra={**log_fields, "stage": "resample"})
        return None

    quantized = resample_heightmap(
        grid,
        address,
        output_width=config.output_width,
        height_power=config.height_power,
    )
    heightmap = assemble_heightmap(quantized, child_tile_mask=DEFAULT_CHILD_TILE_MASK)
    logger.debug(
        "terrain_tile_built",
        extra={
            **log_fields,
            "shift_levels": address.shift_levels,
            "width": heightmap.width,
            "clamped": heightmap.overflow is not None,
        },
    )
    return heightmap


def estimated_level_zero_geometric_error(
    *, tile_image_width: int, tiles_at_level_zero: int
) -> float:
    return (
        WGS84_MAXIMUM_RADIUS
        * 2.0
        * math.pi
        * HEIGHTMAP_TERRAIN_QUALITY
        / (tile_image_width * tiles_at_level_zero)
    )


class GsiTerrainProvider:
    """Renderer-facing terrain provider for GSI elevation tiles."""

    def __init__(self, config: Optional[TerrainConfig] = None) -> None:
        self._config = config if config is not None else TerrainConfig()
        self._level_zero_error = estimated_level_zero_geometric_error(
            tile_image_width=self._config.output_width,
            tiles_at_level_zero=num_tiles_x(0),
        )

    @property
    def config(self) -> TerrainConfig:
        return self._config

    @property
    def payload_format(self) -> PayloadFormat:
        return PayloadFormat.from_use_png(self._config.use_png_data)

    @property
    def credit(self) -> str:
        return self._config.credit

    @property
    def has_water_mask(self) -> bool:
        return False

    @property
    def has_vertex_normals(self) -> bool:
        return False

    @property
    def ready(self) -> bool:
        return True

    @property
    def level_zero_maximum_geometric_error(self) -> float:
        return self._level_zero_error

    def level_maximum_geometric_error(self, level: int) -> float:
        if level < 0:
            raise ValueError(f"Invalid level: {level}")
        return self._level_zero_error / (1 << level)

    def get_tile_data_available(self, x: int, y: int, level: int) -> bool:
        return True

    def num_tiles_x(self, level: int) -> int:
        return num_tiles_x(level)

    def num_tiles_y(self, level: int) -> int:
        return num_tiles_y(level)

    def tile_bounds(self, coord: TileCoordinate) -> TileBounds:
        return tile_bounds_deg(coord)

    def resolve(self, coord: TileCoordinate) -> EffectiveAddress:
        return resolve_tile_address(
            coord, max_level=self._config.max_supported_level, x_root_shift=ROOT_X_SHIFT
        )

    def tile_url(self, coord: TileCoordinate) -> str:
        return tile_url(
            self.resolve(coord),
            use_png_data=self._config.use_png_data,
            proxy=self._config.proxy,
        )

    def payload(self, data: bytes) -> TilePayload:
        """Tag fetched bytes with the configured encoding."""

        return TilePayload(format=self.payload_format, data=data)

    def build_heightmap(
        self,
        coord: TileCoordinate,
        payload: TilePayload,
        *,
        cancel: Optional[CancellationToken] = None,
    ) -> Optional[Heightmap]:
        return build_heightmap(coord, payload, self._config, cancel=cancel)
