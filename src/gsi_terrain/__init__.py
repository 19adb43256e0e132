"""GSI elevation tiles -> fixed-size quantized heightmaps for a 3D terrain renderer."""

from .batch import HeightmapBatchBuilder
from .batch import HeightmapBatchSummary
from .batch import HeightmapJob
from .batch import HeightmapJobResult
from .config import TerrainConfig
from .config import get_terrain_config
from .config import load_terrain_config
from .decoder import PayloadFormat
from .decoder import RawElevationGrid
from .decoder import SampleFlag
from .decoder import TilePayload
from .errors import MalformedPayloadError
from .errors import TerrainTileError
from .heightmap import Heightmap
from .heightmap import HeightmapStructure
from .heightmap import assemble_heightmap
from .provider import GsiTerrainProvider
from .provider import build_heightmap
from .resample import QuantizationOverflow
from .resample import resample_heightmap
from .tile_address import GSI_MAX_TERRAIN_LEVEL
from .tile_address import EffectiveAddress
from .tile_address import TileCoordinate
from .tile_address import resolve_tile_address

__all__ = [
    "assemble_heightmap",
    "build_heightmap",
    "EffectiveAddress",
    "get_terrain_config",
    "GSI_MAX_TERRAIN_LEVEL",
    "GsiTerrainProvider",
    "Heightmap",
    "HeightmapBatchBuilder",
    "HeightmapBatchSummary",
    "HeightmapJob",
    "HeightmapJobResult",
    "HeightmapStructure",
    "load_terrain_config",
    "MalformedPayloadError",
    "PayloadFormat",
    "QuantizationOverflow",
    "RawElevationGrid",
    "resample_heightmap",
    "resolve_tile_address",
    "SampleFlag",
    "TerrainConfig",
    "TerrainTileError",
    "TilePayload",
    "TileCoordinate",
]
