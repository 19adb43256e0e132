from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Final, Optional

import numpy as np

from .resample import QuantizationOverflow, QuantizedGrid
from .tile_address import GSI_MAX_TERRAIN_LEVEL

# Bit mask 0b1111: all four children exist, whatever max_supported_level is.
DEFAULT_CHILD_TILE_MASK: Final[int] = GSI_MAX_TERRAIN_LEVEL


@dataclass(frozen=True)
class HeightmapStructure:
    """Encoding parameters the renderer needs to interpret the sample buffer."""

    height_scale: float = 1.0
    height_offset: float = 0.0
    elements_per_sample: int = 1
    stride: int = 1
    element_multiplier: int = 256

    def to_dict(self) -> dict[str, Any]:
        return {
            "heightScale": self.height_scale,
            "heightOffset": self.height_offset,
            "elementsPerHeight": self.elements_per_sample,
            "stride": self.stride,
            "elementMultiplier": self.element_multiplier,
        }


@dataclass(frozen=True)
class Heightmap:
    buffer: np.ndarray
    width: int
    height: int
    structure: HeightmapStructure = field(default_factory=HeightmapStructure)
    child_tile_mask: int = DEFAULT_CHILD_TILE_MASK
    flags: Optional[np.ndarray] = None
    overflow: Optional[QuantizationOverflow] = None

    def __post_init__(self) -> None:
        buffer = np.array(self.buffer, dtype=np.int16)
        if buffer.shape != (self.height, self.width):
            raise ValueError(
                f"buffer shape {buffer.shape} does not match {self.height}x{self.width}"
            )
        buffer.setflags(write=False)
        object.__setattr__(self, "buffer", buffer)

    def to_bytes(self) -> bytes:
        return self.buffer.astype("<i2").tobytes()

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "width": self.width,
            "height": self.height,
            "structure": self.structure.to_dict(),
            "childTileMask": self.child_tile_mask,
            "buffer": self.buffer.reshape(-1).tolist(),
        }
        if self.overflow is not None:
            payload["overflow"] = {
                "clampedCount": self.overflow.clamped_count,
                "minScaled": self.overflow.min_scaled,
                "maxScaled": self.overflow.max_scaled,
            }
        return payload


def assemble_heightmap(
    quantized: QuantizedGrid, *, child_tile_mask: int = DEFAULT_CHILD_TILE_MASK
) -> Heightmap:
    width = quantized.width
    return Heightmap(
        buffer=quantized.values,
        width=width,
        height=width,
        child_tile_mask=child_tile_mask,
        flags=quantized.flags,
        overflow=quantized.overflow,
    )
