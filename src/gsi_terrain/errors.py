from __future__ import annotations


class TerrainTileError(RuntimeError):
    pass


class MalformedPayloadError(TerrainTileError):
    """The payload does not match the fixed raw grid shape or cannot be parsed."""
