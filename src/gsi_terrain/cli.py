from __future__ import annotations

import argparse
import json
import logging
import math
from pathlib import Path
from typing import Any, Iterable, Iterator, Optional

from .batch import HeightmapBatchBuilder, HeightmapJob, HeightmapJobResult
from .config import TerrainConfig, get_terrain_config
from .decoder import PayloadFormat, TilePayload
from .errors import TerrainTileError
from .observability import configure_logging
from .provider import GsiTerrainProvider
from .tile_address import EffectiveAddress, TileCoordinate

logger = logging.getLogger(__name__)


def _finite_float(raw: str) -> float:
    try:
        value = float(raw)
    except ValueError as exc:
        raise argparse.ArgumentTypeError(f"invalid float value: {raw!r}") from exc
    if not math.isfinite(value):
        raise argparse.ArgumentTypeError(f"must be finite, got {raw!r}")
    return value


def _parse_args(argv: Optional[list[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="python -m gsi_terrain",
        description="Convert GSI elevation tiles into renderer heightmaps.",
    )
    parser.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to terrain.yaml (defaults to GSI_TERRAIN_CONFIG / config/terrain.yaml).",
    )
    parser.add_argument("--log-level", default="INFO", help="Logging level (default: INFO)")

    sub = parser.add_subparsers(dest="command", required=True)

    def add_format_flag(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument(
            "--png",
            dest="use_png_data",
            action=argparse.BooleanOptionalAction,
            default=None,
            help="Use dem_png instead of the text dem tiles (default: config)",
        )

    def add_tile_args(cmd: argparse.ArgumentParser) -> None:
        cmd.add_argument("--x", type=int, required=True)
        cmd.add_argument("--y", type=int, required=True)
        cmd.add_argument("--level", type=int, required=True)

    url = sub.add_parser("url", help="Print the upstream URL for a renderer tile.")
    add_tile_args(url)
    add_format_flag(url)

    heightmap = sub.add_parser("heightmap", help="Build one heightmap from a local payload.")
    add_tile_args(heightmap)
    add_format_flag(heightmap)
    heightmap.add_argument("--payload", required=True, help="Upstream tile file (.png or .txt)")
    heightmap.add_argument("--height-power", type=_finite_float, default=None)
    heightmap.add_argument("--output", default=None, help="Write JSON here instead of stdout")

    batch = sub.add_parser(
        "batch", help="Build heightmaps for every tile under a {level}/{x}/{y} directory."
    )
    add_format_flag(batch)
    batch.add_argument("--tiles-dir", required=True)
    batch.add_argument("--output-dir", required=True)
    batch.add_argument("--workers", type=int, default=4)

    return parser.parse_args(argv)


def _load_config(config_path: Optional[str]) -> TerrainConfig:
    if config_path is not None:
        return get_terrain_config(config_path)
    try:
        return get_terrain_config()
    except FileNotFoundError:
        return TerrainConfig()


def _apply_overrides(config: TerrainConfig, args: argparse.Namespace) -> TerrainConfig:
    update: dict[str, Any] = {}
    if getattr(args, "use_png_data", None) is not None:
        update["use_png_data"] = bool(args.use_png_data)
    if getattr(args, "height_power", None) is not None:
        update["height_power"] = float(args.height_power)
    if not update:
        return config
    return config.model_copy(update=update)


def _address_dict(address: EffectiveAddress) -> dict[str, Any]:
    return {
        "level": address.level,
        "x": address.x,
        "y": address.y,
        "shift_levels": address.shift_levels,
        "frac_x": address.frac_x,
        "frac_y": address.frac_y,
    }


def _print_json(payload: Any) -> None:
    print(json.dumps(payload, ensure_ascii=False))


def _run_url(provider: GsiTerrainProvider, args: argparse.Namespace) -> int:
    coord = TileCoordinate(x=args.x, y=args.y, level=args.level)
    _print_json(
        {
            "tile": {"level": coord.level, "x": coord.x, "y": coord.y},
            "source": _address_dict(provider.resolve(coord)),
            "url": provider.tile_url(coord),
        }
    )
    return 0


def _payload_format_for(
    path: Path, args: argparse.Namespace, config: TerrainConfig
) -> PayloadFormat:
    if args.use_png_data is None:
        for fmt in PayloadFormat:
            if path.suffix.lower() == f".{fmt.extension}":
                return fmt
    return PayloadFormat.from_use_png(config.use_png_data)


def _run_heightmap(provider: GsiTerrainProvider, args: argparse.Namespace) -> int:
    coord = TileCoordinate(x=args.x, y=args.y, level=args.level)
    path = Path(args.payload)
    payload = TilePayload(
        format=_payload_format_for(path, args, provider.config),
        data=path.read_bytes(),
    )

    try:
        heightmap = provider.build_heightmap(coord, payload)
    except TerrainTileError:
        return 1
    if heightmap is None:
        return 1

    document = {
        "tile": {"level": coord.level, "x": coord.x, "y": coord.y},
        "source": _address_dict(provider.resolve(coord)),
        "credit": provider.credit,
        "heightmap": heightmap.to_dict(),
    }
    if args.output:
        out = Path(args.output)
        out.parent.mkdir(parents=True, exist_ok=True)
        out.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")
    else:
        _print_json(document)
    return 0


def iter_tile_files(
    tiles_dir: Path, fmt: PayloadFormat
) -> Iterator[tuple[int, int, int, Path]]:
    """Yield ``(level, x, y, path)`` for every ``{level}/{x}/{y}.{ext}`` file."""

    for path in sorted(tiles_dir.glob(f"*/*/*.{fmt.extension}")):
        parts = (path.parent.parent.name, path.parent.name, path.stem)
        if not all(part.isdigit() for part in parts):
            logger.debug("tile_file_skipped", extra={"path": str(path)})
            continue
        level, x, y = (int(part) for part in parts)
        yield level, x, y, path


def build_jobs(tiles_dir: Path, fmt: PayloadFormat) -> list[HeightmapJob]:
    """Each upstream tile feeds the two renderer tiles that share its footprint."""

    jobs: list[HeightmapJob] = []
    for level, x, y, path in iter_tile_files(tiles_dir, fmt):
        payload = TilePayload(format=fmt, data=path.read_bytes())
        for half in (0, 1):
            coord = TileCoordinate(x=2 * x + half, y=y, level=level)
            jobs.append(HeightmapJob(coord=coord, payload=payload))
    return jobs


def _write_results(
    output_dir: Path, results: Iterable[HeightmapJobResult], *, credit: str
) -> None:
    for result in results:
        if result.heightmap is None:
            continue
        coord = result.job.coord
        out = output_dir / str(coord.level) / str(coord.x) / f"{coord.y}.json"
        out.parent.mkdir(parents=True, exist_ok=True)
        document = {"credit": credit, **result.heightmap.to_dict()}
        out.write_text(json.dumps(document, ensure_ascii=False), encoding="utf-8")


def _run_batch(provider: GsiTerrainProvider, args: argparse.Namespace) -> int:
    tiles_dir = Path(args.tiles_dir)
    if not tiles_dir.is_dir():
        raise FileNotFoundError(f"tiles directory not found: {tiles_dir}")

    jobs = build_jobs(tiles_dir, provider.payload_format)
    builder = HeightmapBatchBuilder(provider.config, max_workers=args.workers)
    summary = builder.run(jobs)

    _write_results(Path(args.output_dir), summary.results, credit=provider.credit)
    _print_json(summary.to_dict())
    return 1 if summary.failed else 0


def main(argv: Optional[list[str]] = None) -> int:
    args = _parse_args(argv)
    configure_logging(log_level=args.log_level)

    config = _apply_overrides(_load_config(args.config_path), args)
    provider = GsiTerrainProvider(config)

    if args.command == "url":
        return _run_url(provider, args)
    if args.command == "heightmap":
        return _run_heightmap(provider, args)
    if args.command == "batch":
        return _run_batch(provider, args)

    raise ValueError(f"Unknown command: {args.command}")


if __name__ == "__main__":
    raise SystemExit(main())
