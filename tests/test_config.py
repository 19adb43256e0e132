from __future__ import annotations

from pathlib import Path

import pytest
import yaml

REPO_CONFIG = Path(__file__).resolve().parents[1] / "config" / "terrain.yaml"


def _write_yaml(path: Path, data: object) -> Path:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(yaml.safe_dump(data, sort_keys=False, allow_unicode=True), encoding="utf-8")
    return path


def test_loads_repo_default_terrain_config() -> None:
    from gsi_terrain.config import DEFAULT_CREDIT, load_terrain_config

    config = load_terrain_config(REPO_CONFIG)
    assert config.use_png_data is False
    assert config.height_power == 1.0
    assert config.max_supported_level == 15
    assert config.raw_width == 256
    assert config.output_width == 32
    assert config.proxy is None
    assert config.credit == DEFAULT_CREDIT


def test_defaults_without_file() -> None:
    from gsi_terrain.config import TerrainConfig

    config = TerrainConfig()
    assert config.credit == "国土地理院"
    assert config.output_width == 32


def test_environment_overrides_file(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from gsi_terrain.config import load_terrain_config

    path = _write_yaml(
        tmp_path / "terrain.yaml",
        {"terrain": {"height_power": 1.5, "use_png_data": False, "output_width": 16}},
    )
    monkeypatch.setenv("GSI_TERRAIN_HEIGHT_POWER", "2.5")
    monkeypatch.setenv("GSI_TERRAIN_USE_PNG_DATA", "true")

    config = load_terrain_config(path)
    assert config.height_power == 2.5
    assert config.use_png_data is True
    assert config.output_width == 16


def test_resolves_path_from_environment(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from gsi_terrain.config import load_terrain_config

    path = _write_yaml(tmp_path / "custom.yaml", {"terrain": {"proxy": "/proxy/"}})
    monkeypatch.setenv("GSI_TERRAIN_CONFIG", str(path))

    assert load_terrain_config().proxy == "/proxy/"


def test_resolves_config_dir_from_environment(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from gsi_terrain.config import load_terrain_config

    _write_yaml(tmp_path / "cfg" / "terrain.yaml", {"terrain": {"output_width": 64}})
    monkeypatch.setenv("GSI_TERRAIN_CONFIG_DIR", str(tmp_path / "cfg"))

    assert load_terrain_config().output_width == 64


def test_finds_config_in_parent_directory(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    from gsi_terrain.config import load_terrain_config

    _write_yaml(tmp_path / "config" / "terrain.yaml", {"terrain": {"raw_width": 128}})
    nested = tmp_path / "a" / "b"
    nested.mkdir(parents=True)
    monkeypatch.chdir(nested)

    assert load_terrain_config().raw_width == 128


def test_blank_credit_and_proxy_fall_back(tmp_path: Path) -> None:
    from gsi_terrain.config import DEFAULT_CREDIT, load_terrain_config

    path = _write_yaml(tmp_path / "terrain.yaml", {"terrain": {"credit": "  ", "proxy": ""}})

    config = load_terrain_config(path)
    assert config.credit == DEFAULT_CREDIT
    assert config.proxy is None


def test_empty_file_gives_defaults(tmp_path: Path) -> None:
    from gsi_terrain.config import load_terrain_config

    path = tmp_path / "terrain.yaml"
    path.write_text("", encoding="utf-8")

    assert load_terrain_config(path).output_width == 32


def test_rejects_unknown_keys(tmp_path: Path) -> None:
    from gsi_terrain.config import load_terrain_config

    path = _write_yaml(tmp_path / "terrain.yaml", {"terrain": {"tile_size": 256}})
    with pytest.raises(ValueError, match="Invalid terrain config"):
        load_terrain_config(path)

    path = _write_yaml(tmp_path / "top.yaml", {"terrain": {}, "tiling": {}})
    with pytest.raises(ValueError, match="Invalid terrain config"):
        load_terrain_config(path)


def test_rejects_invalid_values(tmp_path: Path) -> None:
    from gsi_terrain.config import load_terrain_config

    path = _write_yaml(tmp_path / "terrain.yaml", {"terrain": {"output_width": 1}})
    with pytest.raises(ValueError, match="Invalid terrain config"):
        load_terrain_config(path)

    path = tmp_path / "inf.yaml"
    path.write_text("terrain:\n  height_power: .inf\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Invalid terrain config"):
        load_terrain_config(path)


def test_rejects_non_mapping_yaml(tmp_path: Path) -> None:
    from gsi_terrain.config import load_terrain_config

    path = tmp_path / "terrain.yaml"
    path.write_text("[]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="terrain config must be a mapping"):
        load_terrain_config(path)

    path.write_text("terrain: [1, 2]\n", encoding="utf-8")
    with pytest.raises(ValueError, match="terrain section must be a mapping"):
        load_terrain_config(path)


def test_rejects_invalid_yaml(tmp_path: Path) -> None:
    from gsi_terrain.config import load_terrain_config

    path = tmp_path / "terrain.yaml"
    path.write_text("terrain: [unclosed\n", encoding="utf-8")
    with pytest.raises(ValueError, match="Failed to load terrain YAML"):
        load_terrain_config(path)


def test_missing_file(tmp_path: Path) -> None:
    from gsi_terrain.config import get_terrain_config, load_terrain_config

    with pytest.raises(FileNotFoundError):
        load_terrain_config(tmp_path / "missing.yaml")
    with pytest.raises(FileNotFoundError):
        get_terrain_config(tmp_path / "missing.yaml")


def test_getter_caches_by_mtime_and_size(tmp_path: Path) -> None:
    from gsi_terrain.config import get_terrain_config

    path = _write_yaml(tmp_path / "terrain.yaml", {"terrain": {"output_width": 16}})

    first = get_terrain_config(path)
    second = get_terrain_config(path)
    assert first is second

    _write_yaml(path, {"terrain": {"output_width": 128}})
    third = get_terrain_config(path)
    assert third.output_width == 128


def test_getter_reloads_when_environment_changes(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch
) -> None:
    from gsi_terrain.config import get_terrain_config

    path = _write_yaml(tmp_path / "terrain.yaml", {"terrain": {"height_power": 1.5}})

    assert get_terrain_config(path).height_power == 1.5

    monkeypatch.setenv("GSI_TERRAIN_HEIGHT_POWER", "3.0")
    assert get_terrain_config(path).height_power == 3.0

    monkeypatch.delenv("GSI_TERRAIN_HEIGHT_POWER")
    assert get_terrain_config(path).height_power == 1.5
