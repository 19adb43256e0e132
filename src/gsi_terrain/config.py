from __future__ import annotations

import os
from functools import lru_cache
from pathlib import Path
from typing import Any, Final, Mapping, Optional, Type, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, ValidationError, model_validator
from pydantic_settings import BaseSettings, PydanticBaseSettingsSource, SettingsConfigDict

from .tile_address import GSI_MAX_TERRAIN_LEVEL

ENV_PREFIX: Final[str] = "GSI_TERRAIN_"
DEFAULT_TERRAIN_CONFIG_NAME: Final[str] = "terrain.yaml"
DEFAULT_TERRAIN_CONFIG_ENV: Final[str] = f"{ENV_PREFIX}CONFIG"
DEFAULT_TERRAIN_CONFIG_DIR_ENV: Final[str] = f"{ENV_PREFIX}CONFIG_DIR"

DEFAULT_CREDIT: Final[str] = "国土地理院"


class TerrainConfig(BaseSettings):
    """Provider options. Values from ``GSI_TERRAIN_*`` variables win over the file."""

    model_config = SettingsConfigDict(env_prefix=ENV_PREFIX, extra="forbid")

    use_png_data: bool = False
    height_power: float = Field(default=1.0, allow_inf_nan=False)
    max_supported_level: int = Field(default=GSI_MAX_TERRAIN_LEVEL, ge=0)
    raw_width: int = Field(default=256, ge=2)
    output_width: int = Field(default=32, ge=2)
    proxy: Optional[str] = None
    credit: str = DEFAULT_CREDIT

    @model_validator(mode="after")
    def _normalize(self) -> "TerrainConfig":
        if not (self.credit or "").strip():
            self.credit = DEFAULT_CREDIT
        if self.proxy is not None and not self.proxy.strip():
            self.proxy = None
        return self

    @classmethod
    def settings_customise_sources(
        cls,
        settings_cls: Type[BaseSettings],
        init_settings: PydanticBaseSettingsSource,
        env_settings: PydanticBaseSettingsSource,
        dotenv_settings: PydanticBaseSettingsSource,
        file_secret_settings: PydanticBaseSettingsSource,
    ) -> tuple[PydanticBaseSettingsSource, ...]:
        return (env_settings, init_settings)


class TerrainConfigFile(BaseModel):
    model_config = ConfigDict(extra="forbid")

    terrain: dict[str, Any] = Field(default_factory=dict)


def _absolute(raw: Union[str, Path]) -> Path:
    candidate = Path(raw).expanduser()
    if not candidate.is_absolute():
        candidate = (Path.cwd() / candidate).resolve()
    return candidate


def _resolve_config_dir(environ: Optional[Mapping[str, str]] = None) -> Path:
    environ = environ or os.environ
    explicit = environ.get(DEFAULT_TERRAIN_CONFIG_DIR_ENV)
    if explicit:
        return _absolute(explicit)

    cwd = Path.cwd()
    for candidate_root in (cwd, *cwd.parents):
        config_dir = candidate_root / "config"
        if (config_dir / DEFAULT_TERRAIN_CONFIG_NAME).is_file():
            return config_dir

    return cwd / "config"


def _resolve_config_path(path: Optional[Union[str, Path]]) -> Path:
    if path is not None:
        return _absolute(path)

    explicit = os.environ.get(DEFAULT_TERRAIN_CONFIG_ENV)
    if explicit:
        return _absolute(explicit)

    return _resolve_config_dir(os.environ) / DEFAULT_TERRAIN_CONFIG_NAME


def _parse_yaml(text: str, *, source: Path) -> Mapping[str, Any]:
    try:
        data = yaml.safe_load(text)
    except yaml.YAMLError as exc:
        raise ValueError(f"Failed to load terrain YAML: {source}") from exc

    if data is None:
        data = {}
    if not isinstance(data, Mapping):
        raise ValueError(f"terrain config must be a mapping: {source}")
    return data


def load_terrain_config(path: Optional[Union[str, Path]] = None) -> TerrainConfig:
    config_path = _resolve_config_path(path)
    if not config_path.is_file():
        raise FileNotFoundError(f"terrain config file not found: {config_path}")

    raw = config_path.read_text(encoding="utf-8")
    data = dict(_parse_yaml(raw, source=config_path))

    section = data.get("terrain")
    if section is None:
        data["terrain"] = {}
    elif not isinstance(section, Mapping):
        raise ValueError(f"terrain section must be a mapping: {config_path}")

    try:
        parsed = TerrainConfigFile.model_validate(data)
        return TerrainConfig(**parsed.terrain)
    except ValidationError as exc:
        raise ValueError(f"Invalid terrain config ({config_path}): {exc}") from exc


@lru_cache(maxsize=8)
def _get_terrain_config_cached(
    config_path: str,
    mtime_ns: int,
    size: int,
    env_overrides: tuple[tuple[str, str], ...],
) -> TerrainConfig:
    _ = (mtime_ns, size, env_overrides)
    return load_terrain_config(config_path)


def _env_overrides(environ: Mapping[str, str]) -> tuple[tuple[str, str], ...]:
    return tuple(sorted((k, v) for k, v in environ.items() if k.startswith(ENV_PREFIX)))


def get_terrain_config(path: Optional[Union[str, Path]] = None) -> TerrainConfig:
    """Cached load keyed on the file's mtime and size plus the ``GSI_TERRAIN_*`` variables."""

    resolved = _resolve_config_path(path)
    try:
        stat = resolved.stat()
    except FileNotFoundError as exc:
        raise FileNotFoundError(f"terrain config file not found: {resolved}") from exc

    return _get_terrain_config_cached(
        str(resolved), stat.st_mtime_ns, stat.st_size, _env_overrides(os.environ)
    )


get_terrain_config.cache_clear = _get_terrain_config_cached.cache_clear  # type: ignore[attr-defined]
