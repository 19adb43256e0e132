import os
import sys
from pathlib import Path

import pytest

SRC = Path(__file__).resolve().parents[1] / "src"

sys.path.insert(0, str(SRC))


@pytest.fixture(autouse=True)
def _isolate_terrain_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for key in list(os.environ):
        if key.startswith("GSI_TERRAIN_"):
            monkeypatch.delenv(key, raising=False)

    from gsi_terrain.config import get_terrain_config

    get_terrain_config.cache_clear()
