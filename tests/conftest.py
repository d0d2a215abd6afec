from __future__ import annotations

from pathlib import Path

import pytest

from beans.config import BeansConfig, StatusConfig, TypeConfig, default_config
from beans.store import BeanStore


@pytest.fixture
def cfg(tmp_path: Path) -> BeansConfig:
    return default_config(tmp_path)


@pytest.fixture
def beans_dir(cfg: BeansConfig) -> Path:
    cfg.beans_dir.mkdir()
    return cfg.beans_dir


@pytest.fixture
def store(beans_dir: Path, cfg: BeansConfig):
    s = BeanStore(beans_dir, cfg, debounce=0.05)
    s.load()
    yield s
    s.close()


@pytest.fixture
def small_cfg(tmp_path: Path) -> BeansConfig:
    """Two types, one archive status: easy to reason about orderings."""
    return BeansConfig(
        root=tmp_path,
        statuses=[StatusConfig("open"), StatusConfig("in-progress"), StatusConfig("done", archive=True)],
        types=[TypeConfig("typeA"), TypeConfig("typeB")],
        default_type="typeA",
    )


def write_bean(directory: Path, name: str, text: str) -> Path:
    path = directory / name
    path.write_text(text, encoding="utf-8")
    return path
