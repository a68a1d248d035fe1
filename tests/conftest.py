from __future__ import annotations

import sys
from pathlib import Path
from typing import Any, Callable, Dict

import pytest
import yaml

from fsi_bridge.config.loader import FsiBridgeConfig, load_config_dicts

FAKE_FSI = Path(__file__).resolve().parent / "fake_fsi.py"


def _fake_fsi_overlay(*extra_args: str, timeout_sec: float = 5.0, **protocol: Any) -> Dict[str, Any]:
    """生成一个把子进程指向 `fake_fsi.py` 的配置 overlay。"""

    return {
        "process": {
            "executable": sys.executable,
            "args": ["-u", str(FAKE_FSI), *extra_args],
            "env": {"PYTHONIOENCODING": "utf-8"},
            "terminate_grace_sec": 1.0,
        },
        "protocol": {"timeout_sec": timeout_sec, **protocol},
    }


@pytest.fixture
def make_fake_fsi_config() -> Callable[..., FsiBridgeConfig]:
    def _make(*extra_args: str, timeout_sec: float = 5.0, **protocol: Any) -> FsiBridgeConfig:
        return load_config_dicts([_fake_fsi_overlay(*extra_args, timeout_sec=timeout_sec, **protocol)])

    return _make


@pytest.fixture
def fake_fsi_config(make_fake_fsi_config: Callable[..., FsiBridgeConfig]) -> FsiBridgeConfig:
    return make_fake_fsi_config()


@pytest.fixture
def fake_fsi_overlay_path(tmp_path: Path) -> Path:
    p = tmp_path / "fake_fsi.yaml"
    p.write_text(yaml.safe_dump(_fake_fsi_overlay()), encoding="utf-8")
    return p
