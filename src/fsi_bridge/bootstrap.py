"""
Bootstrap（应用层配置发现/环境变量覆盖/来源追踪）。

设计目标：
- 保持库核心无隐式 I/O：`FsiSession` 不会自己读取环境变量或发现 overlay；
- CLI/脚本可复用本入口，并通过 `sources` 排障“某个值来自哪里”。

环境变量：
- `FSI_BRIDGE_CONFIG`：额外 overlay 路径（`,` 或 `;` 分隔；相对路径相对 cwd）
- `FSI_BRIDGE_DOTNET`：可执行文件路径（覆盖 `process.executable`）
- `FSI_BRIDGE_TIMEOUT_SEC`：求值超时（覆盖 `protocol.timeout_sec`）
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Sequence

from fsi_bridge.config.loader import FsiBridgeConfig, _load_yaml_file, load_config_dicts


@dataclass(frozen=True)
class ResolvedConfig:
    """bootstrap 结果：配置 + 来源追踪。"""

    config: FsiBridgeConfig
    overlay_paths: List[Path] = field(default_factory=list)
    sources: Dict[str, str] = field(default_factory=dict)


def _get_env_nonempty(key: str, *, env: Optional[Mapping[str, str]] = None) -> Optional[str]:
    """读取 env 并返回非空白字符串（否则视为未设置）。"""

    v = (env if env is not None else os.environ).get(key)
    if v is None:
        return None
    s = str(v).strip()
    return s or None


def _split_paths(raw: str) -> List[str]:
    """将逗号/分号分隔的路径串切分为片段列表（保序，去掉空项）。"""

    parts: List[str] = []
    for chunk in raw.replace(";", ",").split(","):
        s = chunk.strip()
        if s:
            parts.append(s)
    return parts


def resolve_config(
    *,
    overlay_paths: Sequence[Path] = (),
    env: Optional[Mapping[str, str]] = None,
    cwd: Optional[Path] = None,
) -> ResolvedConfig:
    """
    解析最终配置：内置默认 → 显式 overlays → `FSI_BRIDGE_CONFIG` overlays → env 覆盖。

    参数：
    - overlay_paths：显式 overlay（例如 CLI `--config`）
    - env：环境变量映射（默认 os.environ）
    - cwd：相对路径锚点（默认当前目录）

    异常：
    - FileNotFoundError / ValueError：overlay 不存在或格式非法
    - pydantic.ValidationError：合并后的配置不合法
    """

    base = Path(cwd) if cwd is not None else Path.cwd()
    paths: List[Path] = [Path(p) for p in overlay_paths]
    raw_env_paths = _get_env_nonempty("FSI_BRIDGE_CONFIG", env=env)
    if raw_env_paths:
        for raw in _split_paths(raw_env_paths):
            p = Path(raw).expanduser()
            paths.append(p if p.is_absolute() else (base / p))

    sources: Dict[str, str] = {}
    overlays: List[Dict[str, Any]] = []
    for p in paths:
        data = _load_yaml_file(p)
        overlays.append(data)
        for section, value in data.items():
            if isinstance(value, dict):
                for key in value:
                    sources[f"{section}.{key}"] = f"overlay:{p}"
            else:
                sources[section] = f"overlay:{p}"

    env_overlay: Dict[str, Any] = {}
    dotnet = _get_env_nonempty("FSI_BRIDGE_DOTNET", env=env)
    if dotnet:
        env_overlay.setdefault("process", {})["executable"] = dotnet
        sources["process.executable"] = "env:FSI_BRIDGE_DOTNET"
    timeout = _get_env_nonempty("FSI_BRIDGE_TIMEOUT_SEC", env=env)
    if timeout:
        try:
            timeout_value = float(timeout)
        except ValueError as exc:
            raise ValueError(f"FSI_BRIDGE_TIMEOUT_SEC must be a number: {timeout!r}") from exc
        env_overlay.setdefault("protocol", {})["timeout_sec"] = timeout_value
        sources["protocol.timeout_sec"] = "env:FSI_BRIDGE_TIMEOUT_SEC"
    overlays.append(env_overlay)

    return ResolvedConfig(config=load_config_dicts(overlays), overlay_paths=paths, sources=sources)
