"""
配置加载器（YAML）。

设计目标：
- 内置默认配置 + 多个 YAML overlay，按顺序深度合并（后者覆盖前者）；
- 使用 pydantic 做 schema 校验；默认拒绝未知字段（避免拼写错误被静默吞掉）。
"""

from __future__ import annotations

from copy import deepcopy
from pathlib import Path
from typing import Any, Dict, List, Mapping, MutableMapping, Optional

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator

from fsi_bridge.config.defaults import load_default_config_dict


def _deep_merge(base: MutableMapping[str, Any], overlay: Mapping[str, Any]) -> MutableMapping[str, Any]:
    """
    深度合并两个 dict（overlay 覆盖 base）。

    合并规则：
    - dict + dict：递归合并
    - 其它类型（含 list）：overlay 整体覆盖
    """

    for key, overlay_value in overlay.items():
        if key in base and isinstance(base[key], dict) and isinstance(overlay_value, Mapping):
            _deep_merge(base[key], overlay_value)  # type: ignore[arg-type]
            continue
        base[key] = deepcopy(overlay_value)
    return base


class FsiProcessConfig(BaseModel):
    """子进程启动参数。"""

    model_config = ConfigDict(extra="forbid")

    executable: Optional[str] = None
    executable_name: str = Field(default="dotnet", min_length=1)
    # 交互模式 + 关闭 GUI + 不打印 banner + UTF-8 输出
    args: List[str] = Field(default_factory=lambda: ["fsi", "--gui-", "--nologo", "--utf8output"])
    cwd: Optional[str] = None
    env: Dict[str, str] = Field(default_factory=dict)
    read_chunk_bytes: int = Field(default=4096, ge=1)
    terminate_grace_sec: float = Field(default=2.0, gt=0.0)


class FsiProtocolConfig(BaseModel):
    """
    线路协议参数。

    说明：
    - `timeout_sec` 为“无输出活动”的上限，超时即终止 session（不重试）；
    - `wait_for_initial_prompt` 开启时，启动后先消费子进程的首个 prompt 再返回 session；
      `dotnet fsi` 启动时会打印一个 prompt，若它晚于第一条命令到达，该命令会得到空响应，
      之后的响应依次错位一条。对真实 `dotnet fsi` 建议开启；子进程启动时不打印 prompt 时保持关闭。
    """

    model_config = ConfigDict(extra="forbid")

    terminator: str = Field(default=";;", min_length=1)
    sentinel: str = Field(default="> ", min_length=1)
    quit_command: str = Field(default="#quit", min_length=1)
    timeout_sec: float = Field(default=10.0, gt=0.0)
    wait_for_initial_prompt: bool = False

    @field_validator("quit_command")
    @classmethod
    def _validate_quit_command(cls, value: str) -> str:
        """退出命令两侧不得有空白（比较时会对输入做 strip）。"""

        if value != value.strip():
            raise ValueError("protocol.quit_command must not have surrounding whitespace")
        return value


class FsiDisplayConfig(BaseModel):
    """控制台展示参数。"""

    model_config = ConfigDict(extra="forbid")

    gutter_label: str = "F#:"
    color: bool = True


class FsiBridgeConfig(BaseModel):
    """配置根对象。"""

    model_config = ConfigDict(extra="forbid")

    config_version: int = Field(default=1, ge=1)
    process: FsiProcessConfig = Field(default_factory=FsiProcessConfig)
    protocol: FsiProtocolConfig = Field(default_factory=FsiProtocolConfig)
    display: FsiDisplayConfig = Field(default_factory=FsiDisplayConfig)


def _load_yaml_file(path: Path) -> Dict[str, Any]:
    """读取 YAML 文件为 dict；空文件返回空 dict。"""

    if not path.exists():
        raise FileNotFoundError(f"config file not found: {path}")
    data = yaml.safe_load(path.read_text(encoding="utf-8"))
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"config root must be a mapping(dict): {path}")
    return data


def load_config_dicts(config_dicts: List[Dict[str, Any]]) -> FsiBridgeConfig:
    """
    加载并合并多个 dict 配置（在内置默认配置之上），返回校验后的 `FsiBridgeConfig`。

    参数：
    - config_dicts：按顺序做深度合并（后者覆盖前者）
    """

    merged: Dict[str, Any] = load_default_config_dict()
    for overlay in config_dicts:
        if not overlay:
            continue
        _deep_merge(merged, overlay)
    return FsiBridgeConfig.model_validate(merged)


def load_config(config_paths: List[Path]) -> FsiBridgeConfig:
    """
    加载并合并多个 YAML overlay，返回校验后的 `FsiBridgeConfig`。

    参数：
    - config_paths：YAML 路径列表；按顺序合并（后者覆盖前者）
    """

    return load_config_dicts([_load_yaml_file(Path(p)) for p in config_paths])


def load_default_config() -> FsiBridgeConfig:
    """只使用内置默认配置。"""

    return load_config_dicts([])
