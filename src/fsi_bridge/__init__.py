"""
fsi-bridge：从 Python 驱动 F# Interactive（`dotnet fsi`）。

说明：
- 核心是进程驱动 + 流分帧协议：启动子进程、写入以 `;;` 结尾的命令、
  累积异步输出直到 prompt（`> `）出现，全程有超时保护；
- 对外只需要：`start_session()` / `FsiSession.evaluate()` / `FsiSession.quit()`。
"""

from __future__ import annotations

from fsi_bridge.core.errors import (
    EvalTimeoutError,
    FsiBridgeError,
    ProcessTerminatedError,
    SessionClosedError,
    SessionIOError,
    SpawnError,
)
from fsi_bridge.core.framing import normalize_command
from fsi_bridge.core.session import FsiSession, SessionState
from fsi_bridge.values import FsiValue, parse_values

start_session = FsiSession.start

__all__ = [
    "EvalTimeoutError",
    "FsiBridgeError",
    "FsiSession",
    "FsiValue",
    "ProcessTerminatedError",
    "SessionClosedError",
    "SessionIOError",
    "SessionState",
    "SpawnError",
    "__version__",
    "normalize_command",
    "parse_values",
    "start_session",
]

__version__ = "0.1.0"
