"""
fsi-bridge 错误分类（异常类型）。

说明：
- 所有异常都代表“session 不可继续使用”（没有重同步协议，不做本地恢复/重试）。
- 结构化字段（英文 `code/message/details`）便于 CLI 输出稳定 JSON，也便于测试断言。
- 子进程正常退出（exit status 0）不是错误，不会以异常形式出现。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Optional


class FsiBridgeError(Exception):
    """fsi-bridge 错误基类（结构化：`code/message/details`）。"""

    default_code = "FSI_BRIDGE_ERROR"

    def __init__(self, message: str, *, code: Optional[str] = None, details: Dict[str, Any] | None = None) -> None:
        """创建结构化错误。

        参数：
        - `message`：英文错误消息
        - `code`：稳定错误码（英文大写下划线；缺省使用类级 `default_code`）
        - `details`：结构化上下文信息（必须可 JSON 序列化）
        """

        super().__init__(message)
        self.code = code or self.default_code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> "FsiIssue":
        """把异常转换为可序列化问题对象。"""

        return FsiIssue(code=self.code, message=self.message, details=dict(self.details))


@dataclass(frozen=True)
class FsiIssue:
    """结构化问题对象（CLI 输出 / 排障用）。"""

    code: str
    message: str
    details: Dict[str, Any]

    def to_dict(self) -> Dict[str, Any]:
        """转换为 JSON 友好的 dict。"""

        return {"code": self.code, "message": self.message, "details": dict(self.details)}


class SpawnError(FsiBridgeError):
    """可执行文件不存在或进程启动失败（发生在 session 创建之前）。"""

    default_code = "SPAWN_FAILED"


class EvalTimeoutError(FsiBridgeError):
    """请求发出后在超时窗口内没有观察到任何输出（session 随即终止）。"""

    default_code = "EVAL_TIMEOUT"


class ProcessTerminatedError(FsiBridgeError):
    """子进程以非 0 状态退出，或输出流意外关闭。"""

    default_code = "PROCESS_TERMINATED"

    def __init__(self, message: str, *, exit_status: Optional[int] = None, details: Dict[str, Any] | None = None) -> None:
        """
        参数：
        - `exit_status`：子进程退出码；流被关闭而未观察到退出码时为 None
        """

        merged: Dict[str, Any] = dict(details or {})
        merged["exit_status"] = exit_status
        super().__init__(message, details=merged)
        self.exit_status = exit_status


class SessionIOError(FsiBridgeError):
    """写入子进程 stdin 失败（流已关闭或管道已断开）。"""

    default_code = "SESSION_IO"


class SessionClosedError(FsiBridgeError):
    """在已终止的 session 上发起调用（fail-fast，不会接触任何进程）。"""

    default_code = "SESSION_CLOSED"
