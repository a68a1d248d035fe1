"""
F# Interactive session 驱动（状态机）。

模型：
- 每个 session 由一个 actor 线程驱动，逐条处理 mailbox 中的消息（evaluate/quit/子进程事件），
  天然保证“同一时刻最多一个请求在途”，不需要围绕子进程加锁；
- 子进程句柄把输出事件直接投递到同一个 mailbox；
- 等待响应期间（AWAITING），收集器通过 mailbox 视图读取事件，请求类消息被推迟到 backlog，
  回到 READY 后优先处理（等价于选择性接收）；
- 无论 quit / 超时 / 崩溃 / 写入失败，都收敛到 actor 的同一个 teardown（关闭句柄）。

状态：READY →(evaluate)→ AWAITING → READY | TERMINATED。
"""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from concurrent.futures import Future
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Deque, Optional, Protocol, Union

from fsi_bridge.core.collector import CollectKind, collect_response
from fsi_bridge.core.errors import (
    EvalTimeoutError,
    FsiBridgeError,
    ProcessTerminatedError,
    SessionClosedError,
    SessionIOError,
)
from fsi_bridge.core.framing import (
    PROMPT_SENTINEL,
    QUIT_COMMAND,
    STATEMENT_TERMINATOR,
    is_quit_command,
    normalize_command,
)
from fsi_bridge.core.process import ChildProcessHandle, ChunkEvent, ExitEvent, StreamClosedEvent

if TYPE_CHECKING:
    from fsi_bridge.config.loader import FsiBridgeConfig
    from fsi_bridge.values import FsiValue

logger = logging.getLogger(__name__)


class SessionState(str, Enum):
    """session 状态。"""

    READY = "ready"
    AWAITING = "awaiting"
    TERMINATED = "terminated"


class ProcessHandle(Protocol):
    """session 对子进程句柄的最小依赖（便于用内存实现替换）。"""

    @property
    def pid(self) -> int:
        ...

    def write(self, data: Union[bytes, str]) -> None:
        ...

    def close(self) -> None:
        ...


@dataclass
class _EvalRequest:
    """求值请求；code 为 None 表示只等待一次 prompt（启动握手），不写入子进程。"""

    code: Optional[str]
    reply: "Future[Optional[str]]" = field(default_factory=Future)


@dataclass(frozen=True)
class _QuitRequest:
    """退出请求（不等待在途响应）。"""


class _MailboxView:
    """收集器使用的 mailbox 视图：请求类消息推迟到 backlog，其余原样返回。"""

    def __init__(self, mailbox: "queue.Queue[object]", backlog: Deque[object]) -> None:
        self._mailbox = mailbox
        self._backlog = backlog

    def get(self, block: bool = True, timeout: Optional[float] = None) -> object:
        deadline = None if timeout is None else time.monotonic() + timeout
        while True:
            remaining = None if deadline is None else deadline - time.monotonic()
            if remaining is not None and remaining <= 0:
                raise queue.Empty
            msg = self._mailbox.get(block, remaining)
            if isinstance(msg, (_EvalRequest, _QuitRequest)):
                self._backlog.append(msg)
                continue
            return msg


class FsiSession:
    """
    一个存活的 F# Interactive 子进程 + 其驱动状态。

    说明：
    - `evaluate()` 可以在任意线程调用；多个调用方会被 mailbox 串行化；
    - 所有错误都会终止 session（没有重同步协议），之后的调用 fail-fast 抛 `SessionClosedError`；
    - 子进程正常退出（status 0）与 `#quit` 都是“正常关闭”，`evaluate()` 返回 None 而不是抛错。
    """

    def __init__(
        self,
        *,
        handle: ProcessHandle,
        mailbox: "queue.Queue[object]",
        timeout_sec: float = 10.0,
        sentinel: str = PROMPT_SENTINEL,
        terminator: str = STATEMENT_TERMINATOR,
        quit_command: str = QUIT_COMMAND,
    ) -> None:
        """
        创建 session 并启动 actor 线程（通常通过 `start()` 创建）。

        参数：
        - handle：子进程句柄（其事件必须投递到 `mailbox`）
        - mailbox：actor 消息队列
        - timeout_sec：单次求值的无输出超时（秒）
        - sentinel / terminator / quit_command：线路协议常量
        """

        if timeout_sec <= 0:
            raise ValueError("timeout_sec must be > 0")

        self._handle = handle
        self._mailbox = mailbox
        self._backlog: Deque[object] = deque()
        self._view = _MailboxView(mailbox, self._backlog)
        self._timeout_sec = float(timeout_sec)
        self._sentinel = sentinel
        self._terminator = terminator
        self._quit_command = quit_command

        self._state = SessionState.READY
        self._termination_error: Optional[FsiBridgeError] = None
        self._inflight: Optional[_EvalRequest] = None
        self._exit_status: Optional[int] = None

        self._post_lock = threading.Lock()
        self._stopped = False
        self._terminated = threading.Event()
        self._actor = threading.Thread(target=self._run, name=f"fsi-session-{handle.pid}", daemon=True)
        self._actor.start()

    @classmethod
    def start(cls, config: "Optional[FsiBridgeConfig]" = None, *, executable: Optional[str] = None) -> "FsiSession":
        """
        启动 F# Interactive 并返回处于 READY 状态的 session。

        参数：
        - config：配置（缺省加载内置默认配置）
        - executable：可选；显式可执行文件路径（优先于配置）

        异常：
        - SpawnError：可执行文件无法定位或启动
        - EvalTimeoutError / ProcessTerminatedError：启用 `wait_for_initial_prompt` 且握手失败
        """

        from fsi_bridge.config.loader import load_default_config
        from fsi_bridge.locate import find_dotnet

        cfg = config or load_default_config()
        proc_cfg = cfg.process
        exe = find_dotnet(proc_cfg.executable_name, explicit=(executable or proc_cfg.executable))

        mailbox: "queue.Queue[object]" = queue.Queue()
        handle = ChildProcessHandle.spawn(
            [exe, *proc_cfg.args],
            cwd=(Path(proc_cfg.cwd) if proc_cfg.cwd else None),
            env=proc_cfg.env,
            events=mailbox,
            read_chunk_bytes=proc_cfg.read_chunk_bytes,
            terminate_grace_sec=proc_cfg.terminate_grace_sec,
        )
        try:
            session = cls(
                handle=handle,
                mailbox=mailbox,
                timeout_sec=cfg.protocol.timeout_sec,
                sentinel=cfg.protocol.sentinel,
                terminator=cfg.protocol.terminator,
                quit_command=cfg.protocol.quit_command,
            )
        except BaseException:
            handle.close()
            raise
        if cfg.protocol.wait_for_initial_prompt:
            try:
                session._submit(None)
            except FsiBridgeError:
                session.close()
                raise
        return session

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def is_alive(self) -> bool:
        return self._state is not SessionState.TERMINATED

    @property
    def termination_error(self) -> Optional[FsiBridgeError]:
        """导致 session 终止的错误；正常关闭时为 None。"""

        return self._termination_error

    @property
    def exit_status(self) -> Optional[int]:
        return self._exit_status

    @property
    def timeout_sec(self) -> float:
        return self._timeout_sec

    def evaluate(self, code: str) -> Optional[str]:
        """
        提交一段代码并返回去掉 prompt 与两侧空白的输出文本。

        返回：
        - str：响应文本
        - None：正常关闭（`#quit` 或子进程以 status 0 退出）

        异常：
        - EvalTimeoutError：超时窗口内无输出（session 终止）
        - ProcessTerminatedError：子进程异常退出（session 终止）
        - SessionIOError：无法写入子进程（session 终止）
        - SessionClosedError：session 已终止（不会接触任何进程）
        """

        return self._submit(str(code))

    def eval_values(self, code: str) -> "list[FsiValue]":
        """求值并把响应解析为 `val name: type = value` 绑定列表。"""

        from fsi_bridge.values import parse_values

        raw = self.evaluate(code)
        if raw is None:
            return []
        return parse_values(raw)

    def quit(self) -> None:
        """请求终止 session（不等待在途响应；资源由 actor teardown 释放）。"""

        self._post(_QuitRequest())

    def notify(self, message: Any) -> None:
        """向 session 投递一条任意通知（记录 debug 日志后忽略，不改变状态）。"""

        self._post(message)

    def wait(self, timeout: Optional[float] = None) -> bool:
        """等待 session 终止；返回是否已终止。"""

        return self._terminated.wait(timeout)

    def close(self, timeout_sec: Optional[float] = None) -> None:
        """
        关闭 session 并保证释放子进程资源（幂等）。

        参数：
        - timeout_sec：等待 actor 自行退出的时间（缺省为求值超时）；超时后强制关闭句柄
        """

        self.quit()
        wait_sec = self._timeout_sec if timeout_sec is None else float(timeout_sec)
        if not self._terminated.wait(wait_sec):
            logger.warning("Session actor did not stop within %.3fs; forcing close", wait_sec)
        self._handle.close()
        self._terminated.wait(wait_sec)

    def __enter__(self) -> "FsiSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def _post(self, message: object) -> bool:
        with self._post_lock:
            if self._stopped:
                return False
            self._mailbox.put(message)
            return True

    def _submit(self, code: Optional[str]) -> Optional[str]:
        request = _EvalRequest(code=code)
        if self._state is SessionState.TERMINATED or not self._post(request):
            raise self._closed_error()
        return request.reply.result()

    def _closed_error(self) -> SessionClosedError:
        cause = self._termination_error
        err = SessionClosedError(
            "Session is terminated.",
            details={"reason": (cause.code if cause is not None else "closed"), "exit_status": self._exit_status},
        )
        err.__cause__ = cause
        return err

    def _run(self) -> None:
        """actor 主循环：READY 时逐条处理 backlog/mailbox，直到 TERMINATED。"""

        try:
            while self._state is not SessionState.TERMINATED:
                msg = self._backlog.popleft() if self._backlog else self._mailbox.get()
                self._dispatch(msg)
        except Exception as exc:
            logger.exception("Session actor crashed")
            self._terminate(FsiBridgeError(f"Session actor crashed: {exc}", code="SESSION_CRASHED"))
            inflight = self._inflight
            if inflight is not None and not inflight.reply.done():
                inflight.reply.set_exception(self._closed_error())
        finally:
            self._teardown()

    def _dispatch(self, msg: object) -> None:
        if isinstance(msg, _EvalRequest):
            self._handle_eval(msg)
        elif isinstance(msg, _QuitRequest):
            logger.debug("Quit requested")
            self._terminate(None)
        elif isinstance(msg, ExitEvent):
            self._exit_status = msg.status
            if msg.status == 0:
                logger.info("Child process exited normally")
                self._terminate(None)
            else:
                logger.warning("Child process exited with status %s while idle", msg.status)
                self._terminate(
                    ProcessTerminatedError("Child process exited while idle.", exit_status=msg.status)
                )
        elif isinstance(msg, StreamClosedEvent):
            logger.warning("Child output stream closed while idle (%s)", msg.reason)
            self._terminate(ProcessTerminatedError("Child output stream closed.", details={"reason": msg.reason}))
        elif isinstance(msg, ChunkEvent):
            logger.debug("Ignoring unsolicited output: %r", msg.text)
        else:
            logger.debug("Ignoring: %r", msg)

    def _handle_eval(self, request: _EvalRequest) -> None:
        reply = request.reply
        if not reply.set_running_or_notify_cancel():
            return
        self._inflight = request

        if request.code is not None and is_quit_command(request.code, quit_command=self._quit_command):
            self._terminate(None)
            reply.set_result(None)
            return

        if request.code is not None:
            try:
                self._handle.write(normalize_command(request.code, terminator=self._terminator))
            except SessionIOError as exc:
                self._terminate(exc)
                reply.set_exception(exc)
                return

        self._state = SessionState.AWAITING
        result = collect_response(self._view, sentinel=self._sentinel, timeout_sec=self._timeout_sec)

        if result.kind is CollectKind.RESPONSE:
            self._state = SessionState.READY
            reply.set_result(result.response)
        elif result.kind is CollectKind.CLEAN_EXIT:
            self._exit_status = 0
            logger.info("Child process exited normally during evaluation")
            self._terminate(None)
            reply.set_result(None)
        elif result.kind is CollectKind.TIMEOUT:
            err: FsiBridgeError = EvalTimeoutError(
                f"No response within {self._timeout_sec}s.", details={"timeout_sec": self._timeout_sec}
            )
            self._terminate(err)
            reply.set_exception(err)
        else:
            self._exit_status = result.exit_status
            err = ProcessTerminatedError("Child process terminated during evaluation.", exit_status=result.exit_status)
            self._terminate(err)
            reply.set_exception(err)

    def _terminate(self, error: Optional[FsiBridgeError]) -> None:
        if self._state is SessionState.TERMINATED:
            return
        self._termination_error = error
        self._state = SessionState.TERMINATED

    def _teardown(self) -> None:
        """唯一的收敛点：关闭句柄，拒绝并清空剩余请求。"""

        self._state = SessionState.TERMINATED
        with self._post_lock:
            self._stopped = True
        try:
            self._handle.close()
        finally:
            pending: list[object] = list(self._backlog)
            self._backlog.clear()
            while True:
                try:
                    pending.append(self._mailbox.get_nowait())
                except queue.Empty:
                    break
            for msg in pending:
                if isinstance(msg, _EvalRequest) and msg.reply.set_running_or_notify_cancel():
                    msg.reply.set_exception(self._closed_error())
            self._terminated.set()
            logger.info("Session terminated (reason=%s)", self._termination_error.code if self._termination_error else "closed")
