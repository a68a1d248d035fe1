"""
子进程句柄（pipe-backed）。

职责：
- 启动外部交互式进程（stdin/stdout 为管道，stderr 合流到 stdout）；
- 提供字节级写入原语；
- 由后台 reader 线程把输出块按产生顺序推入事件队列，并在流结束时推入“恰好一个”终止事件；
- `close()` 幂等：终止进程组、关闭管道、回收进程，资源只释放一次。

说明：
- 本实现面向 macOS/Linux（不考虑 Windows）。
- 子进程成为新的进程组 leader（start_new_session=True），终止时按进程组发送信号，避免子孙进程残留。
"""

from __future__ import annotations

import codecs
import logging
import os
import queue
import signal
import subprocess
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Optional, Sequence, Union

from fsi_bridge.core.errors import SessionIOError, SpawnError

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ChunkEvent:
    """一段已解码的输出文本（边界与逻辑响应无关）。"""

    text: str


@dataclass(frozen=True)
class ExitEvent:
    """子进程退出（输出已读到 EOF 且进程已回收）。"""

    status: int


@dataclass(frozen=True)
class StreamClosedEvent:
    """事件流在观察到退出码之前被显式关闭。"""

    reason: str = "closed"


ProcessEvent = Union[ChunkEvent, ExitEvent, StreamClosedEvent]


class ChildProcessHandle:
    """
    独占一个子进程的 I/O 与生命周期。

    注意：
    - 事件队列可由调用方注入（例如 session 的 mailbox），使输出事件与控制消息在同一队列中按序到达；
    - 终止事件（`ExitEvent` / `StreamClosedEvent`）之后不会再有任何事件。
    """

    def __init__(
        self,
        *,
        proc: subprocess.Popen[bytes],
        argv: Sequence[str],
        events: "queue.Queue[object]",
        read_chunk_bytes: int = 4096,
        terminate_grace_sec: float = 2.0,
    ) -> None:
        """
        包装一个已启动的进程（通常通过 `spawn()` 创建）。

        参数：
        - proc：`subprocess.Popen` 对象（stdin/stdout 必须为管道）
        - argv：启动 argv（仅用于日志与排障）
        - events：事件队列
        - read_chunk_bytes：单次读取的最大字节数
        - terminate_grace_sec：SIGTERM 之后等待退出的宽限期（秒），超时后 SIGKILL
        """

        if read_chunk_bytes < 1:
            raise ValueError("read_chunk_bytes must be >= 1")

        self._proc = proc
        self._argv = [str(x) for x in argv]
        self._events = events
        self._read_chunk_bytes = int(read_chunk_bytes)
        self._terminate_grace_sec = float(terminate_grace_sec)

        self._lock = threading.Lock()
        self._ended = False
        self._closed = False
        self._decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        self._reader = threading.Thread(target=self._read_loop, name=f"fsi-reader-{proc.pid}", daemon=True)

    @classmethod
    def spawn(
        cls,
        argv: Sequence[str],
        *,
        cwd: Optional[Path] = None,
        env: Optional[Mapping[str, str]] = None,
        events: "Optional[queue.Queue[object]]" = None,
        read_chunk_bytes: int = 4096,
        terminate_grace_sec: float = 2.0,
    ) -> "ChildProcessHandle":
        """
        启动子进程并开始异步读取输出。

        参数：
        - argv：命令 argv（argv[0] 为可执行文件）
        - cwd：工作目录（None 表示继承）
        - env：环境变量（会覆盖父进程同名项）
        - events：可选；事件队列（缺省新建）

        异常：
        - SpawnError：可执行文件不存在或无法启动
        """

        if not argv:
            raise ValueError("argv must not be empty")

        merged_env = dict(os.environ)
        if env:
            merged_env.update({str(k): str(v) for k, v in env.items()})

        try:
            proc = subprocess.Popen(  # noqa: S603
                [str(x) for x in argv],
                cwd=(str(cwd) if cwd is not None else None),
                env=merged_env,
                stdin=subprocess.PIPE,
                stdout=subprocess.PIPE,
                stderr=subprocess.STDOUT,
                bufsize=0,
                close_fds=True,
                start_new_session=True,
            )
        except FileNotFoundError as exc:
            raise SpawnError(
                f"Executable not found: {argv[0]}",
                code="EXECUTABLE_NOT_FOUND",
                details={"argv": [str(x) for x in argv]},
            ) from exc
        except OSError as exc:
            raise SpawnError(
                "Failed to start process.",
                details={"argv": [str(x) for x in argv], "reason": str(exc)},
            ) from exc

        handle = cls(
            proc=proc,
            argv=argv,
            events=(events if events is not None else queue.Queue()),
            read_chunk_bytes=read_chunk_bytes,
            terminate_grace_sec=terminate_grace_sec,
        )
        handle._reader.start()
        logger.info("Spawned child process pid=%s argv=%r", proc.pid, handle._argv)
        return handle

    @property
    def pid(self) -> int:
        """子进程 pid。"""

        return int(self._proc.pid)

    @property
    def events(self) -> "queue.Queue[object]":
        """事件队列（ChunkEvent... 然后恰好一个终止事件）。"""

        return self._events

    @property
    def returncode(self) -> Optional[int]:
        return self._proc.poll()

    @property
    def closed(self) -> bool:
        return self._closed

    def write(self, data: Union[bytes, str]) -> None:
        """
        向子进程 stdin 写入完整数据。

        异常：
        - SessionIOError：句柄已关闭或管道已断开
        """

        payload = data.encode("utf-8") if isinstance(data, str) else bytes(data)
        stdin = self._proc.stdin
        if self._closed or stdin is None or stdin.closed:
            raise SessionIOError("Input stream is closed.", details={"pid": self.pid})

        view = memoryview(payload)
        try:
            while view:
                written = stdin.write(view)
                view = view[written or 0 :]
            stdin.flush()
        except (BrokenPipeError, ValueError, OSError) as exc:
            raise SessionIOError(
                "Failed to write to child process.",
                details={"pid": self.pid, "reason": str(exc)},
            ) from exc

    def close(self) -> None:
        """
        关闭句柄（幂等；任意线程可调用）。

        顺序：
        1) 推入 `StreamClosedEvent`（若流尚未结束）；
        2) 关闭 stdin，给子进程一次自行退出的机会；
        3) SIGTERM 进程组，宽限期后 SIGKILL，并回收进程；
        4) 等待 reader 线程结束后关闭 stdout。
        """

        with self._lock:
            if self._closed:
                return
            self._closed = True

        self._emit_terminal(StreamClosedEvent())
        logger.info("Closing child process pid=%s", self.pid)

        self._close_stream(self._proc.stdin)
        self._terminate()
        if self._reader.is_alive() and self._reader is not threading.current_thread():
            self._reader.join(timeout=self._terminate_grace_sec)
        self._close_stream(self._proc.stdout)

    def __enter__(self) -> "ChildProcessHandle":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:  # type: ignore[no-untyped-def]
        self.close()

    def _terminate(self) -> None:
        """终止并回收子进程（按进程组；已退出则只回收）。"""

        proc = self._proc
        try:
            proc.wait(timeout=min(0.2, self._terminate_grace_sec))
            return
        except subprocess.TimeoutExpired:
            pass

        self._signal_group(signal.SIGTERM)
        try:
            proc.wait(timeout=self._terminate_grace_sec)
            return
        except subprocess.TimeoutExpired:
            logger.warning("Child process pid=%s ignored SIGTERM; sending SIGKILL", self.pid)

        self._signal_group(signal.SIGKILL)
        proc.wait()

    def _signal_group(self, sig: int) -> None:
        try:
            os.killpg(self.pid, sig)
        except ProcessLookupError:
            return
        except PermissionError:
            self._proc.send_signal(sig)

    def _close_stream(self, stream) -> None:  # type: ignore[no-untyped-def]
        if stream is None:
            return
        try:
            stream.close()
        except OSError:
            logger.debug("Ignoring error while closing pipe of pid=%s", self.pid, exc_info=True)

    def _read_loop(self) -> None:
        """reader 线程：读取输出块直到 EOF，然后回收进程并推入 ExitEvent。"""

        stdout = self._proc.stdout
        if stdout is None:
            self._emit_terminal(StreamClosedEvent(reason="no stdout"))
            return
        fd = stdout.fileno()

        while True:
            try:
                data = os.read(fd, self._read_chunk_bytes)
            except OSError:
                # close() 已关闭管道
                self._emit_terminal(StreamClosedEvent())
                return
            if not data:
                break
            text = self._decoder.decode(data)
            if text:
                self._emit(ChunkEvent(text=text))

        tail = self._decoder.decode(b"", final=True)
        if tail:
            self._emit(ChunkEvent(text=tail))

        status = self._proc.wait()
        logger.debug("Child process pid=%s exited with status %s", self.pid, status)
        self._emit_terminal(ExitEvent(status=int(status)))

    def _emit(self, event: ChunkEvent) -> None:
        with self._lock:
            if self._ended:
                return
            self._events.put(event)

    def _emit_terminal(self, event: Union[ExitEvent, StreamClosedEvent]) -> None:
        with self._lock:
            if self._ended:
                return
            self._ended = True
            self._events.put(event)
