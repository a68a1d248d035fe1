"""
响应收集器：把原始事件流切分为以 prompt sentinel 结尾的离散响应。

算法要点：
- 每收到一个输出块就追加到累加器；
- 只检查“最近一次追加的块”是否以 sentinel 结尾（不检查整个缓冲区），
  避免输出中间出现类似 sentinel 的子串导致误判；依赖子进程把 prompt 作为最后一次写出；
- 命中后从累加文本尾部去掉恰好一个 sentinel，再去掉两侧空白；
- 超时从“最后一次观察到输出”开始计算；无关事件不刷新 deadline。

已知边界：sentinel 若被拆到两个块中，不会被识别（最终表现为超时）。
"""

from __future__ import annotations

import logging
import queue
import time
from dataclasses import dataclass
from enum import Enum
from typing import Optional, Protocol

from fsi_bridge.core.process import ChunkEvent, ExitEvent, StreamClosedEvent

logger = logging.getLogger(__name__)


class EventSource(Protocol):
    """事件来源（`queue.Queue` 兼容）：超时未取到事件时抛出 `queue.Empty`。"""

    def get(self, block: bool = True, timeout: Optional[float] = None) -> object:
        ...


class CollectKind(str, Enum):
    """一次收集的结局。"""

    RESPONSE = "response"
    TIMEOUT = "timeout"
    PROCESS_EXITED = "process_exited"
    CLEAN_EXIT = "clean_exit"


@dataclass(frozen=True)
class CollectResult:
    """收集结果（只有 RESPONSE 携带 response；退出类结局携带 exit_status）。"""

    kind: CollectKind
    response: Optional[str] = None
    exit_status: Optional[int] = None


def strip_sentinel(text: str, sentinel: str) -> str:
    """去掉恰好一个尾部 sentinel，然后去掉两侧空白。"""

    if sentinel and text.endswith(sentinel):
        text = text[: -len(sentinel)]
    return text.strip()


def collect_response(source: EventSource, *, sentinel: str, timeout_sec: float) -> CollectResult:
    """
    从事件来源持续读取，直到命中 sentinel / 超时 / 子进程退出。

    参数：
    - source：事件来源（`get(timeout=...)`）
    - sentinel：prompt 标记（例如 `> `）
    - timeout_sec：无输出活动的最长等待（秒）
    """

    if not sentinel:
        raise ValueError("sentinel must not be empty")
    if timeout_sec <= 0:
        raise ValueError("timeout_sec must be > 0")

    parts: list[str] = []
    deadline = time.monotonic() + timeout_sec

    while True:
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            logger.warning("No output within %.3fs; giving up on the pending response", timeout_sec)
            return CollectResult(kind=CollectKind.TIMEOUT)
        try:
            event = source.get(timeout=remaining)
        except queue.Empty:
            continue

        if isinstance(event, ChunkEvent):
            logger.debug("Received chunk: %r", event.text)
            parts.append(event.text)
            deadline = time.monotonic() + timeout_sec
            if event.text.endswith(sentinel):
                return CollectResult(kind=CollectKind.RESPONSE, response=strip_sentinel("".join(parts), sentinel))
            continue

        if isinstance(event, ExitEvent):
            if event.status == 0:
                return CollectResult(kind=CollectKind.CLEAN_EXIT, exit_status=0)
            return CollectResult(kind=CollectKind.PROCESS_EXITED, exit_status=event.status)

        if isinstance(event, StreamClosedEvent):
            return CollectResult(kind=CollectKind.PROCESS_EXITED)

        logger.debug("Ignoring: %r", event)
