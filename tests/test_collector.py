from __future__ import annotations

import queue
import threading
import time
from typing import Iterable

import pytest

from fsi_bridge.core.collector import CollectKind, collect_response, strip_sentinel
from fsi_bridge.core.process import ChunkEvent, ExitEvent, StreamClosedEvent


def _source(events: Iterable[object]) -> "queue.Queue[object]":
    q: "queue.Queue[object]" = queue.Queue()
    for ev in events:
        q.put(ev)
    return q


def _chunks(*texts: str) -> "queue.Queue[object]":
    return _source(ChunkEvent(t) for t in texts)


def test_collect_concatenates_chunks_in_order() -> None:
    r = collect_response(_chunks("partial", "output", "> "), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.RESPONSE
    assert r.response == "partialoutput"


def test_collect_trims_sentinel_and_whitespace() -> None:
    r = collect_response(_chunks("5", "\n> "), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.RESPONSE
    assert r.response == "5"


def test_collect_strips_exactly_one_sentinel() -> None:
    r = collect_response(_chunks("> > "), sentinel="> ", timeout_sec=1.0)
    assert r.response == ">"
    assert strip_sentinel("x> > ", "> ") == "x>"


def test_collect_only_checks_latest_chunk() -> None:
    """输出中间出现的 sentinel 子串不会提前结束收集。"""

    q = _chunks("a> ", "b", "\n> ")
    r = collect_response(q, sentinel="> ", timeout_sec=1.0)
    # 第一个块已以 sentinel 结尾：在该块处结束，后续块留在队列中
    assert r.response == "a"
    assert q.qsize() == 2

    r2 = collect_response(_chunks("x > y", "\n> "), sentinel="> ", timeout_sec=1.0)
    assert r2.response == "x > y"


def test_collect_sentinel_split_across_chunks_times_out() -> None:
    """已知边界：sentinel 被拆到两个块中时不会被识别。"""

    r = collect_response(_chunks("5\n>", " "), sentinel="> ", timeout_sec=0.2)
    assert r.kind is CollectKind.TIMEOUT


def test_collect_timeout_without_events() -> None:
    started = time.monotonic()
    r = collect_response(_source([]), sentinel="> ", timeout_sec=0.2)
    assert r.kind is CollectKind.TIMEOUT
    assert r.response is None
    assert time.monotonic() - started >= 0.2


def test_collect_timeout_is_measured_from_last_chunk() -> None:
    q: "queue.Queue[object]" = queue.Queue()

    def _feed() -> None:
        for i in range(5):
            time.sleep(0.08)
            q.put(ChunkEvent(str(i)))
        q.put(ChunkEvent("\n> "))

    t = threading.Thread(target=_feed)
    t.start()
    r = collect_response(q, sentinel="> ", timeout_sec=0.3)
    t.join()
    assert r.kind is CollectKind.RESPONSE
    assert r.response == "01234"


def test_collect_ignores_unrelated_events_without_extending_deadline() -> None:
    r = collect_response(_source([("control", "sigwinch"), ChunkEvent("1"), {"x": 1}, ChunkEvent("> ")]), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.RESPONSE
    assert r.response == "1"

    r2 = collect_response(_source([("control", "noise")]), sentinel="> ", timeout_sec=0.2)
    assert r2.kind is CollectKind.TIMEOUT


def test_collect_clean_exit_yields_no_response() -> None:
    r = collect_response(_source([ChunkEvent("partial"), ExitEvent(0)]), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.CLEAN_EXIT
    assert r.response is None
    assert r.exit_status == 0


def test_collect_nonzero_exit_is_process_exited() -> None:
    r = collect_response(_source([ChunkEvent("boom"), ExitEvent(3)]), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.PROCESS_EXITED
    assert r.exit_status == 3


def test_collect_stream_closed_is_process_exited() -> None:
    r = collect_response(_source([StreamClosedEvent()]), sentinel="> ", timeout_sec=1.0)
    assert r.kind is CollectKind.PROCESS_EXITED
    assert r.exit_status is None


def test_collect_rejects_invalid_arguments() -> None:
    with pytest.raises(ValueError):
        collect_response(_source([]), sentinel="", timeout_sec=1.0)
    with pytest.raises(ValueError):
        collect_response(_source([]), sentinel="> ", timeout_sec=0)
