"""
UTF-8 stdio 工具（CLI 入口用）。

子进程以 `--utf8output` 启动，响应里可能包含非 ASCII 字符；
在 `C` locale 等环境下 stdout 默认编码可能是 ASCII，打印时会触发 `UnicodeEncodeError`。
入口应尽早调用（在 argparse/help 或任何 print 之前）。
"""

from __future__ import annotations

import sys


def ensure_utf8_stdio() -> None:
    """best-effort 将 stdout/stderr reconfigure 为 UTF-8（`errors="replace"`）；不支持的流直接跳过。"""

    for stream in (sys.stdout, sys.stderr):
        reconfigure = getattr(stream, "reconfigure", None)
        if not callable(reconfigure):
            continue
        try:
            reconfigure(encoding="utf-8", errors="replace")
        except (ValueError, OSError):
            continue
