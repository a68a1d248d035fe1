"""
模拟 F# Interactive 的子进程（测试用；用 `sys.executable -u fake_fsi.py` 启动）。

协议：
- 从 stdin 逐行读取，直到累积内容以 `;;` 结尾才视为一条命令；
- 正常命令：回显命令文本，然后把 prompt `> ` 作为单独一次写出；
- 特殊命令用于制造崩溃 / 正常退出 / 挂起 / 分块输出等场景。
"""

from __future__ import annotations

import sys
import time

PROMPT = "> "


def _emit(text: str) -> None:
    sys.stdout.write(text)
    sys.stdout.flush()


def _respond(cmd: str, raw: str) -> None:
    if cmd == "crash":
        sys.exit(3)
    if cmd == "exit0":
        sys.exit(0)
    if cmd == "hang":
        time.sleep(60)
        return
    if cmd == "later-exit0":
        _emit("bye\n")
        _emit(PROMPT)
        time.sleep(0.2)
        sys.exit(0)
    if cmd == "later-crash":
        _emit(PROMPT)
        time.sleep(0.2)
        sys.exit(4)
    if cmd == "split":
        for part in ("partial", "output"):
            _emit(part)
            time.sleep(0.05)
        _emit("\n" + PROMPT)
        return
    if cmd == "wire":
        _emit(repr(raw) + "\n")
        _emit(PROMPT)
        return
    if cmd == "val-demo":
        _emit('val it: int = 2\nval s: string = "hi"\n')
        _emit(PROMPT)
        return
    _emit(cmd + "\n")
    _emit(PROMPT)


def main() -> int:
    if "--initial-prompt" in sys.argv[1:]:
        _emit(PROMPT)

    buf = ""
    while True:
        line = sys.stdin.readline()
        if not line:
            return 0
        buf += line
        if not buf.rstrip().endswith(";;"):
            continue
        raw, buf = buf, ""
        _respond(raw.rstrip()[:-2].strip(), raw)


if __name__ == "__main__":
    raise SystemExit(main())
