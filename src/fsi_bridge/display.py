"""
控制台展示：给多行输出加上 `F#:` 行首标记。

只做外观装饰，不改变输出内容。
"""

from __future__ import annotations

import sys
from typing import Optional, TextIO

from fsi_bridge.core.session import FsiSession

_CYAN_BACKGROUND = "\x1b[46m"
_WHITE = "\x1b[37m"
_DEFAULT_BACKGROUND = "\x1b[49m"
_DEFAULT_COLOR = "\x1b[39m"


def add_gutter(text: str, *, label: str = "F#:", color: bool = True) -> str:
    """
    在每一行前加上标记（输出以换行开头，与控制台上一行隔开）。

    参数：
    - text：多行文本
    - label：标记文字
    - color：是否使用 ANSI 颜色（青色背景 + 白字）
    """

    if color:
        gutter = f"\n{_CYAN_BACKGROUND}{_WHITE}{label}{_DEFAULT_BACKGROUND}{_DEFAULT_COLOR} "
    else:
        gutter = f"\n{label} "
    return ("\n" + text).replace("\n", gutter)


def print_result(
    session: FsiSession,
    code: str,
    *,
    file: Optional[TextIO] = None,
    label: str = "F#:",
    color: bool = True,
) -> Optional[str]:
    """
    求值并把结果带标记打印出来；返回原始响应（正常关闭时为 None，不打印）。
    """

    result = session.evaluate(code)
    if result is None:
        return None
    print(add_gutter(result.strip(), label=label, color=color), file=(file or sys.stdout))
    return result
