"""
F# Interactive 线路协议常量与命令规范化。

约定：
- 每条命令以两字符语句终结符 `;;` 加换行结尾；
- 子进程完成求值后以两字符 prompt `> ` 作为最近一次输出块的结尾；
- `#quit` 为保留命令，永远不会转发给子进程。
"""

from __future__ import annotations

STATEMENT_TERMINATOR = ";;"
PROMPT_SENTINEL = "> "
QUIT_COMMAND = "#quit"


def normalize_command(code: str, *, terminator: str = STATEMENT_TERMINATOR) -> str:
    """
    把调用方提交的代码规范化为“语法上已闭合”的一条命令。

    规则：
    - 去掉尾部空白；
    - 若以终结符结尾，去掉恰好一个；
    - 追加终结符与换行。

    参数：
    - code：调用方代码
    - terminator：语句终结符（默认 `;;`）
    """

    if not terminator:
        raise ValueError("terminator must not be empty")

    text = str(code).rstrip()
    if text.endswith(terminator):
        text = text[: -len(terminator)]
    return f"{text}{terminator}\n"


def is_quit_command(code: str, *, quit_command: str = QUIT_COMMAND) -> bool:
    """判断是否为保留的退出命令（忽略两侧空白）。"""

    return str(code).strip() == quit_command
