"""
原始响应 → 值绑定解析（边界协作者）。

F# Interactive 对每个求值结果打印形如：

    val it: int = 2
    val xs : int list = [1; 2; 3]
    val it: int list =
      [1; 2; 3; 4; 5; 6; 7; 8; 9; 10; ...]
    val f: x: int -> int

本模块只识别 `val` 绑定；其它行（诊断、类型定义等）被忽略或作为上一个值的续行。
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Any, List, Optional

_VAL_RE = re.compile(r"^val\s+(?:mutable\s+)?(?P<name>[^\s:]+)\s*:\s*(?P<rest>.*)$")
_EQ_RE = re.compile(r"\s=(?:\s|$)")
_INT_RE = re.compile(r"^-?\d+[yslLnuUI]*$")
_FLOAT_RE = re.compile(r"^-?(?:\d+\.\d*|\d*\.\d+|\d+)(?:[eE][+-]?\d+)?$")
_ESCAPE_RE = re.compile(r"\\(.)", re.DOTALL)
_ESCAPES = {"n": "\n", "t": "\t", "r": "\r", "0": "\0"}


@dataclass(frozen=True)
class FsiValue:
    """一个 `val` 绑定；函数签名等没有 `=` 的绑定 value 为 None。"""

    name: str
    type_name: str
    value: Optional[str]

    def to_python(self) -> Any:
        """
        尽力把简单字面量转换为 Python 值。

        规则：
        - `int`/`int64` 等整数 → int；`float` → float；`bool` → bool；
        - `string` → 去掉外层引号并处理常见转义；`unit` → None；
        - 其它类型原样返回文本。
        """

        text = self.value
        if text is None or self.type_name == "unit":
            return None
        if self.type_name == "bool" and text in ("true", "false"):
            return text == "true"
        if self.type_name == "string" and len(text) >= 2 and text[0] == text[-1] == '"':
            return _ESCAPE_RE.sub(lambda m: _ESCAPES.get(m.group(1), m.group(1)), text[1:-1])
        if _INT_RE.match(text) and self.type_name in {"int", "int8", "int16", "int32", "int64", "uint32", "uint64", "byte", "sbyte", "bigint"}:
            return int(re.sub(r"[yslLnuUI]+$", "", text))
        if self.type_name in {"float", "float32", "double", "single"} and _FLOAT_RE.match(text.rstrip("f")):
            return float(text.rstrip("f"))
        return text


def parse_values(raw: str) -> List[FsiValue]:
    """
    解析原始响应中的所有 `val` 绑定（保序）。

    参数：
    - raw：`FsiSession.evaluate()` 返回的文本
    """

    out: List[FsiValue] = []
    name: Optional[str] = None
    type_name = ""
    value_lines: List[str] = []
    has_value = False

    def _flush() -> None:
        if name is None:
            return
        value = "\n".join(value_lines).strip() if has_value else None
        out.append(FsiValue(name=name, type_name=type_name, value=value))

    for line in str(raw).splitlines():
        m = _VAL_RE.match(line.strip())
        if m:
            _flush()
            name = m.group("name")
            rest = m.group("rest")
            eq = _EQ_RE.search(rest)
            if eq is None:
                type_name, value_lines, has_value = rest.strip(), [], False
            else:
                type_name = rest[: eq.start()].strip()
                value_lines = [rest[eq.end() :].strip()]
                has_value = True
            continue
        if name is not None and has_value and line.strip():
            value_lines.append(line.strip())

    _flush()
    return out
