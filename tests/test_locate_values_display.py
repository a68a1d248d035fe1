from __future__ import annotations

import io
import stat
import sys
from pathlib import Path
from typing import List, Optional

import pytest

from fsi_bridge.core.errors import SpawnError
from fsi_bridge.display import add_gutter, print_result
from fsi_bridge.locate import find_dotnet
from fsi_bridge.values import FsiValue, parse_values


def test_find_dotnet_explicit_path() -> None:
    assert find_dotnet(explicit=sys.executable) == str(Path(sys.executable).absolute())


def test_find_dotnet_explicit_path_not_runnable(tmp_path: Path) -> None:
    p = tmp_path / "dotnet"
    p.write_text("not executable", encoding="utf-8")
    with pytest.raises(SpawnError) as ei:
        find_dotnet(explicit=str(p))
    assert ei.value.code == "EXECUTABLE_NOT_FOUND"


def test_find_dotnet_on_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    exe = tmp_path / "dotnet"
    exe.write_text("#!/bin/sh\nexit 0\n", encoding="utf-8")
    exe.chmod(exe.stat().st_mode | stat.S_IXUSR)
    monkeypatch.setenv("PATH", str(tmp_path))
    assert find_dotnet() == str(exe)


def test_find_dotnet_missing_from_path(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("PATH", str(tmp_path))
    with pytest.raises(SpawnError) as ei:
        find_dotnet("dotnet")
    assert "Could not locate dotnet in the path." in str(ei.value)


def test_parse_values_single_line_bindings() -> None:
    raw = 'val it: int = 2\nval s : string = "a \\"b\\""\nval ok: bool = true\nval f: float = 1.5'
    values = parse_values(raw)
    assert [v.name for v in values] == ["it", "s", "ok", "f"]
    assert [v.to_python() for v in values] == [2, 'a "b"', True, 1.5]

    # 转义单遍解码：`\\n` 是反斜杠 + n，不是换行
    escaped = parse_values('val it: string = "a\\\\n\\tb\\n"')
    assert escaped[0].to_python() == "a\\n\tb\n"


def test_parse_values_multiline_and_signatures() -> None:
    raw = "\n".join(
        [
            "val it: int list =",
            "  [1; 2; 3; 4; 5; 6; 7; 8; 9; 10; 11; 12; 13; 14; 15; 16; 17; 18;",
            "   19; 20; ...]",
            "val add: a: int -> b: int -> int",
            "val u: unit = ()",
        ]
    )
    values = parse_values(raw)
    assert values[0] == FsiValue(
        name="it",
        type_name="int list",
        value="[1; 2; 3; 4; 5; 6; 7; 8; 9; 10; 11; 12; 13; 14; 15; 16; 17; 18;\n19; 20; ...]",
    )
    assert values[1] == FsiValue(name="add", type_name="a: int -> b: int -> int", value=None)
    assert values[2].to_python() is None


def test_parse_values_ignores_non_binding_output() -> None:
    assert parse_values("hello\nworld") == []
    assert parse_values("") == []
    values = parse_values("printed line\nval it: int64 = 42L")
    assert values[0].to_python() == 42


def test_add_gutter_plain_and_colored() -> None:
    assert add_gutter("a\nb", color=False) == "\nF#: a\nF#: b"
    colored = add_gutter("x")
    assert colored.startswith("\n\x1b[46m\x1b[37mF#:")
    assert colored.endswith(" x")


class _StubSession:
    def __init__(self, result: Optional[str]) -> None:
        self.result = result
        self.codes: List[str] = []

    def evaluate(self, code: str) -> Optional[str]:
        self.codes.append(code)
        return self.result


def test_print_result_writes_gutter() -> None:
    buf = io.StringIO()
    out = print_result(_StubSession("  3  "), "1+2", file=buf, color=False)  # type: ignore[arg-type]
    assert out == "  3  "
    assert buf.getvalue() == "\nF#: 3\n"


def test_print_result_normal_closure_prints_nothing() -> None:
    buf = io.StringIO()
    assert print_result(_StubSession(None), "#quit", file=buf) is None  # type: ignore[arg-type]
    assert buf.getvalue() == ""
