from __future__ import annotations

import pytest

from fsi_bridge.core.framing import is_quit_command, normalize_command


@pytest.mark.parametrize(
    ("code", "expected"),
    [
        ("1+1", "1+1;;\n"),
        ("1+1;;", "1+1;;\n"),
        ("1+1;;  \n\t", "1+1;;\n"),
        ("let x = 1\n", "let x = 1;;\n"),
        ("", ";;\n"),
        ("a;;;;", "a;;;;\n"),
    ],
)
def test_normalize_command(code: str, expected: str) -> None:
    assert normalize_command(code) == expected


@pytest.mark.parametrize("code", ["1+1", "let f x = x * 2", "printfn \"hi\"", "[1; 2; 3]"])
def test_normalize_command_never_doubles_terminator(code: str) -> None:
    once = normalize_command(code)
    twice = normalize_command(once)
    assert once.endswith(";;\n")
    assert not once.endswith(";;;;\n")
    assert twice == once


def test_normalize_command_custom_terminator() -> None:
    assert normalize_command("x END", terminator="END") == "x END\n"
    with pytest.raises(ValueError):
        normalize_command("x", terminator="")


def test_is_quit_command() -> None:
    assert is_quit_command("#quit") is True
    assert is_quit_command("  #quit\n") is True
    assert is_quit_command("#quit;;") is False
    assert is_quit_command("exit", quit_command="exit") is True
