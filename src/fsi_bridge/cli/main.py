"""
fsi-bridge CLI（eval/repl）。

约束：
- 使用 argparse（不引入第三方 CLI 依赖）
- `eval` 的 stdout 输出单个机器可读 JSON；失败时也输出 JSON

退出码：
- 0：成功（含正常关闭）
- 2：配置错误
- 3：启动失败（可执行文件不存在/无法启动）
- 4：求值超时
- 5：子进程终止 / 写入失败 / session 已关闭
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from pathlib import Path
from typing import Any, Dict, Optional, Sequence

from pydantic import ValidationError

from fsi_bridge.bootstrap import ResolvedConfig, resolve_config
from fsi_bridge.cli.utf8 import ensure_utf8_stdio
from fsi_bridge.config.loader import FsiBridgeConfig
from fsi_bridge.core.errors import EvalTimeoutError, FsiBridgeError, FsiIssue, SpawnError
from fsi_bridge.core.session import FsiSession
from fsi_bridge.display import print_result
from fsi_bridge.values import parse_values

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_CONFIG = 2
EXIT_SPAWN = 3
EXIT_TIMEOUT = 4
EXIT_TERMINATED = 5


def _dump_json_to_stdout(obj: Dict[str, Any], *, pretty: bool) -> None:
    """
    将 dict 输出为 JSON 到 stdout（末尾包含换行）。

    参数：
    - obj：待输出对象（必须可 JSON dumps）
    - pretty：是否启用 pretty-print（indent=2）
    """

    if pretty:
        text = json.dumps(obj, ensure_ascii=False, indent=2)
    else:
        text = json.dumps(obj, ensure_ascii=False, separators=(",", ":"))
    print(text)


def _exit_code_for(exc: FsiBridgeError) -> int:
    if isinstance(exc, SpawnError):
        return EXIT_SPAWN
    if isinstance(exc, EvalTimeoutError):
        return EXIT_TIMEOUT
    return EXIT_TERMINATED


def _resolve(args: argparse.Namespace) -> tuple[Optional[FsiBridgeConfig], Optional[FsiIssue]]:
    """
    解析配置并应用命令行覆盖。

    返回：
    - (config, issue)：失败时 config 为 None，issue 为错误信息（英文结构化）
    """

    overlays = [Path(p).expanduser() for p in (args.config or [])]
    try:
        resolved: ResolvedConfig = resolve_config(overlay_paths=overlays)
    except FileNotFoundError as exc:
        return None, FsiIssue(code="CLI_CONFIG_NOT_FOUND", message="Config overlay not found.", details={"reason": str(exc)})
    except ValidationError as exc:
        return None, FsiIssue(
            code="CLI_CONFIG_INVALID",
            message="Config validation failed.",
            details={"errors": [{"loc": list(e["loc"]), "msg": e["msg"]} for e in exc.errors()]},
        )
    except ValueError as exc:
        return None, FsiIssue(code="CLI_CONFIG_INVALID", message="Config load failed.", details={"reason": str(exc)})

    cfg = resolved.config
    if args.timeout_sec is not None:
        if args.timeout_sec <= 0:
            return None, FsiIssue(
                code="CLI_TIMEOUT_INVALID", message="Timeout must be > 0.", details={"timeout_sec": args.timeout_sec}
            )
        cfg = cfg.model_copy(update={"protocol": cfg.protocol.model_copy(update={"timeout_sec": args.timeout_sec})})
    logger.debug("Resolved config sources: %r", resolved.sources)
    return cfg, None


def _handle_eval(args: argparse.Namespace) -> int:
    """`eval`：启动 session、求值一次、输出 JSON、关闭 session。"""

    pretty = bool(args.pretty)
    cfg, issue = _resolve(args)
    if cfg is None:
        _dump_json_to_stdout({"ok": False, "error": issue.to_dict() if issue else None}, pretty=pretty)
        return EXIT_CONFIG

    try:
        with FsiSession.start(cfg) as session:
            response = session.evaluate(args.code)
    except FsiBridgeError as exc:
        _dump_json_to_stdout({"ok": False, "error": exc.to_issue().to_dict()}, pretty=pretty)
        return _exit_code_for(exc)

    payload: Dict[str, Any] = {"ok": True, "response": response, "closed": response is None}
    if args.values:
        payload["values"] = [
            {"name": v.name, "type": v.type_name, "value": v.value} for v in parse_values(response or "")
        ]
    _dump_json_to_stdout(payload, pretty=pretty)
    return EXIT_OK


def _handle_repl(args: argparse.Namespace) -> int:
    """`repl`：逐行读取 stdin 并打印带标记的结果；`#quit` 或 EOF 结束。"""

    cfg, issue = _resolve(args)
    if cfg is None:
        print(str(issue.message if issue else "config error"), file=sys.stderr)
        return EXIT_CONFIG

    color = bool(cfg.display.color) and not bool(args.no_color)
    try:
        with FsiSession.start(cfg) as session:
            for line in sys.stdin:
                if not line.strip():
                    continue
                result = print_result(session, line, label=cfg.display.gutter_label, color=color)
                if result is None:
                    break
    except FsiBridgeError as exc:
        print(str(exc), file=sys.stderr)
        return _exit_code_for(exc)
    return EXIT_OK


def build_parser() -> argparse.ArgumentParser:
    """构建 CLI parser。"""

    parser = argparse.ArgumentParser(prog="fsi-bridge", description="Drive F# Interactive (dotnet fsi) from Python.")
    parser.add_argument(
        "--log-level",
        default="WARNING",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (stderr).",
    )
    root_sub = parser.add_subparsers(dest="command", required=True)

    def _add_common(p: argparse.ArgumentParser) -> None:
        p.add_argument("--config", action="append", default=[], help="YAML overlay path (repeatable).")
        p.add_argument("--timeout-sec", type=float, default=None, help="Override protocol.timeout_sec.")

    eval_p = root_sub.add_parser("eval", help="Evaluate one code fragment and print JSON")
    eval_p.add_argument("code", help="F# code (the trailing ';;' is optional)")
    eval_p.add_argument("--values", action="store_true", help="Also parse `val` bindings from the response.")
    eval_p.add_argument("--pretty", action="store_true", help="Pretty-print JSON output.")
    _add_common(eval_p)

    repl_p = root_sub.add_parser("repl", help="Interactive loop over stdin")
    repl_p.add_argument("--no-color", action="store_true", help="Disable ANSI colors in the gutter.")
    _add_common(repl_p)

    return parser


def main(argv: Optional[Sequence[str]] = None) -> int:
    """
    CLI 入口。

    返回：
    - int：exit code（不会直接 sys.exit，便于测试）。
    """

    ensure_utf8_stdio()
    parser = build_parser()
    args = parser.parse_args(list(argv) if argv is not None else None)
    logging.basicConfig(level=getattr(logging, args.log_level), format="%(levelname)s %(name)s: %(message)s")

    if args.command == "eval":
        return _handle_eval(args)
    if args.command == "repl":
        return _handle_repl(args)

    parser.error(f"unknown command: {args.command}")
    return EXIT_CONFIG


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
