"""Echo agent -- 本地 stream-json 替身 CLI

接受与外部 agent 相同的参数，按 stream-json 协议逐行输出：
system/init -> assistant -> result。用于 echo 模式与集成测试。

prompt 中的指令（可组合）：
  [sleep=N]     输出 init 后等待 N 秒
  [fail=N]      不输出 result，以退出码 N 结束
  [noresult]    不输出 result，以退出码 0 结束
  [ask]         result 文本以提问结尾
  [raw]         额外输出一行非 JSON 文本
  [permission]  输出一条 permission_request 事件
  [rate]        输出一条 rate_limit_event
  [chunked]     assistant 行分两次写出，中间停顿
  [silent]      不输出任何内容（配合 sleep 测试无输出提示）
"""

import argparse
import json
import re
import sys
import time
from typing import Any

from ulid import ULID

_DIRECTIVE_RE = re.compile(
    r"\[(sleep|fail)=([0-9.]+)\]"
    r"|\[(noresult|ask|raw|permission|rate|chunked|silent)\]"
)

ASK_SUFFIX = "Which approach should I take?"
ECHO_COST_USD = 0.0001


def parse_directives(prompt: str) -> tuple[str, dict[str, Any]]:
    """拆出 prompt 中的指令，返回（去指令后的文本，指令表）"""
    directives: dict[str, Any] = {}
    for match in _DIRECTIVE_RE.finditer(prompt):
        if match.group(1):
            directives[match.group(1)] = float(match.group(2))
        else:
            directives[match.group(3)] = True
    text = _DIRECTIVE_RE.sub("", prompt).strip()
    return text, directives


def _emit(event: dict[str, Any]) -> None:
    print(json.dumps(event, ensure_ascii=False), flush=True)


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(prog="agentdeck-echo-agent")
    parser.add_argument("-p", "--print", dest="prompt", required=True)
    parser.add_argument("--output-format", default="stream-json")
    parser.add_argument("--verbose", action="store_true")
    parser.add_argument("--model", default="echo")
    parser.add_argument("--resume", default=None)
    parser.add_argument("--dangerously-skip-permissions", action="store_true")
    args, _ = parser.parse_known_args(argv)

    started = time.monotonic()
    text, directives = parse_directives(args.prompt)
    session_id = args.resume or str(ULID())
    silent = directives.get("silent", False)

    if not silent:
        _emit(
            {
                "type": "system",
                "subtype": "init",
                "session_id": session_id,
                "model": args.model,
                "permission_mode": (
                    "bypassPermissions" if args.dangerously_skip_permissions else "default"
                ),
            }
        )

    if "sleep" in directives:
        time.sleep(directives["sleep"])

    if silent:
        return int(directives.get("fail", 0))

    if directives.get("rate"):
        _emit(
            {
                "type": "rate_limit_event",
                "rate_limit_info": {
                    "rateLimitType": "five_hour",
                    "status": "allowed",
                    "resetsAt": int(time.time()) + 3600,
                    "utilization": 0.42,
                },
            }
        )

    if directives.get("permission"):
        _emit(
            {
                "type": "permission_request",
                "tool": "Bash",
                "text": "Allow Bash tool to run `ls`?",
            }
        )

    if directives.get("raw"):
        print("plain text output", flush=True)

    reply = f"Echo: {text}"
    if directives.get("ask"):
        reply = f"{reply}\n\n{ASK_SUFFIX}"

    assistant = json.dumps(
        {
            "type": "assistant",
            "message": {
                "role": "assistant",
                "model": args.model,
                "content": [{"type": "text", "text": reply}],
            },
            "session_id": session_id,
        },
        ensure_ascii=False,
    )
    if directives.get("chunked"):
        half = len(assistant) // 2
        sys.stdout.write(assistant[:half])
        sys.stdout.flush()
        time.sleep(0.5)
        sys.stdout.write(assistant[half:] + "\n")
        sys.stdout.flush()
    else:
        print(assistant, flush=True)

    if "fail" in directives:
        return int(directives["fail"])
    if directives.get("noresult"):
        return 0

    _emit(
        {
            "type": "result",
            "subtype": "success",
            "is_error": False,
            "result": reply,
            "session_id": session_id,
            "cost_usd": ECHO_COST_USD,
            "duration_ms": int((time.monotonic() - started) * 1000),
            "num_turns": 1,
        }
    )
    return 0


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
