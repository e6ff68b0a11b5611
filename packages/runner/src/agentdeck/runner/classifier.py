"""事件分类器 -- 纯函数，无 I/O

判断单个 agent 事件是否需要人工输入、原始文本是否像权限确认提示，
以及任务最终结果文本是否以向用户提问结束。

模式表以模块级元组存放，扩展或替换时无需修改调度逻辑。
"""

import re
from typing import Any

HUMAN_INPUT_EVENT_TYPES: frozenset[str] = frozenset({"permission_request", "input_request"})

PERMISSION_PROMPT_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"do you want to", re.IGNORECASE),
    re.compile(r"allow.*tool", re.IGNORECASE),
    re.compile(r"permission", re.IGNORECASE),
    re.compile(r"\(y/n\)", re.IGNORECASE),
    re.compile(r"\[y/N\]", re.IGNORECASE),
    re.compile(r"approve", re.IGNORECASE),
)

# 结束语（礼貌性收尾），命中即视为非提问
POLITE_CLOSING_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"궁금한\s*점이\s*있으시면"),
    re.compile(r"도움이\s*필요하시면"),
    re.compile(r"다른\s*질문이\s*있으면"),
    re.compile(r"추가\s*질문이\s*있으시면"),
    re.compile(r"문의.*있으시면"),
    re.compile(r"필요한.*있으시면"),
    re.compile(r"if you have any questions", re.IGNORECASE),
    re.compile(r"feel free to ask", re.IGNORECASE),
    re.compile(r"let me know if you need", re.IGNORECASE),
    re.compile(r"don'?t hesitate to ask", re.IGNORECASE),
)

KOREAN_QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"할까요\s*\?"),
    re.compile(r"하시겠습니까\s*\?"),
    re.compile(r"선택해\s*주세요"),
    re.compile(r"선택해주세요"),
    re.compile(r"알려\s*주세요"),
    re.compile(r"알려주세요"),
    re.compile(r"진행할까요\s*\?"),
    re.compile(r"원하시나요\s*\?"),
    re.compile(r"괜찮을까요\s*\?"),
    re.compile(r"될까요\s*\?"),
    re.compile(r"드릴까요\s*\?"),
    re.compile(r"줄까요\s*\?"),
    re.compile(r"어떤.*좋을까요\s*\?"),
    re.compile(r"어떻게.*할까요\s*\?"),
    re.compile(r"맞을까요\s*\?"),
    re.compile(r"싶으신가요\s*\?"),
)

ENGLISH_QUESTION_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"\bshould I\b", re.IGNORECASE),
    re.compile(r"\bwould you like\b", re.IGNORECASE),
    re.compile(r"\bwhich (approach|option|method|way|one)\b", re.IGNORECASE),
    re.compile(r"\bdo you want\b", re.IGNORECASE),
    re.compile(r"\bplease (choose|select|pick|decide)\b", re.IGNORECASE),
    re.compile(r"\blet me know\b", re.IGNORECASE),
    re.compile(r"\bwhat would you prefer\b", re.IGNORECASE),
    re.compile(r"\bshall I\b", re.IGNORECASE),
    re.compile(r"\bwould you prefer\b", re.IGNORECASE),
)

_CODE_BLOCK_RE = re.compile(r"```[\s\S]*?```")


def _first_match(patterns: tuple[re.Pattern[str], ...], text: str) -> re.Pattern[str] | None:
    for pattern in patterns:
        if pattern.search(text):
            return pattern
    return None


def is_human_input_needed(event: dict[str, Any]) -> bool:
    """事件是否为显式的输入 / 权限请求"""
    event_type = event.get("type")
    if event_type in HUMAN_INPUT_EVENT_TYPES:
        return True
    return event_type == "system" and event.get("subtype") == "permission"


def looks_like_permission_prompt(text: str) -> bool:
    """非 JSON 文本是否像权限确认提示（仅在结构化解码失败时使用）"""
    return _first_match(PERMISSION_PROMPT_PATTERNS, text) is not None


def strip_code_blocks(text: str) -> str:
    """移除 ``` 围起的代码块，避免代码中的问号 / 注释造成误判"""
    return _CODE_BLOCK_RE.sub("", text)


def detect_question_in_result(text: str) -> bool:
    """任务最终结果文本是否以向用户提问结束

    顺序：先去代码块，再排除礼貌结束语，最后匹配韩 / 英提问模式。
    """
    if not text or not text.strip():
        return False

    stripped = strip_code_blocks(text)

    if _first_match(POLITE_CLOSING_PATTERNS, stripped) is not None:
        return False

    if _first_match(KOREAN_QUESTION_PATTERNS, stripped) is not None:
        return True

    return _first_match(ENGLISH_QUESTION_PATTERNS, stripped) is not None
