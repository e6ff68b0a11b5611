"""事件分类器单元测试

覆盖：人工输入事件判定、权限提示文本判定、结果提问检测（代码块剥离 / 礼貌结束语优先）。
"""

import pytest
from agentdeck.runner.classifier import (
    detect_question_in_result,
    is_human_input_needed,
    looks_like_permission_prompt,
    strip_code_blocks,
)


class TestHumanInputNeeded:
    @pytest.mark.parametrize(
        "event",
        [
            {"type": "permission_request", "tool": "Bash"},
            {"type": "input_request"},
            {"type": "system", "subtype": "permission"},
        ],
    )
    def test_input_requests(self, event):
        assert is_human_input_needed(event) is True

    @pytest.mark.parametrize(
        "event",
        [
            {"type": "assistant", "message": {}},
            {"type": "system", "subtype": "init"},
            {"type": "result", "subtype": "success"},
            {},
        ],
    )
    def test_regular_events(self, event):
        assert is_human_input_needed(event) is False


class TestPermissionPrompt:
    @pytest.mark.parametrize(
        "text",
        [
            "Do you want to proceed?",
            "Allow the Bash tool to run this command?",
            "Continue (y/n)",
            "Overwrite file? [y/N]",
            "Please approve this edit",
        ],
    )
    def test_prompt_like(self, text):
        assert looks_like_permission_prompt(text) is True

    def test_plain_output(self):
        assert looks_like_permission_prompt("Compiling 3 files") is False


class TestStripCodeBlocks:
    def test_removes_fenced_blocks(self):
        text = "before\n```python\nx = 1  # ok?\n```\nafter"
        stripped = strip_code_blocks(text)
        assert "x = 1" not in stripped
        assert "before" in stripped
        assert "after" in stripped

    def test_multiple_blocks(self):
        text = "```\na\n```\nmid\n```\nb\n```"
        assert strip_code_blocks(text).strip() == "mid"


class TestDetectQuestion:
    def test_code_block_then_korean_question(self):
        assert detect_question_in_result("```\nconst x=1;\n```\n이 방식으로 진행할까요?") is True

    def test_code_block_only(self):
        assert detect_question_in_result("```\nconst x=1;\n```") is False

    def test_question_inside_code_block_ignored(self):
        assert detect_question_in_result("Done.\n```\n// should I refactor?\n```") is False

    def test_polite_closing_takes_precedence(self):
        text = "작업이 완료되었습니다. 궁금한 점이 있으시면 말씀해주세요."
        assert detect_question_in_result(text) is False

    def test_polite_closing_beats_question(self):
        text = "Should I also update the docs? If you have any questions, feel free to ask."
        assert detect_question_in_result(text) is False

    @pytest.mark.parametrize(
        "text",
        [
            "I found two options. Which approach should I take?",
            "Would you like me to add tests as well?",
            "Please choose between A and B.",
            "Shall I continue with the migration?",
            "어떤 방법이 좋을까요?",
            "원하는 옵션을 선택해주세요",
        ],
    )
    def test_questions(self, text):
        assert detect_question_in_result(text) is True

    @pytest.mark.parametrize(
        "text",
        [
            "",
            "   ",
            "All tests pass. The refactor is complete.",
            "Let me know if you need anything else.",
        ],
    )
    def test_non_questions(self, text):
        assert detect_question_in_result(text) is False

    def test_code_block_stripping_is_idempotent(self):
        question = "Which option do you prefer? Should I use the cache?"
        wrapped = "```\nThe job is finished.\n```\n" + question
        assert detect_question_in_result(wrapped) == detect_question_in_result(question)
