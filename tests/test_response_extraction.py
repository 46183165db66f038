import pytest

from snap_solver.llm.adapters import extract_text
from snap_solver.llm.providers.base import strip_wrapper_fence
from snap_solver.llm.types import EmptyResponse, ProviderIdentity


def test_openai_string_content():
    raw = {"choices": [{"message": {"content": "  hello  "}, "finish_reason": "stop"}]}
    assert extract_text(ProviderIdentity.OPENAI, raw) == "hello"


def test_openai_parts_content():
    raw = {"choices": [{"message": {"content": [{"type": "text", "text": "a"}, {"type": "text", "text": "b"}]}}]}
    assert extract_text("openai", raw) == "ab"


def test_openai_empty_content_raises():
    raw = {"choices": [{"message": {"content": ""}, "finish_reason": "length"}]}
    with pytest.raises(EmptyResponse):
        extract_text(ProviderIdentity.OPENAI, raw)


def test_gemini_joins_non_empty_parts_with_newline():
    raw = {"candidates": [{"content": {"parts": [{"text": " first "}, {"text": ""}, {"text": "second"}]}}]}
    assert extract_text(ProviderIdentity.GEMINI, raw) == "first\nsecond"


def test_gemini_no_candidates_reports_block_reason():
    raw = {"promptFeedback": {"blockReason": "SAFETY"}}
    with pytest.raises(EmptyResponse, match="SAFETY"):
        extract_text(ProviderIdentity.GEMINI, raw)


def test_gemini_truncated_reply_is_accepted():
    raw = {"candidates": [{"finishReason": "MAX_TOKENS", "content": {"parts": [{"text": "partial"}]}}]}
    assert extract_text(ProviderIdentity.GEMINI, raw) == "partial"

    empty = {"candidates": [{"finishReason": "MAX_TOKENS", "content": {"parts": [{"text": ""}]}}]}
    assert extract_text(ProviderIdentity.GEMINI, empty) == ""


def test_gemini_missing_parts_raises():
    raw = {"candidates": [{"finishReason": "STOP", "content": {}}]}
    with pytest.raises(EmptyResponse):
        extract_text(ProviderIdentity.GEMINI, raw)


def test_anthropic_concatenates_text_blocks():
    raw = {"content": [{"type": "text", "text": "one "}, {"type": "tool_use"}, {"type": "text", "text": "two"}]}
    assert extract_text(ProviderIdentity.ANTHROPIC, raw) == "one two"


def test_anthropic_without_text_blocks_raises():
    with pytest.raises(EmptyResponse):
        extract_text(ProviderIdentity.ANTHROPIC, {"content": [], "stop_reason": "end_turn"})


def test_non_dict_envelope_raises():
    with pytest.raises(EmptyResponse):
        extract_text(ProviderIdentity.ANTHROPIC, ["not", "a", "dict"])


def test_wrapper_fence_is_stripped_once():
    wrapped = "```markdown\n## Answer\nUse a hash map.\n```"
    once = strip_wrapper_fence(wrapped)
    assert once == "## Answer\nUse a hash map."
    assert strip_wrapper_fence(once) == once


def test_code_fence_is_not_a_wrapper():
    reply = "```python\nprint(1)\n```"
    assert strip_wrapper_fence(reply) == reply
