import json

import pytest
import requests

from snap_solver.config import settings_from_dict
from snap_solver.coordinator import PipelineCoordinator, PipelineKind, PipelineState
from snap_solver.events import ProcessingEvent, RecordingChannel
from snap_solver.history import CallHistory
from snap_solver.llm.registry import ProviderClientRegistry
from snap_solver.llm.types import NoContext, ProviderIdentity, ProviderRequest
from snap_solver.screenshots import ScreenshotQueues


OPENAI_KEY = "sk-" + "a" * 40
GEMINI_KEY = "AIzaSyTestKey0123456789"

PROBLEM_JSON = json.dumps(
    {
        "question_type": "coding",
        "problem_statement": "Return one",
        "constraints": "N/A",
        "language_hint": "python",
    }
)
CODE_REPLY = "```python\ndef f(): return 1\n```\nTime complexity: O(1)\nThoughts:\n- item1\n- item2"
DEBUG_REPLY = "### Issues Identified\n- Off by one\n\n### Key Points\n- Check bounds"


class StaticConfig:
    def __init__(self, settings):
        self.settings = settings

    def load(self):
        return self.settings


class ScriptedAdapter:
    """Returns queued replies in order; a callable reply runs before its text is returned."""

    def __init__(self, replies):
        self.replies = list(replies)
        self.requests = []

    def create_client(self, credentials, timeout_seconds, max_retries):
        return object()

    def build(self, instruction, images, model, system=None):
        body = {"instruction": instruction, "system": system}
        return ProviderRequest(provider=ProviderIdentity.OPENAI, model=model, body=body, image_count=len(images))

    def send(self, client, request, token=None):
        self.requests.append(request)
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        if callable(reply):
            reply = reply()
        return {"text": reply}

    def extract(self, raw):
        return raw["text"]

    def usage(self, raw):
        return 0, 0


def _shots(tmp_path, names):
    paths = []
    for name in names:
        path = tmp_path / name
        path.write_bytes(b"\x89PNG fake")
        paths.append(str(path))
    return paths


def _build(tmp_path, replies, provider="openai", api_key=OPENAI_KEY, main=("a.png",), extra=(), history=None):
    adapter = ScriptedAdapter(replies)
    identity = ProviderIdentity(provider)
    settings = settings_from_dict({"provider": provider, "api_key": api_key, "history": {"enabled": False}})
    registry = ProviderClientRegistry(adapters={identity: adapter})
    queues = ScreenshotQueues(_shots(tmp_path, main), _shots(tmp_path, extra))
    channel = RecordingChannel()
    coordinator = PipelineCoordinator(StaticConfig(settings), registry, queues, channel=channel, history=history)
    return coordinator, adapter, channel, queues


def _names(channel):
    return [name for name in channel.names() if name != ProcessingEvent.STATUS.value]


def test_two_stage_solve(tmp_path):
    coordinator, adapter, channel, queues = _build(tmp_path, [PROBLEM_JSON, CODE_REPLY], extra=("x.png",))

    result = coordinator.solve()

    assert result.state is PipelineState.SUCCESS
    assert result.answer.code == "def f(): return 1"
    assert result.answer.time_complexity == "O(1)"
    assert _names(channel) == ["initial-start", "problem-extracted", "solution-success"]
    assert [r.image_count for r in adapter.requests] == [1, 0]
    assert coordinator.problem.problem_statement == "Return one"
    assert queues.extra == []
    assert channel.last(ProcessingEvent.STATUS) == {"message": "Solution generated successfully", "progress": 100}
    assert coordinator.state(PipelineKind.SOLVE) is PipelineState.IDLE


def test_single_shot_solve(tmp_path):
    coordinator, adapter, channel, _ = _build(
        tmp_path, ["最终答案：C\n只有C正确"], provider="gemini", api_key=GEMINI_KEY
    )

    result = coordinator.solve()

    assert len(adapter.requests) == 1
    assert adapter.requests[0].image_count == 1
    assert result.answer.chosen_letter == "C"
    assert result.problem.question_type == "multiple_choice"
    assert _names(channel) == ["initial-start", "problem-extracted", "solution-success"]


def test_no_screenshots_stays_idle(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [], main=())

    result = coordinator.solve()

    assert result.state is PipelineState.IDLE
    assert channel.names() == ["initial-start", "no-screenshots"]
    assert adapter.requests == []


def test_missing_screenshot_files_are_ignored(tmp_path):
    coordinator, adapter, channel, queues = _build(tmp_path, [], main=())
    queues.add(str(tmp_path / "gone.png"))

    coordinator.solve()

    assert channel.names() == ["initial-start", "no-screenshots"]


def test_debug_without_context_makes_no_calls(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [], extra=("x.png",))

    result = coordinator.debug()

    assert result.state is PipelineState.FAILED
    assert channel.names() == ["debug-error"]
    assert channel.last(ProcessingEvent.DEBUG_ERROR) == NoContext.default_message
    assert adapter.requests == []


def test_invalid_key_reports_api_key_invalid(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [], api_key="not-a-key")

    result = coordinator.solve()

    assert result.state is PipelineState.FAILED
    assert _names(channel) == ["initial-start", "api-key-invalid", "initial-solution-error"]
    assert "OpenAI API key" in result.error
    assert adapter.requests == []


def test_debug_after_solve_sends_all_screenshots(tmp_path):
    coordinator, adapter, channel, _ = _build(
        tmp_path, [PROBLEM_JSON, CODE_REPLY, DEBUG_REPLY], main=("a.png",), extra=("x.png",)
    )
    coordinator.solve()
    # extra queue is cleared after a successful solve
    coordinator.screenshots.add(str(tmp_path / "x.png"), extra=True)

    result = coordinator.process_screenshots("solutions")

    assert result.state is PipelineState.SUCCESS
    assert result.debug.sections["issues"] == "- Off by one"
    assert adapter.requests[-1].image_count == 2
    assert "Return one" in adapter.requests[-1].body["instruction"]
    assert _names(channel)[-2:] == ["debug-start", "debug-success"]


def test_debug_without_extra_screenshots(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [PROBLEM_JSON, CODE_REPLY])
    coordinator.solve()

    result = coordinator.debug()

    assert result.state is PipelineState.IDLE
    assert channel.names()[-1] == "no-screenshots"
    assert len(adapter.requests) == 2


def test_new_solve_supersedes_running_one(tmp_path):
    replies = []
    coordinator, adapter, channel, _ = _build(tmp_path, replies)
    inner = {}

    def start_second_run():
        inner["result"] = coordinator.solve()
        return PROBLEM_JSON

    replies.extend([start_second_run, PROBLEM_JSON, CODE_REPLY])
    adapter.replies = list(replies)

    outer = coordinator.solve()

    assert inner["result"].state is PipelineState.SUCCESS
    assert outer.state is PipelineState.CANCELED
    assert _names(channel) == [
        "initial-start",
        "initial-start",
        "problem-extracted",
        "solution-success",
        "processing-canceled",
    ]
    assert coordinator.problem is not None


def test_cancel_ongoing_requests(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [])
    cancelled = []

    def user_cancels():
        cancelled.append(coordinator.cancel_ongoing_requests())
        return PROBLEM_JSON

    adapter.replies = [user_cancels]

    result = coordinator.solve()

    assert cancelled == [True]
    assert result.state is PipelineState.CANCELED
    assert _names(channel) == ["initial-start", "no-screenshots", "processing-canceled"]
    assert coordinator.problem is None
    assert len(adapter.requests) == 1


def test_cancel_with_nothing_running_is_silent(tmp_path):
    coordinator, _, channel, _ = _build(tmp_path, [])
    assert coordinator.cancel_ongoing_requests() is False
    assert channel.names() == []


def test_debug_started_during_solve_has_no_context(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, [], extra=("x.png",))
    inner = {}

    def debug_mid_solve():
        inner["result"] = coordinator.debug()
        return PROBLEM_JSON

    adapter.replies = [debug_mid_solve, CODE_REPLY]

    result = coordinator.solve()

    assert result.state is PipelineState.SUCCESS
    assert inner["result"].error == NoContext.default_message
    assert len(adapter.requests) == 2


def test_provider_failure_is_reported_and_recorded(tmp_path):
    response = requests.Response()
    response.status_code = 429
    response._content = b'{"error": {"message": "slow down"}}'
    history = CallHistory(str(tmp_path / "history.db"))
    coordinator, _, channel, _ = _build(
        tmp_path, [requests.HTTPError("429", response=response)], history=history
    )

    result = coordinator.solve()

    assert result.state is PipelineState.FAILED
    assert _names(channel) == ["initial-start", "initial-solution-error"]
    assert "rate limit" in channel.last(ProcessingEvent.INITIAL_SOLUTION_ERROR)
    runs = history.recent_runs()
    history.close()
    assert runs[0]["outcome"] == "failed"
    assert runs[0]["error"] == "RateLimited"


def test_connection_failure_does_not_log_query_key(tmp_path, monkeypatch, caplog):
    def refuse(self, url, **kwargs):
        raise requests.ConnectionError(f"Max retries exceeded with url: {url} (Caused by connection refused)")

    monkeypatch.setattr(requests.Session, "post", refuse)
    settings = settings_from_dict(
        {
            "provider": "gemini",
            "api_key": GEMINI_KEY,
            "providers": {"gemini": {"base_url": "http://127.0.0.1:9"}},
            "history": {"enabled": False},
        }
    )
    registry = ProviderClientRegistry()
    queues = ScreenshotQueues(_shots(tmp_path, ["a.png"]))
    channel = RecordingChannel()
    coordinator = PipelineCoordinator(StaticConfig(settings), registry, queues, channel=channel)

    with caplog.at_level("DEBUG"):
        result = coordinator.solve()
    coordinator.close()

    assert result.state is PipelineState.FAILED
    assert "connection failed" in caplog.text
    assert "key=***" in caplog.text
    assert GEMINI_KEY not in caplog.text
    assert GEMINI_KEY not in result.error


def test_malformed_extraction_reply(tmp_path):
    coordinator, adapter, channel, _ = _build(tmp_path, ["Sorry, I can't read that."])

    result = coordinator.solve()

    assert result.state is PipelineState.FAILED
    assert result.error.startswith("Failed to parse problem information")
    assert len(adapter.requests) == 1


def test_unknown_view_is_rejected(tmp_path):
    coordinator, _, _, _ = _build(tmp_path, [])
    with pytest.raises(ValueError):
        coordinator.process_screenshots("settings")
