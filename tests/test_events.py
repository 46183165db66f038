from snap_solver.cancellation import CancelToken
from snap_solver.events import EventChannel, ProcessingEvent


def test_listener_failure_does_not_stop_delivery():
    channel = EventChannel()
    seen = []

    def broken(event, payload):
        raise RuntimeError("boom")

    channel.subscribe(broken)
    unsubscribe = channel.subscribe(lambda event, payload: seen.append((event, payload)))
    channel.emit(ProcessingEvent.DEBUG_START)
    unsubscribe()
    channel.emit(ProcessingEvent.DEBUG_SUCCESS, {"code": "x"})

    assert seen == [(ProcessingEvent.DEBUG_START, None)]


def test_wire_names():
    assert ProcessingEvent.STATUS.value == "processing-status"
    assert ProcessingEvent.INITIAL_SOLUTION_ERROR.value == "initial-solution-error"


def test_cancel_token_callbacks():
    token = CancelToken("debug")
    calls = []
    remove = token.on_cancel(lambda: calls.append("a"))
    token.on_cancel(lambda: calls.append("b"))
    remove()

    token.cancel()
    token.cancel()
    token.on_cancel(lambda: calls.append("late"))

    assert token.cancelled
    assert calls == ["b", "late"]
