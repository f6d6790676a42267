from __future__ import annotations

import json

import pytest

from action_runtime.actions.protocol import ActionExecutionError, ActionRejected, ActionSuccess, ActionValidationError
from action_runtime.core.errors import StateError
from action_runtime.core.result_sink import DEFAULT_REJECTED_REASON, ResultEntry, ResultSink, render_result_text


def test_rendered_text_distinguishes_the_four_result_kinds() -> None:
    ok = json.loads(render_result_text("read", ActionSuccess(payload={"lines": 3})))
    invalid = json.loads(render_result_text("read", ActionValidationError(reason="unknown action")))
    rejected = json.loads(render_result_text("edit", ActionRejected()))
    failed = json.loads(render_result_text("command", ActionExecutionError(message="exit 1")))

    assert ok == {"ok": True, "action": "read", "status": "success", "output": {"lines": 3}}
    assert invalid == {"ok": False, "action": "read", "status": "validation_error", "reason": "unknown action"}
    assert rejected == {"ok": False, "action": "edit", "status": "rejected", "reason": DEFAULT_REJECTED_REASON}
    assert failed == {"ok": False, "action": "command", "status": "execution_error", "error": "exit 1"}


def test_unserializable_payload_is_stringified() -> None:
    text = render_result_text("read", ActionSuccess(payload=object()))
    assert json.loads(text)["output"].startswith("<object object")


def test_sink_preserves_insertion_order_and_duplicates() -> None:
    sink = ResultSink()
    entries = [
        ResultEntry.build("read", ActionSuccess(payload="a"), block_index=1),
        ResultEntry.build("read", ActionSuccess(payload="a"), block_index=3),
        ResultEntry.build("edit", ActionRejected(), block_index=5),
    ]
    for e in entries:
        sink.push(e)
    assert len(sink) == 3
    assert sink.snapshot() == entries

    sink.seal()
    assert sink.drain() == entries
    assert sink.drain() == entries


def test_drain_before_ready_is_a_state_error() -> None:
    sink = ResultSink()
    sink.push(ResultEntry.build("read", ActionSuccess(payload=None)))
    with pytest.raises(StateError):
        sink.drain()


def test_push_after_seal_is_a_state_error() -> None:
    sink = ResultSink()
    sink.seal()
    assert sink.sealed is True
    with pytest.raises(StateError):
        sink.push(ResultEntry.build("read", ActionSuccess(payload=None)))
