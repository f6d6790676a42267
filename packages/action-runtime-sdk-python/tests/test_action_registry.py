from __future__ import annotations

import asyncio

import pytest

from action_runtime.actions.capabilities import BoundActionCapabilities
from action_runtime.actions.protocol import (
    ActionCall,
    ActionExecutionError,
    ActionRejected,
    ActionSpec,
    ActionSuccess,
    ActionValidationError,
)
from action_runtime.actions.registry import UNKNOWN_ACTION_REASON, ActionRegistry
from action_runtime.core.errors import ActionError, UserError
from action_runtime.safety.approvals import ApprovalDecision, ApprovalOutcome


def _call(name: str, **params: str) -> ActionCall:
    return ActionCall(call_id=f"t:{name}", name=name, params=dict(params))


def _dispatch(registry: ActionRegistry, call: ActionCall, caps: BoundActionCapabilities | None = None, **kwargs):
    return asyncio.run(registry.dispatch(call, caps or BoundActionCapabilities(action_name=call.name), **kwargs))


def test_register_rejects_duplicates_unless_override() -> None:
    r = ActionRegistry()
    r.register("read", lambda call, caps: "a")
    with pytest.raises(UserError):
        r.register("read", lambda call, caps: "b")
    r.register("read", lambda call, caps: "b", override=True)
    assert _dispatch(r, _call("read")) == ActionSuccess(payload="b")


def test_register_rejects_blank_name() -> None:
    with pytest.raises(UserError):
        ActionRegistry().register(" ", lambda call, caps: None)


def test_specs_and_categories_are_exposed_in_registration_order() -> None:
    r = ActionRegistry()
    r.register(ActionSpec(name="read", category="read"), lambda call, caps: None)
    r.register(ActionSpec(name="edit", category="edit"), lambda call, caps: None)
    assert r.names() == ["read", "edit"]
    assert [s.name for s in r.list_specs()] == ["read", "edit"]
    assert r.category_of("edit") == "edit"
    assert r.category_of("nope") is None
    assert r.has("edit") is True
    assert r.has("nope") is False
    assert r.find_spec("nope") is None
    with pytest.raises(UserError):
        r.get_spec("nope")


def test_unknown_action_goes_to_default_handler() -> None:
    result = _dispatch(ActionRegistry(), _call("fly"))
    assert result == ActionValidationError(reason=UNKNOWN_ACTION_REASON)


def test_sync_and_async_handlers_are_both_supported() -> None:
    async def _async_read(call, caps):
        await asyncio.sleep(0)
        return {"path": call.params["path"]}

    r = ActionRegistry()
    r.register("read", _async_read)
    r.register("echo", lambda call, caps: call.params["text"])
    assert _dispatch(r, _call("read", path="a")) == ActionSuccess(payload={"path": "a"})
    assert _dispatch(r, _call("echo", text="hi")) == ActionSuccess(payload="hi")


def test_handler_exceptions_are_converted_at_the_boundary() -> None:
    def _boom(call, caps):
        raise RuntimeError("disk full")

    def _action_error(call, caps):
        raise ActionError("no such file")

    def _user_error(call, caps):
        raise UserError("path must be relative")

    r = ActionRegistry()
    r.register("boom", _boom)
    r.register("missing", _action_error)
    r.register("bad", _user_error)
    assert _dispatch(r, _call("boom")) == ActionExecutionError(message="disk full")
    assert _dispatch(r, _call("missing")) == ActionExecutionError(message="no such file")
    assert _dispatch(r, _call("bad")) == ActionValidationError(reason="path must be relative")


def test_capability_outputs_are_folded_into_result() -> None:
    def _emit_twice(call, caps):
        caps.emit_result("line 1")
        caps.emit_result("line 2")

    def _report(call, caps):
        caps.emit_result("partial output")
        caps.report_error("exit code 2")

    def _explicit(call, caps):
        caps.report_error("ignored")
        return ActionRejected(reason="user said no mid-way")

    r = ActionRegistry()
    r.register("emit", _emit_twice)
    r.register("report", _report)
    r.register("explicit", _explicit)
    assert _dispatch(r, _call("emit")) == ActionSuccess(payload="line 1\nline 2")
    assert _dispatch(r, _call("report")) == ActionExecutionError(message="exit code 2")
    assert _dispatch(r, _call("explicit")) == ActionRejected(reason="user said no mid-way")


def test_handler_timeout_becomes_execution_error() -> None:
    async def _slow(call, caps):
        await asyncio.sleep(10)

    r = ActionRegistry()
    r.register("slow", _slow)
    result = _dispatch(r, _call("slow"), timeout_ms=20)
    assert result == ActionExecutionError(message="action timed out after 20ms")


def test_handler_can_request_approval_multiple_times() -> None:
    asked = []

    async def _requester(summary, details):
        asked.append(summary)
        return ApprovalOutcome(ApprovalDecision.APPROVED, "provider")

    async def _two_step(call, caps):
        first = await caps.request_approval("start")
        second = await caps.request_approval("irreversible step")
        return f"{first.approved}/{second.approved}"

    r = ActionRegistry()
    r.register("deploy", _two_step)
    caps = BoundActionCapabilities(action_name="deploy", approval_requester=_requester)
    assert _dispatch(r, _call("deploy"), caps) == ActionSuccess(payload="True/True")
    assert asked == ["start", "irreversible step"]
    assert len(caps.approvals) == 2


def test_handler_approval_without_requester_is_denied() -> None:
    async def _needs_ok(call, caps):
        outcome = await caps.request_approval("go?")
        return outcome.reason

    r = ActionRegistry()
    r.register("x", _needs_ok)
    assert _dispatch(r, _call("x")) == ActionSuccess(payload="no_provider")
