"""
Turn 编排循环（TurnOrchestrator）。

包含：
- 块游标推进：文本块直接跳过；partial action 块等待 finalize（绝不执行）
- action 校验：未知 action → 策略（权限 profile）→ 必填参数 → 单次执行规则
- 审批：ApprovalGate（自动放行 / session 缓存 / provider / 超时 / 取消）
- 派发：ActionRegistry.dispatch（与取消信号竞争）
- 结果：按块顺序写入 ResultSink；流结束且全部块终态后恰好一次置位 turn_ready

并发模型：
- 单个逻辑任务；解析器事件由 session 写入 Turn 后通过 `changed` 事件唤醒本循环；
- 任意时刻至多一个 action 处于“等待审批/执行中”。
"""

from __future__ import annotations

import asyncio
import dataclasses
import logging
from typing import Any, Callable, Dict, Optional, Sequence

from action_runtime.actions.capabilities import BoundActionCapabilities
from action_runtime.actions.protocol import (
    ActionCall,
    ActionExecutionError,
    ActionRejected,
    ActionResult,
    ActionSuccess,
    ActionValidationError,
)
from action_runtime.actions.registry import ActionRegistry
from action_runtime.core.contracts import ActionRequestBlock, TextBlock
from action_runtime.core.event_redaction import sanitize_params_for_event
from action_runtime.core.events import TurnEventEmitter
from action_runtime.core.result_sink import ResultEntry
from action_runtime.core.turn import BlockState, Turn
from action_runtime.core.turn_controller import TurnController
from action_runtime.safety.approvals import ApprovalDecision, ApprovalOutcome
from action_runtime.safety.gate import ApprovalGate
from action_runtime.safety.policy import CapabilityValidator, PermissionProfileStore

logger = logging.getLogger(__name__)

STREAM_PARSER_ACTION = "stream_parser"
ONE_ACTION_PER_TURN_REASON = (
    "Only one action may be executed per turn. Wait for the result of the previous action before requesting another."
)
TURN_CANCELLED_REASON = "The turn was cancelled before this action ran."
SKIPPED_AFTER_REJECTION_REASON = "Skipped because the user rejected a previous action in this turn."
ABORTED_REASON = "The user aborted the task."

_DENIAL_REASONS: Dict[str, str] = {
    "cancelled": TURN_CANCELLED_REASON,
    "timeout": "Approval timed out.",
    "no_provider": "No approval provider is configured.",
    "provider_error": "Approval could not be obtained.",
}

_CANCEL_GRACE_SEC = 1.0


def _denied_reason(outcome: ApprovalOutcome) -> Optional[str]:
    """把拒绝原因码映射为展示文本（用户主动拒绝返回 None，使用默认文案）。"""

    return _DENIAL_REASONS.get(outcome.reason)


class TurnOrchestrator:
    """单个 turn 的编排循环。"""

    def __init__(
        self,
        *,
        turn: Turn,
        registry: ActionRegistry,
        validator: CapabilityValidator,
        profile_store: PermissionProfileStore,
        gate: ApprovalGate,
        controller: TurnController,
        emitter: TurnEventEmitter,
        changed: asyncio.Event,
        cancel_event: asyncio.Event,
        request_cancel: Optional[Callable[[str], None]] = None,
        handler_timeout_ms: Optional[int] = None,
        redaction_values: Sequence[str] = (),
    ) -> None:
        """
        参数：
        - turn：本循环独占的 turn 状态
        - changed：session 写入新块/流结束/取消后置位的唤醒信号
        - cancel_event：turn 的取消信号（审批与执行都与之竞争）
        - request_cancel：审批方返回 abort 时回调 session 取消整个 turn
        - handler_timeout_ms：handler 执行超时
        - redaction_values：事件与审批详情中需要脱敏的字面值
        """

        self._turn = turn
        self._registry = registry
        self._validator = validator
        self._profile_store = profile_store
        self._gate = gate
        self._controller = controller
        self._emitter = emitter
        self._changed = changed
        self._cancel_event = cancel_event
        self._request_cancel = request_cancel
        self._handler_timeout_ms = handler_timeout_ms
        self._redaction_values = list(redaction_values)

    async def run(self) -> None:
        """驱动 turn 直到 ready（流结束且所有块终态，或解析致命错误）。"""

        turn = self._turn
        while not turn.turn_ready:
            self._changed.clear()

            if turn.fatal_error is not None:
                self._finish_fatal(turn.fatal_error)
                break

            if turn.cursor < len(turn.blocks):
                idx = turn.cursor
                block = turn.blocks[idx]
                if isinstance(block, TextBlock):
                    turn.cursor += 1
                    continue
                assert isinstance(block, ActionRequestBlock)
                if block.partial:
                    await self._changed.wait()
                    continue
                await self._process_action(idx, block)
                turn.cursor += 1
                continue

            if turn.stream_finished:
                self._finish_ready()
                break

            await self._changed.wait()

    # ----------------------------
    # per-action pipeline
    # ----------------------------

    async def _process_action(self, idx: int, block: ActionRequestBlock) -> None:
        """处理一个已 finalize 的 action 块，恰好推送一条结果。"""

        turn = self._turn
        step_id = self._controller.next_step_id()
        call = ActionCall(call_id=f"{turn.turn_id}:{idx}", name=block.name, params=dict(block.params), block_index=idx)
        rendered = sanitize_params_for_event(call.params, redaction_values=self._redaction_values)
        self._emitter.emit(
            "action_requested",
            {"call_id": call.call_id, "action": call.name, "params": rendered},
            step_id=step_id,
        )

        if turn.cancelled:
            self._finish(call, ActionRejected(reason=TURN_CANCELLED_REASON), BlockState.REJECTED, step_id)
            return
        if turn.rejected_by_user:
            self._finish(call, ActionRejected(reason=SKIPPED_AFTER_REJECTION_REASON), BlockState.REJECTED, step_id)
            return

        invalid = await self._validate(call)
        if invalid is not None:
            counts_as_mistake = invalid.reason != ONE_ACTION_PER_TURN_REASON
            if counts_as_mistake and self._controller.record_mistake(turn):
                logger.warning("Turn %s reached the mistake limit (%s)", turn.turn_id, turn.mistake_count)
                self._emitter.emit(
                    "mistake_limit_reached",
                    {"mistake_count": turn.mistake_count, "max_mistakes": self._controller.max_mistakes},
                    step_id=step_id,
                )
            self._emitter.emit(
                "action_validation_failed",
                {"call_id": call.call_id, "action": call.name, "reason": invalid.reason, "mistake_count": turn.mistake_count},
                step_id=step_id,
            )
            self._finish(call, invalid, BlockState.INVALID, step_id)
            return
        turn.set_state(idx, BlockState.VALIDATED)

        turn.set_state(idx, BlockState.AWAITING_APPROVAL)
        outcome = await self._ask_approval(call.name, rendered, summary=None, step_id=step_id)
        if outcome.decision == ApprovalDecision.ABORT:
            turn.rejected_by_user = True
            self._finish(call, ActionRejected(reason=ABORTED_REASON), BlockState.REJECTED, step_id)
            return
        if not outcome.approved:
            if outcome.reason != "cancelled":
                turn.rejected_by_user = True
            self._finish(call, ActionRejected(reason=_denied_reason(outcome)), BlockState.REJECTED, step_id)
            return

        turn.set_state(idx, BlockState.APPROVED)
        result = await self._execute(call, rendered, approval_key=outcome.approval_key, step_id=step_id)
        turn.action_already_executed_this_turn = True
        if isinstance(result, ActionRejected):
            turn.rejected_by_user = True
            state = BlockState.REJECTED
        elif isinstance(result, ActionSuccess):
            state = BlockState.COMPLETED
        else:
            state = BlockState.FAILED
        self._finish(call, result, state, step_id)

    async def _validate(self, call: ActionCall) -> Optional[ActionValidationError]:
        """校验 action；通过返回 None，否则返回 ValidationError。"""

        spec = self._registry.find_spec(call.name)
        if spec is None:
            # 未知 action 交给注册表的默认 handler（不经过审批）
            result = await self._registry.dispatch(call, BoundActionCapabilities(action_name=call.name))
            if isinstance(result, ActionValidationError):
                return result
            return ActionValidationError(reason=f"unknown action: {call.name}")

        profile = self._profile_store.get_active_permission_profile()
        decision = self._validator.validate(call.name, profile, category=spec.category, params=call.params)
        if not decision.allowed:
            return ActionValidationError(reason=decision.reason)

        missing = spec.missing_params(call.params)
        if missing:
            names = ", ".join(f"'{m}'" for m in missing)
            return ActionValidationError(reason=f"Missing required parameter(s) for action '{call.name}': {names}.")

        if not self._controller.may_execute(self._turn):
            return ActionValidationError(reason=ONE_ACTION_PER_TURN_REASON)
        return None

    async def _ask_approval(
        self,
        action_name: str,
        rendered: Dict[str, Any],
        *,
        summary: Optional[str],
        step_id: Optional[str],
    ) -> ApprovalOutcome:
        """通过门禁请求一次审批，并产出 approval_requested/approval_decided 事件。"""

        request = self._gate.build_request(action_name, rendered, summary=summary)
        if self._gate.try_auto_approve(request) is None:
            self._emitter.emit(
                "approval_requested",
                {
                    "approval_key": request.approval_key,
                    "action": action_name,
                    "summary": request.summary,
                    "request": request.details,
                },
                step_id=step_id,
            )
        outcome = await self._gate.decide(request, cancel_event=self._cancel_event)
        self._emitter.emit(
            "approval_decided",
            {"approval_key": outcome.approval_key, "decision": outcome.decision.value, "reason": outcome.reason},
            step_id=step_id,
        )
        if outcome.decision == ApprovalDecision.ABORT and self._request_cancel is not None:
            self._request_cancel("aborted by approver")
        return outcome

    async def _execute(
        self,
        call: ActionCall,
        rendered: Dict[str, Any],
        *,
        approval_key: str,
        step_id: Optional[str],
    ) -> ActionResult:
        """派发 handler；与取消信号竞争，取消时 handler 任务被取消并记为 ExecutionError("cancelled")。"""

        turn = self._turn

        async def _handler_approval(summary: Optional[str], details: Optional[Dict[str, Any]]) -> ApprovalOutcome:
            """handler 发起的审批（每次调用恰好一次请求/响应）。"""

            handler_rendered = rendered
            if details is not None:
                handler_rendered = sanitize_params_for_event(
                    {str(k): str(v) for k, v in details.items()}, redaction_values=self._redaction_values
                )
            return await self._ask_approval(call.name, handler_rendered, summary=summary, step_id=step_id)

        def _progress(progress: Any) -> None:
            """进度旁路：转发给 provider（若支持）并产出事件。"""

            self._gate.report_progress(action_name=call.name, approval_key=approval_key, progress=progress)
            self._emitter.emit("action_progress", {"call_id": call.call_id, "progress": progress}, step_id=step_id)

        caps = BoundActionCapabilities(
            action_name=call.name,
            approval_requester=_handler_approval,
            progress_reporter=_progress,
            cancel_event=self._cancel_event,
        )

        turn.set_state(call.block_index, BlockState.EXECUTING)
        turn.active_action_in_flight = True
        self._emitter.emit("action_started", {"call_id": call.call_id, "action": call.name}, step_id=step_id)
        try:
            return await self._dispatch_cancellable(call, caps)
        finally:
            turn.active_action_in_flight = False

    async def _dispatch_cancellable(self, call: ActionCall, caps: BoundActionCapabilities) -> ActionResult:
        """dispatch 与 cancel_event 竞争。"""

        dispatch_task = asyncio.ensure_future(
            self._registry.dispatch(call, caps, timeout_ms=self._handler_timeout_ms)
        )
        cancel_task = asyncio.ensure_future(self._cancel_event.wait())
        try:
            done, _pending = await asyncio.wait({dispatch_task, cancel_task}, return_when=asyncio.FIRST_COMPLETED)
        except asyncio.CancelledError:
            dispatch_task.cancel()
            raise
        finally:
            cancel_task.cancel()

        if dispatch_task in done:
            # 响应取消信号后主动返回的 handler 与 cancel_task 可能同轮完成；取消优先
            if dispatch_task.cancelled() or self._cancel_event.is_set():
                return ActionExecutionError(message="cancelled")
            return dispatch_task.result()

        dispatch_task.cancel()
        _done, still_pending = await asyncio.wait({dispatch_task}, timeout=_CANCEL_GRACE_SEC)
        if still_pending:
            logger.warning("Action %r did not stop within %.1fs after cancellation", call.name, _CANCEL_GRACE_SEC)
        return ActionExecutionError(message="cancelled")

    # ----------------------------
    # results / turn completion
    # ----------------------------

    def _finish(self, call: ActionCall, result: ActionResult, state: BlockState, step_id: Optional[str]) -> None:
        """推进块终态、推送结果并产出 action_finished 事件。"""

        self._turn.set_state(call.block_index, state)
        entry = ResultEntry.build(call.name, result, block_index=call.block_index)
        self._turn.result_sink.push(entry)
        self._emitter.emit(
            "action_finished",
            {"call_id": call.call_id, "action": call.name, "status": result.kind, "result": entry.rendered_text},
            step_id=step_id,
        )

    def _finish_fatal(self, message: str) -> None:
        """解析致命错误：追加一条合成的 ExecutionError 并强制 ready。"""

        turn = self._turn
        logger.warning("Turn %s failed: stream parse error: %s", turn.turn_id, message)
        result = ActionExecutionError(message=f"stream parse failed: {message}")
        turn.result_sink.push(ResultEntry.build(STREAM_PARSER_ACTION, result, block_index=-1))
        payload: Dict[str, Any] = {"error_kind": "stream_parse_failed", "message": message}
        if turn.fatal_issue is not None:
            payload["issue"] = dataclasses.asdict(turn.fatal_issue)
        self._emitter.emit("turn_failed", payload)
        self._finish_ready()

    def _finish_ready(self) -> None:
        """恰好一次置位 turn_ready 并产出事件。"""

        turn = self._turn
        if not turn.mark_ready():
            return
        if turn.cancelled:
            self._emitter.emit("turn_cancelled", {"results": len(turn.result_sink)})
        self._emitter.emit(
            "turn_ready",
            {
                "results": len(turn.result_sink),
                "mistake_count": turn.mistake_count,
                "rejected_by_user": turn.rejected_by_user,
                "action_executed": turn.action_already_executed_this_turn,
            },
        )


__all__ = [
    "ABORTED_REASON",
    "ONE_ACTION_PER_TURN_REASON",
    "SKIPPED_AFTER_REJECTION_REASON",
    "STREAM_PARSER_ACTION",
    "TURN_CANCELLED_REASON",
    "TurnOrchestrator",
]
