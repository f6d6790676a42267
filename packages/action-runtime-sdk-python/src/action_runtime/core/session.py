"""
TurnSession：单个 turn 的对外入口（喂入流 → 编排 → 取结果）。

用法（最小）：

    session = engine.start_turn()
    outcome = await session.run(fragments)   # fragments: AsyncIterable[str] | Iterable[str]
    for entry in outcome.results:
        ...

或手动驱动：

    session.start()
    session.feed("<read><path>a.txt")
    session.feed("</path></read>")
    session.signal_end_of_stream()
    outcome = await session.wait_ready()

线程模型：
- `feed/signal_end_of_stream/cancel` 必须在运行编排循环的同一个事件循环线程中调用。
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import AsyncIterable
from dataclasses import dataclass
from typing import Any, Dict, Iterable, List, Optional, Sequence, Union

from action_runtime.actions.registry import ActionRegistry
from action_runtime.config.loader import ActionRuntimeRunConfig
from action_runtime.core.contracts import ActionRequestBlock, ContentBlockEvent, EventSink
from action_runtime.core.errors import BlockParserError, StateError
from action_runtime.core.event_redaction import sanitize_params_for_event
from action_runtime.core.events import TurnEventEmitter
from action_runtime.core.orchestrator import TurnOrchestrator
from action_runtime.core.result_sink import ResultEntry
from action_runtime.core.turn import Turn
from action_runtime.core.turn_controller import TurnController
from action_runtime.parsing.block_parser import IncrementalBlockParser
from action_runtime.safety.gate import ApprovalGate
from action_runtime.safety.policy import CapabilityValidator, PermissionProfileStore

logger = logging.getLogger(__name__)

FragmentSource = Union[AsyncIterable[str], Iterable[str]]


@dataclass(frozen=True)
class TurnOutcome:
    """
    turn 结束后的汇总。

    字段：
    - results：有序结果（与 `TurnSession.drain()` 相同）
    - mistake_count / mistake_limit_reached：格式错误计数与是否达到上限
    - rejected_by_user：本 turn 是否出现用户拒绝
    - action_executed：本 turn 是否有 action 被执行
    - cancelled：是否被取消
    - fatal_error：流解析致命错误（无则为 None）
    """

    turn_id: str
    results: List[ResultEntry]
    mistake_count: int
    mistake_limit_reached: bool
    rejected_by_user: bool
    action_executed: bool
    cancelled: bool
    fatal_error: Optional[str] = None

    @property
    def rendered_texts(self) -> List[str]:
        """按顺序返回每条结果的 observation 文本。"""

        return [e.rendered_text for e in self.results]


class TurnSession:
    """单个 turn 的会话对象（由 `ActionEngine.start_turn()` 创建）。"""

    def __init__(
        self,
        *,
        turn_id: str,
        run_id: str,
        registry: ActionRegistry,
        validator: CapabilityValidator,
        profile_store: PermissionProfileStore,
        gate: ApprovalGate,
        run_config: ActionRuntimeRunConfig,
        event_sink: Optional[EventSink] = None,
        redaction_values: Sequence[str] = (),
    ) -> None:
        """组装本 turn 的解析器、状态与编排循环。"""

        self.turn = Turn(turn_id=turn_id)
        self._redaction_values = list(redaction_values)
        self._emitter = TurnEventEmitter(
            run_id=run_id, turn_id=turn_id, sink=event_sink, redaction_values=self._redaction_values
        )
        self._parser = IncrementalBlockParser(
            action_names=registry.names(),
            envelope_tag=run_config.envelope_tag,
            max_block_chars=run_config.max_block_chars,
        )
        self._changed = asyncio.Event()
        self._cancel_event = asyncio.Event()
        self._orchestrator = TurnOrchestrator(
            turn=self.turn,
            registry=registry,
            validator=validator,
            profile_store=profile_store,
            gate=gate,
            controller=TurnController(
                single_action_per_turn=run_config.single_action_per_turn,
                max_mistakes=run_config.max_mistakes,
            ),
            emitter=self._emitter,
            changed=self._changed,
            cancel_event=self._cancel_event,
            request_cancel=self.cancel,
            handler_timeout_ms=run_config.handler_timeout_ms,
            redaction_values=self._redaction_values,
        )
        self._task: Optional["asyncio.Task[None]"] = None

    @property
    def turn_id(self) -> str:
        """本 turn 的 id。"""

        return self.turn.turn_id

    @property
    def ready(self) -> bool:
        """turn 是否已 ready（结果可 drain）。"""

        return self.turn.turn_ready

    def start(self) -> "asyncio.Task[None]":
        """启动编排循环（幂等；需在运行中的事件循环里调用）。"""

        if self._task is None:
            self._task = asyncio.ensure_future(self._orchestrator.run())
        return self._task

    # ----------------------------
    # stream input
    # ----------------------------

    def feed(self, fragment: str) -> List[ContentBlockEvent]:
        """
        喂入一个文本分片，返回本次产生的块事件（也会作为 content_block 事件发出）。

        说明：
        - 流结束/turn ready 之后的分片被忽略；
        - 解析致命错误不会抛给调用方：turn 以一条合成的 ExecutionError 结束。
        """

        if self.turn.stream_finished or self.turn.turn_ready:
            logger.debug("Ignoring fragment for finished turn %s", self.turn.turn_id)
            return []
        try:
            events = self._parser.feed(fragment)
        except BlockParserError as e:
            self._fail(e)
            return []
        self._apply(events)
        return events

    def signal_end_of_stream(self) -> List[ContentBlockEvent]:
        """流结束：finalize 所有未闭合块（幂等）。"""

        if self.turn.stream_finished:
            return []
        events = self._parser.finish()
        self.turn.stream_finished = True
        self._apply(events)
        self._changed.set()
        return events

    async def feed_stream(self, fragments: FragmentSource) -> None:
        """
        把一个（异步）分片序列全部喂入，然后发出流结束信号。

        说明：
        - 上游分片源抛异常时取消 turn（使编排循环可以结束），异常继续上抛。
        """

        try:
            if isinstance(fragments, AsyncIterable):
                async for fragment in fragments:
                    if self.turn.stream_finished:
                        break
                    self.feed(fragment)
            else:
                for fragment in fragments:
                    if self.turn.stream_finished:
                        break
                    self.feed(fragment)
                    await asyncio.sleep(0)
        except Exception:
            logger.warning("Upstream stream failed for turn %s", self.turn.turn_id, exc_info=True)
            self.cancel("upstream stream failed")
            raise
        self.signal_end_of_stream()

    def cancel(self, reason: str = "cancelled by user") -> None:
        """
        取消 turn（幂等）。

        语义：
        - 等待中的审批以 denied 结束；执行中的 handler 被取消并记为 ExecutionError("cancelled")；
        - 未处理的 action 块一律 Rejected；之后 turn 正常进入 ready。
        """

        if self.turn.cancelled or self.turn.turn_ready:
            return
        logger.info("Cancelling turn %s: %s", self.turn.turn_id, reason)
        self.turn.cancelled = True
        self._cancel_event.set()
        if not self.turn.stream_finished:
            self.signal_end_of_stream()
        self._changed.set()

    # ----------------------------
    # results
    # ----------------------------

    async def wait_ready(self) -> TurnOutcome:
        """等待 turn ready 并返回汇总（未启动时自动启动）。"""

        await self.start()
        return self.outcome()

    async def run(self, fragments: FragmentSource) -> TurnOutcome:
        """喂入整个分片序列并等待 turn ready。"""

        task = self.start()
        feeder = asyncio.ensure_future(self.feed_stream(fragments))
        try:
            await task
        finally:
            if not feeder.done():
                feeder.cancel()
            await asyncio.gather(feeder, return_exceptions=True)
        if not feeder.cancelled() and feeder.exception() is not None:
            raise feeder.exception()  # type: ignore[misc]
        return self.outcome()

    def drain(self) -> List[ResultEntry]:
        """返回有序结果；turn 未 ready 时抛 `StateError`。"""

        return self.turn.result_sink.drain()

    def outcome(self) -> TurnOutcome:
        """构造 turn 汇总；turn 未 ready 时抛 `StateError`。"""

        if not self.turn.turn_ready:
            raise StateError(f"turn {self.turn.turn_id} is not ready")
        turn = self.turn
        return TurnOutcome(
            turn_id=turn.turn_id,
            results=turn.result_sink.drain(),
            mistake_count=turn.mistake_count,
            mistake_limit_reached=turn.mistake_limit_reached,
            rejected_by_user=turn.rejected_by_user,
            action_executed=turn.action_already_executed_this_turn,
            cancelled=turn.cancelled,
            fatal_error=turn.fatal_error,
        )

    # ----------------------------
    # internals
    # ----------------------------

    def _apply(self, events: List[ContentBlockEvent]) -> None:
        """把解析器事件写入 Turn 并唤醒编排循环。"""

        if not events:
            return
        for ev in events:
            self.turn.apply_block_event(ev)
            self._emitter.emit("content_block", self._block_payload(ev))
        self._changed.set()

    def _block_payload(self, ev: ContentBlockEvent) -> Dict[str, Any]:
        """content_block 事件 payload（action 参数脱敏）。"""

        block = ev.block
        payload: Dict[str, Any] = {
            "block_index": ev.block_index,
            "kind": block.kind,
            "partial": block.partial,
            "is_new_block": ev.is_new_block,
        }
        if isinstance(block, ActionRequestBlock):
            payload["action"] = block.name
            payload["params"] = sanitize_params_for_event(block.params, redaction_values=self._redaction_values)
        else:
            payload["text"] = block.text
        return payload

    def _fail(self, exc: BlockParserError) -> None:
        """解析致命错误：停止接收输入，取消在途 action，由编排循环收尾。"""

        logger.warning("Stream parse failed for turn %s: %s", self.turn.turn_id, exc.message)
        self.turn.fatal_error = exc.message
        self.turn.fatal_issue = exc.to_issue()
        self.turn.stream_finished = True
        self._cancel_event.set()
        self._changed.set()


__all__ = ["FragmentSource", "TurnOutcome", "TurnSession"]
