"""
Turn：单轮 agent 输出的全部可变状态（显式字段，取代控制器上的隐式共享状态）。

所有权：
- Turn 只属于它的编排循环；解析器事件经 session 以 `apply_block_event` 追加/更新块，
  派发层只通过返回值交付结果；
- 并发以“单逻辑任务的挂起/恢复”表达，因此不需要锁。
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import List, Optional

from action_runtime.core.contracts import ActionRequestBlock, ContentBlock, ContentBlockEvent, TextBlock
from action_runtime.core.errors import FrameworkIssue, StateError
from action_runtime.core.result_sink import ResultSink


class BlockState(str, Enum):
    """块状态机（文本块恒为 TEXT）。"""

    TEXT = "text"
    PARSED_PARTIAL = "parsed_partial"
    PARSED_COMPLETE = "parsed_complete"
    VALIDATED = "validated"
    AWAITING_APPROVAL = "awaiting_approval"
    APPROVED = "approved"
    EXECUTING = "executing"
    COMPLETED = "completed"
    FAILED = "failed"
    REJECTED = "rejected"
    INVALID = "invalid"


TERMINAL_STATES = frozenset(
    {BlockState.TEXT, BlockState.COMPLETED, BlockState.FAILED, BlockState.REJECTED, BlockState.INVALID}
)
IN_FLIGHT_STATES = frozenset({BlockState.AWAITING_APPROVAL, BlockState.APPROVED, BlockState.EXECUTING})


@dataclass
class Turn:
    """
    单个 turn 的状态。

    字段：
    - blocks：内容块（只追加；partial 块可被原位更新）
    - block_states：与 blocks 一一对应的状态
    - cursor：当前正在处理的块位置
    - active_action_in_flight：某个 action 处于“已批准 → 结果已推送”之间
    - rejected_by_user：粘性；一旦为 True，本 turn 之后的 action 一律跳过（仍产出结果条目）
    - action_already_executed_this_turn：粘性；每个 turn 至多执行一个 action
    - mistake_count：格式错误/策略拒绝计数（供上层策略终止失控 turn）
    - result_sink：有序结果
    - turn_ready：恰好被置位一次
    - stream_finished / cancelled / fatal_error：流结束、取消与解析致命错误标记
    - fatal_issue：解析致命错误的结构化形式（code/message/details）
    """

    turn_id: str
    blocks: List[ContentBlock] = field(default_factory=list)
    block_states: List[BlockState] = field(default_factory=list)
    cursor: int = 0
    active_action_in_flight: bool = False
    rejected_by_user: bool = False
    action_already_executed_this_turn: bool = False
    mistake_count: int = 0
    mistake_limit_reached: bool = False
    result_sink: ResultSink = field(default_factory=ResultSink)
    turn_ready: bool = False
    stream_finished: bool = False
    cancelled: bool = False
    fatal_error: Optional[str] = None
    fatal_issue: Optional[FrameworkIssue] = None

    def apply_block_event(self, event: ContentBlockEvent) -> None:
        """
        应用一条解析器事件（新块追加，已有 partial 块原位更新）。

        约束：
        - 新块的 index 必须恰好等于当前块数（不可跳跃）；
        - 已离开 PARSED_PARTIAL 的 action 块不再接受更新。
        """

        idx = event.block_index
        block = event.block
        if event.is_new_block:
            if idx != len(self.blocks):
                raise StateError(f"out-of-order block index {idx}; expected {len(self.blocks)}")
            self.blocks.append(block)
            self.block_states.append(self._initial_state(block))
            return

        if idx >= len(self.blocks):
            raise StateError(f"update for unknown block index {idx}")
        current = self.block_states[idx]
        if current not in (BlockState.TEXT, BlockState.PARSED_PARTIAL):
            return
        self.blocks[idx] = block
        self.block_states[idx] = self._initial_state(block)

    @staticmethod
    def _initial_state(block: ContentBlock) -> BlockState:
        """块刚被解析出来时的状态。"""

        if isinstance(block, TextBlock):
            return BlockState.TEXT
        assert isinstance(block, ActionRequestBlock)
        return BlockState.PARSED_PARTIAL if block.partial else BlockState.PARSED_COMPLETE

    def set_state(self, index: int, state: BlockState) -> None:
        """推进某个块的状态。"""

        self.block_states[index] = state

    def in_flight_count(self) -> int:
        """处于审批/执行中的 action 块数量（不变量：至多为 1）。"""

        return sum(1 for s in self.block_states if s in IN_FLIGHT_STATES)

    def all_blocks_terminal(self) -> bool:
        """是否所有已知块都已到达终态。"""

        return all(s in TERMINAL_STATES for s in self.block_states)

    def mark_ready(self) -> bool:
        """
        置位 turn_ready 并 seal 结果（只生效一次）。

        返回：
        - True：本次调用完成了置位
        - False：此前已 ready
        """

        if self.turn_ready:
            return False
        self.turn_ready = True
        self.result_sink.seal()
        return True


__all__ = ["BlockState", "IN_FLIGHT_STATES", "TERMINAL_STATES", "Turn"]
