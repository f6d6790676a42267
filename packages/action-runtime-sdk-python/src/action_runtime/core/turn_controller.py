"""
TurnController：单个 turn 的计数/预算控制（internal）。

目标：
- 将“step 计数、每 turn 单次执行规则、mistake 上限”等判定收敛到单一对象，
  编排循环只负责状态推进。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from action_runtime.core.turn import Turn


@dataclass
class TurnController:
    """
    TurnController（internal）。

    字段：
    - single_action_per_turn：每个 turn 至多执行一个 action
    - max_mistakes：mistake_count 上限（None 表示不设上限）
    """

    single_action_per_turn: bool = True
    max_mistakes: Optional[int] = None

    def __post_init__(self) -> None:
        """初始化内部计数器。"""

        self._step = 0

    def next_step_id(self) -> str:
        """推进 step 计数并返回 step_id（形如 `step_1`）。"""

        self._step += 1
        return f"step_{self._step}"

    def may_execute(self, turn: Turn) -> bool:
        """本 turn 是否还允许执行 action（单次执行规则）。"""

        if not self.single_action_per_turn:
            return True
        return not turn.action_already_executed_this_turn

    def record_mistake(self, turn: Turn) -> bool:
        """
        记录一次 mistake，并返回是否“首次”达到上限。

        说明：
        - 是否终止 turn 由上层决定；这里只负责计数与一次性告警判定。
        """

        turn.mistake_count += 1
        if self.max_mistakes is None or turn.mistake_limit_reached:
            return False
        if turn.mistake_count >= int(self.max_mistakes):
            turn.mistake_limit_reached = True
            return True
        return False


__all__ = ["TurnController"]
