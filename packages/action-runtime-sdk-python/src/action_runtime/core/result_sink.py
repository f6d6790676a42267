"""
ResultSink：按顺序累积下一轮生成应看到的 action 结果。

约束：
- turn 期间只追加；插入顺序即输出顺序（不重排、不去重、不合并）；
- `drain()` 只允许在 turn ready（sink 已 seal）之后调用；重复调用返回同一序列；
- `rendered_text` 为稳定 JSON 字符串，可直接作为下一轮的 observation。
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Any, Dict, List

from action_runtime.actions.protocol import (
    ActionExecutionError,
    ActionRejected,
    ActionResult,
    ActionSuccess,
    ActionValidationError,
)
from action_runtime.core.errors import StateError

DEFAULT_REJECTED_REASON = "The user denied this operation."


def _jsonable(value: Any) -> Any:
    """把 payload 规范化为可 JSON 序列化的结构（无法序列化的对象转为字符串）。"""

    try:
        json.dumps(value, ensure_ascii=False)
        return value
    except (TypeError, ValueError):
        return str(value)


def render_result_text(action_name: str, result: ActionResult) -> str:
    """
    渲染一条结果的 observation 文本（JSON object 字符串）。

    字段：
    - ok / action / status：所有结果都有
    - output：Success
    - reason：ValidationError / Rejected
    - error：ExecutionError
    """

    obj: Dict[str, Any] = {"ok": isinstance(result, ActionSuccess), "action": action_name, "status": result.kind}
    if isinstance(result, ActionSuccess):
        obj["output"] = _jsonable(result.payload)
    elif isinstance(result, ActionValidationError):
        obj["reason"] = result.reason
    elif isinstance(result, ActionRejected):
        obj["reason"] = result.reason or DEFAULT_REJECTED_REASON
    elif isinstance(result, ActionExecutionError):
        obj["error"] = result.message
    return json.dumps(obj, ensure_ascii=False)


@dataclass(frozen=True)
class ResultEntry:
    """
    一条结果记录。

    字段：
    - action_name：来源 action 名
    - result：终态结果
    - rendered_text：回注给下一轮生成的文本
    - block_index：来源块位置（合成的解析错误条目为 -1）
    """

    action_name: str
    result: ActionResult
    rendered_text: str
    block_index: int = -1

    @classmethod
    def build(cls, action_name: str, result: ActionResult, *, block_index: int = -1) -> "ResultEntry":
        """构造条目并渲染 `rendered_text`。"""

        return cls(
            action_name=action_name,
            result=result,
            rendered_text=render_result_text(action_name, result),
            block_index=block_index,
        )


class ResultSink:
    """有序结果累积器（单 turn 使用）。"""

    def __init__(self) -> None:
        """创建空 sink。"""

        self._entries: List[ResultEntry] = []
        self._sealed = False

    def __len__(self) -> int:
        """当前条目数。"""

        return len(self._entries)

    @property
    def sealed(self) -> bool:
        """是否已 seal（turn ready）。"""

        return self._sealed

    def push(self, entry: ResultEntry) -> None:
        """追加一条结果；seal 之后追加视为状态错误。"""

        if self._sealed:
            raise StateError(f"result sink is sealed; cannot push result for {entry.action_name!r}")
        self._entries.append(entry)

    def seal(self) -> None:
        """标记 turn 已 ready；此后只读。"""

        self._sealed = True

    def snapshot(self) -> List[ResultEntry]:
        """当前条目的只读副本（任何时刻可调用，用于观测）。"""

        return list(self._entries)

    def drain(self) -> List[ResultEntry]:
        """返回有序结果列表；turn 未 ready 时抛 `StateError`。"""

        if not self._sealed:
            raise StateError("turn is not ready; drain() is only allowed after turn_ready")
        return list(self._entries)


__all__ = ["DEFAULT_REJECTED_REASON", "ResultEntry", "ResultSink", "render_result_text"]
