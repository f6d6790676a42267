"""
核心契约（Core Contracts）。

包含：
- AgentEvent：统一事件流条目（可观测性旁路，不参与编排决策）
- ContentBlock：解析器产出的内容块（TextBlock / ActionRequestBlock）
- ContentBlockEvent：解析器每次 feed 产出的块级增量
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Callable, Dict, Optional, Union

from pydantic import BaseModel, ConfigDict, Field


class AgentEvent(BaseModel):
    """
    AgentEvent：统一事件流条目（最小可用）。

    字段：
    - type：事件类型（action_requested/approval_decided/turn_ready/...）
    - timestamp：RFC3339 时间字符串
    - run_id：会话/run 标识（由调用方提供）
    - turn_id/step_id：可选；用于关联 turn 与单个 action 的处理步骤
    - payload：JSON object（dict），用于承载事件专用字段
    """

    model_config = ConfigDict(extra="forbid")

    type: str
    timestamp: str = Field(description="RFC3339 时间字符串；wire key 固定为 timestamp。")
    run_id: str
    turn_id: Optional[str] = None
    step_id: Optional[str] = None
    payload: Dict[str, Any] = Field(default_factory=dict)

    def to_json(self) -> str:
        """序列化为 JSON 字符串。"""

        return self.model_dump_json(exclude_none=True)

    @classmethod
    def from_json(cls, raw_json: str) -> "AgentEvent":
        """从 JSON 字符串反序列化为 `AgentEvent`。"""

        return cls.model_validate_json(raw_json)


EventSink = Callable[[AgentEvent], None]


@dataclass(frozen=True)
class TextBlock:
    """
    纯文本块。

    说明：
    - 文本块对编排循环而言总是“终态”；`partial` 只表示文本内容可能继续增长（供 UI 使用）。
    """

    text: str
    partial: bool = True

    @property
    def kind(self) -> str:
        """块类型标识（`text`）。"""

        return "text"


@dataclass(frozen=True)
class ActionRequestBlock:
    """
    action 请求块（内嵌在 agent 输出中的结构化调用）。

    字段：
    - name：action 名称
    - params：参数名 → 参数值（首次出现顺序；重复参数后者覆盖）
    - partial：True 表示闭合标签尚未出现

    约束：
    - `partial=True` 时 params 只是临时快照，禁止用于校验/审批/执行。
    """

    name: str
    params: Dict[str, str] = field(default_factory=dict)
    partial: bool = True

    @property
    def kind(self) -> str:
        """块类型标识（`action`）。"""

        return "action"


ContentBlock = Union[TextBlock, ActionRequestBlock]


@dataclass(frozen=True)
class ContentBlockEvent:
    """
    解析器输出事件（块级增量）。

    字段：
    - block_index：块在 turn.blocks 中的位置（稳定，不复用）
    - block：该块在本次 feed 之后的最新快照
    - is_new_block：True 表示该 index 首次出现（调用方应 append，而非原位替换）
    """

    block_index: int
    block: ContentBlock
    is_new_block: bool


__all__ = [
    "ActionRequestBlock",
    "AgentEvent",
    "ContentBlock",
    "ContentBlockEvent",
    "EventSink",
    "TextBlock",
]
