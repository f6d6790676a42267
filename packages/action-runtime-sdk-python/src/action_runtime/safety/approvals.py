"""
Approvals（人工审批）协议与工具函数。

说明：
- SDK 不直接读 stdin/弹窗；审批交互由外部 UI/自动化层实现 `ApprovalProvider`；
- 审批请求/响应对每次请求恰好一次；进度更新走 `ProgressListener` 旁路（fire-and-forget）。
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Dict, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field


class ApprovalDecision(str, Enum):
    """审批决策枚举（最小集合）。"""

    APPROVED = "approved"
    APPROVED_FOR_SESSION = "approved_for_session"
    DENIED = "denied"
    ABORT = "abort"

    @property
    def is_approved(self) -> bool:
        """是否为放行类决策（approved / approved_for_session）。"""

        return self in (ApprovalDecision.APPROVED, ApprovalDecision.APPROVED_FOR_SESSION)


class ApprovalRequest(BaseModel):
    """
    审批请求（面向 UI/人类）。

    字段：
    - approval_key：稳定 key（用于 session 级缓存）
    - action：action 名
    - category：action 分类（未注册或未知时为 None）
    - summary：人类可读摘要（不得包含密钥）
    - details：结构化详情（已脱敏的参数等）
    - progress：可选；发起审批时附带的当前进度
    """

    model_config = ConfigDict(extra="forbid")

    approval_key: str
    action: str
    category: Optional[str] = None
    summary: str
    details: Dict[str, Any] = Field(default_factory=dict)
    progress: Optional[Any] = None


@dataclass(frozen=True)
class ApprovalOutcome:
    """
    审批结果（门禁对调用方的输出）。

    字段：
    - decision：最终决策
    - reason：决策来源（provider/auto/cached/timeout/cancelled/no_provider/provider_error）
    - approval_key：对应请求的 key
    """

    decision: ApprovalDecision
    reason: str
    approval_key: str = ""

    @property
    def approved(self) -> bool:
        """是否放行。"""

        return self.decision.is_approved


@runtime_checkable
class ApprovalProvider(Protocol):
    """
    审批适配层。

    最小接口：
    - request_approval：请求用户做出审批决策
    """

    async def request_approval(
        self,
        *,
        request: ApprovalRequest,
        timeout_ms: Optional[int] = None,
    ) -> ApprovalDecision:
        """
        请求用户对一次 action 做出审批决策。

        约束：
        - `request.summary/details` 不得包含 secrets 明文；
        - `timeout_ms` 为 None 表示由实现自行决定等待策略（Web UI 常见为“无限等待直到用户点击”）。
        """

        ...


@runtime_checkable
class ProgressListener(Protocol):
    """可选能力：接收长耗时 action 的进度更新（不重新发起审批）。"""

    def report_progress(self, *, approval_key: str, action: str, progress: Any) -> None:
        """接收一次进度更新（fire-and-forget；实现不得阻塞）。"""

        ...


def compute_approval_key(*, action: str, request: Dict[str, Any]) -> str:
    """
    计算 approval_key（canonical JSON sha256）。

    参数：
    - action：action 名
    - request：请求的可审计表示（建议仅含稳定字段）
    """

    canonical = {"action": action, "request": request}
    raw = json.dumps(canonical, ensure_ascii=False, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()
