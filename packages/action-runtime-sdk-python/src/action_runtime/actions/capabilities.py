"""
BoundActionCapabilities：每次派发构造一次的 handler 能力对象。

说明：
- 把“请求审批 / 报错 / 输出结果 / 进度”收敛到一个对象上，handler 不再拿到三个散落的回调；
- 审批与进度通过构造时注入的 callable 绑定到具体 action（由编排层提供，已携带取消信号）；
- 报错与输出只做收集，派发层在 handler 返回后据此折叠出最终 ActionResult。
"""

from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Dict, List, Optional

from action_runtime.actions.protocol import ActionCapabilities
from action_runtime.safety.approvals import ApprovalDecision, ApprovalOutcome

ApprovalRequester = Callable[[Optional[str], Optional[Dict[str, Any]]], Awaitable[ApprovalOutcome]]
ProgressReporter = Callable[[Any], None]


class BoundActionCapabilities(ActionCapabilities):
    """绑定到单个 action 的能力对象。"""

    def __init__(
        self,
        *,
        action_name: str,
        approval_requester: Optional[ApprovalRequester] = None,
        progress_reporter: Optional[ProgressReporter] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> None:
        """
        参数：
        - action_name：所属 action 名
        - approval_requester：审批请求实现；缺失时 handler 的审批请求一律 denied（fail-closed）
        - progress_reporter：进度旁路；缺失时进度被丢弃
        - cancel_event：所在 turn 的取消信号
        """

        self.action_name = action_name
        self._approval_requester = approval_requester
        self._progress_reporter = progress_reporter
        self._cancel_event = cancel_event
        self.errors: List[str] = []
        self.results: List[Any] = []
        self.approvals: List[ApprovalOutcome] = []

    @property
    def cancel_event(self) -> Optional[asyncio.Event]:
        """所在 turn 的取消信号（可直接 await）。"""

        return self._cancel_event

    async def request_approval(self, summary: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None) -> ApprovalOutcome:
        """请求一次审批；每次调用恰好产生一次审批请求/响应。"""

        if self._approval_requester is None:
            outcome = ApprovalOutcome(ApprovalDecision.DENIED, "no_provider")
        else:
            outcome = await self._approval_requester(summary, details)
        self.approvals.append(outcome)
        return outcome

    def report_error(self, message: str) -> None:
        """记录一次执行错误。"""

        self.errors.append(str(message))

    def emit_result(self, payload: Any) -> None:
        """记录一段结果输出。"""

        self.results.append(payload)

    def report_progress(self, progress: Any) -> None:
        """转发进度（fire-and-forget）。"""

        if self._progress_reporter is not None:
            self._progress_reporter(progress)

    def is_cancelled(self) -> bool:
        """所在 turn 是否已被取消。"""

        return self._cancel_event is not None and self._cancel_event.is_set()


__all__ = ["ApprovalRequester", "BoundActionCapabilities", "ProgressReporter"]
