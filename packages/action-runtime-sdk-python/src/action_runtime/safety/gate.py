"""
审批门禁（ApprovalGate）：把“问人（或策略）要 yes/no”收敛为一个可挂起的调用点。

语义：
- 自动审批（配置命中 / session 缓存命中）不进入挂起点，直接返回 approved；
- 未配置 provider → denied（fail-closed）；
- provider 超时 → denied；provider 抛异常 → denied；
- 外部取消（cancel_event）时，未完成的审批必须以 denied 结束，provider 调用被取消，不得悬挂；
- 进度更新走旁路：`report_progress` 不会重新发起审批。
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Callable, Dict, Iterable, Optional, Set

from action_runtime.safety.approvals import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalProvider,
    ApprovalRequest,
    ProgressListener,
    compute_approval_key,
)

logger = logging.getLogger(__name__)

_SUMMARY_VALUE_CHARS = 80


def _coerce_decision(value: Any) -> Optional[ApprovalDecision]:
    """把 provider 返回值规范化为 `ApprovalDecision`；无法识别时返回 None。"""

    if isinstance(value, ApprovalDecision):
        return value
    try:
        return ApprovalDecision(str(value or "").strip().lower())
    except ValueError:
        return None


def _default_summary(action_name: str, details: Dict[str, Any]) -> str:
    """生成默认的人类可读审批摘要（参数值截断）。"""

    if not details:
        return f"Approve action '{action_name}'"
    parts = []
    for k, v in details.items():
        text = v if isinstance(v, str) else str(v)
        if len(text) > _SUMMARY_VALUE_CHARS:
            text = text[: _SUMMARY_VALUE_CHARS - 3] + "..."
        parts.append(f"{k}={text}")
    return f"Approve action '{action_name}': " + ", ".join(parts)


class ApprovalGate:
    """统一审批门禁（每个会话一个实例；session 缓存跨 turn 共享）。"""

    def __init__(
        self,
        *,
        provider: Optional[ApprovalProvider],
        approval_timeout_ms: Optional[int] = 60_000,
        auto_approve_actions: Iterable[str] = (),
        auto_approve_categories: Iterable[str] = (),
        get_category: Optional[Callable[[str], Optional[str]]] = None,
        approved_for_session_keys: Optional[Set[str]] = None,
    ) -> None:
        """
        创建门禁。

        参数：
        - provider：外部审批实现（None 表示无人可问；所有需审批的请求按 denied 处理）
        - approval_timeout_ms：等待 provider 的最长时间（None 表示无限等待）
        - auto_approve_actions / auto_approve_categories：自动放行的 action / 分类
        - get_category：action 名 → 分类（通常来自注册表）
        - approved_for_session_keys：session 级已批准 key 集合（可与外部共享）
        """

        self._provider = provider
        self._timeout_ms = approval_timeout_ms
        self._auto_actions = frozenset(auto_approve_actions)
        self._auto_categories = frozenset(auto_approve_categories)
        self._get_category = get_category
        self._session_keys: Set[str] = approved_for_session_keys if approved_for_session_keys is not None else set()

    @property
    def approved_for_session_keys(self) -> Set[str]:
        """session 级已批准的 approval_key 集合。"""

        return self._session_keys

    def build_request(
        self,
        action_name: str,
        rendered_params: Dict[str, Any],
        *,
        summary: Optional[str] = None,
        progress: Optional[Any] = None,
    ) -> ApprovalRequest:
        """构造审批请求（approval_key 基于 action 名与已脱敏参数计算）。"""

        details = dict(rendered_params or {})
        return ApprovalRequest(
            approval_key=compute_approval_key(action=action_name, request=details),
            action=action_name,
            category=self._get_category(action_name) if self._get_category is not None else None,
            summary=summary or _default_summary(action_name, details),
            details=details,
            progress=progress,
        )

    def try_auto_approve(self, request: ApprovalRequest) -> Optional[ApprovalOutcome]:
        """检查自动放行规则；命中返回 outcome，否则 None（需要真正询问）。"""

        if request.approval_key in self._session_keys:
            return ApprovalOutcome(ApprovalDecision.APPROVED_FOR_SESSION, "cached", request.approval_key)
        if request.action in self._auto_actions:
            return ApprovalOutcome(ApprovalDecision.APPROVED, "auto", request.approval_key)
        if self._auto_categories and self._get_category is not None:
            category = self._get_category(request.action)
            if category and category in self._auto_categories:
                return ApprovalOutcome(ApprovalDecision.APPROVED, "auto", request.approval_key)
        return None

    async def request_approval(
        self,
        action_name: str,
        rendered_params: Dict[str, Any],
        *,
        summary: Optional[str] = None,
        progress: Optional[Any] = None,
        cancel_event: Optional[asyncio.Event] = None,
    ) -> ApprovalOutcome:
        """
        请求一次审批（自动放行时不挂起）。

        参数：
        - action_name：action 名
        - rendered_params：已脱敏的参数表示
        - summary：可选的人类可读摘要
        - progress：可选的当前进度（随请求一起展示）
        - cancel_event：turn 的取消信号；置位时未完成的审批以 denied 结束
        """

        request = self.build_request(action_name, rendered_params, summary=summary, progress=progress)
        return await self.decide(request, cancel_event=cancel_event)

    async def decide(self, request: ApprovalRequest, *, cancel_event: Optional[asyncio.Event] = None) -> ApprovalOutcome:
        """对一个已构造的审批请求给出决策（见 `request_approval`）。"""

        auto = self.try_auto_approve(request)
        if auto is not None:
            return auto
        if cancel_event is not None and cancel_event.is_set():
            return ApprovalOutcome(ApprovalDecision.DENIED, "cancelled", request.approval_key)
        if self._provider is None:
            return ApprovalOutcome(ApprovalDecision.DENIED, "no_provider", request.approval_key)

        outcome = await self._await_provider(request, cancel_event)
        if outcome.decision == ApprovalDecision.APPROVED_FOR_SESSION:
            self._session_keys.add(request.approval_key)
        return outcome

    async def _await_provider(self, request: ApprovalRequest, cancel_event: Optional[asyncio.Event]) -> ApprovalOutcome:
        """等待 provider 决策；与取消信号、超时竞争。"""

        assert self._provider is not None
        key = request.approval_key
        provider_task = asyncio.ensure_future(
            self._provider.request_approval(request=request, timeout_ms=self._timeout_ms)
        )
        waiters: Set["asyncio.Future[Any]"] = {provider_task}
        cancel_task: Optional["asyncio.Future[Any]"] = None
        if cancel_event is not None:
            cancel_task = asyncio.ensure_future(cancel_event.wait())
            waiters.add(cancel_task)

        timeout = None if self._timeout_ms is None else float(self._timeout_ms) / 1000.0
        try:
            done, _pending = await asyncio.wait(waiters, timeout=timeout, return_when=asyncio.FIRST_COMPLETED)
        finally:
            if cancel_task is not None:
                cancel_task.cancel()
            if not provider_task.done():
                provider_task.cancel()

        if provider_task in done and not provider_task.cancelled():
            exc = provider_task.exception()
            if isinstance(exc, asyncio.TimeoutError):
                return ApprovalOutcome(ApprovalDecision.DENIED, "timeout", key)
            if exc is not None:
                logger.warning("Approval provider failed for action %r", request.action, exc_info=exc)
                return ApprovalOutcome(ApprovalDecision.DENIED, "provider_error", key)
            decision = _coerce_decision(provider_task.result())
            if decision is None:
                logger.warning("Approval provider returned an unknown decision for action %r", request.action)
                return ApprovalOutcome(ApprovalDecision.DENIED, "provider_error", key)
            return ApprovalOutcome(decision, "provider", key)

        if cancel_event is not None and cancel_event.is_set():
            return ApprovalOutcome(ApprovalDecision.DENIED, "cancelled", key)
        return ApprovalOutcome(ApprovalDecision.DENIED, "timeout", key)

    def report_progress(self, *, action_name: str, approval_key: str, progress: Any) -> None:
        """
        推送进度（fire-and-forget）。

        说明：
        - 仅当 provider 实现了 `ProgressListener` 时转发；
        - listener 异常只记录日志，不影响 action 执行。
        """

        provider = self._provider
        if provider is None or not isinstance(provider, ProgressListener):
            return
        try:
            provider.report_progress(approval_key=approval_key, action=action_name, progress=progress)
        except Exception:
            logger.warning("Progress listener failed for action %r", action_name, exc_info=True)


__all__ = ["ApprovalGate"]
