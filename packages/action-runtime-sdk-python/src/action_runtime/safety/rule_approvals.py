"""
规则审批（RuleBasedApprovalProvider）。

用途：
- 无人值守的 turn（批处理、CI 回放）没有人可以点按钮，用一组有序规则代替人工审批；
- 规则按 action 名（glob）、分类与参数（glob）匹配，首个命中的规则给出决策；
- 未命中任何规则时返回 default（默认 DENIED，fail-closed）。

注意：
- 规则看到的 `details` 是门禁已脱敏的参数；按密钥字面值写条件不会命中。
"""

from __future__ import annotations

import fnmatch
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from action_runtime.safety.approvals import ApprovalDecision, ApprovalProvider, ApprovalRequest

logger = logging.getLogger(__name__)


ApprovalCondition = Callable[[ApprovalRequest], bool]


@dataclass(frozen=True)
class ApprovalRule:
    """
    一条审批规则。

    字段：
    - action：action 名的 glob 模式（`*` 匹配任意 action，`read_*` 匹配前缀）
    - decision：命中后的决策
    - category：可选；要求 action 分类完全相等
    - params：可选；参数名 → glob 模式，全部满足才算命中（缺参数视为不满足）
    - condition：可选谓词；在以上条件都满足后再判断，抛异常视为不命中
    """

    action: str = "*"
    decision: ApprovalDecision = ApprovalDecision.DENIED
    category: Optional[str] = None
    params: Dict[str, str] = field(default_factory=dict)
    condition: Optional[ApprovalCondition] = None

    def matches(self, request: ApprovalRequest) -> bool:
        """判断本规则是否命中请求。"""

        if not fnmatch.fnmatchcase(str(request.action or "").strip(), self.action.strip() or "*"):
            return False
        if self.category is not None and request.category != self.category:
            return False
        for name, pattern in self.params.items():
            if name not in request.details:
                return False
            if not fnmatch.fnmatchcase(str(request.details[name]), pattern):
                return False
        if self.condition is None:
            return True
        try:
            return bool(self.condition(request))
        except Exception:
            logger.debug("Approval rule condition raised for action %r", request.action, exc_info=True)
            return False


class RuleBasedApprovalProvider(ApprovalProvider):
    """按顺序匹配 `ApprovalRule` 的程序化审批方。"""

    def __init__(
        self,
        *,
        rules: List[ApprovalRule],
        default: ApprovalDecision = ApprovalDecision.DENIED,
    ) -> None:
        """
        参数：
        - rules：审批规则（按顺序匹配，首个命中即返回）
        - default：未命中任何规则时的决策
        """

        self._rules = list(rules or [])
        self._default = default

    @property
    def rules(self) -> List[ApprovalRule]:
        """当前规则列表（副本）。"""

        return list(self._rules)

    async def request_approval(self, *, request: ApprovalRequest, timeout_ms: Optional[int] = None) -> ApprovalDecision:  # type: ignore[override]
        """返回首个命中规则的决策；`timeout_ms` 对规则审批无意义。"""

        for index, rule in enumerate(self._rules):
            if rule.matches(request):
                logger.debug("Approval rule #%d matched action %r -> %s", index, request.action, rule.decision.value)
                return rule.decision
        return self._default


__all__ = ["ApprovalCondition", "ApprovalRule", "RuleBasedApprovalProvider"]
