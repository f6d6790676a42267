"""
Safety（权限 profile + 审批）模块。

包含：
- 能力校验：`CapabilityValidator`（纯函数；按当前权限 profile 做成员判断）
- 审批：`ApprovalGate`（自动放行 / session 缓存 / provider / 超时 / 取消）
- 规则审批：`RuleBasedApprovalProvider`（无人值守场景，fail-closed）
"""

from __future__ import annotations

from action_runtime.safety.approvals import (
    ApprovalDecision,
    ApprovalOutcome,
    ApprovalProvider,
    ApprovalRequest,
    ProgressListener,
    compute_approval_key,
)
from action_runtime.safety.gate import ApprovalGate
from action_runtime.safety.policy import (
    CapabilityValidator,
    PermissionProfile,
    PermissionProfileStore,
    PolicyDecision,
    StaticPermissionProfileStore,
)
from action_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider

__all__ = [
    "ApprovalDecision",
    "ApprovalGate",
    "ApprovalOutcome",
    "ApprovalProvider",
    "ApprovalRequest",
    "ApprovalRule",
    "CapabilityValidator",
    "PermissionProfile",
    "PermissionProfileStore",
    "PolicyDecision",
    "ProgressListener",
    "RuleBasedApprovalProvider",
    "StaticPermissionProfileStore",
    "compute_approval_key",
]
