"""
能力校验（Capability Validator）与权限 profile。

约束：
- 校验是纯函数：同步、无 IO，只做集合成员判断与 profile 级覆盖规则；
- 拒绝原因必须是稳定、可展示给用户/模型的英文短句（不得包含堆栈）。

规则顺序（首个命中即返回）：
1) profile.disabled_actions 显式禁用 → deny（即使其分类已启用）
2) always_available_actions → allow
3) profile.enabled_actions 显式启用 → allow
4) action 分类 ∈ profile.enabled_categories → allow
5) 其余 → deny
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional, Protocol, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from action_runtime.core.errors import UserError


class PermissionProfile(BaseModel):
    """
    权限 profile（外部配置数据）。

    字段：
    - name：profile 名（例如 plan/act/readonly）
    - enabled_categories：启用的能力分类
    - enabled_actions：显式启用的 action（不看分类）
    - disabled_actions：显式禁用的 action（优先级最高）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    enabled_categories: List[str] = Field(default_factory=list)
    enabled_actions: List[str] = Field(default_factory=list)
    disabled_actions: List[str] = Field(default_factory=list)


@dataclass(frozen=True)
class PolicyDecision:
    """校验结果（allow/deny + 原因 + 命中的规则）。"""

    action: str
    reason: str
    matched_rule: Optional[str] = None

    @property
    def allowed(self) -> bool:
        """是否放行。"""

        return self.action == "allow"


class CapabilityValidator:
    """把 action 名与当前权限 profile 做成员判断。"""

    def __init__(self, *, always_available_actions: Iterable[str] = ()) -> None:
        """
        参数：
        - always_available_actions：任何 profile 下都可用的 action（例如向用户提问）
        """

        self._always_available = frozenset(str(x) for x in always_available_actions)

    def validate(
        self,
        action_name: str,
        profile: PermissionProfile,
        *,
        category: Optional[str] = None,
        params: Optional[Dict[str, str]] = None,
    ) -> PolicyDecision:
        """
        校验一次 action 请求是否被当前 profile 允许。

        参数：
        - action_name：action 名
        - profile：当前生效的权限 profile
        - category：action 的能力分类（来自注册表；未知则为 None）
        - params：已 finalize 的参数（当前规则不使用，保留给 profile 级扩展规则）
        """

        _ = params
        name = str(action_name or "").strip()
        if name in profile.disabled_actions:
            return PolicyDecision(
                action="deny",
                reason=f"Action '{name}' is disabled in permission profile '{profile.name}'.",
                matched_rule="disabled_actions",
            )
        if name in self._always_available:
            return PolicyDecision(action="allow", reason="Action is always available.", matched_rule="always_available")
        if name in profile.enabled_actions:
            return PolicyDecision(
                action="allow",
                reason=f"Allowed by permission profile '{profile.name}'.",
                matched_rule="enabled_actions",
            )
        cat = str(category or "").strip()
        if cat and cat in profile.enabled_categories:
            return PolicyDecision(
                action="allow",
                reason=f"Category '{cat}' is enabled in permission profile '{profile.name}'.",
                matched_rule=f"category={cat}",
            )
        return PolicyDecision(
            action="deny",
            reason=f"Action '{name}' is not available in permission profile '{profile.name}'.",
            matched_rule=None,
        )


@runtime_checkable
class PermissionProfileStore(Protocol):
    """权限 profile 的外部存储（同步读取）。"""

    def get_active_permission_profile(self) -> PermissionProfile:
        """返回当前生效的 profile。"""

        ...


class StaticPermissionProfileStore(PermissionProfileStore):
    """内存 profile 存储（通常由配置文件构造；可在运行期切换 active profile）。"""

    def __init__(self, *, profiles: Iterable[PermissionProfile], active: str) -> None:
        """创建存储；`active` 必须是已给出的 profile 名。"""

        self._profiles: Dict[str, PermissionProfile] = {}
        for p in profiles:
            if p.name in self._profiles:
                raise UserError(f"重复的 permission profile：{p.name}")
            self._profiles[p.name] = p
        self._active = ""
        self.set_active(active)

    def set_active(self, name: str) -> None:
        """切换当前 profile；不存在时抛 `UserError`。"""

        if name not in self._profiles:
            raise UserError(f"未定义的 permission profile：{name}", details={"known": sorted(self._profiles)})
        self._active = name

    def get_active_permission_profile(self) -> PermissionProfile:
        """返回当前生效的 profile。"""

        return self._profiles[self._active]


__all__ = [
    "CapabilityValidator",
    "PermissionProfile",
    "PermissionProfileStore",
    "PolicyDecision",
    "StaticPermissionProfileStore",
]
