"""
ActionEngine：会话级（跨 turn）的组装根。

职责：
- 持有注册表、权限 profile 存储、能力校验器与审批门禁（session 级审批缓存跨 turn 共享）；
- 为每个 turn 创建 `TurnSession`（turn_id 形如 `turn_1`、`turn_2`……）。

不负责：
- 模型调用、提示词构造、多轮对话历史；这些由上层在 turn 之间完成。
"""

from __future__ import annotations

import logging
import uuid
from typing import Optional, Sequence

from action_runtime.actions.registry import ActionRegistry
from action_runtime.config.loader import ActionRuntimeConfig, load_default_config
from action_runtime.core.contracts import EventSink
from action_runtime.core.session import FragmentSource, TurnOutcome, TurnSession
from action_runtime.safety.approvals import ApprovalProvider
from action_runtime.safety.gate import ApprovalGate
from action_runtime.safety.policy import CapabilityValidator, PermissionProfileStore

logger = logging.getLogger(__name__)


class ActionEngine:
    """action 编排引擎（每个会话一个实例）。"""

    def __init__(
        self,
        *,
        registry: ActionRegistry,
        approval_provider: Optional[ApprovalProvider] = None,
        config: Optional[ActionRuntimeConfig] = None,
        profile_store: Optional[PermissionProfileStore] = None,
        event_sink: Optional[EventSink] = None,
        run_id: Optional[str] = None,
        redaction_values: Sequence[str] = (),
    ) -> None:
        """
        参数：
        - registry：已填充的 action 注册表
        - approval_provider：审批实现；None 表示无人可问（需审批的 action 一律 denied）
        - config：配置；None 时使用随包默认配置
        - profile_store：权限 profile 存储；None 时由配置中的 profiles 构造
        - event_sink：可观测事件出口
        - run_id：会话 id；None 时自动生成
        - redaction_values：事件/审批详情中需脱敏的字面值（例如 API key）
        """

        self._config = config or load_default_config()
        self._registry = registry
        self._profile_store = profile_store or self._config.build_profile_store()
        self._validator = CapabilityValidator(always_available_actions=self._config.safety.always_available_actions)
        self._gate = ApprovalGate(
            provider=approval_provider,
            approval_timeout_ms=self._config.safety.approval_timeout_ms,
            auto_approve_actions=self._config.safety.auto_approve_actions,
            auto_approve_categories=self._config.safety.auto_approve_categories,
            get_category=registry.category_of,
        )
        self._event_sink = event_sink
        self._run_id = run_id or f"run_{uuid.uuid4().hex[:12]}"
        self._redaction_values = list(redaction_values)
        self._turns = 0

    @property
    def run_id(self) -> str:
        """会话 id。"""

        return self._run_id

    @property
    def config(self) -> ActionRuntimeConfig:
        """生效中的配置。"""

        return self._config

    @property
    def registry(self) -> ActionRegistry:
        """action 注册表。"""

        return self._registry

    @property
    def gate(self) -> ApprovalGate:
        """审批门禁（含 session 级审批缓存）。"""

        return self._gate

    @property
    def profile_store(self) -> PermissionProfileStore:
        """权限 profile 存储（切换 profile 即时生效于后续 action）。"""

        return self._profile_store

    def start_turn(self) -> TurnSession:
        """创建下一个 turn 的会话对象（不会自动启动编排循环）。"""

        self._turns += 1
        turn_id = f"turn_{self._turns}"
        logger.debug("Starting %s for %s", turn_id, self._run_id)
        return TurnSession(
            turn_id=turn_id,
            run_id=self._run_id,
            registry=self._registry,
            validator=self._validator,
            profile_store=self._profile_store,
            gate=self._gate,
            run_config=self._config.run,
            event_sink=self._event_sink,
            redaction_values=self._redaction_values,
        )

    async def run_turn(self, fragments: FragmentSource) -> TurnOutcome:
        """便捷入口：新建 turn，喂入整个分片序列并等待结果。"""

        return await self.start_turn().run(fragments)


__all__ = ["ActionEngine"]
