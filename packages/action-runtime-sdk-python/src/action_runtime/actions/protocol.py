"""
Action 协议（ActionSpec / ActionCall / ActionResult / ActionCapabilities）。

本模块只定义“可实现级”的最小协议：
- ActionSpec：注册表条目（名称、分类、必填参数）
- ActionCall：执行输入（call_id/name/params；只会由已 finalize 且通过校验的块构造）
- ActionResult：四种终态结果的 tagged union（以 `kind` 区分）
- ActionCapabilities：派发时注入 handler 的唯一能力对象（审批/报错/输出/进度）
"""

from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Literal, Optional, Protocol, Union, runtime_checkable

from pydantic import BaseModel, ConfigDict, Field

from action_runtime.safety.approvals import ApprovalOutcome


class ActionSpec(BaseModel):
    """
    Action 注册信息。

    字段：
    - name：action 名（全局唯一，稳定）
    - description：说明（可选；用于提示词/文档）
    - category：能力分类（read/edit/command/browser/...），供权限 profile 做分类级授权
    - required_params：必填参数名；缺失时编排层直接产出 ValidationError（不会进入审批）
    - params：全部已知参数名（含可选参数；仅用于文档/审批摘要）
    """

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    category: Optional[str] = None
    required_params: List[str] = Field(default_factory=list)
    params: List[str] = Field(default_factory=list)

    def missing_params(self, params: Dict[str, str]) -> List[str]:
        """返回缺失（或为空白）的必填参数名列表（保持声明顺序）。"""

        return [p for p in self.required_params if not str(params.get(p) or "").strip()]


class ActionCall(BaseModel):
    """
    Action 调用（内部表示）。

    字段：
    - call_id：本次调用 id（形如 `turn_1:3`，用于事件关联）
    - name：action 名
    - params：已 finalize 的参数快照
    - block_index：来源块在 turn.blocks 中的位置
    """

    model_config = ConfigDict(extra="forbid")

    call_id: str
    name: str
    params: Dict[str, str] = Field(default_factory=dict)
    block_index: int = 0


class ActionSuccess(BaseModel):
    """执行成功；payload 为 handler 产出（字符串或 JSON 可序列化对象）。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["success"] = "success"
    payload: Any = None


class ActionValidationError(BaseModel):
    """执行前被拒绝：参数缺失、未知 action、或权限策略拒绝（reason 面向模型/用户，稳定可读）。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["validation_error"] = "validation_error"
    reason: str


class ActionRejected(BaseModel):
    """人工（或审批策略）拒绝，或因本 turn 已有拒绝/取消而被跳过。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["rejected"] = "rejected"
    reason: Optional[str] = None


class ActionExecutionError(BaseModel):
    """执行失败（handler 报错/崩溃/超时/取消）；message 原样回注给下一轮生成。"""

    model_config = ConfigDict(extra="forbid")

    kind: Literal["execution_error"] = "execution_error"
    message: str


ActionResult = Union[ActionSuccess, ActionValidationError, ActionRejected, ActionExecutionError]

ACTION_RESULT_TYPES = (ActionSuccess, ActionValidationError, ActionRejected, ActionExecutionError)


def is_action_result(value: Any) -> bool:
    """判断对象是否为四种 ActionResult 之一。"""

    return isinstance(value, ACTION_RESULT_TYPES)


@runtime_checkable
class ActionCapabilities(Protocol):
    """
    handler 可用的能力面（每次派发实现一次）。

    约束：
    - 该对象只会在 action 通过校验之后构造，因此 handler 发起的任何审批都发生在校验之后；
    - handler 可以多次请求审批（例如“开始前一次、不可逆子步骤前再一次”）；
    - `report_progress` 为 fire-and-forget，不会重新发起审批。
    """

    async def request_approval(self, summary: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None) -> ApprovalOutcome:
        """请求一次审批（挂起直到决策；取消时返回 denied）。"""
        ...

    def report_error(self, message: str) -> None:
        """报告一次执行错误（未显式返回结果时，折叠为 ExecutionError）。"""
        ...

    def emit_result(self, payload: Any) -> None:
        """输出一段结果（未显式返回结果时，折叠为 Success）。"""
        ...

    def report_progress(self, progress: Any) -> None:
        """推送一次进度更新（旁路，不影响审批状态）。"""
        ...

    def is_cancelled(self) -> bool:
        """所在 turn 是否已被取消（长耗时 handler 应轮询并尽快退出）。"""
        ...


ActionHandlerReturn = Union[ActionResult, str, Dict[str, Any], None]
ActionHandler = Callable[
    [ActionCall, ActionCapabilities],
    Union[ActionHandlerReturn, Awaitable[ActionHandlerReturn]],
]


__all__ = [
    "ACTION_RESULT_TYPES",
    "ActionCall",
    "ActionCapabilities",
    "ActionExecutionError",
    "ActionHandler",
    "ActionHandlerReturn",
    "ActionRejected",
    "ActionResult",
    "ActionSpec",
    "ActionSuccess",
    "ActionValidationError",
    "is_action_result",
]
