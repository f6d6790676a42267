"""
ActionRegistry：action 注册表与派发（dispatch）。

本模块提供：
- 注册：`register/get_spec/find_spec/list_specs/names`
- 执行：`dispatch(ActionCall, capabilities) -> ActionResult`

派发约束：
- 未注册的 action 交给默认 handler，返回 `ValidationError("unknown action")`，不得静默丢弃；
- handler 抛出的异常一律在此边界转换为 `ExecutionError(message)`，不得穿透编排循环；
- handler 可为同步函数或 async 函数。
"""

from __future__ import annotations

import asyncio
import inspect
import logging
from typing import Any, Dict, List, Optional, Union

from action_runtime.actions.protocol import (
    ActionCall,
    ActionCapabilities,
    ActionExecutionError,
    ActionHandler,
    ActionResult,
    ActionSpec,
    ActionSuccess,
    ActionValidationError,
    is_action_result,
)
from action_runtime.core.errors import ActionError, UserError

logger = logging.getLogger(__name__)

UNKNOWN_ACTION_REASON = "unknown action"


def _unknown_action_handler(call: ActionCall, caps: ActionCapabilities) -> ActionResult:
    """默认 handler：未注册的 action 一律返回 ValidationError。"""

    _ = (call, caps)
    return ActionValidationError(reason=UNKNOWN_ACTION_REASON)


def _exception_message(exc: BaseException) -> str:
    """把异常转为一句话错误信息（不含堆栈）。"""

    text = str(exc).strip()
    return text if text else type(exc).__name__


def _fold_result(returned: Any, caps: ActionCapabilities) -> ActionResult:
    """
    把 handler 返回值与能力对象收集到的输出折叠为最终 ActionResult。

    优先级：
    1) handler 显式返回的 ActionResult
    2) report_error 收集到的错误 → ExecutionError
    3) emit_result / 非 None 返回值 → Success
    """

    if is_action_result(returned):
        return returned  # type: ignore[return-value]

    errors: List[str] = list(getattr(caps, "errors", []) or [])
    results: List[Any] = list(getattr(caps, "results", []) or [])
    if returned is not None:
        results.append(returned)

    if errors:
        return ActionExecutionError(message="\n".join(errors))
    if not results:
        return ActionSuccess(payload=None)
    if len(results) == 1:
        return ActionSuccess(payload=results[0])
    if all(isinstance(r, str) for r in results):
        return ActionSuccess(payload="\n".join(results))
    return ActionSuccess(payload=results)


class ActionRegistry:
    """action 注册表（名称 → handler 的函数表，启动时填充）。"""

    def __init__(self) -> None:
        """创建空注册表。"""

        self._specs: Dict[str, ActionSpec] = {}
        self._handlers: Dict[str, ActionHandler] = {}

    def register(self, spec: Union[ActionSpec, str], handler: ActionHandler, *, override: bool = False) -> None:
        """
        注册 action。

        参数：
        - spec：action 规格；传入字符串时视为仅有名字的最小规格
        - handler：执行函数（sync 或 async）
        - override：是否允许覆盖同名 action；默认 False（重复注册抛 UserError）
        """

        if isinstance(spec, str):
            spec = ActionSpec(name=spec)
        name = spec.name.strip()
        if not name:
            raise UserError("action 名不能为空")
        if name in self._specs and not override:
            raise UserError(f"重复注册 action：{name}")
        self._specs[name] = spec
        self._handlers[name] = handler

    def has(self, name: str) -> bool:
        """是否已注册。"""

        return name in self._specs

    def get_spec(self, name: str) -> ActionSpec:
        """获取 action 规格；不存在则抛 `UserError`。"""

        try:
            return self._specs[name]
        except KeyError as e:
            raise UserError(f"未注册的 action：{name}") from e

    def find_spec(self, name: str) -> Optional[ActionSpec]:
        """获取 action 规格；不存在返回 None。"""

        return self._specs.get(name)

    def category_of(self, name: str) -> Optional[str]:
        """返回 action 的能力分类（未注册或未分类返回 None）。"""

        spec = self._specs.get(name)
        return spec.category if spec is not None else None

    def names(self) -> List[str]:
        """按注册顺序返回所有 action 名。"""

        return list(self._specs)

    def list_specs(self) -> List[ActionSpec]:
        """按注册顺序返回所有 action 规格。"""

        return list(self._specs.values())

    async def dispatch(
        self,
        call: ActionCall,
        capabilities: ActionCapabilities,
        *,
        timeout_ms: Optional[int] = None,
    ) -> ActionResult:
        """
        派发执行一个 ActionCall。

        参数：
        - call：已通过校验（且已获批准）的调用
        - capabilities：本次派发的能力对象
        - timeout_ms：可选执行超时；超时返回 ExecutionError

        说明：
        - `asyncio.CancelledError` 会继续上抛（取消由编排层统一记录）。
        """

        handler = self._handlers.get(call.name, _unknown_action_handler)
        try:
            returned = handler(call, capabilities)
            if inspect.isawaitable(returned):
                if timeout_ms is None:
                    returned = await returned
                else:
                    returned = await asyncio.wait_for(returned, timeout=float(timeout_ms) / 1000.0)
        except asyncio.CancelledError:
            raise
        except asyncio.TimeoutError as e:
            if timeout_ms is None:
                return ActionExecutionError(message=_exception_message(e))
            return ActionExecutionError(message=f"action timed out after {timeout_ms}ms")
        except UserError as e:
            return ActionValidationError(reason=e.message)
        except ActionError as e:
            return ActionExecutionError(message=_exception_message(e))
        except Exception as e:
            logger.warning("Action handler %r raised unexpectedly", call.name, exc_info=True)
            return ActionExecutionError(message=_exception_message(e))

        return _fold_result(returned, capabilities)


__all__ = ["ActionRegistry", "UNKNOWN_ACTION_REASON"]
