"""Actions：action 协议（规格/调用/结果）、handler 能力对象与注册表。"""

from __future__ import annotations

from action_runtime.actions.capabilities import BoundActionCapabilities
from action_runtime.actions.protocol import (
    ActionCall,
    ActionCapabilities,
    ActionExecutionError,
    ActionHandler,
    ActionRejected,
    ActionResult,
    ActionSpec,
    ActionSuccess,
    ActionValidationError,
)
from action_runtime.actions.registry import UNKNOWN_ACTION_REASON, ActionRegistry

__all__ = [
    "ActionCall",
    "ActionCapabilities",
    "ActionExecutionError",
    "ActionHandler",
    "ActionRegistry",
    "ActionRejected",
    "ActionResult",
    "ActionSpec",
    "ActionSuccess",
    "ActionValidationError",
    "BoundActionCapabilities",
    "UNKNOWN_ACTION_REASON",
]
