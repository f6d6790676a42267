"""
对外稳定入口：ActionEngine。

说明：
- 推荐用法：`from action_runtime.engine import ActionEngine`
- 实现位于 `action_runtime.core.engine.ActionEngine`；此模块仅提供稳定 import 路径与类型重导出。
"""

from __future__ import annotations

from action_runtime.core.engine import ActionEngine
from action_runtime.core.session import TurnOutcome, TurnSession

__all__ = ["ActionEngine", "TurnOutcome", "TurnSession"]
