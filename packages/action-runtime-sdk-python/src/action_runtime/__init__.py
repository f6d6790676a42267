"""
action_runtime：流式 action 调用编排引擎。

推荐入口：`from action_runtime.engine import ActionEngine`
"""

__version__ = "0.1.0"
