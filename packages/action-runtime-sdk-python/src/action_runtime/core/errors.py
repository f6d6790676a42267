"""
SDK 内部错误分类（异常类型）。

说明：
- 异常只用于模块间传递“错误层级”语义与测试断言；
- 回注给下一轮生成的内容一律使用 `ActionResult`（见 `actions.protocol`），不得让异常穿透编排循环。
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict


class ActionRuntimeError(Exception):
    """SDK 内部错误基类（不建议直接抛出）。"""


@dataclass(frozen=True)
class FrameworkIssue:
    """框架结构化问题对象（可用于日志/事件 payload）。"""

    code: str
    message: str
    details: Dict[str, Any]


class FrameworkError(ActionRuntimeError):
    """框架层结构化错误（英文 `code/message/details`）。"""

    def __init__(self, *, code: str, message: str, details: Dict[str, Any] | None = None) -> None:
        """创建框架错误。

        参数：
        - `code`：稳定错误码（英文大写下划线）
        - `message`：英文错误消息
        - `details`：结构化上下文信息
        """

        super().__init__(message)
        self.code = code
        self.message = message
        self.details: Dict[str, Any] = details or {}

    def __str__(self) -> str:
        """返回用于日志的字符串表示。"""

        return f"{self.code}: {self.message}"

    def to_issue(self) -> FrameworkIssue:
        """把异常转换为可序列化问题对象。"""

        return FrameworkIssue(code=self.code, message=self.message, details=dict(self.details))


class UserError(FrameworkError):
    """调用方输入/配置导致的错误（重复注册、非法参数等）。"""

    def __init__(self, message: str, *, code: str = "USER_ERROR", details: Dict[str, Any] | None = None) -> None:
        """创建 `UserError`。

        参数：
        - `message`：可读错误信息
        - `code`：错误码（默认 `USER_ERROR`）
        - `details`：结构化补充信息
        """

        super().__init__(code=code, message=message, details=details or {})


class ActionError(ActionRuntimeError):
    """action handler 执行失败（handler 可主动抛出；派发层统一转换为 ExecutionError）。"""


class StateError(ActionRuntimeError):
    """turn 状态非法（例如 turn 尚未 ready 就调用 drain）。"""


class BlockParserError(FrameworkError):
    """
    流解析致命错误（不可恢复）。

    说明：
    - 仅在流已无法继续解析时抛出（单个 token/块超出上限、收到非字符串分片等）；
    - 编排层捕获后会以唯一一条合成的 ExecutionError 结束当前 turn。
    """

    def __init__(self, message: str, *, details: Dict[str, Any] | None = None) -> None:
        """创建解析错误（错误码固定为 `STREAM_PARSE_FAILED`）。"""

        super().__init__(code="STREAM_PARSE_FAILED", message=message, details=details or {})


__all__ = [
    "ActionError",
    "ActionRuntimeError",
    "BlockParserError",
    "FrameworkError",
    "FrameworkIssue",
    "StateError",
    "UserError",
]
