"""
事件参数脱敏（纯函数）。

统一处理 event/审批详情中 action 参数的表示：
- 已知 secret 值替换为 `<redacted>`；
- 过长的参数值不原样落入事件，只保留长度、sha256 与前缀预览。
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, Mapping, Sequence

DEFAULT_MAX_VALUE_CHARS = 2_000
_PREVIEW_CHARS = 200


def _redact_str(text: str, redaction_values: Sequence[str]) -> str:
    """将字符串中的已知 secret 值替换为 `<redacted>`（best-effort）。"""
    if not text:
        return text
    out = text
    for v in redaction_values:
        if not isinstance(v, str):
            continue
        vv = v.strip()
        if len(vv) < 4:
            continue
        out = out.replace(vv, "<redacted>")
    return out


def redact_event_data(data: Any, *, redaction_values: Sequence[str] = ()) -> Any:
    """
    递归脱敏事件数据（best-effort）。

    规则：
    - 字符串中出现已知 secret 值时替换为 `<redacted>`；
    - 保留原有结构，避免影响可观测性。
    """

    if isinstance(data, str):
        return _redact_str(data, redaction_values)
    if isinstance(data, list):
        return [redact_event_data(x, redaction_values=redaction_values) for x in data]
    if isinstance(data, dict):
        out: Dict[str, Any] = {}
        for k, v in data.items():
            out[str(k)] = redact_event_data(v, redaction_values=redaction_values)
        return out
    return data


def sanitize_params_for_event(
    params: Mapping[str, str],
    *,
    redaction_values: Sequence[str] = (),
    max_value_chars: int = DEFAULT_MAX_VALUE_CHARS,
) -> Dict[str, Any]:
    """
    将 action 参数转成“可观测但不泄露 secrets”的表示（用于事件与审批详情）。

    说明：
    - 不影响真实执行参数；
    - 超长值替换为 `{"chars", "sha256", "preview"}`，sha256 基于原值计算（脱敏前）。
    """

    out: Dict[str, Any] = {}
    for key, value in params.items():
        text = str(value)
        if len(text) > max_value_chars:
            out[str(key)] = {
                "chars": len(text),
                "sha256": hashlib.sha256(text.encode("utf-8")).hexdigest(),
                "preview": _redact_str(text[:_PREVIEW_CHARS], redaction_values),
            }
            continue
        out[str(key)] = _redact_str(text, redaction_values)
    return out


__all__ = ["redact_event_data", "sanitize_params_for_event"]
