"""事件出口：把 turn 内的可观测事件统一包装为 AgentEvent 并交给外部 sink。"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional, Sequence

from action_runtime.core.contracts import AgentEvent, EventSink
from action_runtime.core.event_redaction import redact_event_data

logger = logging.getLogger(__name__)


def _event_timestamp() -> str:
    """事件时间戳：UTC，RFC3339，毫秒精度，以 Z 结尾。"""

    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


class TurnEventEmitter:
    """绑定 run_id/turn_id 的事件出口；sink 异常只记录日志，不影响编排。"""

    def __init__(
        self,
        *,
        run_id: str,
        turn_id: str,
        sink: Optional[EventSink] = None,
        redaction_values: Sequence[str] = (),
    ) -> None:
        """sink 为 None 时所有事件被丢弃；payload 在投递前按 redaction_values 脱敏。"""

        self._run_id = run_id
        self._turn_id = turn_id
        self._sink = sink
        self._redaction_values = list(redaction_values)

    def emit(self, type_: str, payload: Optional[Dict[str, Any]] = None, *, step_id: Optional[str] = None) -> None:
        """构造并投递一条事件。"""

        if self._sink is None:
            return
        data = dict(payload or {})
        if self._redaction_values:
            data = redact_event_data(data, redaction_values=self._redaction_values)
        event = AgentEvent(
            type=type_,
            timestamp=_event_timestamp(),
            run_id=self._run_id,
            turn_id=self._turn_id,
            step_id=step_id,
            payload=data,
        )
        try:
            self._sink(event)
        except Exception:
            logger.warning("Event sink failed for event %r", type_, exc_info=True)


__all__ = ["TurnEventEmitter"]
