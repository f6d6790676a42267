"""
01_offline_minimal_turn：离线最小 turn 示例。

演示：
- 把一段“模型输出”按碎片喂给 TurnSession，流式解析出 action 块；
- read 自动放行，edit 走脚本化审批（APPROVED_FOR_SESSION 后，同会话内参数相同的 edit 不再询问）；
- turn 结束后取出有序结果（rendered_text 可直接作为下一轮 observation）。

约束：
- 不依赖外网与真实 key；所有文件操作都限定在 --workspace-root 下。
"""

from __future__ import annotations

import argparse
import asyncio
from pathlib import Path
from typing import List, Optional

from action_runtime.actions.protocol import ActionSpec
from action_runtime.actions.registry import ActionRegistry
from action_runtime.config.loader import load_config_dicts
from action_runtime.core.contracts import AgentEvent
from action_runtime.engine import ActionEngine
from action_runtime.safety.approvals import ApprovalDecision, ApprovalRequest


class _ScriptedApprovalProvider:
    """按预设顺序返回审批决策；用于离线演示。"""

    def __init__(self, decisions: List[ApprovalDecision]) -> None:
        """保存决策序列并记录每次被调用的 action 名。"""

        self._decisions = list(decisions)
        self.calls: List[str] = []

    async def request_approval(self, *, request: ApprovalRequest, timeout_ms: Optional[int] = None) -> ApprovalDecision:
        """弹出下一个决策；用尽后 fail-closed（DENIED）。"""

        self.calls.append(request.action)
        if not self._decisions:
            return ApprovalDecision.DENIED
        return self._decisions.pop(0)


def _build_registry(workspace_root: Path) -> ActionRegistry:
    """注册 read/edit 两个最小 handler（仅访问 workspace_root 内的文件）。"""

    def _resolve(rel: str) -> Path:
        """把相对路径解析到 workspace 内；越界视为用户输入错误。"""

        p = (workspace_root / rel).resolve()
        if workspace_root not in p.parents and p != workspace_root:
            raise ValueError(f"path escapes workspace: {rel}")
        return p

    def _read(call, caps):
        """读取文件内容。"""

        return _resolve(call.params["path"]).read_text(encoding="utf-8")

    def _edit(call, caps):
        """写入文件内容，并回报写入字节数。"""

        target = _resolve(call.params["path"])
        target.write_text(call.params["content"], encoding="utf-8")
        caps.report_progress({"bytes": len(call.params["content"])})
        return {"path": call.params["path"], "written": True}

    registry = ActionRegistry()
    registry.register(ActionSpec(name="read", category="read", required_params=["path"]), _read)
    registry.register(ActionSpec(name="edit", category="edit", required_params=["path", "content"]), _edit)
    return registry


def _fragments(text: str, size: int) -> List[str]:
    """把完整输出切成固定大小的碎片，模拟流式到达。"""

    return [text[i : i + size] for i in range(0, len(text), size)]


async def _run(workspace_root: Path) -> None:
    """依次运行两个 turn 并断言关键结果。"""

    (workspace_root / "notes.txt").write_text("hello from disk", encoding="utf-8")

    provider = _ScriptedApprovalProvider([ApprovalDecision.APPROVED_FOR_SESSION])
    events: List[AgentEvent] = []
    engine = ActionEngine(
        registry=_build_registry(workspace_root),
        approval_provider=provider,
        config=load_config_dicts([{"run": {"single_action_per_turn": False}, "safety": {"auto_approve_categories": ["read"]}}]),
        event_sink=events.append,
        run_id="run_example_step_01",
    )

    turn1 = (
        "Let me look first. <read><path>notes.txt</path></read> "
        "Now I will write. <edit><path>out.txt</path><content>first</content></edit>"
    )
    outcome1 = await engine.run_turn(_fragments(turn1, 7))
    assert [e.result.kind for e in outcome1.results] == ["success", "success"]
    assert (workspace_root / "out.txt").read_text(encoding="utf-8") == "first"
    assert provider.calls == ["edit"]
    print("[turn_1] results:", [e.rendered_text for e in outcome1.results])

    (workspace_root / "out.txt").write_text("changed outside", encoding="utf-8")
    turn2 = "<edit><path>out.txt</path><content>first</content></edit>"
    outcome2 = await engine.run_turn(_fragments(turn2, 5))
    assert [e.result.kind for e in outcome2.results] == ["success"]
    assert (workspace_root / "out.txt").read_text(encoding="utf-8") == "first"
    assert provider.calls == ["edit"], "approved_for_session should skip the second prompt"
    print("[turn_2] results:", [e.rendered_text for e in outcome2.results])

    assert [e.type for e in events].count("turn_ready") == 2
    print("[events] total:", len(events))


def main() -> int:
    """脚本入口。"""

    parser = argparse.ArgumentParser(description="01_offline_minimal_turn (offline)")
    parser.add_argument("--workspace-root", default=".", help="Workspace root path")
    args = parser.parse_args()

    root = Path(args.workspace_root).resolve()
    root.mkdir(parents=True, exist_ok=True)

    asyncio.run(_run(root))

    print("EXAMPLE_OK: step_by_step_01")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
