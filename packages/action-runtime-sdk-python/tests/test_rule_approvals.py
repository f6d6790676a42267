from __future__ import annotations

import asyncio

from action_runtime.actions.protocol import ActionSpec
from action_runtime.actions.registry import ActionRegistry
from action_runtime.engine import ActionEngine
from action_runtime.safety.approvals import ApprovalDecision, ApprovalRequest
from action_runtime.safety.rule_approvals import ApprovalRule, RuleBasedApprovalProvider


def _req(action: str = "edit", **details: str) -> ApprovalRequest:
    return ApprovalRequest(approval_key="k", action=action, summary="s", details=dict(details))


def test_rule_based_provider_fail_closed_by_default() -> None:
    provider = RuleBasedApprovalProvider(rules=[])
    decision = asyncio.run(provider.request_approval(request=_req(path="a"), timeout_ms=1))
    assert decision == ApprovalDecision.DENIED


def test_rule_based_provider_matches_action_and_condition() -> None:
    matched = []

    def _cond(r: ApprovalRequest) -> bool:
        matched.append(r.action)
        return r.details.get("path") == "ok.txt"

    provider = RuleBasedApprovalProvider(
        rules=[ApprovalRule(action="edit", condition=_cond, decision=ApprovalDecision.APPROVED)]
    )
    assert asyncio.run(provider.request_approval(request=_req(path="ok.txt"))) == ApprovalDecision.APPROVED
    assert asyncio.run(provider.request_approval(request=_req(path="no.txt"))) == ApprovalDecision.DENIED
    assert asyncio.run(provider.request_approval(request=_req("read", path="ok.txt"))) == ApprovalDecision.DENIED
    assert matched == ["edit", "edit"]


def test_wildcard_rule_matches_any_action() -> None:
    provider = RuleBasedApprovalProvider(rules=[ApprovalRule(action="*", decision=ApprovalDecision.APPROVED_FOR_SESSION)])
    assert asyncio.run(provider.request_approval(request=_req("anything"))) == ApprovalDecision.APPROVED_FOR_SESSION


def test_rule_condition_exception_treated_as_no_match() -> None:
    def _boom(_: ApprovalRequest) -> bool:
        raise RuntimeError("boom")

    provider = RuleBasedApprovalProvider(
        rules=[ApprovalRule(action="edit", condition=_boom, decision=ApprovalDecision.APPROVED)],
        default=ApprovalDecision.DENIED,
    )
    assert asyncio.run(provider.request_approval(request=_req(path="ok.txt"))) == ApprovalDecision.DENIED


def test_engine_can_use_rule_based_provider_to_approve_edit() -> None:
    written = {}

    def _edit(call, caps):
        written[call.params["path"]] = call.params["content"]
        return "ok"

    registry = ActionRegistry()
    registry.register(ActionSpec(name="edit", category="edit", required_params=["path", "content"]), _edit)
    provider = RuleBasedApprovalProvider(
        rules=[
            ApprovalRule(
                action="edit",
                condition=lambda r: str(r.details.get("path", "")).endswith(".txt"),
                decision=ApprovalDecision.APPROVED,
            )
        ]
    )
    engine = ActionEngine(registry=registry, approval_provider=provider)

    outcome = asyncio.run(engine.run_turn(["<edit><path>hello.txt</path><content>hi</content></edit>"]))

    assert written == {"hello.txt": "hi"}
    assert [e.result.kind for e in outcome.results] == ["success"]
    assert outcome.action_executed is True


def test_glob_action_category_and_param_patterns() -> None:
    provider = RuleBasedApprovalProvider(
        rules=[
            ApprovalRule(action="edit", params={"path": "secrets/*"}, decision=ApprovalDecision.DENIED),
            ApprovalRule(action="edit", params={"path": "*.md"}, decision=ApprovalDecision.APPROVED),
            ApprovalRule(action="browser_*", decision=ApprovalDecision.ABORT),
            ApprovalRule(category="read", decision=ApprovalDecision.APPROVED_FOR_SESSION),
        ]
    )

    def _decide(action: str, category=None, **details: str) -> ApprovalDecision:
        req = ApprovalRequest(approval_key="k", action=action, category=category, summary="s", details=dict(details))
        return asyncio.run(provider.request_approval(request=req))

    assert _decide("edit", path="secrets/notes.md") == ApprovalDecision.DENIED
    assert _decide("edit", path="docs/intro.md") == ApprovalDecision.APPROVED
    assert _decide("edit") == ApprovalDecision.DENIED
    assert _decide("browser_open", url="https://example.com") == ApprovalDecision.ABORT
    assert _decide("list_files", category="read") == ApprovalDecision.APPROVED_FOR_SESSION
    assert _decide("list_files", category="command") == ApprovalDecision.DENIED


def test_engine_passes_registry_category_to_rules() -> None:
    ran = []
    registry = ActionRegistry()
    registry.register(ActionSpec(name="list_files", category="read"), lambda call, caps: ran.append("list") or "a.txt")
    registry.register(ActionSpec(name="command", category="command"), lambda call, caps: ran.append("command") or "ok")
    provider = RuleBasedApprovalProvider(rules=[ApprovalRule(category="read", decision=ApprovalDecision.APPROVED)])
    engine = ActionEngine(registry=registry, approval_provider=provider)

    first = asyncio.run(engine.run_turn(["<list_files></list_files>"]))
    second = asyncio.run(engine.run_turn(["<command><cmd>ls</cmd></command>"]))

    assert [e.result.kind for e in first.results] == ["success"]
    assert [e.result.kind for e in second.results] == ["rejected"]
    assert ran == ["list"]
