from __future__ import annotations

import pytest

from action_runtime.core.contracts import ActionRequestBlock, ContentBlockEvent, TextBlock
from action_runtime.core.errors import StateError
from action_runtime.core.turn import BlockState, Turn
from action_runtime.core.turn_controller import TurnController


class TestTurnController:
    def test_step_ids_are_sequential(self) -> None:
        c = TurnController()
        assert [c.next_step_id() for _ in range(3)] == ["step_1", "step_2", "step_3"]

    def test_single_action_per_turn_rule(self) -> None:
        turn = Turn(turn_id="turn_1")
        c = TurnController(single_action_per_turn=True)
        assert c.may_execute(turn) is True
        turn.action_already_executed_this_turn = True
        assert c.may_execute(turn) is False
        assert TurnController(single_action_per_turn=False).may_execute(turn) is True

    def test_mistake_limit_is_reported_once(self) -> None:
        turn = Turn(turn_id="turn_1")
        c = TurnController(max_mistakes=2)
        assert c.record_mistake(turn) is False
        assert c.record_mistake(turn) is True
        assert c.record_mistake(turn) is False
        assert turn.mistake_count == 3
        assert turn.mistake_limit_reached is True

    def test_no_limit_never_reports(self) -> None:
        turn = Turn(turn_id="turn_1")
        c = TurnController(max_mistakes=None)
        for _ in range(10):
            assert c.record_mistake(turn) is False
        assert turn.mistake_limit_reached is False


class TestTurnState:
    def test_blocks_are_appended_then_updated_in_place(self) -> None:
        turn = Turn(turn_id="turn_1")
        turn.apply_block_event(ContentBlockEvent(0, TextBlock("hi"), True))
        turn.apply_block_event(ContentBlockEvent(1, ActionRequestBlock("read", {}), True))
        assert turn.block_states == [BlockState.TEXT, BlockState.PARSED_PARTIAL]

        final = ActionRequestBlock("read", {"path": "a"}, partial=False)
        turn.apply_block_event(ContentBlockEvent(1, final, False))
        assert turn.blocks[1] == final
        assert turn.block_states[1] == BlockState.PARSED_COMPLETE

    def test_processed_blocks_are_not_overwritten(self) -> None:
        turn = Turn(turn_id="turn_1")
        final = ActionRequestBlock("read", {"path": "a"}, partial=False)
        turn.apply_block_event(ContentBlockEvent(0, final, True))
        turn.set_state(0, BlockState.COMPLETED)
        turn.apply_block_event(ContentBlockEvent(0, ActionRequestBlock("read", {"path": "b"}, partial=False), False))
        assert turn.blocks[0] == final

    def test_out_of_order_new_block_is_a_state_error(self) -> None:
        turn = Turn(turn_id="turn_1")
        with pytest.raises(StateError):
            turn.apply_block_event(ContentBlockEvent(2, TextBlock("x"), True))

    def test_mark_ready_happens_once_and_seals_results(self) -> None:
        turn = Turn(turn_id="turn_1")
        assert turn.mark_ready() is True
        assert turn.mark_ready() is False
        assert turn.result_sink.sealed is True
        assert turn.result_sink.drain() == []
