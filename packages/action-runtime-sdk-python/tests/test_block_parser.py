from __future__ import annotations

import pytest

from action_runtime.core.contracts import ActionRequestBlock, TextBlock
from action_runtime.core.errors import BlockParserError
from action_runtime.parsing.block_parser import IncrementalBlockParser


def _parser(**kwargs) -> IncrementalBlockParser:
    kwargs.setdefault("action_names", ["read", "edit"])
    return IncrementalBlockParser(**kwargs)


def test_envelope_split_mid_tag_reports_partial_twice_then_final_once() -> None:
    p = _parser()

    ev1 = p.feed('before <act name="read"><pa')
    ev2 = p.feed("th>a.t")
    ev3 = p.feed("xt</path></act> after")
    ev4 = p.finish()

    action_events = [e for e in ev1 + ev2 + ev3 + ev4 if isinstance(e.block, ActionRequestBlock)]
    assert [(e.block.partial, dict(e.block.params)) for e in action_events] == [
        (True, {}),
        (True, {"path": "a.t"}),
        (False, {"path": "a.txt"}),
    ]
    assert all(e.block_index == 1 for e in action_events)
    assert [e.is_new_block for e in action_events] == [True, False, False]

    blocks = p.blocks
    assert blocks == [
        TextBlock(text="before ", partial=False),
        ActionRequestBlock(name="read", params={"path": "a.txt"}, partial=False),
        TextBlock(text=" after", partial=False),
    ]


def test_bare_action_tag_is_recognized_for_registered_names() -> None:
    p = _parser()
    p.feed("<read><path>notes.md</path></read>")
    p.finish()
    assert p.blocks == [ActionRequestBlock(name="read", params={"path": "notes.md"}, partial=False)]


def test_unregistered_bare_tag_stays_text() -> None:
    p = _parser()
    p.feed("use <b>bold</b> here")
    p.finish()
    assert p.blocks == [TextBlock(text="use <b>bold</b> here", partial=False)]


def test_envelope_with_unknown_name_still_produces_action_block() -> None:
    p = _parser()
    p.feed("<act name='fly'><to>moon</to></act>")
    p.finish()
    assert p.blocks == [ActionRequestBlock(name="fly", params={"to": "moon"}, partial=False)]


def test_envelope_tag_can_be_disabled() -> None:
    p = _parser(envelope_tag=None)
    p.feed('<act name="read"><path>a</path></act>')
    p.finish()
    assert len(p.blocks) == 1
    assert isinstance(p.blocks[0], TextBlock)


def test_param_values_are_stripped_and_last_write_wins() -> None:
    p = _parser()
    p.feed("<edit><path> a.txt </path><path>\n b.txt \n</path><content>x</content></edit>")
    p.finish()
    block = p.blocks[0]
    assert isinstance(block, ActionRequestBlock)
    assert block.params == {"path": "b.txt", "content": "x"}


def test_partial_closing_tag_of_param_is_not_leaked_into_value() -> None:
    p = _parser()
    p.feed("<read><path>a.txt</pa")
    snapshot = p.blocks[0]
    assert isinstance(snapshot, ActionRequestBlock)
    assert snapshot.partial is True
    assert snapshot.params == {"path": "a.txt"}

    p.feed("th></read>")
    final = p.blocks[0]
    assert isinstance(final, ActionRequestBlock)
    assert final.partial is False
    assert final.params == {"path": "a.txt"}


def test_held_tag_prefix_is_flushed_as_text_on_finish() -> None:
    p = _parser()
    p.feed("x <re")
    assert p.blocks == [TextBlock(text="x ", partial=True)]
    p.finish()
    assert p.blocks == [TextBlock(text="x <re", partial=False)]


def test_unterminated_action_is_finalized_on_finish() -> None:
    p = _parser()
    p.feed("<read><path>a.txt")
    events = p.finish()
    assert len(events) == 1
    assert events[0].block == ActionRequestBlock(name="read", params={"path": "a.txt"}, partial=False)


def test_finish_is_idempotent_and_feed_after_finish_is_ignored() -> None:
    p = _parser()
    p.feed("hello")
    first = p.finish()
    assert len(first) == 1
    assert p.finish() == []
    assert p.feed("more") == []
    assert p.blocks == [TextBlock(text="hello", partial=False)]
    assert p.finished is True


def test_final_event_is_emitted_once_per_block() -> None:
    p = _parser()
    events = []
    for ch in "<read><path>a</path></read>tail":
        events.extend(p.feed(ch))
    events.extend(p.finish())
    finals = [e.block_index for e in events if not e.block.partial]
    assert sorted(finals) == [0, 1]
    assert len(finals) == len(set(finals))


def test_one_event_per_index_per_feed_in_ascending_order() -> None:
    p = _parser()
    events = p.feed("a<read><path>x</path></read>b<edit><path>y</path></edit>c")
    indices = [e.block_index for e in events]
    assert indices == sorted(indices)
    assert len(indices) == len(set(indices))
    assert indices == [0, 1, 2, 3, 4]


def test_oversized_action_block_is_fatal() -> None:
    p = _parser(max_block_chars=10)
    p.feed("<read>")
    with pytest.raises(BlockParserError) as ei:
        p.feed("<path>" + "x" * 64 + "</path>")
    assert ei.value.code == "STREAM_PARSE_FAILED"


def test_non_string_fragment_is_fatal() -> None:
    p = _parser()
    with pytest.raises(BlockParserError):
        p.feed(b"bytes")  # type: ignore[arg-type]


def test_block_size_limit_does_not_depend_on_fragment_size() -> None:
    src = "<read><path>a.txt</path><mode>x</mode></read>"

    whole = _parser(max_block_chars=len(src))
    whole_events = whole.feed(src)

    split = _parser(max_block_chars=len(src))
    split_events = []
    for ch in src:
        split_events.extend(split.feed(ch))

    expected = ActionRequestBlock(name="read", params={"path": "a.txt", "mode": "x"}, partial=False)
    assert whole_events[-1].block == expected
    assert split_events[-1].block == expected
    assert whole.blocks == split.blocks
