"""
增量内容块解析器（IncrementalBlockParser）。

输入格式（嵌套标签文本）：
- 外层标签 = action 名：`<read><path>a.txt</path></read>`（仅识别已注册的 action 名）
- 或信封形式：`<act name="read"><path>a.txt</path></act>`（信封标签名可配置）
- 内层标签 = 参数名；参数值为到对应闭合标签为止的原始文本（首尾空白会被去掉）
- 其余文本（含未知标签）原样作为 TextBlock 内容

实现边界：
- 解析状态跨 `feed` 调用保留；每次只处理新到达的后缀，外加至多一个“被截断的 token”（暂存在 `_pending`）；
- 同一 block_index 在 partial 期间可被多次更新，final（partial=False）事件对每个 index 恰好出现一次；
- 每次 `feed` 对同一个 index 至多产出一个事件（按 index 升序）。
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Iterable, List, Optional, Set, Tuple

from action_runtime.core.contracts import ActionRequestBlock, ContentBlock, ContentBlockEvent, TextBlock
from action_runtime.core.errors import BlockParserError

logger = logging.getLogger(__name__)

DEFAULT_ENVELOPE_TAG = "act"
DEFAULT_MAX_BLOCK_CHARS = 1_000_000
DEFAULT_MAX_TAG_CHARS = 256

_PARAM_NAME_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_.\-]*$")
_NAME_ATTR_RE = re.compile(r"""(?:^|\s)name\s*=\s*(?:"([^"]*)"|'([^']*)')""")


class _Mode(str, Enum):
    """解析器所处的词法区域。"""

    TEXT = "text"
    ACTION = "action"
    PARAM = "param"


@dataclass
class _OpenAction:
    """正在解析中的 action 块（内部可变状态）。"""

    index: int
    name: str
    closing_tag: str
    params: Dict[str, str] = field(default_factory=dict)
    param_name: Optional[str] = None
    param_value: str = ""
    consumed_chars: int = 0


def _partial_suffix_len(text: str, token: str) -> int:
    """返回 `text` 末尾与 `token` 前缀重合的最大长度（不含完整 token）。"""

    upper = min(len(text), len(token) - 1)
    for k in range(upper, 0, -1):
        if text.endswith(token[:k]):
            return k
    return 0


class IncrementalBlockParser:
    """
    流式内容块解析器。

    用法：
    - 每收到一个文本分片调用 `feed(fragment)`，获取 0..N 个 `ContentBlockEvent`；
    - 流结束时调用 `finish()`，把所有未闭合的块 flush 并 finalize（幂等）。
    """

    def __init__(
        self,
        *,
        action_names: Iterable[str] = (),
        envelope_tag: Optional[str] = DEFAULT_ENVELOPE_TAG,
        max_block_chars: int = DEFAULT_MAX_BLOCK_CHARS,
        max_tag_chars: int = DEFAULT_MAX_TAG_CHARS,
    ) -> None:
        """
        创建解析器。

        参数：
        - action_names：可用裸标签形式书写的 action 名集合（通常为注册表中的名字）
        - envelope_tag：信封标签名；None/空字符串表示只识别裸标签
        - max_block_chars：单个 action 块允许的最大字符数（超出视为致命错误）
        - max_tag_chars：标签本身允许的最大字符数（超出则按普通文本处理）
        """

        self._action_names = frozenset(str(n) for n in action_names if str(n or "").strip())
        self._envelope_tag = str(envelope_tag or "").strip()
        self._max_block_chars = int(max_block_chars)
        self._max_tag_chars = int(max_tag_chars)

        self._blocks: List[ContentBlock] = []
        self._mode = _Mode.TEXT
        self._pending = ""
        self._text_index: Optional[int] = None
        self._text_acc = ""
        self._action: Optional[_OpenAction] = None

        self._touched: Set[int] = set()
        self._emitted: Set[int] = set()
        self._final_emitted: Set[int] = set()
        self._finished = False

    @property
    def blocks(self) -> List[ContentBlock]:
        """当前已知的全部块快照（按出现顺序）。"""

        return list(self._blocks)

    @property
    def finished(self) -> bool:
        """是否已调用过 `finish()`。"""

        return self._finished

    def feed(self, fragment: str) -> List[ContentBlockEvent]:
        """
        处理一个文本分片，返回本次变更产生的块事件。

        异常：
        - `BlockParserError`：分片类型非法，或单个 action 块超出 `max_block_chars`
        """

        if not isinstance(fragment, str):
            raise BlockParserError(
                "stream fragment must be a string",
                details={"type": type(fragment).__name__},
            )
        if self._finished:
            logger.warning("Ignoring %d chars fed after end of stream", len(fragment))
            return []
        if not fragment:
            return []

        data = self._pending + fragment
        self._pending = ""
        self._consume(data)
        return self._collect_events()

    def finish(self) -> List[ContentBlockEvent]:
        """
        流结束：flush 暂存 token，并把所有未闭合块 finalize。

        说明：
        - 文本模式下暂存的“疑似标签前缀”作为普通文本输出；
        - 未闭合的 action 以其当前（best-effort）参数 finalize；
        - 重复调用返回空列表。
        """

        if self._finished:
            return []
        self._finished = True

        held, self._pending = self._pending, ""
        if held:
            if self._mode == _Mode.TEXT:
                self._append_text(held)
            elif self._mode == _Mode.PARAM and self._action is not None:
                self._action.param_value += held

        if self._action is not None:
            logger.debug("Flushing unterminated action block %r at end of stream", self._action.name)
            self._close_action()
        self._close_text()
        return self._collect_events()

    # ------------------------------------------------------------------
    # 词法处理
    # ------------------------------------------------------------------

    def _consume(self, data: str) -> None:
        """
        按当前模式消费 `data`；遇到被截断的 token 时暂存并返回。

        暂存的字符不计入块大小：下一次 feed 会把它们作为前缀重新消费。
        """

        pos = 0
        n = len(data)
        while pos < n:
            if self._mode == _Mode.TEXT:
                pos = self._consume_text(data, pos)
            elif self._mode == _Mode.ACTION:
                start = pos
                pos = self._consume_action_body(data, pos)
                self._account(pos - start - len(self._pending))
            else:
                start = pos
                pos = self._consume_param(data, pos)
                self._account(pos - start - len(self._pending))

    def _consume_text(self, data: str, pos: int) -> int:
        """文本模式：输出文本，直到遇到可识别的 action 起始标签。"""

        lt = data.find("<", pos)
        if lt < 0:
            self._append_text(data[pos:])
            return len(data)
        if lt > pos:
            self._append_text(data[pos:lt])

        gt = data.find(">", lt)
        if gt < 0:
            tail = data[lt:]
            if self._could_open_action(tail):
                self._pending = tail
                return len(data)
            self._append_text("<")
            return lt + 1

        opened = self._match_open_tag(data[lt : gt + 1])
        if opened is None:
            self._append_text("<")
            return lt + 1

        name, closing_tag = opened
        self._close_text()
        self._open_action(name, closing_tag)
        return gt + 1

    def _consume_action_body(self, data: str, pos: int) -> int:
        """action 体：识别参数起始标签与 action 闭合标签；其余字符忽略。"""

        action = self._action
        assert action is not None

        lt = data.find("<", pos)
        if lt < 0:
            return len(data)

        gt = data.find(">", lt)
        if gt < 0:
            tail = data[lt:]
            if len(tail) <= self._max_tag_chars:
                self._pending = tail
                return len(data)
            return lt + 1

        tag = data[lt : gt + 1]
        if tag == action.closing_tag:
            self._close_action()
            return gt + 1

        inner = tag[1:-1].strip()
        if _PARAM_NAME_RE.match(inner):
            action.param_name = inner
            action.param_value = ""
            self._mode = _Mode.PARAM
            return gt + 1
        return lt + 1

    def _consume_param(self, data: str, pos: int) -> int:
        """参数值：累积到 `</param>` 为止；末尾疑似闭合标签前缀暂存。"""

        action = self._action
        assert action is not None and action.param_name is not None

        closing = f"</{action.param_name}>"
        idx = data.find(closing, pos)
        if idx >= 0:
            action.param_value += data[pos:idx]
            self._commit_param(final=True)
            return idx + len(closing)

        chunk = data[pos:]
        keep = _partial_suffix_len(chunk, closing)
        action.param_value += chunk[: len(chunk) - keep]
        self._pending = chunk[len(chunk) - keep :]
        self._commit_param(final=False)
        return len(data)

    def _could_open_action(self, tail: str) -> bool:
        """判断无 `>` 的尾部是否可能是 action 起始标签的前缀（需要等待更多输入）。"""

        if len(tail) > self._max_tag_chars:
            return False
        body = tail[1:]
        if not body:
            return True
        env = self._envelope_tag
        if env:
            if env.startswith(body):
                return True
            if body.startswith(env) and len(body) > len(env) and body[len(env)].isspace():
                return True
        return any(name.startswith(body) for name in self._action_names)

    def _match_open_tag(self, tag: str) -> Optional[Tuple[str, str]]:
        """匹配 action 起始标签；返回 `(action_name, closing_tag)`，不匹配返回 None。"""

        if len(tag) > self._max_tag_chars:
            return None
        inner = tag[1:-1]
        if not inner or inner.startswith("/"):
            return None
        if inner in self._action_names:
            return inner, f"</{inner}>"

        env = self._envelope_tag
        if env and inner.startswith(env) and len(inner) > len(env) and inner[len(env)].isspace():
            m = _NAME_ATTR_RE.search(inner[len(env) :])
            if m is None:
                return None
            name = (m.group(1) if m.group(1) is not None else m.group(2)).strip()
            if name:
                return name, f"</{env}>"
        return None

    # ------------------------------------------------------------------
    # 块状态维护
    # ------------------------------------------------------------------

    def _append_text(self, text: str) -> None:
        """把文本追加到当前文本块（必要时新建）。"""

        if not text:
            return
        if self._text_index is None:
            self._text_index = len(self._blocks)
            self._text_acc = ""
            self._blocks.append(TextBlock(text="", partial=True))
        self._text_acc += text
        self._blocks[self._text_index] = TextBlock(text=self._text_acc, partial=True)
        self._touched.add(self._text_index)

    def _close_text(self) -> None:
        """finalize 当前文本块（若有）。"""

        if self._text_index is None:
            return
        idx = self._text_index
        self._blocks[idx] = TextBlock(text=self._text_acc, partial=False)
        self._touched.add(idx)
        self._text_index = None
        self._text_acc = ""

    def _open_action(self, name: str, closing_tag: str) -> None:
        """新建一个 partial 的 action 块。"""

        idx = len(self._blocks)
        self._action = _OpenAction(index=idx, name=name, closing_tag=closing_tag)
        self._blocks.append(ActionRequestBlock(name=name, params={}, partial=True))
        self._touched.add(idx)
        self._mode = _Mode.ACTION
        logger.debug("Opened action block #%d %r", idx, name)

    def _commit_param(self, *, final: bool) -> None:
        """把当前参数值写入 params 快照（重复参数：后者覆盖，但保留首次出现的位置）。"""

        action = self._action
        assert action is not None and action.param_name is not None
        action.params[action.param_name] = action.param_value.strip()
        if final:
            action.param_name = None
            action.param_value = ""
            self._mode = _Mode.ACTION
        self._blocks[action.index] = ActionRequestBlock(name=action.name, params=dict(action.params), partial=True)
        self._touched.add(action.index)

    def _close_action(self) -> None:
        """finalize 当前 action 块并回到文本模式。"""

        action = self._action
        assert action is not None
        if action.param_name is not None:
            self._commit_param(final=True)
        self._blocks[action.index] = ActionRequestBlock(name=action.name, params=dict(action.params), partial=False)
        self._touched.add(action.index)
        self._action = None
        self._mode = _Mode.TEXT
        logger.debug("Closed action block #%d %r params=%s", action.index, action.name, sorted(action.params))

    def _account(self, consumed: int) -> None:
        """累计当前 action 块已消费的字符数；超过上限时抛出致命错误。"""

        action = self._action
        if action is None:
            return
        action.consumed_chars += max(0, consumed)
        if action.consumed_chars > self._max_block_chars:
            raise BlockParserError(
                f"action block exceeds max_block_chars={self._max_block_chars}",
                details={"action": action.name, "block_index": action.index},
            )

    def _collect_events(self) -> List[ContentBlockEvent]:
        """把本次变更过的块整理为事件（按 index 升序；final 事件至多一次）。"""

        events: List[ContentBlockEvent] = []
        for idx in sorted(self._touched):
            if idx in self._final_emitted:
                continue
            block = self._blocks[idx]
            is_new = idx not in self._emitted
            self._emitted.add(idx)
            if not block.partial:
                self._final_emitted.add(idx)
            events.append(ContentBlockEvent(block_index=idx, block=block, is_new_block=is_new))
        self._touched.clear()
        return events


__all__ = ["DEFAULT_ENVELOPE_TAG", "IncrementalBlockParser"]
