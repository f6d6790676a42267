"""Parsing：流式内容块解析。"""

from __future__ import annotations

from action_runtime.parsing.block_parser import DEFAULT_ENVELOPE_TAG, IncrementalBlockParser

__all__ = ["DEFAULT_ENVELOPE_TAG", "IncrementalBlockParser"]
