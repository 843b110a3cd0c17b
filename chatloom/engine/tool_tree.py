"""Tool call tree attacher.

A sub-agent tool (``Task`` by default) opens a scope keyed by its own
tool-use id. Tool calls the sub-agent emits carry that id as their
``parent_scope_id`` and are grafted onto the opener's ``nested_tools``
instead of the session's top-level content. Lookup is a dict hit, never a
tree walk.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Callable

from chatloom.shared.models.blocks import ToolUseBlock

logger = logging.getLogger(__name__)


@dataclass
class Placement:
    """Where a tool-use block ended up."""
    parent: ToolUseBlock | None = None
    # True when the event named a scope that isn't open.
    orphaned: bool = False

    @property
    def top_level(self) -> bool:
        return self.parent is None


class ToolCallTree:
    """Open scopes and a per-session index of every tool-use block."""

    def __init__(self) -> None:
        self._open_scopes: dict[str, ToolUseBlock] = {}
        self._index: dict[str, ToolUseBlock] = {}
        self._nested: set[str] = set()

    @property
    def open_scope_ids(self) -> list[str]:
        return list(self._open_scopes)

    def get(self, tool_use_id: str) -> ToolUseBlock | None:
        return self._index.get(tool_use_id)

    def __contains__(self, tool_use_id: str) -> bool:
        return tool_use_id in self._index

    def is_nested(self, tool_use_id: str) -> bool:
        """True if the block lives under another block's ``nested_tools``."""
        return tool_use_id in self._nested

    def register(self, block: ToolUseBlock, opens_scope: bool) -> None:
        """Index *block* (and open its scope) without placing it."""
        if block.id:
            self._index[block.id] = block
        if opens_scope and block.id:
            self._open_scopes[block.id] = block

    def attach(self, block: ToolUseBlock, opens_scope: bool) -> Placement:
        """Resolve where *block* belongs and graft it when nested.

        A top-level placement leaves the caller to append the block to the
        session's content; a nested placement is already complete.
        """
        placement = Placement()
        scope_id = block.parent_scope_id
        if scope_id:
            parent = self._open_scopes.get(scope_id)
            if parent is None:
                logger.warning(
                    "No open scope %s for tool %s (%s); attaching at top level",
                    scope_id, block.id, block.name,
                )
                placement.orphaned = True
            else:
                parent.nested_tools.append(block)
                placement.parent = parent
                if block.id:
                    self._nested.add(block.id)
        self.register(block, opens_scope)
        return placement

    def close_scope(self, scope_id: str) -> bool:
        """Close the scope owned by *scope_id*. Returns True if it was open."""
        return self._open_scopes.pop(scope_id, None) is not None

    def reindex(
        self,
        blocks: list[ToolUseBlock],
        opens_scope: Callable[[ToolUseBlock], bool],
    ) -> None:
        """Rebuild the index from blocks loaded out of history.

        Sub-agent tools without a result yet are treated as still running.
        """
        self._open_scopes.clear()
        self._index.clear()
        self._nested.clear()
        stack = list(blocks)
        while stack:
            block = stack.pop()
            opens = opens_scope(block) and block.result is None
            self.register(block, opens)
            for child in block.nested_tools:
                if child.id:
                    self._nested.add(child.id)
                stack.append(child)
