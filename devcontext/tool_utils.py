from __future__ import annotations

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional

_logger = logging.getLogger(__name__)


class ToolRegistry:
    """Registry mapping tool names to callables taking an ``args`` dict."""

    def __init__(self) -> None:
        self.tools: Dict[str, Callable[..., Any]] = {}
        self.aliases: Dict[str, str] = {}

    def register(self, name: str, fn: Callable[..., Any]) -> None:
        self.tools[name.upper()] = fn

    def alias(self, alias_name: str, target_name: str) -> None:
        target = target_name.upper()
        if target not in self.tools:
            raise ValueError(f"Cannot alias unknown tool '{target_name}'")
        self.aliases[alias_name.upper()] = target

    def names(self) -> List[str]:
        return sorted(self.tools)

    def _resolve_name(self, name: str) -> str:
        key = str(name or "").strip().upper()
        if key in self.tools:
            return key
        if key in self.aliases:
            return self.aliases[key]
        if "." in key:
            suffix = key.split(".")[-1]
            if suffix in self.tools:
                return suffix
            if suffix in self.aliases:
                return self.aliases[suffix]
        return key

    def run(self, name: str, args: Dict[str, Any] | None = None, **context: Any) -> Any:
        resolved = self._resolve_name(name)
        if resolved not in self.tools:
            raise ValueError(f"Unknown tool: {name}")
        return self.tools[resolved](dict(args or {}), **context)


@dataclass(frozen=True)
class ToolCommand:
    tool: str
    args: Dict[str, Any]


@dataclass(frozen=True)
class ParsedReply:
    text: str
    command: Optional[ToolCommand] = None


_FENCE_RE = re.compile(r"```[ \t]*(?:json|JSON)?[ \t]*\r?\n?([\s\S]*?)```")


def _closing_brace(text: str, start: int) -> int:
    """Index of the ``}`` closing the object opened at ``start``, or -1."""

    depth = 0
    in_string = False
    escaped = False
    for index in range(start, len(text)):
        char = text[index]
        if in_string:
            if escaped:
                escaped = False
            elif char == "\\":
                escaped = True
            elif char == '"':
                in_string = False
        elif char == '"':
            in_string = True
        elif char == "{":
            depth += 1
        elif char == "}":
            depth -= 1
            if depth == 0:
                return index
    return -1


def _balanced_objects(text: str) -> List[str]:
    """Return every top-level ``{...}`` span, honouring JSON string escapes.

    A ``{`` that never closes is skipped and the scan resumes right after it,
    so a stray brace in prose does not swallow the objects that follow.
    """

    spans: List[str] = []
    position = 0
    while True:
        start = text.find("{", position)
        if start < 0:
            return spans
        end = _closing_brace(text, start)
        if end < 0:
            position = start + 1
            continue
        spans.append(text[start : end + 1])
        position = end + 1


def _candidates(text: str) -> List[str]:
    fenced = [body.strip() for body in _FENCE_RE.findall(text)]
    fenced = [body for body in fenced if body.startswith("{")]
    if fenced:
        return fenced
    return _balanced_objects(text)


def parse_reply(text: str) -> ParsedReply:
    """Split an assistant reply into its text and at most one tool command.

    Fenced JSON blocks win over bare objects; among the candidates the last
    one that decodes to a ``{"tool": ..., "args": {...}}`` object is used.
    Candidates that fail to decode are logged and skipped.
    """

    if not text:
        return ParsedReply(text or "")
    for candidate in reversed(_candidates(text)):
        if '"tool"' not in candidate:
            continue
        try:
            obj = json.loads(candidate)
        except json.JSONDecodeError as exc:
            _logger.warning("Ignoring malformed tool JSON in reply: %s", exc)
            continue
        tool = obj.get("tool") if isinstance(obj, dict) else None
        args = obj.get("args") if isinstance(obj, dict) else None
        if not isinstance(tool, str) or not tool.strip() or not isinstance(args, dict):
            _logger.warning("Ignoring tool JSON without a tool name and args object")
            continue
        return ParsedReply(text, ToolCommand(tool.strip(), args))
    return ParsedReply(text)


__all__ = ["ParsedReply", "ToolCommand", "ToolRegistry", "parse_reply"]
