"""One chat turn: context, model call, optional tool command."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .context import build_context
from .dispatcher import ToolDispatcher
from .errors import ConfigurationError, RequestFailed
from .model_engine import OpenRouterEngine
from .store import AppStore
from .tool_utils import parse_reply

INITIAL_GREETING = (
    "Hello! I am your Senior PM. I can analyze tasks, organize docs, and help you plan. "
    "You can speak to me or drag files."
)
MISSING_KEY_MESSAGE = "⚠️ Please configure your OpenRouter API Key."
MISSING_GROQ_KEY_MESSAGE = "⚠️ Please configure Groq API Key in Settings for Audio."


def format_ai_error(message: str) -> str:
    return f"**AI Error**: {message}. Check your settings."


def format_tool_result(content: str, tool: str, result: str) -> str:
    return f"{content}\n\n> *System Action: {tool} executed.* \n> Status: {result}"


@dataclass
class AssistantTurn:
    reply: str
    tool: Optional[str] = None
    result: Optional[str] = None
    meta: Dict[str, Any] = field(default_factory=dict)


class ChatAssistant:
    """Glue between the store, the OpenRouter engine and the dispatcher."""

    def __init__(
        self,
        store: AppStore,
        engine: OpenRouterEngine,
        dispatcher: ToolDispatcher,
        *,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.store = store
        self.engine = engine
        self.dispatcher = dispatcher
        self._logger = logger or logging.getLogger(__name__)

    def respond(
        self,
        history: Sequence[Mapping[str, Any]],
        *,
        active_project_id: Optional[str] = None,
    ) -> AssistantTurn:
        """Answer the last user message in ``history``.

        The model call happens outside the store lock; a tool command found
        in the reply runs against whatever snapshot is current when the
        reply arrives.  Failures come back as assistant text.
        """

        settings = self.store.snapshot.settings
        if not settings.openrouter_key:
            return AssistantTurn(MISSING_KEY_MESSAGE)

        system_prompt = build_context(
            self.store.snapshot, active_project_id, settings.custom_system_prompt
        )
        messages: List[Dict[str, str]] = [
            {"role": str(m.get("role")), "content": str(m.get("content") or "")}
            for m in history
            if m.get("role") in ("user", "assistant")
        ]
        try:
            result = self.engine.converse(
                messages,
                system_prompt,
                api_key=settings.openrouter_key,
                model=settings.default_model,
            )
        except (RequestFailed, ConfigurationError) as exc:
            self._logger.warning("Assistant call failed: %s", exc)
            return AssistantTurn(format_ai_error(str(exc)))

        text = result.get("text") or ""
        meta = result.get("meta") or {}
        parsed = parse_reply(text)
        if parsed.command is None:
            return AssistantTurn(parsed.text, meta=meta)

        tool = parsed.command.tool
        outcome = self.dispatcher.dispatch(tool, parsed.command.args, active_project_id=active_project_id)
        return AssistantTurn(format_tool_result(parsed.text, tool, outcome), tool, outcome, meta)


__all__ = [
    "AssistantTurn",
    "ChatAssistant",
    "INITIAL_GREETING",
    "MISSING_GROQ_KEY_MESSAGE",
    "MISSING_KEY_MESSAGE",
    "format_ai_error",
    "format_tool_result",
]
