"""Core modules behind the DevContext Gradio application."""

from . import config as _config
from .assistant import ChatAssistant, INITIAL_GREETING
from .context import build_context, generate_project_context
from .dispatcher import ToolDispatcher
from .errors import ConfigurationError, DevContextError, RequestFailed, ToolError
from .github import GitHubClient
from .model_engine import OpenRouterEngine
from .models import AppSettings, AppSnapshot, DocFile, KanbanColumn, Project, Subtask, Task
from .persistence import FsSnapshotRepo, PgSnapshotRepo, SnapshotRepo, make_repo
from .store import AppStore, TimerClock, apply
from .tool_utils import ToolRegistry, parse_reply
from .transcription import GroqTranscriber

reload_from_environment = _config.reload_from_environment

__all__ = [
    "AppSettings",
    "AppSnapshot",
    "AppStore",
    "ChatAssistant",
    "ConfigurationError",
    "DevContextError",
    "DocFile",
    "FsSnapshotRepo",
    "GitHubClient",
    "GroqTranscriber",
    "INITIAL_GREETING",
    "KanbanColumn",
    "OpenRouterEngine",
    "PgSnapshotRepo",
    "Project",
    "RequestFailed",
    "SnapshotRepo",
    "Subtask",
    "Task",
    "TimerClock",
    "ToolDispatcher",
    "ToolError",
    "ToolRegistry",
    "apply",
    "build_context",
    "generate_project_context",
    "make_repo",
    "parse_reply",
    "reload_from_environment",
]


def __getattr__(name: str):
    if hasattr(_config, name):
        return getattr(_config, name)
    raise AttributeError(name)
