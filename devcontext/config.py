from __future__ import annotations

import os
from pathlib import Path

STORAGE_KEY = "devcontext_pro_db_v6"

DATA_DIR: Path
STORAGE: str
PG_DSN: str | None
PG_SCHEMA: str
OPENROUTER_URL: str
GROQ_URL: str
GROQ_MODEL: str
GITHUB_API_URL: str
REQUEST_TIMEOUT: float
TIMER_INTERVAL: float
CONTEXT_FILE_CHARS: int
STRICT_TOOL_ACTIONS: bool
DEFAULT_MODEL: str
DEFAULT_SYSTEM_PROMPT: str
LOG_LEVEL: str


_BUILTIN_SYSTEM_PROMPT = """You are the Senior Technical Project Manager & Architect for the "DevContext" system.
Your goal is to maintain the state of the project based on the developer's inputs, conversations, and "brain dumps".

### YOUR ROLE:
1.  **Context Guardian**: You ensure the database (Tasks, Docs) exactly reflects reality.
2.  **Proactive Assistant**: If the user says "I finished auth", you find the auth task and mark it DONE. If it doesn't exist, you create it first, then mark it DONE.
3.  **Documentation Librarian**: You organize knowledge into files. If the user explains a complex logic, you suggest saving it to 'docs/logic.md' or just do it via MANAGE_FILE.

### TOOLS USAGE RULES (STRICT JSON):
Emit at most ONE tool call per reply, as the last thing in the message, inside a ```json fenced block.

#### 1. MANAGE_PROJECT
Action: "CREATE" | "UPDATE" | "DELETE"
- Use "UPDATE" to change status, description, or add columns.
```json
{
  "tool": "MANAGE_PROJECT",
  "args": {
    "action": "UPDATE",
    "id": "current_project_id",
    "columns": [{"id": "qa", "title": "QA Testing", "color": "border-purple-500"}]
  }
}
```

#### 2. MANAGE_TASK
Action: "CREATE" | "UPDATE" | "DELETE"
- Use the 'subtasks' array for checklists.
- **Smart Dates**: If the user says "finish by friday", calculate the timestamp (milliseconds) for 'dueDate'.
```json
{
  "tool": "MANAGE_TASK",
  "args": {
    "action": "CREATE",
    "projectId": "p-123",
    "title": "Implement Login",
    "status": "DONE",
    "priority": "HIGH",
    "subtasks": ["UI Layout", "API Integration"],
    "dueDate": 1715420000000
  }
}
```

#### 3. BATCH_CREATE_TASKS
- When the user dumps a list of things, create them in one call.
```json
{
  "tool": "BATCH_CREATE_TASKS",
  "args": {
    "projectId": "p-123",
    "tasks": [{"title": "Write tests"}, {"title": "Deploy", "priority": "HIGH"}]
  }
}
```

#### 4. MANAGE_FILE (Knowledge Base)
Action: "CREATE" | "UPDATE" | "DELETE"
- **Folder Support**: Use forward slashes in name (e.g., "backend/auth_flow.md").
- Capture architectural decisions here.
```json
{
  "tool": "MANAGE_FILE",
  "args": {
    "action": "CREATE",
    "name": "specs/database_schema.md",
    "content": "# Database Schema\\n\\n..."
  }
}
```
"""


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return default
    try:
        value = float(raw)
    except ValueError:
        return default
    return value if value > 0 else default


def _env_bool(name: str, default: bool = False) -> bool:
    value = os.getenv(name)
    if value is None:
        return default
    return value.strip().lower() in {"1", "true", "yes", "on"}


def reload_from_environment() -> None:
    """Refresh configuration values from the current environment."""

    global DATA_DIR, STORAGE, PG_DSN, PG_SCHEMA, OPENROUTER_URL, GROQ_URL, GROQ_MODEL
    global GITHUB_API_URL, REQUEST_TIMEOUT, TIMER_INTERVAL, CONTEXT_FILE_CHARS
    global STRICT_TOOL_ACTIONS, DEFAULT_MODEL, DEFAULT_SYSTEM_PROMPT, LOG_LEVEL

    data_dir = os.getenv("DEVCONTEXT_DATA_DIR")
    DATA_DIR = Path(data_dir).expanduser() if data_dir else Path.home() / ".devcontext"
    STORAGE = (os.getenv("DEVCONTEXT_STORAGE") or "auto").strip().lower()
    PG_DSN = os.getenv("DEVCONTEXT_PG_DSN") or None
    PG_SCHEMA = os.getenv("DEVCONTEXT_PG_SCHEMA") or "public"
    OPENROUTER_URL = os.getenv("DEVCONTEXT_OPENROUTER_URL", "https://openrouter.ai/api/v1").rstrip("/")
    GROQ_URL = os.getenv(
        "DEVCONTEXT_GROQ_URL", "https://api.groq.com/openai/v1/audio/transcriptions"
    )
    GROQ_MODEL = os.getenv("DEVCONTEXT_GROQ_MODEL", "distil-whisper-large-v3-en")
    GITHUB_API_URL = os.getenv("DEVCONTEXT_GITHUB_API_URL", "https://api.github.com").rstrip("/")
    REQUEST_TIMEOUT = _env_float("DEVCONTEXT_REQUEST_TIMEOUT", 120.0)
    TIMER_INTERVAL = _env_float("DEVCONTEXT_TIMER_INTERVAL", 1.0)
    try:
        CONTEXT_FILE_CHARS = int(os.getenv("DEVCONTEXT_CONTEXT_FILE_CHARS", "1000"))
    except ValueError:
        CONTEXT_FILE_CHARS = 1000
    STRICT_TOOL_ACTIONS = _env_bool("DEVCONTEXT_STRICT_TOOL_ACTIONS")
    DEFAULT_MODEL = os.getenv("DEVCONTEXT_DEFAULT_MODEL", "google/gemini-2.0-flash-001")
    DEFAULT_SYSTEM_PROMPT = os.getenv("DEVCONTEXT_SYSTEM_PROMPT", _BUILTIN_SYSTEM_PROMPT)
    LOG_LEVEL = (os.getenv("DEVCONTEXT_LOG_LEVEL") or "INFO").upper()


reload_from_environment()


__all__ = [
    "CONTEXT_FILE_CHARS",
    "DATA_DIR",
    "DEFAULT_MODEL",
    "DEFAULT_SYSTEM_PROMPT",
    "GITHUB_API_URL",
    "GROQ_MODEL",
    "GROQ_URL",
    "LOG_LEVEL",
    "OPENROUTER_URL",
    "PG_DSN",
    "PG_SCHEMA",
    "REQUEST_TIMEOUT",
    "STORAGE",
    "STORAGE_KEY",
    "STRICT_TOOL_ACTIONS",
    "TIMER_INTERVAL",
    "reload_from_environment",
]
