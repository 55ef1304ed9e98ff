from __future__ import annotations

from typing import Optional


class DevContextError(RuntimeError):
    """Base class for errors raised by the DevContext services."""


class ConfigurationError(DevContextError):
    """Raised when a credential or endpoint needed for a call is missing."""


class RequestFailed(DevContextError):
    """Raised when an upstream HTTP service answers with a failure."""

    def __init__(self, message: str, *, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.status = status


class ToolError(DevContextError):
    """Raised inside the tool dispatcher for bad arguments or unknown ids."""


__all__ = ["ConfigurationError", "DevContextError", "RequestFailed", "ToolError"]
