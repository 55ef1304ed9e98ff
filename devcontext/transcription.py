from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Optional, Union

import requests

from . import config
from .errors import ConfigurationError, RequestFailed
from .model_engine import _upstream_message


class GroqTranscriber:
    """Speech-to-text client for Groq's Whisper endpoint."""

    def __init__(
        self,
        *,
        url: str | None = None,
        model_name: str | None = None,
        timeout: float | None = None,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.url = url or config.GROQ_URL
        self.model_name = model_name or config.GROQ_MODEL
        self.timeout = timeout or config.REQUEST_TIMEOUT
        if self.timeout <= 0:
            raise ValueError("timeout must be positive")
        self._logger = logger or logging.getLogger(__name__)
        if session is None:
            self._session = requests.Session()
            self._close_session = self._session.close
        else:
            self._session = session
            self._close_session = getattr(session, "close", lambda: None)

    def __enter__(self) -> "GroqTranscriber":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def close(self) -> None:
        self._close_session()

    def transcribe(self, audio: Union[str, Path], *, api_key: str) -> str:
        """Upload the recording at ``audio`` and return the transcript text."""

        if not api_key:
            raise ConfigurationError("Groq API Key is missing")
        path = Path(audio)
        if not path.is_file():
            raise FileNotFoundError(f"Recording not found: {path}")
        mime = mimetypes.guess_type(path.name)[0] or "audio/webm"
        headers = {"Authorization": f"Bearer {api_key}"}
        try:
            with path.open("rb") as handle:
                response = self._session.post(
                    self.url,
                    headers=headers,
                    data={"model": self.model_name},
                    files={"file": (path.name, handle, mime)},
                    timeout=self.timeout,
                )
        except requests.RequestException as exc:
            self._logger.error("Transcription request failed: %s", exc)
            raise RequestFailed(f"Transcription failed: {exc}") from exc

        if response.status_code >= 400:
            message = _upstream_message(response, "Transcription failed")
            self._logger.warning("Groq returned HTTP %s: %s", response.status_code, message)
            raise RequestFailed(message, status=response.status_code)
        try:
            data = response.json()
        except ValueError as exc:
            raise RequestFailed("Invalid transcription response payload") from exc
        text = data.get("text") if isinstance(data, dict) else None
        if not isinstance(text, str):
            raise RequestFailed("Transcription response missing 'text' field")
        return text.strip()


__all__ = ["GroqTranscriber"]
