from __future__ import annotations

import json
import logging
import time
from typing import Any, Dict, List, Mapping, Optional, Sequence

import requests

from . import config
from .errors import ConfigurationError, RequestFailed
from .models import OpenRouterModel


def _upstream_message(response: Any, default: str) -> str:
    """Pull ``error.message`` out of an OpenAI-style error body."""

    try:
        body = response.json()
    except ValueError:
        return default
    if isinstance(body, dict):
        error = body.get("error")
        if isinstance(error, dict) and error.get("message"):
            return str(error["message"])
        if isinstance(error, str) and error:
            return error
    return default


class OpenRouterEngine:
    """Synchronous chat-completions client for OpenRouter.

    Credentials and the model come with every call because they live in the
    user's settings and may change between turns.
    """

    def __init__(
        self,
        *,
        base_url: str | None = None,
        timeout: float | None = None,
        temperature: float = 0.7,
        max_tokens: int = 4096,
        session: Optional[requests.Session] = None,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.base_url = (base_url or config.OPENROUTER_URL).rstrip("/")
        self.timeout = timeout or config.REQUEST_TIMEOUT
        self.temperature = temperature
        self.max_tokens = max_tokens
        self._logger = logger or logging.getLogger(__name__)
        if session is None:
            self._session = requests.Session()
            self._close_session = self._session.close
        else:
            self._session = session
            self._close_session = getattr(session, "close", lambda: None)

    def close(self) -> None:
        self._close_session()

    def __enter__(self) -> "OpenRouterEngine":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()

    def _prepare_payload(
        self, history: Sequence[Mapping[str, Any]], system_prompt: str, model: str
    ) -> Dict[str, Any]:
        messages: List[Dict[str, str]] = [{"role": "system", "content": system_prompt}]
        for message in history:
            role = message.get("role")
            if role not in ("user", "assistant", "system"):
                continue
            messages.append({"role": str(role), "content": str(message.get("content") or "")})
        return {
            "model": model,
            "messages": messages,
            "temperature": self.temperature,
            "max_tokens": self.max_tokens,
        }

    def converse(
        self,
        history: Sequence[Mapping[str, Any]],
        system_prompt: str,
        *,
        api_key: str,
        model: str | None = None,
    ) -> Dict[str, Any]:
        """Send one chat-completions request and return ``{"text", "meta"}``.

        Raises ``ConfigurationError`` without an API key and ``RequestFailed``
        for transport errors or non-success responses.
        """

        if not api_key:
            raise ConfigurationError("OpenRouter API key is not configured")
        selected_model = model or config.DEFAULT_MODEL
        payload = self._prepare_payload(history, system_prompt, selected_model)
        url = f"{self.base_url}/chat/completions"
        headers = {"Authorization": f"Bearer {api_key}", "Content-Type": "application/json"}

        t0 = time.perf_counter()
        try:
            response = self._session.post(url, json=payload, headers=headers, timeout=self.timeout)
        except requests.exceptions.RequestException as exc:
            self._logger.error("OpenRouter request to %s failed: %s", url, exc)
            raise RequestFailed(f"{exc.__class__.__name__}: {exc}") from exc
        elapsed = time.perf_counter() - t0

        if response.status_code >= 400:
            message = _upstream_message(response, "API Request Failed")
            self._logger.warning("OpenRouter returned HTTP %s: %s", response.status_code, message)
            raise RequestFailed(message, status=response.status_code)

        try:
            data = response.json()
        except ValueError as exc:
            raise RequestFailed("Invalid response payload from OpenRouter") from exc

        text = ""
        choices = data.get("choices") if isinstance(data, dict) else None
        if isinstance(choices, list) and choices and isinstance(choices[0], dict):
            message = choices[0].get("message")
            if isinstance(message, dict):
                text = message.get("content") or ""
        if not text and isinstance(data, dict) and isinstance(data.get("error"), dict):
            raise RequestFailed(_upstream_message(response, "API Request Failed"), status=response.status_code)

        meta = {
            "endpoint": "chat/completions",
            "model": selected_model,
            "status": response.status_code,
            "elapsed_sec": round(elapsed, 3),
            "usage": data.get("usage") if isinstance(data, dict) else None,
        }
        return {"text": text, "meta": meta}

    def fetch_models(self) -> List[OpenRouterModel]:
        """List the models OpenRouter offers, sorted by name; empty on failure."""

        url = f"{self.base_url}/models"
        try:
            response = self._session.get(url, timeout=self.timeout)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as exc:
            self._logger.error("Failed to fetch OpenRouter models: %s", exc)
            return []
        entries = data.get("data") if isinstance(data, dict) else None
        if not isinstance(entries, list):
            self._logger.error("Unexpected models payload: %s", json.dumps(data)[:400])
            return []
        models = [OpenRouterModel.from_dict(item) for item in entries if isinstance(item, dict) and item.get("id")]
        return sorted(models, key=lambda m: m.name.lower())


__all__ = ["OpenRouterEngine"]
