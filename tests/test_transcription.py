from __future__ import annotations

import mimetypes
from typing import Any, Dict, List, Tuple

import pytest
import requests

from devcontext.errors import ConfigurationError, RequestFailed
from devcontext.transcription import GroqTranscriber


class _FakeResponse:
    def __init__(self, status_code: int, payload: Any = None):
        self.status_code = status_code
        self._payload = payload

    def json(self) -> Any:
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _RecordingSession:
    def __init__(self, response: Any):
        self._response = response
        self.calls: List[Tuple[str, Dict[str, Any]]] = []
        self.closed = False

    def post(self, url: str, **kwargs) -> _FakeResponse:
        upload = kwargs["files"]["file"]
        kwargs = dict(kwargs, uploaded=(upload[0], upload[1].read(), upload[2]))
        self.calls.append((url, kwargs))
        if isinstance(self._response, BaseException):
            raise self._response
        return self._response

    def close(self) -> None:
        self.closed = True


@pytest.fixture
def recording(tmp_path):
    path = tmp_path / "note.wav"
    path.write_bytes(b"RIFF....")
    return path


def _transcriber(response: Any) -> Tuple[GroqTranscriber, _RecordingSession]:
    session = _RecordingSession(response)
    transcriber = GroqTranscriber(
        url="https://groq.test/audio/transcriptions", model_name="whisper-test", timeout=7, session=session
    )
    return transcriber, session


def test_transcribe_uploads_multipart_and_strips_text(recording):
    transcriber, session = _transcriber(_FakeResponse(200, {"text": "  create a task  "}))

    with transcriber:
        text = transcriber.transcribe(recording, api_key="gsk")

    assert text == "create a task"
    url, kwargs = session.calls[0]
    assert url == "https://groq.test/audio/transcriptions"
    assert kwargs["headers"] == {"Authorization": "Bearer gsk"}
    assert kwargs["data"] == {"model": "whisper-test"}
    assert kwargs["uploaded"] == ("note.wav", b"RIFF....", mimetypes.guess_type("note.wav")[0] or "audio/webm")
    assert kwargs["timeout"] == 7
    assert session.closed


def test_missing_key_is_a_configuration_error(recording):
    transcriber, session = _transcriber(_FakeResponse(200, {"text": "x"}))

    with pytest.raises(ConfigurationError, match="Groq API Key is missing"):
        transcriber.transcribe(recording, api_key="")
    assert session.calls == []


def test_missing_recording_raises(tmp_path):
    transcriber, _ = _transcriber(_FakeResponse(200, {"text": "x"}))

    with pytest.raises(FileNotFoundError):
        transcriber.transcribe(tmp_path / "missing.webm", api_key="gsk")


def test_http_error_uses_upstream_message(recording):
    transcriber, _ = _transcriber(_FakeResponse(400, {"error": {"message": "file too large"}}))

    with pytest.raises(RequestFailed) as excinfo:
        transcriber.transcribe(recording, api_key="gsk")

    assert str(excinfo.value) == "file too large"
    assert excinfo.value.status == 400


def test_transport_error_and_missing_text(recording):
    broken, _ = _transcriber(requests.exceptions.Timeout("slow"))
    empty, _ = _transcriber(_FakeResponse(200, {"segments": []}))

    with pytest.raises(RequestFailed, match="Transcription failed: slow"):
        broken.transcribe(recording, api_key="gsk")
    with pytest.raises(RequestFailed, match="missing 'text'"):
        empty.transcribe(recording, api_key="gsk")
