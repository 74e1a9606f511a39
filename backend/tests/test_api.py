from __future__ import annotations

import base64
import json
from pathlib import Path
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from viva.llm import MockDialogueGenerator
from viva.main import create_app
from viva.orchestrator import VivaOrchestrator
from viva.sessions import SessionStore, Tone
from viva.speech import SpeechSynthesizer
from viva.transcription import MockTranscriber

SUMMARY = {
    "overallScore": 8,
    "conceptScore": 8,
    "clarityScore": 7,
    "confidenceScore": 9,
    "fillerControlScore": 6,
    "strengths": ["Precise"],
    "improvements": ["Slow down"],
}


class FakeTTS:
    speakers = ["Ana Florence"]
    synthesizer = SimpleNamespace(output_sample_rate=16000)

    def tts(self, **kwargs):
        return [0.0] * 800


@pytest.fixture()
def client(tmp_path: Path):
    generator = MockDialogueGenerator(
        ["What is the zeroth law?", "Good. What is entropy?", f"```json\n{json.dumps(SUMMARY)}\n```"]
    )
    transcriber = MockTranscriber("um so basically, you know, thermal equilibrium", Tone.HESITANT)
    app = create_app(
        orchestrator=VivaOrchestrator(SessionStore(), generator, transcriber),
        synthesizer=SpeechSynthesizer(model=FakeTTS()),
        database_url=f"sqlite+aiosqlite:///{tmp_path / 'viva.db'}",
    )
    with TestClient(app) as test_client:
        yield test_client


def _start(client: TestClient) -> str:
    resp = client.post(
        "/api/session/start",
        json={"topic": "Thermodynamics", "difficulty": "moderate", "persona": "friendly_teacher"},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["firstQuestion"] == "What is the zeroth law?"
    return body["sessionId"]


def test_health(client: TestClient) -> None:
    assert client.get("/health").json() == {"status": "ok"}


def test_full_viva_flow(client: TestClient) -> None:
    session_id = _start(client)

    resp = client.post(
        "/api/session/answer",
        data={"sessionId": session_id},
        files={"audio": ("answer.webm", b"\x1a\x45\xdf\xa3webm", "audio/webm")},
    )
    assert resp.status_code == 200
    body = resp.json()
    assert body["transcribedAnswer"] == "um so basically, you know, thermal equilibrium"
    assert body["examinerMessage"] == "Good. What is entropy?"
    assert body["tone"] == "hesitant"
    assert body["analysis"]["fillerCount"] == 3
    assert body["analysis"]["byWord"] == {"um": 1, "basically": 1, "you know": 1}

    state = client.get(f"/api/session/{session_id}").json()
    assert [t["role"] for t in state["transcript"]] == ["system", "candidate", "examiner", "candidate", "examiner"]
    assert state["fillerStats"]["totalWords"] == 7

    resp = client.post("/api/session/finish", json={"sessionId": session_id})
    assert resp.status_code == 200
    body = resp.json()
    assert body["summary"]["overallScore"] == 8
    assert body["summary"]["strengths"] == ["Precise"]
    assert body["fillerStats"]["fillerCount"] == 3

    again = client.post("/api/session/finish", json={"sessionId": session_id})
    assert again.status_code == 404
    assert client.get(f"/api/session/{session_id}").status_code == 404


def test_answer_for_unknown_session_is_404(client: TestClient) -> None:
    resp = client.post(
        "/api/session/answer",
        data={"sessionId": "missing"},
        files={"audio": ("answer.webm", b"data", "audio/webm")},
    )
    assert resp.status_code == 404


def test_start_rejects_missing_or_unknown_fields(client: TestClient) -> None:
    assert client.post("/api/session/start", json={"topic": "Optics"}).status_code == 400
    resp = client.post(
        "/api/session/start",
        json={"topic": "Optics", "difficulty": "impossible", "persona": "friendly_teacher"},
    )
    assert resp.status_code == 400


def test_retry_without_pending_answer_is_conflict(client: TestClient) -> None:
    session_id = _start(client)

    resp = client.post("/api/session/retry", json={"sessionId": session_id})
    assert resp.status_code == 409


def test_tts_returns_base64_wav(client: TestClient) -> None:
    resp = client.post("/api/tts", json={"text": "What is entropy?", "persona": "ruthless_examiner"})

    assert resp.status_code == 200
    assert base64.b64decode(resp.json()["audio"])[:4] == b"RIFF"
    assert client.post("/api/tts", json={"text": "  "}).status_code == 503


def test_login_finds_or_creates_user(client: TestClient) -> None:
    first = client.post("/api/login", json={"name": "Asha", "email": "Asha@Example.com"}).json()["user"]
    second = client.post("/api/login", json={"name": "Asha K", "email": "asha@example.com"}).json()["user"]
    client.post("/api/login", json={"name": "Ravi", "email": "ravi@example.com"})

    assert first["id"] == second["id"]
    assert second["name"] == "Asha"

    users = client.get("/api/admin/users").json()["users"]
    assert [u["email"] for u in users] == ["ravi@example.com", "asha@example.com"]
