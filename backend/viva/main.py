"""
FastAPI backend for the viva trainer.
Wires the session store, transcriber and dialogue generator together and
exposes the start / answer / finish turn pipeline over HTTP.
"""

from __future__ import annotations

import asyncio
import base64
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict, Optional

from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from viva import config, db
from viva.errors import (
    GenerationFailure,
    InvalidTurnState,
    SessionNotFound,
    SynthesisFailure,
    TranscriptionFailure,
    VivaError,
)
from viva.llm import ChatCompletionsGenerator, MockDialogueGenerator
from viva.orchestrator import VivaOrchestrator
from viva.sessions import Difficulty, Persona, SessionStore
from viva.speech import SpeechSynthesizer
from viva.transcription import MockTranscriber, WhisperTranscriber
from viva.users import list_users, save_user

logging.basicConfig(level=config.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
LOG = logging.getLogger("viva")

ERROR_STATUS = {
    SessionNotFound: 404,
    InvalidTurnState: 409,
    TranscriptionFailure: 502,
    GenerationFailure: 502,
    SynthesisFailure: 503,
}


def build_orchestrator() -> VivaOrchestrator:
    store = SessionStore(ttl_seconds=config.SESSION_TTL_SECONDS)
    if config.USE_MOCK_AI:
        LOG.info("VIVA_USE_MOCK_AI set; using mock generator and transcriber")
        return VivaOrchestrator(store, MockDialogueGenerator(), MockTranscriber())
    return VivaOrchestrator(store, ChatCompletionsGenerator(), WhisperTranscriber())


def create_app(
    orchestrator: Optional[VivaOrchestrator] = None,
    synthesizer: Optional[SpeechSynthesizer] = None,
    database_url: Optional[str] = None,
) -> FastAPI:
    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncIterator[None]:
        if database_url:
            db.configure(database_url)
        await db.init_db()
        app.state.orchestrator = orchestrator or build_orchestrator()
        app.state.synthesizer = synthesizer or SpeechSynthesizer()
        LOG.info("Viva backend ready")
        yield
        await db.engine.dispose()

    app = FastAPI(title="Viva Trainer", version="0.1.0", lifespan=lifespan)
    # CORS for local dev; adjust allowed origins for prod if needed.
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.exception_handler(VivaError)
    async def viva_error_handler(request: Request, exc: VivaError) -> JSONResponse:
        status = next((code for kind, code in ERROR_STATUS.items() if isinstance(exc, kind)), 500)
        body: Dict[str, Any] = {"error": str(exc)}
        session_id = getattr(exc, "session_id", None)
        if session_id:
            body["sessionId"] = session_id
        LOG.warning("%s %s -> %s: %s", request.method, request.url.path, status, exc)
        return JSONResponse(status_code=status, content=body)

    @app.exception_handler(RequestValidationError)
    async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
        return JSONResponse(
            status_code=400,
            content={"error": "Missing or invalid fields", "detail": jsonable_encoder(exc.errors())},
        )

    _register_routes(app)
    return app


class StartPayload(BaseModel):
    topic: str = Field(..., min_length=1)
    difficulty: Difficulty
    persona: Persona
    notes: Optional[str] = None


class SessionRef(BaseModel):
    session_id: str = Field(..., alias="sessionId")


class TtsRequest(BaseModel):
    text: str
    persona: Optional[Persona] = None


class LoginPayload(BaseModel):
    name: str = Field(..., min_length=1)
    email: str = Field(..., min_length=3)


def _orchestrator(request: Request) -> VivaOrchestrator:
    return request.app.state.orchestrator


def _register_routes(app: FastAPI) -> None:
    @app.get("/health")
    async def health() -> Dict[str, str]:
        return {"status": "ok"}

    @app.post("/api/session/start")
    async def start_session(payload: StartPayload, request: Request) -> Dict[str, Any]:
        result = await _orchestrator(request).start(payload.topic, payload.difficulty, payload.persona, payload.notes)
        return result.model_dump(by_alias=True)

    @app.post("/api/session/answer")
    async def answer_session(
        request: Request,
        session_id: str = Form(..., alias="sessionId"),
        audio: UploadFile = File(...),
    ) -> Dict[str, Any]:
        payload = await audio.read()
        LOG.info("Answer received: id=%s audio_bytes=%s", session_id, len(payload))
        result = await _orchestrator(request).answer(session_id, payload)
        return result.model_dump(by_alias=True, mode="json")

    @app.post("/api/session/retry")
    async def retry_session(payload: SessionRef, request: Request) -> Dict[str, Any]:
        orchestrator = _orchestrator(request)
        snapshot = await orchestrator.store.snapshot(payload.session_id)
        if snapshot is None:
            raise SessionNotFound(payload.session_id)
        if not snapshot[0]:
            result = await orchestrator.retry_start(payload.session_id)
            return {"examinerMessage": result.first_question}
        return {"examinerMessage": await orchestrator.retry_reply(payload.session_id)}

    @app.post("/api/session/finish")
    async def finish_session(payload: SessionRef, request: Request) -> Dict[str, Any]:
        result = await _orchestrator(request).finish(payload.session_id)
        return result.model_dump(by_alias=True, exclude_none=True)

    @app.get("/api/session/{session_id}")
    async def get_session_state(session_id: str, request: Request) -> Dict[str, Any]:
        orchestrator = _orchestrator(request)
        session = orchestrator.store.get(session_id)
        snapshot = await orchestrator.store.snapshot(session_id)
        if session is None or snapshot is None:
            raise SessionNotFound(session_id)
        transcript, stats = snapshot
        return {
            "sessionId": session.session_id,
            "topic": session.topic,
            "difficulty": session.difficulty.value,
            "persona": session.persona.value,
            "startedAt": session.started_at.isoformat(),
            "transcript": [turn.model_dump(mode="json") for turn in transcript],
            "fillerStats": stats.model_dump(by_alias=True),
        }

    @app.post("/api/tts")
    async def tts_endpoint(payload: TtsRequest, request: Request) -> Dict[str, str]:
        synthesizer: SpeechSynthesizer = request.app.state.synthesizer
        audio = await asyncio.to_thread(synthesizer.synthesize, payload.text, payload.persona)
        return {"audio": base64.b64encode(audio).decode("ascii")}

    @app.post("/api/login")
    async def login(payload: LoginPayload) -> Dict[str, Any]:
        user = await save_user(payload.name, payload.email)
        return {"user": user.model_dump(mode="json")}

    @app.get("/api/admin/users")
    async def admin_users() -> Dict[str, Any]:
        users = await list_users()
        return {"users": [u.model_dump(mode="json") for u in users]}


app = create_app()
