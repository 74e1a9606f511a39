"""Turn pipeline for a viva session: start, answer, finish.

Network calls (transcription and generation) always run outside the session
lock; only the commit of their results is serialised through the store.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field

from viva import config
from viva.analyzer import analyze_speech
from viva.errors import GenerationFailure, InvalidTurnState, SessionNotFound, TranscriptionFailure
from viva.llm import DialogueGenerator
from viva.prompts import (
    READY_MESSAGE,
    VivaSummary,
    build_turn_messages,
    opening_instruction,
    parse_summary,
    summary_messages,
    turn_notes,
)
from viva.sessions import AnalysisResult, Difficulty, FillerStats, Persona, Session, SessionStore, Tone, Turn, TurnRole
from viva.transcription import Transcriber, Transcription

LOG = logging.getLogger("viva.orchestrator")


class StartResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: str = Field(alias="sessionId")
    first_question: str = Field(alias="firstQuestion")


class AnswerResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    transcribed_answer: str = Field(alias="transcribedAnswer")
    examiner_message: str = Field(alias="examinerMessage")
    analysis: AnalysisResult
    tone: Tone


class FinishResult(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    summary: VivaSummary
    filler_stats: FillerStats = Field(alias="fillerStats")


class VivaOrchestrator:
    def __init__(
        self,
        store: SessionStore,
        generator: DialogueGenerator,
        transcriber: Transcriber,
        scold_threshold: int = config.SCOLD_THRESHOLD,
        generation_timeout: Optional[float] = config.LLM_TIMEOUT + 5,
        transcription_timeout: Optional[float] = config.TRANSCRIPTION_TIMEOUT,
    ) -> None:
        self.store = store
        self.generator = generator
        self.transcriber = transcriber
        self.scold_threshold = scold_threshold
        self.generation_timeout = generation_timeout
        self.transcription_timeout = transcription_timeout

    def _require(self, session_id: str) -> Session:
        session = self.store.get(session_id)
        if session is None:
            LOG.warning("Session not found: %s", session_id)
            raise SessionNotFound(session_id)
        return session

    async def _generate(self, messages: Sequence[Dict[str, str]], purpose: str, allow_empty: bool = False) -> str:
        try:
            reply = await asyncio.wait_for(self.generator.generate_reply(messages), timeout=self.generation_timeout)
        except asyncio.TimeoutError as exc:
            LOG.warning("Generator timed out (%s) after %ss", purpose, self.generation_timeout)
            raise GenerationFailure(f"generator timed out ({purpose})") from exc
        except GenerationFailure:
            raise
        except Exception as exc:
            LOG.warning("Generator failed (%s): %s", purpose, exc)
            raise GenerationFailure(f"generator failed ({purpose}): {exc}") from exc
        reply = (reply or "").strip()
        if not reply and not allow_empty:
            LOG.warning("Generator returned empty content (%s)", purpose)
            raise GenerationFailure(f"empty reply ({purpose})")
        return reply

    async def _transcribe(self, audio: bytes) -> Transcription:
        try:
            return await asyncio.wait_for(self.transcriber.transcribe(audio), timeout=self.transcription_timeout)
        except asyncio.TimeoutError as exc:
            LOG.warning("Transcription timed out after %ss", self.transcription_timeout)
            raise TranscriptionFailure("transcription timed out") from exc
        except TranscriptionFailure:
            raise
        except Exception as exc:
            LOG.warning("Transcription failed: %s", exc)
            raise TranscriptionFailure(f"transcription failed: {exc}") from exc

    async def _open(self, session: Session) -> StartResult:
        instruction = opening_instruction(session.persona, session.topic, session.notes, session.difficulty)
        messages = [
            {"role": TurnRole.SYSTEM.wire_role, "content": instruction},
            {"role": TurnRole.CANDIDATE.wire_role, "content": READY_MESSAGE},
        ]
        first_question = await self._generate(messages, "opening")
        committed = await self.store.commit(
            session.session_id,
            [
                Turn(role=TurnRole.SYSTEM, content=instruction),
                Turn(role=TurnRole.CANDIDATE, content=READY_MESSAGE),
                Turn(role=TurnRole.EXAMINER, content=first_question),
            ],
        )
        if committed is None:
            raise SessionNotFound(session.session_id)
        LOG.info("Session opened: id=%s question_len=%s", session.session_id, len(first_question))
        return StartResult(session_id=session.session_id, first_question=first_question)

    async def start(
        self,
        topic: str,
        difficulty: Difficulty,
        persona: Persona,
        notes: Optional[str] = None,
    ) -> StartResult:
        """Create a session and ask the first question.

        On GenerationFailure the session stays registered with an empty
        transcript so ``retry_start`` can reuse it.
        """
        session = self.store.create(topic, difficulty, persona, notes)
        try:
            return await self._open(session)
        except GenerationFailure as exc:
            exc.session_id = session.session_id
            raise

    async def retry_start(self, session_id: str) -> StartResult:
        session = self._require(session_id)
        snapshot = await self.store.snapshot(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id)
        if snapshot[0]:
            raise InvalidTurnState("session already has an opening question")
        return await self._open(session)

    async def answer(self, session_id: str, audio: bytes) -> AnswerResult:
        session = self._require(session_id)
        transcription = await self._transcribe(audio)
        text = transcription.transcript
        analysis = analyze_speech(text)
        LOG.info(
            "Answer transcribed: id=%s words=%s fillers=%s tone=%s",
            session_id,
            analysis.total_words,
            analysis.filler_count,
            transcription.tone.value,
        )

        transcript = await self.store.commit(session_id, [Turn(role=TurnRole.CANDIDATE, content=text)], analysis)
        if transcript is None:
            raise SessionNotFound(session_id)

        notes = turn_notes(session.persona, transcription.tone, analysis.filler_count, self.scold_threshold)
        # The candidate turn stays committed even if this call fails.
        reply = await self._generate(build_turn_messages(transcript, notes), "answer")
        if await self.store.commit(session_id, [Turn(role=TurnRole.EXAMINER, content=reply)]) is None:
            raise SessionNotFound(session_id)

        return AnswerResult(
            transcribed_answer=text,
            examiner_message=reply,
            analysis=analysis,
            tone=transcription.tone,
        )

    async def retry_reply(self, session_id: str) -> str:
        """Ask the generator again after a failed reply to the latest candidate turn."""
        self._require(session_id)
        snapshot = await self.store.snapshot(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id)
        transcript: List[Turn] = snapshot[0]
        if not transcript or transcript[-1].role is not TurnRole.CANDIDATE:
            raise InvalidTurnState("no candidate answer is awaiting a reply")
        reply = await self._generate(build_turn_messages(transcript), "retry")
        if await self.store.commit(session_id, [Turn(role=TurnRole.EXAMINER, content=reply)]) is None:
            raise SessionNotFound(session_id)
        return reply

    async def finish(self, session_id: str) -> FinishResult:
        """Grade the whole transcript, then tear the session down.

        A generator error leaves the session in place; an unparseable
        summary does not.
        """
        self._require(session_id)
        snapshot = await self.store.snapshot(session_id)
        if snapshot is None:
            raise SessionNotFound(session_id)
        reply = await self._generate(summary_messages(snapshot[0]), "summary", allow_empty=True)
        summary = parse_summary(reply)

        final = await self.store.snapshot(session_id)
        if final is None:
            raise SessionNotFound(session_id)
        result = FinishResult(summary=summary, filler_stats=final[1])
        self.store.destroy(session_id)
        LOG.info(
            "Session finished: id=%s turns=%s degraded_summary=%s",
            session_id,
            len(final[0]),
            summary.degraded,
        )
        return result
