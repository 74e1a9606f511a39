"""Session state for a viva run and the in-memory store that owns it."""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from datetime import datetime, timezone
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field

LOG = logging.getLogger("viva.sessions")


class Difficulty(str, Enum):
    EASY = "easy"
    MODERATE = "moderate"
    TOUGH = "tough"


class Persona(str, Enum):
    FRIENDLY_TEACHER = "friendly_teacher"
    CONFUSED_PEER = "confused_peer"
    RUTHLESS_EXAMINER = "ruthless_examiner"


class Tone(str, Enum):
    """Coarse delivery label attached to each transcribed answer."""

    CONFIDENT = "confident"
    NERVOUS = "nervous"
    HESITANT = "hesitant"
    NEUTRAL = "neutral"
    ENTHUSIASTIC = "enthusiastic"
    UNKNOWN = "unknown"


class TurnRole(str, Enum):
    SYSTEM = "system"
    CANDIDATE = "candidate"
    EXAMINER = "examiner"

    @property
    def wire_role(self) -> str:
        """Role name understood by chat-completion style generators."""
        return _WIRE_ROLES[self]


_WIRE_ROLES: Dict[TurnRole, str] = {
    TurnRole.SYSTEM: "system",
    TurnRole.CANDIDATE: "user",
    TurnRole.EXAMINER: "assistant",
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Turn(BaseModel):
    model_config = ConfigDict(frozen=True)

    role: TurnRole
    content: str
    timestamp: datetime = Field(default_factory=_utcnow)


class FillerStats(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    total_words: int = Field(default=0, alias="totalWords")
    filler_count: int = Field(default=0, alias="fillerCount")
    by_word: Dict[str, int] = Field(default_factory=dict, alias="byWord")


class AnalysisResult(FillerStats):
    """Per-fragment counts; same shape as the cumulative stats."""


class Session:
    """One examination run. Only the SessionStore mutates it."""

    def __init__(
        self,
        topic: str,
        difficulty: Difficulty,
        persona: Persona,
        notes: Optional[str] = None,
    ) -> None:
        self.session_id = uuid.uuid4().hex
        self.topic = topic
        self.difficulty = difficulty
        self.persona = persona
        self.notes = notes
        self.transcript: List[Turn] = []
        self.filler_stats = FillerStats()
        self.started_at = _utcnow()
        self.last_activity = time.monotonic()  # monotonic seconds
        self._lock = asyncio.Lock()

    @property
    def lock(self) -> asyncio.Lock:
        return self._lock


class SessionStore:
    """Process-wide registry of live sessions.

    Mutations are serialised per session with that session's lock; there is
    no store-wide lock, so independent sessions never wait on each other.
    """

    def __init__(self, ttl_seconds: Optional[float] = None) -> None:
        self._sessions: Dict[str, Session] = {}
        self._ttl_seconds = ttl_seconds

    def __len__(self) -> int:
        return len(self._sessions)

    def __contains__(self, session_id: object) -> bool:
        return session_id in self._sessions

    def create(
        self,
        topic: str,
        difficulty: Difficulty,
        persona: Persona,
        notes: Optional[str] = None,
    ) -> Session:
        if self._ttl_seconds is not None:
            self.purge_expired()
        session = Session(topic, Difficulty(difficulty), Persona(persona), notes)
        while session.session_id in self._sessions:
            session.session_id = uuid.uuid4().hex
        self._sessions[session.session_id] = session
        LOG.info(
            "Session created: id=%s persona=%s difficulty=%s topic_len=%s",
            session.session_id,
            session.persona.value,
            session.difficulty.value,
            len(topic),
        )
        return session

    def get(self, session_id: str) -> Optional[Session]:
        return self._sessions.get(session_id)

    async def append_turn(self, session_id: str, turn: Turn) -> None:
        await self.commit(session_id, [turn])

    async def accumulate_filler_stats(self, session_id: str, analysis: FillerStats) -> None:
        await self.commit(session_id, [], analysis)

    async def commit(
        self,
        session_id: str,
        turns: Iterable[Turn],
        analysis: Optional[FillerStats] = None,
    ) -> Optional[List[Turn]]:
        """Apply stats and appended turns atomically; return the transcript afterwards.

        Returns None (and changes nothing) when the session is gone.
        """
        session = self._sessions.get(session_id)
        if session is None:
            return None
        async with session.lock:
            if analysis is not None:
                stats = session.filler_stats
                stats.total_words += analysis.total_words
                stats.filler_count += analysis.filler_count
                for word, count in analysis.by_word.items():
                    stats.by_word[word] = stats.by_word.get(word, 0) + count
            session.transcript.extend(turns)
            session.last_activity = time.monotonic()
            return list(session.transcript)

    async def snapshot(self, session_id: str) -> Optional[Tuple[List[Turn], FillerStats]]:
        session = self._sessions.get(session_id)
        if session is None:
            return None
        async with session.lock:
            return list(session.transcript), session.filler_stats.model_copy(deep=True)

    def destroy(self, session_id: str) -> None:
        if self._sessions.pop(session_id, None) is not None:
            LOG.info("Session destroyed: id=%s", session_id)

    def purge_expired(self, now: Optional[float] = None) -> int:
        """Drop sessions idle for longer than the configured TTL."""
        if self._ttl_seconds is None:
            return 0
        now = time.monotonic() if now is None else now
        expired = [
            sid for sid, session in self._sessions.items() if now - session.last_activity > self._ttl_seconds
        ]
        for sid in expired:
            self.destroy(sid)
        if expired:
            LOG.info("Purged %s idle session(s)", len(expired))
        return len(expired)
