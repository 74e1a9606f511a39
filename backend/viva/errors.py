"""Errors raised by the viva turn pipeline; each is scoped to one session or turn."""

from __future__ import annotations

from typing import Optional


class VivaError(Exception):
    """Base class for pipeline errors surfaced to the HTTP layer."""


class SessionNotFound(VivaError):
    def __init__(self, session_id: str) -> None:
        super().__init__(f"Session not found: {session_id}")
        self.session_id = session_id


class TranscriptionFailure(VivaError):
    """The transcription service could not turn the audio into text."""


class GenerationFailure(VivaError):
    """The dialogue generator errored or returned an empty reply."""

    session_id: Optional[str] = None


class SummaryParseFailure(VivaError):
    """The generator's summary was not the JSON object that was asked for."""


class InvalidTurnState(VivaError):
    """The requested transition does not fit the session's current transcript."""


class SynthesisFailure(VivaError):
    """Text-to-speech is unavailable or failed for this request."""
