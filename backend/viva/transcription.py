"""Speech-to-text collaborators: local Whisper (faster-whisper) plus a mock for offline runs."""

from __future__ import annotations

import asyncio
import logging
import os
import threading
import time
from tempfile import NamedTemporaryFile
from typing import List, Optional, Protocol

from faster_whisper import WhisperModel
from pydantic import BaseModel

from viva import config
from viva.errors import TranscriptionFailure
from viva.sessions import Tone

LOG = logging.getLogger("viva.transcription")


class Transcription(BaseModel):
    transcript: str
    tone: Tone = Tone.UNKNOWN
    speaking_rate: Optional[float] = None  # words per minute of voiced audio
    pause_ratio: Optional[float] = None


class Transcriber(Protocol):
    async def transcribe(self, audio: bytes) -> Transcription:
        ...


def classify_tone(word_count: int, speech_seconds: float, total_seconds: float) -> Tone:
    """Map pacing signals onto a coarse tone label.

    Uses the same pace bands as the delivery coaching: roughly 120-175 wpm is
    comfortable, above 195 is rushing, and pauses above a quarter of the clip
    read as hesitation.
    """
    if word_count <= 0 or speech_seconds <= 0:
        return Tone.UNKNOWN
    speaking_rate = word_count / (speech_seconds / 60.0)
    pause_ratio = max(0.0, 1.0 - speech_seconds / total_seconds) if total_seconds > 0 else 0.0

    if speaking_rate > 195:
        return Tone.NERVOUS
    if pause_ratio > 0.26 or speaking_rate < 105:
        return Tone.HESITANT
    if speaking_rate > 175 and pause_ratio < 0.05:
        return Tone.ENTHUSIASTIC
    if 120 <= speaking_rate <= 175 and pause_ratio <= 0.18:
        return Tone.CONFIDENT
    return Tone.NEUTRAL


class WhisperTranscriber:
    """Local Whisper transcription; the model loads on first use."""

    def __init__(
        self,
        model_size: str = config.WHISPER_MODEL,
        device: str = config.WHISPER_DEVICE,
        compute_type: str = config.WHISPER_COMPUTE_TYPE,
        language: str = config.WHISPER_LANGUAGE,
        suffix: str = ".webm",
    ) -> None:
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.suffix = suffix
        self._model: Optional[WhisperModel] = None
        self._load_lock = threading.Lock()

    def _get_model(self) -> WhisperModel:
        with self._load_lock:
            if self._model is None:
                self._model = WhisperModel(self.model_size, device=self.device, compute_type=self.compute_type)
                LOG.info("[whisper] loaded %s on %s (%s)", self.model_size, self.device, self.compute_type)
            return self._model

    def _transcribe_file(self, audio: bytes) -> Transcription:
        with NamedTemporaryFile(delete=False, suffix=self.suffix) as tmp:
            tmp.write(audio)
            tmp_path = tmp.name
        try:
            segments, info = self._get_model().transcribe(
                tmp_path,
                beam_size=4,
                language=self.language,
                vad_filter=True,
                condition_on_previous_text=False,
            )
            texts: List[str] = []
            speech_seconds = 0.0
            for seg in segments:
                seg_text = seg.text.strip()
                if seg_text:
                    texts.append(seg_text)
                    speech_seconds += max(0.0, seg.end - seg.start)
            transcript = " ".join(texts).strip()
        finally:
            try:
                os.remove(tmp_path)
            except OSError:
                pass

        word_count = len(transcript.split())
        total_seconds = float(info.duration or 0.0)
        tone = classify_tone(word_count, speech_seconds, total_seconds)
        speaking_rate = round(word_count / (speech_seconds / 60.0), 1) if speech_seconds > 0 else None
        pause_ratio = (
            round(max(0.0, 1.0 - speech_seconds / total_seconds), 3) if total_seconds > 0 else None
        )
        return Transcription(transcript=transcript, tone=tone, speaking_rate=speaking_rate, pause_ratio=pause_ratio)

    async def transcribe(self, audio: bytes) -> Transcription:
        if not audio:
            raise TranscriptionFailure("empty audio")
        started = time.perf_counter()
        try:
            result = await asyncio.to_thread(self._transcribe_file, audio)
        except Exception as exc:
            LOG.warning("STT failed: %s", exc)
            raise TranscriptionFailure(f"stt_failed: {exc}") from exc
        LOG.info(
            "STT done: bytes=%s words=%s tone=%s latency_ms=%s",
            len(audio),
            len(result.transcript.split()),
            result.tone.value,
            round((time.perf_counter() - started) * 1000, 2),
        )
        return result


class MockTranscriber:
    """Fixed transcription for running without a speech model."""

    def __init__(
        self,
        transcript: str = "This is a mock transcription of the user's audio answer.",
        tone: Tone = Tone.NEUTRAL,
    ) -> None:
        self.transcript = transcript
        self.tone = tone

    async def transcribe(self, audio: bytes) -> Transcription:
        if not audio:
            raise TranscriptionFailure("empty audio")
        LOG.info("[mock] transcribing %s bytes", len(audio))
        return Transcription(transcript=self.transcript, tone=self.tone)
