"""Environment-driven settings for the viva backend."""

from __future__ import annotations

import os
from typing import Optional


def _env_flag(name: str, default: str = "false") -> bool:
    return os.getenv(name, default).strip().lower() in ("1", "true", "yes", "on")


def _env_optional_float(name: str) -> Optional[float]:
    raw = os.getenv(name)
    if raw is None or not raw.strip():
        return None
    return float(raw)


LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

# OpenAI-compatible chat completions endpoint used as the dialogue generator.
LLM_URL = os.getenv("VIVA_LLM_URL", "https://integrate.api.nvidia.com/v1/chat/completions")
LLM_MODEL = os.getenv("VIVA_LLM_MODEL", "meta/llama-4-maverick-17b-128e-instruct")
LLM_API_KEY = os.getenv("VIVA_LLM_API_KEY")
LLM_TIMEOUT = float(os.getenv("VIVA_LLM_TIMEOUT", "20"))
LLM_MAX_TOKENS = int(os.getenv("VIVA_LLM_MAX_TOKENS", "400"))
LLM_TEMPERATURE = float(os.getenv("VIVA_LLM_TEMPERATURE", "0.7"))
USE_MOCK_AI = _env_flag("VIVA_USE_MOCK_AI")

WHISPER_MODEL = os.getenv("WHISPER_MODEL", "medium")
WHISPER_DEVICE = os.getenv("WHISPER_DEVICE", "cpu")
WHISPER_COMPUTE_TYPE = os.getenv("WHISPER_COMPUTE_TYPE") or (
    "float16" if WHISPER_DEVICE not in ("cpu", "auto-cpu") else "int8"
)
WHISPER_LANGUAGE = os.getenv("WHISPER_LANGUAGE", "en")
TRANSCRIPTION_TIMEOUT = float(os.getenv("VIVA_TRANSCRIPTION_TIMEOUT", "60"))

TTS_MODEL = os.getenv("TTS_MODEL", "tts_models/multilingual/multi-dataset/xtts_v2")
TTS_DEVICE = os.getenv("TTS_DEVICE", WHISPER_DEVICE)
TTS_SPEAKER = os.getenv("TTS_SPEAKER")
TTS_FALLBACK_SPEAKER = os.getenv("TTS_FALLBACK_SPEAKER", "Claribel Dervla")
TTS_LANGUAGE = os.getenv("TTS_LANGUAGE", "en")
TTS_CACHE_MAX = int(os.getenv("TTS_CACHE_MAX", "32"))

# Per-turn filler count above which the ruthless examiner is told to scold.
SCOLD_THRESHOLD = int(os.getenv("VIVA_SCOLD_THRESHOLD", "2"))
# Unset means sessions live until finished.
SESSION_TTL_SECONDS = _env_optional_float("VIVA_SESSION_TTL_SECONDS")

DATABASE_URL = os.getenv("DATABASE_URL", "sqlite+aiosqlite:///./data.db")
