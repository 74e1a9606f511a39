"""Neural text-to-speech for examiner replies (Coqui XTTS), with a small LRU cache."""

from __future__ import annotations

import logging
import threading
from collections import OrderedDict
from io import BytesIO
from typing import Any, List, Optional, Tuple

import soundfile as sf

from viva import config
from viva.errors import SynthesisFailure
from viva.sessions import Persona

LOG = logging.getLogger("viva.speech")

PERSONA_SPEED = {
    Persona.FRIENDLY_TEACHER: 1.06,
    Persona.CONFUSED_PEER: 1.0,
    Persona.RUTHLESS_EXAMINER: 0.94,
}


class SpeechSynthesizer:
    """Wraps a Coqui TTS model; the model is loaded on first use unless one is injected."""

    def __init__(
        self,
        model_name: str = config.TTS_MODEL,
        device: str = config.TTS_DEVICE,
        speaker: Optional[str] = config.TTS_SPEAKER,
        language: str = config.TTS_LANGUAGE,
        cache_max: int = config.TTS_CACHE_MAX,
        model: Any = None,
    ) -> None:
        self.model_name = model_name
        self.device = device
        self.speaker = speaker
        self.language = language
        self.cache_max = cache_max
        self._model = model
        self._cache: "OrderedDict[Tuple[str, str, str, float], bytes]" = OrderedDict()
        self._lock = threading.Lock()

    def _load(self) -> Any:
        if self._model is not None:
            return self._model
        try:
            from TTS.api import TTS

            self._model = TTS(model_name=self.model_name).to(self.device)
        except Exception as exc:
            LOG.warning("[tts] failed to load model %s: %s", self.model_name, exc)
            raise SynthesisFailure(f"tts_not_loaded: {exc}") from exc
        LOG.info("[tts] loaded %s on %s", self.model_name, self.device)
        return self._model

    def _pick_speaker(self, model: Any) -> str:
        if self.speaker:
            return self.speaker
        candidates: List[str] = []
        if getattr(model, "speakers", None):
            candidates = list(model.speakers)
        elif getattr(getattr(model, "speaker_manager", None), "speaker_names", None):
            candidates = list(model.speaker_manager.speaker_names)
        self.speaker = candidates[0] if candidates else config.TTS_FALLBACK_SPEAKER
        return self.speaker

    def synthesize(self, text: str, persona: Optional[Persona] = None) -> bytes:
        """Return WAV bytes for ``text``; identical requests are served from the cache."""
        text = (text or "").strip()
        if not text:
            raise SynthesisFailure("empty_text")
        speed = PERSONA_SPEED.get(Persona(persona), 1.0) if persona else 1.0
        with self._lock:
            model = self._load()
            speaker = self._pick_speaker(model)
            cache_key = (text, speaker, self.language, speed)
            if cache_key in self._cache:
                self._cache.move_to_end(cache_key)
                return self._cache[cache_key]
            try:
                wav = model.tts(text=text, speaker=speaker, language=self.language, speed=speed)
                sample_rate = getattr(getattr(model, "synthesizer", None), "output_sample_rate", 24000)
                buf = BytesIO()
                sf.write(buf, wav, sample_rate, format="WAV")
            except Exception as exc:
                LOG.error("TTS synthesis failed: %s", exc, exc_info=True)
                raise SynthesisFailure(f"tts_failed: {exc}") from exc
            audio = buf.getvalue()
            self._cache[cache_key] = audio
            if len(self._cache) > self.cache_max:
                self._cache.popitem(last=False)
            return audio
