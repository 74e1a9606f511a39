from __future__ import annotations

from types import SimpleNamespace

import pytest

from viva.errors import SynthesisFailure
from viva.sessions import Persona
from viva.speech import SpeechSynthesizer


class FakeTTS:
    def __init__(self) -> None:
        self.speakers = ["Ana Florence"]
        self.synthesizer = SimpleNamespace(output_sample_rate=16000)
        self.calls: list[dict] = []

    def tts(self, **kwargs):
        self.calls.append(kwargs)
        return [0.0] * 1600


def test_synthesis_returns_wav_and_uses_persona_speed() -> None:
    fake = FakeTTS()
    synth = SpeechSynthesizer(model=fake, speaker=None)

    audio = synth.synthesize("What is entropy?", Persona.RUTHLESS_EXAMINER)

    assert audio[:4] == b"RIFF"
    assert fake.calls[0]["speaker"] == "Ana Florence"
    assert fake.calls[0]["speed"] == 0.94


def test_repeated_requests_hit_the_cache() -> None:
    fake = FakeTTS()
    synth = SpeechSynthesizer(model=fake, speaker="Ana Florence", cache_max=1)

    first = synth.synthesize("Hello")
    second = synth.synthesize("Hello")
    synth.synthesize("Goodbye")
    synth.synthesize("Hello")

    assert first == second
    assert len(fake.calls) == 3


def test_empty_text_is_rejected() -> None:
    with pytest.raises(SynthesisFailure):
        SpeechSynthesizer(model=FakeTTS()).synthesize("   ")
