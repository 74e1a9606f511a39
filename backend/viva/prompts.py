"""Prompt composition for the dialogue generator.

Everything here is pure string/message construction so it can be tested
without a network. Messages are plain ``{"role", "content"}`` dicts using the
generator's wire roles (system/user/assistant).
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Dict, List, Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from viva.errors import SummaryParseFailure
from viva.sessions import Difficulty, Persona, Tone, Turn

LOG = logging.getLogger("viva.prompts")

Message = Dict[str, str]

PERSONA_TEMPLATES: Dict[Persona, str] = {
    Persona.FRIENDLY_TEACHER: (
        "Tone: Warm, encouraging. If the student is stuck, give hints. "
        "Explain briefly if they are wrong. Start with an easy question."
    ),
    Persona.CONFUSED_PEER: (
        'Tone: Casual, slightly clueless. Ask "I didn\'t understand" questions. Ask for examples. '
        'Say things like "Can you make it simpler?".'
    ),
    Persona.RUTHLESS_EXAMINER: (
        'Tone: Cold, professional, strict. Interrupt if the answer is vague. Say "You\'re not being precise" '
        'or "Start again". Ask deep, technical questions. If they use too many filler words, point it out.'
    ),
}

DIFFICULTY_HINTS: Dict[Difficulty, str] = {
    Difficulty.EASY: "Keep questions introductory and check basic definitions.",
    Difficulty.MODERATE: "Mix conceptual questions with some application.",
    Difficulty.TOUGH: "Probe edge cases, derivations and trade-offs.",
}

LENGTH_DIRECTIVE = "Keep your responses concise (under 2-3 sentences) as this is a spoken conversation."

READY_MESSAGE = "I am ready for the viva. Please ask the first question."

GRADER_INSTRUCTION = "You are a grading system. Output only valid JSON."

DEGRADED_SUMMARY_ERROR = "Failed to generate structured summary"


def opening_instruction(
    persona: Persona,
    topic: str,
    notes: Optional[str] = None,
    difficulty: Optional[Difficulty] = None,
) -> str:
    persona = Persona(persona)
    parts = [f'You are a {persona.value} conducting a viva/interview on the topic: "{topic}".']
    if notes and notes.strip():
        parts.append(f'The student has provided these notes: "{notes.strip()}". Use them to ask relevant questions.')
    if difficulty is not None:
        parts.append(f"Difficulty: {Difficulty(difficulty).value}. {DIFFICULTY_HINTS[Difficulty(difficulty)]}")
    parts.append(PERSONA_TEMPLATES[persona])
    parts.append(LENGTH_DIRECTIVE)
    return " ".join(parts)


def tone_note(tone: Tone) -> str:
    return f'(System Note: The student\'s tone was "{Tone(tone).value}". React to this tone if appropriate.)'


def scold_note(filler_count: int) -> str:
    return f"(System Note: The student used {filler_count} filler words. Scold them for it.)"


def turn_notes(persona: Persona, tone: Tone, filler_count: int, threshold: int = 2) -> List[str]:
    """Ephemeral system notes appended to the request after a candidate answer."""
    notes = [tone_note(tone)]
    if Persona(persona) is Persona.RUTHLESS_EXAMINER and filler_count > threshold:
        notes.append(scold_note(filler_count))
    return notes


def transcript_messages(transcript: Sequence[Turn]) -> List[Message]:
    return [{"role": turn.role.wire_role, "content": turn.content} for turn in transcript]


def build_turn_messages(transcript: Sequence[Turn], notes: Sequence[str] = ()) -> List[Message]:
    """Full history followed by the ephemeral notes; the notes are never stored."""
    messages = transcript_messages(transcript)
    messages.extend({"role": "system", "content": note} for note in notes)
    return messages


def summary_messages(transcript: Sequence[Turn]) -> List[Message]:
    history = json.dumps(
        [
            {"role": turn.role.wire_role, "content": turn.content, "timestamp": turn.timestamp.isoformat()}
            for turn in transcript
        ],
        ensure_ascii=False,
    )
    prompt = (
        "The viva session is over. Here is the conversation history:\n"
        f"{history}\n\n"
        "Based on this, generate a JSON summary with the following fields:\n"
        "- overallScore (0-10)\n"
        "- conceptScore (0-10)\n"
        "- clarityScore (0-10)\n"
        "- confidenceScore (0-10)\n"
        "- fillerControlScore (0-10)\n"
        "- strengths (array of strings)\n"
        "- improvements (array of strings)\n\n"
        "Return ONLY the JSON. Do not wrap it in markdown or code fences."
    )
    return [
        {"role": "system", "content": GRADER_INSTRUCTION},
        {"role": "user", "content": prompt},
    ]


class VivaSummary(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    overall_score: Optional[float] = Field(default=None, alias="overallScore")
    concept_score: Optional[float] = Field(default=None, alias="conceptScore")
    clarity_score: Optional[float] = Field(default=None, alias="clarityScore")
    confidence_score: Optional[float] = Field(default=None, alias="confidenceScore")
    filler_control_score: Optional[float] = Field(default=None, alias="fillerControlScore")
    strengths: List[str] = Field(default_factory=list)
    improvements: List[str] = Field(default_factory=list)
    error: Optional[str] = None

    @field_validator(
        "overall_score",
        "concept_score",
        "clarity_score",
        "confidence_score",
        "filler_control_score",
        mode="before",
    )
    @classmethod
    def _clamp_score(cls, value: Any) -> Optional[float]:
        if value is None:
            return None
        if isinstance(value, bool) or not isinstance(value, (int, float, str)):
            raise ValueError("score must be a number")
        try:
            score = float(value)
        except ValueError as exc:
            raise ValueError(f"score must be a number, got {value!r}") from exc
        return min(10.0, max(0.0, score))

    @property
    def degraded(self) -> bool:
        return self.error is not None


_FENCE_RE = re.compile(r"```(?:json)?", flags=re.IGNORECASE)


def strip_code_fences(text: str) -> str:
    return _FENCE_RE.sub("", text or "").strip()


def _extract_json_object(text: str) -> Dict[str, Any]:
    """Tolerant JSON extraction so we survive code fences or preambles."""
    cleaned = strip_code_fences(text)
    try:
        data = json.loads(cleaned)
    except json.JSONDecodeError:
        match = re.search(r"\{.*\}", cleaned, flags=re.DOTALL)
        if not match:
            raise SummaryParseFailure("no JSON object in summary reply")
        try:
            data = json.loads(match.group(0))
        except json.JSONDecodeError as exc:
            raise SummaryParseFailure(f"invalid JSON in summary reply: {exc}") from exc
    if not isinstance(data, dict):
        raise SummaryParseFailure("summary reply is not a JSON object")
    return data


def parse_summary_strict(text: str) -> VivaSummary:
    data = _extract_json_object(text)
    data.pop("error", None)
    try:
        return VivaSummary.model_validate(data)
    except ValidationError as exc:
        raise SummaryParseFailure(f"summary fields invalid: {exc.error_count()} error(s)") from exc


def parse_summary(text: str) -> VivaSummary:
    """Parse the grader's reply; malformed output yields a degraded summary instead of raising."""
    try:
        return parse_summary_strict(text)
    except SummaryParseFailure as exc:
        LOG.warning("Summary parse failed (%s); raw content: %s", exc, (text or "")[:200])
        return VivaSummary(error=DEGRADED_SUMMARY_ERROR)
