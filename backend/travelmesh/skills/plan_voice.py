"""
Voice trip planning: transcribe, extract entities locally, ask the model for a
plan, and optionally read the summary back as speech.
"""
from pydantic import BaseModel, ConfigDict
from travelmesh.core.ai import AIClient, dump_for_prompt, parse_json_reply
from travelmesh.core.confidence import transcription_confidence
from travelmesh.errors import ProviderError
from travelmesh.models import SpeechClip, TranscriptionResult, VoiceResult
from travelmesh.skills.extract_entities import detect_travel_intent, extract_travel_entities
from typing import Any, List, Optional
import base64
import logging

logger = logging.getLogger(__name__)

DEFAULT_VOICE_SUMMARY = "I heard your travel request. Here is a first draft of your trip plan."

# Average speaking rate used to estimate clip length
WORDS_PER_MINUTE = 150


class VoicePlanReply(BaseModel):
    model_config = ConfigDict(extra="allow")

    interpretedRequest: str = ""
    suggestedDestinations: List[Any] = []
    recommendedDuration: str = ""
    budgetEstimate: Any = None
    activities: List[Any] = []
    accommodations: List[Any] = []
    followUpQuestions: List[str] = []
    voiceSummary: str = DEFAULT_VOICE_SUMMARY


async def transcribe_for_travel(ai: AIClient, audio: bytes, filename: str, language: str = "en") -> TranscriptionResult:
    raw = await ai.transcribe(audio, filename=filename, language=language)
    text = raw.get("text") or ""
    return TranscriptionResult(
        text=text,
        language=raw.get("language"),
        duration_seconds=raw.get("duration"),
        confidence=transcription_confidence(raw),
        entities=extract_travel_entities(text),
        intent=detect_travel_intent(text),
        segments=raw.get("segments") or [],
    )


def estimate_audio_duration(text: str) -> float:
    word_count = len(text.split())
    return round(max(word_count / WORDS_PER_MINUTE * 60, 1.0), 1)


async def generate_travel_speech(ai: AIClient, text: str, voice: str = "alloy", speed: float = 1.0) -> SpeechClip:
    audio = await ai.synthesize_speech(text, voice=voice, speed=speed)
    return SpeechClip(
        audio_base64=base64.b64encode(audio).decode(),
        voice=voice,
        speed=speed,
        estimated_duration_seconds=estimate_audio_duration(text),
    )


async def plan_trip_by_voice(
    ai: AIClient,
    transcription: TranscriptionResult,
    preferences: Optional[dict] = None,
    speak: bool = True,
    voice: str = "alloy",
) -> VoiceResult:
    prompt = f"""
    You are a voice-controlled travel assistant. Turn this spoken request into a travel plan.

    Voice Input: "{transcription.text}"
    Detected Travel Entities: {dump_for_prompt(transcription.entities.model_dump())}
    Travel Intent: {dump_for_prompt(transcription.intent.model_dump())}
    User Preferences: {dump_for_prompt(preferences or {})}

    Return a JSON object with keys: interpretedRequest, suggestedDestinations,
    recommendedDuration, budgetEstimate, activities, accommodations,
    followUpQuestions, voiceSummary (2-3 sentences suitable for speech).
    """
    reply = parse_json_reply(await ai.complete(prompt, temperature=0.6), VoicePlanReply, VoicePlanReply())

    speech = None
    if speak and reply.voiceSummary:
        try:
            speech = await generate_travel_speech(ai, reply.voiceSummary, voice=voice)
        except ProviderError as e:
            # The plan is still useful without audio
            logger.warning(f"Speech synthesis skipped: {e}")

    return VoiceResult(
        confidence=transcription.confidence,
        extracted_entities=transcription.entities.model_dump(),
        raw_analysis={
            "intent": transcription.intent.model_dump(),
            "segments": transcription.segments,
        },
        transcription=transcription.text,
        language=transcription.language,
        duration_seconds=transcription.duration_seconds,
        intent=transcription.intent,
        plan=reply.model_dump(),
        speech=speech,
    )
