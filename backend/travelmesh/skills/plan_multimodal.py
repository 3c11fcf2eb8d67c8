"""
Multimodal trip planning orchestrator.

Voice and image branches are independent and run concurrently. The
reconciling synthesis call is made only when both branches succeeded; with a
single usable modality the result says so via `synthesis_skipped` and keeps
that modality's own confidence.
"""
from dataclasses import dataclass
from pydantic import BaseModel, ConfigDict
from travelmesh.core.ai import AIClient, dump_for_prompt, parse_json_reply
from travelmesh.core.cache import Cache, fingerprint, make_cache_key
from travelmesh.core.confidence import synthesis_confidence, unsynthesized_confidence
from travelmesh.errors import NoProviderAvailable, ProviderError, ValidationError
from travelmesh.models import (
    CombinedResult,
    ImageResult,
    SpeechClip,
    SynthesizedPlan,
    TranscriptionResult,
    VoiceResult,
)
from travelmesh.skills.plan_image import discover_destinations_from_image
from travelmesh.skills.plan_voice import generate_travel_speech, plan_trip_by_voice, transcribe_for_travel
from typing import Optional
import asyncio
import logging

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class MediaInput:
    data: bytes
    filename: str
    content_type: str

    @property
    def digest(self) -> str:
        return fingerprint(self.data)


class SynthesisReply(BaseModel):
    model_config = ConfigDict(extra="allow")

    summary: str = ""
    voiceSummary: str = ""


class MultimodalPlanner:

    def __init__(self, ai: AIClient, cache: Cache, suggestion_fanout: int = 3, max_matches: int = 8):
        self.ai = ai
        self.cache = cache
        self.suggestion_fanout = suggestion_fanout
        self.max_matches = max_matches

    async def transcribe(self, audio: MediaInput, language: str = "en") -> TranscriptionResult:
        key = make_cache_key("transcription", {"audio": audio.digest, "language": language})
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for {key}")
            return cached

        result = await transcribe_for_travel(self.ai, audio.data, audio.filename, language)
        self.cache.set(key, result)
        return result

    async def speak(self, text: str, voice: str = "alloy", speed: float = 1.0) -> SpeechClip:
        return await generate_travel_speech(self.ai, text, voice=voice, speed=speed)

    async def plan_by_voice(
        self,
        audio: MediaInput,
        language: str = "en",
        preferences: Optional[dict] = None,
        speak: bool = True,
        voice: str = "alloy",
    ) -> VoiceResult:
        key = make_cache_key("voice", {
            "audio": audio.digest, "language": language, "preferences": preferences or {},
            "speak": speak, "voice": voice,
        })
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for {key}")
            return cached

        transcription = await self.transcribe(audio, language)
        result = await plan_trip_by_voice(self.ai, transcription, preferences, speak=speak, voice=voice)
        self.cache.set(key, result)
        return result

    async def plan_by_image(self, image: MediaInput, preferences: Optional[dict] = None) -> ImageResult:
        key = make_cache_key("image", {"image": image.digest, "preferences": preferences or {}})
        cached = self.cache.get(key)
        if cached is not None:
            logger.info(f"Cache hit for {key}")
            return cached

        result = await discover_destinations_from_image(
            self.ai,
            image.data,
            mime_type=image.content_type,
            preferences=preferences,
            fanout=self.suggestion_fanout,
            max_matches=self.max_matches,
        )
        self.cache.set(key, result)
        return result

    async def _synthesize(self, voice: VoiceResult, image: ImageResult, preferences: dict) -> SynthesizedPlan:
        prompt = f"""
        Synthesize these voice and image based travel planning results into one trip plan.

        VOICE INPUT:
        Transcription: "{voice.transcription}"
        Travel Entities: {dump_for_prompt(voice.extracted_entities)}
        Travel Intent: {dump_for_prompt(voice.intent.model_dump())}
        Voice Trip Plan: {dump_for_prompt(voice.plan)}

        IMAGE INPUT:
        Image Features: {dump_for_prompt(image.location_features.model_dump())}
        Matching Destinations: {dump_for_prompt(image.matching_destinations)}
        Trip Suggestions: {dump_for_prompt(image.trip_suggestions)}

        USER PREFERENCES:
        {dump_for_prompt(preferences)}

        Prioritize destinations that fit both the spoken intent and the image style,
        combine the budget from the voice request with destination costs, merge
        activity preferences, and offer alternatives where the two conflict.
        Return a JSON object with: summary, recommendedDestination, itinerary,
        budget, activities, alternatives, voiceSummary.
        """
        reply = parse_json_reply(
            await self.ai.complete(prompt, temperature=0.5, max_tokens=1500),
            SynthesisReply,
            SynthesisReply(summary="The combined plan could not be structured; review the voice and image results."),
        )
        return SynthesizedPlan(
            plan=reply.model_dump(),
            voice_confidence=voice.confidence,
            image_confidence=image.confidence,
            confidence=synthesis_confidence(voice.confidence, image.confidence),
        )

    async def plan_combined(
        self,
        audio: Optional[MediaInput] = None,
        image: Optional[MediaInput] = None,
        language: str = "en",
        preferences: Optional[dict] = None,
        speak: bool = False,
    ) -> CombinedResult:
        if audio is None and image is None:
            raise ValidationError("Provide an audio file, an image file, or both")

        branches = {}
        if audio is not None:
            branches["voice"] = self.plan_by_voice(audio, language, preferences, speak=speak)
        if image is not None:
            branches["image"] = self.plan_by_image(image, preferences)

        outcomes = await asyncio.gather(*branches.values(), return_exceptions=True)

        results = {}
        errors = {}
        for name, outcome in zip(branches, outcomes):
            if isinstance(outcome, BaseException):
                logger.warning(f"{name} branch failed: {outcome}")
                errors[name] = str(outcome)
            else:
                results[name] = outcome

        if not results:
            raise NoProviderAvailable("Voice and image processing both failed", details={"errors": errors})

        voice_result = results.get("voice")
        image_result = results.get("image")

        if voice_result is not None and image_result is not None:
            try:
                synthesized = await self._synthesize(voice_result, image_result, preferences or {})
            except ProviderError as e:
                logger.warning(f"Synthesis call failed: {e}")
                errors["synthesis"] = str(e)
                synthesized = None
            return CombinedResult(
                voice_result=voice_result,
                image_result=image_result,
                synthesized_plan=synthesized,
                synthesis_skipped=synthesized is None,
                skipped_reason=None if synthesized else "synthesis call failed",
                confidence=synthesized.confidence if synthesized else unsynthesized_confidence(
                    voice_result.confidence, image_result.confidence
                ),
                errors=errors,
            )

        missing = "voice" if voice_result is None else "image"
        if missing in errors:
            reason = f"{missing} processing failed"
        else:
            reason = f"no {missing} input provided"
        present = voice_result or image_result
        return CombinedResult(
            voice_result=voice_result,
            image_result=image_result,
            synthesized_plan=None,
            synthesis_skipped=True,
            skipped_reason=reason,
            confidence=unsynthesized_confidence(present.confidence),
            errors=errors,
        )
