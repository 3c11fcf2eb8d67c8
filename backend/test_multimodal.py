import base64
import math
import time

import pytest

from travelmesh.core.cache import SimpleCache
from travelmesh.core.confidence import (
    image_analysis_confidence,
    synthesis_confidence,
    transcription_confidence,
    unsynthesized_confidence,
)
from travelmesh.core.ai import parse_json_reply, strip_code_fences
from travelmesh.errors import NoProviderAvailable, ValidationError
from travelmesh.skills.plan_image import DestinationMatchesReply
from travelmesh.skills.plan_multimodal import MediaInput, MultimodalPlanner
from travelmesh.skills.plan_voice import DEFAULT_VOICE_SUMMARY

AUDIO = MediaInput(data=b"fake-webm-audio", filename="request.webm", content_type="audio/webm")
IMAGE = MediaInput(data=b"fake-jpeg-image", filename="beach.jpg", content_type="image/jpeg")


@pytest.fixture
def planner(fake_ai):
    return MultimodalPlanner(fake_ai, SimpleCache(), suggestion_fanout=3, max_matches=8)


# --- confidence ---

def test_synthesis_confidence_is_weighted_average_plus_bonus():
    assert synthesis_confidence(0.6, 0.8) == pytest.approx(0.8)
    assert synthesis_confidence(0.95, 0.95) == 1.0
    assert synthesis_confidence(0.0, 0.0) == pytest.approx(0.1)


def test_unsynthesized_confidence_has_no_bonus():
    assert unsynthesized_confidence(0.6, 0.8) == pytest.approx(0.7)
    assert unsynthesized_confidence(0.55) == 0.55
    assert unsynthesized_confidence() == 0.0


def test_transcription_confidence_prefers_word_scores():
    raw = {"text": "hello there", "words": [{"confidence": 0.9}, {"confidence": 0.7}], "segments": [{"avg_logprob": -3}]}
    assert transcription_confidence(raw) == pytest.approx(0.8)


def test_transcription_confidence_from_segments_with_travel_boost():
    raw = {"text": "book a flight", "segments": [{"avg_logprob": -0.5}]}
    assert transcription_confidence(raw) == pytest.approx(math.exp(-0.5) + 0.1, abs=1e-4)


def test_transcription_confidence_defaults_and_caps():
    assert transcription_confidence({"text": "hello"}) == 0.6
    assert transcription_confidence({"text": "trip", "words": [{"confidence": 0.99}]}) == 1.0


def test_image_confidence_grows_with_detail_and_caps():
    assert image_analysis_confidence({}) == 0.4
    assert image_analysis_confidence({"locationType": "unknown"}) == 0.4
    assert image_analysis_confidence({"locationType": "beach", "estimatedRegion": "Caribbean"}) == 0.7
    assert image_analysis_confidence({
        "locationType": "beach", "estimatedRegion": "Caribbean",
        "landmarks": ["x"], "culturalMarkers": ["y"], "activities": ["z"],
    }) == 0.95


# --- reply parsing ---

def test_strip_code_fences():
    assert strip_code_fences('```json\n{"a": 1}\n```') == '{"a": 1}'
    assert strip_code_fences('{"a": 1}') == '{"a": 1}'


def test_parse_json_reply_falls_back_on_garbage():
    default = DestinationMatchesReply()
    assert parse_json_reply("not json at all", DestinationMatchesReply, default) is default
    assert parse_json_reply('{"destinations": [{"country": "nameless"}]}', DestinationMatchesReply, default) is default


def test_parse_json_reply_accepts_bare_list():
    reply = parse_json_reply('[{"name": "Bali", "similarityScore": 0.9}]', DestinationMatchesReply, None)
    assert reply.destinations[0].name == "Bali"


# --- voice ---

@pytest.mark.asyncio
async def test_voice_flow(planner, fake_ai):
    result = await planner.plan_by_voice(AUDIO, "en", {"budget": "mid"})

    assert result.modality == "voice"
    assert result.transcription.startswith("I want to plan a trip to Tokyo")
    assert "Tokyo" in result.extracted_entities["destinations"]
    assert result.intent.primary == "plan_trip"
    assert result.plan["voiceSummary"] == "Tokyo in summer fits your budget."
    assert base64.b64decode(result.speech.audio_base64) == b"mp3-bytes"
    assert result.confidence == pytest.approx(math.exp(-0.5) + 0.1, abs=1e-4)
    assert fake_ai.calls == ["transcribe", "voice_plan", "speech"]


@pytest.mark.asyncio
async def test_voice_flow_survives_speech_failure(planner, fake_ai):
    fake_ai.fail.add("speech")
    result = await planner.plan_by_voice(AUDIO)
    assert result.speech is None
    assert result.plan["interpretedRequest"] == "Summer trip to Tokyo"


@pytest.mark.asyncio
async def test_voice_flow_falls_back_on_unparseable_plan(planner, fake_ai):
    fake_ai.voice_plan = "Sure! Here is your plan: go to Tokyo."
    result = await planner.plan_by_voice(AUDIO, speak=False)
    assert result.plan["voiceSummary"] == DEFAULT_VOICE_SUMMARY
    assert result.speech is None


@pytest.mark.asyncio
async def test_voice_results_are_cached_by_content(planner, fake_ai):
    await planner.plan_by_voice(AUDIO, speak=False)
    await planner.plan_by_voice(MediaInput(AUDIO.data, "renamed.webm", "audio/webm"), speak=False)
    assert fake_ai.calls.count("transcribe") == 1


# --- image ---

@pytest.mark.asyncio
async def test_image_flow(planner, fake_ai):
    result = await planner.plan_by_image(IMAGE)

    assert result.modality == "image"
    assert result.confidence == 0.95
    assert result.location_features.primary_type == "beach"
    assert result.location_features.activities == ["surfing", "snorkeling"]
    assert "tropical" in result.location_features.search_keywords
    assert [d["name"] for d in result.matching_destinations] == ["Boracay", "Bali", "Phuket", "Langkawi"]
    assert [s["destination"]["name"] for s in result.trip_suggestions] == ["Boracay", "Bali", "Phuket"]
    assert all(s["image_match"] for s in result.trip_suggestions)
    assert fake_ai.calls.count("suggestion") == 3


@pytest.mark.asyncio
async def test_image_flow_fills_feature_defaults(planner, fake_ai):
    fake_ai.image_analysis = '{"locationType": "city"}'
    result = await planner.plan_by_image(IMAGE)

    features = result.location_features
    assert features.climate == "temperate"
    assert features.setting == "mixed"
    assert features.architectural_style == "modern"
    assert features.development_level == "medium"


@pytest.mark.asyncio
async def test_failed_trip_suggestion_keeps_its_destination(planner, fake_ai):
    fake_ai.fail.add("suggestion")
    result = await planner.plan_by_image(IMAGE)

    assert len(result.trip_suggestions) == 3
    assert all(s["trip_plan"] is None and not s["image_match"] for s in result.trip_suggestions)


@pytest.mark.asyncio
async def test_failed_matching_gives_no_destinations(planner, fake_ai):
    fake_ai.fail.add("matching")
    result = await planner.plan_by_image(IMAGE)
    assert result.matching_destinations == []
    assert result.trip_suggestions == []


# --- combined ---

@pytest.mark.asyncio
async def test_combined_synthesizes_when_both_succeed(planner, fake_ai):
    result = await planner.plan_combined(AUDIO, IMAGE)

    assert result.synthesized_plan is not None
    assert result.synthesis_skipped is False
    assert result.synthesized_plan.plan["recommendedDestination"] == "Bali"
    expected = min(0.5 * result.voice_result.confidence + 0.5 * result.image_result.confidence + 0.1, 1.0)
    assert result.confidence == pytest.approx(expected, abs=1e-4)
    assert result.synthesized_plan.confidence == result.confidence
    assert result.voice_result.speech is None


@pytest.mark.asyncio
async def test_combined_never_synthesizes_from_image_alone(planner, fake_ai):
    fake_ai.fail.add("transcribe")
    result = await planner.plan_combined(AUDIO, IMAGE)

    assert result.synthesized_plan is None
    assert result.synthesis_skipped is True
    assert result.skipped_reason == "voice processing failed"
    assert result.voice_result is None
    assert result.image_result is not None
    assert result.confidence == result.image_result.confidence
    assert "voice" in result.errors
    assert "synthesis" not in fake_ai.calls


@pytest.mark.asyncio
async def test_combined_with_only_audio(planner, fake_ai):
    result = await planner.plan_combined(audio=AUDIO)

    assert result.synthesis_skipped is True
    assert result.skipped_reason == "no image input provided"
    assert result.confidence == result.voice_result.confidence
    assert result.errors == {}


@pytest.mark.asyncio
async def test_combined_synthesis_failure_keeps_branch_results(planner, fake_ai):
    fake_ai.fail.add("synthesis")
    result = await planner.plan_combined(AUDIO, IMAGE)

    assert result.synthesized_plan is None
    assert result.synthesis_skipped is True
    assert result.skipped_reason == "synthesis call failed"
    assert "synthesis" in result.errors
    assert result.voice_result is not None
    assert result.image_result is not None
    expected = (result.voice_result.confidence + result.image_result.confidence) / 2
    assert result.confidence == pytest.approx(expected, abs=1e-4)


@pytest.mark.asyncio
async def test_combined_runs_voice_and_image_concurrently(planner, fake_ai):
    fake_ai.delays.update({"transcribe": 0.3, "vision": 0.3})

    start = time.monotonic()
    result = await planner.plan_combined(AUDIO, IMAGE)
    elapsed = time.monotonic() - start

    assert result.synthesized_plan is not None
    assert elapsed < 0.55


@pytest.mark.asyncio
async def test_combined_with_both_branches_failing(planner, fake_ai):
    fake_ai.fail.update({"transcribe", "vision"})
    with pytest.raises(NoProviderAvailable) as excinfo:
        await planner.plan_combined(AUDIO, IMAGE)
    assert set(excinfo.value.details["errors"]) == {"voice", "image"}


@pytest.mark.asyncio
async def test_combined_without_inputs(planner):
    with pytest.raises(ValidationError):
        await planner.plan_combined()
