import math
from typing import Any, Dict, Iterable

TRAVEL_WORDS = ("travel", "trip", "vacation", "hotel", "flight", "destination")

# Multimodal agreement bonus added on top of the 50/50 weighted average
SYNTHESIS_BONUS = 0.1


def transcription_confidence(transcription: Dict[str, Any]) -> float:
    """
    Estimate how trustworthy a Whisper verbose_json transcription is.
    Word confidences win when present, then segment log-probabilities.
    Transcripts mentioning travel vocabulary get a small boost.
    """
    words = transcription.get("words") or []
    segments = transcription.get("segments") or []

    if words:
        scores = [float(w.get("confidence", 0.8)) for w in words]
        scores = [s for s in scores if s > 0]
        base = sum(scores) / len(scores) if scores else 0.7
    elif segments:
        scores = [math.exp(float(s["avg_logprob"])) for s in segments if s.get("avg_logprob") is not None]
        base = sum(scores) / len(scores) if scores else 0.6
    else:
        base = 0.6

    text = (transcription.get("text") or "").lower()
    if any(word in text for word in TRAVEL_WORDS):
        base += 0.1
    return _clamp(base, 1.0)


def image_analysis_confidence(analysis: Dict[str, Any]) -> float:
    """Confidence grows with how much the vision model could identify."""
    confidence = 0.4
    if _known(analysis.get("locationType")):
        confidence += 0.15
    if _known(analysis.get("estimatedRegion")):
        confidence += 0.15
    if analysis.get("landmarks"):
        confidence += 0.1
    if analysis.get("culturalMarkers"):
        confidence += 0.1
    if analysis.get("activities"):
        confidence += 0.1
    return _clamp(confidence, 0.95)


def intent_confidence(detected: Iterable[str]) -> float:
    return 0.8 if list(detected) else 0.3


def synthesis_confidence(voice_confidence: float, image_confidence: float) -> float:
    return _clamp(0.5 * voice_confidence + 0.5 * image_confidence + SYNTHESIS_BONUS, 1.0)


def unsynthesized_confidence(*confidences: float) -> float:
    """Mean of whatever modalities succeeded, no agreement bonus."""
    if not confidences:
        return 0.0
    return _clamp(sum(confidences) / len(confidences), 1.0)


def _known(value: Any) -> bool:
    return bool(value) and value != "unknown"


def _clamp(value: float, ceiling: float) -> float:
    return round(max(0.0, min(value, ceiling)), 4)
