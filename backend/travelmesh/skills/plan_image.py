"""
Image-based destination discovery: vision analysis, local feature mapping,
destination matching, then detailed suggestions for the best few matches.
"""
from pydantic import BaseModel, ConfigDict, model_validator
from travelmesh.core.ai import AIClient, dump_for_prompt, parse_json_reply
from travelmesh.core.confidence import image_analysis_confidence
from travelmesh.errors import ProviderError
from travelmesh.models import UNKNOWN, ImageResult, LocationFeatures
from typing import Any, Dict, List, Optional
import asyncio
import logging

logger = logging.getLogger(__name__)

IMAGE_ANALYSIS_PROMPT = """Analyze this travel destination image as a travel expert.
Return a JSON object with keys:
locationType (beach, mountains, city, countryside, ...), climate, setting,
architecturalStyle, activities (list), culturalMarkers (list), landmarks (list),
estimatedRegion, timeOfYear, developmentLevel (low/medium/high),
bestTimeToVisit, budgetLevel, travelerTypes (list).
Use "unknown" when a field cannot be determined."""


class ImageAnalysisReply(BaseModel):
    model_config = ConfigDict(extra="allow")

    locationType: str = UNKNOWN
    climate: Optional[str] = None
    setting: Optional[str] = None
    architecturalStyle: Optional[str] = None
    activities: List[Any] = []
    culturalMarkers: List[Any] = []
    landmarks: List[Any] = []
    estimatedRegion: Optional[str] = None
    timeOfYear: Optional[str] = None
    developmentLevel: Optional[str] = None


class DestinationMatch(BaseModel):
    model_config = ConfigDict(extra="allow")

    name: str
    country: str = UNKNOWN
    similarityScore: float = 0.0


class DestinationMatchesReply(BaseModel):
    destinations: List[DestinationMatch] = []

    @model_validator(mode="before")
    @classmethod
    def accept_bare_list(cls, data: Any) -> Any:
        if isinstance(data, list):
            return {"destinations": data}
        return data


class TripSuggestionReply(BaseModel):
    model_config = ConfigDict(extra="allow")


def _labels(items: List[Any]) -> List[str]:
    """Models return either plain strings or objects with a name; keep the text."""
    labels = []
    for item in items:
        if isinstance(item, dict):
            item = item.get("name") or item.get("label")
        if item:
            labels.append(str(item))
    return labels


def generate_search_keywords(analysis: Dict[str, Any]) -> List[str]:
    keywords = []
    for key in ("locationType", "climate"):
        if analysis.get(key):
            keywords.append(analysis[key])
    keywords.extend(_labels(analysis.get("activities") or []))
    keywords.extend(_labels(analysis.get("culturalMarkers") or []))
    if analysis.get("architecturalStyle"):
        keywords.append(analysis["architecturalStyle"])

    seen = set()
    unique = []
    for keyword in keywords:
        if keyword and keyword != UNKNOWN and keyword not in seen:
            seen.add(keyword)
            unique.append(keyword)
    return unique


def extract_location_features(analysis: Dict[str, Any]) -> LocationFeatures:
    """Map the vision reply onto the searchable feature set, filling documented defaults."""
    return LocationFeatures(
        primary_type=analysis.get("locationType") or UNKNOWN,
        climate=analysis.get("climate") or "temperate",
        setting=analysis.get("setting") or "mixed",
        architectural_style=analysis.get("architecturalStyle") or "modern",
        activities=_labels(analysis.get("activities") or []),
        cultural_markers=_labels(analysis.get("culturalMarkers") or []),
        landmarks=_labels(analysis.get("landmarks") or []),
        estimated_region=analysis.get("estimatedRegion") or None,
        time_of_year=analysis.get("timeOfYear") or None,
        development_level=analysis.get("developmentLevel") or "medium",
        search_keywords=generate_search_keywords(analysis),
    )


async def find_matching_destinations(ai: AIClient, features: LocationFeatures, limit: int = 8) -> List[Dict[str, Any]]:
    prompt = f"""
    Based on these visual features from a travel destination image, suggest 8-10 real
    travel destinations that match these characteristics:

    Primary Type: {features.primary_type}
    Climate: {features.climate}
    Setting: {features.setting}
    Architectural Style: {features.architectural_style}
    Activities: {', '.join(features.activities)}
    Cultural Markers: {', '.join(features.cultural_markers)}
    Estimated Region: {features.estimated_region or 'unknown'}
    Development Level: {features.development_level}

    Return a JSON object {{"destinations": [...]}} where each destination has: name, country,
    similarityScore (0.0-1.0), matchingFeatures, bestTimeToVisit, budgetLevel
    (budget/mid-range/luxury), mainAttractions, accessibility, uniqueSellingPoints.
    """
    try:
        reply_text = await ai.complete(prompt, temperature=0.4, max_tokens=2000)
    except ProviderError as e:
        logger.warning(f"Destination matching failed: {e}")
        return []

    reply = parse_json_reply(reply_text, DestinationMatchesReply, DestinationMatchesReply())
    ranked = sorted(reply.destinations, key=lambda d: (-d.similarityScore, d.name))
    return [d.model_dump() for d in ranked[:limit]]


async def _suggest_trip(ai: AIClient, destination: Dict[str, Any], analysis: Dict[str, Any], preferences: dict) -> Dict[str, Any]:
    prompt = f"""
    Create a detailed trip suggestion for {destination['name']}, {destination.get('country', UNKNOWN)}
    based on this image analysis.

    Image Analysis: {dump_for_prompt(analysis)}
    Destination Info: {dump_for_prompt(destination)}
    User Preferences: {dump_for_prompt(preferences)}

    Return a JSON object with: durationOptions, dailyItinerary, budgetBreakdown,
    accommodations, activities, transportation, localExperiences, photographySpots,
    seasonalConsiderations, packingList.
    """
    try:
        reply_text = await ai.complete(prompt, temperature=0.5, max_tokens=1200)
    except ProviderError as e:
        logger.warning(f"Trip suggestion for {destination['name']} failed: {e}")
        return {
            "destination": destination,
            "trip_plan": None,
            "image_match": False,
            "similarity": destination.get("similarityScore"),
            "error": str(e),
        }

    plan = parse_json_reply(reply_text, TripSuggestionReply, TripSuggestionReply())
    return {
        "destination": destination,
        "trip_plan": plan.model_dump(),
        "image_match": True,
        "similarity": destination.get("similarityScore"),
    }


async def generate_trip_suggestions(
    ai: AIClient,
    destinations: List[Dict[str, Any]],
    analysis: Dict[str, Any],
    preferences: Optional[dict] = None,
) -> List[Dict[str, Any]]:
    """One suggestion call per destination, all issued at once."""
    return list(await asyncio.gather(*(
        _suggest_trip(ai, destination, analysis, preferences or {}) for destination in destinations
    )))


async def discover_destinations_from_image(
    ai: AIClient,
    image: bytes,
    mime_type: str = "image/jpeg",
    preferences: Optional[dict] = None,
    fanout: int = 3,
    max_matches: int = 8,
) -> ImageResult:
    reply_text = await ai.analyze_image(image, IMAGE_ANALYSIS_PROMPT, mime_type=mime_type)
    analysis = parse_json_reply(reply_text, ImageAnalysisReply, ImageAnalysisReply()).model_dump()

    features = extract_location_features(analysis)
    matches = await find_matching_destinations(ai, features, limit=max_matches)
    suggestions = await generate_trip_suggestions(ai, matches[:fanout], analysis, preferences)

    return ImageResult(
        confidence=image_analysis_confidence(analysis),
        extracted_entities={
            "landmarks": features.landmarks,
            "search_keywords": features.search_keywords,
            "estimated_region": features.estimated_region,
        },
        raw_analysis=analysis,
        location_features=features,
        matching_destinations=matches,
        trip_suggestions=suggestions,
    )
