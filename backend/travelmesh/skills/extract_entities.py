"""
Local travel entity and intent extraction over free text.

Pure string processing: the same input always yields the same output, in
first-occurrence order with duplicates removed.
"""
import re
from typing import Iterable, List

from travelmesh.core.confidence import intent_confidence
from travelmesh.models import TravelEntities, TravelIntent

DESTINATION_PATTERNS = [
    # "trip to Tokyo", "fly to New York", "visit Cape Town"
    re.compile(r"\b(?:go to|traveling to|travelling to|trip to|fly to|flying to|visit|visiting|to)\s+"
               r"([A-Z][a-zA-Z]+(?:\s+[A-Z][a-zA-Z]+)*)"),
    # "Paris vacation", "Costa Rica trip"
    re.compile(r"\b([A-Z][a-z]+(?:\s+[A-Z][a-z]+)*)\s+(?:vacation|trip|travel|visit)\b"),
]

MONTHS = (
    "January|February|March|April|May|June|July|August|September|October|November|December"
)

DATE_PATTERNS = [
    re.compile(r"\b(?:next|this)\s+(?:week|month|year|weekend|summer|winter|spring|fall|autumn)\b", re.IGNORECASE),
    re.compile(rf"\b(?:{MONTHS})(?:\s+\d{{1,2}}(?:st|nd|rd|th)?)?\b"),
    re.compile(r"\b\d{1,2}/\d{1,2}/\d{4}\b"),
    re.compile(r"\b\d{1,2}-\d{1,2}-\d{4}\b"),
    re.compile(r"\b\d{4}-\d{2}-\d{2}\b"),
]

BUDGET_PATTERNS = [
    re.compile(r"[$€£¥]\s?\d+(?:,\d{3})*(?:\.\d{2})?"),
    re.compile(r"\bbudget\s+of\s+\d+(?:,\d{3})*", re.IGNORECASE),
    re.compile(r"\bspend\s+(?:about\s+|around\s+)?\d+(?:,\d{3})*", re.IGNORECASE),
]

ACTIVITY_KEYWORDS = [
    "hiking", "swimming", "skiing", "surfing", "shopping", "sightseeing",
    "museums", "restaurants", "nightlife", "beaches", "mountains",
    "adventure", "relaxation", "cultural", "historical", "nature",
]

ACCOMMODATION_KEYWORDS = [
    "hotel", "resort", "airbnb", "hostel", "bed and breakfast",
    "camping", "villa", "apartment", "luxury", "budget",
]

TRANSPORTATION_KEYWORDS = [
    "flight", "plane", "car", "train", "bus", "cruise", "driving", "flying",
]

TRAVELER_PATTERNS = [
    re.compile(r"\b(\d+)\s+people\b", re.IGNORECASE),
    re.compile(r"\bparty\s+of\s+(\d+)\b", re.IGNORECASE),
    re.compile(r"\b(solo|alone|by myself)\b", re.IGNORECASE),
    re.compile(r"\b(couple|two people|my partner and I)\b", re.IGNORECASE),
    re.compile(r"\b(family|kids|children)\b", re.IGNORECASE),
]

# Checked in order; the first hit is the primary intent
INTENT_PATTERNS = {
    "plan_trip": re.compile(r"plan.*trip|planning.*vacation|want to travel|travel plans", re.IGNORECASE),
    "search_destination": re.compile(r"where.*go|destination|recommend.*place|suggest.*location", re.IGNORECASE),
    "book_flight": re.compile(r"book.*flight|find.*flight|flight.*booking|plane.*ticket", re.IGNORECASE),
    "find_hotel": re.compile(r"find.*hotel|book.*hotel|accommodation|place to stay", re.IGNORECASE),
    "get_weather": re.compile(r"weather|temperature|climate|forecast", re.IGNORECASE),
    "budget_planning": re.compile(r"budget|cost|price|how much|expensive|cheap", re.IGNORECASE),
    "activity_search": re.compile(r"activity|activities|things to do|attractions|entertainment", re.IGNORECASE),
    "travel_advice": re.compile(r"advice|tips|recommend|suggest|help|guidance", re.IGNORECASE),
}


def _unique(values: Iterable[str]) -> List[str]:
    seen = set()
    ordered = []
    for value in values:
        if value not in seen:
            seen.add(value)
            ordered.append(value)
    return ordered


def _matches(patterns: List[re.Pattern], text: str, group: int = 0) -> List[str]:
    # Sort by position so the output follows the sentence, not the pattern table
    hits = []
    for pattern in patterns:
        for match in pattern.finditer(text):
            value = match.group(group) if group <= (pattern.groups or 0) else match.group(0)
            hits.append((match.start(), value.strip()))
    return _unique(value for _, value in sorted(hits, key=lambda h: h[0]))


def _keywords(vocabulary: List[str], text: str) -> List[str]:
    lowered = text.lower()
    return [word for word in vocabulary if word in lowered]


def extract_travel_entities(text: str) -> TravelEntities:
    text = text or ""
    destinations = [d for d in _matches(DESTINATION_PATTERNS, text, group=1) if len(d) > 2]
    return TravelEntities(
        destinations=destinations,
        dates=_matches(DATE_PATTERNS, text),
        budgets=_matches(BUDGET_PATTERNS, text),
        activities=_keywords(ACTIVITY_KEYWORDS, text),
        accommodations=_keywords(ACCOMMODATION_KEYWORDS, text),
        transportation=_keywords(TRANSPORTATION_KEYWORDS, text),
        travelers=_matches(TRAVELER_PATTERNS, text, group=1),
    )


def detect_travel_intent(text: str) -> TravelIntent:
    detected = [name for name, pattern in INTENT_PATTERNS.items() if pattern.search(text or "")]
    return TravelIntent(
        primary=detected[0] if detected else "general",
        all=detected,
        confidence=intent_confidence(detected),
    )
