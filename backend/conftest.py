import asyncio
import json
from datetime import date

import pytest

from travelmesh.core.cache import SimpleCache
from travelmesh.errors import ProviderError
from travelmesh.models import DateRange, SearchRequest
from travelmesh.skills import normalize_offers
from travelmesh.skills.aggregate_offers import ProviderRegistry


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class StubProvider:
    """Stands in for a provider fetch; counts calls and can fail or stall."""

    def __init__(self, payload=None, error: Exception = None, delay: float = 0.0):
        self.payload = payload if payload is not None else []
        self.error = error
        self.delay = delay
        self.calls = 0

    async def __call__(self, request):
        self.calls += 1
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error:
            raise self.error
        return self.payload


def amadeus_hotels(*prices, prefix: str = "OFF"):
    return [
        {
            "hotel": {"hotelId": f"H{i}", "name": f"Hotel {i}", "rating": str(3 + i % 3)},
            "offers": [{
                "id": f"{prefix}{i}",
                "checkInDate": "2025-06-01",
                "checkOutDate": "2025-06-05",
                "price": {"total": str(price), "currency": "EUR"},
            }],
        }
        for i, price in enumerate(prices)
    ]


def amadeus_flight(offer_id: str, price: float, duration: str = "PT7H25M", segments: int = 1):
    legs = [
        {
            "departure": {"iataCode": "JFK" if n == 0 else f"X{n}", "at": f"2025-06-01T0{n}:00:00"},
            "arrival": {"iataCode": "CDG" if n == segments - 1 else f"X{n + 1}", "at": f"2025-06-01T1{n}:00:00"},
            "carrierCode": "AF",
            "number": f"{100 + n}",
        }
        for n in range(segments)
    ]
    return {
        "id": offer_id,
        "price": {"total": str(price), "currency": "USD"},
        "itineraries": [{"duration": duration, "segments": legs}],
        "validatingAirlineCodes": ["AF"],
    }


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def memory_cache(clock):
    return SimpleCache(ttl_seconds=60, max_entries=32, clock=clock)


@pytest.fixture
def hotel_request():
    def build(providers=("amadeus", "skyscanner"), destination="Paris"):
        return SearchRequest(
            kind="hotel",
            destination=destination,
            date_range=DateRange(start=date(2025, 6, 1), end=date(2025, 6, 5)),
            traveler_count=2,
            rooms=1,
            providers=frozenset(providers),
        )
    return build


@pytest.fixture
def paris_registry():
    """amadeus answers with three hotels, skyscanner never answers in time."""
    amadeus = StubProvider(amadeus_hotels(120, 150, 90))
    skyscanner = StubProvider(amadeus_hotels(80), delay=1.0)
    registry = ProviderRegistry()
    registry.register("hotel", "amadeus", amadeus, normalize_offers.normalize_amadeus_hotel)
    registry.register("hotel", "skyscanner", skyscanner, normalize_offers.normalize_amadeus_hotel)
    return registry, amadeus, skyscanner


TOKYO_REQUEST = "I want to plan a trip to Tokyo next summer with a budget of $3000"

IMAGE_ANALYSIS = {
    "locationType": "beach",
    "climate": "tropical",
    "setting": "coastal",
    "architecturalStyle": "traditional",
    "activities": ["surfing", {"name": "snorkeling"}],
    "culturalMarkers": ["temples"],
    "landmarks": ["rice terraces"],
    "estimatedRegion": "Southeast Asia",
}

DESTINATIONS = {
    "destinations": [
        {"name": "Bali", "country": "Indonesia", "similarityScore": 0.92},
        {"name": "Phuket", "country": "Thailand", "similarityScore": 0.88},
        {"name": "Boracay", "country": "Philippines", "similarityScore": 0.95},
        {"name": "Langkawi", "country": "Malaysia", "similarityScore": 0.7},
    ]
}


class FakeAI:
    """
    Scripted AIClient. Replies are chosen from the prompt text. Names in `fail` make the
    matching call raise ProviderError; `delays` stalls a call by name.
    """

    def __init__(self):
        self.fail = set()
        self.delays = {}
        self.calls = []
        self.transcription = {
            "text": TOKYO_REQUEST,
            "language": "english",
            "duration": 4.2,
            "segments": [{"avg_logprob": -0.5}],
        }
        self.image_analysis = json.dumps(IMAGE_ANALYSIS)
        self.voice_plan = json.dumps({
            "interpretedRequest": "Summer trip to Tokyo",
            "suggestedDestinations": ["Tokyo"],
            "voiceSummary": "Tokyo in summer fits your budget.",
        })
        self.destinations = "```json\n" + json.dumps(DESTINATIONS) + "\n```"
        self.suggestion = json.dumps({"durationOptions": ["5 days"]})
        self.synthesis = json.dumps({"summary": "Beach days then Tokyo", "recommendedDestination": "Bali"})

    async def _record(self, name: str):
        self.calls.append(name)
        if self.delays.get(name):
            await asyncio.sleep(self.delays[name])
        if name in self.fail:
            raise ProviderError("openai", f"{name} failed")

    async def transcribe(self, audio, filename="audio.webm", language="en"):
        await self._record("transcribe")
        return dict(self.transcription)

    async def synthesize_speech(self, text, voice="alloy", speed=1.0):
        await self._record("speech")
        return b"mp3-bytes"

    async def analyze_image(self, image, prompt, mime_type="image/jpeg", max_tokens=1500):
        await self._record("vision")
        return self.image_analysis

    async def complete(self, prompt, **kwargs):
        if "voice-controlled travel assistant" in prompt:
            await self._record("voice_plan")
            return self.voice_plan
        if "suggest 8-10 real" in prompt:
            await self._record("matching")
            return self.destinations
        if "Create a detailed trip suggestion" in prompt:
            await self._record("suggestion")
            return self.suggestion
        if "Synthesize these voice and image" in prompt:
            await self._record("synthesis")
            return self.synthesis
        raise AssertionError(f"unexpected prompt: {prompt[:80]}")


@pytest.fixture
def fake_ai():
    return FakeAI()
