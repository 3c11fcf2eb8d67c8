from pydantic import BaseModel, ConfigDict, Field
from typing import Annotated, Any, Dict, List, Literal, Optional, Union
from datetime import date, datetime

# Placeholder for optional text fields a provider did not send
UNKNOWN = "unknown"

OfferKind = Literal["flight", "hotel"]

# --- Search side ---

class DateRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    start: date
    end: Optional[date] = None

class SearchRequest(BaseModel):
    """Canonical, immutable search built from one HTTP request."""
    model_config = ConfigDict(frozen=True)

    kind: OfferKind
    origin: Optional[str] = None
    destination: str
    date_range: DateRange
    traveler_count: int = 1
    children: int = 0
    rooms: int = 1
    travel_class: str = "ECONOMY"
    currency: str = "USD"
    providers: frozenset[str]

class Price(BaseModel):
    amount: float = Field(ge=0)
    currency: str

class NormalizedOffer(BaseModel):
    id: str  # "<provider>:<provider offer id>", unique in a merged result
    provider_id: str
    kind: OfferKind
    price: Price
    metadata: Dict[str, Any] = {}

    # Internal scoring fields
    score: Optional[float] = 0.0
    score_breakdown: Optional[dict] = {}

class FlightOffer(NormalizedOffer):
    kind: Literal["flight"] = "flight"
    origin: str = UNKNOWN
    destination: str = UNKNOWN
    departure_time: str = UNKNOWN
    arrival_time: str = UNKNOWN
    duration_minutes: Optional[int] = None
    stops: Optional[int] = None
    carrier: str = UNKNOWN
    flight_number: str = UNKNOWN
    cabin_class: str = UNKNOWN
    return_departure_time: str = UNKNOWN
    seats_available: Optional[int] = None

class HotelOffer(NormalizedOffer):
    kind: Literal["hotel"] = "hotel"
    name: str = UNKNOWN
    hotel_id: str = UNKNOWN
    check_in: str = UNKNOWN
    check_out: str = UNKNOWN
    rating: Optional[float] = None
    amenities: List[str] = []
    room_type: str = UNKNOWN
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    price_per_night: Optional[float] = None

Offer = Annotated[Union[FlightOffer, HotelOffer], Field(discriminator="kind")]

class ProviderResult(BaseModel):
    provider_id: str
    succeeded: bool
    raw_payload: Any = None
    error: Optional[str] = None
    latency_ms: int = 0

class ProviderStatus(BaseModel):
    provider_id: str
    succeeded: bool
    error: Optional[str] = None
    offer_count: int = 0
    dropped_count: int = 0

class PriceRange(BaseModel):
    min: float = 0.0
    max: float = 0.0
    average: float = 0.0
    median: float = 0.0

class NumericRange(BaseModel):
    min: float = 0.0
    max: float = 0.0
    average: float = 0.0

class ProviderComparison(BaseModel):
    total: int = 0
    price_range: PriceRange = PriceRange()

class Comparison(BaseModel):
    price_range: PriceRange = PriceRange()
    provider_counts: Dict[str, int] = {}
    provider_comparison: Dict[str, ProviderComparison] = {}
    total_options: int = 0
    duration_range: Optional[NumericRange] = None  # flights
    direct_flights: Optional[int] = None  # flights
    rating_range: Optional[NumericRange] = None  # hotels

class Recommendations(BaseModel):
    cheapest: Optional[Offer] = None
    fastest: Optional[Offer] = None
    best_value: Optional[Offer] = None
    highest_rated: Optional[Offer] = None

class AggregateResult(BaseModel):
    kind: OfferKind
    offers: List[Offer]
    comparison: Comparison
    recommendations: Recommendations
    providers: List[ProviderStatus]

class PriceTrack(BaseModel):
    """A tracked search: the latest result plus where it came from."""
    result: AggregateResult
    cached: bool
    last_update: datetime

# --- Multimodal side ---

class TravelEntities(BaseModel):
    destinations: List[str] = []
    dates: List[str] = []
    budgets: List[str] = []
    activities: List[str] = []
    accommodations: List[str] = []
    transportation: List[str] = []
    travelers: List[str] = []

class TravelIntent(BaseModel):
    primary: str = "general"
    all: List[str] = []
    confidence: float = 0.3

class LocationFeatures(BaseModel):
    primary_type: str = UNKNOWN
    climate: str = "temperate"
    setting: str = "mixed"
    architectural_style: str = "modern"
    activities: List[str] = []
    cultural_markers: List[str] = []
    landmarks: List[str] = []
    estimated_region: Optional[str] = None
    time_of_year: Optional[str] = None
    development_level: str = "medium"
    search_keywords: List[str] = []

class TranscriptionResult(BaseModel):
    text: str
    language: Optional[str] = None
    duration_seconds: Optional[float] = None
    confidence: float
    entities: TravelEntities
    intent: TravelIntent
    segments: List[Dict[str, Any]] = []

class SpeechClip(BaseModel):
    audio_base64: str
    mime_type: str = "audio/mpeg"
    voice: str
    speed: float
    estimated_duration_seconds: float

class ModalityResult(BaseModel):
    """Outcome of one modality branch. Never mutated after creation."""
    model_config = ConfigDict(frozen=True)

    modality: Literal["voice", "image"]
    confidence: float = Field(ge=0.0, le=1.0)
    extracted_entities: Dict[str, Any] = {}
    raw_analysis: Dict[str, Any] = {}

class VoiceResult(ModalityResult):
    modality: Literal["voice", "image"] = "voice"
    transcription: str
    language: Optional[str] = None
    duration_seconds: Optional[float] = None
    intent: TravelIntent
    plan: Optional[Dict[str, Any]] = None
    speech: Optional[SpeechClip] = None

class ImageResult(ModalityResult):
    modality: Literal["voice", "image"] = "image"
    location_features: LocationFeatures
    matching_destinations: List[Dict[str, Any]] = []
    trip_suggestions: List[Dict[str, Any]] = []

class SynthesizedPlan(BaseModel):
    plan: Dict[str, Any]
    voice_confidence: float
    image_confidence: float
    confidence: float

class CombinedResult(BaseModel):
    voice_result: Optional[VoiceResult] = None
    image_result: Optional[ImageResult] = None
    synthesized_plan: Optional[SynthesizedPlan] = None
    synthesis_skipped: bool = False
    skipped_reason: Optional[str] = None
    confidence: float = 0.0
    errors: Dict[str, str] = {}
