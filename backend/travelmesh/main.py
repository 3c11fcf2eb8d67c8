from fastapi import Depends, FastAPI, File, Form, Query, Request, UploadFile
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from travelmesh import errors
from travelmesh.config import settings
from travelmesh.core.ai import build_ai_client
from travelmesh.core.cache import cache
from travelmesh.models import DateRange, SearchRequest
from travelmesh.skills.aggregate_offers import ProviderAggregator
from travelmesh.skills.extract_entities import detect_travel_intent, extract_travel_entities
from travelmesh.skills.plan_multimodal import MediaInput, MultimodalPlanner
from travelmesh.skills.search_offers import build_default_registry, suggest_locations
from pydantic import BaseModel, ConfigDict, Field, ValidationError as SchemaError
from datetime import date
from typing import Any, Literal, Optional
import json
import logging

# Setup Logging
logging.basicConfig(level=settings.LOG_LEVEL)
logger = logging.getLogger(__name__)

app = FastAPI(title="TravelMesh", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origin_list,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

aggregator = ProviderAggregator(
    build_default_registry(),
    cache,
    timeout_seconds=settings.PROVIDER_TIMEOUT_SECONDS,
)
planner = MultimodalPlanner(
    build_ai_client(),
    cache,
    suggestion_fanout=settings.TRIP_SUGGESTION_FANOUT,
    max_matches=settings.MAX_MATCHING_DESTINATIONS,
)

def get_aggregator() -> ProviderAggregator:
    return aggregator

def get_planner() -> MultimodalPlanner:
    return planner

def envelope(data: Any = None, message: str = "OK", success: bool = True, error: Optional[str] = None) -> dict:
    body = {"success": success, "message": message, "data": data}
    if error:
        body["error"] = error
    return body

# --- Error handling ---

@app.exception_handler(errors.TravelMeshError)
async def travelmesh_error_handler(request: Request, exc: errors.TravelMeshError):
    if exc.status_code >= 500:
        logger.error(f"{request.url.path} failed: {exc.error_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content=envelope(jsonable_encoder(exc.details), exc.message, success=False, error=exc.error_code),
    )

@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    return JSONResponse(
        status_code=422,
        content=envelope(jsonable_encoder(exc.errors()), "Invalid request body", success=False, error="ValidationError"),
    )

@app.exception_handler(Exception)
async def unhandled_error_handler(request: Request, exc: Exception):
    logger.exception(f"Unhandled error on {request.url.path}")
    return JSONResponse(
        status_code=500,
        content=envelope(None, "Internal server error", success=False, error="InternalError"),
    )

# --- Search ---

class FlightSearchBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    origin: str
    destination: str
    departure_date: date = Field(alias="departureDate")
    return_date: Optional[date] = Field(None, alias="returnDate")
    adults: int = Field(1, ge=1, le=9)
    children: int = Field(0, ge=0, le=9)
    travel_class: str = Field("ECONOMY", alias="travelClass")
    currency: str = Field("USD", min_length=3, max_length=3)
    providers: Optional[list[str]] = None

    def to_search_request(self) -> SearchRequest:
        if not self.origin.strip() or not self.destination.strip():
            raise errors.ValidationError("Missing required fields: origin, destination")
        if self.return_date and self.return_date < self.departure_date:
            raise errors.ValidationError("returnDate must not be before departureDate")
        return SearchRequest(
            kind="flight",
            origin=self.origin.strip(),
            destination=self.destination.strip(),
            date_range=DateRange(start=self.departure_date, end=self.return_date),
            traveler_count=self.adults,
            children=self.children,
            travel_class=self.travel_class.upper(),
            currency=self.currency.upper(),
            providers=frozenset(settings.DEFAULT_FLIGHT_PROVIDERS if self.providers is None else self.providers),
        )

class HotelSearchBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    destination: str
    check_in_date: date = Field(alias="checkInDate")
    check_out_date: date = Field(alias="checkOutDate")
    adults: int = Field(1, ge=1, le=9)
    rooms: int = Field(1, ge=1, le=9)
    currency: str = Field("USD", min_length=3, max_length=3)
    providers: Optional[list[str]] = None

    def to_search_request(self) -> SearchRequest:
        if not self.destination.strip():
            raise errors.ValidationError("Missing required field: destination")
        if self.check_out_date <= self.check_in_date:
            raise errors.ValidationError("checkOutDate must be after checkInDate")
        return SearchRequest(
            kind="hotel",
            destination=self.destination.strip(),
            date_range=DateRange(start=self.check_in_date, end=self.check_out_date),
            traveler_count=self.adults,
            rooms=self.rooms,
            currency=self.currency.upper(),
            providers=frozenset(settings.DEFAULT_HOTEL_PROVIDERS if self.providers is None else self.providers),
        )

@app.post("/search/flights")
async def search_flights(body: FlightSearchBody, aggregator: ProviderAggregator = Depends(get_aggregator)):
    search = body.to_search_request()
    logger.info(f"Flight search: {search.origin}->{search.destination} on {search.date_range.start}")
    result = await aggregator.search(search)
    return envelope(result.model_dump(mode="json"), f"Found {len(result.offers)} flight offers")

@app.post("/search/hotels")
async def search_hotels(body: HotelSearchBody, aggregator: ProviderAggregator = Depends(get_aggregator)):
    search = body.to_search_request()
    logger.info(f"Hotel search: {search.destination} {search.date_range.start}..{search.date_range.end}")
    result = await aggregator.search(search)
    return envelope(result.model_dump(mode="json"), f"Found {len(result.offers)} hotel offers")

class PriceTrackBody(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    type: Literal["flight", "hotel"]
    search_params: dict = Field(alias="searchParams")

    def to_search_request(self) -> SearchRequest:
        body_model = FlightSearchBody if self.type == "flight" else HotelSearchBody
        try:
            body = body_model.model_validate(self.search_params)
        except SchemaError as e:
            raise errors.ValidationError("Invalid searchParams", details=e.errors(include_url=False, include_context=False))
        return body.to_search_request()

@app.post("/price-tracking/track")
async def track_prices(body: PriceTrackBody, aggregator: ProviderAggregator = Depends(get_aggregator)):
    track = await aggregator.track(body.to_search_request())
    return envelope(track.model_dump(mode="json"), "Price tracking initiated")

@app.get("/locations/search")
async def search_locations(query: str = Query("")):
    if len(query.strip()) < 2:
        raise errors.ValidationError("Query must be at least 2 characters long")
    suggestions = await suggest_locations(query.strip())
    return envelope(suggestions, f"Found {len(suggestions)} locations")

# --- Multimodal planning ---

async def read_upload(upload: UploadFile, kind: str) -> MediaInput:
    content_type = upload.content_type or ""
    if not content_type.startswith(f"{kind}/"):
        raise errors.ValidationError(f"Expected an {kind} file, got {content_type or 'unknown content type'}")
    data = await upload.read()
    if not data:
        raise errors.ValidationError(f"Uploaded {kind} file is empty")
    if len(data) > settings.max_upload_bytes:
        raise errors.ValidationError(f"Uploaded {kind} file exceeds {settings.MAX_UPLOAD_MB}MB")
    return MediaInput(data=data, filename=upload.filename or f"{kind}.bin", content_type=content_type)

def parse_preferences(raw: Optional[str]) -> dict:
    if not raw:
        return {}
    try:
        preferences = json.loads(raw)
    except json.JSONDecodeError as e:
        raise errors.ValidationError(f"preferences must be a JSON object: {e}")
    if not isinstance(preferences, dict):
        raise errors.ValidationError("preferences must be a JSON object")
    return preferences

@app.post("/multimodal/voice")
async def voice_trip_planning(
    audio: UploadFile = File(...),
    language: str = Form("en"),
    preferences: Optional[str] = Form(None),
    speak: bool = Form(True),
    voice: str = Form("alloy"),
    planner: MultimodalPlanner = Depends(get_planner),
):
    media = await read_upload(audio, "audio")
    prefs = parse_preferences(preferences)
    result = await planner.plan_by_voice(media, language, prefs, speak=speak, voice=voice)
    return envelope(result.model_dump(mode="json"), "Voice trip plan ready")

@app.post("/multimodal/image")
async def image_destination_discovery(
    image: UploadFile = File(...),
    preferences: Optional[str] = Form(None),
    planner: MultimodalPlanner = Depends(get_planner),
):
    media = await read_upload(image, "image")
    prefs = parse_preferences(preferences)
    result = await planner.plan_by_image(media, prefs)
    return envelope(result.model_dump(mode="json"), f"Found {len(result.matching_destinations)} matching destinations")

@app.post("/multimodal/combined")
async def multimodal_trip_planning(
    audio: Optional[UploadFile] = File(None),
    image: Optional[UploadFile] = File(None),
    language: str = Form("en"),
    preferences: Optional[str] = Form(None),
    speak: bool = Form(False),
    planner: MultimodalPlanner = Depends(get_planner),
):
    if audio is None and image is None:
        raise errors.ValidationError("No audio or image files provided")
    audio_media = await read_upload(audio, "audio") if audio is not None else None
    image_media = await read_upload(image, "image") if image is not None else None
    prefs = parse_preferences(preferences)

    result = await planner.plan_combined(audio_media, image_media, language, prefs, speak=speak)
    message = "Synthesized trip plan ready" if result.synthesized_plan else "Partial results, synthesis skipped"
    return envelope(result.model_dump(mode="json"), message)

@app.post("/multimodal/transcribe")
async def transcribe_audio(
    audio: UploadFile = File(...),
    language: str = Form("en"),
    planner: MultimodalPlanner = Depends(get_planner),
):
    media = await read_upload(audio, "audio")
    result = await planner.transcribe(media, language)
    return envelope(result.model_dump(mode="json"), "Transcription ready")

class EntitiesBody(BaseModel):
    text: str = Field(min_length=1)

@app.post("/multimodal/entities")
async def extract_entities(body: EntitiesBody):
    return envelope({
        "entities": extract_travel_entities(body.text).model_dump(),
        "intent": detect_travel_intent(body.text).model_dump(),
    })

class SpeechBody(BaseModel):
    text: str = Field(min_length=1, max_length=4096)
    voice: str = "alloy"
    speed: float = Field(1.0, ge=0.25, le=4.0)

@app.post("/multimodal/speech")
async def generate_speech(body: SpeechBody, planner: MultimodalPlanner = Depends(get_planner)):
    clip = await planner.speak(body.text, voice=body.voice, speed=body.speed)
    return envelope(clip.model_dump(), "Speech generated")

@app.get("/health")
def health_check():
    return {"status": "ok", "env": settings.ENV}
