from amadeus import Client, Location, ResponseError
from travelmesh.config import settings
from travelmesh.core.cache import SimpleCache
from travelmesh.errors import ProviderError
from travelmesh.models import SearchRequest
from travelmesh.skills import normalize_offers
from travelmesh.skills.aggregate_offers import ProviderRegistry
from serpapi import GoogleSearch
import asyncio
import httpx
import logging

logger = logging.getLogger(__name__)

# Amadeus hotel offers endpoint accepts a bounded list of hotel ids
MAX_HOTEL_IDS = 20

_amadeus: Client | None = None

def get_amadeus() -> Client:
    """Lazily build the Amadeus client; a missing key is a provider failure, not a crash."""
    global _amadeus
    if _amadeus is None:
        if not (settings.AMADEUS_CLIENT_ID and settings.AMADEUS_CLIENT_SECRET):
            raise ProviderError("amadeus", "AMADEUS_CLIENT_ID / AMADEUS_CLIENT_SECRET not configured")
        _amadeus = Client(
            client_id=settings.AMADEUS_CLIENT_ID,
            client_secret=settings.AMADEUS_CLIENT_SECRET,
            hostname=settings.AMADEUS_HOSTNAME
        )
    return _amadeus

# Common City Code Mapping (Simple Fallback)
CITY_MAP = {
    # Asia
    "TOKYO": "TYO", "HANEDA": "HND", "NARITA": "NRT", "OSAKA": "OSA", "KYOTO": "OSA",
    "SEOUL": "SEL", "SINGAPORE": "SIN", "BANGKOK": "BKK", "HONG KONG": "HKG", "BALI": "DPS",
    # Europe
    "LONDON": "LON", "PARIS": "PAR", "ROME": "ROM", "BARCELONA": "BCN", "MADRID": "MAD",
    "AMSTERDAM": "AMS", "BERLIN": "BER", "LISBON": "LIS", "ATHENS": "ATH",
    # Americas
    "NEW YORK": "NYC", "LOS ANGELES": "LAX", "SAN FRANCISCO": "SFO", "CHICAGO": "CHI",
    "MIAMI": "MIA", "WASHINGTON DC": "WAS", "TORONTO": "YTO", "MEXICO CITY": "MEX",
    "CANCUN": "CUN", "HONOLULU": "HNL",
    # Other
    "DUBAI": "DXB", "SYDNEY": "SYD", "CAPE TOWN": "CPT",
}

# Runtime cache for looked up cities
DYNAMIC_CITY_CACHE = SimpleCache(ttl_seconds=24 * 60 * 60, max_entries=1024)

async def resolve_code(input_str: str | None) -> str:
    """
    Convert user input to IATA Code.
    1. Check Static Map
    2. Check Cache
    3. Call Amadeus Location Search
    """
    if not input_str:
        return ""

    clean_str = input_str.strip().upper()

    # 1. Static Map (three-letter input is assumed to already be a code)
    if clean_str in CITY_MAP:
        return CITY_MAP[clean_str]
    if len(clean_str) == 3 and clean_str.isalpha():
        return clean_str

    # 2. Dynamic Cache
    cached = DYNAMIC_CITY_CACHE.get(clean_str)
    if cached:
        return cached

    # 3. Amadeus Location Search (Fallback)
    try:
        client = get_amadeus()
        logger.info(f"Resolving unknown city code via API: {clean_str}")
        response = await asyncio.to_thread(
            client.reference_data.locations.get,
            keyword=clean_str,
            subType=",".join([Location.CITY, Location.AIRPORT])
        )
        if response.data:
            found_code = response.data[0]['iataCode']
            logger.info(f"Resolved {clean_str} -> {found_code}")
            DYNAMIC_CITY_CACHE.set(clean_str, found_code)
            return found_code
    except (ProviderError, ResponseError) as e:
        logger.warning(f"Failed to resolve city via API: {e}")

    # Fallback: Assume it is a code
    return clean_str

# --- Amadeus ---

async def fetch_amadeus_flights(request: SearchRequest) -> list[dict]:
    client = get_amadeus()
    params = {
        "originLocationCode": await resolve_code(request.origin),
        "destinationLocationCode": await resolve_code(request.destination),
        "departureDate": request.date_range.start.isoformat(),
        "adults": request.traveler_count,
        "travelClass": request.travel_class,
        "currencyCode": request.currency,
        "max": 50,
    }
    if request.children:
        params["children"] = request.children
    if request.date_range.end:
        params["returnDate"] = request.date_range.end.isoformat()

    try:
        response = await asyncio.to_thread(client.shopping.flight_offers_search.get, **params)
    except ResponseError as e:
        raise ProviderError("amadeus", f"flight search failed ({e.code})") from e
    offers = list(response.data or [])
    logger.info(f"[amadeus] found {len(offers)} flight offers")
    return offers

async def fetch_amadeus_hotels(request: SearchRequest) -> list[dict]:
    client = get_amadeus()
    city_code = await resolve_code(request.destination)
    try:
        hotels = await asyncio.to_thread(client.reference_data.locations.hotels.by_city.get, cityCode=city_code)
        hotel_ids = [h['hotelId'] for h in (hotels.data or [])[:MAX_HOTEL_IDS] if h.get('hotelId')]
        if not hotel_ids:
            logger.warning(f"[amadeus] no hotels listed for {city_code}")
            return []
        response = await asyncio.to_thread(
            client.shopping.hotel_offers_search.get,
            hotelIds=",".join(hotel_ids),
            adults=request.traveler_count,
            checkInDate=request.date_range.start.isoformat(),
            checkOutDate=request.date_range.end.isoformat(),
            roomQuantity=request.rooms,
            currency=request.currency,
        )
    except ResponseError as e:
        raise ProviderError("amadeus", f"hotel search failed ({e.code})") from e
    offers = list(response.data or [])
    logger.info(f"[amadeus] found {len(offers)} hotel offers")
    return offers

# --- SerpApi (Google Flights / Google Hotels) ---

def _serpapi_search(params: dict) -> dict:
    if not settings.SERPAPI_KEY:
        raise ProviderError("serpapi", "SERPAPI_KEY not configured")
    data = GoogleSearch({**params, "api_key": settings.SERPAPI_KEY}).get_dict()
    if "error" in data:
        raise ProviderError("serpapi", str(data["error"]))
    return data

async def fetch_serpapi_flights(request: SearchRequest) -> list[dict]:
    params = {
        "engine": "google_flights",
        "departure_id": await resolve_code(request.origin),
        "arrival_id": await resolve_code(request.destination),
        "outbound_date": request.date_range.start.isoformat(),
        "adults": request.traveler_count,
        "currency": request.currency,
        "hl": "en",
        "type": "1" if request.date_range.end else "2" # 1=RoundTrip, 2=OneWay
    }
    if request.date_range.end:
        params["return_date"] = request.date_range.end.isoformat()
    if request.children:
        params["children"] = request.children

    data = await asyncio.to_thread(_serpapi_search, params)

    # Google Flights API structure usually has 'best_flights' and 'other_flights'
    flights = [*data.get("best_flights", []), *data.get("other_flights", [])]
    for flight in flights:
        flight['_currency'] = request.currency
    logger.info(f"[serpapi] found {len(flights)} flight offers")
    return flights

async def fetch_serpapi_hotels(request: SearchRequest) -> list[dict]:
    params = {
        "engine": "google_hotels",
        "q": f"{request.destination} hotels",
        "check_in_date": request.date_range.start.isoformat(),
        "check_out_date": request.date_range.end.isoformat(),
        "adults": request.traveler_count,
        "currency": request.currency,
        "hl": "en",
    }
    data = await asyncio.to_thread(_serpapi_search, params)

    properties = data.get("properties", [])
    for prop in properties:
        prop['_currency'] = request.currency
        prop['_check_in'] = params["check_in_date"]
        prop['_check_out'] = params["check_out_date"]
    logger.info(f"[serpapi] found {len(properties)} hotel offers")
    return properties

# --- Skyscanner ---

async def _skyscanner_get(path: str, params: dict | None = None) -> dict:
    if not settings.SKYSCANNER_API_KEY:
        raise ProviderError("skyscanner", "SKYSCANNER_API_KEY not configured")
    async with httpx.AsyncClient(base_url=settings.SKYSCANNER_BASE_URL, timeout=settings.PROVIDER_TIMEOUT_SECONDS) as client:
        try:
            resp = await client.get(path, params=params, headers={"x-api-key": settings.SKYSCANNER_API_KEY})
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise ProviderError("skyscanner", "rate limited") from e
            raise ProviderError("skyscanner", f"HTTP {e.response.status_code}") from e
        except httpx.RequestError as e:
            raise ProviderError("skyscanner", f"network error: {e}") from e
        return resp.json()

def flatten_skyscanner_quotes(data: dict, currency: str) -> list[dict]:
    """Resolve place and carrier ids so every quote is self-contained."""
    places = {p.get("PlaceId"): p for p in data.get("Places", [])}
    carriers = {c.get("CarrierId"): c.get("Name") for c in data.get("Carriers", [])}

    def leg(raw_leg: dict | None) -> dict | None:
        if not raw_leg:
            return None
        return {
            "DepartureDate": raw_leg.get("DepartureDate"),
            "origin": places.get(raw_leg.get("OriginId"), {}),
            "destination": places.get(raw_leg.get("DestinationId"), {}),
            "carriers": [carriers[c] for c in raw_leg.get("CarrierIds", []) if carriers.get(c)],
        }

    quotes = []
    for quote in data.get("Quotes", []):
        quotes.append({
            "QuoteId": quote.get("QuoteId"),
            "MinPrice": quote.get("MinPrice"),
            "Direct": quote.get("Direct"),
            "QuoteDateTime": quote.get("QuoteDateTime"),
            "OutboundLeg": leg(quote.get("OutboundLeg")),
            "InboundLeg": leg(quote.get("InboundLeg")),
            "_currency": currency,
        })
    return quotes

async def fetch_skyscanner_flights(request: SearchRequest) -> list[dict]:
    origin = await resolve_code(request.origin)
    destination = await resolve_code(request.destination)
    path = (
        f"/apiservices/browsequotes/v1.0/{settings.SKYSCANNER_MARKET}/{request.currency}/"
        f"{settings.SKYSCANNER_LOCALE}/{origin}/{destination}/{request.date_range.start.isoformat()}"
    )
    params = {"inboundpartialdate": request.date_range.end.isoformat()} if request.date_range.end else None
    data = await _skyscanner_get(path, params)
    quotes = flatten_skyscanner_quotes(data, request.currency)
    logger.info(f"[skyscanner] found {len(quotes)} flight quotes")
    return quotes

# --- Location suggestions ---

async def _amadeus_cities(query: str) -> list[dict]:
    client = get_amadeus()
    response = await asyncio.to_thread(client.reference_data.locations.get, keyword=query.upper(), subType=Location.CITY)
    return [
        {
            "id": city.get("iataCode"),
            "name": city.get("name"),
            "type": city.get("subType"),
            "country": (city.get("address") or {}).get("countryName"),
            "provider": "amadeus",
        }
        for city in (response.data or [])
    ]

async def _skyscanner_places(query: str) -> list[dict]:
    data = await _skyscanner_get(
        f"/apiservices/autosuggest/v1.0/{settings.SKYSCANNER_MARKET}/USD/{settings.SKYSCANNER_LOCALE}/",
        {"query": query}
    )
    return [
        {
            "id": place.get("PlaceId"),
            "name": place.get("PlaceName"),
            "type": place.get("PlaceType", "unknown"),
            "country": place.get("CountryName"),
            "provider": "skyscanner",
        }
        for place in data.get("Places", [])
    ]

async def suggest_locations(query: str) -> list[dict]:
    """Merge city suggestions from both providers, first occurrence of a name+country wins."""
    results = await asyncio.gather(_amadeus_cities(query), _skyscanner_places(query), return_exceptions=True)

    suggestions = []
    seen = set()
    for provider, result in zip(("amadeus", "skyscanner"), results):
        if isinstance(result, Exception):
            logger.warning(f"[{provider}] location suggestions failed: {result}")
            continue
        for item in result:
            key = ((item.get("name") or "").lower(), item.get("country"))
            if key in seen:
                continue
            seen.add(key)
            suggestions.append(item)
    return suggestions

def build_default_registry() -> ProviderRegistry:
    registry = ProviderRegistry()
    registry.register("flight", "amadeus", fetch_amadeus_flights, normalize_offers.normalize_amadeus_flight)
    registry.register("flight", "serpapi", fetch_serpapi_flights, normalize_offers.normalize_serpapi_flight)
    registry.register("flight", "skyscanner", fetch_skyscanner_flights, normalize_offers.normalize_skyscanner_flight)
    registry.register("hotel", "amadeus", fetch_amadeus_hotels, normalize_offers.normalize_amadeus_hotel)
    registry.register("hotel", "serpapi", fetch_serpapi_hotels, normalize_offers.normalize_serpapi_hotel)
    return registry
