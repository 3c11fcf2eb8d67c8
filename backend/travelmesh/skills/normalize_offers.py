from travelmesh.errors import NormalizationError
from travelmesh.models import UNKNOWN, FlightOffer, HotelOffer, Price
from datetime import date
from typing import Any, Optional
import re

def parse_duration(value: Any) -> Optional[int]:
    """Parse ISO 8601 duration (PT1H30M) or a plain minute count to minutes."""
    if value is None or value == "" or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return int(value)
    # Amadeus uses PTxxHxxM format
    match = re.fullmatch(r'P(?:(\d+)D)?T?(?:(\d+)H)?(?:(\d+)M)?', str(value))
    if not match or not any(match.groups()):
        return None
    d = int(match.group(1) or 0)
    h = int(match.group(2) or 0)
    m = int(match.group(3) or 0)
    return d * 1440 + h * 60 + m

def _dict(value: Any) -> dict:
    # Providers occasionally send null or a bare string where an object belongs
    return value if isinstance(value, dict) else {}

def _list(value: Any) -> list:
    return value if isinstance(value, list) else []

def _to_float(value: Any) -> Optional[float]:
    if isinstance(value, bool):
        return None
    try:
        return float(value)
    except (TypeError, ValueError):
        return None

def _to_int(value: Any) -> Optional[int]:
    parsed = _to_float(value)
    return int(parsed) if parsed is not None else None

def _text(value: Any) -> str:
    if value is None or value == "":
        return UNKNOWN
    return str(value)

def _texts(value: Any) -> list[str]:
    return [str(v) for v in _list(value) if v is not None and v != ""]

def _require_id(raw: dict, *keys: str) -> str:
    for key in keys:
        if raw.get(key):
            return str(raw[key])
    raise NormalizationError(f"missing offer id (looked for {', '.join(keys)})")

def _require_price(amount: Any, currency: Any) -> Price:
    parsed = _to_float(amount)
    if parsed is None:
        raise NormalizationError(f"missing or unparseable price: {amount!r}")
    if parsed < 0:
        raise NormalizationError(f"negative price: {parsed}")
    return Price(amount=parsed, currency=_text(currency))

def _nights(check_in: str, check_out: str) -> Optional[int]:
    try:
        nights = (date.fromisoformat(check_out) - date.fromisoformat(check_in)).days
    except (TypeError, ValueError):
        return None
    return nights if nights > 0 else None

def extract_cabin(raw: dict) -> str:
    """Safely extract cabin class."""
    tps = _list(raw.get('travelerPricings'))
    if not tps:
        return UNKNOWN
    fds = _list(_dict(tps[0]).get('fareDetailsBySegment'))
    if not fds:
        return UNKNOWN
    return _text(_dict(fds[0]).get('cabin'))

# --- Flights ---

def normalize_amadeus_flight(raw: dict) -> FlightOffer:
    raw = _dict(raw)
    offer_id = _require_id(raw, 'id')
    price_block = _dict(raw.get('price'))
    price = _require_price(price_block.get('total'), price_block.get('currency'))

    itineraries = [_dict(i) for i in _list(raw.get('itineraries'))] or [{}]
    outbound = itineraries[0]
    segments = [_dict(s) for s in _list(outbound.get('segments'))]
    first = segments[0] if segments else {}
    last = segments[-1] if segments else {}
    inbound = itineraries[1] if len(itineraries) > 1 else {}
    inbound_first = _dict((_list(inbound.get('segments')) or [None])[0])

    departure = _dict(first.get('departure'))
    arrival = _dict(last.get('arrival'))
    carriers = _list(raw.get('validatingAirlineCodes'))
    return FlightOffer(
        id=offer_id,
        provider_id='amadeus',
        price=price,
        origin=_text(departure.get('iataCode')),
        destination=_text(arrival.get('iataCode')),
        departure_time=_text(departure.get('at')),
        arrival_time=_text(arrival.get('at')),
        duration_minutes=parse_duration(outbound.get('duration')),
        stops=len(segments) - 1 if segments else None,
        carrier=_text(carriers[0] if carriers else first.get('carrierCode')),
        flight_number=_text(f"{first['carrierCode']}{first['number']}" if first.get('carrierCode') and first.get('number') else None),
        cabin_class=extract_cabin(raw),
        return_departure_time=_text(_dict(inbound_first.get('departure')).get('at')),
        seats_available=_to_int(raw.get('numberOfBookableSeats')),
        metadata={
            'last_ticketing_date': _text(raw.get('lastTicketingDate')),
            'aircraft': _text(_dict(first.get('aircraft')).get('code')),
            'terminal': _text(departure.get('terminal')),
        },
    )

def normalize_serpapi_flight(raw: dict) -> FlightOffer:
    raw = _dict(raw)
    # Google Flights results carry no offer id, only booking/departure tokens
    offer_id = _require_id(raw, 'booking_token', 'departure_token')
    price = _require_price(raw.get('price'), raw.get('_currency'))

    legs = [_dict(leg) for leg in _list(raw.get('flights'))]
    first = legs[0] if legs else {}
    last = legs[-1] if legs else {}
    departure = _dict(first.get('departure_airport'))
    arrival = _dict(last.get('arrival_airport'))
    return FlightOffer(
        id=offer_id,
        provider_id='serpapi',
        price=price,
        origin=_text(departure.get('id')),
        destination=_text(arrival.get('id')),
        departure_time=_text(departure.get('time')),
        arrival_time=_text(arrival.get('time')),
        duration_minutes=parse_duration(raw.get('total_duration')),
        stops=len(legs) - 1 if legs else None,
        carrier=_text(first.get('airline')),
        flight_number=_text(first.get('flight_number')),
        cabin_class=_text(first.get('travel_class')),
        metadata={
            'airline_logo': _text(raw.get('airline_logo')),
            'carbon_emissions': _dict(raw.get('carbon_emissions')).get('this_flight'),
            'type': _text(raw.get('type')),
        },
    )

def normalize_skyscanner_flight(raw: dict) -> FlightOffer:
    raw = _dict(raw)
    offer_id = _require_id(raw, 'QuoteId')
    price = _require_price(raw.get('MinPrice'), raw.get('_currency'))

    outbound = _dict(raw.get('OutboundLeg'))
    inbound = _dict(raw.get('InboundLeg'))
    direct = raw.get('Direct')
    carriers = _texts(outbound.get('carriers'))
    return FlightOffer(
        id=offer_id,
        provider_id='skyscanner',
        price=price,
        origin=_text(_dict(outbound.get('origin')).get('IataCode')),
        destination=_text(_dict(outbound.get('destination')).get('IataCode')),
        departure_time=_text(outbound.get('DepartureDate')),
        stops=None if direct is None else (0 if direct else 1),
        carrier=_text(carriers[0] if carriers else None),
        return_departure_time=_text(inbound.get('DepartureDate')),
        metadata={
            'quote_date_time': _text(raw.get('QuoteDateTime')),
            'carriers': carriers,
        },
    )

# --- Hotels ---

def normalize_amadeus_hotel(raw: dict) -> HotelOffer:
    raw = _dict(raw)
    hotel = _dict(raw.get('hotel'))
    offers = _list(raw.get('offers'))
    best = _dict(offers[0]) if offers else {}

    offer_id = _require_id(best, 'id') if best.get('id') else _require_id(hotel, 'hotelId')
    price_block = _dict(best.get('price'))
    price = _require_price(price_block.get('total'), price_block.get('currency'))

    check_in = _text(best.get('checkInDate'))
    check_out = _text(best.get('checkOutDate'))
    nights = _nights(check_in, check_out)
    room = _dict(best.get('room'))
    return HotelOffer(
        id=offer_id,
        provider_id='amadeus',
        price=price,
        name=_text(hotel.get('name')),
        hotel_id=_text(hotel.get('hotelId')),
        check_in=check_in,
        check_out=check_out,
        rating=_to_float(hotel.get('rating')),
        amenities=_texts(hotel.get('amenities')),
        room_type=_text(_dict(room.get('typeEstimated')).get('category') or room.get('type')),
        latitude=_to_float(hotel.get('latitude')),
        longitude=_to_float(hotel.get('longitude')),
        price_per_night=round(price.amount / nights, 2) if nights else None,
        metadata={
            'chain_code': _text(hotel.get('chainCode')),
            'room_description': _text(_dict(room.get('description')).get('text')),
        },
    )

def normalize_serpapi_hotel(raw: dict) -> HotelOffer:
    raw = _dict(raw)
    offer_id = _require_id(raw, 'property_token')
    total = _dict(raw.get('total_rate')).get('extracted_lowest')
    nightly = _dict(raw.get('rate_per_night')).get('extracted_lowest')
    price = _require_price(total if total is not None else nightly, raw.get('_currency'))

    gps = _dict(raw.get('gps_coordinates'))
    return HotelOffer(
        id=offer_id,
        provider_id='serpapi',
        price=price,
        name=_text(raw.get('name')),
        hotel_id=offer_id,
        check_in=_text(raw.get('_check_in')),
        check_out=_text(raw.get('_check_out')),
        rating=_to_float(raw.get('overall_rating')),
        amenities=_texts(raw.get('amenities')),
        room_type=_text(raw.get('type')),
        latitude=_to_float(gps.get('latitude')),
        longitude=_to_float(gps.get('longitude')),
        price_per_night=_to_float(nightly),
        metadata={
            'hotel_class': _text(raw.get('hotel_class')),
            'reviews': raw.get('reviews'),
        },
    )
