"""
Trip validation gate.

Runs before the request builder; nothing that fails here ever reaches the
network. Returns a normalised copy (upper-case codes, YYYY-MM-DD dates).
"""

import re
from typing import Any, Dict

from app.errors import ValidationError
from app.types import TripSpec, TripSegment, TripType
from app.utils.dates import parse_iso_date

IATA_RE = re.compile(r"^[A-Z]{3}$")
CURRENCY_RE = re.compile(r"^[A-Z]{3}$")
MAX_SEATED_TRAVELERS = 9
MAX_OFFERS_LIMIT = 250


def _iata(field: str, value: Any) -> str:
    code = str(value or "").strip().upper()
    if not IATA_RE.match(code):
        raise ValidationError(field, f"'{value}' is not a 3-letter IATA code")
    return code


def _date(field: str, value: Any) -> str:
    if not value:
        raise ValidationError(field, "is required")
    parsed = parse_iso_date(str(value))
    if not parsed:
        raise ValidationError(field, f"'{value}' is not a valid date (YYYY-MM-DD)")
    return parsed


def validate_trip(trip: TripSpec) -> TripSpec:
    p = trip.passengers
    if p.adults < 1:
        raise ValidationError("passengers.adults", "at least one adult is required")
    if p.children < 0:
        raise ValidationError("passengers.children", "cannot be negative")
    if p.infants < 0:
        raise ValidationError("passengers.infants", "cannot be negative")
    # Each held infant sits on a distinct adult's lap.
    if p.infants > p.adults:
        raise ValidationError("passengers.infants",
                              f"{p.infants} infants cannot be held by {p.adults} adult(s)")
    if p.adults + p.children > MAX_SEATED_TRAVELERS:
        raise ValidationError("passengers", f"at most {MAX_SEATED_TRAVELERS} seated travelers per search")

    currency = (trip.currency or "").strip().upper()
    if not CURRENCY_RE.match(currency):
        raise ValidationError("currency", f"'{trip.currency}' is not a 3-letter currency code")
    if not 1 <= trip.max_offers <= MAX_OFFERS_LIMIT:
        raise ValidationError("max_offers", f"must be between 1 and {MAX_OFFERS_LIMIT}")

    updates: Dict[str, Any] = {"currency": currency}

    if trip.trip_type == TripType.MULTI_TRIP:
        if not trip.segments:
            raise ValidationError("segments", "multi-trip requires at least one segment")
        segments = []
        for i, seg in enumerate(trip.segments):
            origin = _iata(f"segments[{i}].origin", seg.origin)
            destination = _iata(f"segments[{i}].destination", seg.destination)
            if origin == destination:
                raise ValidationError(f"segments[{i}]", "origin and destination must differ")
            segments.append(TripSegment(
                origin=origin,
                destination=destination,
                departure_date=_date(f"segments[{i}].departure_date", seg.departure_date),
            ))
        updates["segments"] = segments
        return trip.model_copy(update=updates)

    origin = _iata("origin", trip.origin)
    destination = _iata("destination", trip.destination)
    if origin == destination:
        raise ValidationError("destination", "origin and destination must differ")
    departure = _date("departure_date", trip.departure_date)
    updates.update(origin=origin, destination=destination, departure_date=departure)

    if trip.trip_type == TripType.RETURN:
        ret = _date("return_date", trip.return_date)
        if ret < departure:
            raise ValidationError("return_date", "cannot be before departure_date")
        updates["return_date"] = ret
    else:
        updates["return_date"] = None

    return trip.model_copy(update=updates)


def validate_search_request(body: Any) -> Dict[str, Any]:
    """Minimal shape check for callers that post a ready-made wire request."""
    if not isinstance(body, dict):
        raise ValidationError("body", "must be a JSON object")
    if not isinstance(body.get("originDestinations"), list):
        raise ValidationError("originDestinations", "must be a list")
    if not isinstance(body.get("travelers"), list):
        raise ValidationError("travelers", "must be a list")
    return body
