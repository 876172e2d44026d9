from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import ValidationError as PydanticValidationError

from app.obs.logger import log_event
from app.types import FlightOffer, Itinerary
from app.utils.dates import iso_duration_to_minutes, parse_timestamp


def stop_count(itin: Itinerary) -> int:
    return max(0, len(itin.segments) - 1)


def total_duration_minutes(offer: FlightOffer) -> int:
    # sum over outbound + return (+ any further legs)
    return sum(iso_duration_to_minutes(it.duration) for it in offer.itineraries)


def total_price(offer: FlightOffer) -> float:
    try:
        return float(offer.price.total)
    except (TypeError, ValueError):
        return float("inf")


def first_departure(offer: FlightOffer) -> Optional[datetime]:
    if not offer.itineraries or not offer.itineraries[0].segments:
        return None
    return parse_timestamp(offer.itineraries[0].segments[0].departure.at)


def from_amadeus(json_obj: Dict[str, Any]) -> List[FlightOffer]:
    """Parse `data[]` of a Flight Offers Search response; malformed offers are skipped."""
    items = []
    for raw in json_obj.get("data") or []:
        try:
            items.append(FlightOffer.model_validate(raw))
        except PydanticValidationError as e:
            log_event("offer_parse_skipped", level="WARNING",
                      offer_id=raw.get("id") if isinstance(raw, dict) else None,
                      errors=e.error_count())
    return items
