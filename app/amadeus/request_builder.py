"""
Trip spec -> Amadeus Flight Offers Search request body.

Pure functions; the trip is expected to have passed validate_trip() already.
Traveler ids and their ordering are part of the wire contract.
"""

from typing import Any, Dict, List

from app.types import TripSpec, TripType, Passengers, TravelerType


def build_travelers(passengers: Passengers) -> List[Dict[str, Any]]:
    """
    Sequential string ids starting at '1': adults, then children, then held
    infants, each infant bound round-robin to an adult id.
    """
    travelers: List[Dict[str, Any]] = []
    adult_ids: List[str] = []
    next_id = 1

    for _ in range(passengers.adults):
        adult_id = str(next_id)
        next_id += 1
        adult_ids.append(adult_id)
        travelers.append({"id": adult_id, "travelerType": TravelerType.ADULT.value})

    for _ in range(passengers.children):
        travelers.append({"id": str(next_id), "travelerType": TravelerType.CHILD.value})
        next_id += 1

    for i in range(passengers.infants):
        travelers.append({
            "id": str(next_id),
            "travelerType": TravelerType.HELD_INFANT.value,
            "associatedAdultId": adult_ids[i % len(adult_ids)],
        })
        next_id += 1

    return travelers


def _leg(leg_id: str, origin: str, destination: str, date: str) -> Dict[str, Any]:
    return {
        "id": leg_id,
        "originLocationCode": origin.upper(),
        "destinationLocationCode": destination.upper(),
        "departureDateTimeRange": {"date": date[:10]},
    }


def build_origin_destinations(trip: TripSpec) -> List[Dict[str, Any]]:
    if trip.trip_type == TripType.MULTI_TRIP:
        return [
            _leg(str(i + 1), seg.origin, seg.destination, seg.departure_date)
            for i, seg in enumerate(trip.segments)
        ]

    legs = [_leg("1", trip.origin, trip.destination, trip.departure_date)]
    if trip.trip_type == TripType.RETURN:
        legs.append(_leg("2", trip.destination, trip.origin, trip.return_date))
    return legs


def build_search_request(trip: TripSpec) -> Dict[str, Any]:
    origin_destinations = build_origin_destinations(trip)
    return {
        "currencyCode": trip.currency,
        "originDestinations": origin_destinations,
        "travelers": build_travelers(trip.passengers),
        "sources": ["GDS"],
        "searchCriteria": {
            "maxFlightOffers": trip.max_offers,
            "flightFilters": {
                "cabinRestrictions": [{
                    "cabin": trip.cabin_class.value,
                    "coverage": "MOST_SEGMENTS",
                    "originDestinationIds": [od["id"] for od in origin_destinations],
                }],
            },
        },
    }
