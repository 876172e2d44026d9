"""
Filter / sort / paginate over cached flight offers.

Every step is a pure function of (offers, criteria). Python's sort is stable,
so ties keep the upstream order, which is the provider's relevance order.
"""

import math
from datetime import datetime
from typing import Iterable, List, Sequence

from app.amadeus.transform import first_departure, stop_count, total_duration_minutes, total_price
from app.errors import ValidationError
from app.types import FilterCriteria, FlightOffer, OfferPage, Pagination, SortKey, StopsBucket

MAX_PAGE_SIZE = 50


def filter_by_airlines(offers: Iterable[FlightOffer], airlines: Iterable[str]) -> List[FlightOffer]:
    wanted = {a.strip().upper() for a in airlines if a and a.strip()}
    if not wanted:
        return list(offers)
    return [
        o for o in offers
        if any(s.carrier_code.upper() in wanted for it in o.itineraries for s in it.segments)
    ]


def _matches_bucket(stops: int, bucket: StopsBucket) -> bool:
    if bucket == StopsBucket.NONSTOP:
        return stops == 0
    if bucket == StopsBucket.ONE_STOP:
        return stops == 1
    if bucket == StopsBucket.TWO_PLUS:
        return stops >= 2
    return True


def filter_by_stops(offers: Iterable[FlightOffer], bucket: StopsBucket) -> List[FlightOffer]:
    if bucket == StopsBucket.ANY:
        return list(offers)
    # every leg must match: nonstop out + 1-stop back is neither nonstop nor 1-stop
    return [o for o in offers if all(_matches_bucket(stop_count(it), bucket) for it in o.itineraries)]


def sort_offers(offers: Iterable[FlightOffer], sort_by: SortKey) -> List[FlightOffer]:
    if sort_by == SortKey.CHEAPEST:
        return sorted(offers, key=total_price)
    if sort_by == SortKey.FASTEST:
        return sorted(offers, key=total_duration_minutes)
    if sort_by == SortKey.EARLIEST:
        return sorted(offers, key=lambda o: first_departure(o) or datetime.min)
    return list(offers)


def paginate(offers: Sequence[FlightOffer], page: int, limit: int) -> OfferPage:
    total = len(offers)
    total_pages = max(1, math.ceil(total / limit))
    start = (page - 1) * limit
    return OfferPage(
        offers=list(offers[start:start + limit]),
        pagination=Pagination(page=page, limit=limit, total=total, total_pages=total_pages),
    )


def select_page(offers: Sequence[FlightOffer], criteria: FilterCriteria) -> OfferPage:
    if criteria.page < 1:
        raise ValidationError("page", "must be 1 or greater")
    if not 1 <= criteria.limit <= MAX_PAGE_SIZE:
        raise ValidationError("limit", f"must be between 1 and {MAX_PAGE_SIZE}")

    selected = filter_by_airlines(offers, criteria.airlines)
    selected = filter_by_stops(selected, criteria.stops)
    selected = sort_offers(selected, criteria.sort_by)
    return paginate(selected, criteria.page, criteria.limit)


def criteria_from_query(airlines: str = None, sort_by: str = None, stops: str = None,
                        page: str = None, limit: str = None) -> FilterCriteria:
    """Query-string values (airlines=BA,KL&sortBy=fastest&stops=nonstop&page=1&limit=5) -> criteria."""
    try:
        sort_key = SortKey((sort_by or SortKey.CHEAPEST.value).strip().lower())
    except ValueError:
        raise ValidationError("sortBy", f"'{sort_by}' is not one of cheapest, fastest, earliest")
    try:
        bucket = StopsBucket((stops or StopsBucket.ANY.value).strip().lower())
    except ValueError:
        raise ValidationError("stops", f"'{stops}' is not one of nonstop, 1-stop, 2+-stops, any")

    def _int(field: str, value, default: int) -> int:
        if value is None or str(value).strip() == "":
            return default
        try:
            return int(str(value).strip())
        except ValueError:
            raise ValidationError(field, f"'{value}' is not an integer")

    codes = [c.strip().upper() for c in (airlines or "").split(",") if c.strip()]
    return FilterCriteria(
        airlines=codes,
        stops=bucket,
        sort_by=sort_key,
        page=_int("page", page, 1),
        limit=_int("limit", limit, 5),
    )
