from typing import Any, Dict, Optional

from pydantic import BaseModel

from app.amadeus.client import AmadeusClient
from app.amadeus.request_builder import build_search_request
from app.amadeus.transform import from_amadeus
from app.amadeus.validation import validate_search_request, validate_trip
from app.cache.flight_cache import FlightOffersCache
from app.errors import CachePersistenceError, NotFoundOrExpired
from app.obs.context import cache_handle_var
from app.obs.logger import log_event
from app.rank.selector import select_page
from app.types import CacheMetadata, FilterCriteria, OfferPage, TripSpec


class SearchOutcome(BaseModel):
    payload: Dict[str, Any]
    handle: Optional[str] = None  # None when the cache write failed
    metadata: Optional[CacheMetadata] = None
    search_request: Dict[str, Any]


class FilterOutcome(BaseModel):
    page: OfferPage
    payload: Dict[str, Any]
    metadata: Optional[CacheMetadata] = None

    def to_wire(self) -> Dict[str, Any]:
        """Cached payload with `data` swapped for the page, plus pagination and cache metadata."""
        body = dict(self.payload)
        body["data"] = [o.to_wire() for o in self.page.offers]
        body["pagination"] = self.page.pagination.to_wire()
        if self.metadata is not None:
            body["metadata"] = self.metadata.to_wire()
        return body


class FlightOffersService:
    """Search -> cache -> filter, shared by the HTTP routes and the assistant tools."""

    def __init__(self, amadeus: AmadeusClient, cache: FlightOffersCache):
        self.amadeus = amadeus
        self.cache = cache

    def search_trip(self, trip: TripSpec) -> SearchOutcome:
        trip = validate_trip(trip)
        search_request = build_search_request(trip)
        log_event("flight_search_built", trip_type=trip.trip_type.value,
                  legs=len(search_request["originDestinations"]),
                  travelers=len(search_request["travelers"]))
        return self.search(search_request)

    def search(self, search_request: Dict[str, Any], method_override: Optional[str] = None) -> SearchOutcome:
        validate_search_request(search_request)
        payload = self.amadeus.search_flight_offers(search_request, method_override=method_override)

        try:
            cached = self.cache.store(payload, search_request)
        except CachePersistenceError as e:
            # degraded: caller still gets the offers, just no handle to filter with later
            log_event("flight_cache_degraded", level="ERROR", error=e.message)
            return SearchOutcome(payload=payload, search_request=search_request)

        cache_handle_var.set(cached.handle)
        return SearchOutcome(payload=payload, handle=cached.handle,
                             metadata=cached.metadata, search_request=search_request)

    def filter(self, handle: Optional[str], criteria: FilterCriteria) -> FilterOutcome:
        cached = self.cache.fetch(handle)
        if self.cache.is_entry_stale(cached):
            log_event("flight_cache_stale", handle=handle, created_at=cached.metadata.created_at)
            raise NotFoundOrExpired()

        offers = from_amadeus(cached.payload)
        page = select_page(offers, criteria)
        log_event("flight_offers_filtered", handle=handle, total=page.pagination.total,
                  page=page.pagination.page, sort_by=criteria.sort_by.value, stops=criteria.stops.value)
        return FilterOutcome(page=page, payload=cached.payload, metadata=cached.metadata)
