"""
Tools exposed to the chat models.

Tools never raise into the model loop: every failure becomes a short sentence
the assistant can relay, and the conversation carries on.
"""

from typing import List, Optional

import redis
from langchain_core.tools import BaseTool, StructuredTool
from pydantic import BaseModel, Field
from pymongo.errors import PyMongoError

from app.amadeus.transform import from_amadeus
from app.config import settings
from app.errors import (
    AuthError,
    FlightSearchError,
    NotFoundOrExpired,
    RequestDeadlineExceeded,
    UpstreamTransientError,
    ValidationError,
)
from app.formatters.markdown import format_offers_page
from app.obs.logger import log_event
from app.programs.search import ProgramSearchParams, ProgramsRepository, format_program_page, format_stats
from app.rank.selector import select_page
from app.services.flight_offers import FlightOffersService
from app.types import CabinClass, FilterCriteria, Passengers, SortKey, StopsBucket, TripSegment, TripSpec, TripType
from app.utils.dates import to_iso_date

FIRST_PAGE_SIZE = 5


# --- programmes ---

class StatsArgs(BaseModel):
    pass


def build_program_tools(repo: ProgramsRepository) -> List[BaseTool]:
    def search_programs(**kwargs) -> str:
        params = ProgramSearchParams(**kwargs)
        try:
            return format_program_page(repo.search(params))
        except PyMongoError as e:
            log_event("programs_search_failed", level="ERROR", error=str(e))
            return "Sorry, I encountered an error while searching for programs. Please try again."

    def get_aggregated_stats() -> str:
        try:
            return format_stats(repo.aggregated_stats())
        except PyMongoError as e:
            log_event("programs_stats_failed", level="ERROR", error=str(e))
            return "Sorry, I couldn't retrieve the statistics at the moment. Please try again."

    return [
        StructuredTool.from_function(
            func=search_programs,
            name="search_programs",
            description=("Search study abroad programmes from NGabroad partner universities. "
                         "Requires discipline, country and course level; results come 8 per page."),
            args_schema=ProgramSearchParams,
            handle_validation_error=True,
        ),
        StructuredTool.from_function(
            func=get_aggregated_stats,
            name="get_aggregated_stats",
            description="Overview statistics: programmes per country, discipline and course level.",
            args_schema=StatsArgs,
            handle_validation_error=True,
        ),
    ]


# --- flights ---

class SegmentArgs(BaseModel):
    origin: str = Field(..., description="3-letter IATA code")
    destination: str = Field(..., description="3-letter IATA code")
    departure_date: str = Field(..., description="YYYY-MM-DD")


class FlightSearchArgs(BaseModel):
    trip_type: TripType = Field(TripType.ONE_WAY, description="one-way, return or multi-trip")
    origin: Optional[str] = Field(None, description="3-letter IATA code (one-way/return)")
    destination: Optional[str] = Field(None, description="3-letter IATA code (one-way/return)")
    departure_date: Optional[str] = Field(None, description="YYYY-MM-DD (one-way/return)")
    return_date: Optional[str] = Field(None, description="YYYY-MM-DD, return trips only")
    segments: List[SegmentArgs] = Field(default_factory=list, description="Ordered legs, multi-trip only")
    adults: int = Field(1, description="Travellers aged 12+")
    children: int = Field(0, description="Travellers aged 2-11")
    infants: int = Field(0, description="Infants under 2 held on an adult's lap")
    cabin_class: CabinClass = CabinClass.ECONOMY
    currency: str = Field(settings.DEFAULT_CURRENCY, description="3-letter currency code")


class FlightFilterArgs(BaseModel):
    airlines: List[str] = Field(default_factory=list, description="2-letter carrier codes to keep, e.g. ['BA']")
    stops: StopsBucket = StopsBucket.ANY
    sort_by: SortKey = SortKey.CHEAPEST
    page: int = Field(1, description="Page number, starting at 1")
    limit: int = Field(FIRST_PAGE_SIZE, description="Offers per page (1-50)")


class FlightToolContext:
    """Per-request state: the handle the caller already holds, and any handle issued during this turn."""

    def __init__(self, service: FlightOffersService, handle: Optional[str] = None, tz: str = None):
        self.service = service
        self.handle = handle
        self.issued_handle: Optional[str] = None
        self.issued_ttl: Optional[int] = None
        self.tz = tz or settings.TZ


def _date_arg(value: Optional[str], tz: str) -> Optional[str]:
    if not value:
        return None
    # fall back to the raw text so validation reports what the model sent
    return to_iso_date(value, tz) or value


def trip_from_args(args: FlightSearchArgs, tz: str) -> TripSpec:
    return TripSpec(
        trip_type=args.trip_type,
        origin=args.origin,
        destination=args.destination,
        departure_date=_date_arg(args.departure_date, tz),
        return_date=_date_arg(args.return_date, tz),
        segments=[TripSegment(origin=s.origin, destination=s.destination,
                              departure_date=_date_arg(s.departure_date, tz)) for s in args.segments],
        passengers=Passengers(adults=args.adults, children=args.children, infants=args.infants),
        cabin_class=args.cabin_class,
        currency=args.currency,
    )


def describe_error(e: FlightSearchError) -> str:
    if isinstance(e, ValidationError):
        return f"I couldn't run that search: {e.message}."
    if isinstance(e, NotFoundOrExpired):
        return "Those flight results have expired. Please run search_flights again with the same trip."
    if isinstance(e, AuthError):
        return "The flight search service is not available right now."
    if isinstance(e, RequestDeadlineExceeded):
        return "The flight search took too long. Please try again in a moment."
    if isinstance(e, UpstreamTransientError):
        return "The flight search service is temporarily busy. Please try again shortly."
    return f"The flight search failed: {getattr(e, 'detail', '') or e.message}"


def build_flight_tools(ctx: FlightToolContext) -> List[BaseTool]:
    def search_flights(**kwargs) -> str:
        args = FlightSearchArgs(**kwargs)
        try:
            outcome = ctx.service.search_trip(trip_from_args(args, ctx.tz))
        except FlightSearchError as e:
            log_event("flight_tool_failed", level="WARNING", tool="search_flights", error=e.message)
            return describe_error(e)

        if outcome.handle:
            ctx.handle = outcome.handle
            ctx.issued_handle = outcome.handle
            ctx.issued_ttl = outcome.metadata.ttl_seconds

        page = select_page(from_amadeus(outcome.payload), FilterCriteria(limit=FIRST_PAGE_SIZE))
        created = outcome.metadata.created_at if outcome.metadata else None
        text = format_offers_page(page, outcome.payload, created)
        if not outcome.handle:
            text += "\n\n(These results could not be saved, so filtering will need a new search.)"
        return text

    def filter_flight_offers(**kwargs) -> str:
        args = FlightFilterArgs(**kwargs)
        if not ctx.handle:
            return "There are no flight results to filter yet. Run search_flights first."
        criteria = FilterCriteria(
            airlines=[a.strip().upper() for a in args.airlines if a.strip()],
            stops=args.stops, sort_by=args.sort_by, page=args.page, limit=args.limit,
        )
        try:
            outcome = ctx.service.filter(ctx.handle, criteria)
        except FlightSearchError as e:
            return describe_error(e)
        except redis.RedisError as e:
            log_event("flight_tool_failed", level="ERROR", tool="filter_flight_offers", error=str(e))
            return "Saved flight results are unavailable right now. Please search again."
        created = outcome.metadata.created_at if outcome.metadata else None
        return format_offers_page(outcome.page, outcome.payload, created)

    return [
        StructuredTool.from_function(
            func=search_flights,
            name="search_flights",
            description=("Search live flight offers. One-way and return trips use origin/destination/"
                         "departure_date; multi-trip uses segments. Returns the cheapest offers first."),
            args_schema=FlightSearchArgs,
            handle_validation_error=True,
        ),
        StructuredTool.from_function(
            func=filter_flight_offers,
            name="filter_flight_offers",
            description=("Re-sort, filter or page through the most recent flight search results "
                         "without searching again."),
            args_schema=FlightFilterArgs,
            handle_validation_error=True,
        ),
    ]
