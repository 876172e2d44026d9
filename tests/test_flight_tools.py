import uuid
from unittest.mock import MagicMock

import pytest
import redis

from app.errors import AuthError, NotFoundOrExpired, RequestDeadlineExceeded, UpstreamTransientError, ValidationError
from app.llm.tools import FlightSearchArgs, FlightToolContext, build_flight_tools, describe_error, trip_from_args
from app.rank.selector import select_page
from app.amadeus.transform import from_amadeus
from app.services.flight_offers import FilterOutcome, SearchOutcome
from app.types import CacheMetadata, FilterCriteria, SortKey, StopsBucket, TripType

HANDLE = str(uuid.uuid4())
METADATA = CacheMetadata(created_at="2025-03-10T08:00:00.000Z", expires_at="2025-03-10T08:30:00.000Z",
                         ttl_seconds=1800)


@pytest.fixture
def payload(make_offer, make_segment):
    return {"data": [
        make_offer(i, 100000 * (8 - i), [{"duration": "PT6H", "segments": [make_segment("LOS", "LHR")]}])
        for i in range(1, 8)
    ]}


def tools_for(service, handle=None):
    ctx = FlightToolContext(service, handle=handle, tz="Africa/Lagos")
    search, filter_ = build_flight_tools(ctx)
    return ctx, search, filter_


def test_trip_from_args_normalises_dates():
    args = FlightSearchArgs(trip_type=TripType.RETURN, origin="LOS", destination="LHR",
                            departure_date="2025-03-10", return_date="10 April 2025", adults=2, infants=1)
    trip = trip_from_args(args, "Africa/Lagos")
    assert trip.departure_date == "2025-03-10"
    assert trip.return_date == "2025-04-10"
    assert (trip.passengers.adults, trip.passengers.infants) == (2, 1)


def test_search_tool_renders_first_page_and_records_handle(payload):
    service = MagicMock()
    service.search_trip.return_value = SearchOutcome(payload=payload, handle=HANDLE, metadata=METADATA,
                                                     search_request={})
    ctx, search, _ = tools_for(service)

    text = search.invoke({"origin": "LOS", "destination": "LHR", "departure_date": "2025-03-10"})

    assert text.startswith("Found 7 flight offers - page 1 of 2")
    assert text.count("## ID:") == 5
    assert "NGN 100,000" in text.split("## ID: 002")[0]
    assert ctx.handle == HANDLE
    assert ctx.issued_handle == HANDLE
    assert ctx.issued_ttl == 1800


def test_search_tool_without_cache(payload):
    service = MagicMock()
    service.search_trip.return_value = SearchOutcome(payload=payload, search_request={})
    ctx, search, _ = tools_for(service)

    text = search.invoke({"origin": "LOS", "destination": "LHR", "departure_date": "2025-03-10"})

    assert text.endswith("(These results could not be saved, so filtering will need a new search.)")
    assert ctx.issued_handle is None


def test_search_tool_reports_validation_problems():
    service = MagicMock()
    service.search_trip.side_effect = ValidationError("destination", "origin and destination must differ")
    _, search, _ = tools_for(service)

    text = search.invoke({"origin": "LOS", "destination": "LOS", "departure_date": "2025-03-10"})

    assert text == "I couldn't run that search: destination: origin and destination must differ."


def test_filter_tool_needs_a_prior_search():
    _, _, filter_ = tools_for(MagicMock())
    assert filter_.invoke({"stops": "nonstop"}).startswith("There are no flight results to filter yet.")


def test_filter_tool_passes_criteria(payload):
    service = MagicMock()
    page = select_page(from_amadeus(payload), FilterCriteria(page=2, limit=5))
    service.filter.return_value = FilterOutcome(page=page, payload=payload, metadata=METADATA)
    _, _, filter_ = tools_for(service, handle=HANDLE)

    text = filter_.invoke({"airlines": ["ba"], "stops": "nonstop", "sort_by": "fastest", "page": 2})

    handle, criteria = service.filter.call_args.args
    assert handle == HANDLE
    assert criteria.airlines == ["BA"]
    assert criteria.stops == StopsBucket.NONSTOP
    assert criteria.sort_by == SortKey.FASTEST
    assert criteria.page == 2
    assert "page 2 of 2" in text
    assert "## ID: 006" in text


def test_filter_tool_expired_and_store_down():
    service = MagicMock()
    _, _, filter_ = tools_for(service, handle=HANDLE)

    service.filter.side_effect = NotFoundOrExpired()
    assert "expired" in filter_.invoke({})

    service.filter.side_effect = redis.ConnectionError("down")
    assert filter_.invoke({}).startswith("Saved flight results are unavailable")


@pytest.mark.parametrize("error,fragment", [
    (AuthError("bad credentials", 401), "not available right now"),
    (RequestDeadlineExceeded("slow"), "took too long"),
    (UpstreamTransientError("busy", 503), "temporarily busy"),
])
def test_describe_error(error, fragment):
    assert fragment in describe_error(error)
