from enum import Enum
from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel
from typing import Optional, List, Dict, Any

from app.config import settings


class TripType(str, Enum):
    ONE_WAY = "one-way"
    RETURN = "return"
    MULTI_TRIP = "multi-trip"


class CabinClass(str, Enum):
    ECONOMY = "ECONOMY"
    PREMIUM_ECONOMY = "PREMIUM_ECONOMY"
    BUSINESS = "BUSINESS"
    FIRST = "FIRST"


class TravelerType(str, Enum):
    ADULT = "ADULT"
    CHILD = "CHILD"
    HELD_INFANT = "HELD_INFANT"


class TripSegment(BaseModel):
    origin: str = Field(..., description="3-letter IATA code")
    destination: str = Field(..., description="3-letter IATA code")
    departure_date: str = Field(..., description="YYYY-MM-DD")


class Passengers(BaseModel):
    adults: int = 1
    children: int = 0
    infants: int = 0


class TripSpec(BaseModel):
    trip_type: TripType = TripType.ONE_WAY
    # one-way / return
    origin: Optional[str] = None
    destination: Optional[str] = None
    departure_date: Optional[str] = None
    return_date: Optional[str] = None
    # multi-trip
    segments: List[TripSegment] = Field(default_factory=list)
    passengers: Passengers = Field(default_factory=Passengers)
    cabin_class: CabinClass = CabinClass.ECONOMY
    currency: str = settings.DEFAULT_CURRENCY
    max_offers: int = settings.DEFAULT_MAX_OFFERS


# Provider payload: typed core, everything else passes through untouched.

class _WireModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")


class FlightEndpoint(_WireModel):
    iata_code: str = ""
    terminal: Optional[str] = None
    at: Optional[str] = None


class FlightSegment(_WireModel):
    departure: FlightEndpoint = Field(default_factory=FlightEndpoint)
    arrival: FlightEndpoint = Field(default_factory=FlightEndpoint)
    carrier_code: str = ""
    number: str = ""
    aircraft: Optional[Dict[str, Any]] = None
    duration: Optional[str] = None


class Itinerary(_WireModel):
    duration: Optional[str] = None  # e.g. 'PT11H30M'
    segments: List[FlightSegment] = Field(default_factory=list)


class Price(_WireModel):
    currency: str = ""
    total: str = "0"
    base: Optional[str] = None
    grand_total: Optional[str] = None


class FlightOffer(_WireModel):
    id: str = ""
    itineraries: List[Itinerary] = Field(default_factory=list)
    price: Price = Field(default_factory=Price)
    validating_airline_codes: List[str] = Field(default_factory=list)
    number_of_bookable_seats: Optional[int] = None
    traveler_pricings: List[Dict[str, Any]] = Field(default_factory=list)
    last_ticketing_date: Optional[str] = None

    def to_wire(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_unset=True)


class StopsBucket(str, Enum):
    NONSTOP = "nonstop"
    ONE_STOP = "1-stop"
    TWO_PLUS = "2+-stops"
    ANY = "any"


class SortKey(str, Enum):
    CHEAPEST = "cheapest"
    FASTEST = "fastest"
    EARLIEST = "earliest"


class FilterCriteria(BaseModel):
    airlines: List[str] = Field(default_factory=list)
    stops: StopsBucket = StopsBucket.ANY
    sort_by: SortKey = SortKey.CHEAPEST
    page: int = 1
    limit: int = 5


class Pagination(BaseModel):
    page: int
    limit: int
    total: int
    total_pages: int

    def to_wire(self) -> Dict[str, int]:
        return {"page": self.page, "limit": self.limit, "total": self.total, "totalPages": self.total_pages}


class OfferPage(BaseModel):
    offers: List[FlightOffer]
    pagination: Pagination


class CacheMetadata(BaseModel):
    created_at: str
    expires_at: str
    ttl_seconds: int
    search_request: Optional[Dict[str, Any]] = None

    def to_wire(self) -> Dict[str, Any]:
        return {"createdAt": self.created_at, "expiresAt": self.expires_at, "ttlSeconds": self.ttl_seconds}


class CachedSearch(BaseModel):
    handle: str
    payload: Dict[str, Any]
    metadata: Optional[CacheMetadata] = None  # absent for entries written without the wrapper
