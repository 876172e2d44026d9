from datetime import datetime
from typing import Any, Dict, List, Optional

from app.amadeus.transform import stop_count
from app.types import FlightOffer, OfferPage
from app.utils.dates import (
    format_duration_minutes,
    iso_duration_to_minutes,
    parse_timestamp,
    relative_time,
)


def format_money(amount: Optional[str], currency: str) -> str:
    try:
        value = float(amount)
    except (TypeError, ValueError):
        return f"{currency} {amount or 'N/A'}"
    return f"{currency} {value:,.0f}"


def _date_time(at: Optional[str]):
    dt = parse_timestamp(at)
    if dt is None:
        return "N/A", ""
    return dt.strftime("%d/%m/%Y"), dt.strftime("%H:%M")


def _duration(iso: Optional[str]) -> str:
    return format_duration_minutes(iso_duration_to_minutes(iso))


def _layover(arrival_at: Optional[str], departure_at: Optional[str]) -> str:
    arr, dep = parse_timestamp(arrival_at), parse_timestamp(departure_at)
    if arr is None or dep is None:
        return "N/A"
    return format_duration_minutes(int((dep - arr).total_seconds() // 60))


def _stops_text(stops: int) -> str:
    if stops == 0:
        return "Direct"
    return f"{stops} stop{'s' if stops > 1 else ''}"


def _passenger_summary(offer: FlightOffer) -> str:
    counts: Dict[str, int] = {}
    for pricing in offer.traveler_pricings:
        t = pricing.get("travelerType")
        counts[t] = counts.get(t, 0) + 1
    parts = []
    if counts.get("ADULT"):
        n = counts["ADULT"]
        parts.append(f"{n} Adult{'s' if n > 1 else ''}")
    if counts.get("CHILD"):
        n = counts["CHILD"]
        parts.append(f"{n} Child{'ren' if n > 1 else ''}")
    if counts.get("HELD_INFANT"):
        n = counts["HELD_INFANT"]
        parts.append(f"{n} Infant{'s' if n > 1 else ''}")
    return ", ".join(parts) or "N/A"


class OfferMarkdown:
    """
    Renders offers using the names the provider sent back in `dictionaries`.
    Codes without a dictionary entry are shown as-is.
    """

    def __init__(self, dictionaries: Optional[Dict[str, Any]] = None):
        dictionaries = dictionaries or {}
        self.carriers: Dict[str, str] = dictionaries.get("carriers") or {}
        self.locations: Dict[str, Any] = dictionaries.get("locations") or {}

    def airline(self, code: str) -> str:
        return self.carriers.get(code, code)

    def location(self, code: str) -> str:
        # Amadeus only sends {cityCode, countryCode} per airport
        loc = self.locations.get(code)
        if isinstance(loc, dict) and loc.get("cityCode"):
            return loc["cityCode"]
        return code

    def _segment_lines(self, itin) -> List[str]:
        lines = []
        for i, seg in enumerate(itin.segments):
            dep_date, dep_time = _date_time(seg.departure.at)
            arr_date, arr_time = _date_time(seg.arrival.at)
            line = (f"{self.location(seg.departure.iata_code)} ({seg.departure.iata_code}) "
                    f"{dep_date} {dep_time} → "
                    f"{self.location(seg.arrival.iata_code)} ({seg.arrival.iata_code}) "
                    f"{arr_date} {arr_time}")
            terminals = [f"T{t}" for t in (seg.departure.terminal, seg.arrival.terminal) if t]
            if terminals:
                line += f" [{' → '.join(terminals)}]"
            lines.append(line)
            lines.append(f"*Flight: {self.airline(seg.carrier_code)} {seg.carrier_code}{seg.number}"
                         f" • Duration: {_duration(seg.duration)}*")
            if seg.aircraft and seg.aircraft.get("code"):
                lines.append(f"*Aircraft: {seg.aircraft['code']}*")
            if i < len(itin.segments) - 1:
                nxt = itin.segments[i + 1]
                lines.append(f"**Stop Over:** {self.location(seg.arrival.iata_code)} "
                             f"({seg.arrival.iata_code}) for {_layover(seg.arrival.at, nxt.departure.at)}")
                lines.append("")
        return lines

    def offer(self, offer: FlightOffer, index: int) -> str:
        price = offer.price
        airline_code = offer.validating_airline_codes[0] if offer.validating_airline_codes else "N/A"

        lines = [
            f"## ID: {index + 1:03d} - {format_money(price.total, price.currency)}",
            "",
            f"**Airline:** {self.airline(airline_code)} ({airline_code})",
        ]
        for n, itin in enumerate(offer.itineraries):
            if len(offer.itineraries) == 1:
                label = "Journey"
            else:
                label = "Outbound" if n == 0 else "Return"
            lines += ["", f"**{label}:**"]
            lines += self._segment_lines(itin)
            lines.append(f"*Total Duration: {_duration(itin.duration)} • {_stops_text(stop_count(itin))}*")

        lines += [
            "",
            f"**Passengers:** {_passenger_summary(offer)}",
            f"**Seats Available:** {offer.number_of_bookable_seats or 'Limited'}",
        ]

        fare = {}
        if offer.traveler_pricings:
            fare = (offer.traveler_pricings[0].get("fareDetailsBySegment") or [{}])[0] or {}
        if fare.get("cabin"):
            lines.append(f"**Cabin Class:** {fare['cabin'].replace('_', ' ').capitalize()}")
        if fare.get("brandedFareLabel"):
            lines.append(f"**Fare Type:** {fare['brandedFareLabel']}")
        if fare:
            checked = (fare.get("includedCheckedBags") or {}).get("quantity", 0)
            cabin_bags = (fare.get("includedCabinBags") or {}).get("quantity", 0)
            lines.append(f"**Baggage:** {checked} checked bag{'' if checked == 1 else 's'}, "
                         f"{cabin_bags} cabin bag{'' if cabin_bags == 1 else 's'}")

        try:
            base, total = float(price.base), float(price.total)
        except (TypeError, ValueError):
            base = total = None
        if base is not None and base != total:
            lines.append(f"**Price Breakdown:** Base fare {format_money(price.base, price.currency)}"
                         f" + Taxes {format_money(str(total - base), price.currency)}")

        if offer.last_ticketing_date:
            deadline, _ = _date_time(offer.last_ticketing_date + "T23:59:59")
            lines.append(f"**Booking Deadline:** {deadline}")

        return "\n".join(lines) + "\n"


def format_offers_page(page: OfferPage, payload: Dict[str, Any],
                       created_at: Optional[str] = None, now: Optional[datetime] = None) -> str:
    """Markdown for one page of filtered offers, with a header the LLM can copy verbatim."""
    p = page.pagination
    if not page.offers:
        if p.total == 0:
            return "No flight offers match these filters. Try allowing more stops or other airlines."
        return f"Page {p.page} is past the end of the results ({p.total_pages} page(s) available)."

    header = f"Found {p.total} flight offer{'s' if p.total != 1 else ''} - page {p.page} of {p.total_pages}"
    if created_at:
        age = relative_time(created_at, now)
        if age:
            header += f" (prices fetched {age})"

    renderer = OfferMarkdown(payload.get("dictionaries"))
    first = (p.page - 1) * p.limit
    blocks = [header, ""]
    blocks += [renderer.offer(o, first + i) for i, o in enumerate(page.offers)]
    if p.page < p.total_pages:
        blocks.append(f"More results available: ask for page {p.page + 1}.")
    return "\n".join(blocks)
