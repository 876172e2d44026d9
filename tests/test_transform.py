from datetime import datetime

from app.amadeus.transform import first_departure, from_amadeus, stop_count, total_duration_minutes, total_price


def test_derived_fields(make_offer, make_segment):
    offer = from_amadeus({"data": [make_offer(1, "450000.50", [
        {"duration": "PT11H30M", "segments": [
            make_segment("LOS", "IST", dep="2025-03-10T06:15:00"), make_segment("IST", "LHR")]},
        {"duration": "P1DT2H", "segments": [make_segment("LHR", "LOS")]},
    ])]})[0]

    assert [stop_count(it) for it in offer.itineraries] == [1, 0]
    assert total_duration_minutes(offer) == 690 + 26 * 60
    assert total_price(offer) == 450000.5
    assert first_departure(offer) == datetime(2025, 3, 10, 6, 15)


def test_offer_without_segments_has_no_departure(make_offer):
    offer = from_amadeus({"data": [make_offer(1, 100, [])]})[0]
    assert first_departure(offer) is None
    assert total_duration_minutes(offer) == 0


def test_malformed_offers_are_skipped(make_offer, make_segment):
    good = make_offer(1, 100, [{"segments": [make_segment("LOS", "ABV")]}])
    offers = from_amadeus({"data": [{"id": "bad", "itineraries": "nope"}, "junk", good]})
    assert [o.id for o in offers] == ["1"]
    assert from_amadeus({}) == []


def test_unpriceable_offer_sorts_last(make_offer):
    offer = from_amadeus({"data": [make_offer(1, "n/a", [])]})[0]
    assert total_price(offer) == float("inf")
