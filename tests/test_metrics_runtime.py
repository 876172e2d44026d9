import json

from fastapi.testclient import TestClient

from app.obs.context import cache_handle_var
from app.obs.metrics import get_counter, get_metrics_snapshot, inc_counter, reset_metrics, timed


def test_metrics_capture_request_and_histogram():
    from main import app
    client = TestClient(app)

    # Hit health to generate a request metric
    r = client.get("/health")
    assert r.status_code == 200

    # Fetch metrics snapshot
    m = client.get("/metrics")
    assert m.status_code == 200
    data = m.json()

    counters = data.get("counters", [])
    assert any(
        c.get("name") == "requests_total" and c.get("labels", {}).get("route") == "/health" and c.get("labels", {}).get("status") == "200"
        for c in counters
    )

    hists = data.get("histograms", [])
    assert any(
        h.get("name") == "request_latency_ms" and h.get("labels", {}).get("route") == "/health" and isinstance(h.get("counts"), list)
        for h in hists
    )


def test_counters_and_timer():
    reset_metrics()
    inc_counter("flight_cache_reads_total", {"status": "hit"})
    inc_counter("flight_cache_reads_total", {"status": "hit"})
    assert get_counter("flight_cache_reads_total", {"status": "hit"}) == 2
    assert get_counter("flight_cache_reads_total", {"status": "miss"}) == 0

    with timed("amadeus_search_latency_ms"):
        pass
    hist = [h for h in get_metrics_snapshot()["histograms"] if h["name"] == "amadeus_search_latency_ms"]
    assert sum(hist[0]["counts"]) == 1


def test_logger_redacts_handle(capsys):
    from app.obs.logger import log_event
    log_event("step", handle="0b6f7c1e-3a52-4c1b-9e0d-5a1f2b3c9f41", step="unit-test")
    line = json.loads(capsys.readouterr().out.strip())
    assert line["cache_handle"] == "***9f41"
    assert "0b6f7c1e" not in json.dumps(line)


def test_logger_picks_handle_from_context(capsys):
    from app.obs.logger import log_event
    token = cache_handle_var.set("c0ffee00-0000-4000-8000-00000000abcd")
    try:
        log_event("filtered")
    finally:
        cache_handle_var.reset(token)
    line = json.loads(capsys.readouterr().out.strip())
    assert line["cache_handle"] == "***abcd"
    assert line["level"] == "INFO"
