import httpx
import pytest

from app.amadeus.auth import TokenCache
from app.amadeus.client import AmadeusClient, create_amadeus_client, error_detail
from app.amadeus.fetch import AmadeusFetchClient
from app.config import Settings
from app.errors import AuthError, UpstreamError, UpstreamRejectedError, UpstreamTransientError


class StaticTokens:
    def get_token(self):
        return "TEST_TOKEN"

    def invalidate(self):
        pass


def make_client(handler):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    fetch = AmadeusFetchClient(StaticTokens(), http, "https://test.api.amadeus.com",
                               max_retries=1, sleep=lambda s: None)
    return AmadeusClient(fetch)


SEARCH = {"originDestinations": [], "travelers": [{"id": "1", "travelerType": "ADULT"}]}


def test_posts_body_to_flight_offers_with_bearer_token():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"meta": {"count": 0}, "data": []})

    payload = make_client(handler).search_flight_offers(SEARCH)

    assert payload == {"meta": {"count": 0}, "data": []}
    req = seen[0]
    assert str(req.url) == "https://test.api.amadeus.com/v2/shopping/flight-offers"
    assert req.headers["Authorization"] == "Bearer TEST_TOKEN"
    assert req.headers["Content-Type"] == "application/json"
    assert "X-HTTP-Method-Override" not in req.headers


def test_forwards_method_override():
    seen = []

    def handler(request):
        seen.append(request)
        return httpx.Response(200, json={"data": []})

    make_client(handler).search_flight_offers(SEARCH, method_override="GET")
    assert seen[0].headers["X-HTTP-Method-Override"] == "GET"


def test_rejected_search_carries_status_and_flattened_errors():
    body = {"errors": [{"status": 400, "code": 477, "title": "INVALID FORMAT",
                        "detail": "invalid query parameter format"}]}
    client = make_client(lambda req: httpx.Response(400, json=body))

    with pytest.raises(UpstreamRejectedError) as exc:
        client.search_flight_offers(SEARCH)

    assert exc.value.status_code == 400
    assert exc.value.detail == "[477] INVALID FORMAT - invalid query parameter format"


def test_unauthorized_search_is_auth_error():
    client = make_client(lambda req: httpx.Response(401, json={"errors": []}))
    with pytest.raises(AuthError):
        client.search_flight_offers(SEARCH)


def test_persistent_server_error_is_transient():
    client = make_client(lambda req: httpx.Response(503, text="maintenance"))
    with pytest.raises(UpstreamTransientError) as exc:
        client.search_flight_offers(SEARCH)
    assert exc.value.status_code == 503


def test_unparseable_success_body_is_upstream_error():
    client = make_client(lambda req: httpx.Response(200, text="<html>oops</html>"))
    with pytest.raises(UpstreamError) as exc:
        client.search_flight_offers(SEARCH)
    assert not isinstance(exc.value, (UpstreamTransientError, UpstreamRejectedError))


def test_error_detail_falls_back_to_text():
    assert error_detail(httpx.Response(500, text="plain failure")) == "plain failure"


def test_refused_token_is_dropped_from_the_cache(clock):
    exchanges = []
    searches = iter([httpx.Response(401, json={"errors": []}), httpx.Response(200, json={"data": []})])

    def handler(request):
        if request.url.path == "/v1/security/oauth2/token":
            exchanges.append(request)
            return httpx.Response(200, json={"access_token": f"tok-{len(exchanges)}", "expires_in": 1799})
        return next(searches)

    http = httpx.Client(transport=httpx.MockTransport(handler))
    tokens = TokenCache(http, "https://test.api.amadeus.com", "id", "secret", clock=clock)
    client = AmadeusClient(AmadeusFetchClient(tokens, http, "https://test.api.amadeus.com",
                                              sleep=lambda s: None))

    with pytest.raises(AuthError):
        client.search_flight_offers(SEARCH)
    assert client.search_flight_offers(SEARCH) == {"data": []}

    assert len(exchanges) == 2
    assert tokens.expires_at == clock() + 1799


def test_default_client_attempt_fits_inside_request_deadline():
    client = create_amadeus_client(Settings())
    try:
        timeout = client.fetch._http.timeout
        assert timeout.read < client.fetch.deadline_seconds
        assert timeout.connect + timeout.read < client.fetch.deadline_seconds
    finally:
        client.close()
