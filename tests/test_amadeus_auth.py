import threading
from urllib.parse import parse_qs

import httpx
import pytest

from app.amadeus.auth import TokenCache
from app.errors import AuthError


def make_cache(handler, clock):
    http = httpx.Client(transport=httpx.MockTransport(handler))
    return TokenCache(http, "https://test.api.amadeus.com", "id-123", "secret-456", clock=clock)


def token_handler(calls, expires_in=1799):
    def handler(request: httpx.Request):
        calls.append(request)
        return httpx.Response(200, json={
            "access_token": f"tok-{len(calls)}",
            "expires_in": expires_in,
            "token_type": "Bearer",
        })
    return handler


def test_exchange_posts_client_credentials_form(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)

    assert cache.get_token() == "tok-1"

    req = calls[0]
    assert req.method == "POST"
    assert str(req.url) == "https://test.api.amadeus.com/v1/security/oauth2/token"
    form = parse_qs(req.content.decode())
    assert form == {
        "grant_type": ["client_credentials"],
        "client_id": ["id-123"],
        "client_secret": ["secret-456"],
    }
    assert cache.expires_at == clock() + 1799


def test_reuses_token_with_six_minutes_left(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)
    cache.get_token()

    clock.advance(1799 - 360)  # 6 minutes remaining
    assert cache.get_token() == "tok-1"
    assert len(calls) == 1


def test_refreshes_token_with_four_minutes_left(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)
    cache.get_token()

    clock.advance(1799 - 240)  # 4 minutes remaining
    assert cache.get_token() == "tok-2"
    assert len(calls) == 2


def test_refreshes_at_exactly_five_minutes_left(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)
    cache.get_token()

    clock.advance(1799 - 300)
    assert cache.get_token() == "tok-2"


def test_concurrent_callers_share_one_refresh(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)
    tokens = []

    threads = [threading.Thread(target=lambda: tokens.append(cache.get_token())) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(calls) == 1
    assert set(tokens) == {"tok-1"}


def test_non_success_exchange_raises_auth_error(clock):
    cache = make_cache(lambda req: httpx.Response(401, json={"error": "invalid_client"}), clock)
    with pytest.raises(AuthError) as exc:
        cache.get_token()
    assert exc.value.status_code == 401


def test_missing_access_token_raises_auth_error(clock):
    cache = make_cache(lambda req: httpx.Response(200, json={"expires_in": 1799}), clock)
    with pytest.raises(AuthError):
        cache.get_token()


@pytest.mark.parametrize("body", [
    {"access_token": "t", "expires_in": "soon"},
    {"access_token": "t", "expires_in": None},
    ["not", "an", "object"],
])
def test_unusable_token_response_raises_auth_error(clock, body):
    cache = make_cache(lambda req: httpx.Response(200, json=body), clock)
    with pytest.raises(AuthError):
        cache.get_token()


def test_transport_error_raises_auth_error(clock):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    cache = make_cache(handler, clock)
    with pytest.raises(AuthError):
        cache.get_token()


def test_invalidate_forces_new_exchange(clock):
    calls = []
    cache = make_cache(token_handler(calls), clock)
    cache.get_token()
    cache.invalidate()
    assert cache.get_token() == "tok-2"
