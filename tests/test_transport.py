"""Tests for the signed transport: URL building, error classification, retries."""

from __future__ import annotations

import pytest
import requests

from fakes import FakeResponse, FakeSession, parse_auth_header
from veracode_mcp.errors import AuthSetupError, BackendError, RateLimitError, TransportError
from veracode_mcp.signer import RequestSigner
from veracode_mcp.transport import NO_RETRY, RetryPolicy, Transport, classify_status, encode_query

API_ID = "a1b2c3d4e5f6a7b8c9d0e1f2a3b4c5d6"
API_KEY = "0123456789abcdef0123456789abcdef0123456789abcdef0123456789abcdef"
PATH = "/appsec/v1/applications"


def _transport(session: FakeSession, **kwargs) -> Transport:
    return Transport(RequestSigner(API_ID, API_KEY), "https://api.veracode.eu", timeout=5.0, session=session, **kwargs)


def test_encode_query_uses_percent20():
    assert encode_query({"name": "My App"}) == "name=My%20App"


def test_encode_query_lists_bools_and_none():
    qs = encode_query({"cwe": [79, 89], "new": True, "context": None, "violates_policy": False})
    assert qs == "cwe=79&cwe=89&new=true&violates_policy=false"


def test_encode_query_empty():
    assert encode_query(None) == ""
    assert encode_query({}) == ""


@pytest.mark.parametrize(
    "status,kind",
    [(401, "auth"), (403, "auth"), (404, "not_found"), (429, "rate_limit"), (500, "server"), (503, "server"), (400, "client")],
)
def test_classify_status(status, kind):
    assert classify_status(status) == kind


def test_build_url_normalizes_slashes():
    t = _transport(FakeSession())
    assert t.base_url == "https://api.veracode.eu/"
    assert t.host == "api.veracode.eu"
    assert t.build_url("/appsec/v1/applications", {"size": 5}) == "https://api.veracode.eu/appsec/v1/applications?size=5"


def test_get_signs_path_and_query(session):
    session.add(PATH, FakeResponse(200, {"_embedded": {}}))
    response = _transport(session).get("appsec/v1/applications", {"name": "My App"})
    assert response.status == 200
    assert response.meta.status == 200
    call = session.calls[0]
    assert call.raw_query == "name=My%20App"
    assert call.timeout == 5.0
    fields = parse_auth_header(call.headers["Authorization"])
    assert fields["id"] == API_ID
    assert call.headers["Accept"] == "application/json"


def test_empty_body_is_empty_dict(session):
    session.add(PATH, FakeResponse(204))
    assert _transport(session).get(PATH).data == {}


def test_not_found(session):
    session.add(PATH, FakeResponse(404, {"message": "No such application"}))
    with pytest.raises(BackendError) as info:
        _transport(session).get(PATH)
    assert info.value.status == 404
    assert info.value.kind == "not_found"
    assert "No such application" in str(info.value)


def test_auth_failure(session):
    session.add(PATH, FakeResponse(401, text="Unauthorized"))
    with pytest.raises(BackendError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "auth"
    assert str(info.value) == "Unauthorized"


def test_error_without_body_uses_reason(session):
    session.add(PATH, FakeResponse(502, reason="Bad Gateway"))
    with pytest.raises(BackendError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "server"
    assert str(info.value) == "HTTP 502 Bad Gateway"


def test_rate_limited(session):
    session.add(PATH, FakeResponse(429, {"error": "slow down"}, headers={"Retry-After": "30"}))
    with pytest.raises(RateLimitError) as info:
        _transport(session).get(PATH)
    assert info.value.retry_after == "30"
    assert info.value.status == 429
    assert len(session.calls) == 1


def test_timeout_is_network_error(session):
    session.add(PATH, requests.Timeout("read timed out"))
    with pytest.raises(TransportError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "network"
    assert "timed out" in str(info.value)


def test_connection_error_is_network_error(session):
    session.add(PATH, requests.ConnectionError("DNS failure"))
    with pytest.raises(TransportError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "network"


def test_non_json_body_is_malformed(session):
    session.add(PATH, FakeResponse(200, text="<html>maintenance</html>"))
    with pytest.raises(TransportError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "malformed"


def test_non_object_body_is_malformed(session):
    session.add(PATH, FakeResponse(200, [1, 2, 3]))
    with pytest.raises(TransportError) as info:
        _transport(session).get(PATH)
    assert info.value.kind == "malformed"


def test_bad_key_fails_before_network(session):
    t = Transport(RequestSigner(API_ID, "zz"), session=session)
    with pytest.raises(AuthSetupError):
        t.get(PATH)
    assert session.calls == []


def test_no_retry_by_default(session):
    session.add(PATH, FakeResponse(503), FakeResponse(200, {}))
    t = _transport(session)
    assert t.retry_policy is NO_RETRY
    with pytest.raises(BackendError):
        t.get(PATH)
    assert len(session.calls) == 1


def test_retry_policy_resigns_each_attempt(session):
    session.add(PATH, FakeResponse(503), FakeResponse(503), FakeResponse(200, {"ok": 1}))
    sleeps: list[float] = []
    policy = RetryPolicy(
        max_attempts=3,
        backoff=lambda attempt: 0.5 * attempt,
        retry_on=lambda exc: isinstance(exc, BackendError) and exc.kind == "server",
    )
    response = _transport(session, retry_policy=policy, sleep=sleeps.append).get(PATH)
    assert response.data == {"ok": 1}
    assert sleeps == [0.5, 1.0]
    nonces = {parse_auth_header(c.headers["Authorization"])["nonce"] for c in session.calls}
    assert len(nonces) == 3


def test_retry_policy_gives_up(session):
    session.add(PATH, FakeResponse(503))
    policy = RetryPolicy(max_attempts=2, retry_on=lambda exc: True)
    with pytest.raises(BackendError):
        _transport(session, retry_policy=policy, sleep=lambda s: None).get(PATH)
    assert len(session.calls) == 2


def test_retry_predicate_declines(session):
    session.add(PATH, FakeResponse(400, {"message": "bad"}))
    policy = RetryPolicy(max_attempts=5, retry_on=lambda exc: exc.kind == "server")
    with pytest.raises(BackendError):
        _transport(session, retry_policy=policy, sleep=lambda s: None).get(PATH)
    assert len(session.calls) == 1
