import asyncio

import httpx
import pytest

from dm_core.domain.exceptions import ServiceError, ServiceErrorKind, is_retryable
from dm_core.resilience.classifier import classify_error, classify_status, parse_retry_after


@pytest.mark.parametrize(
    "status, kind, retryable",
    [
        (401, ServiceErrorKind.AUTHENTICATION, False),
        (403, ServiceErrorKind.AUTHENTICATION, False),
        (429, ServiceErrorKind.RATE_LIMIT, True),
        (500, ServiceErrorKind.NETWORK_ERROR, True),
        (502, ServiceErrorKind.NETWORK_ERROR, True),
        (503, ServiceErrorKind.NETWORK_ERROR, True),
        (504, ServiceErrorKind.NETWORK_ERROR, True),
        (400, ServiceErrorKind.API_ERROR, False),
        (404, ServiceErrorKind.API_ERROR, False),
        (507, ServiceErrorKind.API_ERROR, True),
    ],
)
def test_classify_status(status, kind, retryable):
    err = classify_status(status, {"error": {"message": "boom"}})
    assert err.kind is kind
    assert err.retryable is retryable
    assert err.status_code == status
    assert err.message == "boom"


def test_classify_status_body_markers_override_status():
    err = classify_status(400, {"error": {"message": "bad key", "type": "invalid_api_key"}})
    assert err.kind is ServiceErrorKind.AUTHENTICATION
    err = classify_status(400, {"error": {"code": "rate_limit_exceeded"}})
    assert err.kind is ServiceErrorKind.RATE_LIMIT


def test_classify_status_rate_limit_retry_after():
    err = classify_status(429, None, retry_after="3")
    assert err.retry_after == 3.0
    assert err.message == "HTTP 429"
    assert parse_retry_after("soon") is None
    assert parse_retry_after(None) is None


def test_classify_error_transport_failures():
    req = httpx.Request("GET", "https://api.x.ai/v1/models")
    assert classify_error(httpx.ReadTimeout("slow", request=req)).kind is ServiceErrorKind.TIMEOUT
    assert classify_error(asyncio.TimeoutError()).kind is ServiceErrorKind.TIMEOUT
    err = classify_error(httpx.ConnectError("refused", request=req))
    assert err.kind is ServiceErrorKind.NETWORK_ERROR
    assert err.retryable


def test_classify_error_http_status_error():
    req = httpx.Request("POST", "https://api.x.ai/v1/chat/completions")
    resp = httpx.Response(429, json={"error": {"message": "slow down"}}, headers={"retry-after": "2"}, request=req)
    err = classify_error(httpx.HTTPStatusError("429", request=req, response=resp))
    assert err.kind is ServiceErrorKind.RATE_LIMIT
    assert err.retry_after == 2.0


def test_classify_error_cancelled_is_timeout():
    err = classify_error(asyncio.CancelledError())
    assert err.kind is ServiceErrorKind.TIMEOUT
    assert err.cancelled


def test_classify_error_unknown_is_terminal_api_error():
    err = classify_error(ValueError("weird"))
    assert err.kind is ServiceErrorKind.API_ERROR
    assert err.status_code is None
    assert not err.retryable


def test_classify_error_passes_service_error_through():
    original = ServiceError.authentication()
    assert classify_error(original) is original


def test_is_retryable_rejects_unknown_kind():
    with pytest.raises(ValueError):
        is_retryable("SOMETHING_ELSE")


def test_service_error_to_dict():
    err = ServiceError.rate_limit(retry_after=1.5)
    assert err.to_dict() == {
        "code": "RATE_LIMIT",
        "message": "Rate limit exceeded",
        "retryable": True,
        "status_code": 429,
        "retry_after": 1.5,
        "cancelled": False,
    }
    assert err.http_status == 429
