"""Tests for the delivery retry policy."""

import logging

import httpx
import pytest

from mailflow.services import http_service
from mailflow.services.http_service import RetryPolicy, request_with_retries

NO_WAIT = RetryPolicy(max_attempts=3, base_delay=0, max_delay=0)


def _request() -> httpx.Request:
    return httpx.Request("POST", "https://delivery.example.com")


@pytest.mark.asyncio
async def test_request_with_retries_retries_on_status():
    req = _request()
    responses = [
        httpx.Response(503, request=req),
        httpx.Response(200, json={"success": True}, request=req),
    ]
    calls = {"count": 0}

    async def request_fn():
        calls["count"] += 1
        return responses.pop(0)

    response = await request_with_retries(request_fn, NO_WAIT)

    assert calls["count"] == 2
    assert response.status_code == 200


@pytest.mark.asyncio
async def test_request_with_retries_returns_last_retryable_response():
    calls = {"count": 0}

    async def request_fn():
        calls["count"] += 1
        return httpx.Response(500, request=_request())

    response = await request_with_retries(request_fn, NO_WAIT)

    assert calls["count"] == 3
    assert response.status_code == 500


@pytest.mark.asyncio
async def test_request_with_retries_does_not_retry_client_errors():
    calls = {"count": 0}

    async def request_fn():
        calls["count"] += 1
        return httpx.Response(400, request=_request())

    response = await request_with_retries(request_fn, NO_WAIT)

    assert calls["count"] == 1
    assert response.status_code == 400


@pytest.mark.asyncio
async def test_request_with_retries_raises_after_max_attempts():
    calls = {"count": 0}

    async def request_fn():
        calls["count"] += 1
        raise httpx.ConnectError("boom", request=_request())

    with pytest.raises(httpx.RequestError):
        await request_with_retries(
            request_fn, RetryPolicy(max_attempts=2, base_delay=0, max_delay=0)
        )

    assert calls["count"] == 2


@pytest.mark.asyncio
async def test_request_with_retries_waits_for_retry_after(monkeypatch):
    slept: list[float] = []

    async def fake_sleep(delay):
        slept.append(delay)

    monkeypatch.setattr(http_service.asyncio, "sleep", fake_sleep)
    responses = [
        httpx.Response(429, headers={"Retry-After": "2"}, request=_request()),
        httpx.Response(200, request=_request()),
    ]

    async def request_fn():
        return responses.pop(0)

    response = await request_with_retries(
        request_fn, RetryPolicy(max_attempts=2, base_delay=0.1, max_delay=10)
    )

    assert response.status_code == 200
    assert slept == [2.0]


def test_retry_after_is_capped_by_max_delay():
    policy = RetryPolicy(base_delay=0.5, max_delay=4.0)
    response = httpx.Response(503, headers={"Retry-After": "120"}, request=_request())

    assert policy.delay_for(0, response) == 4.0


def test_backoff_grows_and_stays_bounded():
    policy = RetryPolicy(base_delay=0.5, max_delay=4.0)

    assert 0.5 <= policy.delay_for(0) <= 0.75
    assert 1.0 <= policy.delay_for(1) <= 1.5
    assert 4.0 <= policy.delay_for(10) <= 6.0
    assert NO_WAIT.delay_for(3) == 0.0


def test_policy_for_delivery_reads_settings(monkeypatch):
    monkeypatch.setattr(http_service.settings, "DELIVERY_HTTP_ATTEMPTS", 5)
    monkeypatch.setattr(http_service.settings, "DELIVERY_RETRY_BASE_DELAY_SECONDS", 0.2)
    monkeypatch.setattr(http_service.settings, "DELIVERY_RETRY_MAX_DELAY_SECONDS", 1.0)

    policy = RetryPolicy.for_delivery()

    assert (policy.max_attempts, policy.base_delay, policy.max_delay) == (5, 0.2, 1.0)


@pytest.mark.asyncio
async def test_retry_warnings_carry_log_context(caplog):
    responses = [httpx.Response(502, request=_request()), httpx.Response(200, request=_request())]

    async def request_fn():
        return responses.pop(0)

    with caplog.at_level(logging.WARNING, logger=http_service.__name__):
        await request_with_retries(request_fn, NO_WAIT, log_context={"queue_item_id": "item-1"})

    [record] = caplog.records
    assert record.queue_item_id == "item-1"
    assert "502" in record.getMessage()
