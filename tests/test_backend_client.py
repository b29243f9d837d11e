"""Tests for the backend HTTP client."""
import json

import httpx
import pytest

from paysync.services.backend_client import BackendClient
from paysync.utils.errors import AuthError, MalformedDataError, TransientError


def _client(settings, handler) -> BackendClient:
    return BackendClient(settings, transport=httpx.MockTransport(handler))


@pytest.mark.anyio
async def test_get_bid_is_cache_busted(backend_client, backend):
    backend.set_milestone(7, 0, {"safeTxHash": "0xabc"})

    first = await backend_client.get_bid(7)
    second = await backend_client.get_bid(7)

    assert first.bid_id == 7
    assert first.milestone_at(0) == {"safeTxHash": "0xabc"}
    assert second.milestone_at(1) is None

    requests = [r for r in backend.requests if r.url.path == "/bids/7"]
    assert len(requests) == 2
    for request in requests:
        assert request.url.params.get("_ts")
        assert request.headers["cache-control"] == "no-store"
        assert request.headers["authorization"] == "Bearer backend-token"
    assert requests[0].url.params["_ts"] != requests[1].url.params["_ts"]


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [401, 403])
async def test_auth_statuses_raise_auth_error(settings, status_code):
    async with _client(settings, lambda request: httpx.Response(status_code)) as client:
        with pytest.raises(AuthError) as excinfo:
            await client.get_bid(1)
    assert excinfo.value.status_code == status_code


@pytest.mark.anyio
@pytest.mark.parametrize("status_code", [404, 429, 500, 503])
async def test_other_failures_are_transient(settings, status_code):
    def handler(request):
        return httpx.Response(status_code, json={"error": "Bid service unavailable"})

    async with _client(settings, handler) as client:
        with pytest.raises(TransientError) as excinfo:
            await client.get_bid(1)
    assert excinfo.value.status_code == status_code
    assert excinfo.value.message == "Bid service unavailable"


@pytest.mark.anyio
async def test_plain_text_errors_are_truncated(settings):
    def handler(request):
        return httpx.Response(502, text="x" * 1000)

    async with _client(settings, handler) as client:
        with pytest.raises(TransientError) as excinfo:
            await client.reconcile_safe()
    assert len(excinfo.value.message) == 400


@pytest.mark.anyio
async def test_transport_errors_are_transient(settings):
    def handler(request):
        raise httpx.ConnectError("connection refused", request=request)

    async with _client(settings, handler) as client:
        with pytest.raises(TransientError):
            await client.reconcile_safe()


@pytest.mark.anyio
async def test_timeouts_are_transient(settings):
    def handler(request):
        raise httpx.ReadTimeout("too slow", request=request)

    async with _client(settings, handler) as client:
        with pytest.raises(TransientError) as excinfo:
            await client.get_bid(3)
    assert "timeout" in excinfo.value.message.lower()


@pytest.mark.anyio
async def test_non_object_bid_payload_is_malformed(settings):
    async with _client(settings, lambda request: httpx.Response(200, json=[1, 2, 3])) as client:
        with pytest.raises(MalformedDataError):
            await client.get_bid(1)


@pytest.mark.anyio
async def test_reconcile_accepts_empty_body(settings):
    async with _client(settings, lambda request: httpx.Response(204)) as client:
        assert await client.reconcile_safe() == {}


@pytest.mark.anyio
async def test_pay_milestone_posts_index_and_method(backend_client, backend):
    body = await backend_client.pay_milestone(4, 2, "eoa")

    assert body == {"ok": True, "queued": True}
    request = backend.requests[-1]
    assert request.method == "POST"
    assert request.url.path == "/bids/4/pay-milestone"
    assert json.loads(request.read()) == {"milestoneIndex": 2, "method": "eoa"}


@pytest.mark.anyio
async def test_pay_milestone_rejects_bad_input(backend_client, backend):
    with pytest.raises(ValueError):
        await backend_client.pay_milestone(4, 0, "wire")
    with pytest.raises(ValueError):
        await backend_client.pay_milestone(4, -1)
    assert backend.requests == []


@pytest.mark.anyio
async def test_get_safe_tx(backend_client, backend):
    backend.safe_txs["0xabc"] = {"isExecuted": True, "txHash": "0xdef"}

    executed = await backend_client.get_safe_tx("0xabc")
    unknown = await backend_client.get_safe_tx("0x999")

    assert executed.is_executed is True
    assert executed.tx_hash == "0xdef"
    assert unknown.is_executed is False
    assert unknown.tx_hash is None
