"""Tests for the HTTP and paper settlement clients."""
import json
from datetime import datetime, timezone

import httpx
import pytest

from execution.idempotency import build_idempotency_key
from execution.paper_settlement import PaperSettlementClient
from execution.settlement_client import HttpSettlementClient, registration_payload
from helpers import make_params
from shared.schemas import Strategy


def _strategy(**overrides) -> Strategy:
    return Strategy(id="strat-1", **make_params(**overrides).model_dump())


def _client(handler) -> HttpSettlementClient:
    return HttpSettlementClient(
        "http://settle.test/",
        api_key="secret",
        rate_limit_retry_seconds=0,
        transport=httpx.MockTransport(handler),
    )


def test_registration_payload_encoding():
    expiry = datetime(2026, 2, 1, tzinfo=timezone.utc)
    payload = registration_payload(_strategy(
        min_prediction_prob=0.05,
        min_sentiment_score=0.15,
        notional_amount=49.5,
        expiry_timestamp=expiry,
    ))
    assert payload["min_prediction_prob_bps"] == 500
    assert payload["min_sentiment_score_bps"] == 5750
    assert payload["notional_amount"] == 50
    assert payload["max_slippage_bps"] == 100
    assert payload["expiry_timestamp"] == int(expiry.timestamp())


def test_idempotency_key_is_deterministic():
    a = build_idempotency_key("s1", "execute")
    assert a == build_idempotency_key("s1", "execute")
    assert a != build_idempotency_key("s2", "execute")
    assert a != build_idempotency_key("s1", "execute", suffix="retry")
    assert len(a) == 64


@pytest.mark.asyncio
async def test_register_success():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["path"] = request.url.path
        seen["auth"] = request.headers.get("Authorization")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "external_id": 7, "tx_ref": "0xreg"})

    client = _client(handler)
    result = await client.register(_strategy())
    await client.close()

    assert result.success is True
    assert result.external_id == "7"
    assert result.tx_ref == "0xreg"
    assert seen["path"] == "/strategies/register"
    assert seen["auth"] == "Bearer secret"
    assert seen["body"]["strategy_id"] == "strat-1"


@pytest.mark.asyncio
async def test_register_http_error_is_failure():
    client = _client(lambda request: httpx.Response(500, text="down"))
    result = await client.register(_strategy())
    await client.close()
    assert result.success is False
    assert result.reason.startswith("On-chain registration failed")


@pytest.mark.asyncio
async def test_execute_sends_idempotency_key():
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["key"] = request.headers.get("Idempotency-Key")
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"success": True, "tx_ref": "0xabc"})

    client = _client(handler)
    result = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500, idempotency_key="k1")
    await client.close()

    assert result.success is True
    assert result.tx_ref == "0xabc"
    assert seen["key"] == "k1"
    assert seen["body"] == {
        "strategy_id": "strat-1",
        "market_id": "CRYPTO_BTC",
        "prob_bps": 6000,
        "sentiment_bps": 5500,
    }


@pytest.mark.asyncio
async def test_execute_retries_once_on_rate_limit():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        if len(calls) == 1:
            return httpx.Response(429)
        return httpx.Response(200, json={"success": True, "tx_ref": "0xretry"})

    client = _client(handler)
    result = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500)
    await client.close()

    assert len(calls) == 2
    assert result.success is True
    assert result.tx_ref == "0xretry"


@pytest.mark.asyncio
async def test_execute_gives_up_after_second_rate_limit():
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(429)

    client = _client(handler)
    result = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500)
    await client.close()

    assert len(calls) == 2
    assert result.success is False
    assert "429" in result.reason


@pytest.mark.asyncio
async def test_execute_rejection_and_missing_tx_ref():
    client = _client(lambda request: httpx.Response(200, json={"success": False, "reason": "E_EXPIRED"}))
    rejected = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500)
    await client.close()
    assert rejected.success is False
    assert rejected.reason == "E_EXPIRED"

    client = _client(lambda request: httpx.Response(200, json={"success": True}))
    missing = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500)
    await client.close()
    assert missing.success is False
    assert "tx_ref" in missing.reason


@pytest.mark.asyncio
async def test_execute_transport_error_is_failure():
    def handler(request: httpx.Request) -> httpx.Response:
        raise httpx.ConnectError("refused", request=request)

    client = _client(handler)
    result = await client.execute("strat-1", "CRYPTO_BTC", 6000, 5500)
    await client.close()
    assert result.success is False
    assert "refused" in result.reason


@pytest.mark.asyncio
async def test_paper_execute_requires_registration_and_replays_key():
    paper = PaperSettlementClient()
    strategy = _strategy()

    unregistered = await paper.execute(strategy.id, "CRYPTO_BTC", 6000, 5500, idempotency_key="k")
    assert unregistered.success is False
    assert unregistered.reason == "E_STRATEGY_NOT_REGISTERED"

    registration = await paper.register(strategy)
    assert registration.success is True
    assert registration.external_id == strategy.id

    first = await paper.execute(strategy.id, "CRYPTO_BTC", 6000, 5500, idempotency_key="k")
    second = await paper.execute(strategy.id, "CRYPTO_BTC", 6000, 5500, idempotency_key="k")
    assert first.tx_ref == second.tx_ref
    assert len(paper.executions) == 1
