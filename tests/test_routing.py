"""
test_routing.py — Tests for route quoting and status normalization.

Tests:
    1. Status strings normalize case-insensitively, unknown -> IN_PROGRESS
    2. Route parsing (timing defaults, bridge name, gas)
    3. RouteSelector: first route wins, empty -> NoRouteFound, bad payload -> RouteServiceError
    4. GetQuotes is best-effort
    5. LiFiClient maps transport failures to the caller's error classes
"""

import asyncio
from unittest.mock import AsyncMock, MagicMock

import aiohttp
import pytest

from yieldrelay.errors import NoRouteFound, RouteExecutionError, RouteServiceError, TransientStatusError
from yieldrelay.models import StatusType
from yieldrelay.routing import (
    DEFAULT_STEP_DURATION_SEC,
    LiFiClient,
    RouteSelector,
    normalize_status,
    parse_route,
    parse_status,
    summarize_routes,
)

from conftest import USER


# ─── Helpers ─────────────────────────────────────────────────────────────────

def _raw_route(route_id="r1", tool="stargate", gas="1.25", durations=(120, None)):
    steps = []
    for i, d in enumerate(durations):
        estimate = {"toAmount": "9900000"}
        if d is not None:
            estimate["executionDuration"] = d
        steps.append({
            "id": f"{route_id}-s{i}",
            "type": "cross",
            "tool": tool if i == 0 else "uniswap",
            "action": {
                "fromChainId": 1, "toChainId": 137,
                "fromToken": {"address": "0xA0b86991c6218b36c1d19D4a2e9Eb0cE3606eB48"},
                "toToken": {"address": "0x3c499c542cEF5E3811e1192ce70d8cC03d5c3359"},
                "fromAmount": "10000000",
            },
            "estimate": estimate,
        })
    return {
        "id": route_id,
        "fromAmount": "10000000",
        "toAmount": "9950000",
        "toAmountMin": "9900000",
        "gasCostUSD": gas,
        "steps": steps,
    }


def _selector(config, registry, logger, routes=None, error=None):
    client = MagicMock()
    client.get_routes = AsyncMock(return_value=routes or [], side_effect=error)
    return RouteSelector(client, registry, config, logger), client


# ─── Status Normalization ───────────────────────────────────────────────────

class TestNormalizeStatus:
    @pytest.mark.parametrize("raw,expected", [
        ("DoNe", StatusType.DONE),
        ("done", StatusType.DONE),
        ("FAILED", StatusType.FAILED),
        ("pending", StatusType.PENDING),
        ("NOT_FOUND", StatusType.IN_PROGRESS),
        ("", StatusType.IN_PROGRESS),
        (None, StatusType.IN_PROGRESS),
    ])
    def test_mapping(self, raw, expected):
        assert normalize_status(raw) is expected

    def test_parse_status_payload(self):
        status = parse_status({
            "status": "DONE",
            "substatus": "COMPLETED",
            "sending": {"txHash": "0xa", "amount": "10000000"},
            "receiving": {"txHash": "0xb", "amount": "9940000"},
        })
        assert status.status is StatusType.DONE
        assert status.receiving_tx_hash == "0xb"
        assert status.to_amount == "9940000"
        assert status.error is None

    def test_parse_status_error_message(self):
        status = parse_status({"status": "FAILED", "substatusMessage": "refunded"})
        assert status.status is StatusType.FAILED
        assert status.error == "refunded"


# ─── Route Parsing ──────────────────────────────────────────────────────────

class TestParseRoute:
    def test_missing_duration_counts_as_default(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger)
        request = selector.build_request(1, 137, 10_000_000, USER)
        route = parse_route(_raw_route(durations=(120, None)), request)
        assert route.estimated_time_sec == 120 + DEFAULT_STEP_DURATION_SEC

    def test_fields(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger)
        request = selector.build_request(1, 137, 10_000_000, USER)
        route = parse_route(_raw_route(), request)
        assert route.bridge_name == "stargate"
        assert route.to_amount_min == "9900000"
        assert route.gas_cost_usd == pytest.approx(1.25)
        assert [s.tool for s in route.steps] == ["stargate", "uniswap"]
        assert route.steps[0].from_chain == 1 and route.steps[0].to_chain == 137


# ─── Route Selection ────────────────────────────────────────────────────────

class TestRouteSelector:
    def test_request_payload(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger)
        payload = selector.build_request(1, 137, 10_000_000, USER, 0.003).to_payload()
        assert payload["fromAmount"] == "10000000"
        assert payload["fromTokenAddress"] == registry.stable_asset(1)
        assert payload["toTokenAddress"] == registry.stable_asset(137)
        assert payload["options"]["slippage"] == 0.003
        assert payload["options"]["order"] == "RECOMMENDED"
        assert "stargate" in payload["options"]["bridges"]["allow"]

    def test_default_slippage(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger)
        assert selector.build_request(1, 137, 1, USER).slippage == 0.005

    async def test_first_route_wins(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, routes=[_raw_route("a", gas="9"), _raw_route("b", gas="1")])
        route = await selector.get_best_route(1, 137, 10_000_000, USER, 0.005)
        assert route.id == "a"

    async def test_empty_result_is_no_route(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, routes=[])
        with pytest.raises(NoRouteFound):
            await selector.get_best_route(1, 137, 10_000_000, USER)

    async def test_service_error_propagates(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, error=RouteServiceError("502"))
        with pytest.raises(RouteServiceError):
            await selector.get_best_route(1, 137, 10_000_000, USER)

    async def test_malformed_route_is_service_error(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, routes=[{"steps": []}])
        with pytest.raises(RouteServiceError):
            await selector.get_best_route(1, 137, 10_000_000, USER)

    async def test_quotes_respect_limit(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, routes=[_raw_route(str(i)) for i in range(5)])
        request = selector.build_request(1, 137, 10_000_000, USER)
        assert len(await selector.get_quotes(request)) == 3
        assert len(await selector.get_quotes(request, limit=2)) == 2

    async def test_quotes_swallow_errors(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger, error=RouteServiceError("down"))
        request = selector.build_request(1, 137, 10_000_000, USER)
        assert await selector.get_quotes(request) == []

    def test_summary_sorted_by_gas(self, config, registry, logger):
        selector, _ = _selector(config, registry, logger)
        request = selector.build_request(1, 137, 10_000_000, USER)
        routes = [parse_route(_raw_route("a", gas="3"), request), parse_route(_raw_route("b", gas="0.5"), request)]
        assert [row["id"] for row in summarize_routes(routes)] == ["b", "a"]


# ─── Client Error Mapping ───────────────────────────────────────────────────

class TestLiFiClient:
    def _client(self, config, logger, **request_kwargs):
        client = LiFiClient(config, logger, session=MagicMock())
        client._request = AsyncMock(**request_kwargs)
        return client

    async def test_routes_transport_error(self, config, logger, registry):
        client = self._client(config, logger, side_effect=aiohttp.ClientConnectionError("reset"))
        selector = RouteSelector(client, registry, config, logger)
        with pytest.raises(RouteServiceError) as exc:
            await client.get_routes(selector.build_request(1, 137, 1, USER))
        assert isinstance(exc.value.__cause__, aiohttp.ClientConnectionError)

    async def test_routes_empty_payload(self, config, logger, registry):
        client = self._client(config, logger, return_value={"routes": []})
        selector = RouteSelector(client, registry, config, logger)
        assert await client.get_routes(selector.build_request(1, 137, 1, USER)) == []

    async def test_status_timeout_is_transient(self, config, logger):
        client = self._client(config, logger, side_effect=asyncio.TimeoutError())
        with pytest.raises(TransientStatusError):
            await client.get_status("0xabc", 1, 137)

    async def test_status_params(self, config, logger):
        client = self._client(config, logger, return_value={"status": "PENDING"})
        status = await client.get_status("0xabc", 1, 137, bridge="across")
        assert status.status is StatusType.PENDING
        client._request.assert_awaited_once_with(
            "GET", "/status", params={"txHash": "0xabc", "fromChain": "1", "toChain": "137", "bridge": "across"}
        )

    async def test_step_transaction_error(self, config, logger):
        client = self._client(config, logger, side_effect=aiohttp.ClientConnectionError("reset"))
        with pytest.raises(RouteExecutionError):
            await client.get_step_transaction({"id": "s0"})

    def test_api_key_header(self, config, logger):
        config['routing']['api_key'] = "secret"
        client = LiFiClient(config, logger, session=MagicMock())
        assert client._headers()["x-lifi-api-key"] == "secret"

    async def test_shutdown_leaves_injected_session_open(self, config, logger):
        session = MagicMock()
        session.close = AsyncMock()
        client = LiFiClient(config, logger, session=session)
        await client.shutdown()
        session.close.assert_not_awaited()
