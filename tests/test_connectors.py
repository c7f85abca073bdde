import json

import httpx
import pytest

from copytrader.connectors.arena import ArenaRestClient, apply_slippage, round_price, round_size
from copytrader.connectors.hyperliquid import HyperliquidInfoClient
from copytrader.errors import CopyTradingError, ErrorKind


def _recorder(responses):
    requests: list[httpx.Request] = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(request)
        return responses(request)

    return requests, httpx.MockTransport(handler)


@pytest.mark.asyncio
async def test_info_client_caches_mid_prices(make_settings) -> None:
    requests, transport = _recorder(lambda request: httpx.Response(200, json={"ETH": "3012.5"}))
    settings = make_settings(market_data={"price_cache_sec": 60})
    client = HyperliquidInfoClient(settings, http=httpx.AsyncClient(transport=transport))

    assert await client.get_market_price("ETH") == 3012.5
    assert await client.get_market_price("ETH") == 3012.5
    assert len(requests) == 1
    assert json.loads(requests[0].content) == {"type": "allMids"}
    await client.close()


@pytest.mark.asyncio
async def test_info_client_unknown_symbol(make_settings) -> None:
    _, transport = _recorder(lambda request: httpx.Response(200, json={"ETH": "1"}))
    client = HyperliquidInfoClient(make_settings(), http=httpx.AsyncClient(transport=transport))

    with pytest.raises(CopyTradingError) as exc_info:
        await client.get_market_price("NOPE")
    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert not exc_info.value.retryable
    await client.close()


@pytest.mark.asyncio
async def test_info_client_uses_testnet_url(make_settings) -> None:
    requests, transport = _recorder(lambda request: httpx.Response(200, json={"assetPositions": []}))
    client = HyperliquidInfoClient(make_settings(testnet=True), http=httpx.AsyncClient(transport=transport))

    await client.get_clearinghouse_state("0xabc")

    assert str(requests[0].url) == "https://api.hyperliquid-testnet.xyz/info"
    assert json.loads(requests[0].content) == {"type": "clearinghouseState", "user": "0xabc"}
    await client.close()


@pytest.mark.asyncio
async def test_info_client_rate_limit_is_retryable(make_settings) -> None:
    _, transport = _recorder(lambda request: httpx.Response(429, text="slow down"))
    client = HyperliquidInfoClient(make_settings(), http=httpx.AsyncClient(transport=transport))

    with pytest.raises(CopyTradingError) as exc_info:
        await client.get_clearinghouse_state("0xabc")
    assert exc_info.value.retryable
    assert exc_info.value.context["status_code"] == 429
    await client.close()


PAIRS = {
    "pairs": [
        {
            "provider": "HYPERLIQUID",
            "dex": "default",
            "symbol": "ETH",
            "baseAssetId": 1,
            "sizePrecision": 4,
            "pricePrecision": 1,
            "maxLeverage": 25,
            "isOnlyIsolated": False,
        },
        {
            "provider": "HYPERLIQUID",
            "dex": "default",
            "symbol": "DOGE",
            "baseAssetId": 173,
            "sizePrecision": 0,
            "pricePrecision": 5,
            "maxLeverage": 10,
            "isOnlyIsolated": False,
        },
    ]
}


def _arena(make_settings, responses):
    requests, transport = _recorder(responses)
    http = httpx.AsyncClient(base_url="https://arena.test", transport=transport)
    return requests, ArenaRestClient(make_settings(), http=http)


def _with_pairs(body: dict):
    def route(request: httpx.Request) -> httpx.Response:
        if request.url.path == "/agents/perp/trading-pairs":
            return httpx.Response(200, json=PAIRS)
        return httpx.Response(200, json=body)

    return route


@pytest.mark.asyncio
async def test_arena_place_order_body(make_settings) -> None:
    requests, arena = _arena(make_settings, _with_pairs({"statuses": [{"oid": 9}]}))

    response = await arena.place_order("ETH", "long", 0.123456789, margin_amount=10.0, leverage=5, price=3012.37)

    assert response == {"statuses": [{"oid": 9}]}
    assert [request.url.path for request in requests] == [
        "/agents/perp/trading-pairs",
        "/agents/perp/orders/place",
    ]
    body = json.loads(requests[1].content)
    order = body["orders"][0]
    assert order["direction"] == "long"
    assert order["orderType"] == "market"
    assert order["assetId"] == "1"
    assert order["size"] == 0.1234
    # 3012.37 * 1.05 = 3162.9885 -> five significant figures -> 3163.0
    assert order["price"] == 3163.0
    assert order["marginAmount"] == 10.0
    await arena.close()


@pytest.mark.asyncio
async def test_arena_pairs_are_cached(make_settings) -> None:
    requests, arena = _arena(make_settings, _with_pairs({"statuses": [{"oid": 1}]}))

    await arena.place_order("DOGE", "short", 1500.7, margin_amount=20.0, leverage=2, price=0.123456)
    await arena.place_order("ETH", "long", 1.0, margin_amount=20.0, leverage=2, price=100.0)

    paths = [request.url.path for request in requests]
    assert paths.count("/agents/perp/trading-pairs") == 1
    doge = json.loads(requests[1].content)["orders"][0]
    assert doge["assetId"] == "173"
    assert doge["size"] == 1500.0
    # 0.123456 * 0.95 = 0.1172832 -> 0.11728
    assert doge["price"] == pytest.approx(0.11728)
    await arena.close()


@pytest.mark.asyncio
async def test_arena_unknown_pair_is_not_retryable(make_settings) -> None:
    requests, arena = _arena(make_settings, _with_pairs({}))

    with pytest.raises(CopyTradingError) as exc_info:
        await arena.place_order("NOPE", "long", 1.0, margin_amount=1.0, leverage=1, price=1.0)
    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert not exc_info.value.retryable
    assert [request.url.path for request in requests] == ["/agents/perp/trading-pairs"]
    await arena.close()


@pytest.mark.asyncio
async def test_arena_size_rounding_to_zero_is_rejected(make_settings) -> None:
    requests, arena = _arena(make_settings, _with_pairs({}))

    with pytest.raises(CopyTradingError) as exc_info:
        await arena.place_order("DOGE", "long", 0.9, margin_amount=1.0, leverage=1, price=0.1)
    assert exc_info.value.kind is ErrorKind.VALIDATION
    assert len(requests) == 1
    await arena.close()


def test_round_size_truncates() -> None:
    assert round_size(0.123456789, 4) == 0.1234
    assert round_size(0.99999, 2) == 0.99
    assert round_size(1500.7, 0) == 1500.0


def test_round_price_significant_figures_and_tick() -> None:
    assert round_price(3162.9885, 1) == 3163.0
    assert round_price(98765.4321, 0) == 98765.0
    assert round_price(123456.0, 0) == 123460.0
    assert round_price(1.234567, 2) == 1.23
    assert round_price(0.0, 3) == 0.0


@pytest.mark.asyncio
async def test_arena_close_position_body(make_settings) -> None:
    requests, arena = _arena(make_settings, lambda request: httpx.Response(200, json={}))

    await arena.close_position("ETH", "long", 0.5, current_price=100.0)

    assert requests[0].url.path == "/agents/perp/orders/close-position"
    body = json.loads(requests[0].content)
    assert body["positionSide"] == "long"
    assert body["closePercent"] == 100
    await arena.close()


@pytest.mark.asyncio
async def test_arena_post_converts_newlines(make_settings) -> None:
    requests, arena = _arena(make_settings, lambda request: httpx.Response(201, text=""))

    assert await arena.create_post("line one\nline two") is None

    assert requests[0].url.path == "/agents/threads"
    assert json.loads(requests[0].content)["content"] == "line one<br>line two"
    await arena.close()


@pytest.mark.asyncio
async def test_arena_error_body_is_parsed(make_settings) -> None:
    body = {"statusCode": 400, "errorCode": "INSUFFICIENT_MARGIN", "message": "Insufficient margin"}
    _, arena = _arena(make_settings, lambda request: httpx.Response(400, json=body))

    with pytest.raises(CopyTradingError) as exc_info:
        await arena.set_leverage("ETH", 5)
    error = exc_info.value
    assert error.kind is ErrorKind.TRADING
    assert not error.retryable
    assert error.message == "HTTP 400: Insufficient margin"
    assert error.context["error_code"] == "INSUFFICIENT_MARGIN"
    await arena.close()


def test_apply_slippage() -> None:
    assert apply_slippage(100.0, "long") == pytest.approx(105.0)
    assert apply_slippage(100.0, "short") == pytest.approx(95.0)
