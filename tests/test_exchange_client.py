import hashlib
import hmac
from urllib.parse import urlencode

import pytest
import requests

from market.client import BinanceClient
from shared.errors import DataSourceError, SyncCancelledError
from shared.models.models import OrderSide, TradingPair
from shared.utils.cancellation import CancelToken

KLINE = [1_700_000_000_000, "100.0", "110.0", "90.0", "105.0", "12.5", 1_700_003_599_999, "1300.0", 42, "6.0", "620.0", "0"]


class FakeResponse:
    def __init__(self, payload, status=200):
        self.payload = payload
        self.status = status

    def raise_for_status(self):
        if self.status >= 400:
            raise requests.HTTPError(f"{self.status} error")

    def json(self):
        if isinstance(self.payload, Exception):
            raise self.payload
        return self.payload


class FakeSession:
    def __init__(self, *responses):
        self.responses = list(responses)
        self.calls = []

    def request(self, method, url, params=None, headers=None, timeout=None):
        self.calls.append({"method": method, "url": url, "params": dict(params or {}), "headers": headers,
                           "timeout": timeout})
        resp = self.responses.pop(0)
        if isinstance(resp, Exception):
            raise resp
        return resp


def _client(*responses, **kwargs):
    session = FakeSession(*responses)
    kwargs.setdefault("api_key", "key")
    kwargs.setdefault("api_secret", "secret")
    return BinanceClient(base_url="https://example.test/", session=session, **kwargs), session


def test_get_candles_parses_rows_and_caps_limit():
    client, session = _client(FakeResponse([KLINE]), page_limit=500)
    candles = client.get_candles("BTCUSDT", "1h", start=1, end=2, limit=5000)
    call = session.calls[0]
    assert call["url"] == "https://example.test/api/v3/klines"
    assert call["params"] == {"symbol": "BTCUSDT", "interval": "1h", "limit": 500, "startTime": 1, "endTime": 2}
    c = candles[0]
    assert (c.open_time, c.close_time) == (1_700_000_000_000, 1_700_003_599_999)
    assert (c.open, c.high, c.low, c.close, c.volume) == (100.0, 110.0, 90.0, 105.0, 12.5)
    assert c.quote_volume == 1300.0
    assert c.taker_buy_volume == 6.0 and c.taker_buy_quote_volume == 620.0


def test_get_candles_errors_become_data_source_errors():
    client, _ = _client(
        requests.ConnectionError("boom"),
        FakeResponse([], status=429),
        FakeResponse(ValueError("bad json")),
        FakeResponse({"code": -1}),
        FakeResponse([[1, 2]]),
    )
    for _ in range(5):
        with pytest.raises(DataSourceError):
            client.get_candles("BTCUSDT", "1h")


def test_cancelled_token_short_circuits():
    client, session = _client(FakeResponse([]))
    token = CancelToken()
    token.cancel()
    with pytest.raises(SyncCancelledError):
        client.get_candles("BTCUSDT", "1h", token=token)
    assert session.calls == []


def test_signed_request_adds_signature_and_key_header():
    client, session = _client(FakeResponse({"balances": [
        {"asset": "USDT", "free": "10.5", "locked": "0"},
        {"asset": "ETH", "free": "0", "locked": "0"},
        {"asset": "BTC", "free": "0.1", "locked": "0.2"},
    ]}))
    balances = client.get_balances()
    assert [b.asset for b in balances] == ["USDT", "BTC"]
    assert balances[1].total == pytest.approx(0.3)

    call = session.calls[0]
    assert call["headers"] == {"X-MBX-APIKEY": "key"}
    params = dict(call["params"])
    signature = params.pop("signature")
    expected = hmac.new(b"secret", urlencode(params).encode(), hashlib.sha256).hexdigest()
    assert signature == expected
    assert params["recvWindow"] == 5000


def test_signed_request_requires_credentials():
    client, session = _client(FakeResponse({}), api_key=None, api_secret=None)
    with pytest.raises(DataSourceError):
        client.get_balances()
    assert session.calls == []


def test_place_market_order_uses_fill_average():
    client, session = _client(FakeResponse({
        "orderId": 12345,
        "status": "FILLED",
        "executedQty": "0.30000000",
        "transactTime": 1_700_000_000_123,
        "fills": [{"price": "100", "qty": "0.1"}, {"price": "103", "qty": "0.2"}],
    }))
    res = client.place_order(TradingPair("BTC", "USDT"), OrderSide.BUY, "market", 0.3)
    params = session.calls[0]["params"]
    assert params["type"] == "MARKET" and params["side"] == "BUY"
    assert params["quantity"] == "0.3"
    assert "price" not in params
    assert res.success and res.order_id == "12345"
    assert res.price == pytest.approx(102.0)
    assert res.quantity == pytest.approx(0.3)
    assert res.timestamp == 1_700_000_000_123


def test_place_limit_order_and_failed_status():
    client, session = _client(FakeResponse({"orderId": 1, "status": "EXPIRED", "executedQty": "0", "price": "99.5"}))
    res = client.place_order(TradingPair("BTC", "USDT"), OrderSide.SELL, "LIMIT", 1.0, 99.5)
    params = session.calls[0]["params"]
    assert params["price"] == "99.5" and params["timeInForce"] == "GTC"
    assert not res.success
    assert res.error == "order status EXPIRED"
    assert res.price == 99.5


def test_limit_order_without_price():
    client, _ = _client()
    with pytest.raises(ValueError):
        client.place_order(TradingPair("BTC", "USDT"), OrderSide.BUY, "LIMIT", 1.0)


def test_extract_price_fallbacks():
    assert BinanceClient._extract_price({"executedQty": "2", "cummulativeQuoteQty": "210"}) == 105.0
    assert BinanceClient._extract_price({"price": "0"}) is None
