"""Binance 现货 REST 客户端（行情 K 线 + 下单 + 余额）。

- 公共接口（/api/v3/klines）无需签名；
- 私有接口使用 HMAC-SHA256 签名（timestamp + signature + X-MBX-APIKEY）；
- 网络/HTTP/解析失败统一抛 DataSourceError，由上层决定降级或转换。
"""

from __future__ import annotations

import hashlib
import hmac
import time
from typing import Any
from urllib.parse import urlencode

import requests

from shared.errors import DataSourceError
from shared.models.models import AccountBalance, Candle, OrderResult, OrderSide, TradingPair
from shared.utils.cancellation import CancelToken, effective_timeout
from shared.utils.logging import setup_logger

MAX_KLINE_LIMIT = 1000


class BinanceClient:
    """Binance REST 客户端。

    Parameters
    ----------
    base_url:
        REST 根地址（mainnet/testnet）。
    api_key / api_secret:
        私有接口凭证；仅拉 K 线时可为空。
    timeout_secs:
        单次请求超时；若传入 CancelToken 则取二者较小值。
    """

    def __init__(
        self,
        *,
        base_url: str = "https://api.binance.com",
        api_key: str | None = None,
        api_secret: str | None = None,
        recv_window: int = 5000,
        timeout_secs: float = 5.0,
        page_limit: int = MAX_KLINE_LIMIT,
        session: requests.Session | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key or ""
        self.api_secret = (api_secret or "").encode()
        self.recv_window = recv_window
        self.timeout_secs = timeout_secs
        self.page_limit = min(page_limit, MAX_KLINE_LIMIT)
        self.session = session or requests.Session()
        self.logger = setup_logger("binance-client")

    # ---- HTTP ----

    def _sign(self, params: dict) -> str:
        qs = urlencode(params)
        return hmac.new(self.api_secret, qs.encode(), hashlib.sha256).hexdigest()

    def _request(
        self,
        method: str,
        path: str,
        params: dict,
        *,
        signed: bool = False,
        token: CancelToken | None = None,
    ) -> Any:
        if token is not None:
            token.raise_if_cancelled()
        headers = {}
        if signed:
            if not self.api_key or not self.api_secret:
                raise DataSourceError("api_key/api_secret required for signed endpoint")
            params["recvWindow"] = self.recv_window
            params["timestamp"] = int(time.time() * 1000)
            params["signature"] = self._sign(params)
            headers["X-MBX-APIKEY"] = self.api_key
        url = f"{self.base_url}{path}"
        timeout = effective_timeout(self.timeout_secs, token)
        try:
            resp = self.session.request(method, url, params=params, headers=headers, timeout=timeout)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as exc:
            raise DataSourceError(f"{method} {path} failed: {exc}") from exc
        except ValueError as exc:
            raise DataSourceError(f"{method} {path} returned invalid JSON: {exc}") from exc

    def ping(self) -> bool:
        self._request("GET", "/api/v3/ping", {})
        return True

    # ---- 行情 ----

    @staticmethod
    def _parse_kline(symbol: str, timeframe: str, row: list) -> Candle:
        return Candle(
            symbol=symbol,
            timeframe=timeframe,
            open_time=int(row[0]),
            open=float(row[1]),
            high=float(row[2]),
            low=float(row[3]),
            close=float(row[4]),
            volume=float(row[5]),
            close_time=int(row[6]),
            quote_volume=float(row[7]),
            taker_buy_volume=float(row[9]),
            taker_buy_quote_volume=float(row[10]),
        )

    def get_candles(
        self,
        symbol: str,
        timeframe: str,
        start: int | None = None,
        end: int | None = None,
        limit: int = 500,
        token: CancelToken | None = None,
    ) -> list[Candle]:
        """单次请求拉取 K 线（升序）。limit 超过交易所上限时截断。"""
        params: dict[str, Any] = {
            "symbol": symbol,
            "interval": timeframe,
            "limit": max(1, min(int(limit), self.page_limit)),
        }
        if start is not None:
            params["startTime"] = int(start)
        if end is not None:
            params["endTime"] = int(end)
        data = self._request("GET", "/api/v3/klines", params, token=token)
        if not isinstance(data, list):
            raise DataSourceError(f"unexpected klines payload: {type(data).__name__}")
        try:
            return [self._parse_kline(symbol, timeframe, row) for row in data]
        except (IndexError, TypeError, ValueError) as exc:
            raise DataSourceError(f"malformed kline row: {exc}") from exc

    # ---- 账户/交易 ----

    def get_balances(self, token: CancelToken | None = None) -> list[AccountBalance]:
        data = self._request("GET", "/api/v3/account", {}, signed=True, token=token)
        balances = []
        for b in data.get("balances", []):
            free = float(b.get("free") or 0.0)
            locked = float(b.get("locked") or 0.0)
            if free or locked:
                balances.append(AccountBalance(asset=b["asset"], free=free, locked=locked))
        return balances

    def get_last_price(self, symbol: str, token: CancelToken | None = None) -> float:
        data = self._request("GET", "/api/v3/ticker/price", {"symbol": symbol}, token=token)
        return float(data["price"])

    def place_order(
        self,
        trading_pair: TradingPair,
        side: OrderSide,
        order_type: str,
        quantity: float,
        price: float | None = None,
        token: CancelToken | None = None,
    ) -> OrderResult:
        """下单并把交易所回报转换为 OrderResult（成交均价取自 fills）。"""
        order_type = order_type.upper()
        params: dict[str, Any] = {
            "symbol": trading_pair.symbol,
            "side": "BUY" if side == OrderSide.BUY else "SELL",
            "type": order_type,
            "quantity": f"{quantity:.8f}".rstrip("0").rstrip("."),
            "newOrderRespType": "FULL",
        }
        if order_type == "LIMIT":
            if price is None:
                raise ValueError("LIMIT order requires price")
            params["price"] = f"{price:.8f}".rstrip("0").rstrip(".")
            params["timeInForce"] = "GTC"

        self.logger.info("Place order: %s %s %s qty=%s", trading_pair.symbol, params["side"], order_type, quantity)
        res = self._request("POST", "/api/v3/order", params, signed=True, token=token)
        exec_qty = float(res.get("executedQty") or quantity)
        exec_price = self._extract_price(res)
        if exec_price is None:
            exec_price = price if price is not None else 0.0
        status = str(res.get("status") or "")
        success = status in {"FILLED", "PARTIALLY_FILLED", "NEW"}
        return OrderResult(
            order_id=str(res.get("orderId", "")),
            trading_pair=trading_pair,
            side=side,
            quantity=exec_qty,
            price=exec_price,
            timestamp=int(res.get("transactTime") or time.time() * 1000),
            success=success,
            error=None if success else f"order status {status or 'unknown'}",
        )

    @staticmethod
    def _extract_price(order_res: dict) -> float | None:
        """优先用 fills 的成交量加权均价，其次 cummulativeQuoteQty/executedQty。"""
        fills = order_res.get("fills") or []
        total_qty = 0.0
        total_quote = 0.0
        for f in fills:
            qty = float(f.get("qty") or 0.0)
            total_qty += qty
            total_quote += qty * float(f.get("price") or 0.0)
        if total_qty > 0:
            return total_quote / total_qty
        exec_qty = float(order_res.get("executedQty") or 0.0)
        quote = float(order_res.get("cummulativeQuoteQty") or 0.0)
        if exec_qty > 0 and quote > 0:
            return quote / exec_qty
        price = order_res.get("price")
        if price and float(price) > 0:
            return float(price)
        return None
