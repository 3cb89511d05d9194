from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from fundingapi.config import Settings
from fundingapi.core.exceptions import PriceSourceError
from fundingapi.providers.price.base import PriceSource

logger = logging.getLogger(__name__)


class BinancePriceSource(PriceSource):
    """바이낸스 공개 티커 (/api/v3/ticker/price) 기반 시세 조회"""

    name = "binance"
    _TICKER_PATH = "/api/v3/ticker/price"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.BINANCE_API_BASE_URL.rstrip("/")
        self._quote_asset = settings.BINANCE_QUOTE_ASSET.upper()
        self._timeout = httpx.Timeout(settings.BINANCE_TIMEOUT_SECONDS, connect=5.0)
        self._transport = transport

    async def fetch_usd_price(self, price_symbol: str) -> Decimal:
        symbol = price_symbol.upper()
        if symbol == self._quote_asset:
            return Decimal("1")

        pair = f"{symbol}{self._quote_asset}"
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(self._TICKER_PATH, params={"symbol": pair})
        except httpx.TimeoutException as exc:
            raise PriceSourceError(symbol, "Binance request timed out") from exc
        except httpx.RequestError as exc:
            raise PriceSourceError(symbol, f"Binance request error: {exc}") from exc

        if response.status_code != 200:
            raise PriceSourceError(
                symbol, f"Binance returned HTTP {response.status_code} for {pair}"
            )

        try:
            payload = response.json()
            price = Decimal(str(payload["price"]))
        except (ValueError, KeyError, TypeError, InvalidOperation) as exc:
            raise PriceSourceError(symbol, "Unexpected Binance ticker payload") from exc

        if price <= 0:
            raise PriceSourceError(symbol, f"Non-positive price {price} for {pair}")

        logger.debug(f"Binance {pair} = {price}")
        return price
