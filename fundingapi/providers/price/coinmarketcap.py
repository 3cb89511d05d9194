from __future__ import annotations

import logging
from decimal import Decimal, InvalidOperation
from typing import Optional

import httpx

from fundingapi.config import Settings
from fundingapi.core.exceptions import PriceSourceError
from fundingapi.providers.price.base import PriceSource

logger = logging.getLogger(__name__)


class CoinMarketCapPriceSource(PriceSource):
    """CoinMarketCap quotes/latest 기반 시세 조회 (API 키 필요)"""

    name = "coinmarketcap"
    _QUOTES_PATH = "/cryptocurrency/quotes/latest"

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.COINMARKETCAP_BASE_URL.rstrip("/")
        self._api_key = settings.COINMARKETCAP_API_KEY
        self._timeout = httpx.Timeout(10.0, connect=5.0)
        self._transport = transport

    async def fetch_usd_price(self, price_symbol: str) -> Decimal:
        symbol = price_symbol.upper()
        if not self._api_key:
            raise PriceSourceError(symbol, "COINMARKETCAP_API_KEY is not configured")

        headers = {"X-CMC_PRO_API_KEY": self._api_key, "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(
                    self._QUOTES_PATH,
                    params={"symbol": symbol, "convert": "USD"},
                    headers=headers,
                )
        except httpx.RequestError as exc:
            raise PriceSourceError(symbol, f"CoinMarketCap request error: {exc}") from exc

        if response.status_code != 200:
            raise PriceSourceError(
                symbol, f"CoinMarketCap returned HTTP {response.status_code}"
            )

        try:
            data = response.json()["data"][symbol]
            # 동일 심볼이 여러 개면 리스트로 옴
            if isinstance(data, list):
                data = data[0]
            price = Decimal(str(data["quote"]["USD"]["price"]))
        except (ValueError, KeyError, TypeError, IndexError, InvalidOperation) as exc:
            raise PriceSourceError(symbol, "Unexpected CoinMarketCap payload") from exc

        if price <= 0:
            raise PriceSourceError(symbol, f"Non-positive price {price}")
        return price
