"""
가격 오라클

- 심볼별 메모리 캐시 (신선도 창 안에서는 캐시 사용)
- 갱신 실패 시 마지막 캐시(stale) → 하드코딩 비상 가격(fallback, low-confidence) 순
- 가격이 전혀 없으면 PriceUnavailableError (일시적 오류로 취급)
"""

import logging
from dataclasses import dataclass
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import Callable, Dict, Optional

from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.exceptions import PriceSourceError, PriceUnavailableError
from fundingapi.providers.price.base import PriceSource
from fundingapi.schemas.price import PriceQuote, QuoteKind, UsdConversion
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")
ONE = Decimal("1")


@dataclass
class _CacheEntry:
    price: Decimal
    fetched_at: datetime


class PriceOracle:
    def __init__(
        self,
        source: PriceSource,
        registry: CurrencyRegistry,
        fallback_prices: Dict[str, Decimal],
        freshness_seconds: int = 60,
        clock: Callable[[], datetime] = get_utc_now,
    ):
        self._source = source
        self._registry = registry
        self._fallback = {k.upper(): Decimal(v) for k, v in fallback_prices.items()}
        self._freshness = freshness_seconds
        self._clock = clock
        self._cache: Dict[str, _CacheEntry] = {}

    @property
    def source_name(self) -> str:
        return self._source.name

    def cached(self, symbol: str) -> Optional[Decimal]:
        entry = self._cache.get(symbol.upper())
        return entry.price if entry else None

    async def quote(self, symbol: str) -> PriceQuote:
        symbol = symbol.upper()
        policy = self._registry.get(symbol)
        if policy is None:
            raise PriceUnavailableError(f"Unsupported currency {symbol}")

        now = self._clock()
        if policy.pegged:
            return PriceQuote(symbol=symbol, price=ONE, kind=QuoteKind.PEGGED, fetched_at=now)

        entry = self._cache.get(symbol)
        if entry and (now - entry.fetched_at).total_seconds() < self._freshness:
            return PriceQuote(
                symbol=symbol, price=entry.price, kind=QuoteKind.CACHED, fetched_at=entry.fetched_at
            )

        try:
            price = await self._source.fetch_usd_price(policy.price_symbol)
        except PriceSourceError as e:
            return self._degraded_quote(symbol, entry, e)

        self._cache[symbol] = _CacheEntry(price=price, fetched_at=now)
        return PriceQuote(symbol=symbol, price=price, kind=QuoteKind.LIVE, fetched_at=now)

    def _degraded_quote(
        self, symbol: str, entry: Optional[_CacheEntry], error: PriceSourceError
    ) -> PriceQuote:
        if entry is not None:
            logger.warning(
                f"Price refresh failed for {symbol} ({error.message}); "
                f"using stale cache {entry.price} from {entry.fetched_at.isoformat()}"
            )
            return PriceQuote(
                symbol=symbol, price=entry.price, kind=QuoteKind.STALE, fetched_at=entry.fetched_at
            )

        fallback = self._fallback.get(symbol)
        if fallback is not None:
            logger.warning(
                f"Price refresh failed for {symbol} ({error.message}); "
                f"using last-resort price {fallback} (low confidence)"
            )
            return PriceQuote(
                symbol=symbol, price=fallback, kind=QuoteKind.FALLBACK, fetched_at=self._clock()
            )

        raise PriceUnavailableError(f"No price available for {symbol}: {error.message}")

    def _units(self, raw_value: str, symbol: str) -> Decimal:
        policy = self._registry.require(symbol)
        return Decimal(int(raw_value)).scaleb(-policy.decimals)

    async def convert(self, raw_value: str, symbol: str) -> UsdConversion:
        """체인 최소 단위 금액을 USD(센트 단위, half-up)로 환산합니다."""
        symbol = symbol.upper()
        quote = await self.quote(symbol)
        units = self._units(raw_value, symbol)
        usd_amount = (units * quote.price).quantize(CENTS, rounding=ROUND_HALF_UP)
        return UsdConversion(
            symbol=symbol,
            raw_value=str(raw_value),
            units=units,
            usd_amount=usd_amount,
            quote=quote,
        )

    async def usd_to_raw(self, usd_amount: Decimal, symbol: str) -> str:
        """USD 금액에 해당하는 체인 최소 단위 금액 (시뮬레이션/테스트 이벤트용)"""
        symbol = symbol.upper()
        policy = self._registry.require(symbol)
        quote = await self.quote(symbol)
        units = Decimal(usd_amount) / quote.price
        raw = units.scaleb(policy.decimals).quantize(ONE, rounding=ROUND_HALF_UP)
        return str(int(raw))
