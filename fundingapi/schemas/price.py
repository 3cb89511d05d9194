from datetime import datetime
from decimal import Decimal
from enum import Enum

from pydantic import BaseModel


class QuoteKind(str, Enum):
    LIVE = "live"
    CACHED = "cached"
    STALE = "stale"  # 갱신 실패, 마지막 캐시 사용
    FALLBACK = "fallback"  # 하드코딩된 비상 가격
    PEGGED = "pegged"  # 스테이블코인 1 USD 고정


class PriceQuote(BaseModel):
    symbol: str
    price: Decimal
    kind: QuoteKind
    fetched_at: datetime

    @property
    def low_confidence(self) -> bool:
        return self.kind == QuoteKind.FALLBACK


class UsdConversion(BaseModel):
    symbol: str
    raw_value: str
    units: Decimal
    usd_amount: Decimal
    quote: PriceQuote

    @property
    def low_confidence(self) -> bool:
        return self.quote.low_confidence
