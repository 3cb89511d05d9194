from abc import ABC, abstractmethod
from decimal import Decimal


class PriceSource(ABC):
    """외부 시세 제공자. 실패 시 PriceSourceError 를 발생시킵니다."""

    name: str = "unknown"

    @abstractmethod
    async def fetch_usd_price(self, price_symbol: str) -> Decimal:
        """1 단위당 USD 가격"""
