"""
투자 원금(total_invested) 구간별 일일 수익률 테이블.

정산이 끝날 때마다 새 원금으로 수익률을 다시 계산합니다.
테이블은 시작 시 한 번 로드되며 이후 변경되지 않습니다.
"""

from dataclasses import dataclass
from decimal import Decimal
from typing import Iterable, Optional, Tuple


@dataclass(frozen=True)
class YieldTier:
    min_amount: Decimal
    max_amount: Optional[Decimal]  # None = 상한 없음
    daily_rate: Decimal


DEFAULT_YIELD_TIERS: Tuple[YieldTier, ...] = tuple(
    YieldTier(Decimal(lo), Decimal(hi) if hi is not None else None, Decimal(rate))
    for lo, hi, rate in [
        ("100", "500", "1.5"),
        ("600", "1000", "2.5"),
        ("1001", "2000", "3.5"),
        ("2001", "3000", "4.5"),
        ("3001", "4000", "5.5"),
        ("4001", "5000", "6.5"),
        ("5001", "10000", "7.5"),
        ("10001", "20000", "8.5"),
        ("20001", "30000", "9.5"),
        ("30001", "40000", "10.5"),
        ("40001", "50000", "11.5"),
        ("50001", "100000", "12.5"),
        ("100001", "250000", "13.5"),
        ("250001", "500000", "14.5"),
        ("500001", None, "15.0"),
    ]
)


class YieldTierTable:
    """Ordered, non-overlapping yield bands."""

    def __init__(self, tiers: Iterable[YieldTier]):
        ordered = tuple(sorted(tiers, key=lambda t: t.min_amount))
        if not ordered:
            raise ValueError("Yield tier table must contain at least one band")

        for prev, cur in zip(ordered, ordered[1:]):
            if prev.max_amount is None or prev.max_amount >= cur.min_amount:
                raise ValueError(
                    f"Overlapping yield tiers: {prev.min_amount}-{prev.max_amount} "
                    f"and {cur.min_amount}-{cur.max_amount}"
                )
        for tier in ordered:
            if tier.max_amount is not None and tier.max_amount < tier.min_amount:
                raise ValueError(f"Tier max below min: {tier}")

        self._tiers = ordered

    @classmethod
    def default(cls) -> "YieldTierTable":
        return cls(DEFAULT_YIELD_TIERS)

    @property
    def tiers(self) -> Tuple[YieldTier, ...]:
        return self._tiers

    def rate_for(self, total_invested: Decimal) -> Decimal:
        """원금에 해당하는 일일 수익률(%)을 반환합니다.

        - 최저 구간 최소값 미만이면 0
        - 구간 사이의 빈 영역이면 바로 아래 구간의 수익률
        - 마지막 구간은 상한이 없음
        """
        amount = Decimal(total_invested)
        rate = Decimal("0")
        for tier in self._tiers:
            if amount < tier.min_amount:
                break
            rate = tier.daily_rate
        return rate
