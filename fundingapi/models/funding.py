import enum
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy import (
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.orm import Mapped, mapped_column

from fundingapi.models.base import BaseModel, BigIntegerPK


class FundingStatusEnum(enum.Enum):
    PENDING = "pending"
    CHAIN_OBSERVED = "chain_observed"
    CONFIRMED = "confirmed"
    SETTLED = "settled"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self in (FundingStatusEnum.SETTLED, FundingStatusEnum.FAILED)


# 허용되는 상태 전이 (그 외의 전이는 모두 거부)
ALLOWED_TRANSITIONS = {
    FundingStatusEnum.PENDING: {
        FundingStatusEnum.CHAIN_OBSERVED,
        FundingStatusEnum.FAILED,
    },
    FundingStatusEnum.CHAIN_OBSERVED: {
        FundingStatusEnum.CONFIRMED,
        FundingStatusEnum.FAILED,
    },
    FundingStatusEnum.CONFIRMED: {FundingStatusEnum.SETTLED},
    FundingStatusEnum.SETTLED: set(),
    FundingStatusEnum.FAILED: set(),
}

IN_FLIGHT_STATUSES = (
    FundingStatusEnum.PENDING,
    FundingStatusEnum.CHAIN_OBSERVED,
    FundingStatusEnum.CONFIRMED,
)


class FundingRequest(BaseModel):
    """
    사용자의 입금 의사(펀딩 요청) 레코드

    - 생성 시 pending 상태
    - observed_chain_hash 는 한 번 설정되면 전체 테이블에서 유일 (중복 정산 방지)
    - 감사 추적을 위해 삭제하지 않음
    """

    __tablename__ = "funding_requests"
    __table_args__ = (
        Index(
            "idx_funding_requests_wallet_status",
            "destination_wallet_address",
            "status",
            "created_at",
        ),
        Index("idx_funding_requests_user", "user_id"),
    )

    id: Mapped[int] = mapped_column(BigIntegerPK, primary_key=True, autoincrement=True)
    user_id: Mapped[int] = mapped_column(ForeignKey("users.id"), nullable=False)
    cryptocurrency: Mapped[str] = mapped_column(String(10), nullable=False)
    expected_usd_amount: Mapped[Decimal] = mapped_column(Numeric(18, 2), nullable=False)
    destination_wallet_address: Mapped[str] = mapped_column(String(128), nullable=False)
    observed_chain_hash: Mapped[Optional[str]] = mapped_column(
        String(128), unique=True, nullable=True
    )
    observed_confirmations: Mapped[int] = mapped_column(Integer, default=0, nullable=False)
    required_confirmations: Mapped[int] = mapped_column(Integer, nullable=False)
    actual_usd_amount: Mapped[Optional[Decimal]] = mapped_column(
        Numeric(18, 2), nullable=True
    )  # 검증된 입금액 (정산 시 이 금액으로 적립)
    price_source: Mapped[Optional[str]] = mapped_column(String(20), nullable=True)
    status: Mapped[FundingStatusEnum] = mapped_column(
        Enum(
            FundingStatusEnum,
            name="funding_status",
            values_callable=lambda e: [m.value for m in e],
        ),
        default=FundingStatusEnum.PENDING,
        nullable=False,
    )
    failure_reason: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    observed_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    resolved_at: Mapped[Optional[datetime]] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    def __repr__(self):
        return (
            f"<FundingRequest(id={self.id}, user_id={self.user_id}, "
            f"{self.cryptocurrency} ${self.expected_usd_amount}, status={self.status.value})>"
        )
