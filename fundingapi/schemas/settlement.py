from decimal import Decimal
from enum import Enum
from typing import Optional

from pydantic import BaseModel

from fundingapi.models.funding import FundingStatusEnum


class RejectionCode(str, Enum):
    NO_MATCHING_REQUEST = "no_matching_request"
    HASH_MISMATCH = "hash_mismatch"
    DUPLICATE = "duplicate"
    UNDERPAID = "underpaid"
    OVERPAID = "overpaid"
    PRICE_UNAVAILABLE = "price_unavailable"
    INELIGIBLE = "ineligible"


# 요청을 failed 로 보내는 거절 사유. 나머지는 상태 변경 없이 무시/보류.
FAILING_REJECTIONS = frozenset(
    {RejectionCode.UNDERPAID, RejectionCode.OVERPAID, RejectionCode.INELIGIBLE}
)


class ValidationVerdict(BaseModel):
    accepted: bool
    reason: Optional[RejectionCode] = None
    message: Optional[str] = None
    actual_usd: Optional[Decimal] = None
    price_source: Optional[str] = None

    @property
    def fails_request(self) -> bool:
        return self.reason in FAILING_REJECTIONS

    @classmethod
    def reject(
        cls,
        reason: RejectionCode,
        message: str,
        actual_usd: Optional[Decimal] = None,
        price_source: Optional[str] = None,
    ) -> "ValidationVerdict":
        return cls(
            accepted=False,
            reason=reason,
            message=message,
            actual_usd=actual_usd,
            price_source=price_source,
        )


class OutcomeType(str, Enum):
    SETTLED = "settled"
    OBSERVED = "observed"  # chain_observed, 컨펌 대기
    CONFIRMED = "confirmed"  # confirmed 이지만 정산 CAS 패배/미완료
    FAILED = "failed"
    DEFERRED = "deferred"  # 일시적 사유로 보류, 다음 틱에서 재시도
    IGNORED = "ignored"  # 매칭 요청 없음, 중복 등
    ALREADY_RESOLVED = "already_resolved"


class SettlementOutcome(BaseModel):
    outcome: OutcomeType
    request_id: Optional[int] = None
    status: Optional[FundingStatusEnum] = None
    transaction_hash: Optional[str] = None
    reason: Optional[str] = None
    credited_usd: Optional[Decimal] = None


class ReaperRunResult(BaseModel):
    scanned: int = 0
    settled: int = 0
    confirmed: int = 0
    observed: int = 0
    timed_out: int = 0
    failed: int = 0
    deferred: int = 0
    skipped: int = 0
    errors: int = 0
