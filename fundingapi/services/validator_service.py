import logging
from decimal import Decimal
from typing import Optional

from fundingapi.core.exceptions import PriceUnavailableError
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.repositories.funding_request_repository import FundingRequestRepository
from fundingapi.schemas.chain import ChainEvent
from fundingapi.schemas.funding import FundingRequest
from fundingapi.schemas.settlement import RejectionCode, ValidationVerdict
from fundingapi.services.eligibility_service import EligibilityChecker
from fundingapi.services.price_oracle_service import PriceOracle

logger = logging.getLogger(__name__)

HUNDRED = Decimal("100")


class TransactionValidator:
    """
    체인 이벤트가 후보 펀딩 요청을 만족하는지 판정합니다.

    DB 에 쓰지 않습니다. 판정 순서:
    1. 후보 없음
    2. 후보가 이미 다른 해시로 관측됨
    3. 해시가 이미 정산됨 (중복)
    4-5. USD 환산 후 허용 오차 검사 (low-confidence 가격은 보류)
    6. 사용자 자격
    """

    def __init__(
        self,
        price_oracle: PriceOracle,
        funding_request_repository: FundingRequestRepository,
        eligibility: EligibilityChecker,
        tolerance_percent: Decimal = Decimal("5"),
    ):
        self.price_oracle = price_oracle
        self.funding_request_repository = funding_request_repository
        self.eligibility = eligibility
        self.tolerance_percent = Decimal(tolerance_percent)

    def bounds(self, expected_usd: Decimal):
        delta = Decimal(expected_usd) * self.tolerance_percent / HUNDRED
        return Decimal(expected_usd) - delta, Decimal(expected_usd) + delta

    async def validate(
        self, event: ChainEvent, candidate: Optional[FundingRequest]
    ) -> ValidationVerdict:
        if candidate is None or candidate.cryptocurrency != event.symbol:
            return ValidationVerdict.reject(
                RejectionCode.NO_MATCHING_REQUEST,
                f"No pending {event.symbol} request for {event.to_address}",
            )

        if (
            candidate.status != FundingStatusEnum.PENDING
            and candidate.observed_chain_hash
            and candidate.observed_chain_hash != event.transaction_hash
        ):
            return ValidationVerdict.reject(
                RejectionCode.HASH_MISMATCH,
                f"Request {candidate.id} already observed "
                f"{candidate.observed_chain_hash}",
            )

        if self.funding_request_repository.is_hash_settled(event.transaction_hash):
            return ValidationVerdict.reject(
                RejectionCode.DUPLICATE,
                f"Transaction {event.transaction_hash} already settled",
            )

        try:
            conversion = await self.price_oracle.convert(event.raw_value, event.symbol)
        except PriceUnavailableError as e:
            logger.warning(f"Deferring {event.transaction_hash}: {e}")
            return ValidationVerdict.reject(RejectionCode.PRICE_UNAVAILABLE, str(e))

        actual = conversion.usd_amount
        source = conversion.quote.kind.value
        if conversion.low_confidence:
            return ValidationVerdict.reject(
                RejectionCode.PRICE_UNAVAILABLE,
                f"Only a last-resort {event.symbol} price is available",
                actual_usd=actual,
                price_source=source,
            )

        lower, upper = self.bounds(candidate.expected_usd_amount)
        if actual < lower:
            return ValidationVerdict.reject(
                RejectionCode.UNDERPAID,
                f"Received ${actual}, expected ${candidate.expected_usd_amount} "
                f"(minimum ${lower.quantize(Decimal('0.01'))})",
                actual_usd=actual,
                price_source=source,
            )
        if actual > upper:
            return ValidationVerdict.reject(
                RejectionCode.OVERPAID,
                f"Received ${actual}, expected ${candidate.expected_usd_amount} "
                f"(maximum ${upper.quantize(Decimal('0.01'))})",
                actual_usd=actual,
                price_source=source,
            )

        if not self.eligibility.is_eligible(candidate.user_id):
            return ValidationVerdict.reject(
                RejectionCode.INELIGIBLE,
                f"User {candidate.user_id} is not eligible",
                actual_usd=actual,
                price_source=source,
            )

        return ValidationVerdict(
            accepted=True, actual_usd=actual, price_source=source
        )
