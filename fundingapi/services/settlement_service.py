import logging
from typing import Optional

from sqlalchemy.orm import Session

from fundingapi.config import Settings
from fundingapi.core.yield_tiers import YieldTierTable
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.repositories.funding_request_repository import FundingRequestRepository
from fundingapi.repositories.user_ledger_repository import UserLedgerRepository
from fundingapi.schemas.chain import ChainEvent
from fundingapi.schemas.funding import FundingRequest
from fundingapi.schemas.settlement import (
    OutcomeType,
    RejectionCode,
    SettlementOutcome,
)
from fundingapi.services.eligibility_service import (
    EligibilityChecker,
    VerifiedUserEligibility,
)
from fundingapi.services.price_oracle_service import PriceOracle
from fundingapi.services.validator_service import TransactionValidator
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


def _outcome(
    outcome: OutcomeType,
    request: Optional[FundingRequest] = None,
    transaction_hash: Optional[str] = None,
    reason: Optional[str] = None,
    **extra,
) -> SettlementOutcome:
    return SettlementOutcome(
        outcome=outcome,
        request_id=request.id if request else None,
        status=request.status if request else None,
        transaction_hash=transaction_hash,
        reason=reason,
        **extra,
    )


class SettlementService:
    """
    입금 정산 상태 머신

    pending -> chain_observed -> confirmed -> settled
    pending | chain_observed -> failed

    모든 상태 변경은 FundingRequestRepository.transition() CAS 를 거칩니다.
    원장 적립은 confirmed -> settled CAS 와 같은 트랜잭션에서 한 번만 일어납니다.
    """

    def __init__(
        self,
        db: Session,
        price_oracle: PriceOracle,
        yield_tiers: YieldTierTable,
        settings: Settings,
        eligibility: Optional[EligibilityChecker] = None,
    ):
        self.db = db
        self.funding_repo = FundingRequestRepository(db)
        self.ledger_repo = UserLedgerRepository(db)
        self.yield_tiers = yield_tiers
        self.validator = TransactionValidator(
            price_oracle=price_oracle,
            funding_request_repository=self.funding_repo,
            eligibility=eligibility or VerifiedUserEligibility(self.ledger_repo),
            tolerance_percent=settings.AMOUNT_TOLERANCE_PERCENT,
        )

    async def process_event(self, event: ChainEvent) -> SettlementOutcome:
        """체인 이벤트 하나를 파이프라인에 통과시킵니다. 같은 이벤트를 여러 번 넣어도 안전합니다."""
        existing = self.funding_repo.find_by_chain_hash(event.transaction_hash)
        if existing is not None:
            return self._handle_known_hash(existing, event)

        candidate = self.funding_repo.find_pending_by_wallet(
            event.to_address, event.symbol
        )
        verdict = await self.validator.validate(event, candidate)

        if not verdict.accepted:
            if verdict.fails_request and candidate is not None:
                reason = f"{verdict.reason.value}: {verdict.message}"
                # 실패 요청에도 해시를 묶어 재전송이 다음 pending 요청을 잡지 않게 함
                failed = self.funding_repo.transition(
                    candidate.id,
                    FundingStatusEnum.PENDING,
                    FundingStatusEnum.FAILED,
                    failure_reason=reason,
                    observed_chain_hash=event.transaction_hash,
                    observed_confirmations=event.confirmations,
                    actual_usd_amount=verdict.actual_usd,
                    price_source=verdict.price_source,
                    observed_at=get_utc_now(),
                )
                if failed:
                    logger.warning(f"Request {candidate.id} failed: {reason}")
                else:
                    current = self.funding_repo.find_by_chain_hash(event.transaction_hash)
                    if current is not None:
                        return self._handle_known_hash(current, event)
                return _outcome(
                    OutcomeType.FAILED if failed else OutcomeType.IGNORED,
                    self.funding_repo.get(candidate.id),
                    event.transaction_hash,
                    reason,
                )
            if verdict.reason == RejectionCode.PRICE_UNAVAILABLE:
                logger.warning(
                    f"Deferred {event.transaction_hash} for request "
                    f"{candidate.id if candidate else '-'}: {verdict.message}"
                )
                return _outcome(
                    OutcomeType.DEFERRED, candidate, event.transaction_hash, verdict.message
                )
            logger.info(f"Ignored {event.transaction_hash}: {verdict.message}")
            return _outcome(
                OutcomeType.IGNORED, None, event.transaction_hash, verdict.message
            )

        swapped = self.funding_repo.transition(
            candidate.id,
            FundingStatusEnum.PENDING,
            FundingStatusEnum.CHAIN_OBSERVED,
            observed_chain_hash=event.transaction_hash,
            observed_confirmations=event.confirmations,
            actual_usd_amount=verdict.actual_usd,
            price_source=verdict.price_source,
            observed_at=get_utc_now(),
        )
        if not swapped:
            # 다른 처리자가 먼저 같은 이벤트를 기록했을 수 있음
            current = self.funding_repo.find_by_chain_hash(event.transaction_hash)
            if current is not None:
                return self._handle_known_hash(current, event)
            return _outcome(
                OutcomeType.IGNORED,
                self.funding_repo.get(candidate.id),
                event.transaction_hash,
                "request changed concurrently",
            )

        logger.info(
            f"Request {candidate.id} observed {event.transaction_hash} "
            f"(${verdict.actual_usd}, {event.confirmations}/"
            f"{candidate.required_confirmations} confirmations)"
        )
        return self.advance(candidate.id, transaction_hash=event.transaction_hash)

    def _handle_known_hash(
        self, request: FundingRequest, event: ChainEvent
    ) -> SettlementOutcome:
        if request.status.is_terminal:
            return _outcome(
                OutcomeType.ALREADY_RESOLVED,
                request,
                event.transaction_hash,
                f"request already {request.status.value}",
            )
        if request.cryptocurrency != event.symbol:
            return _outcome(
                OutcomeType.IGNORED, None, event.transaction_hash, "currency mismatch"
            )
        self.funding_repo.attach_observation(
            request.id, event.transaction_hash, event.confirmations
        )
        return self.advance(request.id, transaction_hash=event.transaction_hash)

    def record_confirmations(self, request_id: int, confirmations: int) -> SettlementOutcome:
        """리퍼가 조회한 컨펌 수를 기록하고 상태를 진행시킵니다."""
        request = self.funding_repo.get(request_id)
        if request is None or not request.observed_chain_hash:
            return _outcome(OutcomeType.IGNORED, request, reason="no observation")
        self.funding_repo.attach_observation(
            request_id, request.observed_chain_hash, confirmations
        )
        return self.advance(request_id)

    def advance(
        self, request_id: int, transaction_hash: Optional[str] = None
    ) -> SettlementOutcome:
        """chain_observed -> confirmed -> settled 로 가능한 만큼 진행합니다."""
        request = self.funding_repo.get(request_id)
        if request is None:
            return _outcome(OutcomeType.IGNORED, reason="request not found")
        transaction_hash = transaction_hash or request.observed_chain_hash

        if request.status.is_terminal:
            return _outcome(
                OutcomeType.ALREADY_RESOLVED,
                request,
                transaction_hash,
                f"request already {request.status.value}",
            )

        if request.status == FundingStatusEnum.CHAIN_OBSERVED:
            if request.observed_confirmations < request.required_confirmations:
                return _outcome(
                    OutcomeType.OBSERVED,
                    request,
                    transaction_hash,
                    f"{request.observed_confirmations}/"
                    f"{request.required_confirmations} confirmations",
                )
            self.funding_repo.transition(
                request_id,
                FundingStatusEnum.CHAIN_OBSERVED,
                FundingStatusEnum.CONFIRMED,
            )
            request = self.funding_repo.get(request_id)

        if request.status == FundingStatusEnum.CONFIRMED:
            return self.settle(request_id)

        if request.status.is_terminal:
            return _outcome(
                OutcomeType.ALREADY_RESOLVED,
                request,
                transaction_hash,
                f"request already {request.status.value}",
            )
        return _outcome(OutcomeType.IGNORED, request, transaction_hash)

    def settle(self, request_id: int) -> SettlementOutcome:
        """
        confirmed -> settled CAS 와 원장 적립을 하나의 트랜잭션으로 커밋합니다.

        CAS 에서 진 쪽은 아무것도 쓰지 않고 롤백합니다.
        """
        request = self.funding_repo.get(request_id)
        if request is None:
            return _outcome(OutcomeType.IGNORED, reason="request not found")
        if request.status != FundingStatusEnum.CONFIRMED:
            return _outcome(
                OutcomeType.ALREADY_RESOLVED
                if request.status.is_terminal
                else OutcomeType.IGNORED,
                request,
                request.observed_chain_hash,
                f"request is {request.status.value}",
            )

        amount = request.actual_usd_amount
        try:
            swapped = self.funding_repo.transition(
                request_id,
                FundingStatusEnum.CONFIRMED,
                FundingStatusEnum.SETTLED,
                commit=False,
            )
            if not swapped:
                self.db.rollback()
                return _outcome(
                    OutcomeType.ALREADY_RESOLVED,
                    self.funding_repo.get(request_id),
                    request.observed_chain_hash,
                    "settled by another worker",
                )

            ledger = self.ledger_repo.apply_settlement_credit(
                request.user_id, amount, self.yield_tiers, commit=False
            )
            self.db.commit()
        except Exception:
            self.db.rollback()
            logger.exception(f"Settlement of request {request_id} rolled back")
            raise

        logger.info(
            f"Request {request_id} settled: user={request.user_id} +${amount} "
            f"(rate now {ledger.daily_yield_rate}%)"
        )
        return _outcome(
            OutcomeType.SETTLED,
            self.funding_repo.get(request_id),
            request.observed_chain_hash,
            credited_usd=amount,
        )

    def fail(self, request_id: int, reason: str) -> bool:
        """pending 또는 chain_observed 요청을 failed 로 보냅니다."""
        for from_status in (FundingStatusEnum.PENDING, FundingStatusEnum.CHAIN_OBSERVED):
            if self.funding_repo.transition(
                request_id,
                from_status,
                FundingStatusEnum.FAILED,
                failure_reason=reason,
            ):
                logger.warning(f"Request {request_id} failed: {reason}")
                return True
        return False

    def cancel(self, request_id: int, reason: str = "cancelled by administrator") -> bool:
        """
        관리자 취소. pending 이면 바로 failed, 이미 chain_observed 면 같은 CAS 로 경합합니다.
        confirmed 이후는 취소할 수 없습니다.
        """
        return self.fail(request_id, reason)
