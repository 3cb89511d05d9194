import logging
from datetime import datetime
from typing import Optional

from sqlalchemy.orm import Session

from fundingapi.config import Settings
from fundingapi.core.exceptions import TransactionRevertedError
from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.schemas.funding import FundingRequest
from fundingapi.schemas.settlement import OutcomeType, ReaperRunResult, SettlementOutcome
from fundingapi.services.confirmation_source import ConfirmationSource
from fundingapi.services.settlement_service import SettlementService
from fundingapi.utils.timezone_utils import get_utc_now, seconds_since

logger = logging.getLogger(__name__)

WINDOW_EXCEEDED_REASON = "observation window exceeded"
REVERTED_REASON = "transaction reverted"


class ConfirmationReaper:
    """
    주기적으로 미완료 요청을 훑어 상태를 진행시킵니다.

    - confirmed 로 남은 요청(정산 직전 중단)은 정산
    - 관측 창(기본 24시간)을 넘긴 요청은 failed
    - 통화별 최소 경과 시간이 지난 요청만 ConfirmationSource 에 조회
    - 관측한 트랜잭션이 revert 되었으면 failed

    id 순 keyset 페이지로 전체 미완료 요청을 한 틱에 모두 훑습니다.
    """

    def __init__(
        self,
        db: Session,
        settlement_service: SettlementService,
        confirmation_source: ConfirmationSource,
        registry: CurrencyRegistry,
        settings: Settings,
    ):
        self.db = db
        self.settlement_service = settlement_service
        self.funding_repo = settlement_service.funding_repo
        self.confirmation_source = confirmation_source
        self.registry = registry
        self.max_window_seconds = settings.MAX_OBSERVATION_WINDOW_SECONDS
        self.batch_size = settings.REAPER_BATCH_SIZE

    async def run_once(self, now: Optional[datetime] = None) -> ReaperRunResult:
        now = now or get_utc_now()
        result = ReaperRunResult()

        after_id = 0
        while True:
            batch = self.funding_repo.find_in_flight(
                limit=self.batch_size, after_id=after_id
            )
            for request in batch:
                result.scanned += 1
                try:
                    await self._process(request, now, result)
                except Exception as e:
                    # 한 요청의 실패가 나머지 처리를 막지 않도록 함. 다음 틱에서 재시도
                    result.errors += 1
                    if self.db.in_transaction():
                        self.db.rollback()
                    logger.error(
                        f"Reaper failed on request {request.id}: {e}", exc_info=True
                    )
            if len(batch) < self.batch_size:
                break
            after_id = batch[-1].id

        if result.scanned:
            logger.info(f"Reaper tick: {result.model_dump()}")
        return result

    async def _process(
        self, request: FundingRequest, now: datetime, result: ReaperRunResult
    ) -> None:
        if request.status == FundingStatusEnum.CONFIRMED:
            self._tally(self.settlement_service.settle(request.id), result)
            return

        age = seconds_since(request.created_at, now)
        if age > self.max_window_seconds:
            if self.settlement_service.fail(request.id, WINDOW_EXCEEDED_REASON):
                result.timed_out += 1
            return

        policy = self.registry.get(request.cryptocurrency)
        min_elapsed = policy.min_elapsed_seconds if policy else 0
        if age < min_elapsed:
            result.skipped += 1
            return

        if request.status == FundingStatusEnum.PENDING:
            event = await self.confirmation_source.discover(request)
            if event is None:
                result.skipped += 1
                return
            self._tally(await self.settlement_service.process_event(event), result)
            return

        if request.status == FundingStatusEnum.CHAIN_OBSERVED:
            try:
                confirmations = await self.confirmation_source.current_confirmations(
                    request
                )
            except TransactionRevertedError as e:
                logger.warning(f"Request {request.id}: {e}")
                if self.settlement_service.fail(request.id, REVERTED_REASON):
                    result.failed += 1
                return
            if confirmations is None:
                result.deferred += 1
                return
            self._tally(
                self.settlement_service.record_confirmations(request.id, confirmations),
                result,
            )

    @staticmethod
    def _tally(outcome: SettlementOutcome, result: ReaperRunResult) -> None:
        if outcome.outcome == OutcomeType.SETTLED:
            result.settled += 1
        elif outcome.outcome == OutcomeType.CONFIRMED:
            result.confirmed += 1
        elif outcome.outcome == OutcomeType.OBSERVED:
            result.observed += 1
        elif outcome.outcome == OutcomeType.FAILED:
            result.failed += 1
        elif outcome.outcome == OutcomeType.DEFERRED:
            result.deferred += 1
        else:
            result.skipped += 1
