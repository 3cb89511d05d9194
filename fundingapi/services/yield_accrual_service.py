import logging
from datetime import datetime
from decimal import Decimal
from typing import Optional

from sqlalchemy.orm import Session

from fundingapi.config import Settings
from fundingapi.core.yield_tiers import YieldTierTable
from fundingapi.repositories.user_ledger_repository import UserLedgerRepository
from fundingapi.schemas.ledger import YieldAccrualResult
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


class YieldAccrualService:
    """하루 한 번(UTC) 원금 구간 수익률만큼 잔액을 늘립니다. 잔액 상한을 넘지 않습니다."""

    def __init__(self, db: Session, yield_tiers: YieldTierTable, settings: Settings):
        self.db = db
        self.ledger_repo = UserLedgerRepository(db)
        self.yield_tiers = yield_tiers
        self.balance_cap = Decimal(settings.YIELD_BALANCE_CAP)
        self.batch_size = settings.YIELD_ACCRUAL_BATCH_SIZE

    def accrue_all(self, now: Optional[datetime] = None) -> YieldAccrualResult:
        now = now or get_utc_now()
        result = YieldAccrualResult()

        after_id = 0
        while True:
            user_ids = self.ledger_repo.list_accrual_candidates(
                limit=self.batch_size, after_id=after_id
            )
            for user_id in user_ids:
                self._accrue_one(user_id, now, result)
            if len(user_ids) < self.batch_size:
                break
            after_id = user_ids[-1]

        logger.info(f"Daily yield accrual: {result.model_dump()}")
        return result

    def _accrue_one(self, user_id: int, now: datetime, result: YieldAccrualResult) -> None:
        result.processed += 1
        try:
            growth = self.ledger_repo.apply_yield_accrual(
                user_id, now, self.yield_tiers, self.balance_cap
            )
        except Exception as e:
            self.db.rollback()
            logger.error(f"Yield accrual failed for user {user_id}: {e}", exc_info=True)
            return

        if growth is None:
            result.skipped += 1
            return
        result.accrued += 1
        result.total_growth += growth
        ledger = self.ledger_repo.get_ledger(user_id)
        if ledger and ledger.current_balance >= self.balance_cap:
            result.capped += 1
