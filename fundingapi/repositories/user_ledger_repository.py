import logging
from datetime import datetime
from decimal import ROUND_HALF_UP, Decimal
from typing import List, Optional

from sqlalchemy.orm import Session

from fundingapi.core.yield_tiers import YieldTierTable
from fundingapi.models.user import User as UserModel
from fundingapi.repositories.base import BaseRepository
from fundingapi.schemas.ledger import UserLedger
from fundingapi.utils.timezone_utils import ensure_utc

logger = logging.getLogger(__name__)

CENTS = Decimal("0.01")


class UserLedgerRepository(BaseRepository[UserModel, UserLedger]):
    """
    사용자 원장 저장소

    current_balance / total_invested 를 쓰는 코드는 이 클래스에만 존재합니다.
    - apply_settlement_credit: 정산 (증가만)
    - apply_yield_accrual: 일일 수익 적립
    출금(감소)은 이 서비스 범위 밖에서 처리됩니다.
    """

    def __init__(self, db: Session):
        super().__init__(UserModel, UserLedger, db)

    def _locked(self, user_id: int) -> Optional[UserModel]:
        # SELECT ... FOR UPDATE (SQLite 에서는 무시됨)
        return (
            self.db.query(UserModel)
            .populate_existing()
            .filter(UserModel.id == user_id)
            .with_for_update()
            .first()
        )

    def create_user(
        self, email: str, name: str, is_verified: bool = False, commit: bool = True
    ) -> UserLedger:
        return self.create(
            commit=commit,
            email=email,
            name=name,
            is_verified=is_verified,
            is_active=True,
            total_invested=Decimal("0"),
            current_balance=Decimal("0"),
            daily_yield_rate=Decimal("0"),
        )

    def get_ledger(self, user_id: int) -> Optional[UserLedger]:
        self._ensure_clean_session()
        instance = (
            self.db.query(UserModel)
            .populate_existing()
            .filter(UserModel.id == user_id)
            .first()
        )
        return self._to_schema(instance)

    def is_eligible(self, user_id: int) -> bool:
        """신원 확인이 끝난 활성 사용자인지"""
        ledger = self.get_ledger(user_id)
        return bool(ledger and ledger.is_active and ledger.is_verified)

    def apply_settlement_credit(
        self,
        user_id: int,
        amount: Decimal,
        tiers: YieldTierTable,
        commit: bool = False,
    ) -> UserLedger:
        """
        정산 금액을 원금/잔액에 더하고 새 원금 기준 수익률을 같은 트랜잭션에서 갱신합니다.

        기본값 commit=False: 상태 CAS 와 함께 호출자가 커밋합니다.
        """
        if amount <= 0:
            raise ValueError(f"Settlement credit must be positive: {amount}")

        self._ensure_clean_session()
        user = self._locked(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")

        credit = Decimal(amount).quantize(CENTS, rounding=ROUND_HALF_UP)
        user.total_invested = Decimal(user.total_invested or 0) + credit
        user.current_balance = Decimal(user.current_balance or 0) + credit
        user.daily_yield_rate = tiers.rate_for(user.total_invested)

        self.db.flush()
        if commit:
            self.db.commit()

        logger.info(
            f"Ledger credit user={user_id} +${credit}: total_invested={user.total_invested} "
            f"balance={user.current_balance} rate={user.daily_yield_rate}%"
        )
        return self._to_schema(user)

    def list_accrual_candidates(self, limit: int = 1000, after_id: int = 0) -> List[int]:
        """원금이 있는 활성 사용자 id 목록. after_id 다음부터 한 페이지"""
        self._ensure_clean_session()
        rows = (
            self.db.query(UserModel.id)
            .filter(
                UserModel.is_active.is_(True),
                UserModel.total_invested > 0,
                UserModel.id > after_id,
            )
            .order_by(UserModel.id.asc())
            .limit(limit)
            .all()
        )
        return [row[0] for row in rows]

    def apply_yield_accrual(
        self,
        user_id: int,
        now: datetime,
        tiers: YieldTierTable,
        balance_cap: Decimal,
    ) -> Optional[Decimal]:
        """
        하루 한 번 수익을 적립합니다. 적립한 금액을 반환하며,
        이미 오늘(UTC) 적립했으면 None 을 반환합니다.

        잔액은 balance_cap 을 넘지 않습니다.
        """
        self._ensure_clean_session()
        user = self._locked(user_id)
        if user is None:
            return None

        now = ensure_utc(now)
        last = ensure_utc(user.last_yield_update)
        if last is not None and last.date() >= now.date():
            self.db.rollback()
            return None

        rate = tiers.rate_for(user.total_invested)
        balance = Decimal(user.current_balance or 0)
        growth = (balance * rate / Decimal("100")).quantize(CENTS, rounding=ROUND_HALF_UP)
        if balance + growth > balance_cap:
            growth = max(Decimal("0"), balance_cap - balance)

        user.current_balance = balance + growth
        user.daily_yield_rate = rate
        user.last_yield_update = now
        self.db.commit()

        logger.info(
            f"Yield accrued user={user_id} +${growth} at {rate}% -> {user.current_balance}"
        )
        return growth
