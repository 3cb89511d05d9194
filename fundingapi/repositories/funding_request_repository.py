import logging
from decimal import Decimal
from typing import Dict, List, Optional

from sqlalchemy import func, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from fundingapi.models.funding import (
    ALLOWED_TRANSITIONS,
    IN_FLIGHT_STATUSES,
    FundingRequest as FundingRequestModel,
    FundingStatusEnum,
)
from fundingapi.repositories.base import BaseRepository
from fundingapi.schemas.funding import FundingRequest
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


class FundingRequestRepository(BaseRepository[FundingRequestModel, FundingRequest]):
    """
    펀딩 요청 저장소

    상태 변경은 transition() 한 곳에서만 일어나며, 항상
    `UPDATE ... WHERE id = :id AND status = :from` 형태의 compare-and-swap 입니다.
    영향받은 행이 없으면 다른 처리자가 먼저 전이시킨 것입니다.
    """

    def __init__(self, db: Session):
        super().__init__(FundingRequestModel, FundingRequest, db)

    def _fresh(self):
        # CAS UPDATE 는 identity map 을 동기화하지 않으므로 항상 DB 값으로 덮어씀
        return self.db.query(FundingRequestModel).populate_existing()

    def get(self, request_id: int) -> Optional[FundingRequest]:
        self._ensure_clean_session()
        return self._to_schema(
            self._fresh().filter(FundingRequestModel.id == request_id).first()
        )

    def create_pending(
        self,
        user_id: int,
        cryptocurrency: str,
        expected_usd_amount: Decimal,
        destination_wallet_address: str,
        required_confirmations: int,
    ) -> FundingRequest:
        request = self.create(
            user_id=user_id,
            cryptocurrency=cryptocurrency.upper(),
            expected_usd_amount=expected_usd_amount,
            destination_wallet_address=destination_wallet_address,
            required_confirmations=required_confirmations,
            observed_confirmations=0,
            status=FundingStatusEnum.PENDING,
        )
        logger.info(
            f"Funding request {request.id} created: user={user_id} "
            f"{cryptocurrency} ${expected_usd_amount} -> {destination_wallet_address}"
        )
        return request

    def find_pending_by_wallet(
        self, wallet_address: str, cryptocurrency: Optional[str] = None
    ) -> Optional[FundingRequest]:
        """지갑 주소(대소문자 무시)로 가장 오래된 pending 요청을 찾습니다."""
        self._ensure_clean_session()
        query = self._fresh().filter(
            func.lower(FundingRequestModel.destination_wallet_address)
            == wallet_address.lower(),
            FundingRequestModel.status == FundingStatusEnum.PENDING,
        )
        if cryptocurrency:
            query = query.filter(
                FundingRequestModel.cryptocurrency == cryptocurrency.upper()
            )
        instance = query.order_by(
            FundingRequestModel.created_at.asc(), FundingRequestModel.id.asc()
        ).first()
        return self._to_schema(instance)

    def find_by_chain_hash(self, transaction_hash: str) -> Optional[FundingRequest]:
        self._ensure_clean_session()
        instance = (
            self._fresh()
            .filter(FundingRequestModel.observed_chain_hash == transaction_hash)
            .first()
        )
        return self._to_schema(instance)

    def is_hash_settled(self, transaction_hash: str) -> bool:
        self._ensure_clean_session()
        return (
            self.db.query(FundingRequestModel.id)
            .filter(
                FundingRequestModel.observed_chain_hash == transaction_hash,
                FundingRequestModel.status == FundingStatusEnum.SETTLED,
            )
            .first()
            is not None
        )

    def attach_observation(
        self, request_id: int, transaction_hash: str, confirmations: int
    ) -> bool:
        """
        관측된 해시/컨펌 수를 기록합니다.

        - 종료 상태(settled/failed)에는 기록하지 않음
        - 이미 다른 해시가 기록되어 있으면 거부
        - 컨펌 수는 감소하지 않음
        """
        self._ensure_clean_session()
        stmt = (
            update(FundingRequestModel)
            .where(
                FundingRequestModel.id == request_id,
                FundingRequestModel.status.in_(IN_FLIGHT_STATUSES),
                or_(
                    FundingRequestModel.observed_chain_hash.is_(None),
                    FundingRequestModel.observed_chain_hash == transaction_hash,
                ),
                FundingRequestModel.observed_confirmations <= confirmations,
            )
            .values(
                observed_chain_hash=transaction_hash,
                observed_confirmations=confirmations,
            )
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            self.db.commit()
        except IntegrityError:
            # 동일 해시가 다른 요청에 이미 연결됨
            self.db.rollback()
            logger.warning(
                f"Hash {transaction_hash} already bound to another request; "
                f"not attaching to {request_id}"
            )
            return False
        return result.rowcount > 0

    def transition(
        self,
        request_id: int,
        from_status: FundingStatusEnum,
        to_status: FundingStatusEnum,
        commit: bool = True,
        **fields,
    ) -> bool:
        """
        상태 compare-and-swap. 허용된 전이만 수행하며 성공 여부를 반환합니다.

        commit=False 이면 호출자가 같은 트랜잭션 안에서 다른 쓰기(원장 적립)와 함께
        커밋합니다.
        """
        if to_status not in ALLOWED_TRANSITIONS.get(from_status, set()):
            logger.warning(
                f"Rejected illegal transition {from_status.value} -> {to_status.value} "
                f"for request {request_id}"
            )
            return False

        values = dict(fields)
        values["status"] = to_status
        if to_status.is_terminal:
            values.setdefault("resolved_at", get_utc_now())

        self._ensure_clean_session()
        stmt = (
            update(FundingRequestModel)
            .where(
                FundingRequestModel.id == request_id,
                FundingRequestModel.status == from_status,
            )
            .values(**values)
            .execution_options(synchronize_session=False)
        )
        try:
            result = self.db.execute(stmt)
            if commit:
                self.db.commit()
        except IntegrityError:
            self.db.rollback()
            logger.warning(
                f"Transition {from_status.value} -> {to_status.value} for request "
                f"{request_id} violated a uniqueness constraint"
            )
            return False

        swapped = result.rowcount > 0
        if swapped:
            logger.info(
                f"Request {request_id}: {from_status.value} -> {to_status.value}"
            )
        else:
            logger.info(
                f"Request {request_id}: CAS {from_status.value} -> {to_status.value} lost"
            )
        return swapped

    def find_in_flight(self, limit: int = 200, after_id: int = 0) -> List[FundingRequest]:
        """리퍼가 처리할 미완료 요청. id 순 keyset 페이지 (after_id 다음부터)"""
        self._ensure_clean_session()
        instances = (
            self._fresh()
            .filter(
                FundingRequestModel.status.in_(IN_FLIGHT_STATUSES),
                FundingRequestModel.id > after_id,
            )
            .order_by(FundingRequestModel.id.asc())
            .limit(limit)
            .all()
        )
        return self._to_schemas(instances)

    def list_by_user(
        self, user_id: int, limit: int = 20, offset: int = 0
    ) -> List[FundingRequest]:
        self._ensure_clean_session()
        instances = (
            self._fresh()
            .filter(FundingRequestModel.user_id == user_id)
            .order_by(FundingRequestModel.created_at.desc(), FundingRequestModel.id.desc())
            .offset(offset)
            .limit(limit)
            .all()
        )
        return self._to_schemas(instances)

    def count_by_user(self, user_id: int) -> int:
        return self.count({"user_id": user_id})

    def count_by_status(self) -> Dict[str, int]:
        self._ensure_clean_session()
        rows = (
            self.db.query(FundingRequestModel.status, func.count(FundingRequestModel.id))
            .group_by(FundingRequestModel.status)
            .all()
        )
        counts = {s.value: 0 for s in FundingStatusEnum}
        for status, total in rows:
            counts[status.value] = total
        return counts
