import logging

from sqlalchemy.orm import Session

from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.exceptions import AuthorizationError, NotFoundError, ValidationError
from fundingapi.repositories.funding_request_repository import FundingRequestRepository
from fundingapi.repositories.user_ledger_repository import UserLedgerRepository
from fundingapi.schemas.funding import (
    FundingRequestCreate,
    FundingRequestList,
    FundingRequestView,
)
from fundingapi.schemas.ledger import UserLedger

logger = logging.getLogger(__name__)


class FundingService:
    """사용자 펀딩 요청 생성/조회"""

    def __init__(self, db: Session, registry: CurrencyRegistry):
        self.db = db
        self.registry = registry
        self.funding_repo = FundingRequestRepository(db)
        self.ledger_repo = UserLedgerRepository(db)

    def create_request(self, user_id: int, payload: FundingRequestCreate) -> FundingRequestView:
        policy = self.registry.get(payload.cryptocurrency)
        if policy is None:
            raise ValidationError(
                message=f"Unsupported cryptocurrency: {payload.cryptocurrency}",
                details={"supported": self.registry.symbols},
            )

        ledger = self.ledger_repo.get_ledger(user_id)
        if ledger is None:
            raise NotFoundError("User not found")
        if not (ledger.is_active and ledger.is_verified):
            raise AuthorizationError("Identity verification is required before funding")

        request = self.funding_repo.create_pending(
            user_id=user_id,
            cryptocurrency=policy.symbol,
            expected_usd_amount=payload.amount,
            destination_wallet_address=policy.wallet_address,
            required_confirmations=policy.required_confirmations,
        )
        return FundingRequestView.from_request(request)

    def list_requests(self, user_id: int, limit: int = 20, offset: int = 0) -> FundingRequestList:
        items = self.funding_repo.list_by_user(user_id, limit=limit, offset=offset)
        return FundingRequestList(
            items=[FundingRequestView.from_request(r) for r in items],
            total=self.funding_repo.count_by_user(user_id),
            limit=limit,
            offset=offset,
        )

    def get_request(self, user_id: int, request_id: int) -> FundingRequestView:
        request = self.funding_repo.get(request_id)
        if request is None or request.user_id != user_id:
            raise NotFoundError(f"Funding request {request_id} not found")
        return FundingRequestView.from_request(request)

    def get_ledger(self, user_id: int) -> UserLedger:
        ledger = self.ledger_repo.get_ledger(user_id)
        if ledger is None:
            raise NotFoundError("User not found")
        return ledger
