from datetime import datetime
from decimal import Decimal
from typing import Annotated, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from fundingapi.models.funding import FundingStatusEnum


STATUS_MESSAGES = {
    FundingStatusEnum.PENDING: "입금을 기다리는 중입니다",
    FundingStatusEnum.CHAIN_OBSERVED: "블록체인에서 입금이 확인되었습니다. 컨펌을 기다리는 중입니다",
    FundingStatusEnum.CONFIRMED: "컨펌이 완료되었습니다. 정산 중입니다",
    FundingStatusEnum.SETTLED: "입금이 계정에 반영되었습니다",
    FundingStatusEnum.FAILED: "입금 처리에 실패했습니다",
}


class FundingRequest(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    user_id: int
    cryptocurrency: str
    expected_usd_amount: Decimal
    destination_wallet_address: str
    observed_chain_hash: Optional[str] = None
    observed_confirmations: int = 0
    required_confirmations: int
    actual_usd_amount: Optional[Decimal] = None
    price_source: Optional[str] = None
    status: FundingStatusEnum
    failure_reason: Optional[str] = None
    observed_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None
    created_at: datetime
    updated_at: Optional[datetime] = None

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal


class FundingRequestCreate(BaseModel):
    cryptocurrency: str = Field(..., min_length=2, max_length=10)
    amount: Annotated[Decimal, Field(gt=0, max_digits=16, decimal_places=2)]

    @field_validator("cryptocurrency")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class FundingRequestView(FundingRequest):
    """사용자 응답용 (상태 메시지 포함)"""

    status_message: str = ""

    @classmethod
    def from_request(cls, request: FundingRequest) -> "FundingRequestView":
        return cls(
            **request.model_dump(),
            status_message=STATUS_MESSAGES.get(request.status, ""),
        )


class FundingRequestList(BaseModel):
    items: List[FundingRequestView]
    total: int
    limit: int
    offset: int
