"""
Admin Router

관리자 전용 API 엔드포인트 (X-Admin-Token)
- 리퍼 수동 실행, 수익 적립 수동 실행
- 입금 요청 취소
- 블록체인 모니터링 상태
- 테스트 입금 이벤트 주입
"""

from decimal import Decimal
from typing import Annotated, Any, Optional
from uuid import uuid4

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from fundingapi.containers import Container
from fundingapi.core.exceptions import ConflictError, NotFoundError, ValidationError
from fundingapi.core.security import verify_admin_token
from fundingapi.deps import (
    get_confirmation_reaper,
    get_container,
    get_settlement_service,
    get_yield_accrual_service,
)
from fundingapi.schemas.auth import BaseResponse
from fundingapi.schemas.chain import ChainEvent
from fundingapi.services.reaper_service import ConfirmationReaper
from fundingapi.services.settlement_service import SettlementService
from fundingapi.services.yield_accrual_service import YieldAccrualService
from fundingapi.utils.timezone_utils import get_utc_now

router = APIRouter(
    prefix="/admin", tags=["admin"], dependencies=[Depends(verify_admin_token)]
)


class SyntheticEventRequest(BaseModel):
    cryptocurrency: str
    usd_amount: Annotated[Decimal, Field(gt=0)]

    @field_validator("cryptocurrency")
    @classmethod
    def normalize_symbol(cls, v: str) -> str:
        return v.strip().upper()


class CancelRequest(BaseModel):
    reason: str = "cancelled by administrator"


@router.post("/reaper/run", response_model=BaseResponse)
async def run_reaper(
    reaper: ConfirmationReaper = Depends(get_confirmation_reaper),
) -> Any:
    """리퍼 한 틱을 즉시 실행합니다."""
    result = await reaper.run_once()
    return BaseResponse(success=True, data=result.model_dump())


@router.post("/yield/accrue", response_model=BaseResponse)
async def run_yield_accrual(
    accrual_service: YieldAccrualService = Depends(get_yield_accrual_service),
) -> Any:
    """일일 수익 적립을 즉시 실행합니다. (오늘 이미 적립된 사용자는 건너뜀)"""
    result = accrual_service.accrue_all()
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/funding-requests/{request_id}/cancel", response_model=BaseResponse)
async def cancel_funding_request(
    request_id: int,
    body: Optional[CancelRequest] = None,
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> Any:
    request = settlement_service.funding_repo.get(request_id)
    if request is None:
        raise NotFoundError(f"Funding request {request_id} not found")

    if not settlement_service.cancel(request_id, (body or CancelRequest()).reason):
        current = settlement_service.funding_repo.get(request_id)
        raise ConflictError(
            f"Funding request {request_id} can no longer be cancelled",
            details={"status": current.status.value},
        )

    cancelled = settlement_service.funding_repo.get(request_id)
    return BaseResponse(success=True, data=cancelled.model_dump(mode="json"))


@router.get("/blockchain/status", response_model=BaseResponse)
async def blockchain_status(
    container: Container = Depends(get_container),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> Any:
    settings = container.config.config()
    chain_client = container.infra.chain_client()
    return BaseResponse(
        success=True,
        data={
            "confirmation_feed": container.infra.confirmation_source().name,
            "price_provider": container.infra.price_oracle().source_name,
            "chain_api_configured": chain_client.configured,
            "wallet_polling": settings.CHAIN_POLL_ENABLED,
            "monitored_wallets": container.config.currency_registry().monitored_wallets(),
            "requests_by_status": settlement_service.funding_repo.count_by_status(),
        },
    )


@router.post("/events/test", response_model=BaseResponse)
async def inject_test_event(
    body: SyntheticEventRequest,
    container: Container = Depends(get_container),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> Any:
    """플랫폼 지갑으로의 가상 입금 이벤트를 만들어 파이프라인에 넣습니다."""
    policy = container.config.currency_registry().get(body.cryptocurrency)
    if policy is None:
        raise ValidationError(f"Unsupported cryptocurrency: {body.cryptocurrency}")

    raw_value = await container.infra.price_oracle().usd_to_raw(
        body.usd_amount, policy.symbol
    )
    event = ChainEvent(
        transaction_hash=f"test_{uuid4().hex}",
        from_address=None,
        to_address=policy.wallet_address,
        raw_value=raw_value,
        symbol=policy.symbol,
        confirmations=policy.required_confirmations,
        observed_at=get_utc_now(),
    )
    outcome = await settlement_service.process_event(event)
    return BaseResponse(
        success=True,
        data={
            "event": event.model_dump(mode="json"),
            "outcome": outcome.model_dump(mode="json"),
        },
    )
