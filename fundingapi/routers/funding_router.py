from typing import Any

from fastapi import APIRouter, Depends, Query, status

from fundingapi.core.security import verify_token
from fundingapi.deps import get_funding_service
from fundingapi.schemas.auth import BaseResponse
from fundingapi.schemas.funding import FundingRequestCreate
from fundingapi.services.funding_service import FundingService

router = APIRouter(prefix="/funding-requests", tags=["funding"])


@router.post("", response_model=BaseResponse, status_code=status.HTTP_201_CREATED)
async def create_funding_request(
    payload: FundingRequestCreate,
    user_id: int = Depends(verify_token),
    funding_service: FundingService = Depends(get_funding_service),
) -> Any:
    """입금 요청 생성. 응답의 지갑 주소로 해당 통화를 송금하면 됩니다."""
    request = funding_service.create_request(user_id, payload)
    return BaseResponse(success=True, data=request.model_dump(mode="json"))


@router.get("", response_model=BaseResponse)
async def list_funding_requests(
    limit: int = Query(20, ge=1, le=100),
    offset: int = Query(0, ge=0),
    user_id: int = Depends(verify_token),
    funding_service: FundingService = Depends(get_funding_service),
) -> Any:
    result = funding_service.list_requests(user_id, limit=limit, offset=offset)
    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.get("/ledger", response_model=BaseResponse)
async def get_my_ledger(
    user_id: int = Depends(verify_token),
    funding_service: FundingService = Depends(get_funding_service),
) -> Any:
    """원금, 잔액, 현재 일일 수익률"""
    ledger = funding_service.get_ledger(user_id)
    return BaseResponse(success=True, data=ledger.model_dump(mode="json"))


@router.get("/{request_id}", response_model=BaseResponse)
async def get_funding_request(
    request_id: int,
    user_id: int = Depends(verify_token),
    funding_service: FundingService = Depends(get_funding_service),
) -> Any:
    request = funding_service.get_request(user_id, request_id)
    return BaseResponse(success=True, data=request.model_dump(mode="json"))
