"""
Chain event webhook

- 본문이 JSON 으로 파싱되면 항상 200 (처리 중 일시적 오류는 리퍼/재전송으로 복구)
- JSON 이 아니면 400
"""

import json
import logging
from typing import Any

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from fundingapi.core.security import verify_webhook_secret
from fundingapi.deps import get_ingestion_gateway, get_settlement_service
from fundingapi.schemas.auth import BaseResponse, Error, ErrorCode
from fundingapi.services.ingestion_service import EventIngestionGateway
from fundingapi.services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

router = APIRouter(tags=["webhook"])


async def _receive(
    request: Request,
    gateway: EventIngestionGateway,
    settlement_service: SettlementService,
) -> Any:
    raw = await request.body()
    try:
        payload = json.loads(raw)
    except (json.JSONDecodeError, UnicodeDecodeError) as e:
        logger.warning(f"Rejected webhook with malformed JSON: {e}")
        return JSONResponse(
            status_code=400,
            content=BaseResponse(
                success=False,
                error=Error(
                    code=ErrorCode.MALFORMED_PAYLOAD, message="Body is not valid JSON"
                ),
            ).model_dump(mode="json"),
        )

    try:
        result = await gateway.ingest(payload, settlement_service.process_event)
    except Exception as e:
        logger.error(f"Webhook processing failed: {e}", exc_info=True)
        return BaseResponse(success=True, meta={"processed": False})

    return BaseResponse(success=True, data=result.model_dump(mode="json"))


@router.post("/events/chain", response_model=BaseResponse)
async def receive_chain_events(
    request: Request,
    _secret: None = Depends(verify_webhook_secret),
    gateway: EventIngestionGateway = Depends(get_ingestion_gateway),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> Any:
    """온체인 입금 이벤트 수신 (단건/배치)"""
    return await _receive(request, gateway, settlement_service)


@router.post("/api/webhook/moralis", response_model=BaseResponse)
async def receive_moralis_stream(
    request: Request,
    _secret: None = Depends(verify_webhook_secret),
    gateway: EventIngestionGateway = Depends(get_ingestion_gateway),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> Any:
    """Moralis Streams 웹훅 (기존 경로 호환)"""
    return await _receive(request, gateway, settlement_service)
