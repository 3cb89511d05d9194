from fastapi import Depends, Request
from sqlalchemy.orm import Session

from fundingapi.containers import Container
from fundingapi.database.session import get_db

# Services
from fundingapi.services.funding_service import FundingService
from fundingapi.services.ingestion_service import EventIngestionGateway
from fundingapi.services.reaper_service import ConfirmationReaper
from fundingapi.services.settlement_service import SettlementService
from fundingapi.services.yield_accrual_service import YieldAccrualService


def get_container(request: Request) -> Container:
    return request.app.container


def get_ingestion_gateway(
    container: Container = Depends(get_container),
) -> EventIngestionGateway:
    return container.infra.ingestion_gateway()


def get_settlement_service(
    db: Session = Depends(get_db), container: Container = Depends(get_container)
) -> SettlementService:
    return container.services.settlement_service(db=db)


def get_confirmation_reaper(
    db: Session = Depends(get_db),
    settlement_service: SettlementService = Depends(get_settlement_service),
    container: Container = Depends(get_container),
) -> ConfirmationReaper:
    return container.services.confirmation_reaper(
        db=db, settlement_service=settlement_service
    )


def get_funding_service(
    db: Session = Depends(get_db), container: Container = Depends(get_container)
) -> FundingService:
    return container.services.funding_service(db=db)


def get_yield_accrual_service(
    db: Session = Depends(get_db), container: Container = Depends(get_container)
) -> YieldAccrualService:
    return container.services.yield_accrual_service(db=db)
