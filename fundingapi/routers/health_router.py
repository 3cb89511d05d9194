from fastapi import APIRouter, Depends

from fundingapi.config import Settings, get_settings
from fundingapi.schemas.health import HealthCheckResponse

router = APIRouter()


@router.get("/health", response_model=HealthCheckResponse)
async def health_check(settings: Settings = Depends(get_settings)) -> HealthCheckResponse:
    """Health check endpoint."""

    return HealthCheckResponse(
        environment=settings.ENVIRONMENT,
        confirmation_feed=settings.CONFIRMATION_FEED,
        price_provider=settings.PRICE_PROVIDER,
    )
