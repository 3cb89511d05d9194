import logging
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from mangum import Mangum
from starlette.exceptions import HTTPException as StarletteHTTPException
from starlette.middleware.cors import CORSMiddleware

load_dotenv("fundingapi/.env")

from fundingapi import containers  # noqa: E402
from fundingapi.core.exception_handlers import (  # noqa: E402
    handle_base_api_exception,
    handle_http_exception,
    handle_service_exception,
    handle_unexpected_error,
    handle_validation_error,
)
from fundingapi.core.exceptions import BaseAPIException, ServiceException  # noqa: E402
from fundingapi.jobs.scheduler import SettlementScheduler  # noqa: E402
from fundingapi.logging_config import setup_logging  # noqa: E402
from fundingapi.routers import (  # noqa: E402
    admin_router,
    funding_router,
    health_router,
    webhook_router,
)

logger = logging.getLogger(__name__)


def create_app(container: Optional[containers.Container] = None) -> FastAPI:
    container = container or containers.Container()
    settings = container.config.config()

    setup_logging(settings.LOG_LEVEL, json_format=settings.LOG_JSON)

    # 통화 설정이 불완전하면 여기서 ConfigurationError 로 시작 실패
    registry = container.config.currency_registry()
    logger.info(
        f"Monitoring {', '.join(registry.symbols)} "
        f"(feed={settings.CONFIRMATION_FEED}, prices={settings.PRICE_PROVIDER})"
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        scheduler = None
        if settings.SCHEDULER_ENABLED:
            scheduler = SettlementScheduler(container)
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                scheduler.shutdown()
            await container.infra.redis_service().close()

    app = FastAPI(title=settings.APP_NAME, lifespan=lifespan)
    app.container = container  # type: ignore

    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.ALLOWED_ORIGINS,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def log_requests(request: Request, call_next):
        logger.info(f"Request: {request.method} {request.url.path}")
        response = await call_next(request)
        logger.info(f"Response: {response.status_code}")
        return response

    app.add_exception_handler(BaseAPIException, handle_base_api_exception)
    app.add_exception_handler(StarletteHTTPException, handle_http_exception)
    app.add_exception_handler(RequestValidationError, handle_validation_error)
    app.add_exception_handler(ServiceException, handle_service_exception)
    app.add_exception_handler(Exception, handle_unexpected_error)

    app.include_router(health_router.router)
    app.include_router(webhook_router.router)
    app.include_router(funding_router.router, prefix=settings.API_V1_STR)
    app.include_router(admin_router.router)
    return app


app = create_app()

handler = Mangum(app)
