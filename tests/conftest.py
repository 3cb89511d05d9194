from decimal import Decimal

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.yield_tiers import YieldTierTable
from fundingapi.models import funding, user  # noqa: F401
from fundingapi.models.base import Base
from fundingapi.repositories.funding_request_repository import FundingRequestRepository
from fundingapi.repositories.user_ledger_repository import UserLedgerRepository
from fundingapi.services.price_oracle_service import PriceOracle
from fundingapi.services.settlement_service import SettlementService
from tests.factories import EVM_WALLET, StubPriceSource, make_settings


@pytest.fixture
def settings():
    return make_settings()


@pytest.fixture
def registry(settings):
    return CurrencyRegistry.from_settings(settings)


@pytest.fixture
def yield_tiers():
    return YieldTierTable.default()


@pytest.fixture
def price_source():
    return StubPriceSource({"BTC": "43000", "ETH": "2000", "BNB": "300"})


@pytest.fixture
def price_oracle(price_source, registry, settings):
    return PriceOracle(
        source=price_source,
        registry=registry,
        fallback_prices=settings.FALLBACK_PRICES,
        freshness_seconds=settings.PRICE_CACHE_FRESHNESS_SECONDS,
    )


@pytest.fixture
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def session_factory(engine):
    return sessionmaker(bind=engine, autoflush=False, expire_on_commit=False)


@pytest.fixture
def db(session_factory):
    session = session_factory()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def funding_repo(db):
    return FundingRequestRepository(db)


@pytest.fixture
def ledger_repo(db):
    return UserLedgerRepository(db)


@pytest.fixture
def verified_user(ledger_repo):
    return ledger_repo.create_user(
        email="investor@example.com", name="Investor", is_verified=True
    )


@pytest.fixture
def settlement_service(db, price_oracle, yield_tiers, settings):
    return SettlementService(
        db=db, price_oracle=price_oracle, yield_tiers=yield_tiers, settings=settings
    )


@pytest.fixture
def pending_usdt(funding_repo, verified_user):
    return funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("1000.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )
