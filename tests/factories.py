from datetime import datetime, timezone
from decimal import Decimal

from fundingapi.config import PLATFORM_BTC_WALLET, PLATFORM_EVM_WALLET, Settings
from fundingapi.core.exceptions import PriceSourceError
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.providers.price.base import PriceSource
from fundingapi.schemas.chain import ChainEvent
from fundingapi.schemas.funding import FundingRequest

EVM_WALLET = PLATFORM_EVM_WALLET
BTC_WALLET = PLATFORM_BTC_WALLET


class StubPriceSource(PriceSource):
    name = "stub"

    def __init__(self, prices=None):
        self.prices = dict(prices or {})
        self.calls = []
        self.failing = False

    async def fetch_usd_price(self, price_symbol: str) -> Decimal:
        self.calls.append(price_symbol)
        if self.failing or price_symbol not in self.prices:
            raise PriceSourceError(price_symbol, "stub source unavailable")
        return Decimal(self.prices[price_symbol])


def make_settings(**overrides) -> Settings:
    values = dict(
        DATABASE_URL="sqlite://",
        SECRET_KEY="test-secret",
        AUTH_TOKEN="admin-secret",
        REDIS_ENABLED=False,
        SCHEDULER_ENABLED=False,
    )
    values.update(overrides)
    return Settings(_env_file=None, **values)


def make_event(
    transaction_hash="0xabc",
    raw_value="1000000000",
    symbol="USDT",
    confirmations=12,
    to_address=EVM_WALLET,
) -> ChainEvent:
    return ChainEvent(
        transaction_hash=transaction_hash,
        from_address="0x742d35cc6559988722e8c5e1b9b8c5c0c9b7c1a8",
        to_address=to_address,
        raw_value=raw_value,
        symbol=symbol,
        confirmations=confirmations,
        observed_at=datetime.now(timezone.utc),
    )


def make_request_schema(**overrides) -> FundingRequest:
    values = dict(
        id=1,
        user_id=1,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("1000"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
        status=FundingStatusEnum.PENDING,
        created_at=datetime.now(timezone.utc),
    )
    values.update(overrides)
    return FundingRequest(**values)
