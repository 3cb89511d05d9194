from dependency_injector import containers, providers

from fundingapi.config import Settings
from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.yield_tiers import YieldTierTable
from fundingapi.database.connection import SessionLocal
from fundingapi.providers.chain.moralis import MoralisChainClient
from fundingapi.providers.price.binance import BinancePriceSource
from fundingapi.providers.price.coinmarketcap import CoinMarketCapPriceSource
from fundingapi.services.chain_poller_service import WalletPoller
from fundingapi.services.confirmation_source import LiveFeed, PolledSimulation
from fundingapi.services.funding_service import FundingService
from fundingapi.services.ingestion_service import EventIngestionGateway
from fundingapi.services.price_oracle_service import PriceOracle
from fundingapi.services.reaper_service import ConfirmationReaper
from fundingapi.services.redis_service import RedisService
from fundingapi.services.settlement_service import SettlementService
from fundingapi.services.yield_accrual_service import YieldAccrualService


class ConfigModule(containers.DeclarativeContainer):
    """Application configuration."""

    config = providers.Singleton(Settings)
    currency_registry = providers.Singleton(CurrencyRegistry.from_settings, settings=config)
    yield_tiers = providers.Singleton(YieldTierTable.default)


class InfrastructureModule(containers.DeclarativeContainer):
    """External clients shared across requests."""

    config = providers.DependenciesContainer()

    session_factory = providers.Object(SessionLocal)
    redis_service = providers.Singleton(RedisService, settings=config.config)

    price_source = providers.Selector(
        config.config.provided.PRICE_PROVIDER,
        binance=providers.Singleton(BinancePriceSource, settings=config.config),
        coinmarketcap=providers.Singleton(CoinMarketCapPriceSource, settings=config.config),
    )
    price_oracle = providers.Singleton(
        PriceOracle,
        source=price_source,
        registry=config.currency_registry,
        fallback_prices=config.config.provided.FALLBACK_PRICES,
        freshness_seconds=config.config.provided.PRICE_CACHE_FRESHNESS_SECONDS,
    )
    chain_client = providers.Singleton(MoralisChainClient, settings=config.config)

    confirmation_source = providers.Selector(
        config.config.provided.CONFIRMATION_FEED,
        simulation=providers.Singleton(PolledSimulation, price_oracle=price_oracle),
        live=providers.Singleton(LiveFeed, chain_client=chain_client),
    )
    ingestion_gateway = providers.Singleton(
        EventIngestionGateway,
        registry=config.currency_registry,
        redis_service=redis_service,
        dedup_ttl_seconds=config.config.provided.WEBHOOK_DEDUP_TTL_SECONDS,
    )
    wallet_poller = providers.Singleton(
        WalletPoller,
        chain_client=chain_client,
        gateway=ingestion_gateway,
        registry=config.currency_registry,
        settings=config.config,
    )


class ServiceModule(containers.DeclarativeContainer):
    """Session-bound services. Call with db=<Session>."""

    config = providers.DependenciesContainer()
    infra = providers.DependenciesContainer()

    settlement_service = providers.Factory(
        SettlementService,
        price_oracle=infra.price_oracle,
        yield_tiers=config.yield_tiers,
        settings=config.config,
    )
    confirmation_reaper = providers.Factory(
        ConfirmationReaper,
        confirmation_source=infra.confirmation_source,
        registry=config.currency_registry,
        settings=config.config,
    )
    funding_service = providers.Factory(
        FundingService, registry=config.currency_registry
    )
    yield_accrual_service = providers.Factory(
        YieldAccrualService, yield_tiers=config.yield_tiers, settings=config.config
    )


class Container(containers.DeclarativeContainer):
    """Application container."""

    config = providers.Container(ConfigModule)
    infra = providers.Container(InfrastructureModule, config=config)
    services = providers.Container(ServiceModule, config=config, infra=infra)
