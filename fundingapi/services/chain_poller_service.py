import logging
from typing import Dict

from fundingapi.config import Settings
from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.exceptions import ChainClientError
from fundingapi.providers.chain.moralis import MoralisChainClient
from fundingapi.schemas.chain import IngestionResult
from fundingapi.services.ingestion_service import EventIngestionGateway, EventHandler

logger = logging.getLogger(__name__)


class WalletPoller:
    """모니터링 중인 EVM 지갑의 최근 트랜잭션을 조회하여 파이프라인에 넣습니다."""

    def __init__(
        self,
        chain_client: MoralisChainClient,
        gateway: EventIngestionGateway,
        registry: CurrencyRegistry,
        settings: Settings,
    ):
        self.chain_client = chain_client
        self.gateway = gateway
        self.registry = registry
        self.limit = settings.CHAIN_POLL_LIMIT

    async def poll_once(self, handler: EventHandler) -> Dict[str, IngestionResult]:
        results: Dict[str, IngestionResult] = {}
        if not self.chain_client.configured:
            logger.debug("Wallet polling skipped: chain client not configured")
            return results

        for symbol in self.registry.symbols:
            chain = self.chain_client.chain_for(symbol)
            if chain is None:
                continue
            wallet = self.registry.require(symbol).wallet_address
            try:
                latest = await self.chain_client.get_latest_block(chain)
                transactions = await self.chain_client.list_wallet_transactions(
                    wallet, chain, limit=self.limit
                )
            except ChainClientError as e:
                logger.warning(f"Wallet poll failed for {symbol} on {chain}: {e}")
                continue

            results[symbol] = await self.gateway.ingest_polled(
                transactions, symbol, latest, handler
            )
            if results[symbol].forwarded:
                logger.info(f"Polled {symbol} wallet: {results[symbol].model_dump(exclude={'outcomes'})}")
        return results
