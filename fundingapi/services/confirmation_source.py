"""
컨펌 정보 제공 전략. 프로세스 시작 시 설정(CONFIRMATION_FEED)으로 하나를 선택합니다.

- PolledSimulation: 체인 없이 동작. pending 요청에 대해 기대 금액만큼의 관측을 합성
- LiveFeed: Moralis 로 관측된 트랜잭션의 컨펌 수 조회. 신규 입금 발견은 웹훅/지갑 폴러 담당
"""

import logging
from abc import ABC, abstractmethod
from datetime import datetime
from typing import Callable, Optional

from fundingapi.core.exceptions import ChainClientError, TransactionRevertedError
from fundingapi.providers.chain.moralis import MoralisChainClient
from fundingapi.schemas.chain import ChainEvent
from fundingapi.schemas.funding import FundingRequest
from fundingapi.services.price_oracle_service import PriceOracle
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)


class ConfirmationSource(ABC):
    name: str = "unknown"

    @abstractmethod
    async def current_confirmations(self, request: FundingRequest) -> Optional[int]:
        """관측된 트랜잭션의 현재 컨펌 수. 알 수 없으면 None, 실행이 실패한 트랜잭션이면 TransactionRevertedError."""

    @abstractmethod
    async def discover(self, request: FundingRequest) -> Optional[ChainEvent]:
        """pending 요청에 대한 새 관측. 없으면 None."""


class PolledSimulation(ConfirmationSource):
    name = "simulation"

    def __init__(
        self, price_oracle: PriceOracle, clock: Callable[[], datetime] = get_utc_now
    ):
        self.price_oracle = price_oracle
        self._clock = clock

    async def current_confirmations(self, request: FundingRequest) -> Optional[int]:
        return request.required_confirmations

    async def discover(self, request: FundingRequest) -> Optional[ChainEvent]:
        now = self._clock()
        raw_value = await self.price_oracle.usd_to_raw(
            request.expected_usd_amount, request.cryptocurrency
        )
        event = ChainEvent(
            transaction_hash=f"sim_{request.id}_{int(now.timestamp() * 1000)}",
            from_address=None,
            to_address=request.destination_wallet_address,
            raw_value=raw_value,
            symbol=request.cryptocurrency,
            confirmations=request.required_confirmations,
            observed_at=now,
        )
        logger.info(
            f"Simulated deposit {event.transaction_hash} for request {request.id} "
            f"({raw_value} {request.cryptocurrency} base units)"
        )
        return event


class LiveFeed(ConfirmationSource):
    name = "live"

    def __init__(self, chain_client: MoralisChainClient):
        self.chain_client = chain_client

    async def current_confirmations(self, request: FundingRequest) -> Optional[int]:
        if not request.observed_chain_hash:
            return None
        try:
            return await self.chain_client.get_confirmations(
                request.observed_chain_hash, request.cryptocurrency
            )
        except TransactionRevertedError:
            # 일시적 조회 실패가 아니므로 호출자가 요청을 실패 처리함
            raise
        except ChainClientError as e:
            logger.warning(
                f"Confirmation lookup failed for request {request.id} "
                f"({request.observed_chain_hash}): {e}"
            )
            return None

    async def discover(self, request: FundingRequest) -> Optional[ChainEvent]:
        return None
