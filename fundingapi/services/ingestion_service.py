"""
체인 이벤트 수집 게이트웨이

웹훅(Moralis Streams, 단건/배치)과 지갑 폴링 결과를 ChainEvent 로 정규화하고,
모니터링 중인 지갑으로 들어온 이벤트만 하위 파이프라인에 넘깁니다.

- 형식이 잘못된 항목은 로그만 남기고 버림 (예외를 올리지 않음)
- revert 된 트랜잭션(receipt status 0)도 형식 오류와 같이 버림
- 같은 해시+컨펌 수의 재전송은 Redis 로 TTL 동안 걸러냄 (Redis 가 없으면 하위 단계의 멱등성에 의존)
"""

import logging
from typing import Any, Awaitable, Callable, Dict, Iterable, List, Optional, Tuple

from pydantic import ValidationError as PydanticValidationError

from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.schemas.chain import ChainEvent, IngestionResult
from fundingapi.schemas.settlement import SettlementOutcome
from fundingapi.services.redis_service import RedisService
from fundingapi.utils.timezone_utils import get_utc_now

logger = logging.getLogger(__name__)

# Moralis Streams chainId -> native currency
CHAIN_ID_SYMBOLS: Dict[str, str] = {
    "0x1": "ETH",
    "0xaa36a7": "ETH",  # sepolia
    "0x38": "BNB",
    "0x61": "BNB",  # bsc testnet
}

EventHandler = Callable[[ChainEvent], Awaitable[SettlementOutcome]]


class MalformedEvent(ValueError):
    pass


def _first(item: Dict[str, Any], *keys: str) -> Any:
    for key in keys:
        value = item.get(key)
        if value not in (None, ""):
            return value
    return None


def _as_int(value: Any, field: str) -> Optional[int]:
    if value in (None, ""):
        return None
    try:
        if isinstance(value, str) and value.lower().startswith("0x"):
            return int(value, 16)
        return int(value)
    except (TypeError, ValueError):
        raise MalformedEvent(f"{field} is not an integer: {value!r}")


class EventIngestionGateway:
    def __init__(
        self,
        registry: CurrencyRegistry,
        redis_service: Optional[RedisService] = None,
        dedup_ttl_seconds: int = 3600,
    ):
        self.registry = registry
        self.redis_service = redis_service
        self.dedup_ttl_seconds = dedup_ttl_seconds

    # ------------------------------------------------------------------
    # normalization
    # ------------------------------------------------------------------
    def normalize(self, payload: Any) -> Tuple[List[ChainEvent], int]:
        """웹훅 본문을 이벤트 목록으로 바꿉니다. (events, malformed 개수)"""
        items: List[Tuple[Dict[str, Any], Optional[str]]] = []

        if isinstance(payload, list):
            items = [(item, None) for item in payload]
        elif isinstance(payload, dict):
            chain_symbol = CHAIN_ID_SYMBOLS.get(str(payload.get("chainId", "")).lower())
            if "txs" in payload or "erc20Transfers" in payload:
                block = payload.get("block") or {}
                confirmed = bool(payload.get("confirmed"))
                for tx in payload.get("txs") or []:
                    items.append(
                        (self._stream_item(tx, block, confirmed), chain_symbol)
                    )
                for transfer in payload.get("erc20Transfers") or []:
                    items.append(
                        (self._stream_item(transfer, block, confirmed), None)
                    )
            elif isinstance(payload.get("events"), list):
                items = [(item, chain_symbol) for item in payload["events"]]
            else:
                items = [(payload, chain_symbol)]
        else:
            logger.warning(f"Unsupported webhook payload type: {type(payload).__name__}")
            return [], 1

        events: List[ChainEvent] = []
        malformed = 0
        for item, chain_symbol in items:
            try:
                events.append(self._to_event(item, chain_symbol))
            except (MalformedEvent, PydanticValidationError, AttributeError) as e:
                malformed += 1
                logger.warning(f"Discarding malformed chain event: {e}")
        return events, malformed

    @staticmethod
    def _stream_item(item: Any, block: Dict[str, Any], confirmed: bool) -> Any:
        if not isinstance(item, dict):
            return item
        merged = dict(item)
        merged.setdefault("blockNumber", block.get("number"))
        if merged.get("confirmations") in (None, ""):
            merged["confirmations"] = 1 if confirmed else 0
        return merged

    def _resolve_symbol(
        self, item: Dict[str, Any], to_address: str, chain_symbol: Optional[str]
    ) -> str:
        explicit = _first(item, "symbol", "currency", "cryptocurrency", "tokenSymbol")
        if explicit:
            return str(explicit).upper()
        item_chain = CHAIN_ID_SYMBOLS.get(str(item.get("chainId", "")).lower())
        if item_chain or chain_symbol:
            return item_chain or chain_symbol
        candidates = self.registry.symbols_for_wallet(to_address)
        if len(candidates) == 1:
            return candidates[0]
        raise MalformedEvent(f"Cannot determine currency for transfer to {to_address}")

    def _to_event(self, item: Any, chain_symbol: Optional[str]) -> ChainEvent:
        if not isinstance(item, dict):
            raise MalformedEvent(f"Event must be an object, got {type(item).__name__}")

        tx_hash = _first(item, "transactionHash", "txHash", "hash", "transaction_hash")
        to_address = _first(item, "toAddress", "to", "to_address")
        raw_value = _first(item, "rawValue", "raw_value", "value")
        if not tx_hash or not to_address or raw_value is None:
            raise MalformedEvent("Missing transaction hash, recipient or value")
        # Streams: receiptStatus, wallet history: receipt_status. "0" 은 실행 실패 (값 이동 없음)
        receipt_status = _first(item, "receiptStatus", "receipt_status")
        if receipt_status is not None and str(receipt_status) == "0":
            raise MalformedEvent(f"Transaction {tx_hash} reverted")

        return ChainEvent(
            transaction_hash=str(tx_hash),
            from_address=_first(item, "fromAddress", "from", "from_address"),
            to_address=str(to_address),
            raw_value=str(raw_value),
            symbol=self._resolve_symbol(item, str(to_address), chain_symbol),
            confirmations=_as_int(item.get("confirmations"), "confirmations") or 0,
            block_number=_as_int(
                _first(item, "blockNumber", "block_number"), "blockNumber"
            ),
            observed_at=get_utc_now(),
        )

    def normalize_polled(
        self,
        transactions: Iterable[Dict[str, Any]],
        symbol: str,
        latest_block: int,
    ) -> List[ChainEvent]:
        """지갑 폴링 결과(Moralis wallet history)를 이벤트로 변환합니다."""
        events: List[ChainEvent] = []
        for tx in transactions:
            try:
                block = _as_int(tx.get("block_number"), "block_number")
                confirmations = max(0, latest_block - block + 1) if block else 0
                events.append(
                    self._to_event(
                        {**tx, "symbol": symbol, "confirmations": confirmations},
                        None,
                    )
                )
            except (MalformedEvent, PydanticValidationError, AttributeError) as e:
                logger.warning(f"Discarding malformed polled transaction: {e}")
        return events

    # ------------------------------------------------------------------
    # forwarding
    # ------------------------------------------------------------------
    def is_monitored(self, event: ChainEvent) -> bool:
        return event.symbol in self.registry.symbols_for_wallet(event.to_address)

    async def _is_transport_duplicate(self, event: ChainEvent) -> bool:
        if self.redis_service is None:
            return False
        key = (
            f"chain-event:{event.symbol}:{event.transaction_hash}:{event.confirmations}"
        )
        created = await self.redis_service.set_if_absent(key, self.dedup_ttl_seconds)
        return created is False

    async def forward(
        self, events: List[ChainEvent], handler: EventHandler, result: IngestionResult
    ) -> IngestionResult:
        for event in events:
            if not self.is_monitored(event):
                result.unmonitored += 1
                logger.debug(
                    f"Ignoring {event.transaction_hash}: {event.to_address} "
                    f"is not a monitored {event.symbol} wallet"
                )
                continue
            if await self._is_transport_duplicate(event):
                result.duplicates += 1
                logger.info(f"Dropping redelivered event {event.transaction_hash}")
                continue

            result.forwarded += 1
            try:
                outcome = await handler(event)
            except Exception as e:
                # 일시적 오류: 리퍼 또는 재전송에서 다시 처리됨
                result.errors += 1
                logger.error(
                    f"Processing {event.transaction_hash} failed: {e}", exc_info=True
                )
                continue
            result.outcomes.append(outcome.model_dump(mode="json"))
        return result

    async def ingest(self, payload: Any, handler: EventHandler) -> IngestionResult:
        events, malformed = self.normalize(payload)
        result = IngestionResult(received=len(events) + malformed, malformed=malformed)
        return await self.forward(events, handler, result)

    async def ingest_polled(
        self,
        transactions: Iterable[Dict[str, Any]],
        symbol: str,
        latest_block: int,
        handler: EventHandler,
    ) -> IngestionResult:
        events = self.normalize_polled(transactions, symbol, latest_block)
        result = IngestionResult(received=len(events))
        return await self.forward(events, handler, result)
