from __future__ import annotations

import logging
from typing import Any, Dict, List, Optional

import httpx

from fundingapi.config import Settings
from fundingapi.core.exceptions import ChainClientError, TransactionRevertedError

logger = logging.getLogger(__name__)


class MoralisChainClient:
    """
    Moralis Web3 Data API 클라이언트 (EVM 체인 전용)

    - 트랜잭션의 블록 번호와 최신 블록으로 컨펌 수 계산
    - 지갑의 최근 네이티브 트랜잭션 조회 (폴링용)
    """

    def __init__(
        self,
        settings: Settings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self._base_url = settings.MORALIS_BASE_URL.rstrip("/")
        self._api_key = settings.MORALIS_API_KEY
        self._chains: Dict[str, str] = {
            k.upper(): v for k, v in settings.MORALIS_CHAINS.items()
        }
        self._timeout = httpx.Timeout(settings.MORALIS_TIMEOUT_SECONDS, connect=5.0)
        self._transport = transport

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    def chain_for(self, symbol: str) -> Optional[str]:
        return self._chains.get((symbol or "").upper())

    @property
    def chains(self) -> Dict[str, str]:
        return dict(self._chains)

    async def _get(self, path: str, params: Optional[Dict[str, Any]] = None) -> Any:
        if not self._api_key:
            raise ChainClientError("MORALIS_API_KEY is not configured")

        headers = {"X-API-Key": self._api_key, "Accept": "application/json"}
        try:
            async with httpx.AsyncClient(
                base_url=self._base_url,
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                response = await client.get(path, params=params, headers=headers)
        except httpx.RequestError as exc:
            raise ChainClientError(f"Moralis request error on {path}: {exc}") from exc

        if response.status_code == 404:
            return None
        if response.status_code != 200:
            raise ChainClientError(
                f"Moralis returned HTTP {response.status_code} for {path}"
            )
        try:
            return response.json()
        except ValueError as exc:
            raise ChainClientError(f"Moralis returned invalid JSON for {path}") from exc

    async def get_latest_block(self, chain: str) -> int:
        payload = await self._get(f"/latestBlockNumber/{chain}")
        if isinstance(payload, dict):
            payload = payload.get("block") or payload.get("block_number")
        try:
            return int(payload)
        except (TypeError, ValueError) as exc:
            raise ChainClientError(f"Unexpected latest block payload for {chain}") from exc

    async def get_transaction_block(self, tx_hash: str, chain: str) -> Optional[int]:
        """트랜잭션이 포함된 블록 번호. 아직 채굴 전이거나 없으면 None."""
        payload = await self._get(f"/transaction/{tx_hash}", params={"chain": chain})
        if not payload or payload.get("block_number") in (None, ""):
            return None
        if str(payload.get("receipt_status", "1")) == "0":
            raise TransactionRevertedError(tx_hash, chain)
        return int(payload["block_number"])

    async def get_confirmations(self, tx_hash: str, symbol: str) -> Optional[int]:
        """현재 컨펌 수. 체인 매핑이 없는 통화는 None."""
        chain = self.chain_for(symbol)
        if chain is None:
            return None
        block = await self.get_transaction_block(tx_hash, chain)
        if block is None:
            return 0
        latest = await self.get_latest_block(chain)
        return max(0, latest - block + 1)

    async def list_wallet_transactions(
        self, address: str, chain: str, limit: int = 10
    ) -> List[Dict[str, Any]]:
        payload = await self._get(
            f"/{address}", params={"chain": chain, "limit": limit, "order": "DESC"}
        )
        if not payload:
            return []
        result = payload.get("result") if isinstance(payload, dict) else payload
        return list(result or [])
