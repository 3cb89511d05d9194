"""
지원 암호화폐별 정책(소수 자릿수, 필요 컨펌 수, 입금 지갑, 가격 심볼)을 한 곳에서 관리합니다.

정책 테이블은 프로세스 시작 시 한 번 만들어지며, 누락된 설정이 있으면
이벤트 처리 시점이 아니라 시작 시점에 ConfigurationError로 실패합니다.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from fundingapi.core.exceptions import ConfigurationError


@dataclass(frozen=True)
class CurrencyPolicy:
    symbol: str
    decimals: int
    price_symbol: str
    wallet_address: str
    required_confirmations: int
    min_elapsed_seconds: int
    pegged: bool = False


class CurrencyRegistry:
    """Lookup of currency policies by symbol and by monitored wallet."""

    def __init__(self, policies: List[CurrencyPolicy]):
        self._policies: Dict[str, CurrencyPolicy] = {p.symbol: p for p in policies}

    @classmethod
    def from_settings(cls, settings) -> "CurrencyRegistry":
        """설정으로부터 레지스트리를 생성합니다. 누락된 항목은 모두 모아서 한 번에 보고합니다."""
        problems: List[str] = []
        policies: List[CurrencyPolicy] = []
        pegged = {s.upper() for s in settings.PEGGED_SYMBOLS}

        for raw_symbol in settings.SUPPORTED_CURRENCIES:
            symbol = raw_symbol.upper()
            price_symbol = settings.PRICE_SYMBOLS.get(symbol)
            decimals = settings.CURRENCY_DECIMALS.get(symbol)
            wallet = settings.WALLET_ADDRESSES.get(symbol)
            confirmations = settings.REQUIRED_CONFIRMATIONS.get(symbol)

            missing = []
            if not price_symbol:
                missing.append("price symbol mapping")
            if decimals is None:
                missing.append("decimal exponent")
            if not wallet:
                missing.append("destination wallet")
            if confirmations is None or confirmations < 0:
                missing.append("required confirmations")
            if symbol not in pegged and symbol not in settings.FALLBACK_PRICES:
                missing.append("last-resort fallback price")
            if missing:
                problems.append(f"{symbol}: missing {', '.join(missing)}")
                continue

            policies.append(
                CurrencyPolicy(
                    symbol=symbol,
                    decimals=int(decimals),
                    price_symbol=price_symbol.upper(),
                    wallet_address=wallet,
                    required_confirmations=int(confirmations),
                    min_elapsed_seconds=int(settings.MIN_ELAPSED_SECONDS.get(symbol, 0)),
                    pegged=symbol in pegged,
                )
            )

        if problems:
            raise ConfigurationError(
                "Invalid currency configuration: " + "; ".join(problems)
            )
        if not policies:
            raise ConfigurationError("No supported currencies configured")
        return cls(policies)

    def get(self, symbol: str) -> Optional[CurrencyPolicy]:
        return self._policies.get((symbol or "").upper())

    def require(self, symbol: str) -> CurrencyPolicy:
        policy = self.get(symbol)
        if policy is None:
            raise KeyError(f"Unsupported currency: {symbol}")
        return policy

    @property
    def symbols(self) -> List[str]:
        return list(self._policies.keys())

    def symbols_for_wallet(self, address: str) -> List[str]:
        """주소로 들어오는 입금이 가능한 통화 목록 (EVM 지갑은 여러 통화가 공유)"""
        if not address:
            return []
        needle = address.lower()
        return [
            p.symbol for p in self._policies.values() if p.wallet_address.lower() == needle
        ]

    def is_monitored(self, address: str) -> bool:
        return bool(self.symbols_for_wallet(address))

    def monitored_wallets(self) -> Dict[str, str]:
        return {p.symbol: p.wallet_address for p in self._policies.values()}
