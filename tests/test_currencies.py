import pytest

from fundingapi.core.currencies import CurrencyRegistry
from fundingapi.core.exceptions import ConfigurationError
from tests.factories import BTC_WALLET, EVM_WALLET, make_settings


def test_default_policies(registry):
    assert registry.require("ETH").required_confirmations == 12
    assert registry.require("BNB").required_confirmations == 15
    assert registry.require("BTC").required_confirmations == 1
    assert registry.require("btc").decimals == 8
    assert registry.require("USDT").pegged is True
    assert registry.require("ETH").pegged is False


def test_shared_evm_wallet_maps_to_several_currencies(registry):
    assert set(registry.symbols_for_wallet(EVM_WALLET.lower())) == {"ETH", "BNB", "USDT"}
    assert registry.symbols_for_wallet(BTC_WALLET) == ["BTC"]
    assert registry.symbols_for_wallet("0xdeadbeef") == []
    assert registry.is_monitored(EVM_WALLET.lower())


def test_unknown_currency_require_raises(registry):
    assert registry.get("DOGE") is None
    with pytest.raises(KeyError):
        registry.require("DOGE")


def test_missing_wallet_fails_at_startup():
    settings = make_settings(WALLET_ADDRESSES={"BTC": BTC_WALLET, "ETH": EVM_WALLET, "USDT": EVM_WALLET})

    with pytest.raises(ConfigurationError) as exc_info:
        CurrencyRegistry.from_settings(settings)

    assert "BNB" in str(exc_info.value)
    assert "destination wallet" in str(exc_info.value)


def test_missing_price_mapping_and_decimals_reported_together():
    settings = make_settings(
        SUPPORTED_CURRENCIES=["BTC", "SOL"],
        FALLBACK_PRICES={"BTC": "43000"},
    )

    with pytest.raises(ConfigurationError) as exc_info:
        CurrencyRegistry.from_settings(settings)

    message = str(exc_info.value)
    assert "SOL" in message
    assert "price symbol mapping" in message
    assert "decimal exponent" in message
    assert "last-resort fallback price" in message


def test_empty_currency_list_is_rejected():
    with pytest.raises(ConfigurationError):
        CurrencyRegistry.from_settings(make_settings(SUPPORTED_CURRENCIES=[]))
