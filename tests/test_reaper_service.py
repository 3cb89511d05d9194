from datetime import timedelta
from decimal import Decimal
from unittest.mock import AsyncMock, Mock, patch

import pytest

from fundingapi.core.exceptions import ChainClientError, TransactionRevertedError
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.providers.chain.moralis import MoralisChainClient
from fundingapi.services.confirmation_source import LiveFeed, PolledSimulation
from fundingapi.services.reaper_service import (
    REVERTED_REASON,
    WINDOW_EXCEEDED_REASON,
    ConfirmationReaper,
)
from fundingapi.utils.timezone_utils import get_utc_now
from tests.factories import make_settings


@pytest.fixture
def simulation(price_oracle):
    return PolledSimulation(price_oracle)


@pytest.fixture
def chain_client():
    client = Mock(spec=MoralisChainClient)
    client.get_confirmations = AsyncMock(return_value=12)
    return client


def _reaper(db, settlement_service, source, registry, settings):
    return ConfirmationReaper(
        db=db,
        settlement_service=settlement_service,
        confirmation_source=source,
        registry=registry,
        settings=settings,
    )


def _observe(funding_repo, request_id, confirmations=3, tx_hash="0xlive"):
    funding_repo.transition(
        request_id,
        FundingStatusEnum.PENDING,
        FundingStatusEnum.CHAIN_OBSERVED,
        observed_chain_hash=tx_hash,
        observed_confirmations=confirmations,
        actual_usd_amount=Decimal("1000.00"),
    )


@pytest.mark.asyncio
async def test_simulation_settles_request_after_min_elapsed(
    db, settlement_service, simulation, registry, settings, pending_usdt,
    funding_repo, ledger_repo, verified_user,
):
    reaper = _reaper(db, settlement_service, simulation, registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=3))

    assert result.scanned == 1
    assert result.settled == 1
    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.SETTLED
    assert request.observed_chain_hash.startswith(f"sim_{pending_usdt.id}_")
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("1000.00")


@pytest.mark.asyncio
async def test_young_request_is_left_alone(
    db, settlement_service, simulation, registry, settings, pending_usdt, funding_repo
):
    reaper = _reaper(db, settlement_service, simulation, registry, settings)

    result = await reaper.run_once(now=get_utc_now())

    assert result.skipped == 1
    assert result.settled == 0
    assert funding_repo.get(pending_usdt.id).status == FundingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_request_past_observation_window_fails(
    db, settlement_service, chain_client, registry, settings, pending_usdt, funding_repo
):
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(hours=25))

    assert result.timed_out == 1
    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.FAILED
    assert request.failure_reason == WINDOW_EXCEEDED_REASON
    assert request.resolved_at is not None

    # 종료된 요청은 다음 틱에서 다시 보지 않음
    again = await reaper.run_once(now=get_utc_now() + timedelta(hours=26))
    assert again.scanned == 0


@pytest.mark.asyncio
async def test_confirmed_leftover_is_settled_regardless_of_age(
    db, settlement_service, chain_client, registry, settings, pending_usdt,
    funding_repo, ledger_repo, verified_user,
):
    _observe(funding_repo, pending_usdt.id, confirmations=12)
    funding_repo.transition(
        pending_usdt.id, FundingStatusEnum.CHAIN_OBSERVED, FundingStatusEnum.CONFIRMED
    )
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(hours=30))

    assert result.settled == 1
    assert result.timed_out == 0
    assert funding_repo.get(pending_usdt.id).status == FundingStatusEnum.SETTLED
    assert ledger_repo.get_ledger(verified_user.id).current_balance == Decimal("1000.00")


@pytest.mark.asyncio
async def test_live_feed_confirmations_settle_observed_request(
    db, settlement_service, chain_client, registry, settings, pending_usdt, funding_repo
):
    _observe(funding_repo, pending_usdt.id)
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.settled == 1
    chain_client.get_confirmations.assert_awaited_once_with("0xlive", "USDT")
    assert funding_repo.get(pending_usdt.id).observed_confirmations == 12


@pytest.mark.asyncio
async def test_live_feed_partial_confirmations_keep_observing(
    db, settlement_service, chain_client, registry, settings, pending_usdt, funding_repo
):
    chain_client.get_confirmations.return_value = 6
    _observe(funding_repo, pending_usdt.id)
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.observed == 1
    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.CHAIN_OBSERVED
    assert request.observed_confirmations == 6


@pytest.mark.asyncio
async def test_live_feed_lookup_failure_is_deferred(
    db, settlement_service, chain_client, registry, settings, pending_usdt, funding_repo
):
    chain_client.get_confirmations.side_effect = ChainClientError("HTTP 503")
    _observe(funding_repo, pending_usdt.id)
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.deferred == 1
    assert result.errors == 0
    assert funding_repo.get(pending_usdt.id).status == FundingStatusEnum.CHAIN_OBSERVED


@pytest.mark.asyncio
async def test_reverted_observed_transaction_fails_request(
    db, settlement_service, chain_client, registry, settings, pending_usdt,
    funding_repo, ledger_repo, verified_user,
):
    chain_client.get_confirmations.side_effect = TransactionRevertedError("0xlive", "eth")
    _observe(funding_repo, pending_usdt.id)
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.failed == 1
    assert result.deferred == 0
    assert result.errors == 0
    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.FAILED
    assert request.failure_reason == REVERTED_REASON
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("0")


@pytest.mark.asyncio
async def test_tick_reaches_requests_beyond_one_batch(
    db, settlement_service, chain_client, registry, funding_repo, verified_user,
    pending_usdt,
):
    chain_client.get_confirmations.side_effect = ChainClientError("HTTP 503")
    stuck = [pending_usdt.id]
    for _ in range(2):
        stuck.append(
            funding_repo.create_pending(
                user_id=verified_user.id,
                cryptocurrency="USDT",
                expected_usd_amount=Decimal("1000.00"),
                destination_wallet_address=pending_usdt.destination_wallet_address,
                required_confirmations=12,
            ).id
        )
    for index, request_id in enumerate(stuck):
        _observe(funding_repo, request_id, tx_hash=f"0xstuck{index}")
    # 가장 최근 요청은 정산 직전에 멈춘 confirmed 상태
    newest = funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("1000.00"),
        destination_wallet_address=pending_usdt.destination_wallet_address,
        required_confirmations=12,
    )
    _observe(funding_repo, newest.id, confirmations=12, tx_hash="0xnewest")
    funding_repo.transition(
        newest.id, FundingStatusEnum.CHAIN_OBSERVED, FundingStatusEnum.CONFIRMED
    )
    reaper = _reaper(
        db, settlement_service, LiveFeed(chain_client), registry,
        make_settings(REAPER_BATCH_SIZE=2),
    )

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.scanned == 4
    assert result.deferred == 3
    assert result.settled == 1
    assert funding_repo.get(newest.id).status == FundingStatusEnum.SETTLED


@pytest.mark.asyncio
async def test_live_feed_does_not_invent_deposits(
    db, settlement_service, chain_client, registry, settings, pending_usdt, funding_repo
):
    reaper = _reaper(db, settlement_service, LiveFeed(chain_client), registry, settings)

    result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=5))

    assert result.skipped == 1
    assert funding_repo.get(pending_usdt.id).status == FundingStatusEnum.PENDING


@pytest.mark.asyncio
async def test_one_failing_request_does_not_stop_the_tick(
    db, settlement_service, simulation, registry, settings, funding_repo, verified_user,
    pending_usdt,
):
    second = funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="ETH",
        expected_usd_amount=Decimal("250.00"),
        destination_wallet_address=pending_usdt.destination_wallet_address,
        required_confirmations=12,
    )
    reaper = _reaper(db, settlement_service, simulation, registry, settings)
    original = settlement_service.process_event
    calls = []

    async def flaky(event):
        calls.append(event.transaction_hash)
        if len(calls) == 1:
            raise RuntimeError("transient")
        return await original(event)

    with patch.object(settlement_service, "process_event", side_effect=flaky):
        result = await reaper.run_once(now=get_utc_now() + timedelta(minutes=3))

    assert result.scanned == 2
    assert result.errors == 1
    assert result.settled == 1
    statuses = {funding_repo.get(pending_usdt.id).status, funding_repo.get(second.id).status}
    assert statuses == {FundingStatusEnum.PENDING, FundingStatusEnum.SETTLED}
