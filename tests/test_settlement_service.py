from decimal import Decimal
from unittest.mock import patch

import pytest

from fundingapi.core.yield_tiers import YieldTier, YieldTierTable
from fundingapi.models.funding import FundingStatusEnum
from fundingapi.schemas.settlement import OutcomeType
from fundingapi.services.settlement_service import SettlementService
from tests.factories import EVM_WALLET, make_event


def _confirmed(funding_repo, request_id, tx_hash="0xabc", amount="1000.00"):
    funding_repo.transition(
        request_id,
        FundingStatusEnum.PENDING,
        FundingStatusEnum.CHAIN_OBSERVED,
        observed_chain_hash=tx_hash,
        observed_confirmations=12,
        actual_usd_amount=Decimal(amount),
    )
    funding_repo.transition(
        request_id, FundingStatusEnum.CHAIN_OBSERVED, FundingStatusEnum.CONFIRMED
    )
    return funding_repo.get(request_id)


@pytest.mark.asyncio
async def test_fully_confirmed_event_settles_and_credits_ledger(
    settlement_service, pending_usdt, ledger_repo, funding_repo, verified_user
):
    outcome = await settlement_service.process_event(make_event())

    assert outcome.outcome == OutcomeType.SETTLED
    assert outcome.credited_usd == Decimal("1000.00")

    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.SETTLED
    assert request.observed_chain_hash == "0xabc"
    assert request.actual_usd_amount == Decimal("1000.00")
    assert request.price_source == "pegged"
    assert request.resolved_at is not None

    ledger = ledger_repo.get_ledger(verified_user.id)
    assert ledger.total_invested == Decimal("1000.00")
    assert ledger.current_balance == Decimal("1000.00")
    assert ledger.daily_yield_rate == Decimal("2.5")


@pytest.mark.asyncio
async def test_redelivered_event_credits_once(
    settlement_service, pending_usdt, ledger_repo, verified_user
):
    outcomes = [await settlement_service.process_event(make_event()) for _ in range(5)]

    assert outcomes[0].outcome == OutcomeType.SETTLED
    assert all(o.outcome == OutcomeType.ALREADY_RESOLVED for o in outcomes[1:])
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("1000.00")


@pytest.mark.asyncio
async def test_partial_confirmations_then_settle_then_late_event(
    settlement_service, pending_usdt, funding_repo, ledger_repo, verified_user
):
    first = await settlement_service.process_event(make_event(confirmations=5))

    assert first.outcome == OutcomeType.OBSERVED
    observed = funding_repo.get(pending_usdt.id)
    assert observed.status == FundingStatusEnum.CHAIN_OBSERVED
    assert observed.observed_confirmations == 5

    second = await settlement_service.process_event(make_event(confirmations=12))
    assert second.outcome == OutcomeType.SETTLED

    # 늦게 도착한 낮은 컨펌 수 이벤트는 상태를 되돌리지 않음
    late = await settlement_service.process_event(make_event(confirmations=8))
    assert late.outcome == OutcomeType.ALREADY_RESOLVED

    settled = funding_repo.get(pending_usdt.id)
    assert settled.status == FundingStatusEnum.SETTLED
    assert settled.observed_confirmations == 12
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("1000.00")


@pytest.mark.asyncio
async def test_underpayment_fails_request_and_binds_hash(
    settlement_service, pending_usdt, funding_repo, ledger_repo, verified_user
):
    outcome = await settlement_service.process_event(make_event(raw_value="900000000"))

    assert outcome.outcome == OutcomeType.FAILED
    failed = funding_repo.get(pending_usdt.id)
    assert failed.status == FundingStatusEnum.FAILED
    assert failed.failure_reason.startswith("underpaid")
    assert failed.observed_chain_hash == "0xabc"
    assert failed.actual_usd_amount == Decimal("900.00")
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("0")

    again = await settlement_service.process_event(make_event(raw_value="900000000"))
    assert again.outcome == OutcomeType.ALREADY_RESOLVED
    assert again.request_id == pending_usdt.id


@pytest.mark.asyncio
async def test_redelivered_bad_transfer_does_not_fail_next_request_on_shared_wallet(
    settlement_service, pending_usdt, funding_repo, ledger_repo
):
    other_user = ledger_repo.create_user(
        email="second@example.com", name="Second", is_verified=True
    )
    other = funding_repo.create_pending(
        user_id=other_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("1000.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )

    # 미확정 -> 확정 순으로 같은 트랜잭션이 두 번 도착
    first = await settlement_service.process_event(
        make_event(raw_value="500000000", confirmations=0)
    )
    second = await settlement_service.process_event(
        make_event(raw_value="500000000", confirmations=12)
    )

    assert first.outcome == OutcomeType.FAILED
    assert first.request_id == pending_usdt.id
    assert second.outcome == OutcomeType.ALREADY_RESOLVED
    assert second.request_id == pending_usdt.id
    assert funding_repo.get(other.id).status == FundingStatusEnum.PENDING

    # 남은 요청은 올바른 다른 송금으로 정상 정산됨
    paid = await settlement_service.process_event(make_event(transaction_hash="0xgood"))
    assert paid.outcome == OutcomeType.SETTLED
    assert paid.request_id == other.id


@pytest.mark.asyncio
async def test_overpayment_fails_request(settlement_service, pending_usdt, funding_repo):
    outcome = await settlement_service.process_event(make_event(raw_value="1100000000"))

    assert outcome.outcome == OutcomeType.FAILED
    assert funding_repo.get(pending_usdt.id).failure_reason.startswith("overpaid")


@pytest.mark.asyncio
async def test_event_to_wallet_without_pending_request_is_ignored(settlement_service):
    outcome = await settlement_service.process_event(make_event())

    assert outcome.outcome == OutcomeType.IGNORED
    assert outcome.request_id is None


@pytest.mark.asyncio
async def test_unverified_user_request_fails(
    settlement_service, funding_repo, ledger_repo
):
    user = ledger_repo.create_user(email="new@example.com", name="New", is_verified=False)
    request = funding_repo.create_pending(
        user_id=user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("1000.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )

    outcome = await settlement_service.process_event(make_event())

    assert outcome.outcome == OutcomeType.FAILED
    assert funding_repo.get(request.id).failure_reason.startswith("ineligible")
    assert ledger_repo.get_ledger(user.id).current_balance == Decimal("0")


@pytest.mark.asyncio
async def test_low_confidence_price_defers_and_keeps_request_pending(
    settlement_service, funding_repo, verified_user, price_source
):
    request = funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="ETH",
        expected_usd_amount=Decimal("1000.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )
    price_source.failing = True

    outcome = await settlement_service.process_event(
        make_event(symbol="ETH", raw_value="400000000000000000")
    )

    assert outcome.outcome == OutcomeType.DEFERRED
    assert funding_repo.get(request.id).status == FundingStatusEnum.PENDING

    # 가격 소스가 복구되면 같은 이벤트로 정산
    price_source.failing = False
    retried = await settlement_service.process_event(
        make_event(symbol="ETH", raw_value="500000000000000000")
    )
    assert retried.outcome == OutcomeType.SETTLED


@pytest.mark.asyncio
async def test_settlement_recomputes_tier_in_same_transaction(
    db, price_oracle, settings, funding_repo, ledger_repo, verified_user
):
    tiers = YieldTierTable(
        [
            YieldTier(Decimal("100"), Decimal("500"), Decimal("1.5")),
            YieldTier(Decimal("600"), Decimal("1000"), Decimal("2.5")),
        ]
    )
    ledger_repo.apply_settlement_credit(verified_user.id, Decimal("400"), tiers, commit=True)
    assert ledger_repo.get_ledger(verified_user.id).daily_yield_rate == Decimal("1.5")

    funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("300.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )
    service = SettlementService(
        db=db, price_oracle=price_oracle, yield_tiers=tiers, settings=settings
    )

    outcome = await service.process_event(make_event(raw_value="300000000"))

    assert outcome.outcome == OutcomeType.SETTLED
    ledger = ledger_repo.get_ledger(verified_user.id)
    assert ledger.total_invested == Decimal("700.00")
    assert ledger.current_balance == Decimal("700.00")
    assert ledger.daily_yield_rate == Decimal("2.5")


def test_settle_cas_loser_writes_nothing(
    db, price_oracle, yield_tiers, settings, funding_repo, pending_usdt, ledger_repo,
    verified_user,
):
    stale = _confirmed(funding_repo, pending_usdt.id)
    winner = SettlementService(
        db=db, price_oracle=price_oracle, yield_tiers=yield_tiers, settings=settings
    )
    loser = SettlementService(
        db=db, price_oracle=price_oracle, yield_tiers=yield_tiers, settings=settings
    )

    assert winner.settle(pending_usdt.id).outcome == OutcomeType.SETTLED

    # 패자는 정산 전 스냅샷(confirmed)을 본 상태로 CAS 에 진입
    current = funding_repo.get(pending_usdt.id)
    with patch.object(loser.funding_repo, "get", side_effect=[stale, current]):
        outcome = loser.settle(pending_usdt.id)

    assert outcome.outcome == OutcomeType.ALREADY_RESOLVED
    assert outcome.status == FundingStatusEnum.SETTLED
    ledger = ledger_repo.get_ledger(verified_user.id)
    assert ledger.total_invested == Decimal("1000.00")
    assert ledger.current_balance == Decimal("1000.00")


def test_ledger_failure_rolls_back_settled_transition(
    settlement_service, funding_repo, pending_usdt, ledger_repo, verified_user
):
    _confirmed(funding_repo, pending_usdt.id)

    with patch.object(
        settlement_service.ledger_repo,
        "apply_settlement_credit",
        side_effect=RuntimeError("db down"),
    ):
        with pytest.raises(RuntimeError):
            settlement_service.settle(pending_usdt.id)

    assert funding_repo.get(pending_usdt.id).status == FundingStatusEnum.CONFIRMED
    assert ledger_repo.get_ledger(verified_user.id).total_invested == Decimal("0")

    # 다음 시도에서 정상 정산
    assert settlement_service.settle(pending_usdt.id).outcome == OutcomeType.SETTLED


def test_terminal_requests_never_change(settlement_service, funding_repo, pending_usdt):
    _confirmed(funding_repo, pending_usdt.id)
    settlement_service.settle(pending_usdt.id)

    assert settlement_service.fail(pending_usdt.id, "late failure") is False
    assert settlement_service.cancel(pending_usdt.id) is False
    assert settlement_service.advance(pending_usdt.id).outcome == OutcomeType.ALREADY_RESOLVED

    request = funding_repo.get(pending_usdt.id)
    assert request.status == FundingStatusEnum.SETTLED
    assert request.failure_reason is None


def test_cancel_pending_and_observed_but_not_confirmed(
    settlement_service, funding_repo, verified_user, pending_usdt
):
    assert settlement_service.cancel(pending_usdt.id, "user asked") is True
    cancelled = funding_repo.get(pending_usdt.id)
    assert cancelled.status == FundingStatusEnum.FAILED
    assert cancelled.failure_reason == "user asked"

    observed = funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("500.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )
    funding_repo.transition(
        observed.id,
        FundingStatusEnum.PENDING,
        FundingStatusEnum.CHAIN_OBSERVED,
        observed_chain_hash="0xobserved",
    )
    assert settlement_service.cancel(observed.id) is True

    confirmed = funding_repo.create_pending(
        user_id=verified_user.id,
        cryptocurrency="USDT",
        expected_usd_amount=Decimal("500.00"),
        destination_wallet_address=EVM_WALLET,
        required_confirmations=12,
    )
    _confirmed(funding_repo, confirmed.id, tx_hash="0xconfirmed", amount="500.00")
    assert settlement_service.cancel(confirmed.id) is False
    assert funding_repo.get(confirmed.id).status == FundingStatusEnum.CONFIRMED


def test_record_confirmations_advances_observed_request(
    settlement_service, funding_repo, pending_usdt
):
    funding_repo.transition(
        pending_usdt.id,
        FundingStatusEnum.PENDING,
        FundingStatusEnum.CHAIN_OBSERVED,
        observed_chain_hash="0xabc",
        observed_confirmations=3,
        actual_usd_amount=Decimal("1000.00"),
    )

    assert (
        settlement_service.record_confirmations(pending_usdt.id, 7).outcome
        == OutcomeType.OBSERVED
    )
    assert (
        settlement_service.record_confirmations(pending_usdt.id, 12).outcome
        == OutcomeType.SETTLED
    )
