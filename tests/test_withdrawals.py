from decimal import Decimal

import pytest

from extensions import db
from rewards.errors import (
    BelowMinimum, InsufficientBalance, InsufficientLiquidity, InvalidTransition, NoWallet,
    TransferFailed, TransferIndeterminate, UnsupportedAsset, UserNotFound, WithdrawalNotFound,
)
from rewards.ledger import LedgerHelper
from rewards.withdrawals import WithdrawalManager
from models import WithdrawalRequest


@pytest.fixture
def manager(chain):
    return WithdrawalManager(chain)


@pytest.fixture
def funded_user(make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "10")
    db.session.commit()
    return user


def test_below_minimum_leaves_balance_untouched(manager, funded_user):
    with pytest.raises(BelowMinimum) as exc:
        manager.request_withdrawal(funded_user.id, "USDC", "0.05")
    assert exc.value.context["minimum"] == Decimal("0.1")
    assert LedgerHelper.available(funded_user.id) == Decimal("10")
    assert WithdrawalRequest.query.count() == 0


@pytest.mark.parametrize("amount", ["NaN", "sNaN", "Infinity", "-Infinity", "abc"])
def test_non_numeric_amount_is_below_minimum(manager, funded_user, amount):
    with pytest.raises(BelowMinimum):
        manager.request_withdrawal(funded_user.id, "USDC", amount)
    assert LedgerHelper.available(funded_user.id) == Decimal("10")
    assert WithdrawalRequest.query.count() == 0


def test_precondition_errors(manager, funded_user, make_user):
    with pytest.raises(UnsupportedAsset):
        manager.request_withdrawal(funded_user.id, "DOGE", "1")
    with pytest.raises(InsufficientBalance):
        manager.request_withdrawal(funded_user.id, "USDC", "10.5")
    with pytest.raises(UserNotFound):
        manager.request_withdrawal(99999, "USDC", "1")

    walletless = make_user(wallet=False)
    LedgerHelper.credit(walletless.id, "5")
    db.session.commit()
    with pytest.raises(NoWallet):
        manager.request_withdrawal(walletless.id, "USDC", "1")


def test_successful_withdrawal(manager, chain, funded_user):
    withdrawal_id = manager.request_withdrawal(funded_user.id, "usdc", "4")
    withdrawal = manager.get(withdrawal_id)

    assert withdrawal.status == "completed"
    assert withdrawal.tx_hash == "0x" + "ab" * 32
    assert chain.transfers == [(funded_user.wallet_address, Decimal("4.000000"), "USDC")]

    balance = LedgerHelper.balance(funded_user.id)
    assert balance["available"] == Decimal("6")
    assert balance["lifetime_withdrawn"] == Decimal("4")


def test_failed_transfer_refunds_exactly_once(manager, chain, funded_user):
    chain.outcomes.append(TransferFailed("reverted"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "4")

    withdrawal = manager.get(withdrawal_id)
    assert withdrawal.status == "failed"
    assert "reverted" in withdrawal.error_message
    assert LedgerHelper.available(funded_user.id) == Decimal("10")

    with pytest.raises(InvalidTransition):
        manager.fail_withdrawal(withdrawal_id, "again")
    assert LedgerHelper.available(funded_user.id) == Decimal("10")


def test_insufficient_liquidity_is_a_failure(manager, chain, funded_user):
    chain.outcomes.append(InsufficientLiquidity("relayer empty"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "2")
    assert manager.get(withdrawal_id).status == "failed"
    assert LedgerHelper.available(funded_user.id) == Decimal("10")


def test_indeterminate_transfer_stays_processing(manager, chain, funded_user):
    chain.outcomes.append(TransferIndeterminate("no receipt", tx_hash="0xfeed"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "3")

    withdrawal = manager.get(withdrawal_id)
    assert withdrawal.status == "processing"
    assert withdrawal.tx_hash == "0xfeed"
    assert LedgerHelper.available(funded_user.id) == Decimal("7")
    assert [w.id for w in WithdrawalManager.list_open()] == [withdrawal_id]


def test_unexpected_error_is_treated_as_indeterminate(manager, chain, funded_user):
    chain.outcomes.append(RuntimeError("socket closed"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "3")
    assert manager.get(withdrawal_id).status == "processing"
    assert LedgerHelper.available(funded_user.id) == Decimal("7")


def test_operator_completes_indeterminate_withdrawal(manager, chain, funded_user):
    chain.outcomes.append(TransferIndeterminate("no receipt"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "3")

    withdrawal = manager.complete_withdrawal(withdrawal_id, "0xbeef", resolved_by=funded_user.id)
    assert withdrawal.status == "completed"
    assert LedgerHelper.balance(funded_user.id)["lifetime_withdrawn"] == Decimal("3")

    with pytest.raises(InvalidTransition):
        manager.fail_withdrawal(withdrawal_id, "too late")
    assert LedgerHelper.available(funded_user.id) == Decimal("7")


def test_operator_fails_indeterminate_withdrawal(manager, chain, funded_user):
    chain.outcomes.append(TransferIndeterminate("no receipt"))
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "3")

    withdrawal = manager.fail_withdrawal(withdrawal_id, "never mined")
    assert withdrawal.status == "failed"
    assert LedgerHelper.available(funded_user.id) == Decimal("10")


def test_execute_requires_pending(manager, funded_user):
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "1")
    with pytest.raises(InvalidTransition):
        manager.execute(withdrawal_id)


def test_pol_withdrawal_debits_pol_row(manager, chain, make_user):
    user = make_user()
    LedgerHelper.credit(user.id, "2", asset="POL")
    db.session.commit()

    manager.request_withdrawal(user.id, "POL", "1.5")
    assert chain.transfers[-1][2] == "POL"
    assert LedgerHelper.available(user.id, "POL") == Decimal("0.5")


def test_withdrawal_lookup_is_scoped_to_owner(manager, funded_user, make_user):
    withdrawal_id = manager.request_withdrawal(funded_user.id, "USDC", "1")
    other = make_user()
    with pytest.raises(WithdrawalNotFound):
        WithdrawalManager.get(withdrawal_id, user_id=other.id)

    summary = WithdrawalManager.summary(funded_user.id)
    assert len(summary["withdrawals"]) == 1
    assert summary["open"] == 0
