import asyncio
from decimal import Decimal

import pytest

from arena.config import GameSettings
from arena.errors import ArenaError, InsufficientFundsError, NotFoundError, ValidationError
from arena.ledger import BalanceDirection, UserLedger
from arena.models import TransactionType


@pytest.mark.asyncio
async def test_find_or_create_is_idempotent(ledger):
    first = await ledger.find_or_create_user(telegram_id=42, first_name="Ana")
    second = await ledger.find_or_create_user(telegram_id=42, first_name="Otro")

    assert first.id == second.id
    assert second.first_name == "Ana"
    assert second.balance == Decimal("0.00")


@pytest.mark.asyncio
async def test_deposit_and_withdraw_record_transactions(ledger, user_factory):
    user = await user_factory(balance="50.00")

    tx = await ledger.withdraw(user.id, "20.25")
    assert tx.type == TransactionType.WITHDRAWAL
    assert tx.balance_before == Decimal("50.00")
    assert tx.balance_after == Decimal("29.75")
    assert await ledger.get_balance(user.id) == Decimal("29.75")

    history = await ledger.get_transactions(user.id)
    assert [t.type for t in history] == [TransactionType.WITHDRAWAL, TransactionType.DEPOSIT]


@pytest.mark.asyncio
async def test_overdraft_rejected_and_balance_untouched(ledger, user_factory):
    user = await user_factory(balance="10.00")

    with pytest.raises(InsufficientFundsError):
        await ledger.withdraw(user.id, "10.01")

    assert await ledger.get_balance(user.id) == Decimal("10.00")
    assert len(await ledger.get_transactions(user.id)) == 1


@pytest.mark.asyncio
async def test_withdraw_whole_balance_leaves_zero(ledger, user_factory):
    user = await user_factory(balance="10.00")
    await ledger.adjust_balance(user.id, "10.00", BalanceDirection.SUBTRACT)
    assert await ledger.get_balance(user.id) == Decimal("0.00")


@pytest.fixture
def offline_ledger():
    # validate_amount no toca la base
    return UserLedger(None, GameSettings())


@pytest.mark.parametrize("amount", [0, "-5", 10.5, "1.001", "abc", None, True, "100001"])
def test_invalid_amounts_rejected(offline_ledger, amount):
    with pytest.raises(ValidationError):
        offline_ledger.validate_amount(amount)


def test_valid_amount_is_quantized(offline_ledger):
    assert offline_ledger.validate_amount("7.5") == Decimal("7.50")
    assert offline_ledger.validate_amount(3) == Decimal("3.00")


@pytest.mark.asyncio
async def test_has_sufficient_balance(ledger, user_factory):
    user = await user_factory(balance="25.00")
    assert await ledger.has_sufficient_balance(user.id, "25.00")
    assert not await ledger.has_sufficient_balance(user.id, "25.01")


@pytest.mark.asyncio
async def test_unknown_user(ledger):
    with pytest.raises(NotFoundError):
        await ledger.deposit(9999, "10.00")
    with pytest.raises(NotFoundError):
        await ledger.get_transactions(9999)


@pytest.mark.asyncio
async def test_concurrent_withdrawals_never_lose_updates(file_session_factory, settings):
    ledger = UserLedger(file_session_factory, settings)
    user = await ledger.find_or_create_user(telegram_id=77)
    await ledger.deposit(user.id, "100.00")

    results = await asyncio.gather(
        *[ledger.withdraw(user.id, "10.00") for _ in range(5)],
        return_exceptions=True,
    )
    done = [r for r in results if not isinstance(r, BaseException)]
    failed = [r for r in results if isinstance(r, BaseException)]

    # Los perdedores de la carrera fallan con error de dominio, nunca en silencio
    assert all(isinstance(e, ArenaError) for e in failed)
    assert done
    assert await ledger.get_balance(user.id) == Decimal("100.00") - Decimal("10.00") * len(done)
    assert len(await ledger.get_transactions(user.id)) == 1 + len(done)
    assert sorted(tx.balance_after for tx in done) == sorted(
        Decimal("100.00") - Decimal("10.00") * (i + 1) for i in range(len(done))
    )
