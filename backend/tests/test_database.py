from decimal import Decimal

import pytest
from sqlalchemy import text

from arena.config import GameSettings
from arena.database import unit_of_work
from arena.errors import InternalError, InvalidStateError, NotFoundError
from arena.ledger import UserLedger
from arena.match_service import MatchService
from arena.repositories import MatchRepository, UserRepository


@pytest.fixture
def file_ledger(file_session_factory):
    return UserLedger(file_session_factory, GameSettings())


async def funded_user(ledger, telegram_id, balance="100.00"):
    user = await ledger.find_or_create_user(telegram_id=telegram_id)
    await ledger.deposit(user.id, balance)
    return user


@pytest.mark.asyncio
async def test_stale_match_write_becomes_invalid_state(file_session_factory, file_ledger):
    service = MatchService(file_session_factory, GameSettings(), ledger=file_ledger)
    creator = await funded_user(file_ledger, 501)
    match = await service.create_match(creator.id, "domino", "10.00")

    with pytest.raises(InvalidStateError):
        async with unit_of_work(file_session_factory, "test_stale_match") as session:
            stale = await MatchRepository(session).find_by_id(match.id)

            async with unit_of_work(file_session_factory, "test_concurrent_match") as other:
                repo = MatchRepository(other)
                fresh = await repo.find_by_id(match.id, lock=True)
                await repo.update_game_data(fresh, {"round": 1})

            stale.game_data = {"round": 2}

    stored = await service.get_match(match.id)
    assert stored.game_data == {"round": 1}


@pytest.mark.asyncio
async def test_stale_balance_write_becomes_invalid_state(file_session_factory, file_ledger):
    user = await funded_user(file_ledger, 502)

    with pytest.raises(InvalidStateError):
        async with unit_of_work(file_session_factory, "test_stale_balance") as session:
            stale = await UserRepository(session).get(user.id)
            await file_ledger.deposit(user.id, "5.00")
            stale.balance = Decimal("0.00")

    assert await file_ledger.get_balance(user.id) == Decimal("105.00")


@pytest.mark.asyncio
async def test_driver_failure_becomes_internal_error(session_factory):
    with pytest.raises(InternalError) as exc_info:
        async with unit_of_work(session_factory, "test_broken_query") as session:
            await session.execute(text("SELECT * FROM no_such_table"))

    assert exc_info.value.message == "Error interno, intente más tarde"


@pytest.mark.asyncio
async def test_domain_errors_pass_through_and_roll_back(session_factory):
    with pytest.raises(NotFoundError):
        async with unit_of_work(session_factory, "test_domain_error") as session:
            await UserRepository(session).create(telegram_id=503)
            raise NotFoundError("Usuario no encontrado")

    async with unit_of_work(session_factory, "test_lookup") as session:
        assert await UserRepository(session).find_by_telegram_id(503) is None
