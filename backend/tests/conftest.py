"""Fixtures compartidos: bases SQLite (memoria y archivo) y servicios listos para usar."""

import random
from decimal import Decimal

import pytest
import pytest_asyncio

from arena.config import GameSettings
from arena.database import create_engine_from_settings, create_session_factory, init_models
from arena.ledger import UserLedger
from arena.match_service import MatchService


class FixedCoin(random.Random):
    """RNG cuyo ``choice`` siempre devuelve el mismo valor."""

    def __init__(self, value):
        super().__init__(0)
        self.value = value

    def choice(self, seq):
        return self.value


@pytest.fixture
def settings():
    return GameSettings(
        database_url="sqlite+aiosqlite:///:memory:",
        min_bet_amount=Decimal("5.00"),
        max_bet_amount=Decimal("1000.00"),
        rake_percentage=Decimal("5.0"),
        game_timeout_minutes=30,
        max_active_games=5,
    )


@pytest_asyncio.fixture
async def session_factory(settings):
    engine = create_engine_from_settings(settings)
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest_asyncio.fixture
async def file_session_factory(tmp_path):
    """Base SQLite en archivo: cada sesión usa su propia conexión."""
    settings = GameSettings(database_url=f"sqlite+aiosqlite:///{tmp_path / 'arena.db'}")
    engine = create_engine_from_settings(settings)
    await init_models(engine)
    yield create_session_factory(engine)
    await engine.dispose()


@pytest.fixture
def ledger(session_factory, settings):
    return UserLedger(session_factory, settings)


@pytest.fixture
def service(session_factory, settings, ledger):
    return MatchService(session_factory, settings, ledger=ledger, rng=FixedCoin("heads"))


@pytest.fixture
def user_factory(ledger):
    """Crea usuarios con saldo inicial."""
    counter = {"next": 1000}

    async def _create(balance="100.00", **kwargs):
        counter["next"] += 1
        user = await ledger.find_or_create_user(telegram_id=counter["next"], **kwargs)
        if Decimal(balance) > 0:
            await ledger.deposit(user.id, balance)
        return user

    return _create
