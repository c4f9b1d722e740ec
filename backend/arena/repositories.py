"""Repositorios de usuarios, transacciones y partidas.

- Reciben una ``AsyncSession`` ya abierta; NUNCA hacen commit.
- El servicio que los usa es dueño de la transacción (``session.begin()``).
- ``lock=True`` emite ``SELECT ... FOR UPDATE`` y refresca la identidad
  en memoria con lo que hay en la base.
"""

from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence

from sqlalchemy import func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from .models import (
    OPEN_STATUSES,
    GameType,
    Match,
    MatchStatus,
    Transaction,
    TransactionType,
    User,
    utcnow,
)


class UserRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def get(self, user_id: int, lock: bool = False) -> Optional[User]:
        stmt = select(User).where(User.id == user_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def get_many(self, user_ids: Sequence[int], lock: bool = False) -> List[User]:
        """Usuarios ordenados por id (orden estable de bloqueo)."""
        stmt = select(User).where(User.id.in_(list(user_ids))).order_by(User.id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_telegram_id(self, telegram_id: int) -> Optional[User]:
        result = await self.session.execute(select(User).where(User.telegram_id == telegram_id))
        return result.scalar_one_or_none()

    async def create(
        self,
        telegram_id: int,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> User:
        user = User(
            telegram_id=telegram_id,
            first_name=first_name,
            last_name=last_name,
            username=username,
            balance=Decimal("0.00"),
        )
        self.session.add(user)
        await self.session.flush()
        return user

    async def set_balance(self, user: User, balance: Decimal) -> User:
        user.balance = balance
        await self.session.flush()
        return user


class TransactionRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        user_id: int,
        type: TransactionType,
        amount: Decimal,
        balance_before: Decimal,
        balance_after: Decimal,
        description: Optional[str] = None,
        match_id: Optional[int] = None,
    ) -> Transaction:
        tx = Transaction(
            user_id=user_id,
            match_id=match_id,
            type=type,
            amount=amount,
            balance_before=balance_before,
            balance_after=balance_after,
            description=description,
        )
        self.session.add(tx)
        await self.session.flush()
        return tx

    async def find_by_user(self, user_id: int, limit: int = 20) -> List[Transaction]:
        stmt = (
            select(Transaction)
            .where(Transaction.user_id == user_id)
            .order_by(Transaction.created_at.desc(), Transaction.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_match(self, match_id: int) -> List[Transaction]:
        stmt = select(Transaction).where(Transaction.match_id == match_id).order_by(Transaction.id)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())


class MatchRepository:
    def __init__(self, session: AsyncSession):
        self.session = session

    async def create(
        self,
        creator_id: int,
        game_type: GameType,
        bet_amount: Decimal,
        expires_at: datetime,
    ) -> Match:
        match = Match(
            creator_id=creator_id,
            game_type=game_type,
            bet_amount=bet_amount,
            status=MatchStatus.WAITING,
            game_data=None,
            expires_at=expires_at,
        )
        self.session.add(match)
        await self.session.flush()
        return match

    async def find_by_id(self, match_id: int, lock: bool = False) -> Optional[Match]:
        stmt = select(Match).where(Match.id == match_id)
        if lock:
            stmt = stmt.with_for_update().execution_options(populate_existing=True)
        result = await self.session.execute(stmt)
        return result.scalar_one_or_none()

    async def find_available(self, game_type: Optional[GameType] = None, limit: int = 10) -> List[Match]:
        """Partidas en ``waiting``, más nuevas primero."""
        stmt = select(Match).where(Match.status == MatchStatus.WAITING)
        if game_type is not None:
            stmt = stmt.where(Match.game_type == game_type)
        stmt = stmt.order_by(Match.created_at.desc(), Match.id.desc()).limit(limit)
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def find_by_user(self, user_id: int, limit: int = 20) -> List[Match]:
        stmt = (
            select(Match)
            .where(or_(Match.creator_id == user_id, Match.player2_id == user_id))
            .order_by(Match.created_at.desc(), Match.id.desc())
            .limit(limit)
        )
        result = await self.session.execute(stmt)
        return list(result.scalars().all())

    async def count_open_for_user(self, user_id: int) -> int:
        stmt = (
            select(func.count(Match.id))
            .where(or_(Match.creator_id == user_id, Match.player2_id == user_id))
            .where(Match.status.in_(OPEN_STATUSES))
        )
        result = await self.session.execute(stmt)
        return int(result.scalar_one())

    async def update_status(self, match: Match, status: MatchStatus) -> Match:
        match.status = status
        await self.session.flush()
        return match

    async def update_game_data(self, match: Match, game_data: Dict[str, Any]) -> Match:
        # Nuevo dict: la columna JSON no detecta mutaciones in-place
        match.game_data = dict(game_data)
        await self.session.flush()
        return match

    async def attach_second_player(self, match: Match, player2_id: int) -> Match:
        """Agrega al oponente y pasa la partida a ``active``."""
        match.player2_id = player2_id
        match.status = MatchStatus.ACTIVE
        match.started_at = utcnow()
        await self.session.flush()
        return match

    async def complete(
        self,
        match: Match,
        winner_id: Optional[int],
        prize: Decimal,
        rake_amount: Decimal,
    ) -> Match:
        match.status = MatchStatus.COMPLETED
        match.winner_id = winner_id
        match.prize = prize
        match.rake_amount = rake_amount
        match.completed_at = utcnow()
        await self.session.flush()
        return match
