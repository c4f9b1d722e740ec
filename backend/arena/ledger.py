"""
=============================================================================
ARENA - Ledger de Usuarios
=============================================================================
Único punto donde cambia un saldo. Cada ajuste:

1. Valida el monto (decimal, > 0, <= tope, máximo 2 decimales)
2. Bloquea la fila del usuario (SELECT ... FOR UPDATE)
3. Rechaza un débito que dejaría el saldo negativo
4. Escribe el nuevo saldo y UNA transacción con balance antes/después

Los métodos ``*_in_session`` corren dentro de la transacción del llamador
(el orquestador de partidas); el resto abre su propia unidad de trabajo.
=============================================================================
"""

import logging
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, List, Optional, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .config import GameSettings
from .database import unit_of_work
from .errors import InsufficientFundsError, NotFoundError, ValidationError
from .models import Transaction, TransactionType, User
from .repositories import TransactionRepository, UserRepository
from .settlement import CENTS, format_money


logger = logging.getLogger(__name__)

Amount = Union[str, int, Decimal]


class BalanceDirection(str, Enum):
    ADD = "add"
    SUBTRACT = "subtract"


class UserLedger:
    """Saldos y libro de transacciones de los usuarios."""

    def __init__(self, session_factory: async_sessionmaker[AsyncSession], settings: GameSettings):
        self.session_factory = session_factory
        self.settings = settings

    # -------------------------------------------------------------------------
    # VALIDACIÓN
    # -------------------------------------------------------------------------

    def validate_amount(self, amount: Any) -> Decimal:
        """Monto positivo, finito, con 2 decimales como máximo y bajo el tope."""
        if isinstance(amount, (float, bool)) or amount is None:
            raise ValidationError("Monto inválido", {"amount": repr(amount)})
        try:
            value = Decimal(str(amount).strip())
        except (InvalidOperation, ValueError):
            raise ValidationError("Monto inválido", {"amount": str(amount)})

        if not value.is_finite() or value <= 0:
            raise ValidationError("El monto debe ser positivo", {"amount": str(amount)})
        if value != value.quantize(CENTS):
            raise ValidationError("Máximo 2 decimales", {"amount": str(amount)})
        if value > self.settings.max_transaction_amount:
            raise ValidationError(
                "Monto por encima del máximo permitido",
                {"amount": str(amount), "max": str(self.settings.max_transaction_amount)},
            )
        return value.quantize(CENTS)

    # -------------------------------------------------------------------------
    # OPERACIONES DENTRO DE UNA TRANSACCIÓN EXISTENTE
    # -------------------------------------------------------------------------

    async def get_user_in_session(self, session: AsyncSession, user_id: int, lock: bool = False) -> User:
        user = await UserRepository(session).get(user_id, lock=lock)
        if user is None:
            raise NotFoundError("Usuario no encontrado", {"user_id": user_id})
        return user

    async def adjust_balance_in_session(
        self,
        session: AsyncSession,
        user_id: int,
        amount: Amount,
        direction: BalanceDirection,
        tx_type: Optional[TransactionType] = None,
        description: Optional[str] = None,
        match_id: Optional[int] = None,
    ) -> Transaction:
        value = self.validate_amount(amount)
        direction = BalanceDirection(direction)

        users = UserRepository(session)
        user = await self.get_user_in_session(session, user_id, lock=True)

        before = user.balance
        if direction == BalanceDirection.SUBTRACT:
            if before < value:
                raise InsufficientFundsError(
                    "Saldo insuficiente",
                    {"user_id": user_id, "balance": format_money(before), "required": format_money(value)},
                )
            after = before - value
            default_type = TransactionType.WITHDRAWAL
        else:
            after = before + value
            default_type = TransactionType.DEPOSIT

        await users.set_balance(user, after)
        tx = await TransactionRepository(session).create(
            user_id=user_id,
            type=tx_type or default_type,
            amount=value,
            balance_before=before,
            balance_after=after,
            description=description,
            match_id=match_id,
        )
        logger.info(
            "Balance %s: user=%s amount=%s %s -> %s (%s)",
            direction.value, user_id, value, before, after, tx.type.value,
        )
        return tx

    async def record_audit_in_session(
        self,
        session: AsyncSession,
        user_id: int,
        tx_type: TransactionType,
        amount: Amount,
        description: Optional[str] = None,
        match_id: Optional[int] = None,
    ) -> Transaction:
        """Registro sin movimiento de saldo (before == after)."""
        value = self.validate_amount(amount)
        user = await self.get_user_in_session(session, user_id)
        return await TransactionRepository(session).create(
            user_id=user_id,
            type=tx_type,
            amount=value,
            balance_before=user.balance,
            balance_after=user.balance,
            description=description,
            match_id=match_id,
        )

    # -------------------------------------------------------------------------
    # API PÚBLICA
    # -------------------------------------------------------------------------

    async def get_user(self, user_id: int) -> User:
        async with unit_of_work(self.session_factory, "get_user", user_id=user_id) as session:
            return await self.get_user_in_session(session, user_id)

    async def find_or_create_user(
        self,
        telegram_id: int,
        first_name: Optional[str] = None,
        last_name: Optional[str] = None,
        username: Optional[str] = None,
    ) -> User:
        """Devuelve el usuario con esa identidad de plataforma o lo registra."""
        async with unit_of_work(self.session_factory, "find_or_create_user", telegram_id=telegram_id) as session:
            users = UserRepository(session)
            user = await users.find_by_telegram_id(telegram_id)
            if user is not None:
                return user
            user = await users.create(
                telegram_id=telegram_id,
                first_name=first_name,
                last_name=last_name,
                username=username,
            )
            logger.info("User registered: id=%s telegram_id=%s", user.id, telegram_id)
            return user

    async def adjust_balance(
        self,
        user_id: int,
        amount: Amount,
        direction: BalanceDirection,
        description: Optional[str] = None,
    ) -> Transaction:
        async with unit_of_work(self.session_factory, "adjust_balance", user_id=user_id) as session:
            return await self.adjust_balance_in_session(
                session, user_id, amount, direction, description=description
            )

    async def deposit(self, user_id: int, amount: Amount, description: Optional[str] = None) -> Transaction:
        return await self.adjust_balance(
            user_id, amount, BalanceDirection.ADD, description or "Depósito"
        )

    async def withdraw(self, user_id: int, amount: Amount, description: Optional[str] = None) -> Transaction:
        return await self.adjust_balance(
            user_id, amount, BalanceDirection.SUBTRACT, description or "Retiro"
        )

    async def get_balance(self, user_id: int) -> Decimal:
        user = await self.get_user(user_id)
        return user.balance

    async def has_sufficient_balance(self, user_id: int, amount: Amount) -> bool:
        value = self.validate_amount(amount)
        return (await self.get_balance(user_id)) >= value

    async def get_transactions(self, user_id: int, limit: int = 20) -> List[Transaction]:
        """Historial del usuario, más reciente primero."""
        async with unit_of_work(self.session_factory, "get_transactions", user_id=user_id) as session:
            await self.get_user_in_session(session, user_id)
            return await TransactionRepository(session).find_by_user(user_id, limit=limit)
