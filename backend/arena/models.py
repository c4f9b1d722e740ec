"""
=============================================================================
ARENA - Modelos de Base de Datos (SQLAlchemy)
=============================================================================
Usuarios con saldo de punto fijo, libro de transacciones append-only y
partidas con su máquina de estados.

Principios de Diseño:
- Integridad Financiera: el saldo nunca es negativo (CHECK) y cada
  movimiento deja una transacción con balance antes/después
- Concurrencia: ``version_id_col`` en usuarios (``balance_version``) y en
  partidas; dos escritores sobre una fila vieja no pueden pisarse
- Portabilidad: JSONB en PostgreSQL, JSON en SQLite (tests)
=============================================================================
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum as PyEnum
from typing import Any, Dict, Optional

from sqlalchemy import (
    JSON,
    BigInteger,
    CheckConstraint,
    DateTime,
    Enum,
    ForeignKey,
    Index,
    Integer,
    Numeric,
    String,
    Text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.ext.asyncio import AsyncAttrs
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# Montos: Numeric(12, 2), máximo 9,999,999,999.99
Money = Numeric(12, 2)
GameData = JSON().with_variant(JSONB(), "postgresql")


# =============================================================================
# ENUMERACIONES DEL SISTEMA
# =============================================================================

class UserStatus(str, PyEnum):
    ACTIVE = "active"
    SUSPENDED = "suspended"
    BANNED = "banned"


class TransactionType(str, PyEnum):
    """Tipos de movimiento del ledger. El tipo determina la dirección."""
    DEPOSIT = "deposit"          # Entrada de fondos (incluye reembolsos)
    WITHDRAWAL = "withdrawal"    # Salida de fondos (incluye escrow)
    BET_WIN = "bet_win"          # Premio acreditado
    BET_LOSS = "bet_loss"        # Registro de auditoría del perdedor


class MatchStatus(str, PyEnum):
    """
    Máquina de Estados Finita del ciclo de vida de una partida.

    waiting -> active -> completed
    waiting -> expired | cancelled
    """
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


OPEN_STATUSES = (MatchStatus.WAITING, MatchStatus.ACTIVE)


class GameType(str, PyEnum):
    """Juegos disponibles en la plataforma."""
    COIN_FLIP = "coin_flip"
    DOMINO = "domino"


# =============================================================================
# BASE DECLARATIVA
# =============================================================================

class Base(AsyncAttrs, DeclarativeBase):
    """Clase base para todos los modelos con soporte async."""
    pass


# =============================================================================
# TABLA: USERS
# =============================================================================

class User(Base):
    """Usuario registrado por su identidad en la plataforma de chat."""
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    # Identidad de la plataforma de mensajería
    telegram_id: Mapped[int] = mapped_column(BigInteger, unique=True, nullable=False)
    username: Mapped[Optional[str]] = mapped_column(String(64), nullable=True)
    first_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)
    last_name: Mapped[Optional[str]] = mapped_column(String(128), nullable=True)

    # ==========================================================================
    # SALDO
    # ==========================================================================
    balance: Mapped[Decimal] = mapped_column(Money, default=Decimal("0.00"), nullable=False)

    # Contador de versión: un UPDATE sobre una lectura vieja falla con StaleDataError
    balance_version: Mapped[int] = mapped_column(Integer, nullable=False)
    __mapper_args__ = {"version_id_col": balance_version}

    status: Mapped[UserStatus] = mapped_column(Enum(UserStatus), default=UserStatus.ACTIVE, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        onupdate=utcnow,
        nullable=False,
    )

    __table_args__ = (
        Index("idx_users_telegram", "telegram_id"),
        Index("idx_users_status", "status"),
        CheckConstraint("balance >= 0", name="check_positive_balance"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "telegram_id": self.telegram_id,
            "username": self.username,
            "first_name": self.first_name,
            "last_name": self.last_name,
            "balance": str(self.balance),
            "status": self.status.value,
        }


# =============================================================================
# TABLA: TRANSACTIONS (append-only)
# =============================================================================

class Transaction(Base):
    """
    Libro de movimientos. Nunca se actualiza después de creado.

    El monto siempre es positivo; ``balance_before``/``balance_after``
    permiten reconstruir el saldo de cualquier usuario.
    """
    __tablename__ = "transactions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    user_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    match_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("matches.id", ondelete="SET NULL"),
        nullable=True,
    )

    type: Mapped[TransactionType] = mapped_column(Enum(TransactionType), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_before: Mapped[Decimal] = mapped_column(Money, nullable=False)
    balance_after: Mapped[Decimal] = mapped_column(Money, nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)

    __table_args__ = (
        Index("idx_tx_user_id", "user_id"),
        Index("idx_tx_match_id", "match_id"),
        Index("idx_tx_type", "type"),
        Index("idx_tx_created_at", "created_at"),
        CheckConstraint("amount > 0", name="check_positive_amount"),
        CheckConstraint("balance_after >= 0", name="check_positive_balance_after"),
    )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "user_id": self.user_id,
            "match_id": self.match_id,
            "type": self.type.value,
            "amount": str(self.amount),
            "balance_before": str(self.balance_before),
            "balance_after": str(self.balance_after),
            "description": self.description,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }


# =============================================================================
# TABLA: MATCHES
# =============================================================================

class Match(Base):
    """
    Contrato de apuesta entre participantes.

    ``game_data`` es opaco para la persistencia: lo interpreta el motor del
    ``game_type``. El resultado (winner/prize/rake) solo existe en
    ``completed``; ``winner_id`` nulo significa empate con reembolso.
    """
    __tablename__ = "matches"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)

    creator_id: Mapped[int] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=False,
    )
    player2_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="RESTRICT"),
        nullable=True,
    )

    game_type: Mapped[GameType] = mapped_column(Enum(GameType), nullable=False)
    bet_amount: Mapped[Decimal] = mapped_column(Money, nullable=False)

    # ==========================================================================
    # ESTADO DE LA PARTIDA (FSM)
    # ==========================================================================
    status: Mapped[MatchStatus] = mapped_column(
        Enum(MatchStatus),
        default=MatchStatus.WAITING,
        nullable=False,
    )
    game_data: Mapped[Optional[Dict[str, Any]]] = mapped_column(GameData, nullable=True)

    # ==========================================================================
    # RESULTADOS
    # ==========================================================================
    winner_id: Mapped[Optional[int]] = mapped_column(
        Integer,
        ForeignKey("users.id", ondelete="SET NULL"),
        nullable=True,
    )
    prize: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)
    rake_amount: Mapped[Optional[Decimal]] = mapped_column(Money, nullable=True)

    # Timestamps
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), default=utcnow, nullable=False)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    started_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    # Control de concurrencia optimista
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}

    __table_args__ = (
        Index("idx_match_status", "status"),
        Index("idx_match_creator", "creator_id"),
        Index("idx_match_player2", "player2_id"),
        Index("idx_match_game_type", "game_type"),
        Index("idx_match_created", "created_at"),
        CheckConstraint("bet_amount > 0", name="check_bet_positive"),
        CheckConstraint("prize IS NULL OR prize >= 0", name="check_prize_positive"),
        CheckConstraint("rake_amount IS NULL OR rake_amount >= 0", name="check_rake_positive"),
    )

    @property
    def participant_ids(self) -> list:
        ids = [self.creator_id]
        if self.player2_id is not None:
            ids.append(self.player2_id)
        return ids

    def is_participant(self, user_id: int) -> bool:
        return user_id in self.participant_ids

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "creator_id": self.creator_id,
            "player2_id": self.player2_id,
            "game_type": self.game_type.value,
            "bet_amount": str(self.bet_amount),
            "status": self.status.value,
            "winner_id": self.winner_id,
            "prize": str(self.prize) if self.prize is not None else None,
            "rake_amount": str(self.rake_amount) if self.rake_amount is not None else None,
            "created_at": self.created_at.isoformat() if self.created_at else None,
            "expires_at": self.expires_at.isoformat() if self.expires_at else None,
            "started_at": self.started_at.isoformat() if self.started_at else None,
            "completed_at": self.completed_at.isoformat() if self.completed_at else None,
        }

