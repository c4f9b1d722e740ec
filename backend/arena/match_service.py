"""
=============================================================================
ARENA - Servicio de Orquestación de Partidas
=============================================================================
Único componente que toca partidas y saldos en la misma transacción.

Máquina de estados:
    waiting --(entra el oponente, débito)--> active
    waiting --(expires_at vencido)--------> expired   (reembolso al creador)
    waiting --(cancelación)---------------> cancelled (reembolso al creador)
    active  --(fin de juego)--------------> completed (premio o reembolso)

Cada operación pública es todo-o-nada: corre dentro de una sola unidad de
trabajo y la partida se lee con bloqueo de fila (y ``version_id_col``), de
modo que dos jugadas simultáneas nunca se validan contra el mismo estado.
=============================================================================
"""

import logging
import random
import secrets
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Dict, List, Optional, Sequence, Union

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from .coin_flip import CoinFlip, resolve_pvp, validate_choice
from .config import GameSettings
from .database import unit_of_work
from .domino_engine import DominoEngine, DominoOutcome, DominoStatus
from .engines import GameEngineFactory
from .errors import (
    ExpiredError,
    ForbiddenError,
    InvalidStateError,
    LimitExceededError,
    NotFoundError,
    ValidationError,
)
from .ledger import BalanceDirection, UserLedger
from .models import GameType, Match, MatchStatus, TransactionType, utcnow
from .repositories import MatchRepository, UserRepository
from .settlement import (
    ZERO,
    Settlement,
    calculate_refund,
    calculate_settlement,
    format_money,
    validate_bet_amount,
)


logger = logging.getLogger(__name__)


VALID_TRANSITIONS = {
    MatchStatus.WAITING: [MatchStatus.ACTIVE, MatchStatus.EXPIRED, MatchStatus.CANCELLED],
    MatchStatus.ACTIVE: [MatchStatus.COMPLETED],
    MatchStatus.COMPLETED: [],
    MatchStatus.CANCELLED: [],
    MatchStatus.EXPIRED: [],
}


def _as_utc(value: datetime) -> datetime:
    # SQLite devuelve datetimes sin zona
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


# =============================================================================
# RESULTADOS
# =============================================================================

@dataclass
class SettlementResult:
    """Efecto financiero aplicado al cerrar una partida."""
    match_id: int
    winner_id: Optional[int]
    loser_id: Optional[int]
    prize: Decimal
    rake_amount: Decimal
    refunded_ids: List[int] = field(default_factory=list)
    breakdown: Optional[Settlement] = None

    @property
    def is_refund(self) -> bool:
        return self.winner_id is None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "prize": format_money(self.prize),
            "rake_amount": format_money(self.rake_amount),
            "refunded_ids": list(self.refunded_ids),
        }


@dataclass
class GameMoveResult:
    """
    Respuesta de una jugada.

    ``waiting`` indica que la partida sigue abierta (falta el oponente en
    cara o cruz, o es el turno de otro en dominó).
    """
    match_id: int
    waiting: bool
    result: Dict[str, Any] = field(default_factory=dict)
    settlement: Optional[SettlementResult] = None
    next_player: Optional[int] = None
    available_moves: List[Dict[str, Any]] = field(default_factory=list)
    interface: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "match_id": self.match_id,
            "waiting": self.waiting,
            "result": self.result,
            "settlement": self.settlement.to_dict() if self.settlement else None,
            "next_player": self.next_player,
            "available_moves": self.available_moves,
            "interface": self.interface,
        }


# =============================================================================
# SERVICIO
# =============================================================================

class MatchService:
    """Orquestador de partidas y liquidaciones."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: GameSettings,
        ledger: Optional[UserLedger] = None,
        rng: Optional[random.Random] = None,
    ):
        self.session_factory = session_factory
        self.settings = settings
        self.ledger = ledger or UserLedger(session_factory, settings)
        self.rng = rng or secrets.SystemRandom()

    # -------------------------------------------------------------------------
    # CREAR / UNIRSE / CANCELAR
    # -------------------------------------------------------------------------

    async def create_match(
        self,
        user_id: int,
        game_type: Union[str, GameType],
        bet_amount: Any,
    ) -> Match:
        """Crea una partida en ``waiting`` y retiene la apuesta del creador."""
        parsed_type = GameEngineFactory.parse_game_type(game_type)
        bet = self.ledger.validate_amount(bet_amount)

        async with unit_of_work(self.session_factory, "create_match", user_id=user_id) as session:
            await self.ledger.get_user_in_session(session, user_id, lock=True)

            matches = MatchRepository(session)
            open_count = await matches.count_open_for_user(user_id)
            if open_count >= self.settings.max_active_games:
                raise LimitExceededError(
                    "Máximo de partidas simultáneas alcanzado",
                    {"user_id": user_id, "open_matches": open_count, "max": self.settings.max_active_games},
                )

            validate_bet_amount(bet, self.settings)

            expires_at = utcnow() + timedelta(minutes=self.settings.game_timeout_minutes)
            match = await matches.create(
                creator_id=user_id,
                game_type=parsed_type,
                bet_amount=bet,
                expires_at=expires_at,
            )
            await self.ledger.adjust_balance_in_session(
                session,
                user_id,
                bet,
                BalanceDirection.SUBTRACT,
                tx_type=TransactionType.WITHDRAWAL,
                description=f"Escrow de la partida #{match.id}",
                match_id=match.id,
            )

        logger.info(
            "Match created: id=%s type=%s creator=%s bet=%s expires_at=%s",
            match.id, parsed_type.value, user_id, bet, expires_at.isoformat(),
        )
        return match

    async def join_match(self, match_id: int, user_id: int) -> Match:
        """
        Une al oponente y activa la partida.

        Si la ventana venció, la partida pasa a ``expired`` (con reembolso
        al creador) y se levanta ``ExpiredError`` después de confirmar.
        """
        expired = False
        async with unit_of_work(self.session_factory, "join_match", match_id=match_id, user_id=user_id) as session:
            matches = MatchRepository(session)
            match = await self._get_match_for_update(session, match_id)

            if match.status != MatchStatus.WAITING:
                raise InvalidStateError(
                    "La partida no está disponible",
                    {"match_id": match_id, "status": match.status.value},
                )
            if match.creator_id == user_id:
                raise ValidationError("No puedes unirte a tu propia partida", {"match_id": match_id})

            if utcnow() >= _as_utc(match.expires_at):
                await self._expire(session, match)
                expired = True
            else:
                await self.ledger.adjust_balance_in_session(
                    session,
                    user_id,
                    match.bet_amount,
                    BalanceDirection.SUBTRACT,
                    tx_type=TransactionType.WITHDRAWAL,
                    description=f"Escrow de la partida #{match.id}",
                    match_id=match.id,
                )
                self._check_transition(match, MatchStatus.ACTIVE)
                await matches.attach_second_player(match, user_id)

        if expired:
            raise ExpiredError("La partida expiró", {"match_id": match_id})

        logger.info("Match joined: id=%s player2=%s status=active", match.id, user_id)
        return match

    async def cancel_match(self, match_id: int, user_id: int, admin: bool = False) -> Match:
        """Cancela una partida en ``waiting`` y devuelve la apuesta al creador."""
        async with unit_of_work(self.session_factory, "cancel_match", match_id=match_id, user_id=user_id) as session:
            match = await self._get_match_for_update(session, match_id)
            if not admin and match.creator_id != user_id:
                raise ForbiddenError("Solo el creador puede cancelar la partida", {"match_id": match_id})
            if match.status != MatchStatus.WAITING:
                raise InvalidStateError(
                    "Solo se pueden cancelar partidas en espera",
                    {"match_id": match_id, "status": match.status.value},
                )

            await self._refund_creator(session, match, f"Reembolso por cancelación de la partida #{match.id}")
            self._check_transition(match, MatchStatus.CANCELLED)
            await MatchRepository(session).update_status(match, MatchStatus.CANCELLED)

        logger.info("Match cancelled: id=%s by=%s admin=%s", match_id, user_id, admin)
        return match

    # -------------------------------------------------------------------------
    # CARA O CRUZ (PvP)
    # -------------------------------------------------------------------------

    async def make_move(self, match_id: int, user_id: int, choice: str) -> GameMoveResult:
        """
        Registra la elección de un participante.

        Con una sola elección guarda y espera; con las dos sortea la moneda
        y liquida en la misma transacción.
        """
        choice = validate_choice(choice)

        async with unit_of_work(self.session_factory, "make_move", match_id=match_id, user_id=user_id) as session:
            matches = MatchRepository(session)
            match = await self._get_active_match(session, match_id, user_id, GameType.COIN_FLIP)

            data = dict(match.game_data or {})
            data["game_type"] = GameType.COIN_FLIP.value
            key = "player1_choice" if user_id == match.creator_id else "player2_choice"
            if data.get(key):
                raise InvalidStateError("Ya registraste tu elección", {"match_id": match_id})
            data[key] = choice

            if not (data.get("player1_choice") and data.get("player2_choice")):
                await matches.update_game_data(match, data)
                logger.info("Coin flip choice recorded: match=%s user=%s", match_id, user_id)
                return GameMoveResult(match_id=match.id, waiting=True)

            flip_result = resolve_pvp(
                match.creator_id,
                match.player2_id,
                data["player1_choice"],
                data["player2_choice"],
                rng=self.rng,
            )
            data["coin_result"] = flip_result.coin_result
            await matches.update_game_data(match, data)

            settlement = await self._settle_winner(
                session, match, flip_result.winner_id, flip_result.loser_id
            )

        logger.info(
            "Coin flip settled: match=%s coin=%s result=%s winner=%s",
            match_id, flip_result.coin_result, flip_result.result_type, flip_result.winner_id,
        )
        return GameMoveResult(
            match_id=match.id,
            waiting=False,
            result=flip_result.to_dict(),
            settlement=settlement,
        )

    async def play_house_coin_flip(self, user_id: int, bet_amount: Any, choice: str) -> Dict[str, Any]:
        """Ronda contra la casa (deshabilitada por defecto)."""
        if not self.settings.house_mode_enabled:
            raise InvalidStateError("El modo contra la casa está deshabilitado")

        bet = self.ledger.validate_amount(bet_amount)
        engine = CoinFlip(bet, self.settings, rng=self.rng)
        choice = validate_choice(choice)

        async with unit_of_work(self.session_factory, "play_house_coin_flip", user_id=user_id) as session:
            await self.ledger.adjust_balance_in_session(
                session,
                user_id,
                bet,
                BalanceDirection.SUBTRACT,
                tx_type=TransactionType.WITHDRAWAL,
                description="Apuesta cara o cruz contra la casa",
            )
            result = engine.play(choice)
            if result.winner == "player":
                tx = await self.ledger.adjust_balance_in_session(
                    session,
                    user_id,
                    result.prize,
                    BalanceDirection.ADD,
                    tx_type=TransactionType.BET_WIN,
                    description="Victoria cara o cruz contra la casa",
                )
            else:
                tx = await self.ledger.record_audit_in_session(
                    session,
                    user_id,
                    TransactionType.BET_LOSS,
                    bet,
                    description="Derrota cara o cruz contra la casa",
                )

        logger.info(
            "House coin flip: user=%s bet=%s winner=%s prize=%s",
            user_id, bet, result.winner, result.prize,
        )
        return {**result.to_dict(), "balance": format_money(tx.balance_after)}

    # -------------------------------------------------------------------------
    # DOMINÓ
    # -------------------------------------------------------------------------

    async def make_domino_move(
        self,
        match_id: int,
        user_id: int,
        piece_id: str,
        side: str,
    ) -> GameMoveResult:
        """Aplica una jugada de dominó; liquida si la ronda terminó."""
        async with unit_of_work(
            self.session_factory, "make_domino_move", match_id=match_id, user_id=user_id
        ) as session:
            match = await self._get_active_match(session, match_id, user_id, GameType.DOMINO)
            engine = self._load_domino(match)
            self._require_turn(engine, user_id)

            if not engine.validate_move(user_id, piece_id, side):
                raise ValidationError(
                    "Jugada inválida",
                    {"match_id": match_id, "piece_id": str(piece_id), "side": side},
                )
            move = engine.make_move(user_id, piece_id, side)
            result = await self._after_domino_action(session, match, engine, user_id)
            result.result["move"] = move.to_dict()

        logger.info(
            "Domino move: match=%s user=%s piece=%s side=%s finished=%s",
            match_id, user_id, move.piece.label(), side, not result.waiting,
        )
        return result

    async def pass_domino_turn(self, match_id: int, user_id: int) -> GameMoveResult:
        """Cede el turno cuando el jugador no tiene fichas jugables."""
        async with unit_of_work(
            self.session_factory, "pass_domino_turn", match_id=match_id, user_id=user_id
        ) as session:
            match = await self._get_active_match(session, match_id, user_id, GameType.DOMINO)
            engine = self._load_domino(match)
            self._require_turn(engine, user_id)
            engine.pass_turn(user_id)
            result = await self._after_domino_action(session, match, engine, user_id)
            result.result["passed"] = str(user_id)

        logger.info("Domino pass: match=%s user=%s", match_id, user_id)
        return result

    async def get_domino_state(self, match_id: int, user_id: int) -> Dict[str, Any]:
        """Vista del jugador, sus jugadas disponibles y el texto de la mesa."""
        async with unit_of_work(
            self.session_factory, "get_domino_state", match_id=match_id, user_id=user_id
        ) as session:
            match = await self._get_match_for_update(session, match_id)
            self._require_participant(match, user_id)
            self._require_game_type(match, GameType.DOMINO)
            if match.status not in (MatchStatus.ACTIVE, MatchStatus.COMPLETED):
                raise InvalidStateError(
                    "La partida no ha comenzado",
                    {"match_id": match_id, "status": match.status.value},
                )

            initialized = not match.game_data
            if initialized and match.status == MatchStatus.COMPLETED:
                raise InvalidStateError("La partida no tiene estado de dominó", {"match_id": match_id})
            engine = self._load_domino(match)
            if initialized:
                await MatchRepository(session).update_game_data(match, engine.get_game_state())

            # Solo el jugador en turno (y con la ronda abierta) tiene jugadas
            moves = []
            if match.status == MatchStatus.ACTIVE and engine.current_player == str(user_id):
                moves = [m.to_dict() for m in engine.get_available_moves(user_id)]

            return {
                "match_id": match.id,
                "status": match.status.value,
                "state": engine.get_player_view(user_id),
                "available_moves": moves,
                "interface": engine.generate_game_interface(user_id),
            }

    async def _after_domino_action(
        self,
        session: AsyncSession,
        match: Match,
        engine: DominoEngine,
        user_id: int,
    ) -> GameMoveResult:
        over = engine.is_game_over()
        await MatchRepository(session).update_game_data(match, engine.get_game_state())

        if not over:
            next_player = engine.current_player
            return GameMoveResult(
                match_id=match.id,
                waiting=True,
                next_player=int(next_player),
                available_moves=[m.to_dict() for m in engine.get_available_moves(next_player)],
                interface=engine.generate_game_interface(user_id),
            )

        outcome = engine.determine_winner()
        settlement = await self._settle_domino(session, match, outcome)
        return GameMoveResult(
            match_id=match.id,
            waiting=False,
            result={"outcome": outcome.to_dict()},
            settlement=settlement,
            interface=engine.generate_game_interface(user_id) + f"\n{outcome.details}",
        )

    async def _settle_domino(
        self,
        session: AsyncSession,
        match: Match,
        outcome: DominoOutcome,
    ) -> SettlementResult:
        if outcome.status == DominoStatus.TIE:
            return await self._refund_all(session, match, [int(pid) for pid in outcome.refund_ids])

        winner_id = int(outcome.winner_id)
        losers = [pid for pid in match.participant_ids if pid != winner_id]
        return await self._settle_winner(session, match, winner_id, losers[0])

    def _load_domino(self, match: Match) -> DominoEngine:
        """Reconstruye el motor desde ``game_data`` o reparte si aún no existe."""
        players = match.participant_ids
        if match.game_data:
            return DominoEngine.from_game_data(
                match.bet_amount, match.game_data, self.settings, player_ids=players
            )
        logger.info("Domino initialized: match=%s players=%s", match.id, players)
        return DominoEngine(match.bet_amount, players, self.settings, rng=self.rng, check_limits=False)

    @staticmethod
    def _require_turn(engine: DominoEngine, user_id: int) -> None:
        if engine.current_player != str(user_id):
            raise InvalidStateError(
                "No es tu turno",
                {"user_id": user_id, "current_player": engine.current_player},
            )

    # -------------------------------------------------------------------------
    # LIQUIDACIÓN
    # -------------------------------------------------------------------------

    async def _settle_winner(
        self,
        session: AsyncSession,
        match: Match,
        winner_id: int,
        loser_id: int,
    ) -> SettlementResult:
        """
        Paga el premio neto al ganador y registra la derrota del perdedor.

        pot = 2 x apuesta, rake = pot x %, premio = pot - rake.
        """
        breakdown = calculate_settlement(match.bet_amount, self.settings.rake_percentage, 2)

        # Bloqueo en orden de id
        await UserRepository(session).get_many(sorted({winner_id, loser_id}), lock=True)

        if breakdown.winner_prize > 0:
            await self.ledger.adjust_balance_in_session(
                session,
                winner_id,
                breakdown.winner_prize,
                BalanceDirection.ADD,
                tx_type=TransactionType.BET_WIN,
                description=f"Victoria en {match.game_type.value} - Partida #{match.id}",
                match_id=match.id,
            )
        await self.ledger.record_audit_in_session(
            session,
            loser_id,
            TransactionType.BET_LOSS,
            match.bet_amount,
            description=f"Derrota en {match.game_type.value} - Partida #{match.id}",
            match_id=match.id,
        )

        self._check_transition(match, MatchStatus.COMPLETED)
        await MatchRepository(session).complete(
            match, winner_id, breakdown.winner_prize, breakdown.rake_amount
        )
        logger.info(
            "Match settled: id=%s winner=%s prize=%s rake=%s pot=%s",
            match.id, winner_id, breakdown.winner_prize, breakdown.rake_amount, breakdown.total_pot,
        )
        return SettlementResult(
            match_id=match.id,
            winner_id=winner_id,
            loser_id=loser_id,
            prize=breakdown.winner_prize,
            rake_amount=breakdown.rake_amount,
            breakdown=breakdown,
        )

    async def _refund_all(
        self,
        session: AsyncSession,
        match: Match,
        participant_ids: Sequence[int],
    ) -> SettlementResult:
        """Empate: cada participante recupera su apuesta, rake 0."""
        ids = sorted(set(participant_ids))
        breakdown = calculate_refund(match.bet_amount, len(ids))

        await UserRepository(session).get_many(ids, lock=True)
        for participant_id in ids:
            await self.ledger.adjust_balance_in_session(
                session,
                participant_id,
                match.bet_amount,
                BalanceDirection.ADD,
                tx_type=TransactionType.DEPOSIT,
                description=f"Reembolso por empate - Partida #{match.id}",
                match_id=match.id,
            )

        self._check_transition(match, MatchStatus.COMPLETED)
        await MatchRepository(session).complete(match, None, breakdown.winner_prize, ZERO)
        logger.info(
            "Match refunded: id=%s participants=%s each=%s",
            match.id, ids, match.bet_amount,
        )
        return SettlementResult(
            match_id=match.id,
            winner_id=None,
            loser_id=None,
            prize=breakdown.winner_prize,
            rake_amount=ZERO,
            refunded_ids=ids,
            breakdown=breakdown,
        )

    async def _refund_creator(self, session: AsyncSession, match: Match, description: str) -> None:
        await self.ledger.adjust_balance_in_session(
            session,
            match.creator_id,
            match.bet_amount,
            BalanceDirection.ADD,
            tx_type=TransactionType.DEPOSIT,
            description=description,
            match_id=match.id,
        )

    async def _expire(self, session: AsyncSession, match: Match) -> None:
        await self._refund_creator(session, match, f"Reembolso por expiración de la partida #{match.id}")
        self._check_transition(match, MatchStatus.EXPIRED)
        await MatchRepository(session).update_status(match, MatchStatus.EXPIRED)
        logger.info("Match expired: id=%s creator=%s refund=%s", match.id, match.creator_id, match.bet_amount)

    # -------------------------------------------------------------------------
    # CONSULTAS
    # -------------------------------------------------------------------------

    async def get_match(self, match_id: int) -> Match:
        async with unit_of_work(self.session_factory, "get_match", match_id=match_id) as session:
            match = await MatchRepository(session).find_by_id(match_id)
            if match is None:
                raise NotFoundError("Partida no encontrada", {"match_id": match_id})
            return match

    async def get_available_matches(
        self,
        game_type: Optional[Union[str, GameType]] = None,
        limit: int = 10,
    ) -> List[Match]:
        parsed = GameEngineFactory.parse_game_type(game_type) if game_type else None
        async with unit_of_work(self.session_factory, "get_available_matches") as session:
            return await MatchRepository(session).find_available(parsed, limit=limit)

    async def get_user_matches(self, user_id: int, limit: int = 20) -> List[Match]:
        async with unit_of_work(self.session_factory, "get_user_matches", user_id=user_id) as session:
            await self.ledger.get_user_in_session(session, user_id)
            return await MatchRepository(session).find_by_user(user_id, limit=limit)

    # -------------------------------------------------------------------------
    # AUXILIARES
    # -------------------------------------------------------------------------

    async def _get_match_for_update(self, session: AsyncSession, match_id: int) -> Match:
        match = await MatchRepository(session).find_by_id(match_id, lock=True)
        if match is None:
            raise NotFoundError("Partida no encontrada", {"match_id": match_id})
        return match

    async def _get_active_match(
        self,
        session: AsyncSession,
        match_id: int,
        user_id: int,
        game_type: GameType,
    ) -> Match:
        match = await self._get_match_for_update(session, match_id)
        self._require_participant(match, user_id)
        self._require_game_type(match, game_type)
        if match.status != MatchStatus.ACTIVE:
            raise InvalidStateError(
                "La partida no está activa",
                {"match_id": match_id, "status": match.status.value},
            )
        return match

    @staticmethod
    def _require_participant(match: Match, user_id: int) -> None:
        if not match.is_participant(user_id):
            raise ForbiddenError("No eres participante de esta partida", {"match_id": match.id})

    @staticmethod
    def _require_game_type(match: Match, game_type: GameType) -> None:
        if match.game_type != game_type:
            raise ValidationError(
                "Tipo de juego incorrecto para esta operación",
                {"match_id": match.id, "game_type": match.game_type.value, "expected": game_type.value},
            )

    @staticmethod
    def _check_transition(match: Match, new_status: MatchStatus) -> None:
        if new_status not in VALID_TRANSITIONS.get(match.status, []):
            raise InvalidStateError(
                "Transición de estado inválida",
                {"match_id": match.id, "from": match.status.value, "to": new_status.value},
            )
