"""
=============================================================================
ARENA - Motor de Dominó (2-4 Jugadores)
=============================================================================
Reglas completas de una ronda de dominó doble-seis: mazo, reparto,
legalidad de jugadas, turnos, bloqueo y puntuación.

Principios:
- Estado Plano: ``DominoState`` es un registro serializable, sin grafos
  de objetos; se guarda tal cual en ``Match.game_data``
- Funciones Puras: cada operación recibe un estado y devuelve uno nuevo
  (``state, input -> new_state, result``); nunca muta la entrada
- Bloqueo Global: el juego se bloquea solo si NINGÚN participante puede
  jugar (se revisan todos, no solo el actual y el siguiente)
=============================================================================
"""

import copy
import logging
import random
import secrets
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Dict, Iterable, List, Optional, Tuple

from .config import GameSettings
from .errors import ValidationError
from .settlement import ZERO, multiply, to_money, validate_bet_amount


logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURACIÓN DEL JUEGO
# =============================================================================

class DominoConfig:
    """Constantes del dominó doble-seis."""

    GAME_TYPE = "domino"

    MAX_PIP = 6
    TOTAL_PIECES = 28

    MIN_PLAYERS = 2
    MAX_PLAYERS = 4
    HAND_SIZE_TWO_PLAYERS = 7
    HAND_SIZE_MULTI = 6

    SIDES = ("left", "right")

    WIN_MULTIPLIER = Decimal("1.9")   # 90% RTP
    MOVES_PREVIEW = 3                 # Jugadas mostradas en la interfaz


class DominoStatus:
    """Estados de ``determine_winner``."""
    IN_PROGRESS = "in_progress"
    DOMINO = "domino"              # Alguien vació su mano
    BLOCKED_WIN = "blocked_win"    # Bloqueo con mínimo estricto
    TIE = "tie"                    # Bloqueo con empate en el mínimo


# =============================================================================
# ESTRUCTURAS DE DATOS
# =============================================================================

@dataclass(frozen=True)
class DominoPiece:
    """Ficha de dominó. ``left``/``right`` reflejan la orientación actual."""
    id: str
    left: int
    right: int

    @property
    def pips(self) -> int:
        return self.left + self.right

    @property
    def canonical(self) -> Tuple[int, int]:
        """Par de valores sin orientación (identidad de la ficha)."""
        return (min(self.left, self.right), max(self.left, self.right))

    def flipped(self) -> "DominoPiece":
        return DominoPiece(id=self.id, left=self.right, right=self.left)

    def matches(self, value: Optional[int]) -> bool:
        return value is not None and value in (self.left, self.right)

    def label(self) -> str:
        return f"[{self.left}●{self.right}]"

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "left": self.left, "right": self.right}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DominoPiece":
        return cls(id=str(data["id"]), left=int(data["left"]), right=int(data["right"]))


@dataclass
class LastMove:
    """Última ficha colocada en la mesa."""
    player: str
    piece: DominoPiece
    side: str

    def to_dict(self) -> Dict[str, Any]:
        return {"player": self.player, "piece": self.piece.to_dict(), "side": self.side}

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "LastMove":
        return cls(
            player=str(data["player"]),
            piece=DominoPiece.from_dict(data["piece"]),
            side=str(data["side"]),
        )


@dataclass
class DominoState:
    """
    Estado completo de una ronda.

    Invariantes:
    - Cada ficha está exactamente en uno de: deck, table, alguna mano
    - La unión de todas es el juego doble-seis de 28 fichas
    - left_end/right_end son los valores expuestos en los extremos de table
    - Las claves de hands son exactamente los participantes
    """
    players: List[str]
    deck: List[DominoPiece] = field(default_factory=list)
    table: List[DominoPiece] = field(default_factory=list)
    hands: Dict[str, List[DominoPiece]] = field(default_factory=dict)
    left_end: Optional[int] = None
    right_end: Optional[int] = None
    current_player: str = ""
    scores: Dict[str, int] = field(default_factory=dict)
    started: bool = False
    blocked: bool = False
    last_move: Optional[LastMove] = None

    def copy(self) -> "DominoState":
        return copy.deepcopy(self)

    def hand_of(self, player: str) -> List[DominoPiece]:
        return self.hands.get(str(player), [])

    def pip_count(self, player: str) -> int:
        return sum(piece.pips for piece in self.hand_of(player))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "game_type": DominoConfig.GAME_TYPE,
            "players": list(self.players),
            "deck": [p.to_dict() for p in self.deck],
            "table": [p.to_dict() for p in self.table],
            "hands": {pid: [p.to_dict() for p in hand] for pid, hand in self.hands.items()},
            "left_end": self.left_end,
            "right_end": self.right_end,
            "current_player": self.current_player,
            "scores": dict(self.scores),
            "started": self.started,
            "blocked": self.blocked,
            "last_move": self.last_move.to_dict() if self.last_move else None,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "DominoState":
        if not isinstance(data, dict) or data.get("game_type") != DominoConfig.GAME_TYPE:
            raise ValidationError("Estado de dominó inválido")
        try:
            return cls(
                players=[str(p) for p in data["players"]],
                deck=[DominoPiece.from_dict(p) for p in data["deck"]],
                table=[DominoPiece.from_dict(p) for p in data["table"]],
                hands={
                    str(pid): [DominoPiece.from_dict(p) for p in hand]
                    for pid, hand in data["hands"].items()
                },
                left_end=data.get("left_end"),
                right_end=data.get("right_end"),
                current_player=str(data["current_player"]),
                scores={str(k): int(v) for k, v in data.get("scores", {}).items()},
                started=bool(data.get("started", False)),
                blocked=bool(data.get("blocked", False)),
                last_move=LastMove.from_dict(data["last_move"]) if data.get("last_move") else None,
            )
        except (KeyError, TypeError, ValueError) as e:
            raise ValidationError("Estado de dominó corrupto", {"reason": str(e)})


@dataclass
class AvailableMove:
    piece: DominoPiece
    sides: List[str]

    def to_dict(self) -> Dict[str, Any]:
        return {"piece": self.piece.to_dict(), "sides": list(self.sides)}


@dataclass
class MoveResult:
    """Resultado de una jugada aplicada."""
    player: str
    piece: DominoPiece        # Orientada tal como quedó en la mesa
    side: str
    left_end: int
    right_end: int
    next_player: str

    def to_dict(self) -> Dict[str, Any]:
        return {
            "player": self.player,
            "piece": self.piece.to_dict(),
            "side": self.side,
            "left_end": self.left_end,
            "right_end": self.right_end,
            "next_player": self.next_player,
        }


@dataclass
class DominoOutcome:
    """Resultado de ``determine_winner``."""
    status: str
    winner_id: Optional[str] = None
    prize: Decimal = ZERO
    points: Dict[str, int] = field(default_factory=dict)
    refund_ids: List[str] = field(default_factory=list)
    details: str = ""

    @property
    def is_tie(self) -> bool:
        return self.status == DominoStatus.TIE

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status,
            "winner_id": self.winner_id,
            "prize": str(self.prize),
            "points": dict(self.points),
            "refund_ids": list(self.refund_ids),
            "details": self.details,
        }


# =============================================================================
# MAZO Y REPARTO
# =============================================================================

def create_deck(rng: Optional[random.Random] = None) -> List[DominoPiece]:
    """
    Genera las 28 fichas (i, j) con 0 <= i <= j <= 6 y las baraja.

    Los ids son "1".."28" en orden de creación, antes de barajar.
    """
    rng = rng or secrets.SystemRandom()
    deck: List[DominoPiece] = []
    next_id = 1
    for i in range(DominoConfig.MAX_PIP + 1):
        for j in range(i, DominoConfig.MAX_PIP + 1):
            deck.append(DominoPiece(id=str(next_id), left=i, right=j))
            next_id += 1

    # Fisher-Yates
    for i in range(len(deck) - 1, 0, -1):
        j = rng.randint(0, i)
        deck[i], deck[j] = deck[j], deck[i]
    return deck


def canonical_set() -> List[Tuple[int, int]]:
    return [(i, j) for i in range(DominoConfig.MAX_PIP + 1) for j in range(i, DominoConfig.MAX_PIP + 1)]


def hand_size_for(num_players: int) -> int:
    if num_players == 2:
        return DominoConfig.HAND_SIZE_TWO_PLAYERS
    return DominoConfig.HAND_SIZE_MULTI


def validate_players(player_ids: Iterable[Any]) -> List[str]:
    """2-4 participantes con ids distintos."""
    players = [str(p) for p in player_ids]
    if not (DominoConfig.MIN_PLAYERS <= len(players) <= DominoConfig.MAX_PLAYERS):
        raise ValidationError(
            f"El dominó requiere entre {DominoConfig.MIN_PLAYERS} y {DominoConfig.MAX_PLAYERS} jugadores",
            {"num_players": len(players)},
        )
    if len(set(players)) != len(players):
        raise ValidationError("Jugadores duplicados", {"players": players})
    return players


def new_game(player_ids: Iterable[Any], rng: Optional[random.Random] = None) -> DominoState:
    """Baraja, reparte y deja el turno al primer participante."""
    players = validate_players(player_ids)
    deck = create_deck(rng)
    size = hand_size_for(len(players))

    hands: Dict[str, List[DominoPiece]] = {}
    for player in players:
        hands[player] = deck[:size]
        deck = deck[size:]

    return DominoState(
        players=players,
        deck=deck,
        table=[],
        hands=hands,
        current_player=players[0],
        scores={player: 0 for player in players},
    )


# =============================================================================
# LEGALIDAD Y JUGADAS
# =============================================================================

def _find_piece(state: DominoState, player: str, piece_id: str) -> Optional[DominoPiece]:
    for piece in state.hand_of(player):
        if piece.id == str(piece_id):
            return piece
    return None


def validate_move(state: DominoState, player: Any, piece_id: Any, side: str) -> bool:
    """True si ``player`` tiene la ficha y conecta con el extremo ``side``."""
    player = str(player)
    if side not in DominoConfig.SIDES or player not in state.hands:
        return False

    piece = _find_piece(state, player, str(piece_id))
    if piece is None:
        return False

    # Mesa vacía: cualquier ficha
    if not state.table:
        return True

    required = state.left_end if side == "left" else state.right_end
    return piece.matches(required)


def available_moves(state: DominoState, player: Any) -> List[AvailableMove]:
    """Fichas jugables de ``player`` y en qué lados conectan."""
    hand = state.hand_of(str(player))
    if not state.table:
        return [AvailableMove(piece=piece, sides=["left"]) for piece in hand]

    moves: List[AvailableMove] = []
    for piece in hand:
        sides = []
        if piece.matches(state.left_end):
            sides.append("left")
        if piece.matches(state.right_end):
            sides.append("right")
        if sides:
            moves.append(AvailableMove(piece=piece, sides=sides))
    return moves


def _next_player(state: DominoState) -> str:
    index = state.players.index(state.current_player)
    return state.players[(index + 1) % len(state.players)]


def apply_move(
    state: DominoState,
    player: Any,
    piece_id: Any,
    side: str,
) -> Tuple[DominoState, MoveResult]:
    """
    Ejecuta una jugada sobre una copia del estado.

    La ficha se gira si hace falta para que el valor que conecta quede
    mirando a la cadena. ``ValidationError`` si no es el turno del jugador
    o la jugada no es legal.
    """
    player = str(player)
    if player != state.current_player:
        raise ValidationError("No es tu turno", {"player": player, "current_player": state.current_player})
    if not validate_move(state, player, piece_id, side):
        raise ValidationError(
            "Jugada inválida",
            {"player": player, "piece_id": str(piece_id), "side": side},
        )

    new_state = state.copy()
    hand = new_state.hands[player]
    piece = next(p for p in hand if p.id == str(piece_id))
    hand.remove(piece)

    if not new_state.table:
        placed = piece
        new_state.table.append(placed)
        new_state.left_end = placed.left
        new_state.right_end = placed.right
        new_state.started = True
    elif side == "left":
        placed = piece if piece.right == new_state.left_end else piece.flipped()
        new_state.table.insert(0, placed)
        new_state.left_end = placed.left
    else:
        placed = piece if piece.left == new_state.right_end else piece.flipped()
        new_state.table.append(placed)
        new_state.right_end = placed.right

    new_state.last_move = LastMove(player=player, piece=placed, side=side)
    new_state.current_player = _next_player(new_state)

    result = MoveResult(
        player=player,
        piece=placed,
        side=side,
        left_end=new_state.left_end,
        right_end=new_state.right_end,
        next_player=new_state.current_player,
    )
    return new_state, result


def pass_turn(state: DominoState, player: Any) -> DominoState:
    """
    Cede el turno cuando el jugador actual no tiene jugadas.

    Solo con la mesa iniciada; con mesa vacía siempre hay jugada.
    """
    player = str(player)
    if player != state.current_player:
        raise ValidationError("No es tu turno", {"player": player, "current_player": state.current_player})
    if not state.table:
        raise ValidationError("No se puede pasar antes de la primera ficha")
    if available_moves(state, player):
        raise ValidationError("Tienes jugadas disponibles, no puedes pasar", {"player": player})

    new_state = state.copy()
    new_state.current_player = _next_player(new_state)
    return new_state


# =============================================================================
# FIN DE PARTIDA
# =============================================================================

def is_blocked(state: DominoState) -> bool:
    """Ningún participante puede jugar."""
    if not state.table:
        return False
    return all(not available_moves(state, player) for player in state.players)


def check_game_over(state: DominoState) -> Tuple[DominoState, bool]:
    """Detecta fin por mano vacía o bloqueo global; marca ``blocked``."""
    if any(not state.hand_of(player) for player in state.players):
        return state, True

    if is_blocked(state):
        new_state = state.copy()
        new_state.blocked = True
        return new_state, True

    return state, False


def determine_winner(state: DominoState, bet_amount: Decimal) -> DominoOutcome:
    """
    Resultado de la ronda.

    - En curso: status ``in_progress`` y premio 0 (verificar fin antes)
    - Mano vacía: gana quien vació, premio = apuesta x 1.9
    - Bloqueo: gana el mínimo estricto de puntos en mano; empate en el
      mínimo devuelve la apuesta a todos
    """
    state, over = check_game_over(state)
    points = {player: state.pip_count(player) for player in state.players}

    if not over:
        return DominoOutcome(
            status=DominoStatus.IN_PROGRESS,
            points=points,
            details="Partida en curso",
        )

    prize = multiply(to_money(bet_amount), DominoConfig.WIN_MULTIPLIER)

    for player in state.players:
        if not state.hand_of(player):
            return DominoOutcome(
                status=DominoStatus.DOMINO,
                winner_id=player,
                prize=prize,
                points=points,
                details=f"Jugador {player} ganó quedándose sin fichas",
            )

    minimum = min(points.values())
    leaders = [player for player in state.players if points[player] == minimum]
    if len(leaders) == 1:
        return DominoOutcome(
            status=DominoStatus.BLOCKED_WIN,
            winner_id=leaders[0],
            prize=prize,
            points=points,
            details=f"Juego cerrado: jugador {leaders[0]} ganó con {minimum} puntos",
        )

    return DominoOutcome(
        status=DominoStatus.TIE,
        prize=to_money(bet_amount),
        points=points,
        refund_ids=list(state.players),
        details=f"Empate: {', '.join(leaders)} con {minimum} puntos",
    )


# =============================================================================
# INTEGRIDAD
# =============================================================================

def check_integrity(state: DominoState) -> List[str]:
    """Lista de invariantes rotas (vacía si el estado es consistente)."""
    problems: List[str] = []

    all_pieces = list(state.deck) + list(state.table)
    for hand in state.hands.values():
        all_pieces.extend(hand)

    ids = [p.id for p in all_pieces]
    if len(ids) != len(set(ids)):
        problems.append("fichas duplicadas")
    if sorted(p.canonical for p in all_pieces) != sorted(canonical_set()):
        problems.append("el conjunto de fichas no es el doble-seis")

    if set(state.hands) != set(state.players) or len(state.players) != len(set(state.players)):
        problems.append("las manos no coinciden con los participantes")
    if state.current_player not in state.players:
        problems.append("current_player no es participante")

    if state.table:
        if state.left_end != state.table[0].left or state.right_end != state.table[-1].right:
            problems.append("extremos inconsistentes con la mesa")
        for a, b in zip(state.table, state.table[1:]):
            if a.right != b.left:
                problems.append(f"cadena rota entre {a.label()} y {b.label()}")
                break
    elif state.left_end is not None or state.right_end is not None:
        problems.append("extremos definidos con mesa vacía")

    return problems


def player_view(state: DominoState, for_player: Any) -> Dict[str, Any]:
    """Estado visible para un jugador: su mano completa, del resto solo tamaños."""
    for_player = str(for_player)
    return {
        "players": list(state.players),
        "table": [p.to_dict() for p in state.table],
        "left_end": state.left_end,
        "right_end": state.right_end,
        "current_player": state.current_player,
        "hand": [p.to_dict() for p in state.hand_of(for_player)],
        "hand_sizes": {player: len(state.hand_of(player)) for player in state.players},
        "deck_size": len(state.deck),
        "scores": dict(state.scores),
        "started": state.started,
        "blocked": state.blocked,
        "last_move": state.last_move.to_dict() if state.last_move else None,
    }


# =============================================================================
# INTERFAZ DE TEXTO
# =============================================================================

def render_interface(state: DominoState, for_player: Any) -> str:
    """Representación textual determinista del estado para un jugador."""
    for_player = str(for_player)
    lines = ["═══════ DOMINÓ ═══════", ""]

    if state.table:
        lines.append("MESA:")
        lines.append("  " + "═".join(piece.label() for piece in state.table))
        lines.append(f"  ⬅️{state.left_end}    {state.right_end}➡️")
    else:
        lines.append("MESA: (vacía)")
    lines.append("")

    lines.append("JUGADORES:")
    for player in state.players:
        marker = "▶" if player == state.current_player else " "
        you = " (tú)" if player == for_player else ""
        lines.append(f" {marker} {player}{you}: {len(state.hand_of(player))} fichas")
    lines.append("")

    if for_player in state.hands:
        hand = state.hand_of(for_player)
        lines.append(f"TU MANO ({len(hand)} fichas):")
        lines.append(" ".join(f"{i}. {piece.label()}" for i, piece in enumerate(hand, start=1)))
        lines.append("")

        if state.current_player == for_player:
            lines.append("⚡ ¡ES TU TURNO! ⚡")
            moves = available_moves(state, for_player)
            if moves:
                lines.append("JUGADAS POSIBLES:")
                for i, move in enumerate(moves[:DominoConfig.MOVES_PREVIEW], start=1):
                    arrows = " ".join("⬅️" if s == "left" else "➡️" for s in move.sides)
                    lines.append(f"{i}. {move.piece.label()} {arrows}")
            else:
                lines.append("Sin jugadas posibles")
        else:
            lines.append(f"Esperando a {state.current_player}...")

    lines.append("")
    lines.append("═════════════════════")
    return "\n".join(lines)


# =============================================================================
# MOTOR (ENVOLTORIO)
# =============================================================================

class DominoEngine:
    """
    Envoltorio delgado sobre las funciones puras.

    Mantiene el estado actual y la apuesta; todo el trabajo lo hacen las
    funciones del módulo.
    """

    GAME_TYPE = DominoConfig.GAME_TYPE

    def __init__(
        self,
        bet_amount: Decimal,
        player_ids: Iterable[Any],
        settings: GameSettings,
        rng: Optional[random.Random] = None,
        state: Optional[DominoState] = None,
        check_limits: bool = True,
    ):
        self.settings = settings
        self.bet_amount = to_money(bet_amount)
        players = validate_players(player_ids)
        if state is not None:
            self.set_game_state(state)
            if self.state.players != players:
                raise ValidationError("El estado no corresponde a los participantes", {"players": players})
        else:
            # Una apuesta ya retenida no se vuelve a medir contra los límites vigentes
            if check_limits:
                validate_bet_amount(self.bet_amount, settings)
            self.state = new_game(players, rng)

    @classmethod
    def from_game_data(
        cls,
        bet_amount: Decimal,
        game_data: Dict[str, Any],
        settings: GameSettings,
        player_ids: Optional[Iterable[Any]] = None,
    ) -> "DominoEngine":
        """Restaura una partida; con ``player_ids`` exige que coincidan con el estado."""
        state = DominoState.from_dict(game_data)
        players = state.players if player_ids is None else player_ids
        return cls(bet_amount, players, settings, state=state)

    @property
    def players(self) -> List[str]:
        return list(self.state.players)

    @property
    def current_player(self) -> str:
        return self.state.current_player

    def validate_move(self, player: Any, piece_id: Any, side: str) -> bool:
        return validate_move(self.state, player, piece_id, side)

    def make_move(self, player: Any, piece_id: Any, side: str) -> MoveResult:
        self.state, result = apply_move(self.state, player, piece_id, side)
        logger.debug(
            "Domino move: player=%s piece=%s side=%s ends=%s/%s",
            result.player, result.piece.label(), side, result.left_end, result.right_end,
        )
        return result

    def pass_turn(self, player: Any) -> str:
        self.state = pass_turn(self.state, player)
        return self.state.current_player

    def get_available_moves(self, player: Any) -> List[AvailableMove]:
        return available_moves(self.state, player)

    def is_game_over(self) -> bool:
        self.state, over = check_game_over(self.state)
        return over

    def determine_winner(self) -> DominoOutcome:
        self.is_game_over()
        return determine_winner(self.state, self.bet_amount)

    def generate_game_interface(self, for_player: Any) -> str:
        return render_interface(self.state, for_player)

    def get_player_view(self, for_player: Any) -> Dict[str, Any]:
        return player_view(self.state, for_player)

    def get_game_state(self) -> Dict[str, Any]:
        return self.state.to_dict()

    def set_game_state(self, state: Any) -> None:
        """Restaura un estado (dict o ``DominoState``) validando invariantes."""
        if isinstance(state, dict):
            state = DominoState.from_dict(state)
        problems = check_integrity(state)
        if problems:
            raise ValidationError("Estado de dominó inconsistente", {"problems": problems})
        self.state = state.copy()

    @staticmethod
    def game_info() -> Dict[str, Any]:
        return {
            "game_type": DominoConfig.GAME_TYPE,
            "name": "Dominó",
            "description": "Dominó clásico doble-seis",
            "multiplier": str(DominoConfig.WIN_MULTIPLIER),
            "rtp": "90%",
            "min_players": DominoConfig.MIN_PLAYERS,
            "max_players": DominoConfig.MAX_PLAYERS,
        }
