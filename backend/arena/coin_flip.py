"""
=============================================================================
ARENA - Motor de Cara o Cruz (Coin Flip)
=============================================================================
Resolución instantánea de una única decisión heads/tails.

Modos:
- Contra la casa: una elección del jugador, un sorteo, premio fijo 1.95x
- PvP: ambas elecciones guardadas en la partida, un solo sorteo; la
  liquidación (pot / rake / premio) la hace el orquestador

El motor no tiene efectos secundarios: no toca saldos ni persistencia.
=============================================================================
"""

import logging
import random
import secrets
from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Dict, Optional

from .config import GameSettings
from .errors import ValidationError
from .settlement import ZERO, format_money, multiply, to_money, validate_bet_amount


logger = logging.getLogger(__name__)


class CoinFlipConfig:
    """Constantes del juego."""

    CHOICES = ("heads", "tails")
    HOUSE_MULTIPLIER = Decimal("1.95")   # 95% RTP contra la casa

    LABELS = {
        "heads": "Cara",
        "tails": "Cruz",
    }


@dataclass
class CoinFlipResult:
    """Resultado de una ronda contra la casa."""
    winner: str              # "player" | "house"
    player_choice: str
    house_choice: str
    prize: Decimal
    details: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner": self.winner,
            "player_choice": self.player_choice,
            "house_choice": self.house_choice,
            "prize": format_money(self.prize),
            "details": self.details,
        }


@dataclass
class PvPFlipResult:
    """Resultado de un sorteo entre dos participantes."""
    winner_id: int
    loser_id: int
    coin_result: str
    creator_choice: str
    player2_choice: str
    result_type: str         # creator_wins | player2_wins | creator_wins_tie

    def to_dict(self) -> Dict[str, Any]:
        return {
            "winner_id": self.winner_id,
            "loser_id": self.loser_id,
            "coin_result": self.coin_result,
            "creator_choice": self.creator_choice,
            "player2_choice": self.player2_choice,
            "result_type": self.result_type,
        }


def validate_choice(choice: Any) -> str:
    """Normaliza y valida una elección; ``ValidationError`` si no es heads/tails."""
    if not isinstance(choice, str) or choice.strip().lower() not in CoinFlipConfig.CHOICES:
        raise ValidationError(
            "Elección inválida, use 'heads' o 'tails'",
            {"choice": choice, "allowed": list(CoinFlipConfig.CHOICES)},
        )
    return choice.strip().lower()


def flip(rng: Optional[random.Random] = None) -> str:
    """Sorteo uniforme sobre {heads, tails}."""
    rng = rng or secrets.SystemRandom()
    return rng.choice(CoinFlipConfig.CHOICES)


def resolve_pvp(
    creator_id: int,
    player2_id: int,
    creator_choice: str,
    player2_choice: str,
    rng: Optional[random.Random] = None,
) -> PvPFlipResult:
    """
    Resuelve una ronda PvP con un único sorteo.

    Si ambos eligieron lo mismo gana el creador de la partida (desempate);
    si no, gana quien acertó el resultado.
    """
    creator_choice = validate_choice(creator_choice)
    player2_choice = validate_choice(player2_choice)
    coin_result = flip(rng)

    if creator_choice == player2_choice:
        winner_id, loser_id, result_type = creator_id, player2_id, "creator_wins_tie"
    elif creator_choice == coin_result:
        winner_id, loser_id, result_type = creator_id, player2_id, "creator_wins"
    else:
        winner_id, loser_id, result_type = player2_id, creator_id, "player2_wins"

    return PvPFlipResult(
        winner_id=winner_id,
        loser_id=loser_id,
        coin_result=coin_result,
        creator_choice=creator_choice,
        player2_choice=player2_choice,
        result_type=result_type,
    )


class CoinFlip:
    """
    Motor de Cara o Cruz contra la casa.

    El constructor valida la apuesta contra los límites configurados.
    """

    GAME_TYPE = "coin_flip"

    def __init__(
        self,
        bet_amount: Decimal,
        settings: GameSettings,
        rng: Optional[random.Random] = None,
    ):
        self.settings = settings
        self.bet_amount = to_money(bet_amount)
        self.rng = rng or secrets.SystemRandom()
        validate_bet_amount(self.bet_amount, settings)

    def play(self, choice: str) -> CoinFlipResult:
        """Juega una ronda. Sin efectos: el orquestador mueve el dinero."""
        player_choice = validate_choice(choice)
        house_choice = flip(self.rng)
        is_win = player_choice == house_choice

        prize = multiply(self.bet_amount, CoinFlipConfig.HOUSE_MULTIPLIER) if is_win else ZERO

        result = CoinFlipResult(
            winner="player" if is_win else "house",
            player_choice=player_choice,
            house_choice=house_choice,
            prize=prize,
            details=self._summary(player_choice, house_choice, is_win, prize),
        )
        logger.debug(
            "Coin flip: bet=%s choice=%s result=%s winner=%s prize=%s",
            self.bet_amount, player_choice, house_choice, result.winner, prize,
        )
        return result

    def _summary(self, player_choice: str, house_choice: str, is_win: bool, prize: Decimal) -> str:
        labels = CoinFlipConfig.LABELS
        outcome = f"ganó {format_money(prize)}" if is_win else f"perdió {format_money(self.bet_amount)}"
        return (
            f"Elección: {labels[player_choice]} | "
            f"Resultado: {labels[house_choice]} | "
            f"Jugador {outcome}"
        )

    @staticmethod
    def game_info() -> Dict[str, Any]:
        return {
            "game_type": CoinFlip.GAME_TYPE,
            "name": "Cara o Cruz",
            "description": "Elige cara o cruz y prueba tu suerte",
            "multiplier": str(CoinFlipConfig.HOUSE_MULTIPLIER),
            "rtp": "95%",
            "min_players": 2,
            "max_players": 2,
        }

