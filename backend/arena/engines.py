"""
=============================================================================
ARENA - Registro de Motores de Juego
=============================================================================
Conjunto cerrado de variantes {coin_flip, domino}. Cada motor expone el
mismo contrato mínimo (``GAME_TYPE``, ``game_info()``); no hay herencia
entre motores, la matemática compartida vive en ``settlement``.
=============================================================================
"""

from typing import Any, Dict, List, Union

from .coin_flip import CoinFlip
from .domino_engine import DominoEngine
from .errors import ValidationError
from .models import GameType


class GameEngineFactory:
    """Factory para obtener el motor correcto según el tipo de juego."""

    _engines = {
        GameType.COIN_FLIP: CoinFlip,
        GameType.DOMINO: DominoEngine,
    }

    @classmethod
    def parse_game_type(cls, game_type: Union[str, GameType]) -> GameType:
        """
        Normaliza el tipo de juego.

        Raises:
            ValidationError: Si el tipo no existe o no tiene motor
        """
        try:
            parsed = GameType(game_type)
        except ValueError:
            raise ValidationError(
                f"Tipo de juego no soportado: {game_type}",
                {"game_type": str(game_type), "allowed": cls.supported_types()},
            )
        if parsed not in cls._engines:
            raise ValidationError(f"No hay motor implementado para: {parsed.value}")
        return parsed

    @classmethod
    def supported_types(cls) -> List[str]:
        return [game_type.value for game_type in cls._engines]

    @classmethod
    def catalogue(cls) -> List[Dict[str, Any]]:
        """Información de cada juego disponible."""
        return [engine.game_info() for engine in cls._engines.values()]
