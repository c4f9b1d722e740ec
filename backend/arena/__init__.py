"""
Arena: partidas con apuesta (cara o cruz y dominó) liquidadas contra un
ledger de saldos.
"""

__version__ = "0.1.0"

from .coin_flip import CoinFlip, resolve_pvp  # noqa: E402
from .config import GameSettings, get_settings  # noqa: E402
from .domino_engine import DominoEngine  # noqa: E402
from .engines import GameEngineFactory  # noqa: E402
from .errors import ArenaError  # noqa: E402
from .ledger import BalanceDirection, UserLedger  # noqa: E402
from .match_service import MatchService  # noqa: E402

__all__ = [
    "ArenaError",
    "BalanceDirection",
    "CoinFlip",
    "DominoEngine",
    "GameEngineFactory",
    "GameSettings",
    "MatchService",
    "UserLedger",
    "get_settings",
    "resolve_pvp",
]
