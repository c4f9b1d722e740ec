"""
=============================================================================
ARENA - Cálculo de Liquidación (Pot / Rake / Premio)
=============================================================================
Matemática compartida por todos los motores. Todo en Decimal de punto fijo
(2 decimales); nunca float para evitar deriva acumulada entre liquidaciones.

Ecuación de balance (siempre):
    premio + rake == pot
=============================================================================
"""

from dataclasses import dataclass
from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from typing import Any, Dict, Union

from .config import GameSettings
from .errors import ValidationError


CENTS = Decimal("0.01")
ZERO = Decimal("0.00")


def to_money(value: Union[str, int, Decimal]) -> Decimal:
    """Convierte a Decimal cuantizado a centavos. Rechaza floats y basura."""
    if isinstance(value, float):
        raise ValidationError("Monto no puede ser float", {"value": repr(value)})
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise ValidationError("Monto inválido", {"value": str(value)})
    if not amount.is_finite():
        raise ValidationError("Monto inválido", {"value": str(value)})
    return amount.quantize(CENTS, rounding=ROUND_HALF_UP)


def format_money(amount: Decimal) -> str:
    """Representación exacta en string ("10.00")."""
    return str(amount.quantize(CENTS, rounding=ROUND_HALF_UP))


def multiply(amount: Decimal, multiplier: Union[str, Decimal]) -> Decimal:
    return (amount * Decimal(str(multiplier))).quantize(CENTS, rounding=ROUND_HALF_UP)


@dataclass(frozen=True)
class Settlement:
    """Resultado de la liquidación de una partida."""
    bet_per_player: Decimal
    num_players: int
    total_pot: Decimal
    rake_amount: Decimal
    winner_prize: Decimal
    rake_rate: Decimal

    def validate_balance_equation(self) -> bool:
        return self.winner_prize + self.rake_amount == self.total_pot

    def to_dict(self) -> Dict[str, Any]:
        return {
            "bet_per_player": format_money(self.bet_per_player),
            "num_players": self.num_players,
            "total_pot": format_money(self.total_pot),
            "rake_amount": format_money(self.rake_amount),
            "winner_prize": format_money(self.winner_prize),
            "rake_rate": str(self.rake_rate),
        }


def calculate_settlement(
    bet_amount: Decimal,
    rake_percentage: Decimal,
    num_players: int = 2,
) -> Settlement:
    """
    Calcula pot, rake y premio neto para un ganador único.

    Ejemplo mesa 10.00 con 5%:
        - pot: 20.00
        - rake: 1.00
        - premio: 19.00
    """
    if num_players < 2:
        raise ValidationError("Se necesitan al menos 2 jugadores", {"num_players": num_players})
    bet = to_money(bet_amount)
    rate = Decimal(str(rake_percentage)) / Decimal("100")

    total_pot = bet * num_players
    rake_amount = (total_pot * rate).quantize(CENTS, rounding=ROUND_HALF_UP)
    winner_prize = total_pot - rake_amount

    settlement = Settlement(
        bet_per_player=bet,
        num_players=num_players,
        total_pot=total_pot,
        rake_amount=rake_amount,
        winner_prize=winner_prize,
        rake_rate=rate,
    )
    if not settlement.validate_balance_equation():
        raise ValueError(f"Balance equation failed: {settlement.to_dict()}")
    return settlement


def calculate_refund(bet_amount: Decimal, num_players: int = 2) -> Settlement:
    """Empate: cada participante recupera su apuesta, sin rake."""
    bet = to_money(bet_amount)
    total_pot = bet * num_players
    return Settlement(
        bet_per_player=bet,
        num_players=num_players,
        total_pot=total_pot,
        rake_amount=ZERO,
        winner_prize=total_pot,
        rake_rate=Decimal("0"),
    )


def validate_bet_amount(bet_amount: Decimal, settings: GameSettings) -> Decimal:
    """Apuesta dentro de [min, max] configurado; ``ValidationError`` si no."""
    if bet_amount <= 0:
        raise ValidationError("La apuesta debe ser positiva", {"bet_amount": format_money(bet_amount)})
    if bet_amount < settings.min_bet_amount:
        raise ValidationError(
            f"Apuesta mínima: {format_money(settings.min_bet_amount)}",
            {"bet_amount": format_money(bet_amount), "min": format_money(settings.min_bet_amount)},
        )
    if bet_amount > settings.max_bet_amount:
        raise ValidationError(
            f"Apuesta máxima: {format_money(settings.max_bet_amount)}",
            {"bet_amount": format_money(bet_amount), "max": format_money(settings.max_bet_amount)},
        )
    return bet_amount
