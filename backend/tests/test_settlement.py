from decimal import Decimal

import pytest

from arena.config import GameSettings
from arena.errors import ValidationError
from arena.settlement import (
    calculate_refund,
    calculate_settlement,
    format_money,
    multiply,
    to_money,
    validate_bet_amount,
)


def test_settlement_two_players_five_percent():
    s = calculate_settlement(Decimal("10.00"), Decimal("5.0"))

    assert s.total_pot == Decimal("20.00")
    assert s.rake_amount == Decimal("1.00")
    assert s.winner_prize == Decimal("19.00")
    assert s.validate_balance_equation()


@pytest.mark.parametrize("bet", ["5.00", "7.33", "12.35", "999.99"])
def test_prize_plus_rake_equals_pot(bet):
    s = calculate_settlement(Decimal(bet), Decimal("5.0"), num_players=4)

    assert s.winner_prize + s.rake_amount == s.total_pot
    assert s.total_pot == Decimal(bet) * 4


def test_zero_rake_pays_whole_pot():
    s = calculate_settlement(Decimal("10.00"), Decimal("0"))
    assert s.rake_amount == Decimal("0.00")
    assert s.winner_prize == Decimal("20.00")


def test_settlement_requires_two_players():
    with pytest.raises(ValidationError):
        calculate_settlement(Decimal("10.00"), Decimal("5.0"), num_players=1)


def test_refund_has_no_rake():
    s = calculate_refund(Decimal("10.00"), 3)
    assert s.rake_amount == Decimal("0.00")
    assert s.winner_prize == s.total_pot == Decimal("30.00")


def test_money_helpers():
    assert to_money("10") == Decimal("10.00")
    assert to_money(Decimal("0.005")) == Decimal("0.01")
    assert format_money(Decimal("19.5")) == "19.50"
    assert multiply(Decimal("10.00"), "1.95") == Decimal("19.50")


def test_to_money_rejects_float_and_garbage():
    with pytest.raises(ValidationError):
        to_money(10.5)
    with pytest.raises(ValidationError):
        to_money("diez")
    with pytest.raises(ValidationError):
        to_money("NaN")


def test_validate_bet_amount_range():
    settings = GameSettings(min_bet_amount=Decimal("5.00"), max_bet_amount=Decimal("100.00"))

    assert validate_bet_amount(Decimal("5.00"), settings) == Decimal("5.00")
    assert validate_bet_amount(Decimal("100.00"), settings) == Decimal("100.00")
    for bad in ("0", "-1", "4.99", "100.01"):
        with pytest.raises(ValidationError):
            validate_bet_amount(Decimal(bad), settings)


def test_settings_reject_inverted_limits():
    with pytest.raises(ValueError):
        GameSettings(min_bet_amount=Decimal("50"), max_bet_amount=Decimal("10"))
