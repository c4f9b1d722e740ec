from decimal import Decimal

import pytest

from arena.coin_flip import CoinFlip, CoinFlipConfig, flip, resolve_pvp, validate_choice
from arena.config import GameSettings
from arena.errors import ValidationError

from conftest import FixedCoin


@pytest.fixture
def settings():
    return GameSettings(min_bet_amount=Decimal("5.00"), max_bet_amount=Decimal("1000.00"))


def test_house_win_pays_fixed_multiplier(settings):
    game = CoinFlip(Decimal("10.00"), settings, rng=FixedCoin("heads"))
    result = game.play("heads")

    assert result.winner == "player"
    assert result.prize == Decimal("19.50")
    assert result.house_choice == "heads"
    assert "Cara" in result.details


def test_house_loss_pays_nothing(settings):
    game = CoinFlip(Decimal("10.00"), settings, rng=FixedCoin("tails"))
    result = game.play("heads")

    assert result.winner == "house"
    assert result.prize == Decimal("0.00")
    assert result.to_dict()["prize"] == "0.00"


def test_choice_is_normalized():
    assert validate_choice("  HEADS ") == "heads"
    assert validate_choice("Tails") == "tails"


@pytest.mark.parametrize("bad", ["edge", "", None, 1, "cara"])
def test_invalid_choice_rejected(bad):
    with pytest.raises(ValidationError):
        validate_choice(bad)


def test_bet_outside_limits_rejected(settings):
    with pytest.raises(ValidationError):
        CoinFlip(Decimal("1.00"), settings)
    with pytest.raises(ValidationError):
        CoinFlip(Decimal("1000.01"), settings)


def test_flip_only_returns_heads_or_tails():
    results = {flip() for _ in range(200)}
    assert results <= set(CoinFlipConfig.CHOICES)


def test_pvp_same_choice_creator_wins():
    result = resolve_pvp(1, 2, "tails", "tails", rng=FixedCoin("heads"))

    assert result.winner_id == 1
    assert result.loser_id == 2
    assert result.result_type == "creator_wins_tie"


def test_pvp_creator_guesses_right():
    result = resolve_pvp(1, 2, "heads", "tails", rng=FixedCoin("heads"))
    assert (result.winner_id, result.loser_id, result.result_type) == (1, 2, "creator_wins")


def test_pvp_player2_guesses_right():
    result = resolve_pvp(1, 2, "heads", "tails", rng=FixedCoin("tails"))

    assert (result.winner_id, result.loser_id, result.result_type) == (2, 1, "player2_wins")
    assert result.to_dict()["coin_result"] == "tails"


def test_game_info():
    info = CoinFlip.game_info()
    assert info["game_type"] == "coin_flip"
    assert info["multiplier"] == "1.95"
