import pytest

from arena.engines import GameEngineFactory
from arena.errors import ValidationError
from arena.models import GameType


def test_supported_types_cover_every_engine():
    assert GameEngineFactory.supported_types() == ["coin_flip", "domino"]
    assert [info["game_type"] for info in GameEngineFactory.catalogue()] == ["coin_flip", "domino"]


@pytest.mark.parametrize("raw, expected", [
    ("coin_flip", GameType.COIN_FLIP),
    ("domino", GameType.DOMINO),
    (GameType.DOMINO, GameType.DOMINO),
])
def test_parse_game_type(raw, expected):
    assert GameEngineFactory.parse_game_type(raw) is expected


def test_unknown_game_type_lists_allowed():
    with pytest.raises(ValidationError) as exc_info:
        GameEngineFactory.parse_game_type("ludo")
    assert exc_info.value.details["allowed"] == ["coin_flip", "domino"]
