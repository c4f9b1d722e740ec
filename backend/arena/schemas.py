"""
=============================================================================
ARENA - Schemas de la API HTTP (Pydantic)
=============================================================================
Los montos viajan como string decimal exacto ("10.00"), nunca float.
=============================================================================
"""

from decimal import Decimal
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, Field


# =============================================================================
# REQUESTS
# =============================================================================

class RegisterUserRequest(BaseModel):
    """Alta (o lookup) de usuario por su identidad de plataforma."""
    telegram_id: int = Field(..., gt=0)
    first_name: Optional[str] = Field(None, max_length=128)
    last_name: Optional[str] = Field(None, max_length=128)
    username: Optional[str] = Field(None, max_length=64)


class DepositRequest(BaseModel):
    amount: Decimal


class CreateMatchRequest(BaseModel):
    game_type: str
    bet_amount: Decimal


class CoinFlipMoveRequest(BaseModel):
    choice: str


class HouseCoinFlipRequest(BaseModel):
    bet_amount: Decimal
    choice: str


class DominoMoveRequest(BaseModel):
    piece_id: str
    side: str = "left"


# =============================================================================
# RESPONSES
# =============================================================================

class UserResponse(BaseModel):
    id: int
    telegram_id: int
    username: Optional[str] = None
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    balance: str
    status: str


class TransactionResponse(BaseModel):
    id: int
    user_id: int
    match_id: Optional[int] = None
    type: str
    amount: str
    balance_before: str
    balance_after: str
    description: Optional[str] = None
    created_at: Optional[str] = None


class MatchResponse(BaseModel):
    id: int
    creator_id: int
    player2_id: Optional[int] = None
    game_type: str
    bet_amount: str
    status: str
    winner_id: Optional[int] = None
    prize: Optional[str] = None
    rake_amount: Optional[str] = None
    created_at: Optional[str] = None
    expires_at: Optional[str] = None
    started_at: Optional[str] = None
    completed_at: Optional[str] = None


class MatchListResponse(BaseModel):
    matches: List[MatchResponse]


class TransactionListResponse(BaseModel):
    transactions: List[TransactionResponse]


class MoveResponse(BaseModel):
    """Resultado de una jugada (cara o cruz o dominó)."""
    match_id: int
    waiting: bool
    result: Dict[str, Any] = Field(default_factory=dict)
    settlement: Optional[Dict[str, Any]] = None
    next_player: Optional[int] = None
    available_moves: List[Dict[str, Any]] = Field(default_factory=list)
    interface: Optional[str] = None


class DominoStateResponse(BaseModel):
    match_id: int
    status: str
    state: Dict[str, Any]
    available_moves: List[Dict[str, Any]]
    interface: str


class ErrorResponse(BaseModel):
    error: str
    message: str
