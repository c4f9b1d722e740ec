"""
=============================================================================
ARENA - Endpoints HTTP
=============================================================================
Adaptador delgado sobre ``MatchService`` y ``UserLedger``. El usuario que
actúa llega en el header ``X-User-Id`` (la autenticación vive en el bot,
fuera de este servicio). Los errores de dominio se traducen a HTTP en el
handler registrado por ``main.create_app``.
=============================================================================
"""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Query, Request

from .engines import GameEngineFactory
from .ledger import UserLedger
from .match_service import MatchService
from .schemas import (
    CoinFlipMoveRequest,
    CreateMatchRequest,
    DepositRequest,
    DominoMoveRequest,
    DominoStateResponse,
    HouseCoinFlipRequest,
    MatchListResponse,
    MatchResponse,
    MoveResponse,
    RegisterUserRequest,
    TransactionListResponse,
    TransactionResponse,
    UserResponse,
)


router = APIRouter(tags=["Arena"])


# =============================================================================
# DEPENDENCIAS
# =============================================================================

def get_match_service(request: Request) -> MatchService:
    return request.app.state.match_service


def get_ledger(request: Request) -> UserLedger:
    return request.app.state.ledger


def get_acting_user(x_user_id: int = Header(..., alias="X-User-Id")) -> int:
    return x_user_id


# =============================================================================
# ENDPOINTS - USUARIOS
# =============================================================================

@router.post("/users", response_model=UserResponse)
async def register_user(body: RegisterUserRequest, ledger: UserLedger = Depends(get_ledger)):
    """Registra al usuario o devuelve el existente para ese ``telegram_id``."""
    user = await ledger.find_or_create_user(
        telegram_id=body.telegram_id,
        first_name=body.first_name,
        last_name=body.last_name,
        username=body.username,
    )
    return UserResponse(**user.to_dict())


@router.get("/users/{user_id}", response_model=UserResponse)
async def get_user(user_id: int, ledger: UserLedger = Depends(get_ledger)):
    user = await ledger.get_user(user_id)
    return UserResponse(**user.to_dict())


@router.post("/users/{user_id}/deposit", response_model=TransactionResponse)
async def deposit(user_id: int, body: DepositRequest, ledger: UserLedger = Depends(get_ledger)):
    tx = await ledger.deposit(user_id, body.amount)
    return TransactionResponse(**tx.to_dict())


@router.get("/users/{user_id}/transactions", response_model=TransactionListResponse)
async def list_transactions(
    user_id: int,
    limit: int = Query(20, ge=1, le=100),
    ledger: UserLedger = Depends(get_ledger),
):
    transactions = await ledger.get_transactions(user_id, limit=limit)
    return TransactionListResponse(transactions=[TransactionResponse(**tx.to_dict()) for tx in transactions])


@router.get("/users/{user_id}/matches", response_model=MatchListResponse)
async def list_user_matches(
    user_id: int,
    limit: int = Query(20, ge=1, le=100),
    service: MatchService = Depends(get_match_service),
):
    matches = await service.get_user_matches(user_id, limit=limit)
    return MatchListResponse(matches=[MatchResponse(**m.to_dict()) for m in matches])


# =============================================================================
# ENDPOINTS - JUEGOS
# =============================================================================

@router.get("/games")
async def list_games():
    """Catálogo de juegos disponibles."""
    return {"games": GameEngineFactory.catalogue()}


@router.post("/games/coin-flip/house")
async def play_house_coin_flip(
    body: HouseCoinFlipRequest,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    return await service.play_house_coin_flip(user_id, body.bet_amount, body.choice)


# =============================================================================
# ENDPOINTS - PARTIDAS
# =============================================================================

@router.post("/matches", response_model=MatchResponse)
async def create_match(
    body: CreateMatchRequest,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    match = await service.create_match(user_id, body.game_type, body.bet_amount)
    return MatchResponse(**match.to_dict())


@router.get("/matches/available", response_model=MatchListResponse)
async def list_available_matches(
    game_type: Optional[str] = None,
    limit: int = Query(10, ge=1, le=100),
    service: MatchService = Depends(get_match_service),
):
    matches = await service.get_available_matches(game_type, limit=limit)
    return MatchListResponse(matches=[MatchResponse(**m.to_dict()) for m in matches])


@router.get("/matches/{match_id}", response_model=MatchResponse)
async def get_match(match_id: int, service: MatchService = Depends(get_match_service)):
    match = await service.get_match(match_id)
    return MatchResponse(**match.to_dict())


@router.post("/matches/{match_id}/join", response_model=MatchResponse)
async def join_match(
    match_id: int,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    match = await service.join_match(match_id, user_id)
    return MatchResponse(**match.to_dict())


@router.post("/matches/{match_id}/cancel", response_model=MatchResponse)
async def cancel_match(
    match_id: int,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    match = await service.cancel_match(match_id, user_id)
    return MatchResponse(**match.to_dict())


@router.post("/matches/{match_id}/coin-flip", response_model=MoveResponse)
async def coin_flip_move(
    match_id: int,
    body: CoinFlipMoveRequest,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    result = await service.make_move(match_id, user_id, body.choice)
    return MoveResponse(**result.to_dict())


@router.get("/matches/{match_id}/domino", response_model=DominoStateResponse)
async def domino_state(
    match_id: int,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    return DominoStateResponse(**await service.get_domino_state(match_id, user_id))


@router.post("/matches/{match_id}/domino", response_model=MoveResponse)
async def domino_move(
    match_id: int,
    body: DominoMoveRequest,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    result = await service.make_domino_move(match_id, user_id, body.piece_id, body.side)
    return MoveResponse(**result.to_dict())


@router.post("/matches/{match_id}/domino/pass", response_model=MoveResponse)
async def domino_pass(
    match_id: int,
    user_id: int = Depends(get_acting_user),
    service: MatchService = Depends(get_match_service),
):
    result = await service.pass_domino_turn(match_id, user_id)
    return MoveResponse(**result.to_dict())
