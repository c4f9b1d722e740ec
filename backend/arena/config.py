"""
=============================================================================
ARENA - Configuración
=============================================================================
Objeto de configuración explícito. Se construye una vez en el punto de
entrada y se pasa a los servicios y motores; nada en el núcleo lee
variables de entorno por su cuenta.
=============================================================================
"""

from decimal import Decimal
from functools import lru_cache
from typing import Optional

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class GameSettings(BaseSettings):
    """Límites de apuesta, rake y tiempos de la plataforma."""

    model_config = SettingsConfigDict(env_prefix="ARENA_", extra="ignore")

    database_url: str = "sqlite+aiosqlite:///./arena.db"

    # Apuestas (R$)
    min_bet_amount: Decimal = Decimal("5.00")
    max_bet_amount: Decimal = Decimal("1000.00")

    # Comisión de la casa sobre el pot (porcentaje)
    rake_percentage: Decimal = Decimal("5.0")

    # Ventana para que un oponente entre a la partida
    game_timeout_minutes: int = Field(default=30, gt=0)

    # Partidas simultáneas (waiting + active) por usuario
    max_active_games: int = Field(default=5, gt=0)

    # Tope por movimiento individual del ledger
    max_transaction_amount: Decimal = Decimal("100000")

    # Modo contra la casa (deshabilitado: el flujo principal es PvP)
    house_mode_enabled: bool = False

    # Servidor HTTP
    host: str = "127.0.0.1"
    port: int = Field(default=8000, gt=0, lt=65536)

    # Logging
    log_level: str = "INFO"
    log_dir: Optional[str] = None

    @model_validator(mode="after")
    def _check_limits(self) -> "GameSettings":
        if self.min_bet_amount <= 0:
            raise ValueError("min_bet_amount debe ser positivo")
        if self.max_bet_amount < self.min_bet_amount:
            raise ValueError("max_bet_amount debe ser >= min_bet_amount")
        if not (Decimal("0") <= self.rake_percentage <= Decimal("100")):
            raise ValueError("rake_percentage fuera de rango [0, 100]")
        return self


@lru_cache
def get_settings() -> GameSettings:
    """Settings del proceso. Solo para el punto de entrada de la aplicación."""
    return GameSettings()
