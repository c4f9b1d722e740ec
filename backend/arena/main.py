"""
=============================================================================
ARENA - Punto de Entrada Principal (FastAPI)
=============================================================================
Servidor de partidas con apuesta: cara o cruz y dominó entre usuarios,
con liquidación contra el ledger de saldos.

Integra:
- FastAPI para la REST API
- SQLAlchemy async para persistencia
- Middleware de seguridad y CORS
=============================================================================
"""

import logging
import time
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
import uvicorn

from . import __version__
from .api import router as arena_router
from .config import GameSettings, get_settings
from .database import create_engine_from_settings, create_session_factory, init_models
from .errors import ArenaError
from .ledger import UserLedger
from .logging_setup import setup_logging
from .match_service import MatchService
from .schemas import ErrorResponse


logger = logging.getLogger(__name__)


def create_app(settings: Optional[GameSettings] = None) -> FastAPI:
    """Construye la aplicación con sus servicios ligados a ``settings``."""
    settings = settings or get_settings()

    # =========================================================================
    # LIFECYCLE
    # =========================================================================

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        setup_logging(settings)
        engine = create_engine_from_settings(settings)
        await init_models(engine)

        session_factory = create_session_factory(engine)
        ledger = UserLedger(session_factory, settings)
        app.state.settings = settings
        app.state.engine = engine
        app.state.ledger = ledger
        app.state.match_service = MatchService(session_factory, settings, ledger=ledger)

        logger.info("Arena server started: version=%s house_mode=%s", __version__, settings.house_mode_enabled)
        yield
        await engine.dispose()
        logger.info("Arena server stopped")

    app = FastAPI(
        title="Arena API",
        description="""
        ## Partidas con apuesta entre usuarios

        ### Juegos:
        - **Cara o cruz**: PvP (y contra la casa si está habilitado)
        - **Dominó**: doble seis, 2 a 4 jugadores

        ### Estados de Partida:
        waiting → active → completed (o cancelled / expired desde waiting)
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        lifespan=lifespan,
    )

    # =========================================================================
    # MIDDLEWARE
    # =========================================================================

    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    @app.middleware("http")
    async def add_security_headers(request: Request, call_next):
        """Agrega headers de seguridad a las respuestas."""
        response = await call_next(request)
        response.headers["X-Content-Type-Options"] = "nosniff"
        response.headers["X-Frame-Options"] = "DENY"
        response.headers["Referrer-Policy"] = "strict-origin-when-cross-origin"
        return response

    # =========================================================================
    # ERRORES
    # =========================================================================

    @app.exception_handler(ArenaError)
    async def arena_error_handler(request: Request, exc: ArenaError):
        if exc.http_status >= 500:
            logger.error("Request failed: %s %s -> %s", request.method, request.url.path, exc.code)
        else:
            logger.info("Request rejected: %s %s -> %s %s", request.method, request.url.path, exc.code, exc.message)
        body = ErrorResponse(error=exc.code, message=exc.message)
        return JSONResponse(status_code=exc.http_status, content=body.model_dump())

    # =========================================================================
    # ENDPOINTS
    # =========================================================================

    @app.get("/health")
    async def health_check():
        """Health check para Docker y load balancers."""
        return {
            "status": "healthy",
            "service": "arena-backend",
            "version": __version__,
            "timestamp": time.time(),
        }

    app.include_router(arena_router, prefix="/api/v1")
    return app


app = create_app()


def run() -> None:
    """Levanta el servidor con ``host``/``port`` de la configuración."""
    settings = get_settings()
    uvicorn.run("arena.main:app", host=settings.host, port=settings.port, log_level=settings.log_level.lower())


if __name__ == "__main__":
    run()
