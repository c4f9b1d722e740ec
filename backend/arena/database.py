"""
Motor async y fábrica de sesiones.

PostgreSQL (asyncpg) en producción; SQLite (aiosqlite) para desarrollo y
tests. Con ``:memory:`` se usa ``StaticPool`` para que todas las sesiones
compartan la misma base.
"""

import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator, Dict

from sqlalchemy.engine import make_url
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import (
    AsyncEngine,
    AsyncSession,
    async_sessionmaker,
    create_async_engine,
)
from sqlalchemy.orm.exc import StaleDataError
from sqlalchemy.pool import StaticPool

from .config import GameSettings
from .errors import InternalError, InvalidStateError
from .models import Base


logger = logging.getLogger(__name__)


def create_engine_from_settings(settings: GameSettings, echo: bool = False) -> AsyncEngine:
    url = make_url(settings.database_url)
    kwargs: Dict[str, Any] = {"echo": echo}

    if url.get_backend_name() == "sqlite":
        kwargs["connect_args"] = {"check_same_thread": False}
        if url.database in (None, "", ":memory:"):
            kwargs["poolclass"] = StaticPool
    else:
        kwargs["pool_pre_ping"] = True

    logger.info("Database engine: %s", url.render_as_string(hide_password=True))
    return create_async_engine(url, **kwargs)


def create_session_factory(engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        bind=engine,
        expire_on_commit=False,
        autoflush=False,
    )


async def init_models(engine: AsyncEngine) -> None:
    """Crea las tablas que falten (sin migraciones)."""
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)


@asynccontextmanager
async def unit_of_work(
    session_factory: async_sessionmaker[AsyncSession],
    operation: str,
    **context: Any,
) -> AsyncIterator[AsyncSession]:
    """
    Una operación = una transacción.

    Commit al salir sin errores, rollback ante cualquier excepción. Las
    fallas de SQLAlchemy se registran con contexto y se traducen a errores
    de dominio; los ``ArenaError`` pasan tal cual.
    """
    async with session_factory() as session:
        try:
            async with session.begin():
                yield session
        except StaleDataError as e:
            logger.warning("Concurrent update in %s %s: %s", operation, context, e)
            raise InvalidStateError(
                "El registro fue modificado por otra operación, reintente",
                {"operation": operation},
            ) from e
        except SQLAlchemyError as e:
            logger.exception("Persistence failure in %s %s", operation, context)
            raise InternalError("Error interno, intente más tarde") from e
