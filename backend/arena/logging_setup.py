import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from .config import GameSettings


LOGGER_NAME = "arena"
_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
_DATEFMT = "%Y-%m-%d %H:%M:%S"


def setup_logging(settings: GameSettings) -> logging.Logger:
    """Configura el logger raíz del paquete.

    - Salida a consola siempre
    - Archivo rotativo ``arena.log`` si ``settings.log_dir`` está definido

    Es idempotente: se puede llamar varias veces (tests, recargas).
    """
    level = logging.getLevelName(settings.log_level.strip().upper())
    if not isinstance(level, int):
        level = logging.INFO

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(level)
    logger.propagate = False

    for handler in list(logger.handlers):
        logger.removeHandler(handler)
        handler.close()

    fmt = logging.Formatter(fmt=_FORMAT, datefmt=_DATEFMT)

    console = logging.StreamHandler(stream=sys.stdout)
    console.setLevel(level)
    console.setFormatter(fmt)
    logger.addHandler(console)

    if settings.log_dir:
        logs_dir = Path(settings.log_dir).expanduser()
        logs_dir.mkdir(parents=True, exist_ok=True)
        fh = RotatingFileHandler(
            logs_dir / "arena.log",
            maxBytes=5 * 1024 * 1024,
            backupCount=5,
            encoding="utf-8",
        )
        fh.setLevel(level)
        fh.setFormatter(fmt)
        logger.addHandler(fh)

    logger.debug("Logging initialized: level=%s", logging.getLevelName(level))
    return logger
