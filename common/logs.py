import sys
from loguru import logger

from . import config


def setup_logging(service: str) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level=config.LOG_LEVEL,
        format="<green>{time:YYYY-MM-DD HH:mm:ss}</green> | <level>{level: <8}</level> | "
               f"{service} | " "{name}:{line} - <level>{message}</level>",
    )
