"""
Logging setup using loguru
"""
import sys
from pathlib import Path
from typing import Optional
from loguru import logger

LOG_FORMAT = (
    "<green>{time:YYYY-MM-DD HH:mm:ss}</green> | "
    "<level>{level: <8}</level> | "
    "<cyan>{name}</cyan> | "
    "<level>{message}</level>"
)


def setup_logging(level: str = "INFO", log_file: Optional[str] = None) -> None:
    """
    Replace loguru's default handler with the application sinks

    Args:
        level: Minimum level for the console sink
        log_file: Optional path for a rotating file sink (always DEBUG)
    """
    logger.remove()
    logger.add(sys.stderr, format=LOG_FORMAT, level=level.upper(), colorize=True)

    if log_file:
        Path(log_file).parent.mkdir(parents=True, exist_ok=True)
        logger.add(
            log_file,
            format=LOG_FORMAT,
            level="DEBUG",
            rotation="1 day",
            retention="14 days",
            enqueue=True
        )

    logger.debug(f"Logging configured: level={level}, file={log_file}")
