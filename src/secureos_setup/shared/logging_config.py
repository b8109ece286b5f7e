"""Simple centralized logging - configure once, use everywhere.

The CLI entry point calls configure_logging() ONCE.
All other modules just import the logger directly.
"""

import sys
from pathlib import Path
from loguru import logger

_configured = False


def configure_logging(level: str = "INFO", log_to_file: bool = False) -> None:
    """Configure loguru sinks. Safe to call more than once."""
    global _configured

    if _configured:
        return

    logger.remove()  # Remove default handler

    # Console output goes to stderr so stdout only carries the KEY=value summary
    logger.add(
        sys.stderr,
        level=level,
        format="<green>{time:HH:mm:ss}</green> | <level>{level: <8}</level> | <level>{message}</level>",
        colorize=True,
    )

    # File output (rotates daily)
    if log_to_file:
        Path("logs").mkdir(exist_ok=True)
        logger.add(
            "logs/azure_setup_{time:YYYY-MM-DD_HH-mm-ss}.log",
            level="DEBUG",
            rotation="00:00",
            retention="30 days",
        )

    _configured = True
    logger.debug("Logging configured")


def log_step(num: int, title: str) -> None:
    """Print formatted step header."""
    logger.info("=" * 60)
    logger.info(f"STEP {num}: {title}")
    logger.info("=" * 60)
