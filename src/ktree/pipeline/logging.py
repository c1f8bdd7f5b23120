import logging

from rich.console import Console
from rich.logging import RichHandler

LOGGER_NAME = "ktree.pipeline"

NOISY_LOGGERS = ("httpx", "httpcore", "urllib3", "asyncio", "lancedb")


def get_logger() -> logging.Logger:
    """Return the package logger, attaching a rich handler on first use."""
    logger = logging.getLogger(LOGGER_NAME)
    if not logger.handlers:
        handler = RichHandler(
            console=Console(stderr=True),
            show_path=False,
            rich_tracebacks=True,
        )
        handler.setFormatter(logging.Formatter("%(message)s"))
        logger.addHandler(handler)
        logger.setLevel(logging.INFO)
        logger.propagate = False
    return logger


def configure_cli_logging(level: int = logging.INFO) -> logging.Logger:
    """Configure logging for CLI usage.

    Only the package logger emits output; the root logger and chatty
    third-party libraries are held at ERROR.
    """
    logger = get_logger()
    logger.setLevel(level)

    root = logging.getLogger()
    for handler in list(root.handlers):
        root.removeHandler(handler)
    root.setLevel(logging.ERROR)

    for name in NOISY_LOGGERS:
        noisy = logging.getLogger(name)
        noisy.setLevel(logging.ERROR)
        noisy.propagate = False

    return logger
