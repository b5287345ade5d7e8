import logging
import os

from rich.logging import RichHandler

LOG_FORMAT = "[%(name)s]  %(message)s"


def _level() -> int:
    return logging.DEBUG if os.getenv("DEBUG") else logging.INFO


def get_logger(name=None) -> logging.Logger:
    """
    Return a logger that writes through a RichHandler.

    Handlers are attached once per name, so modules can call this at import
    time without stacking duplicate output.
    """
    if name is None:
        name = "storefront"
    logger = logging.getLogger(name)
    level = _level()
    logger.setLevel(level)

    if not logger.handlers:
        handler = RichHandler(
            show_time=True,
            show_level=True,
            show_path=False,
            rich_tracebacks=True,
            log_time_format="[%X]",
        )
        handler.setFormatter(logging.Formatter(LOG_FORMAT))
        handler.setLevel(level)
        logger.addHandler(handler)
        logger.propagate = False

    return logger
