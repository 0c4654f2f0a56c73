import logging

from app.config import settings

LOG_FORMAT = '%(asctime)s [%(levelname)s] %(name)s: %(message)s'
LOG_DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def configure_logging(level: str | None = None) -> logging.Logger:
    """Attach a console handler to the `app` logger once.

    Calling it again only adjusts the level.
    """
    logger = logging.getLogger('app')
    logger.setLevel((level or settings.log_level).upper())
    if logger.handlers:
        return logger

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=LOG_DATE_FORMAT))
    logger.addHandler(handler)
    logger.propagate = False
    return logger
