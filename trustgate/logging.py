"""
TrustGate logging setup.

Every module logs through ``logging.getLogger("trustgate.<subsystem>")``;
this only attaches a handler to the ``trustgate`` root logger.
"""

import logging

LOGGER_NAME = "trustgate"
LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"


def configure_logging(level: str = "INFO", stream=None) -> logging.Logger:
    """
    Install a stream handler on the ``trustgate`` logger.

    Calling it again replaces the handler instead of stacking another one.
    """
    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(getattr(logging, level.upper()))

    for handler in list(logger.handlers):
        if getattr(handler, "_trustgate", False):
            logger.removeHandler(handler)

    handler = logging.StreamHandler(stream)
    handler.setFormatter(logging.Formatter(LOG_FORMAT))
    handler._trustgate = True
    logger.addHandler(handler)
    return logger
