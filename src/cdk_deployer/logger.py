import logging
import sys
import traceback

from colorlog import ColoredFormatter

LOGGER_NAME = "cdk_deployer"

DEBUG_MODE = False


def setup_logger(debug_mode=False):
    """
    Configure the package logger with a colored console handler.

    All modules log through ``logging.getLogger(__name__)`` and propagate
    to this logger, so calling this once at startup is enough.
    """
    global DEBUG_MODE
    DEBUG_MODE = debug_mode

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG if debug_mode else logging.INFO)

    formatter = ColoredFormatter(
        "%(log_color)s[%(levelname)s] %(message)s",
        log_colors={
            "DEBUG":    "cyan",
            "INFO":     "green",
            "WARNING":  "yellow",
            "ERROR":    "red",
            "CRITICAL": "red,bg_white",
        }
    )

    if not logger.handlers:
        handler = logging.StreamHandler(sys.stdout)
        logger.addHandler(handler)

    for handler in logger.handlers:
        handler.setLevel(logging.DEBUG if debug_mode else logging.INFO)
        handler.setFormatter(formatter)

    return logger


def get_debug_mode():
    return DEBUG_MODE


def print_stack_trace():
    """
    Log the current stack trace if debug mode is enabled.
    """
    if get_debug_mode():
        logger.error(traceback.format_exc())


def configure_logger_from_config(config):
    """Re-setup the logger using the ``mode`` of a loaded DeployerConfig."""
    global logger
    logger = setup_logger(debug_mode=config.is_debug)
    if config.is_debug:
        logger.debug("Debug mode is active.")
    return logger


# Logger defaults to INFO unless reconfigured later.
logger = setup_logger(debug_mode=DEBUG_MODE)
