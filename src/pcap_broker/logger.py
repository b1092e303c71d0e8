# Centralized logging setup for the broker and the capture subprocess output.
import sys

from loguru import logger

CONSOLE_FORMAT = (
    "<green>{time:YYYY-MM-DDTHH:mm:ssZZ}</green> "
    "<level>{level: <5}</level> "
    "{message}"
)


def setup_logging(debug: bool = False, json_output: bool = False):
    level = "DEBUG" if debug else "INFO"
    logger.remove()
    if json_output:
        logger.add(sys.stderr, level=level, serialize=True)
    else:
        logger.add(sys.stderr, level=level, format=CONSOLE_FORMAT)
    logger.debug("Logger initialized at level {}", level)
    return logger
