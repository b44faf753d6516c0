import logging
from flashkit.utils.logging_formatter import CustomFormatter


def getFlashKitLogger() -> logging.Logger:
    """
    Returns the shared 'FlashKit' logger. The console handler is attached on
    the first call only, later calls keep the level set via FlashKit.log_level.
    """
    logger = logging.getLogger("FlashKit")
    if not logger.handlers:
        ch = logging.StreamHandler()
        # colours and line rewriting only make sense on a terminal
        ch.setFormatter(CustomFormatter(colours=ch.stream.isatty()))
        ch.setLevel(logging.INFO)
        logger.addHandler(ch)
        logger.setLevel(logging.INFO)
    return logger
