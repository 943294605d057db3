"""
Logging setup and status messages for scenario calculations.
"""

import logging

LOG_FORMAT = "%(asctime)s.%(msecs)03d %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

_package_logger = logging.getLogger("nemopy")


def setup_logging(level=logging.INFO, log_file=None):
    """
    Configure the package logger with a console handler and an optional file handler.

    Calling it again replaces the handlers it installed before, so it is safe
    to call once per calculation.

    Args:
        level (int): Logging level for the package logger
        log_file (str): Optional path of a log file
    """
    formatter = logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT)

    for handler in list(_package_logger.handlers):
        if getattr(handler, "_nemopy_handler", False):
            _package_logger.removeHandler(handler)
            handler.close()

    console_handler = logging.StreamHandler()
    console_handler.setFormatter(formatter)
    console_handler._nemopy_handler = True
    _package_logger.addHandler(console_handler)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(formatter)
        file_handler._nemopy_handler = True
        _package_logger.addHandler(file_handler)

    _package_logger.setLevel(level)
    return _package_logger


def logmsg(msg, quiet=False, logger=None):
    """
    Emit a status message.

    Low-priority messages pass ``quiet`` through; when it is true they are
    demoted to DEBUG so a normal console run does not show them.
    """
    target = logger or _package_logger
    if quiet:
        target.debug(msg)
    else:
        target.info(msg)
