"""Package logger shared by every core module."""

import logging

base_logger = logging.getLogger('plag_engine')


def set_logger(logger: logging.Logger):
    """Replace the package base logger (e.g. to route records into a host application)."""
    global base_logger
    base_logger = logger
