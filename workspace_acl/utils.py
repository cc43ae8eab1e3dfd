"""
Shared helpers.
"""
import logging

from workspace_acl.core import config


_LOG_FORMAT = "%(asctime)s %(levelname)s [%(name)s] %(message)s"
_configured = False


def get_logger(name: str) -> logging.Logger:
    """
    Return a module logger, configuring the root handler on first use.

    Usage:
        log = get_logger(__name__)
        log.info("Something happened")
    """
    global _configured
    if not _configured:
        logging.basicConfig(level=config.LOG_LEVEL.upper(), format=_LOG_FORMAT)
        _configured = True
    return logging.getLogger(name)
