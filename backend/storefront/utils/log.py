import logging
import sys

from storefront.config import settings


def get_logger(name: str) -> logging.Logger:
    """
    Named logger writing to stdout as "[NAME] message".
    Handlers are attached once per name so repeated imports don't duplicate output.
    """
    log = logging.getLogger(f"storefront.{name}")
    log.setLevel(settings.LOG_LEVEL.upper())
    if not log.handlers:
        h = logging.StreamHandler(sys.stdout)
        h.setFormatter(logging.Formatter(f"[{name.upper()}] %(message)s"))
        log.addHandler(h)
        log.propagate = False
    return log
