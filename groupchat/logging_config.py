import logging
import sys

from groupchat.config import settings


def setup_logging(level: str | None = None) -> logging.Logger:
    root = logging.getLogger()
    root.setLevel(logging.WARNING)
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(logging.Formatter(settings.LOG_FORMAT))
    root.addHandler(handler)

    level = level or settings.LOG_LEVEL
    logging.getLogger("groupchat").setLevel(getattr(logging, level.upper(), logging.INFO))
    logging.getLogger(__name__).info("Logging is set up.")
    return root
