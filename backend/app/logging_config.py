"""Root logger configuration.

``setup_logging`` attaches a single console handler to the root logger.
It is a no-op when handlers already exist (uvicorn, pytest), so it can be
called from the application lifespan unconditionally.
"""

import logging

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level: str = "INFO") -> None:
    """Configure the root logger once.

    Args:
        level: Logging level name (e.g. "DEBUG", "INFO"). Case insensitive;
            unknown names fall back to INFO.
    """
    root = logging.getLogger()
    if root.handlers:
        return

    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(handler)
