import logging
from typing import Optional

from mapreduce_sim import config


def get_logger(name: Optional[str] = None) -> logging.Logger:
    """
    Return a logger with the project's console handler attached.

    Every module asks for its own logger (usually ``__name__``). Handlers are
    attached to the ``mapreduce_sim`` root only, so child loggers propagate to
    it and nothing is printed twice.

    Args:
        name (Optional[str]): Logger name, defaults to the package root.

    Returns:
        logging.Logger: Configured logger instance.
    """
    root = logging.getLogger("mapreduce_sim")
    if not root.handlers:
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(
            '[%(asctime)s] %(levelname)s %(name)s: %(message)s',
            datefmt='%Y-%m-%d %H:%M:%S'
        ))
        root.addHandler(handler)
        root.setLevel(config.log_level())
    return logging.getLogger(name or "mapreduce_sim")
