import logging

LOG_FORMAT = "%(asctime)s | %(levelname)-8s | %(name)-18s | %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def setup_logging(level="INFO") -> logging.Logger:
    """Attach a single console handler to the ``tailtrim`` logger tree.

    Safe to call more than once; the level is updated and no duplicate
    handler is added.
    """

    logger = logging.getLogger("tailtrim")
    if isinstance(level, str):
        level = logging.getLevelName(level.upper())
        if not isinstance(level, int):
            level = logging.INFO
    logger.setLevel(level)

    if not any(getattr(h, "_tailtrim", False) for h in logger.handlers):
        handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        handler._tailtrim = True  # type: ignore[attr-defined]
        logger.addHandler(handler)

    return logger
