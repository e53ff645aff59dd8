import logging
from typing import IO, Optional

_FORMAT = "[isopod] %(levelname)s: %(message)s"


def configure_logger(
    level: int = logging.INFO,
    name: str = "isopod",
    stream: Optional[IO[str]] = None,
) -> logging.Logger:
    """
    Attach one stream handler to the `isopod` logger tree and return the
    logger called `name`. Calling it again only updates the level.
    """
    root = logging.getLogger("isopod")
    if not any(isinstance(h, logging.StreamHandler) for h in root.handlers):
        handler = logging.StreamHandler(stream)
        handler.setFormatter(logging.Formatter(_FORMAT))
        root.addHandler(handler)
    root.setLevel(level)
    return logging.getLogger(name)
