from __future__ import annotations

import logging
import os
import sys
import time
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Iterator, Tuple

from rich.logging import RichHandler

# Per-request INFO chatter; capped at WARNING unless the run is quieter already.
CHATTY_LOGGERS: Tuple[str, ...] = ("httpx", "httpcore", "PIL")


@dataclass(frozen=True)
class LogConfig:
    level: str = "INFO"
    no_color: bool = False
    quiet: Tuple[str, ...] = CHATTY_LOGGERS


def setup_logging(cfg: LogConfig) -> logging.Handler:
    level = getattr(logging, cfg.level.upper(), logging.INFO)

    root = logging.getLogger()
    root.setLevel(level)
    for h in list(root.handlers):
        root.removeHandler(h)

    plain = cfg.no_color or os.getenv("NO_COLOR") is not None or not sys.stderr.isatty()
    if plain:
        handler: logging.Handler = logging.StreamHandler()
        handler.setFormatter(logging.Formatter("%(asctime)s %(levelname)s %(name)s: %(message)s"))
    else:
        handler = RichHandler(rich_tracebacks=True, show_time=False, show_level=True, show_path=False)
        handler.setFormatter(logging.Formatter("%(message)s"))
    handler.setLevel(level)
    root.addHandler(handler)

    for name in cfg.quiet:
        logging.getLogger(name).setLevel(max(level, logging.WARNING))
    return handler


def get_logger(name: str) -> logging.Logger:
    return logging.getLogger(name)


@contextmanager
def timed(log: logging.Logger, what: str) -> Iterator[None]:
    """Log ``what`` with its wall time at DEBUG once the block exits."""
    t0 = time.monotonic()
    try:
        yield
    finally:
        log.debug("%s done in %d ms.", what, int((time.monotonic() - t0) * 1000))
