"""One ``flyer`` logger tree for the whole package.

Handlers live on the ``flyer`` logger only; module loggers are its children
(``flyer.<area>``) and propagate to it. LOG_LEVEL (default INFO) and LOG_FILE
(optional, appended to) are read the first time a logger is requested.
"""

import logging
import os
from typing import Optional, Union

ROOT_LOGGER = "flyer"
FORMAT = "%(asctime)s [%(name)s] %(levelname)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


def parse_level(value: Union[str, int, None]) -> int:
    """``"debug"``, ``"WARN"``, ``10``...; anything unrecognised is INFO."""
    if isinstance(value, int):
        return value
    if isinstance(value, str):
        name = value.strip().upper()
        level = logging.getLevelName("WARNING" if name == "WARN" else name)
        if isinstance(level, int):
            return level
    return logging.INFO


def configure_logging(
    level: Union[str, int, None] = None,
    log_file: Optional[str] = None,
    *,
    force: bool = False,
) -> logging.Logger:
    """Attach handlers to the ``flyer`` logger once; ``force`` replaces them."""
    root = logging.getLogger(ROOT_LOGGER)
    if root.handlers and not force:
        return root
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()

    formatter = logging.Formatter(fmt=FORMAT, datefmt=DATE_FORMAT)
    handlers = [logging.StreamHandler()]
    path = log_file if log_file is not None else os.environ.get("LOG_FILE")
    file_error = None
    if path:
        try:
            handlers.append(logging.FileHandler(path, encoding="utf-8"))
        except OSError as exc:
            file_error = exc
    for handler in handlers:
        handler.setFormatter(formatter)
        root.addHandler(handler)

    root.setLevel(parse_level(level if level is not None else os.environ.get("LOG_LEVEL", "INFO")))
    root.propagate = False
    if file_error is not None:
        root.warning(f"LOG_FILE {path} could not be opened ({file_error}); logging to stderr only")
    return root


def get_logger(name: str) -> logging.Logger:
    configure_logging()
    return logging.getLogger(f"{ROOT_LOGGER}.{name}")
