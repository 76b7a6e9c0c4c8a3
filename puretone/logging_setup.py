from __future__ import annotations
import logging
from typing import Optional

from .paths import get_log_file_path

_FORMAT = "%(asctime)s %(levelname)-7s %(name)s: %(message)s"


def configure_logging(level: int | str = logging.INFO, log_file: Optional[str] = None) -> logging.Logger:
    """Attach console and file handlers to the ``puretone`` logger tree.

    Only entry points call this; library modules just fetch named loggers.
    Calling it again replaces the handlers installed by a previous call.
    """
    root = logging.getLogger('puretone')
    root.setLevel(level)
    for handler in list(root.handlers):
        root.removeHandler(handler)
        handler.close()
    formatter = logging.Formatter(_FORMAT)
    console = logging.StreamHandler()
    console.setFormatter(formatter)
    root.addHandler(console)
    path = log_file or get_log_file_path()
    try:
        file_handler = logging.FileHandler(path, encoding='utf-8')
    except OSError as exc:
        root.warning('Cannot open log file %s: %s', path, exc)
    else:
        file_handler.setFormatter(formatter)
        root.addHandler(file_handler)
    root.propagate = False
    return root
