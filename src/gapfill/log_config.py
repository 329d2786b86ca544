"""Process-wide logging setup.

The log level is the only process-wide mutable setting. It is set once at
start-up with ``set_log_level`` (or ``setup_logging``, which also installs
the handlers) and read by every module through its own
``logging.getLogger(__name__)``.
"""

import logging
from pathlib import Path
from typing import Optional, Union

__all__ = ['set_log_level', 'get_log_level', 'setup_logging', 'LOG_FORMAT', 'DATE_FORMAT']

LOG_FORMAT = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'
DATE_FORMAT = '%Y-%m-%d %H:%M:%S'


def _to_level(level: Union[str, int]) -> int:
    if isinstance(level, int):
        return level
    value = logging.getLevelName(str(level).upper())
    if not isinstance(value, int):
        raise ValueError(f"Unknown log level: {level}")
    return value


def set_log_level(level: Union[str, int]) -> None:
    """Set the root logger level and the level of its handlers."""
    value = _to_level(level)
    root = logging.getLogger()
    root.setLevel(value)
    for handler in root.handlers:
        handler.setLevel(value)


def get_log_level() -> str:
    return logging.getLevelName(logging.getLogger().level)


def setup_logging(level: Union[str, int] = "INFO", log_path: Optional[Path] = None) -> None:
    """Install console (and optional file) handlers on the root logger.

    Existing root handlers are replaced, so calling this twice does not
    duplicate output.
    """
    value = _to_level(level)
    formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root = logging.getLogger()
    root.setLevel(value)
    for handler in root.handlers[:]:
        root.removeHandler(handler)
        handler.close()

    if log_path is not None:
        log_path = Path(log_path)
        log_path.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_path)
        fh.setLevel(value)
        fh.setFormatter(formatter)
        root.addHandler(fh)

    ch = logging.StreamHandler()
    ch.setLevel(value)
    ch.setFormatter(formatter)
    root.addHandler(ch)
