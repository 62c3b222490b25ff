"""
Logging configuration for egress-guard.

Console output goes to stderr so stdout stays clean for ``plan`` output.
"""

import logging
import os
import sys
from typing import Optional

PACKAGE_LOGGER = "egress_guard"

# Libraries that are noisy at DEBUG; only shown with -vv
QUIET_LIBRARIES = ("urllib3", "requests", "dns")


class LogColors:
    RESET = "\033[0m"
    BOLD = "\033[1m"
    RED = "\033[91m"
    GREEN = "\033[92m"
    YELLOW = "\033[93m"
    BLUE = "\033[94m"
    GRAY = "\033[90m"


class ColoredFormatter(logging.Formatter):
    """Formatter that colours the level name."""

    LEVEL_COLORS = {
        logging.DEBUG: LogColors.GRAY,
        logging.INFO: LogColors.BLUE,
        logging.WARNING: LogColors.YELLOW,
        logging.ERROR: LogColors.RED,
        logging.CRITICAL: LogColors.RED + LogColors.BOLD,
    }

    def format(self, record):
        color = self.LEVEL_COLORS.get(record.levelno)
        if color is None:
            return super().format(record)
        # Other handlers must still see the plain level name
        record = logging.makeLogRecord(record.__dict__)
        record.levelname = f"{color}{record.levelname}{LogColors.RESET}"
        return super().format(record)


def _wants_color(use_colors: bool) -> bool:
    return use_colors and "NO_COLOR" not in os.environ and sys.stderr.isatty()


def setup_logging(verbosity: int = 0, use_colors: bool = True) -> None:
    """
    Configure console logging for one CLI invocation.

    Args:
        verbosity: 0 shows warnings and errors, 1 adds egress_guard debug
            output (-v), 2 also lets HTTP and DNS library debug through (-vv)
        use_colors: colour level names when stderr is a terminal and
            ``NO_COLOR`` is unset
    """
    fmt = "%(levelname)s: %(message)s"
    if verbosity >= 1:
        fmt = "%(levelname)s [%(name)s]: %(message)s"
    formatter_class = ColoredFormatter if _wants_color(use_colors) else logging.Formatter

    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(logging.DEBUG if verbosity >= 1 else logging.WARNING)
    handler.setFormatter(formatter_class(fmt=fmt))

    root_logger = logging.getLogger()
    root_logger.setLevel(logging.DEBUG)
    for existing in root_logger.handlers[:]:
        root_logger.removeHandler(existing)
    root_logger.addHandler(handler)

    logging.getLogger(PACKAGE_LOGGER).setLevel(
        logging.DEBUG if verbosity >= 1 else logging.WARNING
    )
    library_level = logging.DEBUG if verbosity >= 2 else logging.WARNING
    for name in QUIET_LIBRARIES:
        logging.getLogger(name).setLevel(library_level)


def get_logger(name: str) -> logging.Logger:
    """Logger under the egress_guard namespace (usually called with __name__)."""
    if name == "__main__":
        name = f"{PACKAGE_LOGGER}.cli"
    elif not name.startswith(PACKAGE_LOGGER) and "." not in name:
        name = f"{PACKAGE_LOGGER}.{name}"
    return logging.getLogger(name)


def log_success(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log a success message."""
    (logger or get_logger(PACKAGE_LOGGER)).info(f"✓ {message}")


def log_error(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log an error message."""
    (logger or get_logger(PACKAGE_LOGGER)).error(f"✗ {message}")


def log_warning(message: str, logger: Optional[logging.Logger] = None) -> None:
    """Log a warning message."""
    (logger or get_logger(PACKAGE_LOGGER)).warning(f"⚠ {message}")
