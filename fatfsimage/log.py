"""
Console logging for image builds.

Provides the ImageLogger class, a tagged console logger with ESP-IDF style
verbosity levels. Every line is prefixed with the tool tag; errors and
warnings are written to stderr.
"""

import sys

LOG_NONE = 0
LOG_ERROR = 1
LOG_WARN = 2
LOG_INFO = 3
LOG_DEBUG = 4
LOG_VERBOSE = 5

DEFAULT_LEVEL = LOG_INFO
TAG = "FatFSImage"


def clamp_level(level: int) -> int:
    """Clamp a requested level into the NONE..VERBOSE range."""
    if level < LOG_NONE:
        return LOG_NONE
    if level > LOG_VERBOSE:
        return LOG_VERBOSE
    return level


class ImageLogger:
    """
    Leveled logger for all image build operations.

    A message is emitted when its level is at or below the configured level.
    """

    def __init__(self, level: int = DEFAULT_LEVEL, tag: str = TAG):
        """
        Initialize the logger.

        Args:
            level: Verbosity, 0 (silent) to 5 (verbose); clamped into range
            tag: Prefix printed in front of every message
        """
        self.level = clamp_level(level)
        self.tag = tag

    def enabled(self, level: int) -> bool:
        return level <= self.level

    def error(self, message: str) -> None:
        if self.enabled(LOG_ERROR):
            sys.stderr.write(f"[{self.tag}] Error: {message}\n")

    def warning(self, message: str) -> None:
        if self.enabled(LOG_WARN):
            sys.stderr.write(f"[{self.tag}] Warning: {message}\n")

    def info(self, message: str) -> None:
        if self.enabled(LOG_INFO):
            print(f"[{self.tag}] {message}")

    def debug(self, message: str) -> None:
        if self.enabled(LOG_DEBUG):
            print(f"[{self.tag}] {message}")

    def verbose(self, message: str) -> None:
        if self.enabled(LOG_VERBOSE):
            print(f"[{self.tag}] {message}")
