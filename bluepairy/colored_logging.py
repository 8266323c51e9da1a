"""Console logging for bluepairy, colored when writing to a terminal."""

import logging
import sys

LOG_FORMAT = "%(asctime)s [%(name)s] %(levelname)s - %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class ColoredFormatter(logging.Formatter):
    """Formatter that colors the level name and the timestamp."""

    RESET = "\033[0m"
    BOLD = "\033[1m"
    TIMESTAMP = "\033[97m"

    LEVEL_COLORS = {
        logging.DEBUG: "\033[36m",
        logging.INFO: "\033[32m",
        logging.WARNING: "\033[33m",
        logging.ERROR: "\033[31m",
        logging.CRITICAL: "\033[1;31m",
    }

    def formatTime(self, record: logging.LogRecord, datefmt: str | None = None) -> str:
        return f"{self.TIMESTAMP}{super().formatTime(record, datefmt)}{self.RESET}"

    def format(self, record: logging.LogRecord) -> str:
        # The caller's record keeps its plain level name
        colored = logging.makeLogRecord(record.__dict__)
        color = self.LEVEL_COLORS.get(record.levelno, self.RESET)
        colored.levelname = f"{color}{self.BOLD}{record.levelname}{self.RESET}"
        return super().format(colored)


def setup_colored_logging(level: int = logging.INFO, stream=None) -> None:
    """Send log records to stderr, colored only if stderr is a terminal.

    Args:
        level: The logging level to use
        stream: Output stream, defaults to sys.stderr
    """
    stream = stream if stream is not None else sys.stderr
    if hasattr(stream, "isatty") and stream.isatty():
        formatter: logging.Formatter = ColoredFormatter(
            fmt=LOG_FORMAT, datefmt=DATE_FORMAT
        )
    else:
        formatter = logging.Formatter(fmt=LOG_FORMAT, datefmt=DATE_FORMAT)

    root_logger = logging.getLogger()
    root_logger.setLevel(level)

    for handler in root_logger.handlers[:]:
        root_logger.removeHandler(handler)

    console_handler = logging.StreamHandler(stream)
    console_handler.setFormatter(formatter)
    root_logger.addHandler(console_handler)
