import logging
import sys
from typing import Optional


LOG_FORMAT = "%(asctime)s [%(levelname)s] %(name)s: %(message)s"
DATE_FORMAT = "%Y-%m-%d %H:%M:%S"

COLOR_MAP = {
    "DHT": "cyan",
    "JOIN": "green",
    "STORE": "yellow",
    "HANDLER": "blue",
    "RPC": "magenta",
    "MAIN": "white",
}

ANSI_CODES = {
    "red": "\033[31m",
    "green": "\033[32m",
    "yellow": "\033[33m",
    "blue": "\033[34m",
    "magenta": "\033[35m",
    "cyan": "\033[36m",
    "white": "\033[37m",
}
ANSI_RESET = "\033[0m"


def colorize(msg: str, levelno: int = logging.INFO) -> str:
    if levelno >= logging.ERROR:
        return f"{ANSI_CODES['red']}{msg}{ANSI_RESET}"
    for key, color in COLOR_MAP.items():
        if f"[{key}]" in msg:
            return f"{ANSI_CODES[color]}{msg}{ANSI_RESET}"
    return msg


class TagColorFormatter(logging.Formatter):
    """Formatter that colors a record by its first known [TAG]."""

    def format(self, record: logging.LogRecord) -> str:
        return colorize(super().format(record), record.levelno)


def setup_logging(level: str = "INFO", color: bool = True, log_file: Optional[str] = None) -> None:
    """Install console (and optional file) handlers on the root logger."""
    root = logging.getLogger()
    root.setLevel(getattr(logging, level.upper(), logging.INFO))

    for handler in list(root.handlers):
        root.removeHandler(handler)

    console = logging.StreamHandler(sys.stderr)
    use_color = color and sys.stderr.isatty()
    formatter_cls = TagColorFormatter if use_color else logging.Formatter
    console.setFormatter(formatter_cls(LOG_FORMAT, datefmt=DATE_FORMAT))
    root.addHandler(console)

    if log_file:
        file_handler = logging.FileHandler(log_file, encoding="utf-8")
        file_handler.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))
        root.addHandler(file_handler)

    # aiohttp access log duplicates [HANDLER] records
    logging.getLogger("aiohttp.access").setLevel(logging.WARNING)
