"""
Logging: important messages go to the console through Rich, everything at the file
level goes to a log file. The log directory is never inside a document root.
"""

import logging
import os
import threading
from functools import cache
from logging import Formatter
from pathlib import Path
from typing import Optional

import rich
from rich import reconfigure
from rich.logging import RichHandler
from rich.theme import Theme

from docfolders.config.settings import global_settings
from docfolders.config.text_styles import (
    DocFoldersHighlighter,
    EMOJI_ERROR,
    EMOJI_WARN,
    RICH_STYLES,
)

LOG_FILE_NAME = "docfolders.log"

_log_lock = threading.RLock()


def log_dir() -> Path:
    return global_settings().log_dir


def log_file_path() -> Path:
    return log_dir() / LOG_FILE_NAME


@cache
def get_highlighter():
    return DocFoldersHighlighter()


reconfigure(theme=Theme(RICH_STYLES), highlighter=get_highlighter())


_file_handler: Optional[logging.FileHandler] = None
_console_handler: Optional[RichHandler] = None


def logging_setup():
    """
    Install (or reinstall, after the log directory or levels change) our console and
    file handlers on the root logger.
    """
    global _file_handler, _console_handler

    settings = global_settings()
    with _log_lock:
        os.makedirs(log_dir(), exist_ok=True)

        root_logger = logging.getLogger()
        for handler in (_file_handler, _console_handler):
            if handler:
                root_logger.removeHandler(handler)
                handler.close()

        _file_handler = logging.FileHandler(log_file_path(), encoding="utf-8")
        _file_handler.setLevel(settings.file_log_level.value)
        _file_handler.setFormatter(Formatter("%(asctime)s %(levelname).1s %(name)s - %(message)s"))

        _console_handler = RichHandler(
            console=rich.get_console(),
            level=settings.console_log_level.value,
            show_time=False,
            show_path=False,
            show_level=False,
            highlighter=get_highlighter(),
            markup=False,
        )
        _console_handler.setFormatter(Formatter("%(message)s"))

        root_logger.setLevel(min(settings.file_log_level.value, settings.console_log_level.value))
        root_logger.addHandler(_console_handler)
        root_logger.addHandler(_file_handler)


def _with_symbol(symbol: str, args: tuple) -> tuple:
    if not args:
        return args
    return (f"{symbol} {args[0]}",) + args[1:]


class CustomLogger:
    """
    Wraps a standard logger. `message` is for output the user should see even when
    the console only shows warnings. Warnings and errors get a symbol prefix.
    """

    def __init__(self, name: str):
        self.logger = logging.getLogger(name)

    def debug(self, *args, **kwargs):
        self.logger.debug(*args, **kwargs)

    def info(self, *args, **kwargs):
        self.logger.info(*args, **kwargs)

    def message(self, *args, **kwargs):
        self.logger.warning(*args, **kwargs)

    def warning(self, *args, **kwargs):
        self.logger.warning(*_with_symbol(EMOJI_WARN, args), **kwargs)

    def error(self, *args, **kwargs):
        self.logger.error(*_with_symbol(EMOJI_ERROR, args), **kwargs)

    def __getattr__(self, attr):
        return getattr(self.logger, attr)


def get_logger(name: str):
    return CustomLogger(name)


## Tests


def test_logging_setup(tmp_path):
    from docfolders.config.settings import update_global_settings

    old_log_dir = global_settings().log_dir
    try:
        with update_global_settings() as s:
            s.log_dir = tmp_path / "logs"
        logging_setup()

        log = get_logger("docfolders.test")
        log.info("Hello from %s", "test")

        assert _file_handler
        _file_handler.flush()
        assert "Hello from test" in log_file_path().read_text()
    finally:
        root_logger = logging.getLogger()
        for handler in (_file_handler, _console_handler):
            if handler:
                root_logger.removeHandler(handler)
                handler.close()
        with update_global_settings() as s:
            s.log_dir = old_log_dir
