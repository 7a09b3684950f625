"""
Decorators for logging calls to public operations and tallying time spent in hot
helpers.
"""

import functools
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Callable, Dict, Literal, Optional

from strif import abbreviate_str

from docfolders.config.logger import get_logger
from docfolders.config.text_styles import EMOJI_CALL_BEGIN, EMOJI_CALL_END, EMOJI_TIMING
from docfolders.util.format_utils import single_line

log = get_logger(__name__)

LogLevelStr = Literal["debug", "info", "warning", "message", "error"]

ARG_MAX_LEN = 100


def fmt_arg(value: Any, max_len: Optional[int] = ARG_MAX_LEN) -> str:
    """
    Short single-line form of an argument or return value. Long strings get their
    full length noted.
    """
    if isinstance(value, Path):
        text = str(value)
    elif isinstance(value, str):
        text = repr(single_line(value))
    else:
        text = single_line(repr(value))

    if not max_len or len(text) <= max_len:
        return text
    short = abbreviate_str(text, max_len, indicator="…")
    if isinstance(value, str):
        short += f" ({len(value)} chars)"
    return short


def fmt_duration(seconds: float) -> str:
    if seconds < 0.1:
        return f"{seconds * 1000:.2f}ms"
    elif seconds < 1.0:
        return f"{seconds * 1000:.0f}ms"
    elif seconds < 100.0:
        return f"{seconds:.2f}s"
    else:
        return f"{seconds:.0f}s"


def qualified_name(func: Callable) -> str:
    module = (func.__module__ or "").rsplit(".", 1)[-1]
    return f"{module}.{func.__qualname__}" if module else func.__qualname__


def log_calls(
    level: LogLevelStr = "info",
    show_args: bool = True,
    show_return: bool = False,
    max_len: Optional[int] = ARG_MAX_LEN,
):
    """
    Log each call (optionally with its arguments) and its completion with the time taken.
    A call that raises is logged at the same level with the error before it propagates.
    """
    log_func = getattr(log, level)

    def decorator(func):
        name = qualified_name(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            if show_args:
                arg_strs = [fmt_arg(a, max_len) for a in args]
                arg_strs += [f"{k}={fmt_arg(v, max_len)}" for k, v in kwargs.items()]
                log_func("%s Call: %s(%s)", EMOJI_CALL_BEGIN, name, ", ".join(arg_strs))
            else:
                log_func("%s Call: %s", EMOJI_CALL_BEGIN, name)

            start = time.time()
            try:
                result = func(*args, **kwargs)
            except Exception as e:
                log_func(
                    "%s Call failed: %s() after %s: %s",
                    EMOJI_CALL_END,
                    name,
                    fmt_duration(time.time() - start),
                    e,
                )
                raise
            elapsed = fmt_duration(time.time() - start)

            if show_return:
                log_func(
                    "%s Call done: %s() in %s: %s",
                    EMOJI_CALL_END,
                    name,
                    elapsed,
                    fmt_arg(result, max_len),
                )
            else:
                log_func("%s Call done: %s() in %s", EMOJI_CALL_END, name, elapsed)
            return result

        return wrapper

    return decorator


@dataclass
class Tally:
    calls: int = 0
    total_time: float = 0.0
    logged_calls: int = 0
    logged_time: float = 0.0

    def record(self, elapsed: float, min_total_runtime: float, growth: float) -> bool:
        """
        Count a call. True if it's time to log again, which is when the total runtime
        is significant and calls or runtime have grown by `growth` since the last log.
        """
        self.calls += 1
        self.total_time += elapsed
        due = self.total_time >= min_total_runtime and (
            self.calls >= growth * self.logged_calls
            or self.total_time >= growth * self.logged_time
        )
        if due:
            self.logged_calls = self.calls
            self.logged_time = self.total_time
        return due


tallies: Dict[str, Tally] = {}


def tally_calls(
    level: LogLevelStr = "info",
    min_total_runtime: float = 0.0,
    growth: float = 2.0,
):
    """
    Tally calls and runtime of a frequently called function, logging the totals only
    now and then so the log isn't flooded.
    """
    log_func = getattr(log, level)

    def decorator(func):
        name = qualified_name(func)

        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            start = time.time()
            result = func(*args, **kwargs)
            tally = tallies.setdefault(name, Tally())
            if tally.record(time.time() - start, min_total_runtime, growth):
                log_func(
                    "%s %s() called %d times, %s total, %s avg",
                    EMOJI_TIMING,
                    name,
                    tally.calls,
                    fmt_duration(tally.total_time),
                    fmt_duration(tally.total_time / tally.calls),
                )
            return result

        return wrapper

    return decorator


## Tests


def test_fmt_duration():
    assert fmt_duration(0.0123) == "12.30ms"
    assert fmt_duration(0.5) == "500ms"
    assert fmt_duration(12.345) == "12.35s"
    assert fmt_duration(500) == "500s"


def test_fmt_arg():
    assert fmt_arg(Path("/kb/Dev/Guide")) == "/kb/Dev/Guide"
    assert fmt_arg("two\nlines") == "'two lines'"
    assert fmt_arg(["a", 1]) == "['a', 1]"
    long = fmt_arg("x" * 300, max_len=20)
    assert long.startswith("'xxx") and long.endswith("… (300 chars)")


def test_log_calls_and_tally():
    import pytest

    @log_calls(level="debug", show_return=True)
    def add(a, b):
        return a + b

    @log_calls(level="debug", show_args=False)
    def fail():
        raise ValueError("nope")

    @tally_calls(level="debug")
    def double(x):
        return x * 2

    assert add(1, 2) == 3
    with pytest.raises(ValueError):
        fail()
    assert double(4) == 8
    assert double(5) == 10
    assert tallies[qualified_name(double)].calls == 2
