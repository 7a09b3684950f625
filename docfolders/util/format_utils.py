"""
Small formatting helpers for log messages and generated Markdown.
"""

import shlex
from datetime import datetime
from pathlib import Path
from typing import Any, Iterable, Optional

import regex
from humanize import naturalsize
from strif import abbreviate_str

_trailing_punct = regex.compile(r"[.,;:!?]+$")


def single_line(text: str) -> str:
    return regex.sub(r"\s+", " ", text).strip()


def fmt_lines(values: Iterable[Any], prefix: str = "    ") -> str:
    """
    One value per line, each indented with `prefix`.
    """
    return "\n".join(f"{prefix}{value}" for value in values)


def abbreviate_on_words(text: str, max_len: int, indicator: str = "…") -> str:
    """
    Shorten text to at most `max_len` characters at a word boundary, dropping trailing
    punctuation before the indicator. A first word that is already too long is cut.
    """
    if len(text) <= max_len:
        return text

    words = text.split()
    if words and len(words[0]) > max_len:
        return abbreviate_str(words[0], max_len, indicator)

    kept = ""
    for word in words:
        candidate = f"{kept} {word}" if kept else word
        if len(_trailing_punct.sub("", candidate)) + len(indicator) > max_len:
            break
        kept = candidate
    return _trailing_punct.sub("", kept) + indicator


def fmt_path(path: str | Path, resolve: bool = True) -> str:
    """
    A path for display, shell-quoted if needed. When resolving, paths under the current
    directory are shown relative to it.
    """
    path = Path(path)
    if resolve:
        path = path.resolve()
        cwd = Path.cwd().resolve()
        if path.is_relative_to(cwd):
            path = path.relative_to(cwd)
    return shlex.quote(str(path))


def fmt_size(num_bytes: int) -> str:
    return naturalsize(num_bytes)


def fmt_date(value: Optional[datetime]) -> str:
    return value.date().isoformat() if value else "unknown"


## Tests


def test_abbreviate_on_words():
    assert abbreviate_on_words("Short text.", 40) == "Short text."
    assert (
        abbreviate_on_words("This is a much longer sentence, with clauses.", 20) == "This is a much…"
    )
    assert abbreviate_on_words("Supercalifragilistic word", 10) == "Supercali…"


def test_fmt_helpers():
    assert single_line("  one\n two\tthree ") == "one two three"
    assert fmt_lines(["a", "b"]) == "    a\n    b"
    assert fmt_path("/tmp/some dir/file.md", resolve=False) == "'/tmp/some dir/file.md'"
    assert fmt_size(2048) == "2.0 kB"
    assert fmt_date(None) == "unknown"
    assert fmt_date(datetime(2024, 3, 9, 12, 0)) == "2024-03-09"
