"""
Colors, log symbols and the Rich highlighter and theme used for console output.
"""

import re

from rich.highlighter import _combine_regex, RegexHighlighter
from rich.style import Style

## Colors

COLOR_HEADING = "bright_green"

COLOR_HINT = "bright_black"

COLOR_VALUE = "cyan"

COLOR_LITERAL = "bright_blue"

COLOR_OK = "green"

COLOR_ERROR = "bright_red"

COLOR_FILE_OP = "blue"

COLOR_CALL = "bright_yellow"

COLOR_DRY_RUN = "yellow"


## Log symbols

EMOJI_WARN = "△"

EMOJI_ERROR = EMOJI_WARN + EMOJI_WARN

EMOJI_SAVED = "⩣"

EMOJI_MOVED = "⇢"

EMOJI_DELETED = "⌫"

EMOJI_DRY_RUN = "[dry run]"

EMOJI_SUCCESS = "[✓]"

EMOJI_TIMING = "⏱"

EMOJI_CALL_BEGIN = "≫"

EMOJI_CALL_END = "≪"


def _any_of(*symbols: str) -> str:
    return "|".join(re.escape(s) for s in symbols)


## Rich setup


class DocFoldersHighlighter(RegexHighlighter):
    """
    Highlights our log symbols, plus paths, quoted strings and durations in messages.
    """

    base_style = "docfolders."
    highlights = [
        _combine_regex(
            f"(?P<success>{_any_of(EMOJI_SUCCESS)})",
            f"(?P<file_op>{_any_of(EMOJI_SAVED, EMOJI_MOVED)})",
            f"(?P<deleted>{_any_of(EMOJI_DELETED)})",
            f"(?P<warn>{_any_of(EMOJI_WARN)})",
            f"(?P<dry_run>{_any_of(EMOJI_DRY_RUN)})",
            f"(?P<timing>{_any_of(EMOJI_TIMING)})",
            f"(?P<log_call>{_any_of(EMOJI_CALL_BEGIN, EMOJI_CALL_END)})",
        ),
        _combine_regex(
            r"(?P<path>\B(/[-\w._+]+)*\/)(?P<filename>[-\w._+]*)?",
            r"(?<![\\\w])(?P<str>'.*?(?<!\\)'|\".*?(?<!\\)\")",
            r"\b(?P<duration>[0-9]+\.?[0-9]*(ms|s))\b",
            r"(?P<ellipsis>(\.\.\.|…))",
        ),
    ]


RICH_STYLES = {
    "markdown.h1": Style(color=COLOR_HEADING, bold=True),
    "markdown.h2": Style(color=COLOR_HEADING, bold=True),
    "docfolders.path": Style(color=COLOR_VALUE),
    "docfolders.filename": Style(color=COLOR_VALUE, bold=True),
    "docfolders.str": Style(color=COLOR_LITERAL),
    "docfolders.duration": Style(color=COLOR_LITERAL),
    "docfolders.ellipsis": Style(color=COLOR_HINT),
    "docfolders.success": Style(color=COLOR_OK, bold=True),
    "docfolders.file_op": Style(color=COLOR_FILE_OP, bold=True),
    "docfolders.deleted": Style(color=COLOR_ERROR, bold=True),
    "docfolders.warn": Style(color=COLOR_VALUE, bold=True),
    "docfolders.dry_run": Style(color=COLOR_DRY_RUN, bold=True),
    "docfolders.timing": Style(color=COLOR_FILE_OP, bold=True),
    "docfolders.log_call": Style(color=COLOR_CALL, bold=True),
}
