"""
Line-based Markdown helpers that are aware of code fences. These work on the raw text
so that anything they don't change is passed through byte for byte. Marko is used
only where a real parse is needed, to get plain text.
"""

from dataclasses import dataclass, field
from enum import Enum
from textwrap import dedent
from typing import Any, List, Optional, Tuple

import marko
import regex
from marko.block import BlockElement, HTMLBlock
from marko.inline import InlineHTML, LineBreak
from slugify import slugify

from docfolders.config.logger import get_logger
from docfolders.util.uniquifier import Uniquifier

log = get_logger(__name__)


class BlockType(Enum):
    heading = "heading"
    code = "code"
    list = "list"
    table = "table"
    quote = "quote"
    rule = "rule"
    prose = "prose"


_fence_re = regex.compile(r"^ {0,3}(`{3,}|~{3,})")
_heading_re = regex.compile(r"^ {0,3}(#{1,6})(?:[ \t]+(.*?))?(?:[ \t]+#+)?[ \t]*$")
_list_re = regex.compile(r"^ {0,3}(?:[-*+]|\d{1,9}[.)])(?:[ \t]|$)")
_table_re = regex.compile(r"^ {0,3}\|")
_quote_re = regex.compile(r"^ {0,3}>")
_rule_re = regex.compile(r"^ {0,3}([-*_])(?:[ \t]*\1){2,}[ \t]*$")
_indented_code_re = regex.compile(r"^(?: {4}|\t)")


@dataclass
class Block:
    """
    A run of lines: a heading line, a whole code fence, or lines up to a blank line.
    """

    type: BlockType
    text: str

    @property
    def heading_level(self) -> int:
        match = _heading_re.match(self.text) if self.type == BlockType.heading else None
        return len(match.group(1)) if match else 0

    @property
    def heading_text(self) -> str:
        match = _heading_re.match(self.text) if self.type == BlockType.heading else None
        return (match.group(2) or "").strip() if match else ""


def _closes_fence(line: str, fence: str) -> bool:
    stripped = line.strip()
    return (
        len(stripped) >= len(fence)
        and stripped.startswith(fence)
        and set(stripped) == {fence[0]}
    )


def _block_type(lines: List[str]) -> BlockType:
    first = lines[0]
    if len(lines) == 1 and _rule_re.match(first):
        return BlockType.rule
    if _list_re.match(first):
        return BlockType.list
    if _table_re.match(first):
        return BlockType.table
    if _quote_re.match(first):
        return BlockType.quote
    if all(_indented_code_re.match(line) for line in lines):
        return BlockType.code
    return BlockType.prose


def split_blocks(text: str) -> List[Block]:
    """
    Split Markdown into blocks. Heading lines are always their own block, and nothing
    inside a code fence is ever interpreted. An unclosed fence runs to the end.
    """
    blocks: List[Block] = []
    current: List[str] = []
    fence: Optional[str] = None

    def flush(block_type: Optional[BlockType] = None):
        if current:
            blocks.append(Block(block_type or _block_type(current), "\n".join(current)))
            current.clear()

    for line in text.splitlines():
        if fence:
            current.append(line)
            if _closes_fence(line, fence):
                flush(BlockType.code)
                fence = None
            continue

        fence_match = _fence_re.match(line)
        if fence_match:
            flush()
            fence = fence_match.group(1)
            current.append(line)
        elif _heading_re.match(line):
            flush()
            blocks.append(Block(BlockType.heading, line.rstrip()))
        elif not line.strip():
            flush()
        else:
            current.append(line)

    flush(BlockType.code if fence else None)
    return blocks


def line_headings(text: str) -> List[Optional[str]]:
    """
    For each line of the text (split on newlines), the heading text if the line is a
    heading outside a code fence, otherwise None.
    """
    result: List[Optional[str]] = []
    fence: Optional[str] = None
    for line in text.split("\n"):
        line = line.rstrip("\r")
        if fence:
            if _closes_fence(line, fence):
                fence = None
            result.append(None)
            continue

        fence_match = _fence_re.match(line)
        heading_match = _heading_re.match(line)
        if fence_match:
            fence = fence_match.group(1)
            result.append(None)
        elif heading_match:
            result.append((heading_match.group(2) or "").strip())
        else:
            result.append(None)
    return result


def join_blocks(blocks: List[Block]) -> str:
    return "\n\n".join(block.text for block in blocks)


def extract_title(text: str) -> Optional[str]:
    """
    Text of the first level-1 heading outside code fences, if any.
    """
    for block in split_blocks(text):
        if block.heading_level == 1 and block.heading_text:
            return markdown_inline_to_plaintext(block.heading_text)
    return None


def drop_leading_title(blocks: List[Block]) -> List[Block]:
    if blocks and blocks[0].heading_level == 1:
        return blocks[1:]
    return blocks


@dataclass
class Section:
    heading: str
    level: int
    blocks: List[Block] = field(default_factory=list)


def split_sections(blocks: List[Block]) -> Tuple[List[Block], List[Section]]:
    """
    Split blocks at the shallowest heading level present. Returns the blocks before the
    first such heading and the sections. Deeper headings stay inside their section.
    """
    levels = [block.heading_level for block in blocks if block.type == BlockType.heading]
    if not levels:
        return list(blocks), []

    top_level = min(levels)
    preamble: List[Block] = []
    sections: List[Section] = []
    for block in blocks:
        if block.heading_level == top_level:
            sections.append(Section(block.heading_text, top_level))
        elif sections:
            sections[-1].blocks.append(block)
        else:
            preamble.append(block)
    return preamble, sections


def shift_headings(blocks: List[Block], min_level: int) -> List[Block]:
    """
    Demote headings so the shallowest one is at `min_level` (at most level 6).
    """
    levels = [block.heading_level for block in blocks if block.type == BlockType.heading]
    if not levels or min(levels) >= min_level:
        return blocks
    shift = min_level - min(levels)
    result = []
    for block in blocks:
        if block.type == BlockType.heading:
            level = min(block.heading_level + shift, 6)
            block = Block(BlockType.heading, f"{'#' * level} {block.heading_text}")
        result.append(block)
    return result


## Plain text


def _extract_text(element: Any) -> str:
    if isinstance(element, str):
        return element
    elif isinstance(element, LineBreak):
        return " "
    elif isinstance(element, (HTMLBlock, InlineHTML)):
        return ""
    elif hasattr(element, "children"):
        if isinstance(element.children, str):
            return element.children
        return "".join(
            _extract_text(child) + (" " if isinstance(child, BlockElement) else "")
            for child in element.children
        )
    else:
        return ""


def markdown_to_plaintext(text: str) -> str:
    """
    Readable plain text from Markdown, without markup, on a single line.
    """
    document = marko.parse(text)
    return regex.sub(r"\s+", " ", _extract_text(document)).strip()


def markdown_inline_to_plaintext(text: str) -> str:
    # Prefixed so a leading `#`, `-`, `1.` etc. is never read as block markup.
    return markdown_to_plaintext(f"x {text}")[1:].strip()


def normalize_heading(text: str) -> str:
    """
    Canonical form of a heading for grouping: plain text, lowercase, single spaces,
    no trailing punctuation.
    """
    plain = markdown_inline_to_plaintext(text).lower()
    plain = regex.sub(r"\s+", " ", plain).strip()
    return regex.sub(r"[\s.,;:!?]+$", "", plain)


def normalize_text(text: str) -> str:
    """
    Canonical form of a block or sentence for duplicate detection.
    """
    return regex.sub(r"\s+", " ", text).strip().lower()


## Anchors and links


def heading_anchor(title: str) -> str:
    return slugify(markdown_inline_to_plaintext(title)) or "section"


class AnchorSet:
    """
    Unique anchors for the headings of one document, numbered the usual way when
    headings repeat (`setup`, `setup-1`, ...).
    """

    def __init__(self):
        self.uniquifier = Uniquifier(template="{name}-{suffix}")

    def anchor_for(self, title: str) -> str:
        return self.uniquifier.uniquify(heading_anchor(title))


def as_bullet_points(values: List[str]) -> str:
    """
    Convert a list of strings to a Markdown bullet-point list.
    """
    return "\n".join(f"- {value}" for value in values)


## Tests


_sample = dedent(
    """
    # Dev Guide

    Intro paragraph
    on two lines.

    ## Setup

    - one
    - two

    ```bash
    # not a heading

    make setup
    ```

    | a | b |
    |---|---|

    > quoted

    ---

    ## Testing ##
    Run the tests.
    """
).strip()


def test_split_blocks():
    blocks = split_blocks(_sample)
    types = [block.type for block in blocks]
    assert types == [
        BlockType.heading,
        BlockType.prose,
        BlockType.heading,
        BlockType.list,
        BlockType.code,
        BlockType.table,
        BlockType.quote,
        BlockType.rule,
        BlockType.heading,
        BlockType.prose,
    ]
    assert blocks[4].text == "```bash\n# not a heading\n\nmake setup\n```"
    assert blocks[8].heading_level == 2
    assert blocks[8].heading_text == "Testing"
    assert join_blocks(split_blocks(join_blocks(blocks))) == join_blocks(blocks)


def test_unclosed_fence():
    blocks = split_blocks("Text\n\n```\n# inside\n\nstill code")
    assert [block.type for block in blocks] == [BlockType.prose, BlockType.code]
    assert extract_title("```\n# Fake\n```\n\n# Real *Title*") == "Real Title"
    assert extract_title("No heading here") is None
    assert line_headings("# A\n```\n# b\n```\ntext\n## C ##") == [
        "A",
        None,
        None,
        None,
        None,
        "C",
    ]


def test_split_sections():
    blocks = drop_leading_title(split_blocks(_sample))
    preamble, sections = split_sections(blocks)
    assert [block.text for block in preamble] == ["Intro paragraph\non two lines."]
    assert [section.heading for section in sections] == ["Setup", "Testing"]
    assert len(sections[0].blocks) == 5

    shifted = shift_headings(split_blocks("# A\n\n## B"), 4)
    assert [block.text for block in shifted] == ["#### A", "##### B"]


def test_plaintext_and_anchors():
    assert (
        markdown_to_plaintext("Use **bold** and [a link](http://x.com).\nNext line.")
        == "Use bold and a link. Next line."
    )
    assert markdown_to_plaintext("Para one.\n\n- item") == "Para one. item"
    assert markdown_inline_to_plaintext("1. Setup") == "1. Setup"
    assert normalize_heading("  **Getting   Started**: ") == "getting started"
    assert normalize_heading("Getting started") == "getting started"
    assert normalize_text("  Same\n text ") == "same text"

    anchors = AnchorSet()
    assert anchors.anchor_for("Getting Started") == "getting-started"
    assert anchors.anchor_for("Getting Started") == "getting-started-1"
    assert heading_anchor("!!!") == "section"
