from collections import Counter
from typing import List, Optional, Set, Tuple

import regex
from thefuzz import fuzz

from docfolders.config.logger import get_logger
from docfolders.lang_tools.sentence_split import split_sentences_loose, word_count
from docfolders.text_formatting.markdown_util import Block, BlockType, normalize_text
from docfolders.util.log_calls import tally_calls

log = get_logger(__name__)

# List markers, quote markers and indentation at the start of a line.
_line_prefix_re = regex.compile(
    r"^((?:[ \t]*(?:>[ \t]?|(?:[-*+]|\d{1,9}[.)])[ \t]+))*[ \t]*)(.*)$"
)


@tally_calls(level="debug", min_total_runtime=1.0)
def similarity(text1: str, text2: str) -> int:
    return fuzz.ratio(text1, text2)


def _table_cells(row: str) -> List[str]:
    return [cell.strip() for cell in row.strip().strip("|").split("|")]


class Deduplicator:
    """
    Drops content that was already emitted earlier in a document, so the first
    occurrence is the one kept. Blocks must be offered in document order.

    - A block whose normalized text was seen before is dropped entirely.
    - Any sentence seen before, in any prose paragraph, list, quote or table, is
      dropped, keeping the rest of its paragraph or line. A table row goes only when
      every cell in it was seen before.
    - A prose paragraph or sentence of at least `near_duplicate_min_chars` whose
      similarity to an earlier one meets `near_duplicate_threshold` is dropped as a near
      duplicate. Sentences also need `min_sentence_words` words for this.

    Headings, rules and code are never split into sentences. Headings and rules are
    never dropped.
    """

    def __init__(
        self,
        near_duplicate_threshold: int = 92,
        near_duplicate_min_chars: int = 40,
        min_sentence_words: int = 3,
    ):
        self.near_duplicate_threshold = near_duplicate_threshold
        self.near_duplicate_min_chars = near_duplicate_min_chars
        self.min_sentence_words = min_sentence_words

        self.seen_blocks: Set[str] = set()
        self.seen_sentences: Set[str] = set()
        self.long_sentences: List[str] = []
        self.paragraphs: List[str] = []
        self.removed: Counter[int] = Counter()

    @property
    def removed_total(self) -> int:
        return sum(self.removed.values())

    def _drop(self, source_index: int, what: str, text: str) -> None:
        self.removed[source_index] += 1
        log.debug("Dropped duplicate %s from source %d: %r", what, source_index, text[:60])

    def _similar_to_any(self, key: str, earlier: List[str]) -> bool:
        return len(key) >= self.near_duplicate_min_chars and any(
            similarity(key, other) >= self.near_duplicate_threshold for other in earlier
        )

    def _sentence_seen(self, sentence: str) -> bool:
        key = normalize_text(sentence)
        if key in self.seen_sentences:
            return True
        return word_count(sentence) >= self.min_sentence_words and self._similar_to_any(
            key, self.long_sentences
        )

    def _remember_sentence(self, sentence: str) -> None:
        key = normalize_text(sentence)
        self.seen_sentences.add(key)
        if (
            word_count(sentence) >= self.min_sentence_words
            and len(key) >= self.near_duplicate_min_chars
        ):
            self.long_sentences.append(key)

    def _filter_sentences(self, text: str, source_index: int) -> Tuple[List[str], bool]:
        """
        Sentences of the text not seen before, and whether any were dropped. Each kept
        sentence is remembered, so a repeat within the same text is dropped too.
        """
        sentences = split_sentences_loose(text)
        kept = []
        for sentence in sentences:
            if not word_count(sentence):
                kept.append(sentence)
            elif self._sentence_seen(sentence):
                self._drop(source_index, "sentence", sentence)
            else:
                self._remember_sentence(sentence)
                kept.append(sentence)
        return kept, len(kept) != len(sentences)

    def _filter_prose(self, block: Block, source_index: int) -> Optional[Block]:
        kept, dropped = self._filter_sentences(block.text, source_index)
        if not dropped:
            return block
        if not any(word_count(sentence) for sentence in kept):
            return None
        return Block(block.type, " ".join(kept))

    def _filter_lines(self, block: Block, source_index: int) -> Optional[Block]:
        """
        Lists and quotes are filtered line by line, keeping each line's markers.
        """
        lines = []
        changed = False
        for line in block.text.split("\n"):
            prefix, content = _line_prefix_re.match(line).groups()
            kept, dropped = self._filter_sentences(content, source_index)
            if not dropped:
                lines.append(line)
                continue
            changed = True
            if any(word_count(sentence) for sentence in kept):
                lines.append(prefix + " ".join(kept))

        if not changed:
            return block
        if not any(word_count(line) for line in lines):
            return None
        return Block(block.type, "\n".join(lines))

    def _filter_table(self, block: Block, source_index: int) -> Optional[Block]:
        """
        The header and delimiter rows are kept. A body row is dropped when every
        sentence in every cell was seen before, otherwise its sentences are remembered.
        """
        lines = block.text.split("\n")
        kept_lines = lines[:2]
        body = lines[2:]
        for row in body:
            sentences = [
                sentence
                for cell in _table_cells(row)
                for sentence in split_sentences_loose(cell)
                if word_count(sentence)
            ]
            if sentences and all(self._sentence_seen(s) for s in sentences):
                self._drop(source_index, "table row", row)
                continue
            for sentence in sentences:
                self._remember_sentence(sentence)
            kept_lines.append(row)

        if body and len(kept_lines) == 2:
            return None
        if len(kept_lines) == len(lines):
            return block
        return Block(block.type, "\n".join(kept_lines))

    def filter(self, block: Block, source_index: int) -> Optional[Block]:
        """
        The block to emit, possibly with sentences or rows removed, or None to drop it.
        """
        if block.type in (BlockType.heading, BlockType.rule):
            return block
        key = normalize_text(block.text)
        if not key:
            return block

        if key in self.seen_blocks:
            self._drop(source_index, block.type.value, block.text)
            return None

        if block.type == BlockType.prose:
            if self._similar_to_any(key, self.paragraphs):
                self._drop(source_index, "near-duplicate paragraph", block.text)
                return None
            self.paragraphs.append(key)

        self.seen_blocks.add(key)
        if block.type == BlockType.prose:
            return self._filter_prose(block, source_index)
        elif block.type == BlockType.table:
            return self._filter_table(block, source_index)
        elif block.type in (BlockType.list, BlockType.quote):
            return self._filter_lines(block, source_index)
        return block

    def filter_blocks(self, blocks: List[Block], source_index: int) -> List[Block]:
        result = []
        for block in blocks:
            kept = self.filter(block, source_index)
            if kept is not None:
                result.append(kept)
        return result


## Tests


def _prose(text: str) -> Block:
    return Block(BlockType.prose, text)


def test_exact_and_sentence_duplicates():
    dedup = Deduplicator()
    shared = "The build uses make for every step."

    first = dedup.filter(_prose(f"Alpha has its own notes. {shared}"), 1)
    assert first is not None and shared in first.text

    second = dedup.filter(_prose(f"Beta covers deployment details. {shared}"), 2)
    assert second is not None
    assert second.text == "Beta covers deployment details."

    assert dedup.filter(_prose(f"Alpha has its own notes.\n{shared}"), 2) is None
    assert dedup.filter(_prose(shared), 3) is None
    assert dedup.filter(Block(BlockType.heading, "## Setup"), 3) is not None
    assert dedup.filter(Block(BlockType.heading, "## Setup"), 3) is not None

    assert dedup.removed == Counter({2: 2, 3: 1})
    assert dedup.removed_total == 3


def test_short_and_capitalized_sentences():
    dedup = Deduplicator()
    kept = dedup.filter(_prose("Build it first. Run make."), 1)
    assert kept is not None and kept.text == "Build it first. Run make."

    second = dedup.filter(_prose("Then test it. Run make."), 2)
    assert second is not None and second.text == "Then test it."

    dedup.filter(_prose("Alpha ships nightly builds. Deploy everything with the CLI. Ask ops."), 1)
    beta = "Beta is the staging stack. Deploy everything with the CLI. Costs are tracked."
    third = dedup.filter(_prose(beta), 2)
    assert third is not None
    assert third.text == "Beta is the staging stack. Costs are tracked."


def test_list_quote_and_table_sentences():
    dedup = Deduplicator()
    shared = "Every release is signed by two maintainers."

    items = Block(BlockType.list, f"- First item here.\n- {shared}\n  - Nested note.")
    assert dedup.filter(items, 1) == items
    assert dedup.filter(_prose(f"Releases happen weekly. {shared}"), 2) == _prose(
        "Releases happen weekly."
    )

    quote = Block(BlockType.quote, f"> {shared}\n> Quoted extra.")
    kept = dedup.filter(quote, 3)
    assert kept is not None and kept.text == "> Quoted extra."
    assert dedup.filter(Block(BlockType.list, "1. Nested note."), 3) is None

    table = Block(
        BlockType.table, f"| Rule | Note |\n|---|---|\n| Signing | {shared} |\n| New | Fresh. |"
    )
    dedup.filter(_prose("Signing"), 1)
    kept = dedup.filter(table, 4)
    assert kept is not None
    assert kept.text == "| Rule | Note |\n|---|---|\n| New | Fresh. |"


def test_near_duplicates():
    dedup = Deduplicator(near_duplicate_threshold=92, near_duplicate_min_chars=40)
    original = "Install the toolchain with the package manager before building anything."
    variant = "Install the toolchain with the package manager before building anything!"
    short = "Run it."

    assert dedup.filter(_prose(original), 1) is not None
    assert dedup.filter(_prose(variant), 2) is None
    assert dedup.filter(_prose(short), 1) is not None
    assert dedup.filter(_prose("Run it!"), 2) is not None

    long_sentence = "Always pin the compiler version in the project configuration file."
    dedup.filter(_prose(f"First notes here. {long_sentence}"), 1)
    opener = "A totally different opener for team two."
    near = dedup.filter(_prose(f"{opener} {long_sentence[:-1]}!"), 2)
    assert near is not None and near.text == opener

    code = Block(BlockType.code, "```\nmake test\n```")
    assert dedup.filter(code, 1) is not None
    assert dedup.filter(Block(BlockType.code, "```\nmake  test\n```"), 2) is None
    assert dedup.filter(Block(BlockType.code, "```\nRun it.\n```"), 2) is not None
