"""
The content transforms behind each consolidation strategy. Each is a pure function of
the sources and a context. Nothing here touches the filesystem.
"""

from collections import Counter
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Tuple

import regex

from docfolders.consolidate.consolidation_model import (
    ConsolidationStrategy,
    SourceDoc,
    StrategyContext,
    StrategyOutput,
)
from docfolders.consolidate.dedup import Deduplicator
from docfolders.text_formatting.markdown_util import (
    AnchorSet,
    as_bullet_points,
    Block,
    BlockType,
    drop_leading_title,
    join_blocks,
    markdown_to_plaintext,
    normalize_heading,
    shift_headings,
    split_blocks,
    split_sections,
)
from docfolders.util.format_utils import abbreviate_on_words, fmt_date, fmt_size

StrategyTransform = Callable[[Sequence[SourceDoc], StrategyContext], StrategyOutput]

OVERVIEW_SUMMARY_MAX_LEN = 200

STOPWORDS = set(
    """
    about above after again against also although among another because been before
    being below between both cannot could does doing done down during each either else
    every from further have having here into just like many more most much must need
    only other over same should since some still such than that their theirs them then
    there these they this those through under until upon very were what when where
    which while will with within without would your yours
    """.split()
)


## Shared parts


def _join_parts(parts: List[str]) -> str:
    return "\n\n".join(part for part in parts if part) + "\n"


def _header(sources: Sequence[SourceDoc], context: StrategyContext) -> str:
    source_list = ", ".join(source.folder_name for source in sources)
    return "\n".join(
        [
            f"# {context.topic}",
            "",
            f"*Created: {fmt_date(context.generated_at)}*  ",
            f"*Strategy: {context.strategy}*  ",
            f"*Sources: {len(sources)} documents*",
            "",
            f"**Source Documents:** {source_list}",
        ]
    )


def _metadata_section(
    sources: Sequence[SourceDoc], context: StrategyContext, extra: Sequence[str] = ()
) -> str:
    lines = [
        "## Document Metadata",
        "",
        f"- **Total Sources:** {len(sources)}",
        f"- **Total Word Count:** {sum(source.word_count for source in sources)}",
        f"- **Consolidation Date:** {fmt_date(context.generated_at)}",
        *extra,
        "",
        "### Source Details",
        "",
    ]
    for i, source in enumerate(sources, 1):
        lines += [
            f"{i}. **{source.folder_name}**",
            f"   - Words: {source.word_count}",
            f"   - Size: {fmt_size(source.size)}",
            f"   - Modified: {fmt_date(source.modified)}",
        ]
    return "\n".join(lines)


def _first_prose_index(blocks: Sequence[Block]) -> Optional[int]:
    for i, block in enumerate(blocks):
        if block.type == BlockType.prose:
            return i
    return None


def _body_blocks(source: SourceDoc) -> List[Block]:
    return drop_leading_title(split_blocks(source.content))


def _claim_heading_anchors(anchors: AnchorSet, blocks: Sequence[Block]) -> None:
    for block in blocks:
        if block.type == BlockType.heading:
            anchors.anchor_for(block.heading_text)


## Grouping by heading


@dataclass
class GroupEntry:
    source: SourceDoc
    blocks: List[Block]


@dataclass
class ContentGroup:
    key: str
    heading: str
    entries: List[GroupEntry] = field(default_factory=list)

    def nonempty_entries(self) -> List[GroupEntry]:
        return [entry for entry in self.entries if entry.blocks]


def group_sections(sources_blocks: Sequence[Tuple[SourceDoc, List[Block]]]) -> List[ContentGroup]:
    """
    Split each source at its shallowest heading level and merge sections whose headings
    match after normalizing, in first-seen order. Content before a source's first heading
    is grouped under the source's title.
    """
    groups: Dict[str, ContentGroup] = {}
    for source, blocks in sources_blocks:
        preamble, sections = split_sections(blocks)
        pieces = [(source.title, preamble)] if preamble else []
        pieces += [(section.heading or source.title, section.blocks) for section in sections]

        for heading, section_blocks in pieces:
            key = normalize_heading(heading)
            if key not in groups:
                groups[key] = ContentGroup(key, heading)
            groups[key].entries.append(GroupEntry(source, list(section_blocks)))

    return list(groups.values())


def _render_groups(groups: Sequence[ContentGroup]) -> List[str]:
    parts = []
    for group in groups:
        entries = group.nonempty_entries()
        if not entries:
            continue
        parts.append(f"### {group.heading}")
        for entry in entries:
            parts.append(join_blocks(shift_headings(entry.blocks, 4)))
            parts.append(f"*Source: {entry.source.folder_name}*")
    return parts


def key_topics(sources: Sequence[SourceDoc], limit: int = 10) -> List[str]:
    """
    Most frequent words of four or more letters, other than common stopwords.
    """
    counts: Counter[str] = Counter()
    for source in sources:
        words = regex.findall(r"\p{L}{4,}", markdown_to_plaintext(source.content).lower())
        counts.update(word for word in words if word not in STOPWORDS)
    return [word for word, _count in counts.most_common(limit)]


## Strategies


def simple_merge(sources: Sequence[SourceDoc], context: StrategyContext) -> StrategyOutput:
    """
    Every source in full, in order, under its own heading, with a table of contents.
    """
    anchors = AnchorSet()
    anchors.anchor_for(context.topic)
    anchors.anchor_for("Table of Contents")
    toc = []
    for i, source in enumerate(sources, 1):
        toc.append(f"{i}. [{source.title}](#{anchors.anchor_for(source.title)})")
        _claim_heading_anchors(anchors, split_blocks(source.content))

    parts = [_header(sources, context), "## Table of Contents", "\n".join(toc), "---"]
    for i, source in enumerate(sources):
        parts += [f"## {source.title}", f"*Source: {source.folder_name}*", source.content]
        if i < len(sources) - 1:
            parts.append("---")
    parts.append(_metadata_section(sources, context))

    return StrategyOutput(_join_parts(parts), {"sections": len(sources)})


def structured_consolidation(
    sources: Sequence[SourceDoc], context: StrategyContext
) -> StrategyOutput:
    """
    An overview of the sources, then their sections grouped under shared headings.
    """
    sources_blocks = [(source, _body_blocks(source)) for source in sources]

    bullets = []
    for source, blocks in sources_blocks:
        index = _first_prose_index(blocks)
        summary = ""
        if index is not None:
            summary = abbreviate_on_words(
                markdown_to_plaintext(blocks[index].text), OVERVIEW_SUMMARY_MAX_LEN
            )
        bullets.append(f"**{source.title}**: {summary}" if summary else f"**{source.title}**")

    groups = group_sections(sources_blocks)

    parts = [
        _header(sources, context),
        "## Overview",
        f"This document consolidates information about {context.topic} "
        f"from {len(sources)} sources, organized by topic.",
        as_bullet_points(bullets),
        "## Main Content",
        *_render_groups(groups),
        _metadata_section(sources, context),
    ]
    return StrategyOutput(_join_parts(parts), {"sections": len(groups)})


def comprehensive_merge(sources: Sequence[SourceDoc], context: StrategyContext) -> StrategyOutput:
    """
    An executive summary from each source's opening paragraph, then the grouped content
    with duplicates removed, then metadata and appendices. Deduplication follows the
    order of the output, so the first occurrence of anything is the one kept.
    """
    dedup = Deduplicator(
        near_duplicate_threshold=context.near_duplicate_threshold,
        near_duplicate_min_chars=context.near_duplicate_min_chars,
        min_sentence_words=context.dedup_min_sentence_words,
    )

    summary_paragraphs = []
    remaining: List[Tuple[SourceDoc, List[Block]]] = []
    for source in sources:
        blocks = _body_blocks(source)
        index = _first_prose_index(blocks)
        if index is not None:
            kept = dedup.filter(blocks[index], source.index)
            if kept:
                summary_paragraphs.append(kept.text)
            blocks = blocks[:index] + blocks[index + 1 :]
        remaining.append((source, blocks))

    groups = group_sections(remaining)
    for group in groups:
        for entry in group.entries:
            entry.blocks = dedup.filter_blocks(entry.blocks, entry.source.index)
    groups = [group for group in groups if group.nonempty_entries()]

    topics = key_topics(sources)
    removed_total = dedup.removed_total

    intro = (
        f"This comprehensive document about {context.topic} synthesizes information "
        f"from {len(sources)} sources."
    )
    if topics:
        intro += f" Key topics covered include: {', '.join(topics[:5])}."
    if removed_total:
        intro += " Duplicate content has been identified and consolidated."

    anchors = AnchorSet()
    anchors.anchor_for(context.topic)
    summary_anchor = anchors.anchor_for("Executive Summary")
    anchors.anchor_for("Table of Contents")
    main_anchor = anchors.anchor_for("Main Content")
    group_links = []
    for group in groups:
        group_links.append(f"   - [{group.heading}](#{anchors.anchor_for(group.heading)})")
        for entry in group.nonempty_entries():
            _claim_heading_anchors(anchors, entry.blocks)
    metadata_anchor = anchors.anchor_for("Document Metadata")
    anchors.anchor_for("Source Details")
    appendices_anchor = anchors.anchor_for("Appendices")

    toc = [
        f"1. [Executive Summary](#{summary_anchor})",
        f"2. [Main Content](#{main_anchor})",
        *group_links,
        f"3. [Document Metadata](#{metadata_anchor})",
        f"4. [Appendices](#{appendices_anchor})",
    ]

    appendices = [
        "## Appendices",
        "### Appendix A: Source Files",
        "\n".join(
            f"{i}. **{source.folder_name}**: `{source.category}/{source.folder_name}`"
            for i, source in enumerate(sources, 1)
        ),
    ]
    if removed_total:
        appendices += [
            "### Appendix B: Removed Duplicates",
            f"Duplicate passages removed: {removed_total}.",
            "\n".join(
                f"- **{source.folder_name}**: {dedup.removed[source.index]}"
                for source in sources
                if dedup.removed[source.index]
            ),
        ]

    parts = [
        _header(sources, context),
        "## Executive Summary",
        intro,
        *summary_paragraphs,
        "## Table of Contents",
        "\n".join(toc),
        "---",
        "## Main Content",
        *_render_groups(groups),
        _metadata_section(
            sources,
            context,
            extra=[
                f"- **Key Topics:** {', '.join(topics)}",
                f"- **Duplicate Content Removed:** {removed_total} instances",
            ],
        ),
        *appendices,
    ]

    return StrategyOutput(
        _join_parts(parts),
        {"sections": len(groups), "duplicates_removed": removed_total, "key_topics": topics},
    )


STRATEGY_TRANSFORMS: Dict[ConsolidationStrategy, StrategyTransform] = {
    ConsolidationStrategy.simple_merge: simple_merge,
    ConsolidationStrategy.structured_consolidation: structured_consolidation,
    ConsolidationStrategy.comprehensive_merge: comprehensive_merge,
}


## Tests


def _source(index: int, name: str, content: str) -> SourceDoc:
    from pathlib import Path

    from docfolders.file_storage.filenames import title_from_folder_name
    from docfolders.lang_tools.sentence_split import word_count
    from docfolders.text_formatting.markdown_util import extract_title

    return SourceDoc(
        index=index,
        folder_path=Path(f"/kb/Dev/{name}"),
        folder_name=name,
        category="Dev",
        title=extract_title(content) or title_from_folder_name(name),
        content=content.strip(),
        word_count=word_count(content),
    )


def _context(strategy: ConsolidationStrategy) -> StrategyContext:
    from datetime import datetime, timezone

    return StrategyContext("Dev Guide", strategy, datetime(2024, 5, 1, tzinfo=timezone.utc))


def test_simple_merge_keeps_content_verbatim():
    api = _source(1, "API-Doc", "Use the `client` API.\n\n![a](images/a.png)")
    guide = _source(2, "Guide", "# Guide\n\n## Setup\n\nRun make.")
    body = simple_merge([api, guide], _context(ConsolidationStrategy.simple_merge)).body

    assert body.startswith("# Dev Guide\n\n*Created: 2024-05-01*")
    assert "1. [API Doc](#api-doc)\n2. [Guide](#guide)" in body
    assert "## API Doc\n\n*Source: API-Doc*\n\nUse the `client` API.\n\n![a](images/a.png)" in body
    assert "## Guide\n\n*Source: Guide*\n\n# Guide\n\n## Setup\n\nRun make." in body
    assert "- **Total Sources:** 2" in body
    assert body.rstrip().endswith("   - Modified: unknown")


def test_group_sections():
    a = _source(1, "A", "# A\n\nIntro A.\n\n## Setup\n\nSetup A.\n\n### Detail\n\nMore.\n\n## Usage\n\nUse A.")
    b = _source(2, "B", "# B\n\n## setup:\n\nSetup B.\n\n## FAQ\n\nAsk.")
    groups = group_sections([(a, _body_blocks(a)), (b, _body_blocks(b))])

    assert [group.heading for group in groups] == ["A", "Setup", "Usage", "FAQ"]
    assert [entry.source.folder_name for entry in groups[1].entries] == ["A", "B"]

    body = structured_consolidation([a, b], _context(ConsolidationStrategy.structured_consolidation)).body
    assert "- **A**: Intro A.\n- **B**" in body
    assert "### Setup\n\nSetup A.\n\n#### Detail\n\nMore.\n\n*Source: A*\n\nSetup B.\n\n*Source: B*" in body


def test_comprehensive_merge_dedups():
    shared = "Every change must pass the full test suite before merging."
    a = _source(1, "A", f"# A\n\nAlpha overview text. {shared}\n\n## Setup\n\nInstall it.")
    b = _source(2, "B", f"# B\n\nBeta overview text.\n\n## Setup\n\n{shared}\n\nInstall it.")
    output = comprehensive_merge([a, b], _context(ConsolidationStrategy.comprehensive_merge))

    assert output.body.count(shared) == 1
    assert output.body.count("Install it.") == 1
    assert output.metadata["duplicates_removed"] == 2
    assert "### Appendix B: Removed Duplicates" in output.body
    assert "   - [Setup](#setup)" in output.body
    assert output.body.index("## Executive Summary") < output.body.index("## Main Content")
