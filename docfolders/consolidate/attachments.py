"""
Merging the attachments of several document folders into one attachments directory.
Every file gets a collision-free name, and references in the content are rewritten to
match. References to files that don't exist are never touched.
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Sequence, Tuple
from urllib.parse import quote, unquote

import regex

from docfolders.util.uniquifier import Uniquifier


@dataclass(frozen=True)
class PlannedAttachment:
    source_index: int
    source_file: Path
    target_name: str

    @property
    def original_name(self) -> str:
        return self.source_file.name

    @property
    def renamed(self) -> bool:
        return self.original_name != self.target_name


@dataclass
class AttachmentPlan:
    attachments: List[PlannedAttachment] = field(default_factory=list)

    def __len__(self) -> int:
        return len(self.attachments)

    def names_for(self, source_index: int) -> Dict[str, str]:
        """
        Map of original to merged names of all attachments of one source.
        """
        return {
            a.original_name: a.target_name
            for a in self.attachments
            if a.source_index == source_index
        }

    def renamed(self) -> List[PlannedAttachment]:
        return [a for a in self.attachments if a.renamed]


def plan_attachments(sources: Sequence[Tuple[int, Sequence[Path]]]) -> AttachmentPlan:
    """
    Assign merged names. The first source to claim a name keeps it. A later file with
    the same name is prefixed with its 1-based source index (`2-diagram.png`), then
    numbered if that is taken too.
    """
    uniquifier = Uniquifier()
    plan = AttachmentPlan()
    for source_index, files in sources:
        for source_file in files:
            target_name = uniquifier.uniquify(source_file.name, prefix=str(source_index))
            plan.attachments.append(PlannedAttachment(source_index, source_file, target_name))
    return plan


def _reference_patterns(images_dir_name: str) -> List[regex.Pattern]:
    images_dir = regex.escape(images_dir_name)
    link_start = r"!?\[[^\]]*\]\(\s*"
    link_title = r"(?:\s+(?:\"[^\"]*\"|'[^']*'))?\s*\)"
    return [
        # ![alt](<images/f>), angle brackets allow spaces in the name
        regex.compile(
            r"(?P<before>" + link_start + r"<(?:\./)?" + images_dir + r"/)"
            r"(?P<name>[^>\n]+)"
            r"(?P<after>>" + link_title + r")"
        ),
        # ![alt](images/f), [text](./images/f "title")
        regex.compile(
            r"(?P<before>" + link_start + r"(?:\./)?" + images_dir + r"/)"
            r"(?P<name>[^)\s]+)"
            r"(?P<after>" + link_title + r")"
        ),
        # <img src="images/f">
        regex.compile(
            r"(?P<before><img\b[^>]*?\bsrc\s*=\s*(?P<quote>[\"'])(?:\./)?" + images_dir + r"/)"
            r"(?P<name>[^\"'>]+)"
            r"(?P<after>(?P=quote))",
            regex.IGNORECASE,
        ),
    ]


def rewrite_references(
    content: str, names: Dict[str, str], images_dir_name: str = "images"
) -> Tuple[str, int]:
    """
    Rewrite attachment references whose file exists (is a key of `names`) and whose
    merged name differs. Returns the new content and the number of references changed.
    """
    renames = {old: new for old, new in names.items() if old != new}
    if not renames:
        return content, 0

    count = 0

    def replace(match: regex.Match) -> str:
        nonlocal count
        name = match.group("name")
        new_name = renames.get(unquote(name))
        if new_name is None:
            return match.group(0)
        count += 1
        if name != unquote(name):
            new_name = quote(new_name)
        return f"{match.group('before')}{new_name}{match.group('after')}"

    for pattern in _reference_patterns(images_dir_name):
        content = pattern.sub(replace, content)
    return content, count


## Tests


def test_plan_attachments():
    plan = plan_attachments(
        [
            (1, [Path("/kb/A/images/diagram.png"), Path("/kb/A/images/a.png")]),
            (2, [Path("/kb/B/images/diagram.png"), Path("/kb/B/images/b.png")]),
            (3, [Path("/kb/C/images/Diagram.png")]),
        ]
    )
    assert [a.target_name for a in plan.attachments] == [
        "diagram.png",
        "a.png",
        "2-diagram.png",
        "b.png",
        "3-Diagram.png",
    ]
    assert plan.names_for(2) == {"diagram.png": "2-diagram.png", "b.png": "b.png"}
    assert [a.original_name for a in plan.renamed()] == ["diagram.png", "Diagram.png"]
    assert len(plan) == 5


def test_rewrite_references():
    content = (
        "![d](images/diagram.png) and [link](./images/diagram.png \"Title\")\n"
        "<img src='images/diagram.png' width=100>\n"
        "![kept](images/b.png) ![missing](images/missing.png)\n"
        "![spaced](<images/my diagram.png>) ![enc](images/my%20diagram.png)\n"
        "![other](other/diagram.png)"
    )
    names = {
        "diagram.png": "2-diagram.png",
        "b.png": "b.png",
        "my diagram.png": "2-my diagram.png",
    }
    rewritten, count = rewrite_references(content, names)
    assert rewritten == (
        "![d](images/2-diagram.png) and [link](./images/2-diagram.png \"Title\")\n"
        "<img src='images/2-diagram.png' width=100>\n"
        "![kept](images/b.png) ![missing](images/missing.png)\n"
        "![spaced](<images/2-my diagram.png>) ![enc](images/2-my%20diagram.png)\n"
        "![other](other/diagram.png)"
    )
    assert count == 5

    assert rewrite_references(content, {"b.png": "b.png"}) == (content, 0)
