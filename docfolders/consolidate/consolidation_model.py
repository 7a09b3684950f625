from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from pathlib import Path
from typing import Any, Dict, List, Optional


class ConsolidationStrategy(Enum):
    """
    The ways several document folders can be merged into one.
    """

    simple_merge = "simple_merge"
    structured_consolidation = "structured_consolidation"
    comprehensive_merge = "comprehensive_merge"

    @classmethod
    def parse(cls, value: "str | ConsolidationStrategy") -> Optional["ConsolidationStrategy"]:
        """
        Strategy for a name, or None if there is no such strategy.
        """
        if isinstance(value, ConsolidationStrategy):
            return value
        if not isinstance(value, str):
            return None
        try:
            return cls(value.strip().lower().replace("-", "_"))
        except ValueError:
            return None

    def __str__(self):
        return self.value


DEFAULT_STRATEGY = ConsolidationStrategy.simple_merge


@dataclass(frozen=True)
class SourceDoc:
    """
    One usable source of a consolidation, with attachment references already
    rewritten to their merged names.
    """

    index: int
    """1-based position in the list of folders requested."""

    folder_path: Path
    folder_name: str
    category: str
    title: str
    content: str
    word_count: int
    modified: Optional[datetime] = None
    size: int = 0


@dataclass(frozen=True)
class UnusableSource:
    path: str
    reason: str

    def as_dict(self) -> Dict[str, str]:
        return {"path": self.path, "reason": self.reason}


@dataclass(frozen=True)
class StrategyContext:
    topic: str
    strategy: ConsolidationStrategy
    generated_at: datetime
    near_duplicate_threshold: int = 92
    near_duplicate_min_chars: int = 40
    dedup_min_sentence_words: int = 3


@dataclass
class StrategyOutput:
    body: str
    metadata: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ConsolidationResult:
    success: bool
    strategy: ConsolidationStrategy
    consolidated_folder: Optional[Path]
    """The new document folder. None in a dry run, since nothing was created."""

    merged_content: str
    source_documents: List[Path]
    images_merged: int
    metadata: Dict[str, Any] = field(default_factory=dict)
    unusable_sources: List[UnusableSource] = field(default_factory=list)
    dry_run: bool = False

    def as_dict(self) -> Dict[str, Any]:
        """
        JSON-serializable form of the result.
        """
        return {
            "success": self.success,
            "strategy": self.strategy.value,
            "consolidated_folder": (
                str(self.consolidated_folder) if self.consolidated_folder else None
            ),
            "merged_content": self.merged_content,
            "source_documents": [str(path) for path in self.source_documents],
            "images_merged": self.images_merged,
            "metadata": self.metadata,
            "unusable_sources": [source.as_dict() for source in self.unusable_sources],
            "dry_run": self.dry_run,
        }


## Tests


def test_strategy_parse():
    assert ConsolidationStrategy.parse("simple_merge") == ConsolidationStrategy.simple_merge
    assert (
        ConsolidationStrategy.parse(" Comprehensive-Merge ")
        == ConsolidationStrategy.comprehensive_merge
    )
    assert ConsolidationStrategy.parse("magic") is None
    assert ConsolidationStrategy.parse(None) is None  # type: ignore
    assert str(ConsolidationStrategy.structured_consolidation) == "structured_consolidation"


def test_result_as_dict():
    result = ConsolidationResult(
        success=True,
        strategy=ConsolidationStrategy.simple_merge,
        consolidated_folder=None,
        merged_content="# Topic",
        source_documents=[Path("/kb/Dev/A")],
        images_merged=0,
        unusable_sources=[UnusableSource("/kb/Dev/B", "Not a document folder")],
        dry_run=True,
    )
    as_dict = result.as_dict()
    assert as_dict["consolidated_folder"] is None
    assert as_dict["source_documents"] == ["/kb/Dev/A"]
    assert as_dict["unusable_sources"] == [{"path": "/kb/Dev/B", "reason": "Not a document folder"}]
