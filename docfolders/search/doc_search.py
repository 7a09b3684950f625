"""
Folder-aware text search. Every document folder under the root (or a category) is
searched through its primary content file, and matches are ranked by a simple
relevance score.
"""

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import regex

from docfolders.config.logger import get_logger
from docfolders.errors import InvalidArgumentError, is_fatal
from docfolders.file_storage.doc_folders import DocumentFolderManager
from docfolders.file_storage.filenames import title_from_folder_name, validate_category
from docfolders.text_formatting.markdown_util import extract_title, line_headings
from docfolders.util.format_utils import fmt_path
from docfolders.util.log_calls import log_calls

log = get_logger(__name__)

EXCERPT_CONTEXT_CHARS = 50

HIGHLIGHT_MARKER = "**"

DEFAULT_SECTION = "Document"

MATCH_SCORE = 10
HEADING_MATCH_BONUS = 50
EARLY_MATCH_BONUS = 20
EARLY_LINES = 5
WHOLE_WORD_BONUS = 15
LONG_DOCUMENT_CHARS = 10000
LONG_DOCUMENT_FACTOR = 0.8


@dataclass(frozen=True)
class SearchMatch:
    line_number: int
    section: str
    excerpt: str


@dataclass
class SearchResult:
    path: Path
    name: str
    category: str
    title: str
    main_file: Path
    relevance: int
    total_matches: int
    matches: List[SearchMatch]
    preview: str
    highlighted_preview: str
    modified: datetime
    size: int
    attachment_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "category": self.category,
            "title": self.title,
            "main_file": str(self.main_file),
            "relevance": self.relevance,
            "total_matches": self.total_matches,
            "matches": [
                {"line_number": m.line_number, "section": m.section, "excerpt": m.excerpt}
                for m in self.matches
            ],
            "preview": self.preview,
            "highlighted_preview": self.highlighted_preview,
            "modified": self.modified.isoformat(),
            "size": self.size,
            "attachment_count": self.attachment_count,
        }


@dataclass
class SearchResponse:
    query: str
    category: Optional[str]
    total_results: int
    results: List[SearchResult]
    folders_searched: int
    search_path: Path
    use_regex: bool
    case_sensitive: bool
    warning: Optional[str] = None
    processing_errors: List[Dict[str, str]] = field(default_factory=list)

    def as_dict(self) -> Dict[str, Any]:
        return {
            "query": self.query,
            "category": self.category,
            "total_results": self.total_results,
            "results": [result.as_dict() for result in self.results],
            "folders_searched": self.folders_searched,
            "search_path": str(self.search_path),
            "use_regex": self.use_regex,
            "case_sensitive": self.case_sensitive,
            "warning": self.warning,
            "processing_errors": self.processing_errors,
        }


@dataclass(frozen=True)
class _Match:
    index: int
    """Offset of the match in the whole content."""

    length: int
    line_number: int
    excerpt: str


def compile_query(
    query: str, use_regex: bool = False, case_sensitive: bool = False
) -> Tuple[regex.Pattern, Optional[str]]:
    """
    Compile a query. An invalid regular expression is searched for literally instead,
    with a warning.
    """
    flags = 0 if case_sensitive else regex.IGNORECASE
    warning = None
    if use_regex:
        try:
            return regex.compile(query, flags), None
        except regex.error as e:
            warning = f"Invalid regular expression, searching literally instead: {e}"
            log.warning("%s: %r", warning, query)
    return regex.compile(regex.escape(query), flags), warning


def find_matches(content: str, pattern: regex.Pattern) -> List[_Match]:
    """
    All non-empty matches, line by line, each with a short excerpt of its line.
    """
    matches = []
    offset = 0
    for line_number, line in enumerate(content.split("\n"), 1):
        for match in pattern.finditer(line):
            if not match.group(0):
                continue
            start = max(0, match.start() - EXCERPT_CONTEXT_CHARS)
            end = min(len(line), match.end() + EXCERPT_CONTEXT_CHARS)
            matches.append(
                _Match(
                    index=offset + match.start(),
                    length=len(match.group(0)),
                    line_number=line_number,
                    excerpt=line[start:end].strip(),
                )
            )
        offset += len(line) + 1
    return matches


def relevance_score(content: str, query: str, matches: List[_Match]) -> int:
    """
    Points for each match, with bonuses for matches in headings or near the top, and
    for each query word that appears as a whole word. Long documents are discounted.
    """
    headings = line_headings(content)
    score: float = MATCH_SCORE * len(matches)
    for match in matches:
        line_index = match.line_number - 1
        if line_index < len(headings) and headings[line_index] is not None:
            score += HEADING_MATCH_BONUS
        if line_index < EARLY_LINES:
            score += EARLY_MATCH_BONUS

    content_words = set(content.lower().split())
    for query_word in query.lower().split():
        if query_word in content_words:
            score += WHOLE_WORD_BONUS

    if len(content) > LONG_DOCUMENT_CHARS:
        score *= LONG_DOCUMENT_FACTOR

    return round(score)


def section_for_line(headings: List[Optional[str]], line_number: int) -> str:
    """
    The heading the line is under (or is), or a default if there is none.
    """
    for heading in reversed(headings[:line_number]):
        if heading:
            return heading
    return DEFAULT_SECTION


def make_preview(content: str, match: _Match, context_chars: int) -> str:
    start = max(0, match.index - context_chars)
    end = min(len(content), match.index + match.length + context_chars)
    preview = content[start:end]
    if start > 0:
        preview = "..." + preview
    if end < len(content):
        preview = preview + "..."
    return preview


def highlight_matches(text: str, pattern: regex.Pattern) -> str:
    return pattern.sub(
        lambda m: f"{HIGHLIGHT_MARKER}{m.group(0)}{HIGHLIGHT_MARKER}" if m.group(0) else "",
        text,
    )


def rank_results(results: List[SearchResult]) -> List[SearchResult]:
    """
    Highest relevance first, then most matches, then most recently modified.
    """
    return sorted(
        results,
        key=lambda r: (-r.relevance, -r.total_matches, -r.modified.timestamp()),
    )


class DocumentSearchEngine:
    """
    Searches document folders using only the folder manager's view of them.
    """

    def __init__(self, folder_manager: DocumentFolderManager, preview_chars: Optional[int] = None):
        self.folder_manager = folder_manager
        self.preview_chars = (
            preview_chars
            if preview_chars is not None
            else folder_manager.settings.search_preview_chars
        )

    def search_folder(
        self, folder: Path, query: str, pattern: regex.Pattern
    ) -> Optional[SearchResult]:
        """
        Search one document folder. None if it has no matches.
        """
        manager = self.folder_manager
        content = manager.get_document_content(folder)
        matches = find_matches(content, pattern)
        if not matches:
            return None

        metadata = manager.get_document_folder_metadata(folder)
        headings = line_headings(content)
        preview = make_preview(content, matches[0], self.preview_chars)

        return SearchResult(
            path=folder,
            name=metadata.name,
            category=metadata.category,
            title=extract_title(content) or title_from_folder_name(metadata.name),
            main_file=metadata.main_file,
            relevance=relevance_score(content, query, matches),
            total_matches=len(matches),
            matches=[
                SearchMatch(m.line_number, section_for_line(headings, m.line_number), m.excerpt)
                for m in matches
            ],
            preview=preview,
            highlighted_preview=highlight_matches(preview, pattern),
            modified=metadata.modified,
            size=metadata.size,
            attachment_count=metadata.attachment_count,
        )

    @log_calls(level="info")
    def search_documents(
        self,
        query: str,
        category: Optional[str] = None,
        limit: Optional[int] = None,
        use_regex: bool = False,
        case_sensitive: bool = False,
    ) -> SearchResponse:
        """
        Search all document folders, or those in one category. Folders that can't be read
        are reported in `processing_errors` rather than failing the search.
        """
        if not isinstance(query, str) or not query.strip():
            raise InvalidArgumentError("Search query is required and must be a non-empty string")
        if limit is None:
            limit = self.folder_manager.settings.search_default_limit
        if limit < 1:
            raise InvalidArgumentError(f"Search limit must be positive: {limit}")

        search_path = self.folder_manager.root
        if category:
            search_path = search_path / validate_category(category)

        def response(**kwargs) -> SearchResponse:
            fields: Dict[str, Any] = dict(
                query=query,
                category=category,
                total_results=0,
                results=[],
                folders_searched=0,
                search_path=search_path,
                use_regex=use_regex,
                case_sensitive=case_sensitive,
            )
            fields.update(kwargs)
            return SearchResponse(**fields)

        if category and not self.folder_manager.store.is_dir(search_path):
            log.warning("Search category does not exist: %s", category)
            return response(warning=f"Category '{category}' does not exist")

        pattern, warning = compile_query(query, use_regex, case_sensitive)
        folders = self.folder_manager.find_document_folders(search_path)
        log.info("Searching %d document folders in %s", len(folders), fmt_path(search_path))

        results: List[SearchResult] = []
        processing_errors: List[Dict[str, str]] = []
        for folder in folders:
            try:
                result = self.search_folder(folder, query, pattern)
            except Exception as e:
                if is_fatal(e):
                    raise
                log.warning("Error searching in folder %s: %s", fmt_path(folder), e)
                processing_errors.append({"folder": str(folder), "error": str(e)})
                continue
            if result:
                results.append(result)

        ranked = rank_results(results)
        log.info("Search for %r found %d documents", query, len(ranked))

        return response(
            total_results=len(ranked),
            results=ranked[:limit],
            folders_searched=len(folders),
            warning=warning,
            processing_errors=processing_errors,
        )

    def search_in_category(self, query: str, category: str, **kwargs) -> SearchResponse:
        return self.search_documents(query, category=category, **kwargs)


## Tests


def test_find_matches_and_score():
    content = "# Setup Guide\n\nRun setup first.\n\n```\n# setup comment\n```\n"
    pattern, warning = compile_query("setup")
    assert warning is None

    matches = find_matches(content, pattern)
    assert [m.line_number for m in matches] == [1, 3, 6]
    assert matches[1].index == content.index("setup first")
    assert matches[1].excerpt == "Run setup first."

    # 3 matches, 1 heading line, all in the first 5 lines but one, "setup" as a word.
    assert relevance_score(content, "setup", matches) == 30 + 50 + 40 + 15

    headings = line_headings(content)
    assert section_for_line(headings, 3) == "Setup Guide"
    assert section_for_line(headings, 6) == "Setup Guide"
    assert section_for_line([None, None], 2) == DEFAULT_SECTION


def test_compile_query_fallback_and_highlight():
    pattern, warning = compile_query("a[b", use_regex=True)
    assert warning and "literally" in warning
    assert pattern.search("xa[by")

    pattern, _ = compile_query("Make", case_sensitive=True)
    assert not pattern.search("make")
    assert highlight_matches("run Make now", pattern) == "run **Make** now"


def test_make_preview():
    content = "a" * 300 + "needle" + "b" * 300
    match = find_matches(content, compile_query("needle")[0])[0]
    preview = make_preview(content, match, 100)
    assert preview == "..." + "a" * 100 + "needle" + "b" * 100 + "..."
    short = "short needle"
    assert make_preview(short, find_matches(short, compile_query("needle")[0])[0], 100) == short
