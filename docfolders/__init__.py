"""
Document folders: a knowledge base kept as categorized folders on disk, each holding one
Markdown document and its attachments, with tools to consolidate and search them.
"""

from docfolders.config.setup import setup
from docfolders.consolidate.consolidation_engine import ContentConsolidationEngine
from docfolders.consolidate.consolidation_model import (
    ConsolidationResult,
    ConsolidationStrategy,
)
from docfolders.file_storage.doc_folders import DocFolderMetadata, DocumentFolderManager
from docfolders.file_storage.filenames import sanitize_folder_name
from docfolders.search.doc_search import DocumentSearchEngine, SearchResponse

__all__ = [
    "ConsolidationResult",
    "ConsolidationStrategy",
    "ContentConsolidationEngine",
    "DocFolderMetadata",
    "DocumentFolderManager",
    "DocumentSearchEngine",
    "SearchResponse",
    "sanitize_folder_name",
    "setup",
]
