from dataclasses import replace
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Sequence, Tuple

from docfolders.config.logger import get_logger
from docfolders.config.text_styles import EMOJI_DRY_RUN, EMOJI_SUCCESS
from docfolders.consolidate.attachments import AttachmentPlan, plan_attachments, rewrite_references
from docfolders.consolidate.consolidation_model import (
    ConsolidationResult,
    ConsolidationStrategy,
    DEFAULT_STRATEGY,
    SourceDoc,
    StrategyContext,
    UnusableSource,
)
from docfolders.consolidate.strategies import STRATEGY_TRANSFORMS
from docfolders.errors import InvalidArgumentError, NoContentError, NONFATAL_EXCEPTIONS
from docfolders.file_storage.doc_folders import DocumentFolderManager
from docfolders.file_storage.filenames import (
    sanitize_folder_name,
    title_from_folder_name,
    validate_category,
)
from docfolders.lang_tools.sentence_split import word_count
from docfolders.text_formatting.markdown_util import extract_title
from docfolders.util.format_utils import fmt_lines, fmt_path
from docfolders.util.log_calls import log_calls

log = get_logger(__name__)


class ContentConsolidationEngine:
    """
    Merges several document folders into one new document folder, including all their
    attachments. Sources are only ever read. With `dry_run`, nothing at all is written
    but the full merged content is still produced.
    """

    def __init__(
        self,
        folder_manager: DocumentFolderManager,
        dry_run: bool = False,
        category: Optional[str] = None,
    ):
        self.folder_manager = folder_manager
        self.dry_run = dry_run
        self.category = category

    @property
    def settings(self):
        return self.folder_manager.settings

    def _resolve_strategy(
        self, strategy: str | ConsolidationStrategy, metadata: Dict[str, Any]
    ) -> ConsolidationStrategy:
        resolved = ConsolidationStrategy.parse(strategy)
        if resolved is None:
            log.warning(
                "Unknown consolidation strategy %r, using %s instead", strategy, DEFAULT_STRATEGY
            )
            metadata["requested_strategy"] = str(strategy)
            resolved = DEFAULT_STRATEGY
        return resolved

    def _read_source(self, index: int, path: Path | str) -> Tuple[SourceDoc, List[Path]]:
        manager = self.folder_manager
        folder = manager.resolve(path)
        content = manager.get_document_content(folder)
        if not content.strip():
            raise NoContentError(f"Document is empty: {fmt_path(folder)}")
        folder_metadata = manager.get_document_folder_metadata(folder)
        source = SourceDoc(
            index=index,
            folder_path=folder,
            folder_name=folder.name,
            category=folder.parent.name,
            title=extract_title(content) or title_from_folder_name(folder.name),
            content=content.strip(),
            word_count=word_count(content),
            modified=folder_metadata.modified,
            size=folder_metadata.size,
        )
        return source, manager.list_attachments(folder)

    def _read_sources(
        self, document_folders: Sequence[Path | str]
    ) -> Tuple[List[SourceDoc], List[List[Path]], List[UnusableSource]]:
        sources: List[SourceDoc] = []
        attachments: List[List[Path]] = []
        unusable: List[UnusableSource] = []
        seen = set()

        for index, path in enumerate(document_folders, 1):
            try:
                folder = self.folder_manager.resolve(path)
                if folder in seen:
                    raise InvalidArgumentError(
                        f"Folder is listed more than once: {fmt_path(folder)}"
                    )
                seen.add(folder)
                source, files = self._read_source(index, folder)
            except NONFATAL_EXCEPTIONS as e:
                log.warning("Skipping unusable source: %s: %s", path, e)
                unusable.append(UnusableSource(str(path), str(e)))
                continue
            sources.append(source)
            attachments.append(files)

        return sources, attachments, unusable

    def _rewrite_sources(
        self, sources: List[SourceDoc], plan: AttachmentPlan
    ) -> Tuple[List[SourceDoc], int]:
        rewritten_sources = []
        total = 0
        for source in sources:
            content, count = rewrite_references(
                source.content, plan.names_for(source.index), self.settings.images_dir_name
            )
            if count:
                log.info("Rewrote %d attachment references in %s", count, source.folder_name)
                source = replace(source, content=content)
            total += count
            rewritten_sources.append(source)
        return rewritten_sources, total

    def _copy_attachments(self, folder: Path, plan: AttachmentPlan) -> None:
        manager = self.folder_manager
        images_folder = manager.get_images_folder(folder, create_if_missing=True)
        try:
            for attachment in plan.attachments:
                manager.store.copy_file(
                    attachment.source_file, images_folder / attachment.target_name
                )
        except OSError as e:
            log.error("Copying attachments failed, removing new folder: %s: %s", folder, e)
            manager.delete_document_folder(folder)
            raise

    @log_calls(level="info")
    def consolidate_content(
        self,
        document_folders: Sequence[Path | str],
        topic: str,
        strategy: str | ConsolidationStrategy = DEFAULT_STRATEGY,
        category: Optional[str] = None,
    ) -> ConsolidationResult:
        """
        Merge the given document folders into a new document folder titled `topic`.
        Sources that can't be read are skipped and reported in `unusable_sources`.
        """
        if not document_folders:
            raise InvalidArgumentError("No document folders provided for consolidation")
        if not isinstance(topic, str) or not topic.strip():
            raise InvalidArgumentError("Invalid or missing topic for consolidation")
        topic = topic.strip()
        category = validate_category(
            category or self.category or self.settings.consolidated_category
        )

        metadata: Dict[str, Any] = {}
        resolved_strategy = self._resolve_strategy(strategy, metadata)

        sources, attachment_files, unusable = self._read_sources(document_folders)
        if not sources:
            raise NoContentError("No content could be extracted from document folders")

        plan = plan_attachments(
            [(source.index, files) for source, files in zip(sources, attachment_files)]
        )
        sources, references_rewritten = self._rewrite_sources(sources, plan)

        context = StrategyContext(
            topic=topic,
            strategy=resolved_strategy,
            generated_at=datetime.now(timezone.utc),
            near_duplicate_threshold=self.settings.near_duplicate_threshold,
            near_duplicate_min_chars=self.settings.near_duplicate_min_chars,
            dedup_min_sentence_words=self.settings.dedup_min_sentence_words,
        )
        output = STRATEGY_TRANSFORMS[resolved_strategy](sources, context)

        target_folder = self.folder_manager.root / category / sanitize_folder_name(topic)
        metadata.update(output.metadata)
        metadata.update(
            {
                "topic": topic,
                "category": category,
                "target_folder": str(target_folder),
                "generated_at": context.generated_at.isoformat(),
                "sources_used": len(sources),
                "references_rewritten": references_rewritten,
                "renamed_attachments": {
                    str(a.source_file): a.target_name for a in plan.renamed()
                },
            }
        )

        if self.dry_run:
            if self.folder_manager.store.exists(target_folder):
                log.warning("Target folder already exists: %s", fmt_path(target_folder))
                metadata["target_exists"] = True
            log.message(
                "%s Would consolidate %d documents into: %s",
                EMOJI_DRY_RUN,
                len(sources),
                fmt_path(target_folder),
            )
            consolidated_folder = None
        else:
            consolidated_folder = self.folder_manager.create_document_folder(
                topic, category, output.body
            )
            self._copy_attachments(consolidated_folder, plan)
            log.message(
                "%s Consolidated %d documents into: %s",
                EMOJI_SUCCESS,
                len(sources),
                fmt_path(consolidated_folder),
            )

        if unusable:
            log.warning(
                "Some sources could not be used:\n%s",
                fmt_lines(f"{u.path}: {u.reason}" for u in unusable),
            )

        return ConsolidationResult(
            success=True,
            strategy=resolved_strategy,
            consolidated_folder=consolidated_folder,
            merged_content=output.body,
            source_documents=[self.folder_manager.resolve(path) for path in document_folders],
            images_merged=len(plan),
            metadata=metadata,
            unusable_sources=unusable,
            dry_run=self.dry_run,
        )
