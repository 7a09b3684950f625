"""
Document folders: a directory holding one primary content file and an attachments
directory, always handled as one unit.

```
<root>/<Category>/<FolderName>/
    <FolderName>.md
    images/
```

There is no in-memory index. Every call looks at the filesystem again, so edits made
by hand or by a sync tool are always seen.
"""

import errno
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

from docfolders.config.logger import get_logger
from docfolders.config.settings import global_settings, Settings
from docfolders.config.text_styles import EMOJI_DELETED, EMOJI_MOVED, EMOJI_SAVED
from docfolders.errors import (
    ConflictError,
    InvalidArgumentError,
    NotFoundError,
    UnexpectedError,
)
from docfolders.file_storage.filenames import (
    find_main_file,
    is_image_file,
    main_file_rules,
    MainFileRule,
    partial_name_for,
    sanitize_folder_name,
    skippable_file,
    tombstone_name_for,
    validate_category,
)
from docfolders.file_storage.folder_store import FolderStore
from docfolders.util.format_utils import fmt_lines, fmt_path
from docfolders.util.log_calls import log_calls

log = get_logger(__name__)


@dataclass(frozen=True)
class DocFolderMetadata:
    path: Path
    name: str
    category: str
    main_file: Path
    images_folder: Path
    created: datetime
    modified: datetime
    size: int
    """Size of the primary content file in bytes."""
    attachment_count: int
    image_count: int

    def as_dict(self) -> Dict[str, Any]:
        return {
            "path": str(self.path),
            "name": self.name,
            "category": self.category,
            "main_file": str(self.main_file),
            "images_folder": str(self.images_folder),
            "created": self.created.isoformat(),
            "modified": self.modified.isoformat(),
            "size": self.size,
            "attachment_count": self.attachment_count,
            "image_count": self.image_count,
        }


def _timestamp(seconds: float) -> datetime:
    return datetime.fromtimestamp(seconds, tz=timezone.utc)


class DocumentFolderManager:
    """
    Recognizes, enumerates, and manipulates document folders under a root directory.
    The sole authority on what counts as a document.
    """

    def __init__(self, root: Path | str, settings: Optional[Settings] = None):
        self.store = FolderStore(root)
        self.root = self.store.base_dir
        self.settings = settings or global_settings()

    def __str__(self):
        return f"DocumentFolderManager({fmt_path(self.root, resolve=False)})"

    @property
    def main_file_rules(self) -> List[MainFileRule]:
        return main_file_rules(self.settings.main_file_ext, self.settings.legacy_main_file_names)

    def resolve(self, path: Path | str) -> Path:
        return self.store.resolve(path)

    def validate_within_root(self, path: Path | str) -> Path:
        """
        Resolve a path, confirming it is inside the root. Used before any mutation.
        """
        resolved = self.resolve(path)
        if not self.store.is_within_root(resolved) or resolved == self.root:
            raise InvalidArgumentError(f"Path is outside the document root: {fmt_path(resolved)}")
        return resolved

    def sanitize_folder_name(self, title: str) -> str:
        return sanitize_folder_name(title)

    def _convention_file(self, folder: Path) -> Path:
        return folder / f"{folder.name}{self.settings.main_file_ext}"

    ## Recognizing documents

    def is_document_folder(self, path: Path | str) -> bool:
        """
        True if the path is a directory with a primary content file. The attachments
        directory is not required. Never raises.
        """
        try:
            return self.get_main_document_file(path) is not None
        except (OSError, ValueError):
            return False

    def get_main_document_file(self, path: Path | str) -> Optional[Path]:
        """
        Resolve the primary content file by the naming convention, then by legacy names.
        Returns None if there is none. Never renames anything.
        """
        folder = self.resolve(path)
        if not self.store.is_dir(folder):
            return None
        return find_main_file(folder, self.main_file_rules, self.store.is_file)

    def _require_main_file(self, folder: Path) -> Path:
        if not self.store.exists(folder):
            raise NotFoundError(f"Document folder does not exist: {fmt_path(folder)}")
        main_file = self.get_main_document_file(folder)
        if not main_file:
            raise NotFoundError(f"Path is not a valid document folder: {fmt_path(folder)}")
        return main_file

    def get_images_folder(self, path: Path | str, create_if_missing: bool = False) -> Path:
        """
        Path of the attachments directory of a folder, optionally creating it. Creating
        is idempotent and safe if another caller creates it at the same time.
        """
        folder = self.resolve(path)
        images_folder = folder / self.settings.images_dir_name
        if create_if_missing and not self.store.is_dir(images_folder):
            if not self.store.is_dir(folder):
                raise NotFoundError(f"Document folder does not exist: {fmt_path(folder)}")
            self.store.make_dir(images_folder, exist_ok=True, parents=False)
            log.debug("Created attachments folder: %s", fmt_path(images_folder))
        return images_folder

    def list_attachments(self, path: Path | str) -> List[Path]:
        """
        Sorted attachment files of a folder. Subdirectories and hidden files are ignored.
        """
        images_folder = self.get_images_folder(path)
        if not self.store.is_dir(images_folder):
            return []
        return [
            images_folder / name
            for name in self.store.list_dir(images_folder)
            if self.store.is_file(images_folder / name)
        ]

    ## Content

    def get_document_content(self, path: Path | str) -> str:
        folder = self.resolve(path)
        main_file = self.get_main_document_file(folder)
        if not main_file:
            raise NotFoundError(f"No main document file found in folder: {fmt_path(folder)}")
        return self.store.read_text(main_file)

    @log_calls(level="debug", show_args=False)
    def update_document_content(self, path: Path | str, content: str) -> Path:
        """
        Overwrite the primary content file in place. Attachments are not touched.
        """
        if not isinstance(content, str):
            raise InvalidArgumentError("Document content must be a string")
        folder = self.validate_within_root(path)
        main_file = self.get_main_document_file(folder)
        if not main_file:
            raise NotFoundError(f"No main document file found in folder: {fmt_path(folder)}")

        self.store.write_text(main_file, content)
        log.info("Updated document content (%d chars): %s", len(content), fmt_path(main_file))
        return main_file

    ## Creating, moving, deleting

    @log_calls(level="info", show_args=False)
    def create_document_folder(self, title: str, category: str, content: str = "") -> Path:
        """
        Create `<root>/<category>/<sanitized title>/` with its primary content file and an
        empty attachments directory. Fails if the folder already exists.
        """
        if not isinstance(title, str) or not title.strip():
            raise InvalidArgumentError("Invalid or missing title")
        validate_category(category)

        name = sanitize_folder_name(title)
        category_dir = self.root / category
        folder = category_dir / name

        if self.store.exists(folder):
            raise ConflictError(f"Document folder already exists: {fmt_path(folder)}")

        self.store.make_dir(category_dir, exist_ok=True)
        try:
            self.store.make_dir(folder, exist_ok=False, parents=False)
        except FileExistsError:
            raise ConflictError(f"Document folder already exists: {fmt_path(folder)}")

        try:
            self.store.write_text(self._convention_file(folder), content or f"# {title.strip()}\n\n")
            self.store.make_dir(folder / self.settings.images_dir_name, parents=False)
        except OSError as e:
            log.error("Could not finish creating document folder, removing it: %s: %s", folder, e)
            self.store.remove_tree(folder)
            raise

        log.message("%s Created document folder: %s", EMOJI_SAVED, fmt_path(folder))
        return folder

    @log_calls(level="info")
    def move_document_folder(self, source: Path | str, target: Path | str) -> Path:
        """
        Move (or rename) a whole document folder. Uses an atomic rename, falling back to
        copy and delete across filesystems. A primary file named by the convention is
        renamed along with its folder.
        """
        src = self.resolve(source)
        main_file = self._require_main_file(src)
        dest = self.validate_within_root(target)

        if dest == src or dest.is_relative_to(src):
            raise InvalidArgumentError(
                f"Cannot move a document folder into itself: {fmt_path(src)} -> {fmt_path(dest)}"
            )
        if self.store.exists(dest):
            raise ConflictError(f"Target document folder already exists: {fmt_path(dest)}")

        renames_main_file = main_file == self._convention_file(src) and dest.name != src.name
        main_rename = None
        if renames_main_file:
            main_rename = (main_file.name, self._convention_file(dest).name)
        if main_rename and self.store.exists(src / main_rename[1]):
            raise ConflictError(
                f"Folder already holds a file named {main_rename[1]!r}: {fmt_path(src)}"
            )

        self.store.make_dir(dest.parent, exist_ok=True)

        try:
            self.store.rename(src, dest)
        except OSError as e:
            if e.errno != errno.EXDEV:
                raise
            log.info("Target is on another filesystem, copying: %s -> %s", src, dest)
            self._copy_then_remove(src, dest, main_rename)
        else:
            if main_rename:
                self._rename_main_file_or_undo(src, dest, *main_rename)

        if not self.is_document_folder(dest):
            raise UnexpectedError(f"Moved folder is not a document folder: {fmt_path(dest)}")

        log.message("%s Moved document folder:\n%s", EMOJI_MOVED, fmt_lines([src, dest]))
        return dest

    def _rename_main_file_or_undo(self, src: Path, dest: Path, old_name: str, new_name: str):
        try:
            self.store.rename(dest / old_name, dest / new_name)
        except OSError as e:
            log.error("Could not rename primary file, moving folder back: %s: %s", dest, e)
            self.store.rename(dest, src)
            raise

    def _copy_then_remove(
        self, src: Path, dest: Path, main_rename: Optional[Tuple[str, str]] = None
    ) -> None:
        """
        Copy into a hidden partial folder, rename the primary file there if needed, and
        commit it with a rename. Only then remove the source. Never removes the source if
        anything before the commit fails, and leaves both copies in place if the source
        can't be removed.
        """
        partial = dest.parent / partial_name_for(dest.name)
        try:
            self.store.copy_tree(src, partial)
            if main_rename:
                old_name, new_name = main_rename
                self.store.rename(partial / old_name, partial / new_name)
            self.store.rename(partial, dest)
        except OSError as e:
            log.error("Copy of document folder failed, source left in place: %s: %s", src, e)
            if self.store.exists(partial):
                try:
                    self.store.remove_tree(partial)
                except OSError as cleanup_error:
                    log.warning("Could not remove partial copy: %s: %s", partial, cleanup_error)
            raise

        try:
            self.store.remove_tree(src)
        except OSError as e:
            log.error(
                "Copied document folder but could not remove the source, "
                "both copies left for inspection:\n%s",
                fmt_lines([src, dest, e]),
            )
            raise

    @log_calls(level="info")
    def delete_document_folder(self, path: Path | str) -> None:
        """
        Remove a document folder and everything in it. The folder is first renamed to a
        hidden tombstone, so if that fails nothing has been removed.
        """
        folder = self.validate_within_root(path)
        self._require_main_file(folder)

        tombstone = folder.parent / tombstone_name_for(folder.name)
        self.store.rename(folder, tombstone)
        try:
            self.store.remove_tree(tombstone)
        except OSError as e:
            log.error("Document folder removed from view but not fully deleted: %s: %s", tombstone, e)
            raise

        log.message("%s Deleted document folder: %s", EMOJI_DELETED, fmt_path(folder))

    def normalize_main_file(self, path: Path | str) -> Path:
        """
        Rename a legacy primary file (like `main.md`) to the `<FolderName>.md` convention.
        """
        folder = self.validate_within_root(path)
        main_file = self._require_main_file(folder)
        expected = self._convention_file(folder)
        if main_file == expected:
            return main_file
        if self.store.exists(expected):
            log.warning(
                "Expected document file already exists, keeping current file:\n%s",
                fmt_lines([main_file, expected]),
            )
            return main_file

        self.store.rename(main_file, expected)
        log.info("Renamed document to match folder name: %s -> %s", main_file.name, expected.name)
        return expected

    ## Enumerating

    def find_document_folders(
        self, root: Optional[Path | str] = None, recursive: bool = True
    ) -> List[Path]:
        """
        All document folders at or below `root` (default: the whole tree). A document
        folder is never descended into, so its attachments directory and anything else
        inside it are never reported. Without `recursive`, only immediate children are
        examined.
        """
        start = self.resolve(root) if root is not None else self.root
        if not self.store.is_dir(start):
            return []
        if self.is_document_folder(start):
            return [start]

        found: List[Path] = []
        for dirpath, dirnames, _filenames in os.walk(start):
            descend = []
            for dirname in sorted(dirnames):
                if skippable_file(dirname):
                    continue
                child = Path(dirpath) / dirname
                if self.is_document_folder(child):
                    found.append(child)
                elif recursive:
                    descend.append(dirname)
            dirnames[:] = descend

        log.debug("Found %d document folders in %s", len(found), fmt_path(start))
        return sorted(found)

    def list_document_folders(self, category: str) -> List[Path]:
        """
        Document folders directly inside a category directory.
        """
        category_dir = self.root / validate_category(category)
        if not self.store.is_dir(category_dir):
            return []
        return [
            category_dir / name
            for name in self.store.list_dir(category_dir)
            if self.is_document_folder(category_dir / name)
        ]

    def get_document_folder_metadata(self, path: Path | str) -> DocFolderMetadata:
        folder = self.resolve(path)
        main_file = self._require_main_file(folder)

        folder_stat = self.store.stat(folder)
        main_stat = self.store.stat(main_file)
        created = getattr(folder_stat, "st_birthtime", folder_stat.st_ctime)
        attachments = self.list_attachments(folder)

        return DocFolderMetadata(
            path=folder,
            name=folder.name,
            category=folder.parent.name,
            main_file=main_file,
            images_folder=self.get_images_folder(folder),
            created=_timestamp(created),
            modified=_timestamp(main_stat.st_mtime),
            size=main_stat.st_size,
            attachment_count=len(attachments),
            image_count=sum(1 for a in attachments if is_image_file(a)),
        )
