import os
import shutil
from pathlib import Path
from typing import List

from strif import atomic_output_file, copyfile_atomic

from docfolders.config.logger import get_logger
from docfolders.file_storage.filenames import skippable_file
from docfolders.util.format_utils import fmt_path

log = get_logger(__name__)


class FolderStore:
    """
    Low-level filesystem primitives for a tree of folders under one root. Knows nothing
    about documents. Platform errors (permission denied, disk full, etc.) propagate
    unchanged; only the existence checks swallow them and report False.
    """

    def __init__(self, base_dir: Path | str):
        self.base_dir = Path(os.path.abspath(Path(base_dir).expanduser()))

    def __str__(self):
        return f"FolderStore({fmt_path(self.base_dir, resolve=False)})"

    def resolve(self, path: Path | str) -> Path:
        """
        Absolute, normalized form of a path. Relative paths are taken to be relative to
        the root. Symlinks are not followed.
        """
        path = Path(path).expanduser()
        if not path.is_absolute():
            path = self.base_dir / path
        return Path(os.path.abspath(path))

    def is_within_root(self, path: Path | str) -> bool:
        return self.resolve(path).is_relative_to(self.base_dir)

    def exists(self, path: Path) -> bool:
        try:
            return os.path.lexists(path)
        except OSError:
            return False

    def is_dir(self, path: Path) -> bool:
        try:
            return path.is_dir()
        except OSError:
            return False

    def is_file(self, path: Path) -> bool:
        try:
            return path.is_file()
        except OSError:
            return False

    def list_dir(self, path: Path) -> List[str]:
        """
        Sorted names of the entries in a directory, without hidden or partial entries.
        """
        return sorted(name for name in os.listdir(path) if not skippable_file(name))

    def make_dir(self, path: Path, exist_ok: bool = True, parents: bool = True) -> None:
        """
        Create a directory. With `exist_ok`, an existing directory (including one created
        concurrently by someone else) is not an error.
        """
        path.mkdir(parents=parents, exist_ok=exist_ok)

    def read_text(self, path: Path) -> str:
        with open(path, "r", encoding="utf-8") as f:
            return f.read()

    def write_text(self, path: Path, content: str) -> None:
        """
        Write a text file atomically, so readers see either the old or the new content.
        """
        with atomic_output_file(path) as tmp_path:
            with open(tmp_path, "w", encoding="utf-8") as f:
                f.write(content)

    def copy_file(self, src: Path, dest: Path) -> None:
        copyfile_atomic(src, dest, make_parents=True)

    def copy_tree(self, src: Path, dest: Path) -> None:
        shutil.copytree(src, dest, symlinks=True, copy_function=shutil.copy2)

    def rename(self, src: Path, dest: Path) -> None:
        """
        Atomic rename. Raises `OSError` with `errno.EXDEV` across filesystems.
        """
        os.rename(src, dest)

    def remove_tree(self, path: Path) -> None:
        shutil.rmtree(path)
        log.debug("Removed tree: %s", fmt_path(path))

    def stat(self, path: Path) -> os.stat_result:
        return path.stat()
