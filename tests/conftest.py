from pathlib import Path
from typing import Callable, Dict, Optional

import pytest

from docfolders.file_storage.doc_folders import DocumentFolderManager

MakeDoc = Callable[..., Path]


@pytest.fixture
def kb_root(tmp_path: Path) -> Path:
    root = tmp_path / "kb"
    root.mkdir()
    return root


@pytest.fixture
def manager(kb_root: Path) -> DocumentFolderManager:
    return DocumentFolderManager(kb_root)


@pytest.fixture
def make_doc(kb_root: Path) -> MakeDoc:
    """
    Lay out a document folder by hand, without going through the manager.
    """

    def make(
        category: str,
        name: str,
        content: str,
        images: Optional[Dict[str, bytes]] = None,
        main_file_name: Optional[str] = None,
    ) -> Path:
        folder = kb_root / category / name
        (folder / "images").mkdir(parents=True)
        (folder / (main_file_name or f"{name}.md")).write_text(content, encoding="utf-8")
        for image_name, data in (images or {}).items():
            (folder / "images" / image_name).write_bytes(data)
        return folder

    return make
