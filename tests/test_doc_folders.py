import errno
import os
from datetime import datetime
from pathlib import Path

import pytest

from docfolders.errors import ConflictError, InvalidArgumentError, NotFoundError
from docfolders.file_storage.doc_folders import DocumentFolderManager
from docfolders.file_storage.folder_store import FolderStore
from docfolders.util.hash_utils import hash_tree


def _hidden_entries(directory: Path):
    return [name for name in os.listdir(directory) if name.startswith(".")]


def _assert_consistent(manager: DocumentFolderManager, folder: Path):
    main_file = manager.get_main_document_file(folder)
    assert main_file is not None
    assert main_file.parent == manager.get_images_folder(folder).parent == folder


## Recognizing documents


def test_is_document_folder(manager, make_doc, kb_root):
    doc = make_doc("Development", "API-Doc", "# API Doc\n")
    (kb_root / "Development" / "Empty").mkdir()
    (kb_root / "Development" / "Loose.md").write_text("not a folder")

    assert manager.is_document_folder(doc)
    assert manager.is_document_folder("Development/API-Doc")
    assert not manager.is_document_folder(kb_root / "Development" / "Empty")
    assert not manager.is_document_folder(kb_root / "Development" / "Loose.md")
    assert not manager.is_document_folder(kb_root / "Nope")
    assert not manager.is_document_folder(kb_root)


def test_images_folder_not_required(manager, kb_root):
    folder = kb_root / "Notes" / "Bare"
    folder.mkdir(parents=True)
    (folder / "Bare.md").write_text("# Bare\n")

    assert manager.is_document_folder(folder)
    assert manager.list_attachments(folder) == []

    images = manager.get_images_folder(folder, create_if_missing=True)
    assert images == folder / "images" and images.is_dir()
    assert manager.get_images_folder(folder, create_if_missing=True) == images

    with pytest.raises(NotFoundError):
        manager.get_images_folder(kb_root / "Notes" / "Missing", create_if_missing=True)


def test_legacy_main_file(manager, make_doc):
    legacy = make_doc("Development", "Old-Doc", "# Old\n", main_file_name="main.md")
    assert manager.get_main_document_file(legacy) == legacy / "main.md"
    # Looking it up never renames anything.
    assert (legacy / "main.md").exists()
    assert not (legacy / "Old-Doc.md").exists()

    both = make_doc("Development", "Both", "# Convention\n")
    (both / "main.md").write_text("# Legacy\n")
    assert manager.get_main_document_file(both) == both / "Both.md"
    assert manager.get_document_content(both) == "# Convention\n"


def test_normalize_main_file(manager, make_doc):
    legacy = make_doc("Development", "Old-Doc", "# Old\n", main_file_name="main.md")
    renamed = manager.normalize_main_file(legacy)

    assert renamed == legacy / "Old-Doc.md"
    assert renamed.read_text() == "# Old\n"
    assert not (legacy / "main.md").exists()
    assert manager.normalize_main_file(legacy) == renamed


## Content


def test_get_and_update_content(manager, make_doc):
    doc = make_doc("Development", "Guide", "# Guide\n", images={"b.png": b"png-b"})
    assert manager.get_document_content(doc) == "# Guide\n"

    main_file = manager.update_document_content(doc, "# Guide\n\nUpdated.\n")
    assert main_file == doc / "Guide.md"
    assert manager.get_document_content(doc) == "# Guide\n\nUpdated.\n"
    assert (doc / "images" / "b.png").read_bytes() == b"png-b"
    assert not _hidden_entries(doc)


def test_content_errors(manager, kb_root, tmp_path):
    with pytest.raises(NotFoundError):
        manager.get_document_content(kb_root / "Nope" / "Missing")
    with pytest.raises(NotFoundError):
        manager.update_document_content(kb_root / "Nope" / "Missing", "text")
    with pytest.raises(InvalidArgumentError):
        manager.update_document_content(tmp_path / "outside", "text")


## Creating


def test_create_document_folder(manager, kb_root):
    folder = manager.create_document_folder("Dev Guide", "Development")

    assert folder == kb_root / "Development" / "Dev-Guide"
    assert (folder / "Dev-Guide.md").read_text() == "# Dev Guide\n\n"
    assert (folder / "images").is_dir()
    assert list((folder / "images").iterdir()) == []
    _assert_consistent(manager, folder)

    custom = manager.create_document_folder("Notes: 2024/05", "Development", "Hello.\n")
    assert custom == kb_root / "Development" / "Notes-2024-05"
    assert manager.get_document_content(custom) == "Hello.\n"


def test_create_conflicts_and_invalid_input(manager, kb_root):
    manager.create_document_folder("Dev Guide", "Development", "Original.\n")

    with pytest.raises(ConflictError):
        manager.create_document_folder("Dev Guide", "Development", "Replacement.\n")
    assert manager.get_document_content("Development/Dev-Guide") == "Original.\n"

    for title in ["", "   ", None]:
        with pytest.raises(InvalidArgumentError):
            manager.create_document_folder(title, "Development")  # type: ignore
    for category in ["", "..", "a/b"]:
        with pytest.raises(InvalidArgumentError):
            manager.create_document_folder("Title", category)

    traversal = manager.create_document_folder("../../escape", "Development")
    assert traversal.parent == kb_root / "Development"


def test_create_cleans_up_on_write_failure(manager, kb_root, monkeypatch):
    def failing_write(self, path, content):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(FolderStore, "write_text", failing_write)

    with pytest.raises(OSError):
        manager.create_document_folder("Dev Guide", "Development")
    assert not (kb_root / "Development" / "Dev-Guide").exists()


## Moving


def test_move_document_folder(manager, make_doc, kb_root):
    source = make_doc("Development", "API-Doc", "# API Doc\n", images={"a.png": b"png-a"})
    before = hash_tree(source)

    target = manager.move_document_folder(source, kb_root / "Archive" / "API-Reference")

    assert target == kb_root / "Archive" / "API-Reference"
    assert not manager.is_document_folder(source)
    assert not source.exists()
    assert manager.is_document_folder(target)
    _assert_consistent(manager, target)

    # The convention-named primary file follows the folder's new name.
    assert manager.get_main_document_file(target) == target / "API-Reference.md"
    after = hash_tree(target)
    assert after.pop("API-Reference.md") == before.pop("API-Doc.md")
    assert after == before


def test_move_keeps_legacy_file_name(manager, make_doc, kb_root):
    source = make_doc("Development", "Old", "# Old\n", main_file_name="main.md")
    target = manager.move_document_folder(source, "Archive/Older")
    assert manager.get_main_document_file(target) == target / "main.md"


def test_move_errors(manager, make_doc, kb_root, tmp_path):
    source = make_doc("Development", "API-Doc", "# API Doc\n")
    make_doc("Archive", "Taken", "# Taken\n")

    with pytest.raises(ConflictError):
        manager.move_document_folder(source, kb_root / "Archive" / "Taken")
    with pytest.raises(NotFoundError):
        manager.move_document_folder(kb_root / "Development" / "Missing", kb_root / "Archive" / "X")
    with pytest.raises(InvalidArgumentError):
        manager.move_document_folder(source, source / "inside")
    with pytest.raises(InvalidArgumentError):
        manager.move_document_folder(source, tmp_path / "outside")

    assert manager.get_document_content(source) == "# API Doc\n"
    assert manager.get_document_content(kb_root / "Archive" / "Taken") == "# Taken\n"


def _fail_rename_of(path: Path, error: OSError, monkeypatch):
    real_rename = os.rename

    def rename(src, dest, *args, **kwargs):
        if Path(src) == path:
            raise error
        return real_rename(src, dest, *args, **kwargs)

    monkeypatch.setattr(os, "rename", rename)


def test_move_across_filesystems(manager, make_doc, kb_root, monkeypatch):
    source = make_doc("Development", "Guide", "# Guide\n", images={"b.png": b"png-b"})
    before = hash_tree(source)
    _fail_rename_of(source, OSError(errno.EXDEV, "Invalid cross-device link"), monkeypatch)

    target = manager.move_document_folder(source, kb_root / "Archive" / "Guide")

    assert not source.exists()
    assert manager.is_document_folder(target)
    assert hash_tree(target) == before
    assert not _hidden_entries(kb_root / "Archive")


def test_move_across_filesystems_copy_failure(manager, make_doc, kb_root, monkeypatch):
    source = make_doc("Development", "Guide", "# Guide\n", images={"b.png": b"png-b"})
    before = hash_tree(source)
    _fail_rename_of(source, OSError(errno.EXDEV, "Invalid cross-device link"), monkeypatch)

    def failing_copy(self, src, dest):
        Path(dest).mkdir(parents=True)
        (Path(dest) / "Guide.md").write_text("partial")
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(FolderStore, "copy_tree", failing_copy)

    with pytest.raises(OSError) as excinfo:
        manager.move_document_folder(source, kb_root / "Archive" / "Guide")
    assert excinfo.value.errno == errno.ENOSPC

    assert hash_tree(source) == before
    assert not (kb_root / "Archive" / "Guide").exists()
    assert not _hidden_entries(kb_root / "Archive")


def test_move_across_filesystems_source_removal_failure(
    manager, make_doc, kb_root, monkeypatch
):
    source = make_doc("Development", "Guide", "# Guide\n")
    _fail_rename_of(source, OSError(errno.EXDEV, "Invalid cross-device link"), monkeypatch)
    real_remove_tree = FolderStore.remove_tree

    def remove_tree(self, path):
        if Path(path) == source:
            raise PermissionError(errno.EACCES, "Permission denied")
        real_remove_tree(self, path)

    monkeypatch.setattr(FolderStore, "remove_tree", remove_tree)

    with pytest.raises(PermissionError):
        manager.move_document_folder(source, kb_root / "Archive" / "Guide")

    # Both copies are left for inspection rather than losing anything.
    assert manager.is_document_folder(source)
    assert manager.is_document_folder(kb_root / "Archive" / "Guide")


def test_move_across_filesystems_renames_primary_file(manager, make_doc, kb_root, monkeypatch):
    source = make_doc("Development", "Guide", "# Guide\n", images={"b.png": b"png-b"})
    before = hash_tree(source)
    _fail_rename_of(source, OSError(errno.EXDEV, "Invalid cross-device link"), monkeypatch)

    target = manager.move_document_folder(source, kb_root / "Archive" / "Renamed")

    assert not source.exists()
    assert manager.get_main_document_file(target) == target / "Renamed.md"
    after = hash_tree(target)
    assert after.pop("Renamed.md") == before.pop("Guide.md")
    assert after == before
    assert not _hidden_entries(kb_root / "Archive")


def test_move_across_filesystems_primary_rename_failure(manager, make_doc, kb_root, monkeypatch):
    source = make_doc("Development", "Guide", "# Guide\n", images={"b.png": b"png-b"})
    before = hash_tree(source)
    real_rename = os.rename

    def rename(src, dest, *args, **kwargs):
        if Path(src) == source:
            raise OSError(errno.EXDEV, "Invalid cross-device link")
        if Path(src).name == "Guide.md" and Path(src).parent.name.startswith("."):
            raise PermissionError(errno.EACCES, "Permission denied")
        return real_rename(src, dest, *args, **kwargs)

    monkeypatch.setattr(os, "rename", rename)

    with pytest.raises(PermissionError):
        manager.move_document_folder(source, kb_root / "Archive" / "Renamed")

    # The source is kept whole and nothing is committed at the target.
    assert hash_tree(source) == before
    assert manager.is_document_folder(source)
    assert not (kb_root / "Archive" / "Renamed").exists()
    assert not _hidden_entries(kb_root / "Archive")


## Deleting


def test_delete_document_folder(manager, make_doc, kb_root):
    doc = make_doc("Development", "API-Doc", "# API Doc\n", images={"a.png": b"png-a"})
    make_doc("Development", "Guide", "# Guide\n")

    manager.delete_document_folder(doc)

    assert not doc.exists()
    assert not (doc / "images" / "a.png").exists()
    assert os.listdir(kb_root / "Development") == ["Guide"]

    with pytest.raises(NotFoundError):
        manager.delete_document_folder(doc)


def test_delete_rejects_non_documents(manager, kb_root, tmp_path):
    plain = kb_root / "Development" / "Plain"
    plain.mkdir(parents=True)
    (plain / "notes.txt").write_text("keep me")

    with pytest.raises(NotFoundError):
        manager.delete_document_folder(plain)
    assert (plain / "notes.txt").exists()

    with pytest.raises(InvalidArgumentError):
        manager.delete_document_folder(kb_root)
    with pytest.raises(InvalidArgumentError):
        manager.delete_document_folder(tmp_path)


def test_delete_failed_rename_removes_nothing(manager, make_doc, monkeypatch):
    doc = make_doc("Development", "API-Doc", "# API Doc\n", images={"a.png": b"png-a"})
    before = hash_tree(doc)
    _fail_rename_of(doc, PermissionError(errno.EACCES, "Permission denied"), monkeypatch)

    with pytest.raises(PermissionError):
        manager.delete_document_folder(doc)
    assert hash_tree(doc) == before


## Enumerating


def test_find_document_folders(manager, make_doc, kb_root):
    api = make_doc("Development", "API-Doc", "# API Doc\n")
    guide = make_doc("Development", "Guide", "# Guide\n")
    nested = make_doc("Personal/Travel", "Japan", "# Japan\n")
    make_doc(".hidden", "Secret", "# Secret\n")

    # A folder inside a document folder is never reported.
    inner = api / "images" / "Inner"
    inner.mkdir()
    (inner / "Inner.md").write_text("# Inner\n")

    assert manager.find_document_folders() == [api, guide, nested]
    assert manager.find_document_folders(kb_root / "Development") == [api, guide]
    assert manager.find_document_folders(api) == [api]
    assert manager.find_document_folders(kb_root / "Personal", recursive=False) == []
    assert manager.find_document_folders(kb_root / "Personal" / "Travel", recursive=False) == [
        nested
    ]
    assert manager.find_document_folders(kb_root / "Missing") == []


def test_list_document_folders(manager, make_doc, kb_root):
    api = make_doc("Development", "API-Doc", "# API Doc\n")
    (kb_root / "Development" / "Drafts").mkdir()

    assert manager.list_document_folders("Development") == [api]
    assert manager.list_document_folders("Missing") == []


def test_document_folder_metadata(manager, make_doc):
    doc = make_doc(
        "Development",
        "API-Doc",
        "# API Doc\n",
        images={"a.png": b"png-a", "spec.pdf": b"pdf", ".DS_Store": b""},
    )
    (doc / "images" / "sub").mkdir()

    metadata = manager.get_document_folder_metadata(doc)

    assert metadata.path == doc
    assert metadata.name == "API-Doc"
    assert metadata.category == "Development"
    assert metadata.main_file == doc / "API-Doc.md"
    assert metadata.images_folder == doc / "images"
    assert metadata.size == len("# API Doc\n")
    assert metadata.attachment_count == 2
    assert metadata.image_count == 1
    assert isinstance(metadata.modified, datetime) and metadata.modified.tzinfo is not None
    assert metadata.as_dict()["modified"] == metadata.modified.isoformat()

    with pytest.raises(NotFoundError):
        manager.get_document_folder_metadata(doc / "images")
