import errno
import json

import pytest

from docfolders.consolidate.consolidation_engine import ContentConsolidationEngine
from docfolders.consolidate.consolidation_model import ConsolidationStrategy
from docfolders.errors import ConflictError, InvalidArgumentError, NoContentError
from docfolders.file_storage.folder_store import FolderStore
from docfolders.util.hash_utils import hash_tree

API_DOC = """
# API Doc

The client library wraps every endpoint.

![a](images/a.png)
"""

GUIDE = """
# Guide

Start here when setting up a new machine.

![b](images/b.png)
"""


@pytest.fixture
def dev_docs(make_doc):
    api = make_doc("Development", "API-Doc", API_DOC, images={"a.png": b"png-a"})
    guide = make_doc("Development", "Guide", GUIDE, images={"b.png": b"png-b"})
    return api, guide


@pytest.fixture
def engine(manager):
    return ContentConsolidationEngine(manager)


def test_simple_merge(engine, manager, dev_docs, kb_root):
    api, guide = dev_docs
    sources_before = {path: hash_tree(path) for path in dev_docs}

    result = engine.consolidate_content([api, guide], "Dev Guide", "simple_merge")

    assert result.success
    assert result.strategy == ConsolidationStrategy.simple_merge
    assert result.consolidated_folder == kb_root / "Consolidated" / "Dev-Guide"
    assert result.source_documents == [api, guide]
    assert result.images_merged == 2
    assert not result.unusable_sources

    folder = result.consolidated_folder
    assert manager.is_document_folder(folder)
    assert sorted(p.name for p in (folder / "images").iterdir()) == ["a.png", "b.png"]
    assert (folder / "images" / "a.png").read_bytes() == b"png-a"

    content = manager.get_document_content(folder)
    assert content == result.merged_content
    assert "## API Doc" in content and "## Guide" in content
    assert "![a](images/a.png)" in content and "![b](images/b.png)" in content

    # Sources are untouched.
    for path, before in sources_before.items():
        assert manager.is_document_folder(path)
        assert hash_tree(path) == before


def test_empty_folder_list(engine):
    with pytest.raises(InvalidArgumentError, match="No document folders provided"):
        engine.consolidate_content([], "Dev Guide")


def test_invalid_topic(engine, dev_docs):
    for topic in ["", "   ", None]:
        with pytest.raises(InvalidArgumentError, match="Invalid or missing topic"):
            engine.consolidate_content(list(dev_docs), topic)  # type: ignore


def test_shared_sentence_appears_once(engine, make_doc):
    shared = "Every change must pass the full test suite before it is merged."
    a = make_doc("Dev", "Testing", f"# Testing\n\nWe test with pytest. {shared}\n")
    b = make_doc(
        "Dev",
        "Releases",
        f"# Releases\n\nReleases are tagged weekly.\n\n## Checks\n\n{shared}\n",
    )

    result = engine.consolidate_content([a, b], "Dev Process", "comprehensive_merge")

    assert result.merged_content.count(shared) == 1
    assert result.metadata["duplicates_removed"] >= 1
    assert "## Executive Summary" in result.merged_content
    assert "## Appendices" in result.merged_content


def _merge_dry_run(manager, a, b):
    engine = ContentConsolidationEngine(manager, dry_run=True)
    return engine.consolidate_content([a, b], "Deploys", "comprehensive_merge").merged_content


def test_sentence_ending_in_capitals_appears_once(manager, make_doc):
    shared = "Deploy everything with the CLI."
    a = make_doc("Ops", "Alpha", f"# Alpha\n\nAlpha ships nightly builds. {shared} Ask ops.\n")
    b = make_doc("Ops", "Beta", f"# Beta\n\nBeta is the staging stack. {shared} Costs are tracked.")

    content = _merge_dry_run(manager, a, b)

    assert content.count(shared) == 1
    assert "Costs are tracked." in content


def test_list_item_and_paragraph_share_sentence(manager, make_doc):
    shared = "Every release is signed by two maintainers."
    a = make_doc("Ops", "Alpha", f"# Alpha\n\nAlpha intro.\n\n## Rules\n\n- {shared}\n- Tag it.\n")
    b = make_doc("Ops", "Beta", f"# Beta\n\nBeta intro.\n\n## Rules\n\nWe ship weekly. {shared}\n")

    content = _merge_dry_run(manager, a, b)

    assert content.count(shared) == 1
    assert "- Tag it." in content
    assert "We ship weekly." in content


def test_short_sentence_appears_once(manager, make_doc):
    a = make_doc("Ops", "Alpha", "# Alpha\n\nAlpha intro.\n\n## Build\n\nCompile first. Run make.")
    b = make_doc("Ops", "Beta", "# Beta\n\nBeta intro.\n\n## Test\n\nTest second. Run make.\n")

    content = _merge_dry_run(manager, a, b)

    assert content.count("Run make.") == 1
    assert "Test second." in content


def test_underscore_and_partial_named_attachments(engine, make_doc, dev_docs):
    a = make_doc(
        "Dev",
        "Gallery",
        "# Gallery\n\n![cover](images/__cover.png)\n\n![draft](images/draft.partial.png)\n",
        {"__cover.png": b"cover", "draft.partial.png": b"draft", ".DS_Store": b"junk"},
    )
    _, guide = dev_docs

    result = engine.consolidate_content([a, guide], "Gallery Guide", "simple_merge")

    images = result.consolidated_folder / "images"
    assert sorted(p.name for p in images.iterdir()) == ["__cover.png", "b.png", "draft.partial.png"]
    assert (images / "__cover.png").read_bytes() == b"cover"
    assert (images / "draft.partial.png").read_bytes() == b"draft"
    assert result.images_merged == 3
    assert "![cover](images/__cover.png)" in result.merged_content


def test_dry_run_is_pure(manager, dev_docs, kb_root):
    before = hash_tree(kb_root)
    engine = ContentConsolidationEngine(manager, dry_run=True)

    for strategy in ConsolidationStrategy:
        result = engine.consolidate_content(list(dev_docs), "Dev Guide", strategy)
        assert result.dry_run
        assert result.consolidated_folder is None
        assert len(result.merged_content) > 0
        assert result.images_merged == 2
        assert result.metadata["target_folder"] == str(kb_root / "Consolidated" / "Dev-Guide")

    assert hash_tree(kb_root) == before
    assert not (kb_root / "Consolidated").exists()


def test_attachment_collisions(engine, make_doc, manager):
    a = make_doc("Dev", "One", "# One\n\n![d](images/diagram.png)\n", {"diagram.png": b"one"})
    b = make_doc(
        "Dev",
        "Two",
        '# Two\n\n![d](images/diagram.png)\n\n<img src="images/diagram.png">\n',
        {"diagram.png": b"two"},
    )

    result = engine.consolidate_content([a, b], "Diagrams", "structured_consolidation")

    images = result.consolidated_folder / "images"
    assert (images / "diagram.png").read_bytes() == b"one"
    assert (images / "2-diagram.png").read_bytes() == b"two"
    assert "![d](images/diagram.png)" in result.merged_content
    assert "![d](images/2-diagram.png)" in result.merged_content
    assert '<img src="images/2-diagram.png">' in result.merged_content
    assert result.metadata["references_rewritten"] == 2

    # The source keeps its own reference.
    assert "images/2-diagram.png" not in manager.get_document_content(b)


def test_missing_reference_preserved(manager, make_doc):
    a = make_doc("Dev", "One", "# One\n\n![x](images/missing.png)\n", {"x.png": b"x"})
    b = make_doc("Dev", "Two", "# Two\n\n![y](images/x.png)\n", {"x.png": b"y"})
    engine = ContentConsolidationEngine(manager, dry_run=True)

    for strategy in ConsolidationStrategy:
        result = engine.consolidate_content([a, b], "Refs", strategy)
        assert "![x](images/missing.png)" in result.merged_content
        assert "![y](images/2-x.png)" in result.merged_content


def test_unusable_sources(engine, dev_docs, kb_root):
    api, _guide = dev_docs
    missing = kb_root / "Development" / "Missing"
    plain = kb_root / "Development" / "Plain"
    plain.mkdir()

    result = engine.consolidate_content([api, missing, plain, api], "Partial")

    assert result.success
    assert [u.path for u in result.unusable_sources] == [str(missing), str(plain), str(api)]
    assert "## API Doc" in result.merged_content
    assert json.loads(json.dumps(result.as_dict()))["unusable_sources"][0]["path"] == str(missing)

    with pytest.raises(NoContentError, match="No content could be extracted"):
        engine.consolidate_content([missing, plain], "Nothing")


def test_empty_document_is_unusable(engine, make_doc):
    empty = make_doc("Dev", "Empty", "  \n")
    with pytest.raises(NoContentError):
        engine.consolidate_content([empty], "Nothing")


def test_unknown_strategy_falls_back(engine, dev_docs):
    result = engine.consolidate_content(list(dev_docs), "Dev Guide", "magic")

    assert result.strategy == ConsolidationStrategy.simple_merge
    assert result.metadata["requested_strategy"] == "magic"
    assert "*Strategy: simple_merge*" in result.merged_content


def test_structured_groups_shared_headings(engine, make_doc):
    a = make_doc("Dev", "One", "# One\n\nAbout one.\n\n## Setup\n\nInstall one.\n")
    b = make_doc("Dev", "Two", "# Two\n\n## Setup:\n\nInstall two.\n\n## Usage\n\nUse two.\n")

    result = engine.consolidate_content([a, b], "Both", "structured_consolidation")
    content = result.merged_content

    assert content.count("### Setup") == 1
    main = content[content.index("## Main Content") :]
    assert main.index("Install one.") < main.index("Install two.")
    assert "## Overview" in content and "- **One**: About one." in content
    assert "### Usage" in content


def test_category_override_and_conflict(manager, dev_docs, kb_root):
    engine = ContentConsolidationEngine(manager, category="Merged")
    result = engine.consolidate_content(list(dev_docs), "Dev Guide")
    assert result.consolidated_folder == kb_root / "Merged" / "Dev-Guide"

    explicit = engine.consolidate_content(list(dev_docs), "Dev Guide", category="Other")
    assert explicit.consolidated_folder == kb_root / "Other" / "Dev-Guide"

    before = hash_tree(kb_root)
    with pytest.raises(ConflictError):
        engine.consolidate_content(list(dev_docs), "Dev Guide")
    assert hash_tree(kb_root) == before


def test_failed_attachment_copy_removes_new_folder(engine, dev_docs, kb_root, monkeypatch):
    def failing_copy(self, src, dest):
        raise OSError(errno.ENOSPC, "No space left on device")

    monkeypatch.setattr(FolderStore, "copy_file", failing_copy)

    with pytest.raises(OSError):
        engine.consolidate_content(list(dev_docs), "Dev Guide")
    assert not (kb_root / "Consolidated" / "Dev-Guide").exists()
