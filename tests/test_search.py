import json

import pytest

from docfolders.errors import InvalidArgumentError
from docfolders.search.doc_search import DocumentSearchEngine


@pytest.fixture
def docs(make_doc):
    alpha = make_doc("Dev", "Alpha", "# Deploy Guide\n\nHow to deploy.\n")
    beta = make_doc("Dev", "Beta", "# Beta\n\n" + "Filler line.\n" * 10 + "We deploy weekly.\n")
    gamma = make_doc("Personal", "Gamma", "# Gamma\n\nNothing relevant here.\n")
    return alpha, beta, gamma


@pytest.fixture
def search(manager):
    return DocumentSearchEngine(manager)


def test_search_ranks_results(search, docs, kb_root):
    alpha, beta, _gamma = docs

    response = search.search_documents("deploy")

    assert response.total_results == 2
    assert response.folders_searched == 3
    assert response.search_path == kb_root
    assert response.warning is None
    assert [r.path for r in response.results] == [alpha, beta]

    top = response.results[0]
    assert top.title == "Deploy Guide"
    assert top.category == "Dev"
    assert top.main_file == alpha / "Alpha.md"
    assert top.total_matches == 2
    assert [(m.line_number, m.section) for m in top.matches] == [
        (1, "Deploy Guide"),
        (3, "Deploy Guide"),
    ]
    assert top.relevance > response.results[1].relevance
    assert "**Deploy**" in top.highlighted_preview

    assert json.loads(json.dumps(response.as_dict()))["results"][1]["name"] == "Beta"


def test_search_preview(manager, docs):
    response = DocumentSearchEngine(manager, preview_chars=5).search_documents("deploy")
    top = response.results[0]
    assert top.preview == "# Deploy Guid..."
    assert top.highlighted_preview == "# **Deploy** Guid..."


def test_search_limit(search, docs):
    response = search.search_documents("deploy", limit=1)
    assert response.total_results == 2
    assert len(response.results) == 1

    with pytest.raises(InvalidArgumentError):
        search.search_documents("deploy", limit=0)


def test_search_invalid_query(search, docs):
    for query in ["", "  ", None]:
        with pytest.raises(InvalidArgumentError, match="Search query is required"):
            search.search_documents(query)  # type: ignore


def test_search_category(search, docs, kb_root):
    response = search.search_in_category("deploy", "Personal")
    assert response.total_results == 0
    assert response.folders_searched == 1
    assert response.search_path == kb_root / "Personal"

    response = search.search_in_category("relevant", "Personal")
    assert [r.name for r in response.results] == ["Gamma"]

    missing = search.search_documents("deploy", category="Nope")
    assert missing.warning == "Category 'Nope' does not exist"
    assert missing.total_results == 0
    assert missing.results == []

    with pytest.raises(InvalidArgumentError):
        search.search_documents("deploy", category="../Dev")


def test_search_regex_and_case(search, docs):
    response = search.search_documents(r"dep\w+y", use_regex=True)
    assert response.total_results == 2

    literal = search.search_documents(r"dep\w+y")
    assert literal.total_results == 0

    invalid = search.search_documents("deploy[", use_regex=True)
    assert invalid.warning and "literally" in invalid.warning
    assert invalid.total_results == 0

    sensitive = search.search_documents("Deploy", case_sensitive=True)
    assert [r.name for r in sensitive.results] == ["Alpha"]
    assert sensitive.results[0].total_matches == 1


def test_search_reports_unreadable_folders(search, docs, make_doc):
    broken = make_doc("Dev", "Broken", "placeholder")
    (broken / "Broken.md").write_bytes(b"deploy \xff\xfe\xfa")

    response = search.search_documents("deploy")

    assert response.total_results == 2
    assert response.folders_searched == 4
    assert [e["folder"] for e in response.processing_errors] == [str(broken)]
