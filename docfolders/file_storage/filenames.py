"""
Naming conventions for document folders: folder name sanitizing, the ordered rules for
locating a folder's primary content file, and names of hidden working files.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Callable, List, Optional, Sequence

import regex
from strif import new_uid

from docfolders.errors import InvalidArgumentError

## Folder names

MAX_NAME_BYTES = 240
"""Leaves room for the `.md` suffix within the common 255-byte filename limit."""

UNTITLED = "untitled"

_illegal_chars = regex.compile(r'[<>:"/\\|?*\p{Cc}]')
_dot_runs = regex.compile(r"\.{2,}")
_whitespace = regex.compile(r"\s+")
_hyphen_runs = regex.compile(r"-{2,}")

_windows_reserved = {"CON", "PRN", "AUX", "NUL"} | {
    f"{base}{i}" for base in ("COM", "LPT") for i in range(1, 10)
}


def _truncate_utf8(text: str, max_bytes: int) -> str:
    encoded = text.encode("utf-8")
    if len(encoded) <= max_bytes:
        return text
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def sanitize_folder_name(title: str) -> str:
    """
    Convert an arbitrary title into a filesystem-safe folder name. Deterministic and
    idempotent. Characters illegal on common filesystems, path separators, and `..`
    sequences become hyphens, whitespace runs become single hyphens, and leading or
    trailing hyphens and dots are dropped. Never returns an empty string.
    """
    name = _illegal_chars.sub("-", title)
    name = _dot_runs.sub("-", name)
    name = _whitespace.sub("-", name)
    name = _hyphen_runs.sub("-", name)
    name = name.strip("-.")

    stem, dot, ext = name.partition(".")
    if stem.upper() in _windows_reserved:
        name = f"{stem}-doc{dot}{ext}"

    name = _truncate_utf8(name, MAX_NAME_BYTES).strip("-.")

    return name or UNTITLED


def validate_category(category: str) -> str:
    """
    A category is used verbatim as a directory name, so it must be a single safe path
    segment. Its meaning is up to the caller.
    """
    if not isinstance(category, str) or not category.strip():
        raise InvalidArgumentError("Invalid or missing category")
    if category in (".", "..") or regex.search(r"[/\\\p{Cc}]", category):
        raise InvalidArgumentError(f"Category is not a safe folder name: {category!r}")
    return category


def title_from_folder_name(folder_name: str) -> str:
    """
    Readable title for a folder that has no title heading: `API-Doc` -> `API Doc`.
    """
    return _whitespace.sub(" ", regex.sub(r"[-_]+", " ", folder_name)).strip() or folder_name


## Primary content file rules


@dataclass(frozen=True)
class MainFileRule:
    """
    One way of naming a primary content file, given the folder's name.
    """

    description: str
    filename_for: Callable[[str], str]


def main_file_rules(main_file_ext: str, legacy_names: Sequence[str]) -> List[MainFileRule]:
    """
    Candidate rules in priority order: the naming convention first, then each
    legacy name.
    """
    rules = [MainFileRule("convention", lambda folder_name: f"{folder_name}{main_file_ext}")]
    for legacy_name in legacy_names:
        rules.append(MainFileRule(f"legacy:{legacy_name}", lambda _name, n=legacy_name: n))
    return rules


def find_main_file(
    folder: Path, rules: Sequence[MainFileRule], is_file: Callable[[Path], bool]
) -> Optional[Path]:
    """
    Evaluate the rules in order, returning the first candidate that is a regular file.
    """
    for rule in rules:
        candidate = folder / rule.filename_for(folder.name)
        if is_file(candidate):
            return candidate
    return None


## Hidden working files

PARTIAL_MARKER = ".partial."
TOMBSTONE_MARKER = ".deleting."


def partial_name_for(name: str) -> str:
    """
    Hidden sibling name for a copy that is not yet committed.
    """
    return f".{name}{PARTIAL_MARKER}{new_uid()}"


def tombstone_name_for(name: str) -> str:
    """
    Hidden sibling name for a folder that is being deleted.
    """
    return f".{name}{TOMBSTONE_MARKER}{new_uid()}"


def skippable_file(filename: str) -> bool:
    """
    Hidden entries are skipped when listing or walking. Our own partial copies and
    tombstones are always hidden, so any other name is a real entry, even one like
    `__cover.png` or `draft.partial.png`.
    """
    return len(filename) > 1 and filename.startswith(".")


IMAGE_EXTENSIONS = {".jpg", ".jpeg", ".png", ".gif", ".webp", ".svg", ".bmp", ".tif", ".tiff"}


def is_image_file(filename: str | Path) -> bool:
    return Path(filename).suffix.lower() in IMAGE_EXTENSIONS


## Tests


def test_sanitize_folder_name():
    assert sanitize_folder_name("Dev Guide") == "Dev-Guide"
    assert sanitize_folder_name("  API:  Doc?  ") == "API-Doc"
    assert sanitize_folder_name("../../etc/passwd") == "etc-passwd"
    assert sanitize_folder_name("/absolute/path") == "absolute-path"
    assert sanitize_folder_name("...") == UNTITLED
    assert sanitize_folder_name("") == UNTITLED
    assert sanitize_folder_name("version 1.2 notes.") == "version-1.2-notes"
    assert sanitize_folder_name("tab\tand\nnewline") == "tab-and-newline"
    assert sanitize_folder_name("CON") == "CON-doc"
    assert sanitize_folder_name("nul.txt") == "nul-doc.txt"
    assert sanitize_folder_name("Café – Über") == "Café-–-Über"
    assert len(sanitize_folder_name("é" * 300).encode("utf-8")) <= MAX_NAME_BYTES


def test_sanitize_folder_name_idempotent():
    samples = [
        "Dev Guide",
        "../../etc/passwd",
        " -. weird .- ",
        "a..b...c",
        "CON",
        "nul.txt",
        "é" * 300,
        "x" * 239 + " y",
        'quote"s <and> pipes|',
        "",
        "\x00\x1f",
    ]
    for sample in samples:
        once = sanitize_folder_name(sample)
        assert sanitize_folder_name(once) == once, sample
        assert once and "/" not in once and ".." not in once


def test_validate_category():
    import pytest

    assert validate_category("Development") == "Development"
    assert validate_category("Work Notes") == "Work Notes"
    for bad in ["", "   ", "..", ".", "a/b", "a\\b", "bad\x00"]:
        with pytest.raises(InvalidArgumentError):
            validate_category(bad)


def test_main_file_rules():
    rules = main_file_rules(".md", ["main.md", "index.md"])
    names = [rule.filename_for("API-Doc") for rule in rules]
    assert names == ["API-Doc.md", "main.md", "index.md"]

    existing = {Path("/kb/Dev/API-Doc/index.md"), Path("/kb/Dev/API-Doc/main.md")}
    found = find_main_file(Path("/kb/Dev/API-Doc"), rules, lambda p: p in existing)
    assert found == Path("/kb/Dev/API-Doc/main.md")
    assert find_main_file(Path("/kb/Dev/Other"), rules, lambda p: p in existing) is None


def test_hidden_names():
    assert skippable_file(partial_name_for("Guide"))
    assert skippable_file(tombstone_name_for("Guide"))
    assert skippable_file(".DS_Store")
    assert not skippable_file("__cover.png")
    assert not skippable_file("draft.partial.png")
    assert not skippable_file("Guide")
    assert title_from_folder_name("API-Doc") == "API Doc"
    assert title_from_folder_name("my_notes--v2") == "my notes v2"
    assert is_image_file("a.PNG") and not is_image_file("a.pdf")
