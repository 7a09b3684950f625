import hashlib
import os
from pathlib import Path
from typing import Dict


def hash_file(file_path: str | Path, algorithm: str = "sha1") -> str:
    """
    Hash the content of a file using the specified algorithm and return a string in the
    format `algorithm:hash`.
    """
    if algorithm not in hashlib.algorithms_available:
        raise ValueError(f"Unsupported hash algorithm: {algorithm}")

    hasher = hashlib.new(algorithm)
    file_path = Path(file_path)

    with file_path.open("rb") as file:
        while chunk := file.read(8192):
            hasher.update(chunk)

    return f"{algorithm}:{hasher.hexdigest()}"


def hash_tree(root: str | Path, algorithm: str = "sha1") -> Dict[str, str]:
    """
    Snapshot of a directory tree: every relative path (directories included) mapped to
    the hash of its content, or "dir" for directories.
    """
    root = Path(root)
    snapshot: Dict[str, str] = {}
    for dirpath, dirnames, filenames in os.walk(root):
        dirnames.sort()
        for dirname in dirnames:
            snapshot[os.path.relpath(os.path.join(dirpath, dirname), root)] = "dir"
        for filename in sorted(filenames):
            full_path = os.path.join(dirpath, filename)
            snapshot[os.path.relpath(full_path, root)] = hash_file(full_path, algorithm)
    return snapshot


## Tests


def test_hash_file(tmp_path):
    file_path = tmp_path / "test_file.txt"
    file_path.write_text("Hello, World!")

    result_hash = hash_file(file_path, "sha1")
    assert result_hash == "sha1:0a0a9f2a6772942557ab5355d76af442f8f65e01"


def test_hash_tree(tmp_path):
    (tmp_path / "a" / "images").mkdir(parents=True)
    (tmp_path / "a" / "a.md").write_text("Hello, World!")

    snapshot = hash_tree(tmp_path)
    assert snapshot == {
        "a": "dir",
        os.path.join("a", "images"): "dir",
        os.path.join("a", "a.md"): "sha1:0a0a9f2a6772942557ab5355d76af442f8f65e01",
    }
