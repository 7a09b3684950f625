from os.path import splitext
from typing import Iterable, Optional, Set


class Uniquifier:
    """
    Maintain a set of unique filenames, adding a prefix and then numeric suffixes to ensure
    uniqueness when needed. Names are compared case-insensitively, since two names
    differing only in case collide on common filesystems.
    """

    def __init__(self, init_values: Iterable[str] = (), template: str = "{name}_{suffix}"):
        if "{name}" not in template or "{suffix}" not in template:
            raise ValueError(f"Template must contain placeholders for name and suffix: {template}")

        self.keys: Set[str] = set()
        self.template = template

        for value in init_values:
            self.add(value)

    @staticmethod
    def _key(name: str) -> str:
        return name.casefold()

    def __contains__(self, name: str) -> bool:
        return self._key(name) in self.keys

    def uniquify(self, name: str, prefix: Optional[str] = None) -> str:
        """
        Return a filename that is the same as the input whenever possible. Otherwise try
        `{prefix}-{name}` if a prefix is given, then add a numeric suffix to the stem
        (keeping the extension) until the name is unique among all names seen so far.
        """
        if name not in self:
            self.add(name)
            return name

        candidate = f"{prefix}-{name}" if prefix else name
        stem, ext = splitext(candidate)
        suffix = 1
        while candidate in self:
            candidate = self.template.format(name=stem, suffix=suffix) + ext
            suffix += 1

        self.add(candidate)
        return candidate

    def add(self, name: str) -> None:
        """
        Add a name to the uniquifier.
        """
        self.keys.add(self._key(name))

    def __len__(self) -> int:
        return len(self.keys)


## Tests


def test_uniquifier():
    uniquifier = Uniquifier()

    assert uniquifier.uniquify("diagram.png") == "diagram.png"
    assert uniquifier.uniquify("diagram.png", prefix="2") == "2-diagram.png"
    assert uniquifier.uniquify("diagram.png", prefix="2") == "2-diagram_1.png"
    assert uniquifier.uniquify("Diagram.PNG") == "Diagram_1.PNG"
    assert uniquifier.uniquify("notes") == "notes"
    assert uniquifier.uniquify("notes") == "notes_1"

    assert "DIAGRAM.png" in uniquifier
    assert len(uniquifier) == 6


def test_uniquifier_init_values():
    import pytest

    uniquifier = Uniquifier(["a.png"], template="{name}.{suffix}")
    assert uniquifier.uniquify("a.png", prefix="3") == "3-a.png"
    assert uniquifier.uniquify("a.png") == "a.1.png"

    with pytest.raises(ValueError):
        Uniquifier(template="{name}")
