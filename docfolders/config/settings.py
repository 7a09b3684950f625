import os
import threading
from contextlib import contextmanager
from enum import Enum
from logging import DEBUG, ERROR, INFO, WARNING
from pathlib import Path
from typing import List, Mapping, Optional

from pydantic.dataclasses import dataclass


APP_NAME = "docfolders"

ENV_PREFIX = "DOCFOLDERS_"

IMAGES_DIR_NAME = "images"

MAIN_FILE_EXT = ".md"

LEGACY_MAIN_FILE_NAMES = ["main.md"]

CONSOLIDATED_CATEGORY = "Consolidated"

# Logs live outside any knowledge base root so that logging never touches a root
# that is being previewed in a dry run.
LOG_DIR = "~/.local/docfolders/logs"


class LogLevel(Enum):
    debug = DEBUG
    info = INFO
    warning = WARNING
    message = WARNING  # Same as warning, just for important console messages.
    error = ERROR

    @classmethod
    def parse(cls, level_str: str):
        canon_name = level_str.strip().lower()
        if canon_name == "warn":
            canon_name = "warning"
        try:
            return cls[canon_name]
        except KeyError:
            raise ValueError(
                f"Invalid log level: `{level_str}`. Valid options are: {', '.join(f'`{name}`' for name in cls.__members__)}"
            )

    def __str__(self):
        return self.name


@dataclass
class Settings:
    images_dir_name: str
    """Name of the attachments directory inside every document folder."""

    main_file_ext: str
    """Extension of the primary content file, which is named after its folder."""

    legacy_main_file_names: List[str]
    """Fallback primary file names for folders not yet migrated, in priority order."""

    consolidated_category: str
    """Default category for the output of a consolidation."""

    near_duplicate_threshold: int
    """Minimum fuzzy match ratio (0-100) for two paragraphs or sentences to be near duplicates."""

    near_duplicate_min_chars: int
    """Paragraphs and sentences shorter than this are only ever deduplicated exactly."""

    dedup_min_sentence_words: int
    """Sentences with fewer words than this are only dropped on an exact repeat."""

    search_preview_chars: int
    """Context characters on either side of the first match in search previews."""

    search_default_limit: int
    """Default number of search results."""

    console_log_level: LogLevel
    """The log level for console-based logging."""

    file_log_level: LogLevel
    """The log level for file-based logging."""

    log_dir: Path
    """Directory for the log file and saved log objects."""


# Initial default settings.
_settings = Settings(
    images_dir_name=IMAGES_DIR_NAME,
    main_file_ext=MAIN_FILE_EXT,
    legacy_main_file_names=LEGACY_MAIN_FILE_NAMES,
    consolidated_category=CONSOLIDATED_CATEGORY,
    near_duplicate_threshold=92,
    near_duplicate_min_chars=40,
    dedup_min_sentence_words=3,
    search_preview_chars=100,
    search_default_limit=10,
    console_log_level=LogLevel.warning,
    file_log_level=LogLevel.info,
    log_dir=Path(LOG_DIR).expanduser(),
)


def global_settings() -> Settings:
    """
    Read access to global settings.
    """
    return _settings


_settings_lock = threading.RLock()


@contextmanager
def update_global_settings():
    """
    Context manager for thread-safe updates to global settings.
    """
    with _settings_lock:
        yield _settings


def apply_env_overrides(environ: Optional[Mapping[str, str]] = None) -> List[str]:
    """
    Apply `DOCFOLDERS_*` environment variables to the global settings. Returns the
    names of the settings that were changed.
    """
    environ = os.environ if environ is None else environ
    changed: List[str] = []

    def get(name: str) -> Optional[str]:
        value = environ.get(ENV_PREFIX + name.upper())
        if value is not None and value.strip():
            changed.append(name)
            return value.strip()
        return None

    with update_global_settings() as settings:
        if (value := get("images_dir_name")) is not None:
            settings.images_dir_name = value
        if (value := get("legacy_main_file_names")) is not None:
            settings.legacy_main_file_names = [n.strip() for n in value.split(",") if n.strip()]
        if (value := get("consolidated_category")) is not None:
            settings.consolidated_category = value
        if (value := get("near_duplicate_threshold")) is not None:
            settings.near_duplicate_threshold = int(value)
        if (value := get("console_log_level")) is not None:
            settings.console_log_level = LogLevel.parse(value)
        if (value := get("file_log_level")) is not None:
            settings.file_log_level = LogLevel.parse(value)
        if (value := get("log_dir")) is not None:
            settings.log_dir = Path(value).expanduser()

    return changed


## Tests


def test_log_level_parse():
    import pytest

    assert LogLevel.parse(" WARN ") == LogLevel.warning
    assert LogLevel.parse("debug") == LogLevel.debug
    with pytest.raises(ValueError):
        LogLevel.parse("loud")


def test_apply_env_overrides():
    settings = global_settings()
    old_category = settings.consolidated_category
    old_names = list(settings.legacy_main_file_names)
    try:
        changed = apply_env_overrides(
            {
                "DOCFOLDERS_CONSOLIDATED_CATEGORY": "Merged",
                "DOCFOLDERS_LEGACY_MAIN_FILE_NAMES": "main.md, index.md",
                "DOCFOLDERS_IMAGES_DIR_NAME": "  ",
            }
        )
        assert changed == ["legacy_main_file_names", "consolidated_category"]
        assert settings.consolidated_category == "Merged"
        assert settings.legacy_main_file_names == ["main.md", "index.md"]
        assert settings.images_dir_name == IMAGES_DIR_NAME
    finally:
        with update_global_settings() as s:
            s.consolidated_category = old_category
            s.legacy_main_file_names = old_names
