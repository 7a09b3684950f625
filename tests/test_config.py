import logging
from pathlib import Path

from docfolders.config import logger
from docfolders.config.settings import global_settings, update_global_settings
from docfolders.config.setup import env_setup, setup


def _reset_handlers():
    root_logger = logging.getLogger()
    for handler in (logger._file_handler, logger._console_handler):
        if handler:
            root_logger.removeHandler(handler)
            handler.close()


def test_env_setup_reads_dotenv(tmp_path, monkeypatch):
    (tmp_path / ".env").write_text("DOCFOLDERS_CONSOLIDATED_CATEGORY=FromDotenv\n")
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DOCFOLDERS_CONSOLIDATED_CATEGORY", "")
    monkeypatch.delenv("DOCFOLDERS_CONSOLIDATED_CATEGORY")

    old_category = global_settings().consolidated_category
    try:
        dotenv_path = env_setup()
        assert dotenv_path
        assert Path(dotenv_path).resolve() == (tmp_path / ".env").resolve()
        assert global_settings().consolidated_category == "FromDotenv"
    finally:
        with update_global_settings() as settings:
            settings.consolidated_category = old_category


def test_setup_logs_outside_root(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("DOCFOLDERS_LOG_DIR", str(tmp_path / "logs"))

    old_log_dir = global_settings().log_dir
    try:
        setup()
        setup()
        assert global_settings().log_dir == tmp_path / "logs"
        assert logger.log_file_path().exists()

        log = logger.get_logger("docfolders.test_config")
        log.warning("Something to note")
        assert logger._file_handler
        logger._file_handler.flush()
        assert "Something to note" in logger.log_file_path().read_text()
    finally:
        _reset_handlers()
        with update_global_settings() as settings:
            settings.log_dir = old_log_dir
