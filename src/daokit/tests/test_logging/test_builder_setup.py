# src/daokit/tests/test_logging/test_builder_setup.py
import logging
from pathlib import Path

from daokit.core.logging.builder import STATS_LOGGER_NAME, make_dict_config, setup_logging


# Create a minimal Settings-like object for testing
class DummySettings:
    LOG_FORMAT = "json"
    LOG_LEVEL = "INFO"
    LOG_TO_STDOUT = False
    LOG_DIR = None  # will be set in test
    LOG_MAX_BYTES = 1000
    LOG_BACKUP_COUNT = 1
    ENV = "development"
    ENABLE_SQL_LOGGING = False


def test_make_dict_config_contains_handlers(tmp_path):
    settings = DummySettings()
    settings.LOG_DIR = tmp_path
    cfg = make_dict_config(settings)
    assert "console" in cfg["handlers"]
    # file logging active: file, error and stats files
    assert "file" in cfg["handlers"]
    assert "error_file" in cfg["handlers"]
    assert cfg["handlers"]["stats_file"]["filename"] == str(Path(tmp_path) / "stats.log")
    assert "json" in cfg["formatters"]


def test_stats_logger_routes_to_its_own_file(tmp_path):
    settings = DummySettings()
    settings.LOG_DIR = tmp_path
    cfg = make_dict_config(settings)
    stats_logger = cfg["loggers"][STATS_LOGGER_NAME]
    assert stats_logger["handlers"] == ["stats_file"]
    assert stats_logger["propagate"] is False
    # the stats file is not attached to the root logger
    assert "stats_file" not in cfg["loggers"][""]["handlers"]


def test_stdout_mode_propagates_stats_and_quiets_sql():
    settings = DummySettings()
    settings.LOG_TO_STDOUT = True
    cfg = make_dict_config(settings)
    assert "file" not in cfg["handlers"]
    assert "error_console" in cfg["handlers"]
    assert cfg["loggers"][STATS_LOGGER_NAME]["propagate"] is True
    assert cfg["loggers"]["sqlalchemy.engine"]["level"] == "WARNING"


def test_setup_logging_creates_log_dir(tmp_path):
    settings = DummySettings()
    settings.LOG_DIR = tmp_path / "logs"
    # ensure DIR does not exist
    assert not settings.LOG_DIR.exists()
    setup_logging(settings)
    # setup should create log dir
    assert settings.LOG_DIR.exists()
    root = logging.getLogger()
    assert root.handlers

    logging.getLogger(STATS_LOGGER_NAME).info("DB STATS (avg/min/max/count):\nempty\n")
    for handler in logging.getLogger(STATS_LOGGER_NAME).handlers:
        handler.flush()
    assert "DB STATS" in (settings.LOG_DIR / "stats.log").read_text()
