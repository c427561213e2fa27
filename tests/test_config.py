"""Tests for configuration loading and structured logging."""

import json
import logging
import sys

import pytest

from novamon.config import AppConfig, LoggingConfig, load_config, save_config
from novamon.logging_setup import JsonFormatter, configure_logging


class TestConfig:
    """Tests for load_config/save_config."""

    def test_missing_file_gives_defaults(self, tmp_path):
        cfg = load_config(tmp_path / "nope.json")
        assert cfg == AppConfig()
        assert cfg.monitor.poll_rate == 2.0
        assert cfg.monitor.smart_ttl == 60.0

    def test_round_trip(self, tmp_path):
        cfg = AppConfig()
        cfg.monitor.poll_rate = 0.5
        cfg.monitor.enable_nvml = False
        cfg.logging.level = "DEBUG"
        path = save_config(cfg, tmp_path / "config.json")

        assert load_config(path) == cfg

    def test_values_are_normalized(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(
            json.dumps(
                {
                    "monitor": {"poll_rate": 0.001, "workers": 500, "unknown": 1},
                    "logging": {"level": "chatty", "keep_files": 0},
                }
            )
        )
        cfg = load_config(path)

        assert cfg.monitor.poll_rate == 0.1
        assert cfg.monitor.workers == 32
        assert cfg.logging.level == "INFO"
        assert cfg.logging.keep_files == 1

    def test_null_paths_fall_back_to_defaults(self, tmp_path):
        path = tmp_path / "config.json"
        path.write_text(json.dumps({"monitor": {"smartctl_path": None, "sysfs_root": ""}}))

        cfg = load_config(path)

        assert cfg.monitor.smartctl_path == "smartctl"
        assert cfg.monitor.sysfs_root == "/sys"

    @pytest.mark.parametrize("content", ["{not json", "[1, 2]", '{"monitor": {"workers": "many"}}'])
    def test_invalid_files_fall_back_to_defaults(self, tmp_path, content):
        path = tmp_path / "config.json"
        path.write_text(content)
        assert load_config(path) == AppConfig()

    def test_xdg_config_home(self, tmp_path, monkeypatch):
        monkeypatch.setenv("XDG_CONFIG_HOME", str(tmp_path))
        monkeypatch.setattr("novamon.config.platform.system", lambda: "Linux")
        path = save_config(AppConfig())
        assert path == tmp_path / "novamon" / "config.json"


@pytest.fixture
def clean_logger():
    logger = logging.getLogger("novamon")
    saved = list(logger.handlers)
    for handler in saved:
        logger.removeHandler(handler)
    yield logger
    for handler in list(logger.handlers):
        handler.close()
        logger.removeHandler(handler)
    for handler in saved:
        logger.addHandler(handler)


class TestLogging:
    """Tests for the JSON log file."""

    def test_writes_json_lines(self, tmp_path, clean_logger):
        configure_logging(LoggingConfig(level="DEBUG"), directory=tmp_path)
        logging.getLogger("novamon.process").info(
            "sent SIGTERM", extra={"event": "process_signalled"}
        )
        for handler in clean_logger.handlers:
            handler.flush()

        lines = (tmp_path / "novamon.log").read_text().splitlines()
        entries = [json.loads(line) for line in lines]
        assert entries[0]["event"] == "logging_configured"
        assert entries[-1]["logger"] == "novamon.process"
        assert entries[-1]["event"] == "process_signalled"
        assert entries[-1]["level"] == "INFO"

    def test_configure_is_idempotent(self, tmp_path, clean_logger):
        configure_logging(directory=tmp_path)
        configure_logging(directory=tmp_path)
        assert len(clean_logger.handlers) == 1

    def test_console_handler_is_optional(self, tmp_path, clean_logger):
        configure_logging(LoggingConfig(console=True), directory=tmp_path)
        assert len(clean_logger.handlers) == 2


def test_formatter_includes_exception():
    try:
        raise ValueError("bad counter")
    except ValueError:
        record = logging.LogRecord(
            "novamon.disk", logging.ERROR, __file__, 1, "refresh failed", None, sys.exc_info()
        )
    payload = json.loads(JsonFormatter().format(record))
    assert payload["msg"] == "refresh failed"
    assert "ValueError: bad counter" in payload["exc"]
