import logging

import pytest

from flyer_extraction.logging import ROOT_LOGGER, configure_logging, get_logger, parse_level


@pytest.fixture
def restore_logging():
    yield
    configure_logging("INFO", log_file="", force=True)


def test_module_loggers_share_the_package_handlers():
    a = get_logger("resolve")
    b = get_logger("extract")
    root = logging.getLogger(ROOT_LOGGER)
    assert a.name == "flyer.resolve"
    assert a.parent is root and b.parent is root
    assert a.handlers == [] and b.handlers == []
    assert len(root.handlers) >= 1
    before = list(root.handlers)
    get_logger("resolve")
    assert root.handlers == before


def test_parse_level():
    assert parse_level("debug") == logging.DEBUG
    assert parse_level(" WARN ") == logging.WARNING
    assert parse_level(logging.ERROR) == logging.ERROR
    assert parse_level("chatty") == logging.INFO
    assert parse_level(None) == logging.INFO


def test_force_reconfigure_writes_log_file(tmp_path, restore_logging):
    path = tmp_path / "flyer.log"
    configure_logging("debug", log_file=str(path), force=True)
    root = logging.getLogger(ROOT_LOGGER)
    assert root.level == logging.DEBUG
    assert len(root.handlers) == 2
    get_logger("cli-main").debug("hello from the cli")
    for handler in root.handlers:
        handler.flush()
    text = path.read_text(encoding="utf-8")
    assert "[flyer.cli-main] DEBUG: hello from the cli" in text


def test_unwritable_log_file_falls_back_to_stderr(tmp_path, restore_logging):
    configure_logging("info", log_file=str(tmp_path / "missing" / "x.log"), force=True)
    assert len(logging.getLogger(ROOT_LOGGER).handlers) == 1
