"""Tests for log rendering."""

import json
import logging

import pytest
import structlog

from docent_llm.observability.logging import configure_logging


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)
    structlog.reset_defaults()


def last_json_line(text: str) -> dict:
    return json.loads(text.strip().splitlines()[-1])


def test_stdlib_records_rendered_as_json(capsys):
    configure_logging(level="INFO", log_format="json")

    logging.getLogger("docent_llm.core.session").info("Session initialized")

    record = last_json_line(capsys.readouterr().out)
    assert record["event"] == "Session initialized"
    assert record["level"] == "info"
    assert record["logger"] == "docent_llm.core.session"
    assert "timestamp" in record


def test_structlog_records_share_the_handler(capsys):
    configure_logging(level="INFO", log_format="json")

    structlog.get_logger("docent_llm.api").info("answer_sent", tokens=12)

    record = last_json_line(capsys.readouterr().out)
    assert record["event"] == "answer_sent"
    assert record["tokens"] == 12


def test_level_filters_records(capsys):
    configure_logging(level="WARNING", log_format="json")
    capsys.readouterr()

    logging.getLogger("docent_llm.runtime").info("hidden")
    logging.getLogger("docent_llm.runtime").warning("shown")

    out = capsys.readouterr().out
    assert "hidden" not in out
    assert last_json_line(out)["event"] == "shown"


def test_noisy_loggers_quieted():
    configure_logging(level="DEBUG", log_format="console")

    assert logging.getLogger("llama_cpp").level == logging.WARNING
    assert logging.getLogger("uvicorn.access").level == logging.WARNING
