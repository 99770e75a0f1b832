"""Tests for Loguru setup."""

import json
import logging
import sys

import pytest
from loguru import logger

from rmq_declarative.config import Settings
from rmq_declarative.log import setup_logging, text_formatter


@pytest.fixture(autouse=True)
def restore_logging():
    root_handlers = logging.root.handlers[:]
    root_level = logging.root.level
    yield
    logger.remove()
    logger.add(sys.stderr)
    logging.root.handlers[:] = root_handlers
    logging.root.setLevel(root_level)


def json_lines(output: str) -> list[dict]:
    return [json.loads(line) for line in output.splitlines() if line.strip()]


class TestJsonFormat:
    """Tests for the JSON sink."""

    def test_records_are_json_with_extras(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="json", log_intercept_stdlib=False))

        logger.bind(consumer="orders", delivery_tag=7).info("Delivery resolved")

        entries = json_lines(capsys.readouterr().out)
        assert entries[0]["message"] == "Logging configured"
        entry = entries[-1]
        assert entry["message"] == "Delivery resolved"
        assert entry["level"] == "INFO"
        assert entry["consumer"] == "orders"
        assert entry["delivery_tag"] == 7

    def test_unserializable_extras_stringified(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="json", log_intercept_stdlib=False))

        logger.bind(payload=object()).info("odd")

        entry = json_lines(capsys.readouterr().out)[-1]
        assert entry["payload"].startswith("<object object")

    def test_exception_summary(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="json", log_intercept_stdlib=False))

        try:
            raise ValueError("boom")
        except ValueError as e:
            logger.opt(exception=e).warning("Error while executing callback")

        entry = json_lines(capsys.readouterr().out)[-1]
        assert entry["exception"]["type"] == "ValueError"
        assert entry["exception"]["value"] == "boom"

    def test_level_filter(self, capsys):
        setup_logging(
            Settings(
                _env_file=None,
                log_format="json",
                log_level="WARNING",
                log_intercept_stdlib=False,
            )
        )

        logger.info("hidden")
        logger.warning("shown")

        messages = [entry["message"] for entry in json_lines(capsys.readouterr().out)]
        assert messages == ["shown"]


class TestTextFormat:
    """Tests for the human-readable format."""

    def test_context_with_consumer_and_tag(self):
        record = {"extra": {"consumer": "orders", "delivery_tag": 7}}

        text_formatter(record)

        assert record["extra"]["log_context"] == "[orders#7] "

    def test_context_with_consumer_only(self):
        record = {"extra": {"consumer": "orders"}}

        text_formatter(record)

        assert record["extra"]["log_context"] == "[orders] "

    def test_no_context(self):
        record = {"extra": {}}

        text_formatter(record)

        assert record["extra"]["log_context"] == ""

    def test_text_output(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="text", log_intercept_stdlib=False))

        with logger.contextualize(consumer="orders", delivery_tag=3):
            logger.warning("Processing timed out")

        out = capsys.readouterr().out
        assert "[orders#3]" in out
        assert "Processing timed out" in out

    def test_file_sink(self, tmp_path):
        log_file = tmp_path / "client.log"
        setup_logging(
            Settings(
                _env_file=None,
                log_format="text",
                log_file=str(log_file),
                log_intercept_stdlib=False,
            )
        )

        logger.info("written to file")
        logger.remove()

        assert "written to file" in log_file.read_text()

    def test_file_sink_shows_delivery_context(self, tmp_path):
        log_file = tmp_path / "client.log"
        setup_logging(
            Settings(
                _env_file=None,
                log_format="text",
                log_file=str(log_file),
                log_intercept_stdlib=False,
            )
        )

        with logger.contextualize(consumer="orders", delivery_tag=3):
            logger.warning("Processing timed out")
        logger.remove()

        line = next(
            entry for entry in log_file.read_text().splitlines() if "Processing timed out" in entry
        )
        assert "[orders#3] " in line
        assert "\x1b[" not in line


class TestInterceptHandler:
    """Tests for routing stdlib logging through Loguru."""

    def test_stdlib_records_intercepted(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="json", log_intercept_stdlib=True))

        logging.getLogger("aio_pika.robust_connection").warning("Connection lost")

        entry = json_lines(capsys.readouterr().out)[-1]
        assert entry["message"] == "Connection lost"
        assert entry["level"] == "WARNING"

    def test_not_intercepted_when_disabled(self, capsys):
        setup_logging(Settings(_env_file=None, log_format="json", log_intercept_stdlib=False))

        logging.getLogger("aio_pika.robust_connection").warning("Connection lost")

        messages = [entry["message"] for entry in json_lines(capsys.readouterr().out)]
        assert "Connection lost" not in messages
