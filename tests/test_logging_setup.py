"""Tests for logging setup."""

import logging
import os
import tempfile

from clickhousejson_output.logging.setup import (
    DROPPED_LOGGER_NAME,
    PACKAGE_LOGGER_NAME,
    setup_logging,
)


def _cleanup():
    for name in (PACKAGE_LOGGER_NAME, DROPPED_LOGGER_NAME):
        logger = logging.getLogger(name)
        for handler in list(logger.handlers):
            handler.close()
            logger.removeHandler(handler)
        logger.setLevel(logging.NOTSET)


def _read(path):
    for handler in logging.getLogger(PACKAGE_LOGGER_NAME).handlers:
        handler.flush()
    with open(path) as f:
        return f.read()


def test_module_loggers_reach_custom_named_file():
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            setup_logging("forwarder", log_dir=tmpdir, level="DEBUG", console=False)
            logging.getLogger("clickhousejson_output.clickhouse.sender").info("sent chunk")
            logging.getLogger("clickhousejson_output.buffer.output").debug("flushed chunk")

            content = _read(os.path.join(tmpdir, "forwarder.log"))
            assert "clickhousejson_output.clickhouse.sender: sent chunk" in content
            assert "flushed chunk" in content
        finally:
            _cleanup()


def test_level_filters_records():
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            setup_logging("forwarder", log_dir=tmpdir, level="WARNING", console=False)
            sender_logger = logging.getLogger("clickhousejson_output.clickhouse.sender")
            sender_logger.info("quiet")
            sender_logger.warning("loud")

            content = _read(os.path.join(tmpdir, "forwarder.log"))
            assert "loud" in content
            assert "quiet" not in content
        finally:
            _cleanup()


def test_repeated_calls_do_not_duplicate_handlers():
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            setup_logging("forwarder", log_dir=tmpdir)
            logger = setup_logging("forwarder", log_dir=tmpdir)
            assert logger.name == PACKAGE_LOGGER_NAME
            assert len(logger.handlers) == 2
        finally:
            _cleanup()


def test_dropped_chunk_log():
    with tempfile.TemporaryDirectory() as tmpdir:
        try:
            setup_logging(log_dir=tmpdir, console=False, enable_dropped_chunk_log=True)
            logging.getLogger(DROPPED_LOGGER_NAME).error("ClickHouse responded 500, chunk dropped")
            logging.getLogger("clickhousejson_output.clickhouse.sender").error("not a drop")
            for handler in logging.getLogger(DROPPED_LOGGER_NAME).handlers:
                handler.flush()

            with open(os.path.join(tmpdir, "dropped_chunks.log")) as f:
                dropped = f.read()
            assert "chunk dropped" in dropped
            assert "not a drop" not in dropped

            # drops also reach the main log through the package logger
            assert "chunk dropped" in _read(os.path.join(tmpdir, "clickhousejson_output.log"))
        finally:
            _cleanup()
