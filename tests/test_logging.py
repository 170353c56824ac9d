"""Tests for round-aware run logging."""

import json
import logging
import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(os.path.dirname(os.path.abspath(__file__))), 'src'))

from fedledger.logging import (
    LogLevel,
    RunLogRecord,
    close_logging,
    get_logger,
    setup_logging,
)


@pytest.fixture
def log_dir(tmp_path):
    yield tmp_path / "logs"
    close_logging()


class TestSetupLogging:
    """Tests for setup_logging."""

    def test_writes_text_and_json(self, log_dir):
        """Records land in both files with their round number."""
        setup_logging(log_dir=str(log_dir), enable_console=False)
        logger = get_logger("orchestrator")

        logger.info("round started", extra={'round': 4})
        logger.warning("no round here")
        close_logging()

        text = (log_dir / "run.log").read_text()
        assert "| R4 | INFO | round started" in text
        assert "| R- | WARNING | no round here" in text

        lines = [json.loads(line) for line in (log_dir / "run.jsonl").read_text().splitlines()]
        assert lines[0]['round_num'] == 4
        assert lines[0]['component'] == "fedledger.orchestrator"
        assert lines[0]['message'] == "round started"
        assert 'round_num' not in lines[1]
        assert lines[1]['level'] == "WARNING"

    def test_level_filters(self, log_dir):
        setup_logging(log_dir=str(log_dir), level=LogLevel.WARNING, enable_console=False, enable_json=False)
        logger = get_logger("ledger")
        logger.info("quiet")
        logger.error("loud")
        close_logging()

        text = (log_dir / "run.log").read_text()
        assert "quiet" not in text
        assert "loud" in text

    def test_setup_replaces_handlers(self, log_dir):
        setup_logging(log_dir=str(log_dir), enable_console=False)
        root = setup_logging(log_dir=str(log_dir), enable_console=False, enable_json=False)
        assert len(root.handlers) == 1

    def test_no_files_without_dir(self, tmp_path):
        root = setup_logging(log_dir=None, enable_console=True)
        try:
            assert all(isinstance(h, logging.StreamHandler) for h in root.handlers)
        finally:
            close_logging()

    def test_close_restores_propagation(self, log_dir):
        root = setup_logging(log_dir=str(log_dir), enable_console=False)
        assert not root.propagate
        close_logging()
        assert root.propagate
        assert root.handlers == []


class TestHelpers:
    """Tests for get_logger and RunLogRecord."""

    def test_get_logger_namespaces(self):
        assert get_logger("metrics").name == "fedledger.metrics"
        assert get_logger("fedledger.ledger").name == "fedledger.ledger"
        assert get_logger("fedledger").name == "fedledger"

    def test_run_log_record(self):
        record = RunLogRecord(timestamp="t", round_num=None, component="c", message="m")
        assert record.to_dict() == {'timestamp': "t", 'component': "c", 'message': "m", 'level': "INFO"}
        assert json.loads(record.to_json())['message'] == "m"
