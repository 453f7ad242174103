"""
Tests for LogSink - queued file logging with drain on shutdown
"""

import os
import sys
import logging
import tempfile
import shutil
import threading
from pathlib import Path
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from utils.log_sink import LogSink, LogEntry


class TestLogSink:
    """Test cases for LogSink"""

    def setup_method(self):
        self.temp_dir = Path(tempfile.mkdtemp())
        self.logger = logging.getLogger(f"devotter.test.{id(self)}")
        self.logger.propagate = False
        self.logger.setLevel(logging.DEBUG)

    def teardown_method(self):
        for handler in list(self.logger.handlers):
            self.logger.removeHandler(handler)
        if self.temp_dir.exists():
            shutil.rmtree(self.temp_dir)

    def test_log_file_name_is_dated(self):
        sink = LogSink(log_dir=str(self.temp_dir))
        assert sink.log_file.parent == self.temp_dir
        assert sink.log_file.name.startswith("devotter_log_")
        assert sink.log_file.suffix == ".log"
        sink.shutdown()

    def test_records_written_after_shutdown_drain(self):
        sink = LogSink(log_dir=str(self.temp_dir)).start()
        sink.attach(self.logger)

        for i in range(200):
            self.logger.info("message %d", i)
        sink.shutdown()

        lines = sink.log_file.read_text(encoding="utf-8").splitlines()
        assert len(lines) == 200
        assert lines[0].endswith("[INFO] message 0")
        assert lines[-1].endswith("message 199")

    def test_level_filtering(self):
        sink = LogSink(log_dir=str(self.temp_dir), level=logging.WARNING).start()
        sink.attach(self.logger)

        self.logger.info("hidden")
        self.logger.error("shown")
        sink.shutdown()

        text = sink.log_file.read_text()
        assert "hidden" not in text
        assert "[ERROR] shown" in text

    def test_full_queue_drops_without_blocking(self):
        sink = LogSink(log_dir=str(self.temp_dir), queue_size=5)
        sink.attach(self.logger)

        # The listener is not started, so nothing drains the queue
        for i in range(20):
            self.logger.info("flood %d", i)

        assert sink.dropped_count == 15
        sink.start()
        sink.shutdown()
        assert len(sink.log_file.read_text().splitlines()) == 5

    def test_subscribers_receive_entries(self):
        received = []
        done = threading.Event()

        def subscriber(entry: LogEntry):
            received.append(entry)
            done.set()

        sink = LogSink(enable_file_logging=False, log_dir=str(self.temp_dir)).start()
        sink.subscribe(subscriber)
        sink.attach(self.logger)

        self.logger.warning("deploy %s", "Alpha")

        assert done.wait(timeout=2.0)
        sink.shutdown()
        assert received[0].level == "WARNING"
        assert received[0].message == "deploy Alpha"
        assert "[WARNING] deploy Alpha" in str(received[0])
        assert not sink.log_file.exists()

    def test_failing_subscriber_does_not_stop_others(self):
        good = []
        sink = LogSink(enable_file_logging=False).start()
        sink.subscribe(lambda entry: 1 / 0)
        sink.subscribe(good.append)
        sink.attach(self.logger)

        self.logger.info("still delivered")
        sink.shutdown()

        assert [entry.message for entry in good] == ["still delivered"]

    def test_shutdown_detaches_and_is_idempotent(self):
        sink = LogSink(log_dir=str(self.temp_dir)).start()
        sink.attach(self.logger)

        sink.shutdown()
        sink.shutdown()

        assert sink.handler not in self.logger.handlers
        with pytest.raises(RuntimeError):
            sink.start()

    def test_context_manager(self):
        with LogSink(log_dir=str(self.temp_dir)) as sink:
            sink.attach(self.logger)
            self.logger.info("inside")

        assert "inside" in sink.log_file.read_text()
