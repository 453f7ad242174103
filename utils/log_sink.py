"""
Queue-backed event log sink

Producers log through the standard ``logging`` API; records are handed to a
bounded queue and written to a dated log file by a background listener
thread. Enqueueing never blocks: when the queue is full the record is
dropped and counted. ``shutdown()`` drains everything already queued, then
closes the file.
"""

import logging
import logging.handlers
import os
import queue
import threading
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, List, Optional

from config.config import get_logging_config


@dataclass(frozen=True)
class LogEntry:
    """One leveled message as seen by subscribers"""

    timestamp: datetime
    level: str
    message: str
    logger_name: str = ""

    def __str__(self) -> str:
        return f"[{self.timestamp:%Y-%m-%d %H:%M:%S}] [{self.level}] {self.message}"


class _DroppingQueueHandler(logging.handlers.QueueHandler):
    """QueueHandler that drops records instead of blocking or raising"""

    def __init__(self, log_queue: queue.Queue):
        super().__init__(log_queue)
        self.dropped = 0
        self._dropped_lock = threading.Lock()

    def enqueue(self, record: logging.LogRecord):
        try:
            self.queue.put_nowait(record)
        except queue.Full:
            with self._dropped_lock:
                self.dropped += 1


class _DrainingQueueListener(logging.handlers.QueueListener):
    """Waits for room for the stop sentinel so queued records are never lost"""

    def enqueue_sentinel(self):
        self.queue.put(self._sentinel, timeout=5.0)


class _SubscriberHandler(logging.Handler):
    """Forwards records to subscriber callbacks from the listener thread"""

    def __init__(self, sink: "LogSink"):
        super().__init__()
        self._sink = sink

    def emit(self, record: logging.LogRecord):
        entry = LogEntry(
            timestamp=datetime.fromtimestamp(record.created),
            level=record.levelname,
            message=record.getMessage(),
            logger_name=record.name,
        )
        self._sink._notify(entry)


class LogSink:
    """Explicitly constructed file log sink with a clean shutdown contract"""

    def __init__(
        self,
        log_dir: Optional[str] = None,
        level: int = logging.INFO,
        queue_size: Optional[int] = None,
        enable_file_logging: Optional[bool] = None,
        log_file: Optional[str] = None,
    ):
        config = get_logging_config()
        self.level = level
        self.enable_file_logging = (
            config.enable_file_logging
            if enable_file_logging is None
            else enable_file_logging
        )
        self.log_file = Path(
            log_file
            or os.path.join(
                log_dir or config.log_dir,
                config.file_name_template.format(date=datetime.now().strftime("%Y-%m-%d")),
            )
        )
        self._queue: queue.Queue = queue.Queue(maxsize=queue_size or config.queue_size)
        self._queue_handler = _DroppingQueueHandler(self._queue)
        self._queue_handler.setLevel(level)

        handlers: List[logging.Handler] = [_SubscriberHandler(self)]
        self._file_handler: Optional[logging.FileHandler] = None
        if self.enable_file_logging:
            self.log_file.parent.mkdir(parents=True, exist_ok=True)
            self._file_handler = logging.FileHandler(
                self.log_file, encoding="utf-8", delay=True
            )
            self._file_handler.setFormatter(
                logging.Formatter(config.line_format, datefmt=config.date_format)
            )
            handlers.append(self._file_handler)

        self._listener = _DrainingQueueListener(
            self._queue, *handlers, respect_handler_level=True
        )
        self._subscribers: List[Callable[[LogEntry], None]] = []
        self._subscribers_lock = threading.Lock()
        self._attached: List[logging.Logger] = []
        self._started = False
        self._closed = False

    @property
    def dropped_count(self) -> int:
        return self._queue_handler.dropped

    @property
    def handler(self) -> logging.Handler:
        """Handler to install on any logger that should feed this sink"""
        return self._queue_handler

    def start(self) -> "LogSink":
        if self._closed:
            raise RuntimeError("Log sink has been shut down")
        if not self._started:
            self._listener.start()
            self._started = True
        return self

    def attach(self, target: Optional[logging.Logger] = None) -> logging.Logger:
        """Route a logger (root by default) into the sink"""
        target = target or logging.getLogger()
        if self._queue_handler not in target.handlers:
            target.addHandler(self._queue_handler)
            self._attached.append(target)
        if target.level == logging.NOTSET or target.level > self.level:
            target.setLevel(self.level)
        return target

    def subscribe(self, callback: Callable[[LogEntry], None]):
        with self._subscribers_lock:
            if callback not in self._subscribers:
                self._subscribers.append(callback)

    def unsubscribe(self, callback: Callable[[LogEntry], None]):
        with self._subscribers_lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def _notify(self, entry: LogEntry):
        with self._subscribers_lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(entry)
            except Exception as e:
                # The sink cannot log its own failures through itself
                print(f"Log subscriber failed: {e}")

    def shutdown(self):
        """Drain queued records, then detach and close the file"""
        if self._closed:
            return
        for target in self._attached:
            target.removeHandler(self._queue_handler)
        self._attached.clear()

        if self._started:
            self._listener.stop()
            self._started = False

        if self._file_handler is not None:
            self._file_handler.close()
        with self._subscribers_lock:
            self._subscribers.clear()
        self._closed = True

    def __enter__(self) -> "LogSink":
        return self.start()

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.shutdown()
        return False
