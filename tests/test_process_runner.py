"""
Tests for ProcessRunner - output capture, timeout, cancellation and shutdown
"""

import os
import sys
import time
import tempfile
import shutil
import threading
from pathlib import Path
from unittest.mock import patch
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

from services.process_runner import ProcessRunner, ProcessOutput
from utils.async_base import (
    BuildError,
    BuildTimeoutError,
    OperationCancelledError,
    ProcessSpawnError,
)
from utils.cancellation import CancellationToken

posix_only = pytest.mark.skipif(sys.platform == "win32", reason="uses a POSIX shell")


def pid_alive(pid: int) -> bool:
    try:
        os.kill(pid, 0)
    except ProcessLookupError:
        return False
    except PermissionError:
        return True

    # Orphans may linger as zombies until their new parent reaps them
    stat = Path(f"/proc/{pid}/stat")
    if stat.exists():
        try:
            return stat.read_text().rsplit(")", 1)[1].split()[0] != "Z"
        except (OSError, IndexError):
            return False
    return True


def wait_for_file(path: Path, timeout: float = 5.0) -> str:
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if path.exists() and path.read_text().strip():
            return path.read_text().strip()
        time.sleep(0.05)
    raise AssertionError(f"{path} was not written")


@posix_only
@pytest.mark.posix
class TestProcessRunner:
    """Test cases for ProcessRunner"""

    def setup_method(self):
        self.temp_dir = tempfile.mkdtemp()
        self.runner = ProcessRunner(timeout=10, drain_timeout=2, poll_interval=0.05)

    def teardown_method(self):
        self.runner.terminate_all()
        if os.path.exists(self.temp_dir):
            shutil.rmtree(self.temp_dir)

    def test_captures_output_and_exit_code(self):
        output = self.runner.run("echo hello; echo oops 1>&2", self.temp_dir)

        assert isinstance(output, ProcessOutput)
        assert output.succeeded
        assert output.stdout.strip() == "hello"
        assert output.stderr.strip() == "oops"
        assert output.drain_timed_out is False

    def test_runs_in_working_directory(self):
        output = self.runner.run("pwd", self.temp_dir)
        assert os.path.realpath(output.stdout.strip()) == os.path.realpath(self.temp_dir)

    def test_non_zero_exit_is_returned(self):
        output = self.runner.run("echo failing >&2; exit 3", self.temp_dir)

        assert output.exit_code == 3
        assert not output.succeeded
        assert "failing" in output.stderr

    def test_timeout_kills_process(self):
        """A command sleeping past the timeout fails and leaves nothing running"""
        pid_file = Path(self.temp_dir) / "pid"

        started = time.monotonic()
        with pytest.raises(BuildTimeoutError) as exc_info:
            self.runner.run(f"echo $$ > {pid_file}; sleep 30", self.temp_dir, timeout=1)
        elapsed = time.monotonic() - started

        pid = int(wait_for_file(pid_file))
        assert elapsed < 10
        assert exc_info.value.error_code == "TIMEOUT_ERROR"
        assert exc_info.value.timeout == 1
        assert not pid_alive(pid)
        assert self.runner.active_count == 0

    def test_timeout_kills_child_processes(self):
        pid_file = Path(self.temp_dir) / "child"

        with pytest.raises(BuildTimeoutError):
            self.runner.run(
                f"sleep 30 & echo $! > {pid_file}; wait", self.temp_dir, timeout=1
            )

        child = int(wait_for_file(pid_file))
        deadline = time.monotonic() + 2
        while pid_alive(child) and time.monotonic() < deadline:
            time.sleep(0.05)
        assert not pid_alive(child)

    def test_missing_working_directory(self):
        with pytest.raises(ProcessSpawnError) as exc_info:
            self.runner.run("echo hi", os.path.join(self.temp_dir, "missing"))

        assert isinstance(exc_info.value, BuildError)
        assert exc_info.value.error_code == "SPAWN_ERROR"

    def test_missing_interpreter(self):
        with patch(
            "services.process_runner.PlatformService.create_shell_command",
            return_value=(["/nonexistent/shell", "-c", "x"], "x"),
        ):
            with pytest.raises(ProcessSpawnError):
                self.runner.run("x", self.temp_dir)

    def test_empty_command_rejected(self):
        with pytest.raises(ProcessSpawnError):
            self.runner.run("   ", self.temp_dir)

    def test_cancellation_kills_process(self):
        token = CancellationToken()
        timer = threading.Timer(0.3, token.cancel)
        timer.start()
        try:
            with pytest.raises(OperationCancelledError):
                self.runner.run("sleep 30", self.temp_dir, cancellation=token)
        finally:
            timer.cancel()
        assert self.runner.active_count == 0

    def test_already_cancelled_does_not_spawn(self):
        token = CancellationToken()
        token.cancel()
        marker = Path(self.temp_dir) / "ran"

        with pytest.raises(OperationCancelledError):
            self.runner.run(f"touch {marker}", self.temp_dir, cancellation=token)
        assert not marker.exists()

    def test_terminate_all_kills_in_flight_process(self):
        errors = []

        def run():
            try:
                self.runner.run("sleep 30", self.temp_dir)
            except OperationCancelledError as e:
                errors.append(e)

        worker = threading.Thread(target=run)
        worker.start()
        deadline = time.monotonic() + 5
        while self.runner.active_count == 0 and time.monotonic() < deadline:
            time.sleep(0.02)

        self.runner.terminate_all()
        worker.join(timeout=5)

        assert not worker.is_alive()
        assert len(errors) == 1
        assert self.runner.active_count == 0

    def test_drain_timeout_returns_partial_output(self):
        """A background child holding the pipe open does not block the caller"""
        runner = ProcessRunner(timeout=10, drain_timeout=0.5, poll_interval=0.05)

        started = time.monotonic()
        output = runner.run("echo partial; (sleep 5 &) ; exit 0", self.temp_dir)
        elapsed = time.monotonic() - started

        assert output.succeeded
        assert "partial" in output.stdout
        assert output.drain_timed_out is True
        assert elapsed < 4

    def test_drain_bound_shared_by_both_streams(self):
        """Both pipes held open still wait one drain timeout, not one per stream"""
        runner = ProcessRunner(timeout=10, drain_timeout=1.0, poll_interval=0.05)

        started = time.monotonic()
        output = runner.run("echo hi; (sleep 6 >&1 2>&2 &)", self.temp_dir)
        elapsed = time.monotonic() - started

        assert output.drain_timed_out is True
        assert output.stdout.strip() == "hi"
        assert elapsed < 1.8

    @pytest.mark.asyncio
    async def test_run_async(self):
        output = await self.runner.run_async("echo async", self.temp_dir)
        assert output.stdout.strip() == "async"
