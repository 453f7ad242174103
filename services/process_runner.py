"""
Process Runner - runs an external build command with captured output,
a hard timeout and forced termination of the whole process tree
"""

import logging
import os
import signal
import subprocess
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional, Set, Tuple

from config.config import get_service_config
from services.platform_service import PlatformService
from utils.async_base import (
    BuildTimeoutError,
    OperationCancelledError,
    ProcessSpawnError,
)
from utils.async_utils import run_in_executor
from utils.cancellation import CancellationToken

logger = logging.getLogger(__name__)


@dataclass
class ProcessOutput:
    """Exit code and captured streams of a finished command"""

    exit_code: int
    stdout: str
    stderr: str
    duration: float = 0.0
    drain_timed_out: bool = False

    @property
    def succeeded(self) -> bool:
        return self.exit_code == 0


class _StreamDrainer:
    """Reads one pipe on a daemon thread so a stalled stream never blocks the caller"""

    def __init__(self, stream, name: str):
        self._stream = stream
        self._chunks: List[str] = []
        self._thread = threading.Thread(
            target=self._run, name=f"drain-{name}", daemon=True
        )

    def start(self):
        self._thread.start()

    def _run(self):
        try:
            for line in iter(self._stream.readline, ""):
                self._chunks.append(line)
        except (OSError, ValueError) as e:
            logger.debug("Stream drain stopped: %s", e)
        finally:
            try:
                self._stream.close()
            except OSError:
                pass

    def join(self, timeout: float) -> bool:
        """Wait for EOF; returns False when the drain timed out"""
        self._thread.join(timeout)
        return not self._thread.is_alive()

    @property
    def text(self) -> str:
        return "".join(self._chunks)


class ProcessRunner:
    """Runs shell commands under a timeout and kills them on expiry or shutdown"""

    def __init__(
        self,
        timeout: Optional[float] = None,
        drain_timeout: Optional[float] = None,
        poll_interval: Optional[float] = None,
    ):
        config = get_service_config()
        self.timeout = timeout if timeout is not None else config.build_timeout
        self.drain_timeout = (
            drain_timeout if drain_timeout is not None else config.drain_timeout
        )
        self.poll_interval = (
            poll_interval if poll_interval is not None else config.poll_interval
        )
        self._active: Set[subprocess.Popen] = set()
        self._terminated: Set[int] = set()
        self._lock = threading.Lock()

    @property
    def active_count(self) -> int:
        with self._lock:
            return len(self._active)

    def run(
        self,
        command: str,
        working_directory: str,
        timeout: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ProcessOutput:
        """
        Run ``command`` through the platform interpreter in ``working_directory``.

        Returns the exit code and captured output; a non-zero exit code is
        returned, not raised.

        Raises:
            ProcessSpawnError: the interpreter could not be started
            BuildTimeoutError: the command exceeded ``timeout`` and was killed
            OperationCancelledError: cancelled or terminated at shutdown
        """
        timeout = self.timeout if timeout is None else timeout
        if not command or not command.strip():
            raise ProcessSpawnError("No command to run")
        if not working_directory or not Path(working_directory).is_dir():
            raise ProcessSpawnError(
                f"Working directory does not exist: {working_directory}"
            )
        if cancellation is not None:
            cancellation.raise_if_cancelled("build")

        argv, display = PlatformService.create_shell_command(command)
        logger.info("Running %s in %s (timeout %.0fs)", display, working_directory, timeout)

        start = time.monotonic()
        process = self._spawn(argv, working_directory)
        stdout_drainer = _StreamDrainer(process.stdout, "stdout")
        stderr_drainer = _StreamDrainer(process.stderr, "stderr")
        stdout_drainer.start()
        stderr_drainer.start()

        try:
            self._wait(process, start, timeout, cancellation, stdout_drainer, stderr_drainer)
        finally:
            with self._lock:
                self._active.discard(process)

        drained = self._join_drainers(self.drain_timeout, stdout_drainer, stderr_drainer)
        if not drained:
            logger.warning(
                "Output collection timed out after %.1fs; returning partial output",
                self.drain_timeout,
            )

        output = ProcessOutput(
            exit_code=process.returncode,
            stdout=stdout_drainer.text,
            stderr=stderr_drainer.text,
            duration=time.monotonic() - start,
            drain_timed_out=not drained,
        )
        logger.debug(
            "Command finished with exit code %s in %.2fs", output.exit_code, output.duration
        )
        return output

    async def run_async(
        self,
        command: str,
        working_directory: str,
        timeout: Optional[float] = None,
        cancellation: Optional[CancellationToken] = None,
    ) -> ProcessOutput:
        return await run_in_executor(
            self.run, command, working_directory, timeout, cancellation
        )

    def terminate_all(self):
        """Kill every in-flight process (used at shutdown)"""
        with self._lock:
            processes = list(self._active)
            self._terminated.update(process.pid for process in processes)
        if processes:
            logger.warning("Terminating %d running build process(es)", len(processes))
        for process in processes:
            self._kill(process)

    def _spawn(self, argv: List[str], working_directory: str) -> subprocess.Popen:
        env = os.environ.copy()
        env["PYTHONUNBUFFERED"] = "1"
        env["PYTHONIOENCODING"] = "utf-8"

        kwargs = {}
        if PlatformService.is_windows():
            kwargs["creationflags"] = subprocess.CREATE_NEW_PROCESS_GROUP
        else:
            kwargs["start_new_session"] = True

        try:
            process = subprocess.Popen(
                argv,
                cwd=working_directory,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
                encoding="utf-8",
                errors="replace",
                env=env,
                **kwargs,
            )
        except (FileNotFoundError, PermissionError) as e:
            raise ProcessSpawnError(f"Could not start {argv[0]}: {e}") from e
        except OSError as e:
            raise ProcessSpawnError(f"Failed to spawn build process: {e}") from e

        with self._lock:
            self._active.add(process)
        return process

    def _wait(
        self,
        process: subprocess.Popen,
        start: float,
        timeout: float,
        cancellation: Optional[CancellationToken],
        stdout_drainer: _StreamDrainer,
        stderr_drainer: _StreamDrainer,
    ):
        deadline = start + timeout
        while True:
            try:
                process.wait(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                pass

            if cancellation is not None and cancellation.cancelled:
                self._kill(process)
                raise OperationCancelledError("Build cancelled; process was killed")

            if time.monotonic() >= deadline:
                self._kill(process)
                stdout, stderr = self._partial_output(stdout_drainer, stderr_drainer)
                raise BuildTimeoutError(
                    f"Build process timed out after {timeout:g} seconds",
                    timeout=timeout,
                    stdout=stdout,
                    stderr=stderr,
                )

        with self._lock:
            was_terminated = process.pid in self._terminated
            self._terminated.discard(process.pid)
        if was_terminated:
            raise OperationCancelledError("Build process was terminated during shutdown")

    @staticmethod
    def _join_drainers(timeout: float, *drainers: _StreamDrainer) -> bool:
        """Join every drainer against one shared deadline"""
        deadline = time.monotonic() + timeout
        drained = True
        for drainer in drainers:
            drained = drainer.join(max(0.0, deadline - time.monotonic())) and drained
        return drained

    def _partial_output(
        self, stdout_drainer: _StreamDrainer, stderr_drainer: _StreamDrainer
    ) -> Tuple[str, str]:
        self._join_drainers(min(self.drain_timeout, 1.0), stdout_drainer, stderr_drainer)
        return stdout_drainer.text, stderr_drainer.text

    def _kill(self, process: subprocess.Popen):
        """Kill the process and its children, then reap it"""
        if process.poll() is None:
            try:
                if PlatformService.is_windows():
                    subprocess.run(
                        ["taskkill", "/F", "/T", "/PID", str(process.pid)],
                        capture_output=True,
                        check=False,
                    )
                else:
                    os.killpg(process.pid, signal.SIGKILL)
            except (ProcessLookupError, PermissionError, OSError) as e:
                logger.debug("Process group kill failed (%s); killing process", e)
            try:
                process.kill()
            except OSError:
                pass
        try:
            process.wait(timeout=self.drain_timeout)
        except subprocess.TimeoutExpired:
            logger.error("Process %s did not exit after kill", process.pid)
