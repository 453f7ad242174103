"""
Async utilities for Devotter - bounded worker pool and background task manager
"""

import asyncio
import threading
import time
import logging
from typing import Callable, Any, Optional, Set, List
from concurrent.futures import ThreadPoolExecutor
import functools

from config.config import get_service_config

# Set up logging
logger = logging.getLogger(__name__)

# Shared bounded thread pool for blocking filesystem and process work
_executor: Optional[ThreadPoolExecutor] = None
_executor_lock = threading.Lock()

# Callables run by shutdown_all before the loop and pool are torn down
_shutdown_hooks: List[Callable[[], None]] = []


def get_executor() -> ThreadPoolExecutor:
    """Return the shared worker pool, creating it on first use"""
    global _executor
    with _executor_lock:
        if _executor is None:
            _executor = ThreadPoolExecutor(
                max_workers=get_service_config().max_worker_threads,
                thread_name_prefix="async_worker",
            )
        return _executor


async def run_in_executor(func: Callable, *args, **kwargs) -> Any:
    """
    Run a synchronous function in the thread pool executor

    Raises:
        RuntimeError: If no event loop is running
    """
    try:
        # Get the currently running event loop - fail fast if none exists
        loop = asyncio.get_running_loop()
    except RuntimeError as e:
        logger.error("No event loop available for run_in_executor")
        raise RuntimeError("No async event loop available") from e

    bound_func = functools.partial(func, *args, **kwargs)
    return await loop.run_in_executor(get_executor(), bound_func)


def register_shutdown_hook(hook: Callable[[], None]):
    """Register a callable to run when shutdown_all is invoked"""
    if hook not in _shutdown_hooks:
        _shutdown_hooks.append(hook)


def unregister_shutdown_hook(hook: Callable[[], None]):
    if hook in _shutdown_hooks:
        _shutdown_hooks.remove(hook)


class ImprovedAsyncTaskManager:
    """
    Task manager running coroutines on a background event loop thread
    - Keeps the calling (front-end) thread responsive
    - Tracks task lifecycle for cancellation at shutdown
    """

    def __init__(self):
        self._tasks: Set[asyncio.Future] = set()
        self._loop: Optional[asyncio.AbstractEventLoop] = None
        self._thread: Optional[threading.Thread] = None
        self._shutdown_requested = False
        self._loop_ready = threading.Event()  # Synchronization for loop startup

    @property
    def is_running(self) -> bool:
        return self._loop is not None and not self._loop.is_closed()

    def setup_event_loop(self):
        """Setup event loop in background thread with improved error handling"""
        if self._shutdown_requested or self._thread is not None:
            return

        def run_event_loop():
            """Run the event loop in a background thread"""
            try:
                # Create new event loop for this thread
                self._loop = asyncio.new_event_loop()
                asyncio.set_event_loop(self._loop)

                # Set exception handler for better error reporting
                def handle_exception(loop, context):
                    exception = context.get("exception")
                    task = context.get("task")

                    if exception:
                        if isinstance(exception, asyncio.CancelledError):
                            logger.debug(
                                "Task cancelled: %s",
                                task.get_name() if task else "unknown",
                            )
                        else:
                            logger.error(
                                "Async task exception: %s",
                                exception,
                                exc_info=exception,
                            )
                    else:
                        logger.error(
                            "Async task error: %s", context.get("message", "Unknown")
                        )

                self._loop.set_exception_handler(handle_exception)

                # Signal that the loop is ready
                self._loop_ready.set()

                logger.info("Async event loop thread started")
                self._loop.run_forever()

            except Exception:
                logger.exception("Critical error in event loop thread")
                self._loop_ready.set()  # Signal even on error to prevent deadlock
            finally:
                if self._loop and not self._loop.is_closed():
                    try:
                        pending = asyncio.all_tasks(self._loop)
                        if pending:
                            logger.info("Cancelling %d pending tasks", len(pending))
                            for task in pending:
                                task.cancel()

                        self._loop.close()
                    except Exception as e:
                        logger.error("Error during loop cleanup: %s", e)

                logger.info("Async event loop thread ended")

        # Start the event loop thread
        self._thread = threading.Thread(
            target=run_event_loop, daemon=True, name="AsyncEventLoop"
        )
        self._thread.start()

        # Wait for the loop to be ready (with timeout)
        if not self._loop_ready.wait(timeout=5.0):
            raise RuntimeError("Failed to start async event loop within timeout")

        if self._loop is None:
            raise RuntimeError("Failed to create async event loop")

        logger.debug("Async event loop setup complete")

    def run_task(
        self, coro, callback: Optional[Callable] = None, task_name: Optional[str] = None
    ) -> asyncio.Future:
        """
        Run an async task in the background thread

        Args:
            coro: Coroutine to run
            callback: Optional callback function called with (result, error)
            task_name: Optional name for the task (for debugging)

        Returns:
            concurrent.futures.Future representing the task

        Raises:
            RuntimeError: If task manager is shutting down or not set up
        """
        if self._shutdown_requested:
            coro.close()
            raise RuntimeError("Task manager is shutting down")

        if not self._loop or self._loop.is_closed():
            self.setup_event_loop()

        if not self._loop or self._loop.is_closed():
            coro.close()
            raise RuntimeError("Event loop is not available")

        async def wrapped_coro():
            try:
                return await coro
            except asyncio.CancelledError:
                logger.debug("Task cancelled: %s", task_name or "unnamed")
                raise
            except Exception as e:
                logger.exception("Error in task %s: %s", task_name or "unnamed", e)
                raise

        future = asyncio.run_coroutine_threadsafe(wrapped_coro(), self._loop)
        self._tasks.add(future)

        def cleanup_and_callback(completed_future):
            """Handle task completion with proper cleanup"""
            self._tasks.discard(completed_future)

            if callback:
                try:
                    if completed_future.cancelled():
                        callback(None, asyncio.CancelledError("Task was cancelled"))
                    else:
                        error = completed_future.exception()
                        if error is not None:
                            callback(None, error)
                        else:
                            callback(completed_future.result(), None)
                except Exception:
                    logger.exception(
                        "Error in task callback for %s", task_name or "unnamed"
                    )

        future.add_done_callback(cleanup_and_callback)
        return future

    def cancel_all_tasks(self, timeout: float = 5.0):
        """Cancel all running tasks with timeout"""
        if not self._tasks:
            return

        logger.info("Cancelling %d tasks", len(self._tasks))

        cancelled_tasks = []
        for task in self._tasks.copy():
            if not task.done():
                task.cancel()
                cancelled_tasks.append(task)

        # Wait for cancellation to complete (with timeout)
        if cancelled_tasks:
            start_time = time.time()
            while cancelled_tasks and (time.time() - start_time) < timeout:
                cancelled_tasks = [task for task in cancelled_tasks if not task.done()]
                if cancelled_tasks:
                    time.sleep(0.1)

            if cancelled_tasks:
                logger.warning(
                    "%d tasks did not cancel within timeout", len(cancelled_tasks)
                )

        self._tasks.clear()

    def get_task_count(self) -> int:
        """Get current number of tracked tasks"""
        completed = {task for task in self._tasks if task.done()}
        self._tasks -= completed
        return len(self._tasks)

    def shutdown(self, timeout: float = 5.0):
        """
        Shutdown the task manager with proper cleanup and timeout
        """
        logger.info("Shutting down async task manager")
        self._shutdown_requested = True

        self.cancel_all_tasks(timeout=timeout / 2)

        if self._loop and not self._loop.is_closed():
            try:
                self._loop.call_soon_threadsafe(self._loop.stop)
            except RuntimeError as e:
                logger.debug("Event loop already stopped: %s", e)

        if self._thread and self._thread.is_alive():
            self._thread.join(timeout=timeout)

            if self._thread.is_alive():
                logger.warning(
                    "Event loop thread did not shut down cleanly within %fs", timeout
                )

        self._loop = None
        self._thread = None
        self._loop_ready.clear()


# Global task manager instance
task_manager = ImprovedAsyncTaskManager()


def shutdown_all(timeout: float = 5.0):
    """Shutdown all async resources with timeout"""
    global _executor
    logger.info("Shutting down all async resources")

    for hook in list(_shutdown_hooks):
        try:
            hook()
        except Exception:
            logger.exception("Shutdown hook failed")

    task_manager.shutdown(timeout=timeout)

    with _executor_lock:
        if _executor is not None:
            _executor.shutdown(wait=False)
            _executor = None
