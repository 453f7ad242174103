"""
Tests for async utilities - worker pool, background task manager and shutdown
"""

import os
import sys
import asyncio
import threading
import time
from unittest.mock import Mock, patch
import pytest

# Add parent directory to path to import modules
parent_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if parent_dir not in sys.path:
    sys.path.insert(0, parent_dir)

import utils.async_utils as async_utils
from utils.async_utils import (
    run_in_executor,
    get_executor,
    register_shutdown_hook,
    unregister_shutdown_hook,
    ImprovedAsyncTaskManager,
    shutdown_all,
)


class TestRunInExecutor:
    """Test cases for run_in_executor"""

    @pytest.mark.asyncio
    async def test_run_sync_function(self):
        """Test running synchronous function in executor"""

        def sync_func(x, y):
            return x + y

        result = await run_in_executor(sync_func, 5, 3)
        assert result == 8

    @pytest.mark.asyncio
    async def test_run_with_kwargs(self):
        """Test running function with keyword arguments"""

        def sync_func(a, b=10):
            return a * b

        result = await run_in_executor(sync_func, 5, b=20)
        assert result == 100

    @pytest.mark.asyncio
    async def test_exception_propagation(self):
        """Test that exceptions are propagated properly"""

        def failing_func():
            raise ValueError("Test error")

        with pytest.raises(ValueError, match="Test error"):
            await run_in_executor(failing_func)

    @pytest.mark.asyncio
    async def test_runs_on_worker_thread(self):
        caller = threading.get_ident()
        worker = await run_in_executor(threading.get_ident)
        assert worker != caller

    def test_no_event_loop(self):
        """Awaiting outside a running loop is a RuntimeError"""
        coro = run_in_executor(lambda: "result")
        with pytest.raises(RuntimeError, match="No async event loop"):
            coro.send(None)
        coro.close()

    def test_executor_is_bounded(self):
        from config.config import get_service_config

        executor = get_executor()
        assert executor is get_executor()
        assert executor._max_workers == get_service_config().max_worker_threads


class TestImprovedAsyncTaskManager:
    """Test cases for ImprovedAsyncTaskManager"""

    def setup_method(self):
        """Set up test fixtures"""
        self.task_manager = ImprovedAsyncTaskManager()

    def teardown_method(self):
        """Clean up after tests"""
        if self.task_manager._loop and not self.task_manager._loop.is_closed():
            self.task_manager.shutdown(timeout=1.0)

    def test_initialization(self):
        """Test task manager initialization"""
        assert len(self.task_manager._tasks) == 0
        assert self.task_manager._loop is None
        assert self.task_manager._thread is None
        assert self.task_manager._shutdown_requested is False
        assert self.task_manager.is_running is False

    def test_setup_event_loop(self):
        """Test setting up event loop"""
        self.task_manager.setup_event_loop()

        assert self.task_manager.is_running
        assert self.task_manager._thread is not None
        assert self.task_manager._thread.is_alive()

    def test_setup_event_loop_twice(self):
        """Test that setting up event loop twice doesn't create multiple loops"""
        self.task_manager.setup_event_loop()
        first_loop = self.task_manager._loop
        first_thread = self.task_manager._thread

        self.task_manager.setup_event_loop()

        assert self.task_manager._loop is first_loop
        assert self.task_manager._thread is first_thread

    def test_run_task_starts_loop_lazily(self):
        async def simple_task():
            return "result"

        future = self.task_manager.run_task(simple_task())

        assert future.result(timeout=2.0) == "result"
        assert self.task_manager.is_running

    def test_run_task_with_callback(self):
        """Test running task with callback"""
        callback_called = threading.Event()
        received = {}

        def callback(result, error):
            received["result"] = result
            received["error"] = error
            callback_called.set()

        async def task():
            return "callback_test"

        self.task_manager.run_task(task(), callback=callback, task_name="test_task")

        assert callback_called.wait(timeout=2.0)
        assert received == {"result": "callback_test", "error": None}

    def test_run_task_with_error(self):
        """Test running task that raises exception"""
        callback_called = threading.Event()
        received = {}

        def callback(result, error):
            received["error"] = error
            callback_called.set()

        async def failing_task():
            raise ValueError("Test error")

        self.task_manager.run_task(failing_task(), callback=callback)

        assert callback_called.wait(timeout=2.0)
        assert isinstance(received["error"], ValueError)
        assert str(received["error"]) == "Test error"

    def test_cancel_all_tasks(self):
        """Test cancelling all tasks"""
        self.task_manager.setup_event_loop()

        futures = []
        for i in range(5):

            async def task(n=i):
                await asyncio.sleep(10)
                return n

            futures.append(self.task_manager.run_task(task()))

        time.sleep(0.1)  # Let tasks start
        assert self.task_manager.get_task_count() == 5

        self.task_manager.cancel_all_tasks(timeout=1.0)

        assert self.task_manager.get_task_count() == 0
        assert all(future.done() for future in futures)

    def test_shutdown(self):
        """Test proper shutdown"""
        self.task_manager.setup_event_loop()

        async def long_task():
            await asyncio.sleep(10)

        self.task_manager.run_task(long_task())

        self.task_manager.shutdown(timeout=2.0)

        assert self.task_manager._shutdown_requested
        assert self.task_manager._loop is None
        assert self.task_manager._thread is None

    def test_run_task_after_shutdown_rejected(self):
        self.task_manager.setup_event_loop()
        self.task_manager.shutdown(timeout=1.0)

        async def task():
            return 1

        coro = task()
        with pytest.raises(RuntimeError, match="shutting down"):
            self.task_manager.run_task(coro)
        # The rejected coroutine is closed, not left un-awaited
        assert coro.cr_frame is None


class TestShutdownAll:
    """Test cases for shutdown_all function"""

    def test_shutdown_hooks_run_before_task_manager_stops(self):
        """Hooks run first, then the task manager and the pool are released"""
        calls = []
        hook = Mock(side_effect=lambda: calls.append("hook"))
        fake_manager = Mock()
        fake_manager.shutdown.side_effect = lambda timeout: calls.append("manager")

        register_shutdown_hook(hook)
        try:
            get_executor()
            with patch.object(async_utils, "task_manager", fake_manager):
                shutdown_all(timeout=1.0)
        finally:
            unregister_shutdown_hook(hook)

        assert calls == ["hook", "manager"]
        assert async_utils._executor is None

    def test_failing_hook_does_not_stop_shutdown(self):
        bad_hook = Mock(side_effect=RuntimeError("boom"))
        fake_manager = Mock()

        register_shutdown_hook(bad_hook)
        try:
            with patch.object(async_utils, "task_manager", fake_manager):
                shutdown_all(timeout=1.0)
        finally:
            unregister_shutdown_hook(bad_hook)

        fake_manager.shutdown.assert_called_once()

    def test_hook_registered_once(self):
        hook = Mock()
        register_shutdown_hook(hook)
        register_shutdown_hook(hook)
        try:
            assert async_utils._shutdown_hooks.count(hook) == 1
        finally:
            unregister_shutdown_hook(hook)
        assert hook not in async_utils._shutdown_hooks


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
