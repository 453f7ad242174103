"""
Standardized Async Base Classes and Patterns
Provides consistent async interfaces, result handling and the deployment error taxonomy
"""

import asyncio
import logging
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Generic, TypeVar, Optional, Dict, Any, Callable, List
from contextlib import asynccontextmanager

# Set up logging
logger = logging.getLogger(__name__)

# Generic type for async results
T = TypeVar("T")


@dataclass
class AsyncResult(Generic[T]):
    """Standardized result wrapper for all async operations"""

    success: bool
    data: Optional[T] = None
    error: Optional["AsyncError"] = None
    message: Optional[str] = None
    metadata: Optional[Dict[str, Any]] = None
    partial: bool = False

    @classmethod
    def success_result(
        cls, data: T, message: str = None, metadata: Dict[str, Any] = None
    ) -> "AsyncResult[T]":
        """Create a successful result"""
        return cls(success=True, data=data, message=message, metadata=metadata)

    @classmethod
    def error_result(
        cls, error: "AsyncError", metadata: Dict[str, Any] = None
    ) -> "AsyncResult[T]":
        """Create an error result"""
        return cls(
            success=False, error=error, message=error.message, metadata=metadata
        )

    @classmethod
    def partial_result(
        cls,
        data: T,
        error: "AsyncError",
        message: str = None,
        metadata: Dict[str, Any] = None,
    ) -> "AsyncResult[T]":
        """Create a partial success result (operation completed but with issues)"""
        return cls(
            success=True,
            data=data,
            error=error,
            message=message,
            metadata=metadata,
            partial=True,
        )

    @property
    def is_success(self) -> bool:
        """Check if operation was fully successful"""
        return self.success and not self.partial

    @property
    def is_error(self) -> bool:
        """Check if operation failed"""
        return not self.success

    @property
    def is_partial(self) -> bool:
        """Check if operation partially succeeded"""
        return self.success and self.partial


# Alias used by the services
ServiceResult = AsyncResult


class AsyncError(Exception):
    """Base class for async operation errors"""

    def __init__(
        self, message: str, error_code: str = None, details: Dict[str, Any] = None
    ):
        super().__init__(message)
        self.message = message
        self.error_code = error_code or "UNKNOWN_ERROR"
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """Convert error to dictionary format"""
        return {
            "message": self.message,
            "error_code": self.error_code,
            "details": self.details,
            "type": self.__class__.__name__,
        }


class ValidationError(AsyncError):
    """Error for input validation failures and out-of-order promotions"""

    def __init__(self, message: str, field: str = None, details: Dict[str, Any] = None):
        merged = dict(details or {})
        if field:
            merged["field"] = field
        super().__init__(message, "VALIDATION_ERROR", merged)


class ProcessError(AsyncError):
    """Error for process execution failures"""

    def __init__(
        self,
        message: str,
        return_code: int = None,
        stdout: str = None,
        stderr: str = None,
        error_code: str = None,
    ):
        details = {}
        if return_code is not None:
            details["return_code"] = return_code
        if stdout:
            details["stdout"] = stdout
        if stderr:
            details["stderr"] = stderr

        super().__init__(message, error_code or "PROCESS_ERROR", details)
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr


class BuildError(ProcessError):
    """Build command exited with a non-zero code or could not be started"""

    def __init__(self, message: str, return_code: int = None, stdout: str = None,
                 stderr: str = None, error_code: str = None):
        super().__init__(
            message,
            return_code=return_code,
            stdout=stdout,
            stderr=stderr,
            error_code=error_code or "BUILD_ERROR",
        )


class ProcessSpawnError(BuildError):
    """The command interpreter could not be spawned"""

    def __init__(self, message: str):
        super().__init__(message, error_code="SPAWN_ERROR")


class BuildTimeoutError(ProcessError):
    """A build (or its output draining) exceeded its time bound"""

    def __init__(self, message: str, timeout: float = None, stdout: str = None,
                 stderr: str = None):
        super().__init__(
            message, stdout=stdout, stderr=stderr, error_code="TIMEOUT_ERROR"
        )
        self.timeout = timeout
        if timeout is not None:
            self.details["timeout"] = timeout


class ResourceError(AsyncError):
    """Error for resource access failures (copy, delete, read, write)"""

    def __init__(
        self, message: str, resource_path: str = None, details: Dict[str, Any] = None
    ):
        merged = dict(details or {})
        if resource_path:
            merged["resource_path"] = str(resource_path)
        super().__init__(message, "RESOURCE_ERROR", merged)
        self.resource_path = resource_path


class ConfigFormatError(AsyncError):
    """A configuration file could not be parsed or has no settings section"""

    def __init__(self, message: str, file_path: str = None):
        super().__init__(
            message,
            "CONFIG_FORMAT_ERROR",
            {"file_path": str(file_path)} if file_path else {},
        )
        self.file_path = file_path


class AggregateError(AsyncError):
    """Several independent failures collected from one multi-part operation"""

    def __init__(self, message: str, errors: List[Exception] = None):
        self.errors = list(errors or [])
        super().__init__(
            message,
            "AGGREGATE_ERROR",
            {"errors": [str(error) for error in self.errors]},
        )


class OperationCancelledError(AsyncError):
    """The operation observed a cancellation request and stopped"""

    def __init__(self, message: str = "Operation was cancelled"):
        super().__init__(message, "CANCELLED")


def as_async_error(exc: BaseException, message: str = None) -> AsyncError:
    """Wrap an arbitrary exception into the error taxonomy"""
    if isinstance(exc, AsyncError):
        return exc
    if isinstance(exc, OSError):
        return ResourceError(
            message or str(exc), resource_path=getattr(exc, "filename", None)
        )
    return ProcessError(message or str(exc), error_code="UNEXPECTED_ERROR")


class AsyncServiceContext:
    """Context manager for service operations with timing and logging"""

    def __init__(self, service_name: str, operation_name: str):
        self.service_name = service_name
        self.operation_name = operation_name
        self.start_time = None
        self.logger = logging.getLogger(f"{service_name}.{operation_name}")

    async def __aenter__(self):
        self.start_time = time.time()
        self.logger.debug("Starting %s", self.operation_name)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time if self.start_time else 0

        if exc_type is None:
            self.logger.debug("Completed %s in %.2fs", self.operation_name, duration)
        elif exc_type is asyncio.CancelledError:
            self.logger.info("Cancelled %s after %.2fs", self.operation_name, duration)
        else:
            self.logger.error(
                "Failed %s after %.2fs: %s", self.operation_name, duration, exc_val
            )

        return False  # Don't suppress exceptions


class AsyncServiceInterface(ABC):
    """Base interface for all async services with standardized patterns"""

    def __init__(self, service_name: str):
        self.service_name = service_name
        self.logger = logging.getLogger(service_name)

    @asynccontextmanager
    async def operation_context(self, operation_name: str):
        """Create a context manager for service operations"""
        async with AsyncServiceContext(self.service_name, operation_name) as ctx:
            yield ctx

    @abstractmethod
    async def health_check(self) -> AsyncResult[Dict[str, Any]]:
        """Check service health - must be implemented by all services"""
        pass


class AsyncCommand(ABC):
    """Base class for all async operations triggered by the front end"""

    def __init__(
        self,
        progress_callback: Callable[[str, str], None] = None,
        completion_callback: Callable[[AsyncResult], None] = None,
    ):
        self.progress_callback = progress_callback
        self.completion_callback = completion_callback
        self.logger = logging.getLogger(self.__class__.__name__)

    @abstractmethod
    async def execute(self) -> AsyncResult:
        """Execute the command and return result"""
        pass

    async def run_with_progress(self) -> AsyncResult:
        """Template method with standard progress handling"""
        try:
            self._update_progress("Starting operation...", "info")

            result = await self.execute()

            if self.completion_callback:
                self.completion_callback(result)

            return result
        except Exception as e:
            self.logger.exception(f"Command {self.__class__.__name__} failed")
            error_result = AsyncResult.error_result(
                ProcessError(f"Command failed: {e}", error_code="COMMAND_ERROR")
            )
            if self.completion_callback:
                self.completion_callback(error_result)
            return error_result

    def _update_progress(self, message: str, level: str = "info"):
        """Helper method to update progress"""
        if self.progress_callback:
            self.progress_callback(message, level)


# Export main classes
__all__ = [
    "AsyncResult",
    "ServiceResult",
    "AsyncError",
    "ValidationError",
    "ProcessError",
    "BuildError",
    "ProcessSpawnError",
    "BuildTimeoutError",
    "ResourceError",
    "ConfigFormatError",
    "AggregateError",
    "OperationCancelledError",
    "as_async_error",
    "AsyncServiceInterface",
    "AsyncCommand",
    "AsyncServiceContext",
]
