# Core package: operation dispatch for the front end

from .operation_manager import OperationManager

__all__ = ["OperationManager"]
