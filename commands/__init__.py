"""
Command Modules
Async commands run by the operation manager on behalf of the front end
"""

from .deployment_commands import (
    BuildAndDeployCommand,
    PromoteCommand,
    RemoveDeploymentCommand,
    RefreshStatusCommand,
)

__all__ = [
    "BuildAndDeployCommand",
    "PromoteCommand",
    "RemoveDeploymentCommand",
    "RefreshStatusCommand",
]
