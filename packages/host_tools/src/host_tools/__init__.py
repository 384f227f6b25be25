from host_tools.commands import CommandError, CommandResult, CommandRunner
from host_tools.retry import retry_call

__all__ = [
    "CommandError",
    "CommandResult",
    "CommandRunner",
    "retry_call",
]
