from __future__ import annotations

from typing import Any


class SetupError(RuntimeError):
    code = "setup_error"

    def __init__(
        self,
        message: str,
        *,
        code: str | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        super().__init__(message)
        if code is not None:
            self.code = code
        self.details = details or {}


class ConfigIncomplete(SetupError):
    code = "config_incomplete"

    def __init__(self, missing: list[str], *, env_file: str) -> None:
        super().__init__(
            f"Required variables are not set: {', '.join(missing)}. "
            f"Check {env_file} or your inputs.",
            details={"missing": list(missing), "env_file": env_file},
        )
        self.missing = list(missing)


class ToolInstallFailed(SetupError):
    code = "tool_install_failed"

    def __init__(self, tool: str, *, attempts: int, manual_commands: list[str]) -> None:
        super().__init__(
            f"Failed to install {tool} after {attempts} attempt(s).",
            details={"tool": tool, "attempts": attempts},
        )
        self.tool = tool
        self.manual_commands = list(manual_commands)


class UpgradeFailed(SetupError):
    code = "upgrade_failed"


class InvalidSelector(SetupError):
    code = "invalid_selector"

    def __init__(self, selector: str, *, choices: list[str]) -> None:
        super().__init__(
            f"Invalid project type {selector!r}. Use: {', '.join(choices)}",
            details={"selector": selector, "choices": list(choices)},
        )
        self.selector = selector


class ProfileError(SetupError):
    code = "invalid_profile"
