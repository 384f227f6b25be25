from __future__ import annotations

import time
from collections.abc import Callable, Sequence

from host_tools.commands import CommandError, CommandResult, CommandRunner
from host_tools.retry import retry_call

from vlayer_setup import console

APT_ENV: dict[str, str] = {"DEBIAN_FRONTEND": "noninteractive"}
LIBC_PACKAGE = "libc6"


def update(
    runner: CommandRunner,
    *,
    attempts: int,
    delay_seconds: float,
    fix_missing: bool = False,
    sleep: Callable[[float], None] = time.sleep,
) -> CommandResult:
    argv = ["apt-get", "update"]
    if fix_missing:
        argv.append("--fix-missing")

    def _on_retry(attempt: int, exc: BaseException) -> None:
        console.warn(f"apt-get update failed (attempt {attempt}/{attempts}), retrying: {exc}")

    return retry_call(
        lambda: runner.privileged(argv, env=APT_ENV),
        attempts=attempts,
        delay_seconds=delay_seconds,
        retry_on=(CommandError,),
        sleep=sleep,
        on_retry=_on_retry,
    )


def install(
    runner: CommandRunner,
    packages: Sequence[str],
    *,
    reinstall: bool = False,
    check: bool = True,
) -> CommandResult:
    argv = ["apt-get", "install", "-y"]
    if reinstall:
        argv.append("--reinstall")
    return runner.privileged([*argv, *packages], env=APT_ENV, check=check, stream=True)


def reinstall_libc(runner: CommandRunner) -> None:
    """Reinstall the C library package and refresh the linker cache."""
    console.info(f"Reinstalling {LIBC_PACKAGE}...")
    install(runner, [LIBC_PACKAGE], reinstall=True)
    runner.privileged(["ldconfig"])
