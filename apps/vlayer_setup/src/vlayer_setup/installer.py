from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from host_tools.commands import CommandError, CommandRunner
from host_tools.os_release import looks_like_glibc_mismatch
from host_tools.retry import retry_call

from vlayer_setup import apt, console
from vlayer_setup.config import SetupConfig
from vlayer_setup.errors import ToolInstallFailed

SYSTEM_PACKAGES: tuple[str, ...] = ("git", "curl", "unzip", "build-essential")
SYSTEM_PROBE_BINARIES: tuple[str, ...] = ("git", "curl", "unzip", "make", "gcc")
APT_UPDATE_ATTEMPTS = 3


@dataclass(frozen=True)
class ToolSpec:
    binary: str
    display_name: str
    install_script: str
    install_subdir: str
    attempts: int
    post_install: tuple[str, ...] = ()
    version_args: tuple[str, ...] = ("--version",)

    def install_dir(self, home: Path) -> Path:
        return home / self.install_subdir

    def manual_commands(self) -> list[str]:
        return [
            self.install_script,
            _path_export_line(f"$HOME/{self.install_subdir}"),
            *self.post_install,
            f"{self.binary} {' '.join(self.version_args)}".strip(),
        ]


FOUNDRY = ToolSpec(
    binary="forge",
    display_name="Foundry",
    install_script="curl -L https://foundry.paradigm.xyz | bash",
    install_subdir=".foundry/bin",
    attempts=3,
    post_install=("foundryup",),
)
BUN = ToolSpec(
    binary="bun",
    display_name="Bun",
    install_script="curl -fsSL https://bun.sh/install | bash",
    install_subdir=".bun/bin",
    attempts=3,
)
VLAYER = ToolSpec(
    binary="vlayer",
    display_name="vlayer CLI",
    install_script="curl -SL https://install.vlayer.xyz | bash",
    install_subdir=".vlayer/bin",
    attempts=2,
    post_install=("vlayerup",),
)

TOOLS: tuple[ToolSpec, ...] = (FOUNDRY, BUN, VLAYER)


@dataclass(frozen=True)
class InstallOutcome:
    tool: str
    installed: bool
    path: str
    attempts: int


class ToolNotReady(RuntimeError):
    pass


def _path_export_line(directory: str) -> str:
    return f'export PATH="{directory}:$PATH"'


def _profile_dir_text(directory: Path, *, home: Path) -> str:
    try:
        return "$HOME/" + directory.relative_to(home).as_posix()
    except ValueError:
        return str(directory)


def persist_path_export(profile_path: Path, directory: Path, *, home: Path) -> bool:
    """Append a PATH export for `directory` to the shell profile once. Returns True if written."""
    line = _path_export_line(_profile_dir_text(directory, home=home))
    existing = profile_path.read_text(encoding="utf-8") if profile_path.exists() else ""
    if line in {raw.strip() for raw in existing.splitlines()}:
        return False
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    profile_path.parent.mkdir(parents=True, exist_ok=True)
    with profile_path.open("a", encoding="utf-8", newline="\n") as f:
        f.write(f"{prefix}{line}\n")
    return True


def ensure_system_packages(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    missing = [name for name in SYSTEM_PROBE_BINARIES if runner.which(name) is None]
    if not missing:
        console.info("Core system packages already installed.")
        return False
    console.step(f"Installing core system packages (missing: {', '.join(missing)})...")
    apt.update(
        runner,
        attempts=APT_UPDATE_ATTEMPTS,
        delay_seconds=config.retry_delay_seconds,
        sleep=sleep,
    )
    apt.install(runner, SYSTEM_PACKAGES)
    return True


def _verify(spec: ToolSpec, runner: CommandRunner) -> str:
    resolved = runner.which(spec.binary)
    if resolved is None:
        raise ToolNotReady(f"{spec.binary} is not on PATH after install")

    probe = runner.run([resolved, *spec.version_args], check=False)
    if probe.ok:
        return resolved
    if looks_like_glibc_mismatch(probe.stderr + "\n" + probe.stdout):
        console.warn(f"{spec.binary} needs a newer system C library; repairing it.")
        apt.reinstall_libc(runner)
        probe = runner.run([resolved, *spec.version_args], check=False)
        if probe.ok:
            return resolved
    raise ToolNotReady(f"{spec.binary} {' '.join(spec.version_args)} failed: {probe.message()}")


def _run_post_install(tool: str, *, install_dir: Path, runner: CommandRunner) -> None:
    resolved = runner.which(tool) or str(install_dir / tool)
    runner.run([resolved], stream=True)


def ensure_installed(
    spec: ToolSpec,
    config: SetupConfig,
    runner: CommandRunner,
    *,
    sleep: Callable[[float], None] = time.sleep,
) -> InstallOutcome:
    install_dir = spec.install_dir(config.home)
    resolved = runner.which(spec.binary)
    if resolved is not None:
        console.info(f"{spec.display_name} already installed ({resolved}).")
        return InstallOutcome(tool=spec.binary, installed=False, path=resolved, attempts=0)

    console.step(f"Installing {spec.display_name}...")
    attempts_made = 0

    def _attempt() -> str:
        nonlocal attempts_made
        attempts_made += 1
        runner.shell(spec.install_script, stream=True)
        # Installers only edit shell profiles; make the binary visible to this run too.
        runner.prepend_path(install_dir)
        persist_path_export(config.shell_profile_path, install_dir, home=config.home)
        for tool in spec.post_install:
            _run_post_install(tool, install_dir=install_dir, runner=runner)
        return _verify(spec, runner)

    def _on_retry(attempt: int, exc: BaseException) -> None:
        console.warn(
            f"{spec.display_name} install attempt {attempt}/{spec.attempts} failed: {exc}"
        )

    try:
        path = retry_call(
            _attempt,
            attempts=spec.attempts,
            delay_seconds=config.retry_delay_seconds,
            retry_on=(CommandError, ToolNotReady),
            sleep=sleep,
            on_retry=_on_retry,
        )
    except (CommandError, ToolNotReady) as e:
        console.error(f"{spec.display_name} installation failed: {e}")
        console.error("Install it manually with:")
        for command in spec.manual_commands():
            console.error(f"  {command}")
        raise ToolInstallFailed(
            spec.binary,
            attempts=attempts_made,
            manual_commands=spec.manual_commands(),
        ) from e

    console.info(f"{spec.display_name} installed ({path}).")
    return InstallOutcome(tool=spec.binary, installed=True, path=path, attempts=attempts_made)


def ensure_all(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    tools: tuple[ToolSpec, ...] = TOOLS,
    sleep: Callable[[float], None] = time.sleep,
) -> list[InstallOutcome]:
    ensure_system_packages(config, runner, sleep=sleep)
    return [ensure_installed(spec, config, runner, sleep=sleep) for spec in tools]
