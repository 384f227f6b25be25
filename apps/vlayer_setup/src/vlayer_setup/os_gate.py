from __future__ import annotations

import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from host_tools.commands import CommandRunner
from host_tools.os_release import OS_RELEASE_PATH, read_glibc_version, read_release_version
from packaging.version import InvalidVersion, Version

from vlayer_setup import apt, console
from vlayer_setup.config import SetupConfig
from vlayer_setup.errors import UpgradeFailed

RELEASE_CODENAMES: dict[str, str] = {
    "20.04": "focal",
    "22.04": "jammy",
    "24.04": "noble",
}
CONFLICTING_SOURCE_PATTERNS: tuple[str, ...] = ("git-lfs", "packagecloud.io")
STALE_LOCK_FILES: tuple[str, ...] = (
    "/var/lib/dpkg/lock-frontend",
    "/var/lib/dpkg/lock",
    "/var/lib/apt/lists/lock",
    "/var/cache/apt/archives/lock",
)
DEBCONF_SELECTIONS: tuple[str, ...] = (
    "libc6 libraries/restart-without-asking boolean true",
    "libc6:amd64 libraries/restart-without-asking boolean true",
    "libssl3 libraries/restart-without-asking boolean true",
    "keyboard-configuration keyboard-configuration/layoutcode string us",
)
UPGRADE_TOOLING: tuple[str, ...] = (
    "update-manager-core",
    "python3-apt",
    "ubuntu-release-upgrader-core",
)
DPKG_KEEP_CONFIG_OPTIONS: tuple[str, ...] = (
    "-o",
    "Dpkg::Options::=--force-confdef",
    "-o",
    "Dpkg::Options::=--force-confold",
)
APT_UPDATE_ATTEMPTS = 3

STATUS_CURRENT = "current"
STATUS_UPGRADED = "upgraded"
STATUS_REBOOT_SCHEDULED = "reboot_scheduled"
STATUS_SKIPPED = "skipped"


@dataclass(frozen=True)
class SystemPaths:
    sources_list: Path = Path("/etc/apt/sources.list")
    sources_dir: Path = Path("/etc/apt/sources.list.d")
    release_upgrades: Path = Path("/etc/update-manager/release-upgrades")
    os_release: Path = OS_RELEASE_PATH


@dataclass(frozen=True)
class GateOutcome:
    status: str
    version_before: str
    version_after: str
    glibc_version: str | None = None


def render_sources_list(codename: str) -> str:
    components = "main restricted universe multiverse"
    archive = "http://archive.ubuntu.com/ubuntu"
    security = "http://security.ubuntu.com/ubuntu"
    lines = [
        f"deb {archive} {codename} {components}",
        f"deb {archive} {codename}-updates {components}",
        f"deb {archive} {codename}-backports {components}",
        f"deb {security} {codename}-security {components}",
    ]
    return "\n".join(lines) + "\n"


def find_conflicting_sources(
    sources_dir: Path,
    *,
    patterns: tuple[str, ...] = CONFLICTING_SOURCE_PATTERNS,
) -> list[Path]:
    if not sources_dir.is_dir():
        return []
    out: list[Path] = []
    for path in sorted(sources_dir.iterdir()):
        if not path.is_file():
            continue
        if any(p in path.name for p in patterns):
            out.append(path)
            continue
        try:
            text = path.read_text(encoding="utf-8", errors="replace")
        except OSError:
            continue
        if any(p in text for p in patterns):
            out.append(path)
    return out


def _repair_package_state(runner: CommandRunner) -> None:
    console.info("Repairing package manager state...")
    runner.privileged(["rm", "-f", *STALE_LOCK_FILES])
    runner.privileged(["dpkg", "--configure", "-a"], env=apt.APT_ENV)
    runner.privileged(["apt-get", "install", "-f", "-y"], env=apt.APT_ENV)
    runner.privileged(["apt-get", "clean"])


def _strip_conflicting_sources(runner: CommandRunner, *, paths: SystemPaths) -> None:
    conflicting = find_conflicting_sources(paths.sources_dir)
    if conflicting:
        console.info("Removing conflicting package sources: " + ", ".join(map(str, conflicting)))
        runner.privileged(["rm", "-f", *(str(p) for p in conflicting)])
    if paths.sources_list.exists():
        for pattern in CONFLICTING_SOURCE_PATTERNS:
            runner.privileged(["sed", "-i", f"\\|{pattern}|d", str(paths.sources_list)])


def _write_root_file(runner: CommandRunner, path: Path, content: str) -> None:
    runner.privileged(["mkdir", "-p", str(path.parent)])
    runner.privileged(["tee", str(path)], input_text=content)


def _preseed_debconf(runner: CommandRunner) -> None:
    runner.privileged(["debconf-set-selections"], input_text="\n".join(DEBCONF_SELECTIONS) + "\n")


def _release_upgrade(runner: CommandRunner) -> None:
    console.info("Running release upgrade...")
    result = runner.privileged(
        ["do-release-upgrade", "-f", "DistUpgradeViewNonInteractive"],
        env=apt.APT_ENV,
        check=False,
        stream=True,
    )
    if result.ok:
        return
    console.warn(f"do-release-upgrade failed ({result.message()}); falling back to full-upgrade.")
    runner.privileged(
        ["apt-get", *DPKG_KEEP_CONFIG_OPTIONS, "full-upgrade", "-y"],
        env=apt.APT_ENV,
        stream=True,
    )


def ensure_glibc(config: SetupConfig, runner: CommandRunner) -> str | None:
    """
    Verify the system C library meets `config.min_glibc_version`.

    A too-old library is reinstalled once; if it is still too old the gate fails.
    An undetectable version only warns.
    """

    try:
        minimum = Version(config.min_glibc_version)
    except InvalidVersion as e:
        raise UpgradeFailed(f"Invalid minimum glibc version: {config.min_glibc_version!r}") from e

    current = read_glibc_version(runner)
    if current is None:
        console.warn("Could not determine the glibc version; continuing.")
        return None
    if current >= minimum:
        return str(current)

    console.warn(f"glibc {current} is older than {minimum}; reinstalling.")
    apt.reinstall_libc(runner)
    current = read_glibc_version(runner)
    if current is None or current < minimum:
        raise UpgradeFailed(
            f"glibc is still older than {minimum} after reinstall (found {current}).",
            details={"glibc_version": str(current) if current else None},
        )
    return str(current)


def ensure_os_version(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    paths: SystemPaths = SystemPaths(),
    sleep: Callable[[float], None] = time.sleep,
) -> GateOutcome:
    required = config.required_os_version
    if config.skip_os_gate:
        console.info("Skipping OS version check.")
        return GateOutcome(status=STATUS_SKIPPED, version_before="", version_after="")

    console.step("Checking OS version...")
    before = read_release_version(runner, os_release_path=paths.os_release)
    if before == required:
        console.info(f"OS is already at {required}.")
        glibc = ensure_glibc(config, runner)
        return GateOutcome(
            status=STATUS_CURRENT,
            version_before=before,
            version_after=before,
            glibc_version=glibc,
        )

    codename = RELEASE_CODENAMES.get(required)
    if codename is None:
        raise UpgradeFailed(f"No known release codename for target version {required!r}.")

    console.step(f"Upgrading OS from {before or 'unknown'} to {required} ({codename})...")
    _repair_package_state(runner)
    _strip_conflicting_sources(runner, paths=paths)
    _write_root_file(runner, paths.sources_list, render_sources_list(codename))
    apt.update(
        runner,
        attempts=APT_UPDATE_ATTEMPTS,
        delay_seconds=config.retry_delay_seconds,
        fix_missing=True,
        sleep=sleep,
    )
    _preseed_debconf(runner)
    apt.install(runner, UPGRADE_TOOLING)
    _write_root_file(runner, paths.release_upgrades, "[DEFAULT]\nPrompt=lts\n")
    _release_upgrade(runner)

    if config.reboot_after_upgrade:
        console.info("Upgrade finished; rebooting. Re-run this setup after the restart.")
        runner.privileged(["reboot"])
        return GateOutcome(status=STATUS_REBOOT_SCHEDULED, version_before=before, version_after="")

    after = read_release_version(runner, os_release_path=paths.os_release)
    if after != required:
        raise UpgradeFailed(
            f"OS version is {after or 'unknown'} after upgrade; expected {required}.",
            details={"version_before": before, "version_after": after},
        )
    glibc = ensure_glibc(config, runner)
    console.info(f"OS upgraded to {after}.")
    return GateOutcome(
        status=STATUS_UPGRADED,
        version_before=before,
        version_after=after,
        glibc_version=glibc,
    )
