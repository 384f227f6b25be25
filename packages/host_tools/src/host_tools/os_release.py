from __future__ import annotations

import re
from pathlib import Path

from packaging.version import InvalidVersion, Version

from host_tools.commands import CommandRunner

OS_RELEASE_PATH = Path("/etc/os-release")

_GLIBC_VERSION_RE = re.compile(r"(\d+\.\d+(?:\.\d+)?)\s*$")
_GLIBC_MISMATCH_RE = re.compile(r"GLIBC_\d+(?:\.\d+)*'? not found", re.IGNORECASE)


def parse_os_release(text: str) -> dict[str, str]:
    out: dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, value = line.split("=", 1)
        value = value.strip()
        if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
            value = value[1:-1]
        out[key.strip()] = value
    return out


def read_release_version(
    runner: CommandRunner,
    *,
    os_release_path: Path = OS_RELEASE_PATH,
) -> str:
    """
    Returns the running distribution's release version (e.g. "24.04").

    `lsb_release -sr` is preferred; `VERSION_ID` from os-release is the fallback.
    """

    result = runner.run(["lsb_release", "-sr"], check=False)
    if result.ok and result.stdout.strip():
        return result.stdout.strip()
    try:
        data = parse_os_release(os_release_path.read_text(encoding="utf-8"))
    except OSError:
        return ""
    return data.get("VERSION_ID", "").strip()


def parse_glibc_version(text: str) -> Version | None:
    lines = [line for line in text.splitlines() if line.strip()]
    if not lines:
        return None
    match = _GLIBC_VERSION_RE.search(lines[0].strip())
    if match is None:
        return None
    try:
        return Version(match.group(1))
    except InvalidVersion:
        return None


def read_glibc_version(runner: CommandRunner) -> Version | None:
    result = runner.run(["ldd", "--version"], check=False)
    if not result.ok:
        return None
    return parse_glibc_version(result.stdout)


def looks_like_glibc_mismatch(text: str) -> bool:
    return _GLIBC_MISMATCH_RE.search(text) is not None
