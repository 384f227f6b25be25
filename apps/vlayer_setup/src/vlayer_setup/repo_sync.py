from __future__ import annotations

import shutil
from collections.abc import Iterable
from dataclasses import dataclass
from pathlib import Path

from host_tools import git_ops
from host_tools.commands import CommandRunner

from vlayer_setup import console
from vlayer_setup.config import SetupConfig

STATUS_PULLED = "pulled"
STATUS_PULL_FAILED = "pull_failed"
STATUS_CLONED = "cloned"


@dataclass(frozen=True)
class SyncOutcome:
    status: str
    path: Path
    message: str = ""


def _stash_files(local_path: Path, preserve: Iterable[Path]) -> dict[Path, bytes]:
    saved: dict[Path, bytes] = {}
    for path in preserve:
        try:
            path.relative_to(local_path)
        except ValueError:
            continue
        if path.is_file():
            saved[path] = path.read_bytes()
    return saved


def _restore_files(saved: dict[Path, bytes]) -> None:
    for path, data in saved.items():
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)


def _remove_leftover(path: Path) -> None:
    if path.is_dir() and not path.is_symlink():
        shutil.rmtree(path)
    elif path.exists() or path.is_symlink():
        path.unlink()


def sync(
    config: SetupConfig,
    runner: CommandRunner,
    *,
    preserve: Iterable[Path] = (),
) -> SyncOutcome:
    """
    Make `config.root` a checkout of `config.repo_url`.

    An existing checkout is pulled and never removed, even if the pull fails.
    Anything else at the path is replaced by a fresh clone; files listed in
    `preserve` survive the replacement.
    """

    local_path = config.root
    console.step("Setting up repository...")
    if git_ops.is_checkout(local_path):
        console.info("Repository already exists. Pulling latest changes...")
        result = git_ops.pull(runner, local_path, branch=config.branch)
        if not result.ok:
            console.warn(f"git pull failed; continuing with the local copy: {result.message()}")
            return SyncOutcome(status=STATUS_PULL_FAILED, path=local_path, message=result.message())
        return SyncOutcome(status=STATUS_PULLED, path=local_path)

    saved = _stash_files(local_path, preserve)
    if local_path.exists() or local_path.is_symlink():
        console.info(f"Removing non-repository leftovers at {local_path}...")
        _remove_leftover(local_path)
    console.info("Cloning repository...")
    try:
        git_ops.clone(runner, url=config.repo_url, dest=local_path)
    finally:
        _restore_files(saved)
    console.info("Repository ready.")
    return SyncOutcome(status=STATUS_CLONED, path=local_path)
