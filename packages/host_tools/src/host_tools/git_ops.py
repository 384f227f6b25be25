from __future__ import annotations

from pathlib import Path

from host_tools.commands import CommandResult, CommandRunner


def is_checkout(path: Path) -> bool:
    return (path / ".git").is_dir()


def clone(runner: CommandRunner, *, url: str, dest: Path) -> None:
    dest.parent.mkdir(parents=True, exist_ok=True)
    runner.run(["git", "clone", url, str(dest)], check=True)


def pull(
    runner: CommandRunner,
    repo_dir: Path,
    *,
    remote: str = "origin",
    branch: str = "main",
) -> CommandResult:
    return runner.run(["git", "-C", str(repo_dir), "pull", remote, branch], check=False)


def status_porcelain(runner: CommandRunner, repo_dir: Path) -> str:
    result = runner.run(["git", "-C", str(repo_dir), "status", "--porcelain"], check=True)
    return result.stdout


def commit_all(runner: CommandRunner, repo_dir: Path, *, message: str) -> CommandResult:
    """Stage everything and commit. The commit result is returned unchecked."""
    runner.run(["git", "-C", str(repo_dir), "add", "."], check=True)
    return runner.run(
        ["git", "-C", str(repo_dir), "commit", "--no-gpg-sign", "-m", message],
        check=False,
    )
