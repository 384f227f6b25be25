from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from host_tools import git_ops
from host_tools.commands import CommandError, CommandRunner

from vlayer_setup import console, env_store, installer, os_gate, projects, repo_sync
from vlayer_setup.config import SetupConfig

SELECTOR_PROMPT = "Enter project type to set up [default: all]: "
NOTHING_TO_COMMIT = "nothing to commit"


@dataclass(frozen=True)
class RunSummary:
    selector: str
    gate: os_gate.GateOutcome
    tools: list[installer.InstallOutcome] = field(default_factory=list)
    sync: repo_sync.SyncOutcome | None = None
    projects: list[projects.ProjectOutcome] = field(default_factory=list)
    committed: bool = False
    completed: bool = False


def prompt_selector(prompt: Callable[[str], str]) -> str:
    console.info("Available project types: " + ", ".join(projects.selector_choices()))
    answer = prompt(SELECTOR_PROMPT).strip()
    return answer or projects.ALL_SELECTOR


def commit_changes(config: SetupConfig, runner: CommandRunner, *, selector: str) -> bool:
    """Best-effort commit of everything under the workspace."""
    message = f"Setup complete for {selector}"
    try:
        result = git_ops.commit_all(runner, config.root, message=message)
    except CommandError as e:
        console.warn(f"Could not stage changes: {e}")
        return False
    if not result.ok:
        if NOTHING_TO_COMMIT in (result.stdout + result.stderr).lower():
            console.info("No changes to commit.")
        else:
            console.warn(f"git commit failed: {result.message()}")
        return False
    console.info(f"Committed: {message}")
    return True


def run(
    selector: str | None,
    config: SetupConfig,
    runner: CommandRunner,
    *,
    prompt: Callable[[str], str] = input,
    environ: Mapping[str, str] | None = None,
    sleep: Callable[[float], None] = time.sleep,
) -> RunSummary:
    chosen = selector if selector is not None else prompt_selector(prompt)
    # Validate before touching the machine.
    descriptors = projects.resolve_selector(chosen)

    gate = os_gate.ensure_os_version(config, runner, sleep=sleep)
    if gate.status == os_gate.STATUS_REBOOT_SCHEDULED:
        return RunSummary(selector=chosen, gate=gate)

    tools = installer.ensure_all(config, runner, sleep=sleep)

    console.step("Setting up environment file...")
    record = env_store.load_or_create(config, prompt=prompt, environ=environ)
    runner.redact = (*runner.redact, *record.secrets())

    sync = repo_sync.sync(config, runner, preserve=(config.env_file,))
    entry = env_store.ignore_entry_for(config)
    if entry is not None:
        env_store.ensure_ignored(config.root, entry)

    outcomes = [projects.setup_project(d, record, config, runner) for d in descriptors]

    committed = commit_changes(config, runner, selector=chosen)
    console.info(f"All done! vlayer setup complete for {chosen}.")
    return RunSummary(
        selector=chosen,
        gate=gate,
        tools=tools,
        sync=sync,
        projects=outcomes,
        committed=committed,
        completed=True,
    )
