from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from host_tools.commands import CommandRunner

from vlayer_setup import console
from vlayer_setup.config import SetupConfig
from vlayer_setup.env_store import EnvironmentRecord, write_env_file
from vlayer_setup.errors import InvalidSelector

ALL_SELECTOR = "all"
BUILD_MANIFEST = "foundry.toml"
RUNTIME_SUBDIR = "vlayer"


@dataclass(frozen=True)
class ProjectDescriptor:
    key: str
    directory: str
    template: str
    display_name: str


PROJECTS: tuple[ProjectDescriptor, ...] = (
    ProjectDescriptor("email-proof", "my-email-proof", "simple-email-proof", "Email Proof"),
    ProjectDescriptor("teleport", "my-simple-teleport", "simple-teleport", "Teleport"),
    ProjectDescriptor("time-travel", "my-simple-time-travel", "simple-time-travel", "Time Travel"),
    ProjectDescriptor("web-proof", "my-simple-web-proof", "simple-web-proof", "Web Proof"),
)


def selector_choices() -> list[str]:
    return [ALL_SELECTOR, *(p.key for p in PROJECTS)]


def resolve_selector(value: str) -> tuple[ProjectDescriptor, ...]:
    selector = value.strip()
    if selector == ALL_SELECTOR:
        return PROJECTS
    for project in PROJECTS:
        if project.key == selector:
            return (project,)
    raise InvalidSelector(value, choices=selector_choices())


@dataclass(frozen=True)
class ProjectOutcome:
    key: str
    path: Path
    scaffolded: bool
    env_file: Path
    prove_status: str  # "passed" | "failed" | "skipped"


def _read_package_scripts(runtime_dir: Path) -> dict[str, Any]:
    manifest = runtime_dir / "package.json"
    try:
        data = json.loads(manifest.read_text(encoding="utf-8"))
    except FileNotFoundError:
        return {}
    except (OSError, json.JSONDecodeError) as e:
        console.warn(f"Could not read {manifest}: {e}")
        return {}
    scripts = data.get("scripts") if isinstance(data, dict) else None
    return scripts if isinstance(scripts, dict) else {}


def has_task(runtime_dir: Path, task: str) -> bool:
    return task in _read_package_scripts(runtime_dir)


def setup_project(
    descriptor: ProjectDescriptor,
    record: EnvironmentRecord,
    config: SetupConfig,
    runner: CommandRunner,
) -> ProjectOutcome:
    """
    Scaffold, build and prove one example project under `config.root`.

    Every command runs with an explicit `cwd`; the process working directory
    is left untouched.
    """

    profile = config.profile
    project_dir = config.root / descriptor.directory
    console.step(f"Setting up {descriptor.display_name}...")
    project_dir.mkdir(parents=True, exist_ok=True)

    scaffolded = False
    if not (project_dir / BUILD_MANIFEST).exists():
        console.info(f"Initializing vlayer project with template {descriptor.template}...")
        runner.run(
            ["vlayer", "init", "--template", descriptor.template], cwd=project_dir, stream=True
        )
        scaffolded = True
    else:
        console.info(f"vlayer project already initialized in {descriptor.directory}.")

    console.info("Building project...")
    runner.run(["forge", "build"], cwd=project_dir, stream=True)

    runtime_dir = project_dir / RUNTIME_SUBDIR
    console.info("Installing Bun dependencies...")
    runner.run(["bun", "install"], cwd=runtime_dir, stream=True)
    trust = runner.run(["bun", "pm", "trust", "--all"], cwd=runtime_dir, check=False)
    if not trust.ok:
        console.warn(f"bun pm trust failed for {descriptor.display_name}: {trust.message()}")

    env_path = runtime_dir / profile.env_file
    write_env_file(env_path, record)
    console.info(f"Wrote {env_path}.")

    prove_status = "skipped"
    if not has_task(runtime_dir, profile.prove_task):
        console.warn(
            f"No {profile.prove_task!r} task in {runtime_dir / 'package.json'}; skipping prove."
        )
    else:
        console.info(f"Running {profile.prove_task} for {descriptor.display_name}...")
        prove_check = config.prove_failure == "fatal"
        result = runner.run(
            ["bun", "run", profile.prove_task], cwd=runtime_dir, check=prove_check, stream=True
        )
        if result.ok:
            prove_status = "passed"
        else:
            prove_status = "failed"
            console.warn(
                f"{profile.prove_task} failed for {descriptor.display_name}: {result.message()}"
            )

    console.info(f"{descriptor.display_name} setup complete.")
    return ProjectOutcome(
        key=descriptor.key,
        path=project_dir,
        scaffolded=scaffolded,
        env_file=env_path,
        prove_status=prove_status,
    )
