from __future__ import annotations

from dataclasses import dataclass
from pathlib import Path
from typing import Any

import yaml

from vlayer_setup.errors import ProfileError

_PROFILES_SCHEMA_VERSION = 1
_PROFILE_KEYS: frozenset[str] = frozenset(
    {
        "chain_name",
        "json_rpc_url",
        "env_file",
        "prove_task",
        "reboot_after_upgrade",
        "prove_failure",
    }
)
PROVE_FAILURE_MODES: tuple[str, ...] = ("fatal", "warn")

DEFAULT_PROFILES_PATH = Path(__file__).resolve().with_name("profiles.yaml")
DEFAULT_REPO_URL = "https://github.com/Gmhax/Vlayer.git"
DEFAULT_WORKSPACE_DIRNAME = "Vlayer"
DEFAULT_ENV_FILENAME = ".env"
DEFAULT_REQUIRED_OS_VERSION = "24.04"
DEFAULT_MIN_GLIBC_VERSION = "2.39"
DEFAULT_RETRY_DELAY_SECONDS = 5.0


@dataclass(frozen=True)
class NetworkProfile:
    name: str
    chain_name: str
    json_rpc_url: str
    env_file: str
    prove_task: str
    reboot_after_upgrade: bool = False
    prove_failure: str = "warn"


@dataclass(frozen=True)
class ProfileCatalog:
    default: str
    profiles: dict[str, NetworkProfile]

    def get(self, name: str | None) -> NetworkProfile:
        key = name or self.default
        profile = self.profiles.get(key)
        if profile is None:
            known = ", ".join(sorted(self.profiles))
            raise ProfileError(f"Unknown network profile {key!r}. Known: {known}.")
        return profile


def _require_str(data: dict[str, Any], key: str, *, where: str) -> str:
    value = data.get(key)
    if not isinstance(value, str) or not value.strip():
        raise ProfileError(f"Expected non-empty string for {key} in {where}.")
    return value.strip()


def _parse_profile(name: str, data: Any, *, path: Path) -> NetworkProfile:
    where = f"{path} (profile {name!r})"
    if not isinstance(data, dict):
        raise ProfileError(f"Expected a mapping for {where}.")
    unknown = set(data) - _PROFILE_KEYS
    if unknown:
        raise ProfileError(f"Unknown keys in {where}: {', '.join(sorted(unknown))}.")

    reboot = data.get("reboot_after_upgrade", False)
    if not isinstance(reboot, bool):
        raise ProfileError(f"Expected boolean for reboot_after_upgrade in {where}.")
    prove_failure = data.get("prove_failure", "warn")
    if prove_failure not in PROVE_FAILURE_MODES:
        raise ProfileError(
            f"prove_failure must be one of {', '.join(PROVE_FAILURE_MODES)} in {where}."
        )

    return NetworkProfile(
        name=name,
        chain_name=_require_str(data, "chain_name", where=where),
        json_rpc_url=_require_str(data, "json_rpc_url", where=where),
        env_file=_require_str(data, "env_file", where=where),
        prove_task=_require_str(data, "prove_task", where=where),
        reboot_after_upgrade=reboot,
        prove_failure=prove_failure,
    )


def load_profiles(path: Path = DEFAULT_PROFILES_PATH) -> ProfileCatalog:
    try:
        raw = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ProfileError(f"Failed to read {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ProfileError(f"Failed to parse YAML in {path}: {e}") from e

    if not isinstance(raw, dict):
        raise ProfileError(f"Expected a YAML mapping in {path}.")
    if raw.get("schema_version") != _PROFILES_SCHEMA_VERSION:
        raise ProfileError(
            f"Unsupported schema_version in {path}: {raw.get('schema_version')!r}"
        )

    profiles_raw = raw.get("profiles")
    if not isinstance(profiles_raw, dict) or not profiles_raw:
        raise ProfileError(f"Expected a non-empty 'profiles' mapping in {path}.")
    profiles = {
        str(name): _parse_profile(str(name), data, path=path)
        for name, data in profiles_raw.items()
    }

    default = raw.get("default")
    if not isinstance(default, str) or default not in profiles:
        raise ProfileError(f"'default' in {path} must name one of the declared profiles.")
    return ProfileCatalog(default=default, profiles=profiles)


@dataclass(frozen=True)
class SetupConfig:
    home: Path
    root: Path
    env_file: Path
    profile: NetworkProfile
    repo_url: str = DEFAULT_REPO_URL
    branch: str = "main"
    required_os_version: str = DEFAULT_REQUIRED_OS_VERSION
    min_glibc_version: str = DEFAULT_MIN_GLIBC_VERSION
    skip_os_gate: bool = False
    reboot_after_upgrade: bool = False
    prove_failure: str = "warn"
    shell_profile: Path | None = None
    retry_delay_seconds: float = DEFAULT_RETRY_DELAY_SECONDS

    @property
    def shell_profile_path(self) -> Path:
        return self.shell_profile if self.shell_profile is not None else self.home / ".bashrc"


def build_config(
    *,
    profile: NetworkProfile,
    home: Path | None = None,
    root: Path | None = None,
    env_file: Path | None = None,
    repo_url: str | None = None,
    required_os_version: str | None = None,
    min_glibc_version: str | None = None,
    skip_os_gate: bool = False,
    reboot_after_upgrade: bool | None = None,
    prove_failure: str | None = None,
    retry_delay_seconds: float | None = None,
) -> SetupConfig:
    """Resolve CLI overrides against the profile's variant defaults."""
    home_dir = (home or Path.home()).expanduser()
    root_dir = (root or home_dir / DEFAULT_WORKSPACE_DIRNAME).expanduser()
    if prove_failure is not None and prove_failure not in PROVE_FAILURE_MODES:
        raise ProfileError(f"prove_failure must be one of {', '.join(PROVE_FAILURE_MODES)}.")
    return SetupConfig(
        home=home_dir,
        root=root_dir,
        env_file=(env_file or root_dir / DEFAULT_ENV_FILENAME).expanduser(),
        profile=profile,
        repo_url=repo_url or DEFAULT_REPO_URL,
        required_os_version=required_os_version or DEFAULT_REQUIRED_OS_VERSION,
        min_glibc_version=min_glibc_version or DEFAULT_MIN_GLIBC_VERSION,
        skip_os_gate=skip_os_gate,
        reboot_after_upgrade=(
            profile.reboot_after_upgrade if reboot_after_upgrade is None else reboot_after_upgrade
        ),
        prove_failure=prove_failure or profile.prove_failure,
        retry_delay_seconds=(
            DEFAULT_RETRY_DELAY_SECONDS if retry_delay_seconds is None else retry_delay_seconds
        ),
    )
