from __future__ import annotations

import os
import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from vlayer_setup import console
from vlayer_setup.config import SetupConfig
from vlayer_setup.errors import ConfigIncomplete

API_TOKEN_KEY = "VLAYER_API_TOKEN"
PRIVATE_KEY_KEY = "EXAMPLES_TEST_PRIVATE_KEY"
CHAIN_NAME_KEY = "CHAIN_NAME"
RPC_URL_KEY = "JSON_RPC_URL"

REQUIRED_KEYS: tuple[str, ...] = (API_TOKEN_KEY, PRIVATE_KEY_KEY, CHAIN_NAME_KEY, RPC_URL_KEY)
CREDENTIAL_PROMPTS: tuple[tuple[str, str], ...] = (
    (API_TOKEN_KEY, "Enter your vLayer API token: "),
    (PRIVATE_KEY_KEY, "Enter your test private key (e.g., 0x...): "),
)

ENV_FILE_MODE = 0o600
# Values matching this read back unchanged through dotenv without quoting.
_BARE_VALUE = re.compile(r"[\w./:@+,=-]*")


def _quote_value(value: str) -> str:
    if _BARE_VALUE.fullmatch(value):
        return value
    escaped = value.replace("\\", "\\\\").replace("'", "\\'")
    return f"'{escaped}'"


@dataclass(frozen=True)
class EnvironmentRecord:
    api_token: str
    private_key: str
    chain_name: str
    json_rpc_url: str

    def as_env(self) -> dict[str, str]:
        return {
            API_TOKEN_KEY: self.api_token,
            PRIVATE_KEY_KEY: self.private_key,
            CHAIN_NAME_KEY: self.chain_name,
            RPC_URL_KEY: self.json_rpc_url,
        }

    def render(self) -> str:
        return "".join(f"{key}={_quote_value(value)}\n" for key, value in self.as_env().items())

    def missing_fields(self) -> list[str]:
        return [key for key, value in self.as_env().items() if not value.strip()]

    def secrets(self) -> tuple[str, ...]:
        return (self.api_token, self.private_key)


def _clean(value: str | None) -> str:
    return (value or "").strip()


def record_from_values(values: Mapping[str, str | None], *, config: SetupConfig) -> EnvironmentRecord:
    """Credentials are taken as-is; chain parameters fall back to the profile."""
    return EnvironmentRecord(
        api_token=_clean(values.get(API_TOKEN_KEY)),
        private_key=_clean(values.get(PRIVATE_KEY_KEY)),
        chain_name=_clean(values.get(CHAIN_NAME_KEY)) or config.profile.chain_name,
        json_rpc_url=_clean(values.get(RPC_URL_KEY)) or config.profile.json_rpc_url,
    )


def write_env_file(path: Path, record: EnvironmentRecord, *, mode: int | None = None) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(record.render(), encoding="utf-8", newline="\n")
    if mode is not None:
        os.chmod(path, mode)


def ensure_ignored(root: Path, entry: str) -> bool:
    """Appends `entry` to `<root>/.gitignore` unless already listed. Returns True if written."""
    gitignore = root / ".gitignore"
    existing = gitignore.read_text(encoding="utf-8") if gitignore.exists() else ""
    if entry in {line.strip() for line in existing.splitlines()}:
        return False
    prefix = "" if not existing or existing.endswith("\n") else "\n"
    gitignore.parent.mkdir(parents=True, exist_ok=True)
    with gitignore.open("a", encoding="utf-8", newline="\n") as f:
        f.write(f"{prefix}{entry}\n")
    return True


def ignore_entry_for(config: SetupConfig) -> str | None:
    try:
        return config.env_file.relative_to(config.root).as_posix()
    except ValueError:
        return None


def _prompt_credentials(
    *,
    prompt: Callable[[str], str],
    environ: Mapping[str, str],
) -> dict[str, str]:
    values: dict[str, str] = {}
    for key, question in CREDENTIAL_PROMPTS:
        from_env = _clean(environ.get(key))
        values[key] = from_env if from_env else _clean(prompt(question))
    return values


def load_or_create(
    config: SetupConfig,
    *,
    prompt: Callable[[str], str] = input,
    environ: Mapping[str, str] | None = None,
) -> EnvironmentRecord:
    env_path = config.env_file
    if env_path.exists():
        console.info(f"Existing env file found at {env_path}. Loading...")
        record = record_from_values(dotenv_values(env_path, interpolate=False), config=config)
    else:
        console.info("No env file found. Please provide the following details.")
        values = _prompt_credentials(
            prompt=prompt,
            environ=os.environ if environ is None else environ,
        )
        record = record_from_values(values, config=config)
        missing = record.missing_fields()
        if missing:
            # An incomplete file would fail every later run without prompting again.
            raise ConfigIncomplete(missing, env_file=str(env_path))
        write_env_file(env_path, record, mode=ENV_FILE_MODE)
        entry = ignore_entry_for(config)
        if entry is not None:
            ensure_ignored(config.root, entry)
        console.info(f"Env file created and secured at {env_path}.")

    missing = record.missing_fields()
    if missing:
        raise ConfigIncomplete(missing, env_file=str(env_path))
    return record
