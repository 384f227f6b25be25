from __future__ import annotations

import os
import stat
from dataclasses import replace
from pathlib import Path

import pytest

from vlayer_setup import env_store
from vlayer_setup.config import SetupConfig
from vlayer_setup.errors import ConfigIncomplete


def _answers(*values: str):
    asked: list[str] = []
    queue = list(values)

    def _prompt(question: str) -> str:
        asked.append(question)
        return queue.pop(0)

    return _prompt, asked


def _no_prompt(question: str) -> str:
    raise AssertionError(f"unexpected prompt: {question}")


def test_first_run_prompts_and_writes_restricted_file(config: SetupConfig) -> None:
    prompt, asked = _answers("tok-123", "0xabc")
    record = env_store.load_or_create(config, prompt=prompt, environ={})

    assert len(asked) == 2
    assert record.api_token == "tok-123"
    assert record.private_key == "0xabc"
    assert record.chain_name == "optimismSepolia"
    assert record.json_rpc_url == "https://sepolia.optimism.io"

    text = config.env_file.read_text(encoding="utf-8")
    assert text.splitlines() == [
        "VLAYER_API_TOKEN=tok-123",
        "EXAMPLES_TEST_PRIVATE_KEY=0xabc",
        "CHAIN_NAME=optimismSepolia",
        "JSON_RPC_URL=https://sepolia.optimism.io",
    ]
    if os.name != "nt":
        assert stat.S_IMODE(config.env_file.stat().st_mode) == 0o600
    gitignore = (config.root / ".gitignore").read_text(encoding="utf-8")
    assert ".env" in gitignore.splitlines()


def test_load_or_create_is_idempotent(config: SetupConfig) -> None:
    prompt, _ = _answers("tok", "0x1")
    first = env_store.load_or_create(config, prompt=prompt, environ={})
    second = env_store.load_or_create(config, prompt=_no_prompt, environ={})
    assert first == second


def test_complete_file_never_prompts(config: SetupConfig) -> None:
    config.env_file.parent.mkdir(parents=True)
    config.env_file.write_text(
        "VLAYER_API_TOKEN=tok\n"
        "EXAMPLES_TEST_PRIVATE_KEY=0xkey\n"
        "CHAIN_NAME=base\n"
        "JSON_RPC_URL=https://mainnet.base.org\n",
        encoding="utf-8",
    )
    record = env_store.load_or_create(config, prompt=_no_prompt, environ={})
    assert record.chain_name == "base"
    assert record.json_rpc_url == "https://mainnet.base.org"


def test_missing_credential_in_existing_file_is_fatal(config: SetupConfig) -> None:
    config.env_file.parent.mkdir(parents=True)
    config.env_file.write_text("VLAYER_API_TOKEN=tok\nEXAMPLES_TEST_PRIVATE_KEY=\n", encoding="utf-8")
    with pytest.raises(ConfigIncomplete) as excinfo:
        env_store.load_or_create(config, prompt=_no_prompt, environ={})
    assert excinfo.value.missing == ["EXAMPLES_TEST_PRIVATE_KEY"]


def test_network_defaults_fill_missing_keys(config: SetupConfig) -> None:
    config.env_file.parent.mkdir(parents=True)
    config.env_file.write_text(
        "VLAYER_API_TOKEN=tok\nEXAMPLES_TEST_PRIVATE_KEY=0xkey\nCHAIN_NAME=\n",
        encoding="utf-8",
    )
    record = env_store.load_or_create(config, prompt=_no_prompt, environ={})
    assert record.chain_name == config.profile.chain_name
    assert record.json_rpc_url == config.profile.json_rpc_url
    # Defaults are merged in memory only.
    assert "JSON_RPC_URL" not in config.env_file.read_text(encoding="utf-8")


def test_environment_credentials_skip_prompt(config: SetupConfig) -> None:
    environ = {"VLAYER_API_TOKEN": "env-token", "EXAMPLES_TEST_PRIVATE_KEY": "0xenv"}
    record = env_store.load_or_create(config, prompt=_no_prompt, environ=environ)
    assert record.api_token == "env-token"
    assert record.private_key == "0xenv"


def test_blank_answers_fail_without_writing_file(config: SetupConfig) -> None:
    prompt, _ = _answers("tok", "   ")
    with pytest.raises(ConfigIncomplete):
        env_store.load_or_create(config, prompt=prompt, environ={})
    assert not config.env_file.exists()


def test_ensure_ignored_appends_once(tmp_path: Path) -> None:
    (tmp_path / ".gitignore").write_text("node_modules", encoding="utf-8")
    assert env_store.ensure_ignored(tmp_path, ".env") is True
    assert env_store.ensure_ignored(tmp_path, ".env") is False
    assert (tmp_path / ".gitignore").read_text(encoding="utf-8") == "node_modules\n.env\n"


def test_env_file_outside_workspace_has_no_ignore_entry(config: SetupConfig, tmp_path: Path) -> None:
    outside = replace(config, env_file=tmp_path / "elsewhere" / "vlayer.env")
    assert env_store.ignore_entry_for(outside) is None
    assert env_store.ignore_entry_for(config) == ".env"


@pytest.mark.parametrize(
    ("token", "key"),
    [
        ("tok #1", '"0xabc"'),
        ("it's\\here", "'0xabc'"),
        ("${HOME}/tok", "0x abc"),
    ],
)
def test_awkward_credentials_survive_a_reload(config: SetupConfig, token: str, key: str) -> None:
    prompt, _ = _answers(token, key)
    first = env_store.load_or_create(config, prompt=prompt, environ={})
    second = env_store.load_or_create(config, prompt=_no_prompt, environ={})
    assert first.api_token == token
    assert first.private_key == key
    assert first == second


def test_plain_values_are_written_unquoted() -> None:
    record = env_store.EnvironmentRecord("tok #1", "0xabc", "base", "https://mainnet.base.org")
    assert record.render().splitlines() == [
        "VLAYER_API_TOKEN='tok #1'",
        "EXAMPLES_TEST_PRIVATE_KEY=0xabc",
        "CHAIN_NAME=base",
        "JSON_RPC_URL=https://mainnet.base.org",
    ]
