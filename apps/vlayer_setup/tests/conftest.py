from __future__ import annotations

from collections.abc import Callable, Mapping, Sequence
from pathlib import Path

import pytest

from host_tools.commands import CommandError, CommandResult, CommandRunner
from vlayer_setup.config import NetworkProfile, SetupConfig, build_config

Response = tuple[int, str, str]


class FakeRunner(CommandRunner):
    """Records commands instead of running them; responses are scripted per argv prefix."""

    def __init__(self, *, available: Sequence[str] = ()) -> None:
        super().__init__(env={"PATH": ""})
        self.available: set[str] = set(available)
        self.calls: list[list[str]] = []
        self.cwds: list[Path | None] = []
        self.inputs: list[str | None] = []
        self.streamed: list[bool] = []
        self._responses: list[tuple[tuple[str, ...], list[Response]]] = []
        self._hooks: list[tuple[tuple[str, ...], Callable[[list[str]], None]]] = []

    @staticmethod
    def _matches(argv: list[str], prefix: tuple[str, ...]) -> bool:
        if len(argv) < len(prefix) or not prefix:
            return False
        if Path(argv[0]).name != prefix[0] and argv[0] != prefix[0]:
            return False
        return tuple(argv[1 : len(prefix)]) == prefix[1:]

    def respond(self, *prefix: str, results: list[Response]) -> None:
        """Queue results for matching commands; the last one repeats."""
        self._responses.append((prefix, list(results)))

    def on(self, *prefix: str, hook: Callable[[list[str]], None]) -> None:
        self._hooks.append((prefix, hook))

    def called(self, *prefix: str) -> list[list[str]]:
        return [argv for argv in self.calls if self._matches(argv, prefix)]

    def which(self, binary: str) -> str | None:
        return f"/fake/bin/{binary}" if binary in self.available else None

    def _next_response(self, argv: list[str]) -> Response:
        for prefix, queue in self._responses:
            if self._matches(argv, prefix):
                return queue.pop(0) if len(queue) > 1 else queue[0]
        return (0, "", "")

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        stream: bool = False,
    ) -> CommandResult:
        del env
        argv_list = [str(a) for a in argv]
        self.calls.append(argv_list)
        self.cwds.append(cwd)
        self.inputs.append(input_text)
        self.streamed.append(stream)
        for prefix, hook in self._hooks:
            if self._matches(argv_list, prefix):
                hook(argv_list)
        returncode, stdout, stderr = self._next_response(argv_list)
        result = CommandResult(argv=argv_list, returncode=returncode, stdout=stdout, stderr=stderr)
        self._record(result)
        if check and not result.ok:
            raise CommandError(result)
        return result

    def privileged(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        check: bool = True,
        input_text: str | None = None,
        env: Mapping[str, str] | None = None,
        stream: bool = False,
    ) -> CommandResult:
        return self.run(
            argv, cwd=cwd, check=check, input_text=input_text, env=env, stream=stream
        )


@pytest.fixture
def fake_runner() -> FakeRunner:
    return FakeRunner()


@pytest.fixture
def profile() -> NetworkProfile:
    return NetworkProfile(
        name="testnet",
        chain_name="optimismSepolia",
        json_rpc_url="https://sepolia.optimism.io",
        env_file=".env.testnet.local",
        prove_task="prove:testnet",
        reboot_after_upgrade=True,
        prove_failure="fatal",
    )


@pytest.fixture
def config(tmp_path: Path, profile: NetworkProfile) -> SetupConfig:
    return build_config(
        profile=profile,
        home=tmp_path / "home",
        reboot_after_upgrade=False,
        retry_delay_seconds=0.0,
    )
