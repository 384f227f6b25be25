from __future__ import annotations

import os
import sys
from pathlib import Path

import pytest

from host_tools import commands
from host_tools.commands import CommandError, CommandRunner


def test_run_captures_output_and_logs_command() -> None:
    runner = CommandRunner()
    result = runner.run([sys.executable, "-c", "print('hello')"])
    assert result.ok
    assert result.stdout.strip() == "hello"
    assert runner.log[0].startswith("$ ")
    assert "exit_code=0" in runner.log


def test_run_raises_command_error_with_stderr_message() -> None:
    runner = CommandRunner()
    with pytest.raises(CommandError) as excinfo:
        runner.run([sys.executable, "-c", "import sys; sys.stderr.write('boom'); sys.exit(3)"])
    assert excinfo.value.result.returncode == 3
    assert str(excinfo.value).endswith(": boom")


def test_run_unchecked_returns_failure_result() -> None:
    runner = CommandRunner()
    result = runner.run([sys.executable, "-c", "import sys; sys.exit(1)"], check=False)
    assert not result.ok
    assert result.message() == "command failed"


def test_missing_executable_becomes_exit_127(tmp_path: Path) -> None:
    runner = CommandRunner(env={"PATH": str(tmp_path)})
    result = runner.run(["definitely-not-a-real-binary-xyz"], check=False)
    assert result.returncode == commands.MISSING_EXECUTABLE_EXIT_CODE


@pytest.mark.skipif(os.name == "nt", reason="posix shell scripts")
def test_prepend_path_makes_installed_tool_resolvable(tmp_path: Path) -> None:
    tool_dir = tmp_path / "tool-bin"
    tool_dir.mkdir()
    tool = tool_dir / "fake-tool"
    tool.write_text("#!/bin/sh\necho fake-tool-ran\n", encoding="utf-8")
    tool.chmod(0o755)

    runner = CommandRunner(env={"PATH": os.environ.get("PATH", "")})
    assert runner.which("fake-tool") is None

    runner.prepend_path(tool_dir)
    runner.prepend_path(tool_dir)
    assert runner.extra_path == [tool_dir]
    assert runner.which("fake-tool") == str(tool)
    assert runner.search_path().split(os.pathsep)[0] == str(tool_dir)

    result = runner.run(["fake-tool"])
    assert result.stdout.strip() == "fake-tool-ran"


def test_prepend_path_does_not_touch_process_environment(tmp_path: Path) -> None:
    before = os.environ.get("PATH")
    runner = CommandRunner()
    runner.prepend_path(tmp_path)
    assert os.environ.get("PATH") == before


def test_privileged_prefixes_sudo_and_passes_env(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(commands, "_is_root", lambda: False)
    echo_args = (sys.executable, "-c", "import sys; print(' '.join(sys.argv[1:]))")
    runner = CommandRunner(sudo=echo_args)

    plain = runner.privileged(["apt-get", "update"])
    assert plain.stdout.strip() == "apt-get update"

    with_env = runner.privileged(["apt-get", "update"], env={"DEBIAN_FRONTEND": "noninteractive"})
    assert with_env.stdout.strip() == "env DEBIAN_FRONTEND=noninteractive apt-get update"


def test_privileged_runs_directly_as_root(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(commands, "_is_root", lambda: True)
    runner = CommandRunner(sudo=("definitely-not-sudo",))
    result = runner.privileged([sys.executable, "-c", "print('root')"])
    assert result.stdout.strip() == "root"


def test_redacted_values_never_reach_the_log(tmp_path: Path) -> None:
    runner = CommandRunner(redact=("s3cret-token",))
    runner.run([sys.executable, "-c", "print('token=s3cret-token')"])
    log_path = tmp_path / "logs" / "run.log"
    runner.write_log(log_path)
    text = log_path.read_text(encoding="utf-8")
    assert "s3cret-token" not in text
    assert "token=***" in text


def test_streamed_output_reaches_console_and_log(capsys: pytest.CaptureFixture[str]) -> None:
    runner = CommandRunner(redact=("s3cret",))
    script = "import sys; print('compiling'); sys.stderr.write('warn s3cret\\n'); print('done')"
    result = runner.run([sys.executable, "-c", script], stream=True)

    out = capsys.readouterr().out
    assert "compiling" in out
    assert "done" in out
    assert "warn ***" in out
    assert "s3cret" not in out
    assert result.ok
    assert "compiling" in result.stdout
    assert "compiling" in "\n".join(runner.log)
    assert "exit_code=0" in runner.log


def test_streamed_failure_raises_with_output_tail(capsys: pytest.CaptureFixture[str]) -> None:
    runner = CommandRunner()
    script = "import sys\nfor i in range(50): print(f'line {i}')\nsys.exit(2)"
    with pytest.raises(CommandError) as excinfo:
        runner.run([sys.executable, "-c", script], stream=True)
    assert excinfo.value.result.returncode == 2
    message = excinfo.value.result.message()
    assert message.splitlines()[-1] == "line 49"
    assert "line 0" not in message.splitlines()
    assert "line 0" in capsys.readouterr().out


def test_stream_rejects_input_text() -> None:
    with pytest.raises(ValueError):
        CommandRunner().run([sys.executable, "-c", "pass"], stream=True, input_text="x")


def test_cwd_that_is_a_file_becomes_a_failure_result(tmp_path: Path) -> None:
    not_a_dir = tmp_path / "file.txt"
    not_a_dir.write_text("", encoding="utf-8")
    runner = CommandRunner()
    result = runner.run([sys.executable, "-c", "pass"], cwd=not_a_dir, check=False)
    assert result.returncode == commands.MISSING_EXECUTABLE_EXIT_CODE
    with pytest.raises(CommandError):
        runner.run([sys.executable, "-c", "pass"], cwd=not_a_dir, stream=True)


@pytest.mark.skipif(os.name == "nt", reason="posix permission bits")
def test_non_executable_file_becomes_a_failure_result(tmp_path: Path) -> None:
    tool = tmp_path / "not-executable"
    tool.write_text("#!/bin/sh\necho hi\n", encoding="utf-8")
    tool.chmod(0o644)
    result = CommandRunner().run([str(tool)], check=False)
    assert result.returncode == commands.MISSING_EXECUTABLE_EXIT_CODE
    assert result.stderr
