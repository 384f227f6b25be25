from __future__ import annotations

import os
import shutil
import subprocess
from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from pathlib import Path

MISSING_EXECUTABLE_EXIT_CODE = 127
MESSAGE_TAIL_LINES = 20


@dataclass(frozen=True)
class CommandResult:
    argv: list[str]
    returncode: int
    stdout: str
    stderr: str

    @property
    def ok(self) -> bool:
        return self.returncode == 0

    def message(self) -> str:
        text = self.stderr.strip() or self.stdout.strip()
        if not text:
            return "command failed"
        return "\n".join(text.splitlines()[-MESSAGE_TAIL_LINES:])


class CommandError(RuntimeError):
    def __init__(self, result: CommandResult) -> None:
        super().__init__(f"{' '.join(result.argv)}: {result.message()}")
        self.result = result


def _is_root() -> bool:
    geteuid = getattr(os, "geteuid", None)
    return callable(geteuid) and geteuid() == 0


@dataclass
class CommandRunner:
    """
    Blocking subprocess runner shared by every setup step.

    `extra_path` is the explicit list of installed tool locations. It is
    prepended to the base PATH for lookups and for every child process, so
    nothing ever mutates `os.environ`.
    """

    env: Mapping[str, str] | None = None
    extra_path: list[Path] = field(default_factory=list)
    sudo: tuple[str, ...] = ("sudo",)
    redact: tuple[str, ...] = ()
    log: list[str] = field(default_factory=list)

    def base_env(self) -> dict[str, str]:
        return dict(self.env if self.env is not None else os.environ)

    def search_path(self) -> str:
        base = self.base_env().get("PATH", "")
        parts = [str(p) for p in self.extra_path]
        if base:
            parts.append(base)
        return os.pathsep.join(parts)

    def prepend_path(self, directory: Path) -> None:
        if directory in self.extra_path:
            return
        self.extra_path.insert(0, directory)

    def which(self, binary: str) -> str | None:
        return shutil.which(binary, path=self.search_path())

    def _child_env(self, overrides: Mapping[str, str] | None) -> dict[str, str]:
        env = self.base_env()
        env["PATH"] = self.search_path()
        if overrides:
            env.update(overrides)
        return env

    def _scrub(self, text: str) -> str:
        for secret in self.redact:
            if secret:
                text = text.replace(secret, "***")
        return text

    def _record(self, result: CommandResult) -> None:
        self.log.append(self._scrub("$ " + " ".join(result.argv)))
        self.log.append(f"exit_code={result.returncode}")
        if result.stdout.strip():
            self.log.append("stdout:")
            self.log.append(self._scrub(result.stdout.rstrip()))
        if result.stderr.strip():
            self.log.append("stderr:")
            self.log.append(self._scrub(result.stderr.rstrip()))
        self.log.append("")

    def _stream(
        self,
        argv_list: list[str],
        *,
        cwd: Path | None,
        env: Mapping[str, str] | None,
    ) -> CommandResult:
        proc = subprocess.Popen(
            argv_list,
            cwd=str(cwd) if cwd is not None else None,
            env=self._child_env(env),
            stdout=subprocess.PIPE,
            stderr=subprocess.STDOUT,
            text=True,
            encoding="utf-8",
            errors="replace",
        )
        lines: list[str] = []
        print_enabled = True
        try:
            assert proc.stdout is not None
            for line in proc.stdout:
                lines.append(line)
                if print_enabled:
                    try:
                        print(self._scrub(line), end="", flush=True)
                    except OSError:
                        print_enabled = False
        except BaseException:
            proc.kill()
            proc.wait()
            raise
        return CommandResult(
            argv=argv_list,
            returncode=proc.wait(),
            stdout="".join(lines),
            stderr="",
        )

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
        """
        Run `argv` to completion and record it in the command log.

        With `stream=True` stdout and stderr are merged and echoed line by line
        as they arrive; stdin is inherited so installer prompts stay usable.
        """

        if stream and input_text is not None:
            raise ValueError("input_text cannot be combined with stream=True")
        argv_list = [str(a) for a in argv]
        try:
            if stream:
                result = self._stream(argv_list, cwd=cwd, env=env)
            else:
                proc = subprocess.run(
                    argv_list,
                    cwd=str(cwd) if cwd is not None else None,
                    env=self._child_env(env),
                    input=input_text,
                    capture_output=True,
                    text=True,
                    encoding="utf-8",
                    errors="replace",
                    check=False,
                )
                result = CommandResult(
                    argv=argv_list,
                    returncode=proc.returncode,
                    stdout=proc.stdout or "",
                    stderr=proc.stderr or "",
                )
        except OSError as e:
            # Missing, non-executable, or bad cwd: report like a shell would.
            result = CommandResult(
                argv=argv_list,
                returncode=MISSING_EXECUTABLE_EXIT_CODE,
                stdout="",
                stderr=str(e),
            )
        self._record(result)
        if check and not result.ok:
            raise CommandError(result)
        return result

    def shell(
        self,
        script: str,
        *,
        cwd: Path | None = None,
        check: bool = True,
        env: Mapping[str, str] | None = None,
        stream: bool = False,
    ) -> CommandResult:
        return self.run(["bash", "-c", script], cwd=cwd, check=check, env=env, stream=stream)

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
        prefix: list[str] = [] if _is_root() else list(self.sudo)
        if env and prefix:
            # sudo resets the environment; pass overrides explicitly.
            prefix = [*prefix, "env", *(f"{k}={v}" for k, v in env.items())]
        return self.run(
            [*prefix, *argv],
            cwd=cwd,
            check=check,
            input_text=input_text,
            env=env,
            stream=stream,
        )

    def write_log(self, path: Path) -> None:
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text("\n".join(self.log).rstrip() + "\n", encoding="utf-8")
