#!/usr/bin/env python
from __future__ import annotations

import argparse
from pathlib import Path

from host_tools.commands import CommandError, CommandRunner

from vlayer_setup import console, orchestrator
from vlayer_setup.config import (
    DEFAULT_PROFILES_PATH,
    PROVE_FAILURE_MODES,
    build_config,
    load_profiles,
)
from vlayer_setup.errors import InvalidSelector, SetupError
from vlayer_setup.projects import selector_choices

console.configure_console_output()

EXIT_OK = 0
EXIT_FAILURE = 1
EXIT_INVALID_SELECTOR = 2


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="vlayer-setup",
        description="Bootstrap a machine for the vlayer example projects.",
    )
    parser.add_argument(
        "selector",
        nargs="?",
        help=f"Project set to set up: {', '.join(selector_choices())}. Prompts when omitted.",
    )
    parser.add_argument("--profile", help="Network profile name (default: from the profiles file).")
    parser.add_argument(
        "--profiles-file",
        type=Path,
        default=DEFAULT_PROFILES_PATH,
        help="YAML file declaring network profiles.",
    )
    parser.add_argument("--root", type=Path, help="Workspace checkout (default: ~/Vlayer).")
    parser.add_argument("--env-file", type=Path, help="Credentials file (default: <root>/.env).")
    parser.add_argument("--repo-url", help="Template repository to clone.")
    parser.add_argument("--required-os", dest="required_os", help="Required OS release (default: 24.04).")
    parser.add_argument("--min-glibc", dest="min_glibc", help="Minimum glibc version (default: 2.39).")
    parser.add_argument("--skip-os-gate", action="store_true", help="Do not check or upgrade the OS.")

    reboot_group = parser.add_mutually_exclusive_group()
    reboot_group.add_argument(
        "--reboot-after-upgrade",
        dest="reboot_after_upgrade",
        action="store_true",
        default=None,
        help="Reboot after an OS upgrade instead of continuing.",
    )
    reboot_group.add_argument(
        "--no-reboot-after-upgrade",
        dest="reboot_after_upgrade",
        action="store_false",
    )
    parser.add_argument(
        "--prove-failure",
        choices=list(PROVE_FAILURE_MODES),
        help="Whether a failing prove task aborts the run (default: from the profile).",
    )
    parser.add_argument(
        "--retry-delay",
        dest="retry_delay",
        type=float,
        help="Seconds to wait between install retries (default: 5).",
    )
    parser.add_argument("--log-file", type=Path, help="Write the command log to this path.")
    return parser


def _cmd_run(args: argparse.Namespace, runner: CommandRunner) -> int:
    catalog = load_profiles(args.profiles_file)
    config = build_config(
        profile=catalog.get(args.profile),
        root=args.root,
        env_file=args.env_file,
        repo_url=args.repo_url,
        required_os_version=args.required_os,
        min_glibc_version=args.min_glibc,
        skip_os_gate=bool(args.skip_os_gate),
        reboot_after_upgrade=args.reboot_after_upgrade,
        prove_failure=args.prove_failure,
        retry_delay_seconds=args.retry_delay,
    )
    console.info(
        f"Profile {config.profile.name}: {config.profile.chain_name} ({config.profile.json_rpc_url})"
    )
    orchestrator.run(args.selector, config, runner)
    return EXIT_OK


def main(argv: list[str] | None = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    runner = CommandRunner()
    try:
        return _cmd_run(args, runner)
    except InvalidSelector as e:
        console.error(str(e))
        return EXIT_INVALID_SELECTOR
    except (SetupError, CommandError) as e:
        console.error(str(e))
        return EXIT_FAILURE
    except (KeyboardInterrupt, EOFError):
        console.error("Aborted.")
        return EXIT_FAILURE
    finally:
        if args.log_file is not None:
            runner.write_log(args.log_file)


if __name__ == "__main__":
    raise SystemExit(main())
