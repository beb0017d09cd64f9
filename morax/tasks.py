"""Developer tasks: build, lint and test the workspace."""

from __future__ import annotations

import argparse
import os
import shlex
import shutil
import subprocess
import sys
from pathlib import Path
from typing import Sequence


def _workspace_dir() -> Path:
    return Path(os.environ.get("MORAX_WORKSPACE_DIR") or Path.cwd())


def find_command(cmd: str) -> list[str]:
    """Resolve a program on PATH; raises FileNotFoundError if it is missing."""
    path = shutil.which(cmd)
    if path is None:
        raise FileNotFoundError(f"{cmd} not found.")
    return [path]


def run_command(cmd: Sequence[str]) -> None:
    """Echo and run a command in the workspace; raise if it fails."""
    argv = list(cmd)
    print(shlex.join(argv), flush=True)
    completed = subprocess.run(argv, cwd=_workspace_dir(), check=False)
    if completed.returncode != 0:
        raise subprocess.CalledProcessError(completed.returncode, argv)


def ensure_installed(binary: str, crate_name: str) -> None:
    """Install ``crate_name`` with cargo unless ``binary`` is already on PATH."""
    if shutil.which(binary) is None:
        run_command([*find_command("cargo"), "install", crate_name])


def make_build_cmd(locked: bool) -> list[str]:
    cmd = [
        *find_command("cargo"),
        "build",
        "--workspace",
        "--all-features",
        "--tests",
        "--examples",
        "--benches",
        "--bins",
    ]
    if locked:
        cmd.append("--locked")
    return cmd


def make_test_cmd(no_capture: bool) -> list[str]:
    ensure_installed("cargo-nextest", "cargo-nextest")
    cmd = [*find_command("cargo"), "nextest", "run", "--workspace"]
    if no_capture:
        cmd.append("--no-capture")
    return cmd


def make_format_cmd(fix: bool) -> list[str]:
    cmd = [*find_command("cargo"), "fmt", "--all"]
    if not fix:
        cmd.append("--check")
    return cmd


def make_clippy_cmd(fix: bool) -> list[str]:
    cmd = [
        *find_command("cargo"),
        "clippy",
        "--tests",
        "--all-features",
        "--all-targets",
        "--workspace",
    ]
    if fix:
        cmd += ["--allow-staged", "--allow-dirty", "--fix"]
    else:
        cmd += ["--", "-D", "warnings"]
    return cmd


def make_hawkeye_cmd(fix: bool) -> list[str]:
    ensure_installed("hawkeye", "hawkeye")
    cmd = find_command("hawkeye")
    if fix:
        cmd += ["format", "--fail-if-updated=false"]
    else:
        cmd.append("check")
    return cmd


def make_typos_cmd() -> list[str]:
    ensure_installed("typos", "typos-cli")
    return find_command("typos")


def make_taplo_cmd(fix: bool) -> list[str]:
    ensure_installed("taplo", "taplo-cli")
    cmd = [*find_command("taplo"), "format"]
    if not fix:
        cmd.append("--check")
    return cmd


def _run_build(args: argparse.Namespace) -> None:
    run_command(make_build_cmd(args.locked))


def _run_test(args: argparse.Namespace) -> None:
    run_command(make_test_cmd(args.no_capture))


def _run_lint(args: argparse.Namespace) -> None:
    run_command(make_clippy_cmd(args.fix))
    run_command(make_format_cmd(args.fix))
    run_command(make_taplo_cmd(args.fix))
    run_command(make_typos_cmd())
    run_command(make_hawkeye_cmd(args.fix))


def _parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="x")
    commands = parser.add_subparsers(dest="command", required=True)

    build = commands.add_parser("build", help="Compile workspace packages.")
    build.add_argument(
        "--locked", action="store_true", help="Assert that `Cargo.lock` will remain unchanged."
    )
    build.set_defaults(handler=_run_build)

    lint = commands.add_parser("lint", help="Run format and clippy checks.")
    lint.add_argument("--fix", action="store_true", help="Automatically apply lint suggestions.")
    lint.set_defaults(handler=_run_lint)

    test = commands.add_parser("test", help="Run unit tests.")
    test.add_argument(
        "--no-capture",
        action="store_true",
        help="Run tests serially and do not capture output.",
    )
    test.set_defaults(handler=_run_test)
    return parser


def main(argv: Sequence[str] | None = None) -> int:
    args = _parser().parse_args(argv)
    try:
        args.handler(args)
    except subprocess.CalledProcessError as err:
        print(f"command failed: exit status {err.returncode}", file=sys.stderr)
        return 1
    except FileNotFoundError as err:
        print(err, file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())