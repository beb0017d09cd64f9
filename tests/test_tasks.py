import subprocess
from unittest import mock

import pytest

from morax.tasks import (
    ensure_installed,
    find_command,
    main,
    make_build_cmd,
    make_clippy_cmd,
    make_format_cmd,
    make_hawkeye_cmd,
    make_taplo_cmd,
    make_test_cmd,
    make_typos_cmd,
    run_command,
)


def which_all(name):
    return f"/opt/bin/{name}"


OK = subprocess.CompletedProcess([], 0)


@pytest.fixture
def which():
    with mock.patch("morax.tasks.shutil.which", side_effect=which_all) as patched:
        yield patched


@pytest.fixture
def run():
    with mock.patch("morax.tasks.subprocess.run", return_value=OK) as patched:
        yield patched


def test_find_command_resolves_path(which):
    assert find_command("cargo") == ["/opt/bin/cargo"]


def test_find_command_missing_raises():
    with mock.patch("morax.tasks.shutil.which", return_value=None):
        with pytest.raises(FileNotFoundError, match="cargo not found"):
            find_command("cargo")


def test_build_cmd(which):
    assert make_build_cmd(False) == [
        "/opt/bin/cargo",
        "build",
        "--workspace",
        "--all-features",
        "--tests",
        "--examples",
        "--benches",
        "--bins",
    ]
    assert make_build_cmd(True)[-1] == "--locked"


def test_test_cmd(which, run):
    assert make_test_cmd(False) == ["/opt/bin/cargo", "nextest", "run", "--workspace"]
    assert make_test_cmd(True)[-1] == "--no-capture"
    run.assert_not_called()


def test_format_cmd(which):
    assert make_format_cmd(False) == ["/opt/bin/cargo", "fmt", "--all", "--check"]
    assert make_format_cmd(True) == ["/opt/bin/cargo", "fmt", "--all"]


def test_clippy_cmd(which):
    assert make_clippy_cmd(False)[-3:] == ["--", "-D", "warnings"]
    assert make_clippy_cmd(True)[-3:] == ["--allow-staged", "--allow-dirty", "--fix"]


def test_hawkeye_taplo_typos_cmds(which, run):
    assert make_hawkeye_cmd(False) == ["/opt/bin/hawkeye", "check"]
    assert make_hawkeye_cmd(True) == ["/opt/bin/hawkeye", "format", "--fail-if-updated=false"]
    assert make_taplo_cmd(False) == ["/opt/bin/taplo", "format", "--check"]
    assert make_taplo_cmd(True) == ["/opt/bin/taplo", "format"]
    assert make_typos_cmd() == ["/opt/bin/typos"]


def _which_without_typos(name):
    return None if name == "typos" else which_all(name)


def test_ensure_installed_installs_missing(run):
    with mock.patch("morax.tasks.shutil.which", side_effect=_which_without_typos):
        result = ensure_installed("typos", "typos-cli")
    assert result is None
    assert run.call_count == 1
    assert run.call_args.args[0] == ["/opt/bin/cargo", "install", "typos-cli"]


def test_ensure_installed_failed_install_raises():
    failed = subprocess.CompletedProcess(["cargo"], 101)
    with mock.patch("morax.tasks.shutil.which", side_effect=_which_without_typos):
        with mock.patch("morax.tasks.subprocess.run", return_value=failed):
            with pytest.raises(subprocess.CalledProcessError) as info:
                ensure_installed("typos", "typos-cli")
    assert info.value.returncode == 101


def test_ensure_installed_skips_present(which, run):
    result = ensure_installed("typos", "typos-cli")
    assert result is None
    assert run.call_count == 0


def test_run_command_failure_raises():
    failed = subprocess.CompletedProcess(["false"], 3)
    with mock.patch("morax.tasks.subprocess.run", return_value=failed):
        with pytest.raises(subprocess.CalledProcessError) as info:
            run_command(["false"])
    assert info.value.returncode == 3


def test_main_build_locked(which, run):
    assert main(["build", "--locked"]) == 0
    argv = run.call_args.args[0]
    assert argv[:2] == ["/opt/bin/cargo", "build"]
    assert argv[-1] == "--locked"


def test_main_lint_runs_all_checks_in_order(which, run):
    assert main(["lint"]) == 0
    commands = [call.args[0] for call in run.call_args_list]
    assert [cmd[0] for cmd in commands] == [
        "/opt/bin/cargo",
        "/opt/bin/cargo",
        "/opt/bin/taplo",
        "/opt/bin/typos",
        "/opt/bin/hawkeye",
    ]
    assert commands[1] == ["/opt/bin/cargo", "fmt", "--all", "--check"]


def test_main_reports_failure(which):
    failed = subprocess.CompletedProcess([], 2)
    with mock.patch("morax.tasks.subprocess.run", return_value=failed):
        assert main(["test"]) == 1


def test_main_requires_subcommand():
    with pytest.raises(SystemExit) as info:
        main([])
    assert info.value.code == 2