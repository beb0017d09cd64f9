"""Build and version information gathered from the environment and git."""

from __future__ import annotations

import os
import platform
import subprocess
import sysconfig
from dataclasses import dataclass
from datetime import datetime, timezone
from functools import lru_cache
from importlib import metadata
from pathlib import Path

_PACKAGE_DIR = Path(__file__).resolve().parent
_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%SZ"


@dataclass(frozen=True)
class BuildInfo:
    branch: str
    commit: str
    commit_short: str
    clean: bool
    source_time: str
    build_time: str
    python: str
    target: str
    version: str


def _git(*args: str) -> str | None:
    try:
        completed = subprocess.run(
            ["git", *args],
            cwd=_PACKAGE_DIR,
            capture_output=True,
            text=True,
            check=False,
        )
    except OSError:
        return None
    if completed.returncode != 0:
        return None
    return completed.stdout.strip()


def _format_timestamp(epoch: int) -> str:
    return datetime.fromtimestamp(epoch, tz=timezone.utc).strftime(_TIMESTAMP_FORMAT)


def _source_time() -> str:
    raw = os.environ.get("SOURCE_DATE_EPOCH") or _git("log", "-1", "--format=%ct")
    if not raw:
        return ""
    try:
        return _format_timestamp(int(raw))
    except ValueError:
        return ""


def _package_version() -> str:
    try:
        return metadata.version("morax")
    except metadata.PackageNotFoundError:
        return "unknown"


@lru_cache(maxsize=None)
def build_info() -> BuildInfo:
    """Collect build information once per process."""
    status = _git("status", "--porcelain")
    return BuildInfo(
        branch=_git("rev-parse", "--abbrev-ref", "HEAD") or "",
        commit=_git("rev-parse", "HEAD") or "",
        commit_short=_git("rev-parse", "--short", "HEAD") or "",
        clean=status == "",
        source_time=_source_time(),
        build_time=datetime.now(timezone.utc).strftime(_TIMESTAMP_FORMAT),
        python=f"{platform.python_implementation()} {platform.python_version()}",
        target=sysconfig.get_platform(),
        version=_package_version(),
    )


def version() -> str:
    """Multi-line description of the build, starting with a newline."""
    info = build_info()
    return (
        f"\nversion: {info.version}"
        f"\nbranch: {info.branch}"
        f"\ncommit: {info.commit}"
        f"\nclean: {str(info.clean).lower()}"
        f"\nsource_time: {info.source_time}"
        f"\nbuild_time: {info.build_time}"
        f"\npython: {info.python}"
        f"\ntarget: {info.target}"
    )