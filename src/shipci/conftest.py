from __future__ import annotations

import shutil
import subprocess
import sys
from pathlib import Path

import pytest

from shipci.ui.console import Console, set_console


BUILD_SCRIPT = '''\
import os
import sys

target = sys.argv[1]
if "windows" in target:
    sys.exit("error: linker `x86_64-w64-mingw32-gcc` not found")

out = os.path.join("target", target, "release")
os.makedirs(out, exist_ok=True)
binary = os.path.join(out, "app")
with open(binary, "w") as f:
    f.write("#!/bin/sh\\necho app\\n")
os.chmod(binary, 0o755)
with open(os.path.join(out, "app.d"), "w") as f:
    f.write("deps")
'''


@pytest.fixture(autouse=True)
def quiet_console():
    set_console(Console(color="never"))
    yield


def _git(cwd: Path, *args: str) -> str:
    return subprocess.check_output(
        ["git", "-c", "user.name=shipci", "-c", "user.email=shipci@example.com", *args],
        cwd=str(cwd),
        text=True,
    ).strip()


@pytest.fixture
def git_repo(tmp_path: Path) -> Path:
    """A committed repository with README.md, LICENSE and a fake build script."""
    if shutil.which("git") is None:
        pytest.skip("git is not installed")

    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "--quiet")
    _git(repo, "symbolic-ref", "HEAD", "refs/heads/master")
    (repo / "README.md").write_text("# app\n")
    (repo / "LICENSE").write_text("MIT\n")
    (repo / "build.py").write_text(BUILD_SCRIPT)
    _git(repo, "add", ".")
    _git(repo, "commit", "--quiet", "-m", "initial")
    return repo


@pytest.fixture
def build_command() -> str:
    return f"{sys.executable} build.py {{target}}"
