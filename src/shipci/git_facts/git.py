# git.py
# Small, focused wrapper around the Git CLI.
# This module centralizes all Git interactions so the rest of the codebase
# never needs to call subprocess("git ...") directly.

from __future__ import annotations

import subprocess
from pathlib import Path
from typing import Optional


def _git(args: list[str], cwd: Optional[str | Path] = None) -> str:
    """
    Execute a git command and return its stdout as a clean string.

    This is the single low-level entry point for all Git operations in this file.

    Args:
        args: List of git arguments (e.g. ["status", "--porcelain"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.

    Raises:
        subprocess.CalledProcessError: git exited non-zero
        FileNotFoundError: git is not installed
    """
    out = subprocess.check_output(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        stderr=subprocess.STDOUT,
    )
    return out.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """Return the absolute path to the root of the current Git repository."""
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA hash of the current HEAD commit."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def clone(source: str, dest: str | Path) -> None:
    """
    Clone `source` (URL or local path) into `dest`.

    `dest` must not exist or be an empty directory. Callers follow up with
    checkout() to move to the exact revision under test.
    """
    _git(["clone", "--quiet", source, str(dest)])


def fetch(rev: str, cwd: str | Path) -> None:
    """Fetch a revision that is not reachable from the cloned refs (e.g. a PR head)."""
    _git(["fetch", "--quiet", "origin", rev], cwd=cwd)


def checkout(rev: str, cwd: str | Path) -> None:
    """Check out `rev` in detached HEAD mode."""
    _git(["checkout", "--quiet", "--detach", rev], cwd=cwd)


def has_revision(rev: str, cwd: str | Path) -> bool:
    try:
        _git(["cat-file", "-e", f"{rev}^{{commit}}"], cwd=cwd)
    except subprocess.CalledProcessError:
        return False
    return True


def get_remote_url(remote: str = "origin", cwd: Optional[str | Path] = None) -> str:
    """Return the URL configured for `remote`."""
    return _git(["remote", "get-url", remote], cwd=cwd)


def get_current_ref(cwd: Optional[str | Path] = None) -> str:
    """Return the current branch name, or the HEAD sha when detached."""
    ref = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if ref == "HEAD":
        return head_sha(cwd)
    return ref
