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
    If git exits with a non-zero status, subprocess.CalledProcessError is raised
    with stderr attached so callers can report it.

    Args:
        args: List of git arguments (e.g. ["rev-parse", "HEAD"])
        cwd: Optional working directory in which to run the git command.

    Returns:
        Stdout from the git command with surrounding whitespace removed.
    """
    proc = subprocess.run(
        ["git", *args],
        cwd=str(cwd) if cwd is not None else None,
        text=True,
        capture_output=True,
    )
    if proc.returncode != 0:
        raise subprocess.CalledProcessError(proc.returncode, proc.args, proc.stdout, proc.stderr)
    return proc.stdout.strip()


def repo_root(cwd: Optional[str | Path] = None) -> Path:
    """
    Return the absolute path to the root of the current Git repository.

    `git rev-parse --show-toplevel` prints the repo root directory
    regardless of where the command is run from inside the repo.
    """
    return Path(_git(["rev-parse", "--show-toplevel"], cwd=cwd))


def current_branch(cwd: Optional[str | Path] = None) -> str:
    """
    Return the checked-out branch name, used as the default trigger branch.

    Raises:
        subprocess.CalledProcessError: outside a repository, or on a detached
        HEAD (there is no branch to trigger on).
    """
    branch = _git(["rev-parse", "--abbrev-ref", "HEAD"], cwd=cwd)
    if branch == "HEAD":
        raise subprocess.CalledProcessError(1, ["git", "rev-parse", "--abbrev-ref", "HEAD"], "", "detached HEAD")
    return branch


def head_sha(cwd: Optional[str | Path] = None) -> str:
    """Return the full SHA hash of HEAD, for provenance in logs."""
    return _git(["rev-parse", "HEAD"], cwd=cwd)


def clone(source: str, dest: str | Path, ref: Optional[str] = None) -> None:
    """
    Clone `source` into `dest` (which must be empty or absent) at `ref`.

    `source` may be a local repository path or a remote URL. `ref` may be a
    branch, tag or commit SHA; without one the remote's default branch is used.
    """
    _git(["clone", "--quiet", source, str(dest)])
    if ref:
        _git(["checkout", "--quiet", ref], cwd=dest)
