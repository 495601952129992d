from __future__ import annotations

import subprocess  # noqa: S404
from typing import TYPE_CHECKING

from pydantic import BaseModel, ConfigDict, Field

from context_bundle.exceptions import GitCommandError
from context_bundle.logging import logger

if TYPE_CHECKING:
    from pathlib import Path

DETACHED_HEAD = "detached HEAD"


class GitInfo(BaseModel):
    """Version control information of the project being exported."""

    model_config = ConfigDict(frozen=True)

    branch: str | None = Field(None, description="Current branch, or 'detached HEAD'")
    commit: str | None = Field(None, description="Full hash of HEAD")
    commit_short: str | None = Field(None, description="Abbreviated hash of HEAD")
    author: str | None = Field(None, description="Author of the last commit")


def run_git(repo: Path, *args: str) -> str:
    """Run a git command inside `repo` and return its stripped stdout.

    Args:
        repo (Path): the working directory of the command.
        *args (str): the git sub-command and its arguments.

    Raises:
        GitCommandError: if git is missing or exits with a non-zero status.

    Returns:
        str: the standard output of the command, stripped.
    """
    command = ["git", *args]
    try:
        out = subprocess.run(  # noqa: S603
            command,
            cwd=str(repo),
            text=True,
            capture_output=True,
            check=True,
        )
    except subprocess.CalledProcessError as e:
        raise GitCommandError(
            command=" ".join(command), returncode=e.returncode, stdout=e.stdout or "", stderr=e.stderr or ""
        ) from e
    except OSError as e:
        raise GitCommandError(command=" ".join(command), returncode=-1, stdout="", stderr=str(e)) from e
    return out.stdout.strip()


def read_git_info(root: Path) -> GitInfo | None:
    """Read branch, commit and last author of the work tree containing `root`.

    Args:
        root (Path): the project root.

    Returns:
        GitInfo | None: the information, or None when `root` is not inside a git
            work tree or git cannot be run.
    """
    try:
        if run_git(root, "rev-parse", "--is-inside-work-tree") != "true":
            return None
        branch = run_git(root, "rev-parse", "--abbrev-ref", "HEAD")
        commit = run_git(root, "rev-parse", "HEAD")
        author = run_git(root, "log", "-1", "--pretty=format:%an")
    except GitCommandError as e:
        logger.info("git.unavailable", root=str(root), command=e.command, stderr=e.stderr.strip())
        return None
    return GitInfo(
        branch=DETACHED_HEAD if branch == "HEAD" else branch,
        commit=commit or None,
        commit_short=commit[:7] or None,
        author=author or None,
    )
