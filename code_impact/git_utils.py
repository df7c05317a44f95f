"""Changed-file discovery through ``git diff``."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from code_impact.errors import GitError, InvalidInputError
from code_impact.paths import is_inside, normalize_rel

logger = logging.getLogger(__name__)


def _git(cwd: Path, args: list[str]) -> str:
    try:
        proc = subprocess.run(
            ["git", *args],
            cwd=cwd,
            capture_output=True,
            text=True,
            check=True,
        )
    except FileNotFoundError as e:
        raise GitError("git executable not found") from e
    except subprocess.CalledProcessError as e:
        detail = (e.stderr or "").strip() or f"exit code {e.returncode}"
        raise GitError(f"failed to run git {' '.join(args)}: {detail}") from e
    return proc.stdout


def git_changed_files(project_root: Path, since: str | None = None, staged: bool = False) -> list[str]:
    """Project-relative paths reported by ``git diff --name-only``.

    ``since`` diffs against a revision, ``staged`` against the index; the two
    are mutually exclusive. With neither, the working tree is diffed against HEAD.
    """
    if since and staged:
        raise InvalidInputError("--since and --staged are mutually exclusive.")

    args = ["diff", "--name-only"]
    if since:
        args.append(since)
    elif staged:
        args.append("--cached")
    else:
        args.append("HEAD")

    output = _git(project_root, args)
    paths = []
    for line in output.splitlines():
        rel = normalize_rel(line.strip())
        if is_inside(rel):
            paths.append(rel)
    logger.debug("git reported %d changed file(s)", len(paths))
    return sorted(set(paths))
