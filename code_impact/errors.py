"""Exception types raised by code-impact."""

from __future__ import annotations


class CodeImpactError(Exception):
    """Base class for errors that abort an operation."""


class MissingArtifactError(CodeImpactError):
    """A required artifact (dependency graph, test map, test result) does not exist."""

    def __init__(self, path, hint: str = ""):
        self.path = path
        self.hint = hint
        message = f"missing {path}"
        if hint:
            message += f"\n{hint}"
        super().__init__(message)


class MalformedArtifactError(CodeImpactError):
    """An artifact exists but is not valid JSON or has the wrong version/shape."""

    def __init__(self, path, reason: str = ""):
        self.path = path
        self.reason = reason
        message = f"invalid {path}"
        if reason:
            message += f": {reason}"
        super().__init__(message)


class InvalidInputError(CodeImpactError):
    """Caller input is unusable, e.g. mutually exclusive options."""


class GitError(CodeImpactError):
    """A git command failed."""
