"""Abstract base scanner."""

from __future__ import annotations

import abc
import fnmatch
from pathlib import Path

from code_impact.models import DEFAULT_SKIP_DIRS, ScanConfig, ScannedFile
from code_impact.paths import should_process, to_posix


class BaseScanner(abc.ABC):
    """Base class for language-specific dependency scanners."""

    extensions: tuple[str, ...]

    def __init__(self, skip_dirs: list[str] | None = None):
        self.skip_dirs = skip_dirs or list(DEFAULT_SKIP_DIRS)

    @abc.abstractmethod
    def scan_source(self, source: str) -> ScannedFile:
        """Extract dependency specifiers and exported names from source text."""

    def scan_file(self, file_path: Path) -> ScannedFile:
        source = file_path.read_text(encoding="utf-8")
        return self.scan_source(source)

    def scan_directory(
        self,
        directory: Path,
        project_root: Path | None = None,
        config: ScanConfig | None = None,
    ) -> dict[str, Path]:
        """Recursively collect scannable files.

        Returns a mapping of ``directory``-relative posix keys to absolute
        paths. Include/ignore patterns are evaluated against paths relative
        to ``project_root`` (defaults to ``directory``).
        """
        config = config or ScanConfig()
        directory = directory.resolve()
        project_root = (project_root or directory).resolve()
        extensions = tuple(e.lower() for e in config.extensions) or self.extensions
        results: dict[str, Path] = {}

        def walk(current: Path) -> None:
            try:
                entries = sorted(current.iterdir())
            except OSError:
                return
            for path in entries:
                if path.is_dir():
                    if not self._should_skip(path.name):
                        walk(path)
                    continue
                if not path.is_file():
                    continue
                if path.suffix.lower() not in extensions:
                    continue
                try:
                    rel_to_project = to_posix(str(path.relative_to(project_root)))
                except ValueError:
                    continue
                if not should_process(rel_to_project, config.include, config.ignore):
                    continue
                results[to_posix(str(path.relative_to(directory)))] = path

        walk(directory)
        return results

    def _should_skip(self, name: str) -> bool:
        return any(fnmatch.fnmatch(name, pattern) for pattern in self.skip_dirs)
