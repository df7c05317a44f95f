"""Project root discovery and ``.stale-config.json`` loading."""

from __future__ import annotations

import json
import logging
from pathlib import Path

from pydantic import BaseModel, ValidationError

from code_impact.models import ScanConfig

logger = logging.getLogger(__name__)

CONFIG_FILENAME = ".stale-config.json"
CONFIG_DIR = ".project-index"

_ROOT_MARKERS = (".git", CONFIG_FILENAME, "package.json")


class StaleConfigFile(BaseModel):
    include: list[str] = []
    ignore: list[str] = []
    extensions: list[str] | None = None


def find_project_root(start: Path) -> Path:
    """Nearest ancestor of ``start`` holding a project marker, else ``start`` itself."""
    start = start.resolve()
    for current in (start, *start.parents):
        if any((current / marker).exists() for marker in _ROOT_MARKERS):
            return current
    return start


def config_paths(project_root: Path) -> list[Path]:
    return [
        project_root / CONFIG_DIR / CONFIG_FILENAME,
        project_root / CONFIG_FILENAME,
    ]


def load_scan_config(project_root: Path) -> ScanConfig:
    """Read include/ignore/extensions from the first config file found.

    A missing file yields defaults. An unreadable or invalid file is skipped
    with a warning.
    """
    for path in config_paths(project_root):
        if not path.exists():
            continue
        try:
            raw = json.loads(path.read_text(encoding="utf-8"))
            parsed = StaleConfigFile.model_validate(raw)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("ignoring invalid config %s: %s", path, e)
            continue

        config = ScanConfig(include=list(parsed.include), ignore=list(parsed.ignore))
        if parsed.extensions:
            config.extensions = tuple(
                ext if ext.startswith(".") else f".{ext}" for ext in parsed.extensions
            )
        logger.debug("loaded config from %s", path)
        return config

    return ScanConfig()
