"""Scanner registry."""

from __future__ import annotations

from code_impact.scanner.base import BaseScanner
from code_impact.scanner.js_scanner import (
    JsScanner,
    parse_exports,
    parse_imports,
    strip_comments,
    tokenize,
)


def get_scanner(skip_dirs: list[str] | None = None) -> BaseScanner:
    """Scanner for the supported source language (JavaScript modules)."""
    return JsScanner(skip_dirs=skip_dirs)


__all__ = [
    "BaseScanner",
    "JsScanner",
    "get_scanner",
    "parse_exports",
    "parse_imports",
    "strip_comments",
    "tokenize",
]
