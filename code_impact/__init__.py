"""code-impact: dependency graph, change impact, and repair ordering for JS projects."""

__version__ = "0.1.0"
