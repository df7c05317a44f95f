"""Graph construction and the analyses that run over it."""
