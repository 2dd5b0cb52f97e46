"""Hierarchical chunk store with summary-aware retrieval."""
from __future__ import annotations

__version__ = "0.1.0"
