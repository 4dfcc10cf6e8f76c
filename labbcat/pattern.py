"""Fluent builder for search patterns.

A pattern is a sequence of columns; each column constrains one token
through one or more layers, and ``adj`` is how many tokens may separate it
from the next column::

    pattern = (
        PatternBuilder()
        .add_matches("orthography", "the")
        .add_column()
        .add_matches("orthography", "quick|slow")
        .build()
    )
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field
from typing import Any


@dataclass
class _Column:
    layers: dict[str, dict[str, Any]] = field(default_factory=dict)
    adj: int = 1


class PatternBuilder:
    """Accumulates columns and layer conditions; :meth:`build` emits the JSON."""

    def __init__(self) -> None:
        """Start with no columns."""
        self._columns: list[_Column] = []

    def add_column(self, adj: int = 1) -> PatternBuilder:
        """Start a new column, or reuse the last one if it has no layers yet."""
        if self._columns and not self._columns[-1].layers:
            self._columns[-1].adj = adj
            return self
        self._columns.append(_Column(adj=adj))
        return self

    def add_matches(self, layer_id: str, pattern: str) -> PatternBuilder:
        """Require *layer_id* to match the regular expression *pattern*."""
        self._last_layers()[layer_id] = {"pattern": pattern}
        return self

    def add_not_matches(self, layer_id: str, pattern: str) -> PatternBuilder:
        """Require *layer_id* NOT to match *pattern*."""
        self._last_layers()[layer_id] = {"not": True, "pattern": pattern}
        return self

    def add_min(self, layer_id: str, minimum: float) -> PatternBuilder:
        """Require the numeric label of *layer_id* to be at least *minimum*."""
        self._last_layers()[layer_id] = {"min": str(minimum)}
        return self

    def add_max(self, layer_id: str, maximum: float) -> PatternBuilder:
        """Require the numeric label of *layer_id* to be below *maximum*."""
        self._last_layers()[layer_id] = {"max": str(maximum)}
        return self

    def add_range(self, layer_id: str, minimum: float, maximum: float) -> PatternBuilder:
        """Require the numeric label of *layer_id* to be within a range."""
        self._last_layers()[layer_id] = {"min": str(minimum), "max": str(maximum)}
        return self

    def build(self) -> dict[str, Any]:
        """Return the pattern as a JSON-compatible dict."""
        columns: list[dict[str, Any]] = []
        for index, column in enumerate(self._columns):
            entry: dict[str, Any] = {"layers": {k: dict(v) for k, v in column.layers.items()}}
            if index < len(self._columns) - 1:
                entry["adj"] = column.adj
            columns.append(entry)
        return {"columns": columns}

    def __str__(self) -> str:
        return json.dumps(self.build())

    def _last_layers(self) -> dict[str, dict[str, Any]]:
        if not self._columns:
            self.add_column()
        return self._columns[-1].layers
