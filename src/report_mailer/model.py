"""In-memory tabular result shared by the query executor and the renderers."""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass(frozen=True)
class Table:
    """Named columns plus rows of loosely typed cell values.

    Every row holds exactly one value (possibly ``None``) per column, and
    column order defines output order in every renderer.
    """

    columns: tuple[str, ...]
    rows: tuple[tuple[Any, ...], ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "columns", tuple(self.columns))
        object.__setattr__(self, "rows", tuple(tuple(row) for row in self.rows))

        width = len(self.columns)
        for index, row in enumerate(self.rows):
            if len(row) != width:
                raise ValueError(
                    f"Row {index} has {len(row)} values, expected {width}"
                )

    @property
    def column_count(self) -> int:
        return len(self.columns)

    @property
    def row_count(self) -> int:
        return len(self.rows)

    def column_index(self, name: str) -> int | None:
        """Return the 0-based position of the first column called *name*."""
        try:
            return self.columns.index(name)
        except ValueError:
            return None
