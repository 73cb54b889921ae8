# services/bulk_insert.py
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, List, Sequence, Tuple

Row = Tuple[Any, ...]
Statement = Tuple[str, Tuple[Any, ...]]


class _ParentIdRef:
    """Marker for a child column bound to the id of the parent inserted in the same statement."""

    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self) -> str:
        return "PARENT_ID"


PARENT_ID = _ParentIdRef()


def _placeholders(start: int, count: int) -> str:
    return ", ".join(f"${i}" for i in range(start, start + count))


def build_flat_insert(table: str, columns: Sequence[str], row_count: int) -> str:
    """
    INSERT INTO table(c1, ..., cK) VALUES ($1, ..., $K),($K+1, ...)

    Parameters are numbered row-major, 1..row_count*K.
    row_count == 0 gives a statement without value tuples, which is not valid
    SQL; callers only build statements for non-empty row sets.
    """
    k = len(columns)
    tuples = ",".join(
        "(" + _placeholders(r * k + 1, k) + ")" for r in range(row_count)
    )
    return "INSERT INTO " + table + "(" + ", ".join(columns) + ") VALUES " + tuples


def build_parent_child_insert(
    parent_table: str,
    parent_columns: Sequence[str],
    child_table: str,
    child_columns: Sequence[str],
    child_row_count: int,
) -> str:
    """
    One parent row plus child rows in a single statement:

        WITH new_peer_score_event AS (
            INSERT INTO peer_score_event(peer_id, ...) VALUES ($1, ..., $6) RETURNING id
        )
        INSERT INTO peer_score_topic(peer_score_event_id, topic, ...)
        VALUES ((select id from new_peer_score_event),$7,...),(...)

    The first child column takes the parent id through the sub-query; the
    remaining child columns continue the parent's parameter numbering.
    Without children this is a plain one-row insert into the parent table.
    """
    if child_row_count == 0:
        return build_flat_insert(parent_table, parent_columns, 1)

    cte = "new_" + parent_table
    parent_k = len(parent_columns)
    child_params = len(child_columns) - 1

    parts = [
        "WITH " + cte + " AS (",
        "INSERT INTO " + parent_table + "(" + ", ".join(parent_columns) + ") VALUES ",
        "(" + _placeholders(1, parent_k) + ") RETURNING id) ",
        "INSERT INTO " + child_table + "(" + ", ".join(child_columns) + ") VALUES ",
    ]

    idx = parent_k
    rows = []
    for _ in range(child_row_count):
        values = ["(select id from " + cte + ")"]
        for _c in range(child_params):
            idx += 1
            values.append(f"${idx}")
        rows.append("(" + ",".join(values) + ")")
    parts.append(",".join(rows))
    return "".join(parts)


@dataclass(frozen=True)
class FlatInsert:
    """All mapped rows of one event type go into one multi-row statement."""

    table: str
    columns: Tuple[str, ...]

    def statements(self, rows: List[Row]) -> List[Statement]:
        if not rows:
            return []
        params: list[Any] = []
        for row in rows:
            if len(row) != len(self.columns):
                raise ValueError(
                    f"{self.table}: row has {len(row)} values, expected {len(self.columns)}"
                )
            params.extend(row)
        sql = build_flat_insert(self.table, self.columns, len(rows))
        return [(sql, tuple(params))]


@dataclass(frozen=True)
class ParentChildInsert:
    """One statement per parent row, carrying all of that parent's children."""

    parent_table: str
    parent_columns: Tuple[str, ...]
    child_table: str
    child_columns: Tuple[str, ...]

    def statements(self, groups: List[Tuple[Row, List[Row]]]) -> List[Statement]:
        out: List[Statement] = []
        for parent, children in groups:
            if len(parent) != len(self.parent_columns):
                raise ValueError(
                    f"{self.parent_table}: row has {len(parent)} values, "
                    f"expected {len(self.parent_columns)}"
                )
            params: list[Any] = list(parent)
            for child in children:
                if len(child) != len(self.child_columns) or child[0] is not PARENT_ID:
                    raise ValueError(
                        f"{self.child_table}: child row must be PARENT_ID followed by "
                        f"{len(self.child_columns) - 1} values"
                    )
                params.extend(child[1:])
            sql = build_parent_child_insert(
                self.parent_table,
                self.parent_columns,
                self.child_table,
                self.child_columns,
                len(children),
            )
            out.append((sql, tuple(params)))
        return out
