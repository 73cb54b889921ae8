"""
Bulk insert SQL: exact text, sequential $n numbering and row-major parameters.
"""

import re

import pytest

from services.bulk_insert import (
    PARENT_ID,
    FlatInsert,
    ParentChildInsert,
    build_flat_insert,
    build_parent_child_insert,
)

PLACEHOLDER = re.compile(r"\$(\d+)")


def _numbers(sql: str) -> list[int]:
    return [int(n) for n in PLACEHOLDER.findall(sql)]


def test_flat_insert_exact_text():
    sql = build_flat_insert("join_event", ["peer_id", "timestamp", "topic"], 2)
    assert sql == (
        "INSERT INTO join_event(peer_id, timestamp, topic) VALUES "
        "($1, $2, $3),($4, $5, $6)"
    )


@pytest.mark.parametrize("rows", [1, 2, 7, 50])
@pytest.mark.parametrize("cols", [["a"], ["a", "b", "c"], ["a", "b", "c", "d", "e", "f"]])
def test_flat_insert_numbering_has_no_gaps(rows, cols):
    sql = build_flat_insert("t", cols, rows)

    # exactly `rows` value tuples
    values = sql.split(" VALUES ", 1)[1]
    assert values.count("(") == rows

    # parameters 1..rows*K, in order, each once
    assert _numbers(sql) == list(range(1, rows * len(cols) + 1))


def test_flat_insert_is_row_major():
    sql = build_flat_insert("t", ["a", "b"], 3)
    tuples = re.findall(r"\(([^()]*)\)", sql.split(" VALUES ", 1)[1])
    assert tuples == ["$1, $2", "$3, $4", "$5, $6"]


def test_flat_insert_zero_rows_has_no_value_tuples():
    # Degenerate statement; the batch executor must never queue it.
    sql = build_flat_insert("t", ["a", "b"], 0)
    assert sql == "INSERT INTO t(a, b) VALUES "
    assert _numbers(sql) == []


def test_parent_child_exact_text():
    sql = build_parent_child_insert("p", ["x", "y"], "c", ["p_id", "u", "v"], 2)
    assert sql == (
        "WITH new_p AS (INSERT INTO p(x, y) VALUES ($1, $2) RETURNING id) "
        "INSERT INTO c(p_id, u, v) VALUES "
        "((select id from new_p),$3,$4),((select id from new_p),$5,$6)"
    )


def test_parent_child_numbering_continues_from_parent():
    parent_cols = ["peer_id", "timestamp", "other_peer_id", "a", "b", "c"]
    child_cols = ["peer_score_event_id", "topic", "time_in_mesh", "f", "m", "i"]
    sql = build_parent_child_insert("peer_score_event", parent_cols, "peer_score_topic", child_cols, 3)

    # 6 parent params + 3 children * 5 params, no gaps, no renumbering
    assert _numbers(sql) == list(range(1, 6 + 3 * 5 + 1))
    assert sql.count("(select id from new_peer_score_event)") == 3


def test_parent_child_without_children_is_parent_only():
    sql = build_parent_child_insert("p", ["x", "y"], "c", ["p_id", "u"], 0)
    assert sql == "INSERT INTO p(x, y) VALUES ($1, $2)"
    assert "c(" not in sql
    assert "WITH" not in sql


def test_flat_binding_flattens_rows_in_order():
    binding = FlatInsert(table="t", columns=("a", "b"))
    [(sql, params)] = binding.statements([(1, 2), (3, 4), (5, 6)])

    assert params == (1, 2, 3, 4, 5, 6)
    assert len(params) == len(_numbers(sql))


def test_flat_binding_queues_nothing_for_no_rows():
    assert FlatInsert(table="t", columns=("a",)).statements([]) == []


def test_flat_binding_rejects_misaligned_row():
    binding = FlatInsert(table="t", columns=("a", "b"))
    with pytest.raises(ValueError):
        binding.statements([(1, 2), (3,)])


def test_parent_child_binding_skips_marker_in_params():
    binding = ParentChildInsert(
        parent_table="p",
        parent_columns=("x", "y"),
        child_table="c",
        child_columns=("p_id", "u"),
    )
    groups = [
        (("x1", "y1"), [(PARENT_ID, "u1"), (PARENT_ID, "u2")]),
        (("x2", "y2"), []),
    ]

    stmts = binding.statements(groups)

    # one statement per parent, never merged
    assert len(stmts) == 2
    sql1, params1 = stmts[0]
    assert params1 == ("x1", "y1", "u1", "u2")
    assert len(params1) == len(_numbers(sql1))
    assert PARENT_ID not in params1

    sql2, params2 = stmts[1]
    assert sql2 == "INSERT INTO p(x, y) VALUES ($1, $2)"
    assert params2 == ("x2", "y2")


def test_parent_child_binding_requires_marker():
    binding = ParentChildInsert("p", ("x",), "c", ("p_id", "u"))
    with pytest.raises(ValueError):
        binding.statements([(("x1",), [("literal-id", "u1")])])
