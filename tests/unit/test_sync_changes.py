"""
Tests for metasync.sync.changes: change kinds and application order.
"""

import pytest

from metasync.sync.changes import (
    CHANGE_PRECEDENCE,
    CHANGE_RANKS,
    MetaDiff,
    MetaDiffChange,
    MetaDiffType,
    rank_change_kinds,
    sort_changes,
)


class TestChangeRanks:
    """Test the precedence graph between change kinds."""

    def test_every_kind_is_ranked(self):
        assert set(CHANGE_RANKS) == {t.value for t in MetaDiffType}

    def test_relation_teardown_goes_first(self):
        assert CHANGE_RANKS["TABLE_RELATION_REMOVE"] == 0
        assert CHANGE_RANKS["TABLE_VIRTUAL_M2M_REMOVE"] == 0
        assert CHANGE_RANKS["VIEW_COLUMN_REMOVE"] == 1
        assert CHANGE_RANKS["TABLE_COLUMN_REMOVE"] == 2
        assert CHANGE_RANKS["TABLE_NEW"] == 2

    def test_predecessors_rank_lower(self):
        for kind, predecessors in CHANGE_PRECEDENCE.items():
            for predecessor in predecessors:
                assert CHANGE_RANKS[predecessor] < CHANGE_RANKS[kind]

    def test_cycle_is_rejected(self):
        with pytest.raises(Exception):
            rank_change_kinds({"a": {"b"}, "b": {"a"}})


class TestMetaDiffChange:
    def test_enum_values_are_stored_as_strings(self):
        change = MetaDiffChange(MetaDiffType.TABLE_NEW, relation_type=None)
        assert change.type == "TABLE_NEW"
        assert change.type == MetaDiffType.TABLE_NEW

    def test_unknown_kind_ranks_last(self):
        change = MetaDiffChange("SOMETHING_ELSE")
        assert change.rank > max(CHANGE_RANKS.values())

    def test_to_dict_omits_empty_fields(self):
        change = MetaDiffChange(
            MetaDiffType.TABLE_COLUMN_ADD, msg="New column(email)", cn="email", table_id="md_1"
        )
        assert change.to_dict() == {
            "type": "TABLE_COLUMN_ADD",
            "msg": "New column(email)",
            "cn": "email",
            "id": "md_1",
        }


class TestSortChanges:
    def test_stable_sort_by_rank(self):
        changes = [
            MetaDiffChange(MetaDiffType.TABLE_COLUMN_ADD, msg="add a"),
            MetaDiffChange(MetaDiffType.TABLE_COLUMN_REMOVE, msg="remove b"),
            MetaDiffChange(MetaDiffType.VIEW_COLUMN_REMOVE, msg="view remove"),
            MetaDiffChange(MetaDiffType.TABLE_RELATION_REMOVE, msg="relation"),
            MetaDiffChange(MetaDiffType.TABLE_COLUMN_ADD, msg="add c"),
        ]

        ordered = [c.msg for c in sort_changes(changes)]

        assert ordered == ["relation", "view remove", "add a", "remove b", "add c"]


class TestMetaDiff:
    def test_to_dict(self):
        diff = MetaDiff(
            "users",
            "src1",
            changes=[MetaDiffChange(MetaDiffType.TABLE_NEW, msg="New table")],
        )
        assert diff.has_changes
        data = diff.to_dict()
        assert data["table_name"] == "users"
        assert data["type"] == "table"
        assert data["detectedChanges"] == [{"type": "TABLE_NEW", "msg": "New table"}]

    def test_empty(self):
        assert not MetaDiff("users", "src1").has_changes
