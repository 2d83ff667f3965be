"""
Change taxonomy for meta sync.

Every discrepancy between a source's live schema and the catalog is
reported as a ``MetaDiffChange`` of one of a closed set of kinds. The
order changes are applied in follows a precedence graph between kinds.
"""

from dataclasses import dataclass, field
from enum import Enum
from graphlib import TopologicalSorter
from typing import Any, Dict, Iterable, List, Optional

from ..catalog.models import Column, Table


class MetaDiffType(str, Enum):
    """Kinds of catalog drift."""

    TABLE_NEW = "TABLE_NEW"
    TABLE_REMOVE = "TABLE_REMOVE"
    TABLE_COLUMN_ADD = "TABLE_COLUMN_ADD"
    TABLE_COLUMN_TYPE_CHANGE = "TABLE_COLUMN_TYPE_CHANGE"
    TABLE_COLUMN_PROPS_CHANGED = "TABLE_COLUMN_PROPS_CHANGED"
    TABLE_COLUMN_REMOVE = "TABLE_COLUMN_REMOVE"
    VIEW_NEW = "VIEW_NEW"
    VIEW_REMOVE = "VIEW_REMOVE"
    VIEW_COLUMN_ADD = "VIEW_COLUMN_ADD"
    VIEW_COLUMN_TYPE_CHANGE = "VIEW_COLUMN_TYPE_CHANGE"
    VIEW_COLUMN_REMOVE = "VIEW_COLUMN_REMOVE"
    TABLE_RELATION_ADD = "TABLE_RELATION_ADD"
    TABLE_RELATION_REMOVE = "TABLE_RELATION_REMOVE"
    TABLE_VIRTUAL_M2M_REMOVE = "TABLE_VIRTUAL_M2M_REMOVE"


# kind -> kinds that must be applied before it
_RELATION_TEARDOWN = {
    MetaDiffType.TABLE_VIRTUAL_M2M_REMOVE.value,
    MetaDiffType.TABLE_RELATION_REMOVE.value,
}

CHANGE_PRECEDENCE: Dict[str, set] = {
    MetaDiffType.TABLE_VIRTUAL_M2M_REMOVE.value: set(),
    MetaDiffType.TABLE_RELATION_REMOVE.value: set(),
    MetaDiffType.VIEW_COLUMN_REMOVE.value: set(_RELATION_TEARDOWN),
}
for _member in MetaDiffType:
    CHANGE_PRECEDENCE.setdefault(_member.value, {MetaDiffType.VIEW_COLUMN_REMOVE.value})


def rank_change_kinds(precedence: Dict[str, Iterable[str]]) -> Dict[str, int]:
    """Rank each kind by its longest chain of predecessors in the precedence graph."""
    sorter = TopologicalSorter({kind: set(preds) for kind, preds in precedence.items()})
    ranks: Dict[str, int] = {}
    for kind in sorter.static_order():
        preds = precedence.get(kind, ())
        ranks[kind] = max((ranks[p] + 1 for p in preds), default=0)
    return ranks


CHANGE_RANKS = rank_change_kinds(CHANGE_PRECEDENCE)


def _kind(change_type) -> str:
    return change_type.value if isinstance(change_type, Enum) else change_type


@dataclass
class MetaDiffChange:
    """A single classified discrepancy."""

    type: str
    msg: str = ""
    tn: Optional[str] = None
    rtn: Optional[str] = None
    cn: Optional[str] = None
    rcn: Optional[str] = None
    relation_type: Optional[str] = None
    cstn: Optional[str] = None
    column: Optional[Column] = None
    model: Optional[Table] = None
    table_id: Optional[str] = None
    col_id: Optional[str] = None

    def __post_init__(self):
        self.type = _kind(self.type)
        if isinstance(self.relation_type, Enum):
            self.relation_type = self.relation_type.value

    @property
    def rank(self) -> int:
        # unknown kinds go last
        return CHANGE_RANKS.get(self.type, max(CHANGE_RANKS.values()) + 1)

    def to_dict(self) -> Dict[str, Any]:
        data = {
            "type": self.type,
            "msg": self.msg,
            "tn": self.tn,
            "rtn": self.rtn,
            "cn": self.cn,
            "rcn": self.rcn,
            "relationType": self.relation_type,
            "cstn": self.cstn,
            "colId": self.col_id,
            "id": self.table_id,
        }
        return {k: v for k, v in data.items() if v is not None}


def sort_changes(changes: List[MetaDiffChange]) -> List[MetaDiffChange]:
    """Stable sort of a table's changes into application order."""
    return sorted(changes, key=lambda c: c.rank)


@dataclass
class MetaDiff:
    """Changes detected for one physical table or view."""

    table_name: str
    source_id: str
    type: str = "table"
    title: Optional[str] = None
    changes: List[MetaDiffChange] = field(default_factory=list)

    def __post_init__(self):
        if isinstance(self.type, Enum):
            self.type = self.type.value

    @property
    def has_changes(self) -> bool:
        return bool(self.changes)

    def ordered_changes(self) -> List[MetaDiffChange]:
        return sort_changes(self.changes)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "table_name": self.table_name,
            "source_id": self.source_id,
            "type": self.type,
            "title": self.title,
            "detectedChanges": [c.to_dict() for c in self.changes],
        }
