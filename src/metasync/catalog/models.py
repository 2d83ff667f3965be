"""
Catalog entities: tables, columns, column options and views.

Entities are plain dataclasses; persistence and caching live in
``metasync.catalog.store``.
"""

import copy
from dataclasses import dataclass, field, fields
from typing import Any, ClassVar, Dict, List, Optional, Tuple

from .types import ModelType, UIType, ViewType


@dataclass(frozen=True)
class CatalogContext:
    """Tenancy scope every catalog call runs in."""

    workspace_id: str
    base_id: str


class RowModel:
    """Conversion between dataclass entities and stored rows."""

    _transient: ClassVar[Tuple[str, ...]] = ()

    @classmethod
    def from_row(cls, row: Dict[str, Any]):
        names = {f.name for f in fields(cls)} - set(cls._transient)
        return cls(**{k: copy.deepcopy(v) for k, v in row.items() if k in names})

    def to_row(self) -> Dict[str, Any]:
        return {
            f.name: copy.deepcopy(getattr(self, f.name))
            for f in fields(self)
            if f.name not in self._transient
        }


@dataclass
class RelationOptions(RowModel):
    fk_column_id: str
    type: str
    fk_child_column_id: Optional[str] = None
    fk_parent_column_id: Optional[str] = None
    fk_related_model_id: Optional[str] = None
    fk_mm_model_id: Optional[str] = None
    fk_mm_child_column_id: Optional[str] = None
    fk_mm_parent_column_id: Optional[str] = None
    fk_index_name: Optional[str] = None
    virtual: bool = False
    id: Optional[str] = None

    def referenced_column_ids(self) -> List[str]:
        return [
            c
            for c in (
                self.fk_child_column_id,
                self.fk_parent_column_id,
                self.fk_mm_child_column_id,
                self.fk_mm_parent_column_id,
            )
            if c
        ]


@dataclass
class FormulaOptions(RowModel):
    fk_column_id: str
    formula: Optional[str] = None
    formula_raw: Optional[str] = None
    parsed_tree: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    id: Optional[str] = None


@dataclass
class ButtonOptions(RowModel):
    fk_column_id: str
    type: str = "url"
    label: Optional[str] = None
    formula: Optional[str] = None
    formula_raw: Optional[str] = None
    parsed_tree: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    id: Optional[str] = None


@dataclass
class LookupOptions(RowModel):
    fk_column_id: str
    fk_relation_column_id: Optional[str] = None
    fk_lookup_column_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class RollupOptions(RowModel):
    fk_column_id: str
    fk_relation_column_id: Optional[str] = None
    fk_rollup_column_id: Optional[str] = None
    rollup_function: Optional[str] = None
    id: Optional[str] = None


@dataclass
class QrCodeOptions(RowModel):
    fk_column_id: str
    fk_qr_value_column_id: Optional[str] = None
    id: Optional[str] = None


@dataclass
class BarcodeOptions(RowModel):
    fk_column_id: str
    fk_barcode_value_column_id: Optional[str] = None
    barcode_format: Optional[str] = None
    id: Optional[str] = None


@dataclass
class AIOptions(RowModel):
    fk_column_id: str
    prompt: Optional[str] = None
    prompt_raw: Optional[str] = None
    error: Optional[str] = None
    id: Optional[str] = None


@dataclass
class Column(RowModel):
    """A catalog column, physical or virtual."""

    _transient: ClassVar[Tuple[str, ...]] = ("options",)

    fk_model_id: str
    title: str
    uidt: str
    column_name: Optional[str] = None
    id: Optional[str] = None
    base_id: Optional[str] = None
    source_id: Optional[str] = None

    # physical type attributes
    dt: Optional[str] = None
    dtxp: Optional[str] = None
    dtxs: Optional[str] = None
    clen: Optional[int] = None
    np: Optional[int] = None
    ns: Optional[int] = None
    cdf: Optional[str] = None

    pk: bool = False
    rqd: bool = False
    unique: bool = False
    ai: bool = False
    un: bool = False

    pv: bool = False
    system: bool = False
    order: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    options: Optional[Any] = None

    def __post_init__(self):
        if isinstance(self.uidt, UIType):
            self.uidt = self.uidt.value
        if self.meta is None:
            self.meta = {}

    @property
    def is_formula_like(self) -> bool:
        return self.uidt in (UIType.FORMULA, UIType.BUTTON)

    def __str__(self) -> str:
        return f"{self.title} ({self.uidt})"


@dataclass
class Table(RowModel):
    """A catalog table (model) mirroring a physical table or view."""

    _transient: ClassVar[Tuple[str, ...]] = ("columns",)

    base_id: str
    source_id: str
    table_name: str
    title: str
    id: Optional[str] = None
    type: str = ModelType.TABLE.value
    mm: bool = False
    order: Optional[float] = None
    meta: Dict[str, Any] = field(default_factory=dict)

    columns: Optional[List[Column]] = None

    def __post_init__(self):
        if isinstance(self.type, ModelType):
            self.type = self.type.value
        if self.meta is None:
            self.meta = {}

    @property
    def primary_keys(self) -> List[Column]:
        return [c for c in self.columns or [] if c.pk]

    def get_column(self, column_name: str) -> Optional[Column]:
        for col in self.columns or []:
            if col.column_name == column_name:
                return col
        return None


@dataclass
class View(RowModel):
    fk_model_id: str
    title: str
    id: Optional[str] = None
    base_id: Optional[str] = None
    source_id: Optional[str] = None
    type: str = ViewType.GRID.value
    is_default: bool = False
    order: Optional[float] = None

    def __post_init__(self):
        if isinstance(self.type, ViewType):
            self.type = self.type.value


@dataclass
class ViewColumn(RowModel):
    fk_view_id: str
    fk_column_id: str
    id: Optional[str] = None
    base_id: Optional[str] = None
    show: bool = True
    order: Optional[float] = None
