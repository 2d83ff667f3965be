"""
Virtual column kinds.

Each virtual column kind declares which catalog columns it depends on and
how it reacts when one of them is removed or changes type. Invalidation
dispatches through ``kind_for`` instead of branching on UI types.
"""

import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Set, Tuple

from ..catalog.models import Column
from ..catalog.types import UIType, is_ai_prompt_column


class InvalidationAction(str, Enum):
    NONE = "none"
    UPDATE = "update"
    DELETE = "delete"


@dataclass
class Invalidation:
    """What to do with a dependent column."""

    action: InvalidationAction = InvalidationAction.NONE
    option_updates: Dict[str, Any] = field(default_factory=dict)

    @classmethod
    def none(cls) -> "Invalidation":
        return cls(InvalidationAction.NONE)

    @classmethod
    def delete(cls) -> "Invalidation":
        return cls(InvalidationAction.DELETE)

    @classmethod
    def update(cls, **values) -> "Invalidation":
        return cls(InvalidationAction.UPDATE, values)


_REFERENCE = re.compile(r"\{([^{}]+)\}")


def referenced_ids_in_text(text: Optional[str]) -> Set[str]:
    """Column ids referenced as ``{id}`` in a formula or prompt."""
    if not text:
        return set()
    return {match.strip() for match in _REFERENCE.findall(text)}


def referenced_ids_in_tree(tree: Any) -> Set[str]:
    """Identifier names found anywhere in a parsed expression tree."""
    found: Set[str] = set()
    if isinstance(tree, dict):
        if tree.get("type") == "Identifier" and tree.get("name"):
            found.add(tree["name"])
        for value in tree.values():
            found |= referenced_ids_in_tree(value)
    elif isinstance(tree, list):
        for item in tree:
            found |= referenced_ids_in_tree(item)
    return found


def field_not_found(column: Column) -> str:
    return f"Field '{column.title}' not found"


class VirtualColumnKind(ABC):
    """Capabilities shared by every virtual column kind."""

    ui_types: Tuple[str, ...] = ()

    @abstractmethod
    def depends_on_columns(self, column: Column) -> Set[str]:
        """Ids of the catalog columns this column is computed from."""

    @abstractmethod
    def on_referenced_column_removed(self, column: Column, removed: Column) -> Invalidation:
        ...

    def on_referenced_column_type_changed(self, column: Column, changed: Column) -> Invalidation:
        return Invalidation.none()

    def references(self, column: Column, other: Column) -> bool:
        return other.id in self.depends_on_columns(column)


class FormulaKind(VirtualColumnKind):
    """Formula columns stay in place and are flagged until repaired."""

    ui_types = (UIType.FORMULA.value,)

    def depends_on_columns(self, column):
        options = column.options
        if options is None:
            return set()
        return referenced_ids_in_text(options.formula) | referenced_ids_in_tree(options.parsed_tree)

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.update(error=field_not_found(removed), parsed_tree=None)

    def on_referenced_column_type_changed(self, column, changed):
        return Invalidation.update(parsed_tree=None)


class ButtonKind(FormulaKind):
    ui_types = (UIType.BUTTON.value,)


class LookupKind(VirtualColumnKind):
    ui_types = (UIType.LOOKUP.value,)

    def depends_on_columns(self, column):
        options = column.options
        if options is None:
            return set()
        return {c for c in (options.fk_relation_column_id, options.fk_lookup_column_id) if c}

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.delete()


class RollupKind(VirtualColumnKind):
    ui_types = (UIType.ROLLUP.value,)

    def depends_on_columns(self, column):
        options = column.options
        if options is None:
            return set()
        return {c for c in (options.fk_relation_column_id, options.fk_rollup_column_id) if c}

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.delete()


class QrCodeKind(VirtualColumnKind):
    ui_types = (UIType.QR_CODE.value,)

    def depends_on_columns(self, column):
        options = column.options
        if options is None or not options.fk_qr_value_column_id:
            return set()
        return {options.fk_qr_value_column_id}

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.delete()


class BarcodeKind(VirtualColumnKind):
    ui_types = (UIType.BARCODE.value,)

    def depends_on_columns(self, column):
        options = column.options
        if options is None or not options.fk_barcode_value_column_id:
            return set()
        return {options.fk_barcode_value_column_id}

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.delete()


class RelationKind(VirtualColumnKind):
    """LinkToAnotherRecord and Links columns are dropped with any endpoint."""

    ui_types = (UIType.LINK_TO_ANOTHER_RECORD.value, UIType.LINKS.value)

    def depends_on_columns(self, column):
        options = column.options
        if options is None:
            return set()
        return set(options.referenced_column_ids())

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.delete()


class AIPromptKind(VirtualColumnKind):
    """Long text columns generated from a prompt over other columns."""

    def depends_on_columns(self, column):
        options = column.options
        if options is None:
            return set()
        return referenced_ids_in_text(options.prompt) | referenced_ids_in_text(options.prompt_raw)

    def on_referenced_column_removed(self, column, removed):
        return Invalidation.update(error=field_not_found(removed))


_AI_PROMPT = AIPromptKind()

VIRTUAL_COLUMN_KINDS: Dict[str, VirtualColumnKind] = {}
for _kind in (FormulaKind(), ButtonKind(), LookupKind(), RollupKind(), QrCodeKind(), BarcodeKind(), RelationKind()):
    for _ui_type in _kind.ui_types:
        VIRTUAL_COLUMN_KINDS[_ui_type] = _kind


def kind_for(column: Column) -> Optional[VirtualColumnKind]:
    """The virtual kind of a column, or None for physical columns."""
    if is_ai_prompt_column(column):
        return _AI_PROMPT
    return VIRTUAL_COLUMN_KINDS.get(column.uidt)
