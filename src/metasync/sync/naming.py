"""
Title derivation for catalog tables and columns.
"""

from typing import Iterable, List, Optional

import inflection

from ..config import SourceConfig


def _inflect(name: str, mode: str) -> str:
    if mode == "camelize":
        return inflection.camelize(name)
    return name


def get_table_name_alias(table_name: str, prefix: str = "", source: Optional[SourceConfig] = None) -> str:
    """Title for a physical table: base prefix stripped, then inflected."""
    name = table_name
    if prefix and name.startswith(prefix):
        name = name[len(prefix):]
    mode = source.inflection_table if source is not None else "none"
    return _inflect(name, mode)


def get_column_name_alias(column_name: str, source: Optional[SourceConfig] = None) -> str:
    mode = source.inflection_column if source is not None else "none"
    return _inflect(column_name, mode)


def get_unique_column_alias_name(columns: Iterable, name: str) -> str:
    """
    ``name`` or the first free ``name_<n>``, compared case-insensitively
    against the titles of ``columns``.
    """
    taken = {(c.title or "").lower() for c in columns or []}
    candidate = name
    counter = 0
    while candidate.lower() in taken:
        counter += 1
        candidate = f"{name}_{counter}"
    return candidate


def get_unique_table_alias_name(tables: Iterable, name: str) -> str:
    taken = {(t.title or "").lower() for t in tables or []}
    candidate = name
    counter = 0
    while candidate.lower() in taken:
        counter += 1
        candidate = f"{name}_{counter}"
    return candidate


def pluralize(word: str) -> str:
    return inflection.pluralize(word)


def singularize(word: str) -> str:
    return inflection.singularize(word)


def map_default_display_value(columns: List) -> None:
    """Mark a display value column unless one is already set.

    Picks the column following the last primary key column, or the one
    before it when the primary key is the final column.
    """
    if not columns or any(c.pv for c in columns):
        return

    pk_index = -1
    for index in range(len(columns) - 1, -1, -1):
        if columns[index].pk:
            pk_index = index
            break

    if pk_index == len(columns) - 1:
        if pk_index > 0:
            columns[pk_index - 1].pv = True
        else:
            columns[0].pv = True
    else:
        columns[pk_index + 1].pv = True
