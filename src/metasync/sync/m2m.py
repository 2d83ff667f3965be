"""
Many to many relation derivation from junction tables.

A table whose only purpose is joining two others through foreign keys is
flagged ``mm`` and both joined tables get a Links column through it. The
has-many columns that expose the raw foreign keys are hidden as system
columns.
"""

import logging
from typing import List, Optional

from ..catalog.models import CatalogContext, Column, RelationOptions, Table
from ..catalog.store import CatalogStore
from ..catalog.types import ModelType, RelationType, UIType, is_links_or_ltar, is_virtual_column
from .naming import get_unique_column_alias_name, pluralize, singularize


logger = logging.getLogger(__name__)

MAX_JUNCTION_COLUMNS = 5


def belongs_to_columns(table: Table) -> List[Column]:
    return [
        c
        for c in table.columns or []
        if c.uidt == UIType.LINK_TO_ANOTHER_RECORD
        and c.options is not None
        and c.options.type == RelationType.BELONGS_TO
    ]


def is_junction_table(table: Table, bt_columns: Optional[List[Column]] = None) -> bool:
    """
    Exactly two belongs-to relations, fewer than five physical columns and
    a primary key made of the two foreign key columns.
    """
    if bt_columns is None:
        bt_columns = belongs_to_columns(table)
    if len(bt_columns) != 2:
        return False

    physical = [c for c in table.columns or [] if not is_virtual_column(c)]
    if len(physical) >= MAX_JUNCTION_COLUMNS:
        return False

    pks = table.primary_keys
    fk_column_ids = {c.options.fk_child_column_id for c in bt_columns}
    return len(pks) == 2 and {c.id for c in pks} == fk_column_ids


class ManyToManyDeriver:
    """Materializes or retracts many to many flags over a source's tables."""

    def __init__(self, store: CatalogStore):
        self.store = store

    async def derive(self, context: CatalogContext, source_id: str) -> None:
        tables = await self.store.list_tables(context, source_id, with_columns=True)
        for table in tables:
            if table.type != ModelType.TABLE.value:
                continue
            bt_columns = belongs_to_columns(table)
            if is_junction_table(table, bt_columns):
                await self._materialize(context, table, bt_columns)
            elif table.mm:
                # Links columns derived earlier are kept; only the flag is cleared
                logger.info(f"Table {table.table_name} is no longer a many to many junction")
                await self.store.mark_as_mm_table(context, table.id, False)

    def relation_exists(self, model: Table, junction: Table, belongs_to: Column) -> bool:
        """Whether ``model`` already has a Links column through ``junction`` for this side."""
        bt = belongs_to.options
        for column in model.columns or []:
            if not is_links_or_ltar(column) or column.options is None:
                continue
            options = column.options
            if (
                options.type == RelationType.MANY_TO_MANY
                and options.fk_mm_model_id == junction.id
                and options.fk_child_column_id == bt.fk_parent_column_id
                and options.fk_mm_child_column_id == bt.fk_child_column_id
            ):
                return True
        return False

    async def _materialize(self, context: CatalogContext, junction: Table, bt_columns: List[Column]) -> None:
        bt_a, bt_b = bt_columns
        model_a = await self.store.get_table(context, bt_a.options.fk_related_model_id)
        model_b = await self.store.get_table(context, bt_b.options.fk_related_model_id)
        if model_a is None or model_b is None:
            logger.warning(f"Junction {junction.table_name} references a table missing from the catalog")
            return

        if not self.relation_exists(model_a, junction, bt_a):
            await self._insert_links(context, model_a, model_b, junction, bt_a, bt_b)
            logger.info(f"Added many to many column on {model_a.table_name} through {junction.table_name}")

        model_b = await self.store.get_table(context, model_b.id)
        if not self.relation_exists(model_b, junction, bt_b):
            await self._insert_links(context, model_b, model_a, junction, bt_b, bt_a)
            logger.info(f"Added many to many column on {model_b.table_name} through {junction.table_name}")

        if not junction.mm:
            await self.store.mark_as_mm_table(context, junction.id, True)

        for bt in (bt_a, bt_b):
            model = await self.store.get_table(context, bt.options.fk_related_model_id)
            for column in model.columns or []:
                if not is_links_or_ltar(column) or column.options is None:
                    continue
                options = column.options
                if options.type != RelationType.HAS_MANY:
                    continue
                if (
                    options.fk_child_column_id != bt.options.fk_child_column_id
                    or options.fk_parent_column_id != bt.options.fk_parent_column_id
                ):
                    continue
                if not column.system:
                    await self.store.mark_as_system_field(context, column.id)
                break

    async def _insert_links(
        self,
        context: CatalogContext,
        model: Table,
        related: Table,
        junction: Table,
        own_bt: Column,
        other_bt: Column,
    ) -> None:
        related_title = related.title or related.table_name
        await self.store.insert_column(
            context,
            Column(
                fk_model_id=model.id,
                title=get_unique_column_alias_name(model.columns, pluralize(related_title)),
                uidt=UIType.LINKS.value,
                meta={"plural": pluralize(related_title), "singular": singularize(related_title)},
                options=RelationOptions(
                    fk_column_id="",
                    type=RelationType.MANY_TO_MANY.value,
                    fk_related_model_id=related.id,
                    fk_mm_model_id=junction.id,
                    fk_child_column_id=own_bt.options.fk_parent_column_id,
                    fk_parent_column_id=other_bt.options.fk_parent_column_id,
                    fk_mm_child_column_id=own_bt.options.fk_child_column_id,
                    fk_mm_parent_column_id=other_bt.options.fk_child_column_id,
                    virtual=False,
                ),
            ),
        )
