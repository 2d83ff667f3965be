"""
Tests for metasync.sync.m2m: junction detection and many to many columns.
"""

import pytest

from metasync.catalog.models import Column, RelationOptions, Table
from metasync.sync.m2m import ManyToManyDeriver, belongs_to_columns, is_junction_table
from tests.conftest import column, fk, pk_column


def link(column_id, title="link", fk_child_column_id="cl_child"):
    return Column(
        fk_model_id="md_junction",
        title=title,
        uidt="LinkToAnotherRecord",
        id=column_id,
        options=RelationOptions(fk_column_id=column_id, type="bt", fk_child_column_id=fk_child_column_id),
    )


def key(column_id, name, pk=True):
    return Column(fk_model_id="md_junction", title=name, column_name=name, uidt="Number", id=column_id, pk=pk)


@pytest.fixture
def school(schema):
    schema.table_columns.update(
        {
            "students": [pk_column(), column("name")],
            "courses": [pk_column(), column("title")],
            "students_courses": [
                pk_column("student_id", auto_increment=False),
                pk_column("course_id", auto_increment=False),
            ],
        }
    )
    schema.relation_list.extend(
        [
            fk("students_courses", "student_id", "students"),
            fk("students_courses", "course_id", "courses"),
        ]
    )
    return schema


class TestJunctionDetection:
    def test_two_belongs_to_over_composite_key(self):
        table = Table(
            base_id="b",
            source_id="s",
            table_name="a_b",
            title="a_b",
            columns=[
                key("cl_a", "a_id"),
                key("cl_b", "b_id"),
                link("cl_la", fk_child_column_id="cl_a"),
                link("cl_lb", fk_child_column_id="cl_b"),
            ],
        )
        assert len(belongs_to_columns(table)) == 2
        assert is_junction_table(table)

    def test_extra_primary_key_is_not_a_junction(self):
        table = Table(
            base_id="b",
            source_id="s",
            table_name="a_b",
            title="a_b",
            columns=[
                key("cl_id", "id"),
                key("cl_a", "a_id", pk=False),
                key("cl_b", "b_id", pk=False),
                link("cl_la", fk_child_column_id="cl_a"),
                link("cl_lb", fk_child_column_id="cl_b"),
            ],
        )
        assert not is_junction_table(table)

    def test_too_many_physical_columns(self):
        columns = [key("cl_a", "a_id"), key("cl_b", "b_id")]
        columns += [key(f"cl_{n}", f"extra_{n}", pk=False) for n in range(3)]
        columns += [link("cl_la", fk_child_column_id="cl_a"), link("cl_lb", fk_child_column_id="cl_b")]
        table = Table(base_id="b", source_id="s", table_name="a_b", title="a_b", columns=columns)
        assert not is_junction_table(table)

    def test_single_relation(self):
        table = Table(
            base_id="b",
            source_id="s",
            table_name="a_b",
            title="a_b",
            columns=[key("cl_a", "a_id"), link("cl_la", fk_child_column_id="cl_a")],
        )
        assert not is_junction_table(table)


class TestManyToManyDeriver:
    """Test derivation after a real sync of a junction schema."""

    @pytest.mark.asyncio
    async def test_links_are_materialized(self, service, store, context, base, source, school):
        await service.apply_diff(base, source)

        students = await store.get_table_by_name(context, "src1", "students")
        courses = await store.get_table_by_name(context, "src1", "courses")
        junction = await store.get_table_by_name(context, "src1", "students_courses")

        assert junction.mm is True

        courses_link = next(c for c in students.columns if c.options is not None and c.options.type == "mm")
        assert courses_link.title == "courses"
        assert courses_link.uidt == "Links"
        assert courses_link.options.fk_related_model_id == courses.id
        assert courses_link.options.fk_mm_model_id == junction.id
        assert courses_link.options.fk_child_column_id == students.get_column("id").id
        assert courses_link.options.fk_mm_child_column_id == junction.get_column("student_id").id
        assert courses_link.options.fk_mm_parent_column_id == junction.get_column("course_id").id

        students_link = next(c for c in courses.columns if c.options is not None and c.options.type == "mm")
        assert students_link.title == "students"

        for table in (students, courses):
            has_many = next(c for c in table.columns if c.options is not None and c.options.type == "hm")
            assert has_many.system is True

    @pytest.mark.asyncio
    async def test_derive_is_idempotent(self, service, store, context, base, source, school):
        await service.apply_diff(base, source)
        await ManyToManyDeriver(store).derive(context, "src1")

        students = await store.get_table_by_name(context, "src1", "students")
        links = [c for c in students.columns if c.options is not None and c.options.type == "mm"]
        assert len(links) == 1

    @pytest.mark.asyncio
    async def test_unflagging_keeps_links(self, service, store, context, base, source, school):
        await service.apply_diff(base, source)
        school.table_columns["students_courses"].append(column("enrolled_on", "date"))
        school.table_columns["students_courses"].append(column("grade", "integer"))
        school.table_columns["students_courses"].append(column("notes", "text"))

        await service.apply_diff(base, source)

        junction = await store.get_table_by_name(context, "src1", "students_courses")
        students = await store.get_table_by_name(context, "src1", "students")
        assert junction.mm is False
        assert any(c.options is not None and c.options.type == "mm" for c in students.columns)
