"""
Tests for metasync.sync.service: end to end catalog syncs.
"""

import asyncio

import pytest

from metasync.config import BaseConfig, SourceConfig
from metasync.exceptions import IntrospectionError, SyncError
from metasync.sync.hooks import AppEvent
from metasync.sync.service import MetaDiffService, SyncResult, SyncStatus
from tests.conftest import FakeIntrospector, column, fk, pk_column


def titles(table):
    return [c.title for c in table.columns]


@pytest.fixture
def shop(schema):
    schema.table_columns.update(
        {
            "users": [pk_column(), column("name")],
            "orders": [pk_column(), column("user_id", "integer")],
        }
    )
    schema.relation_list.append(fk("orders", "user_id", "users"))
    return schema


@pytest.fixture
def events(hooks):
    received = []
    hooks.on(AppEvent.META_DIFF_SYNC, received.append)
    return received


class TestApplyDiff:
    """Test syncing a single source."""

    @pytest.mark.asyncio
    async def test_first_sync_builds_catalog(self, service, store, context, base, source, shop):
        result = await service.apply_diff(base, source)

        assert result.status == SyncStatus.SUCCESS
        assert result.tables_changed == 2
        # two new tables and the two directions of the foreign key
        assert result.changes_applied == 4

        users = await store.get_table_by_name(context, "src1", "users")
        orders = await store.get_table_by_name(context, "src1", "orders")
        assert titles(users) == ["id", "name", "orders"]
        assert titles(orders) == ["id", "user_id", "users"]
        assert orders.get_column("user_id").system is True

    @pytest.mark.asyncio
    async def test_second_sync_has_no_changes(self, service, base, source, shop):
        await service.apply_diff(base, source)
        result = await service.apply_diff(base, source)

        assert result.status == SyncStatus.NO_CHANGES
        assert result.diffs == []
        assert result.changes_applied == 0

    @pytest.mark.asyncio
    async def test_junction_sync_is_stable(self, service, store, context, base, source, schema):
        schema.table_columns.update(
            {
                "students": [pk_column()],
                "courses": [pk_column()],
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

        await service.apply_diff(base, source)
        result = await service.apply_diff(base, source)

        assert result.status == SyncStatus.NO_CHANGES

    @pytest.mark.asyncio
    async def test_dropping_junction_removes_links(self, service, store, context, base, source, schema):
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
        await service.apply_diff(base, source)

        schema.drop_table("students_courses")
        diffs = await service.compute_diff(base, source)
        by_table = {d.table_name: {c.type for c in d.changes} for d in diffs}
        assert by_table["students"] == {"TABLE_RELATION_REMOVE", "TABLE_VIRTUAL_M2M_REMOVE"}
        assert by_table["courses"] == {"TABLE_RELATION_REMOVE", "TABLE_VIRTUAL_M2M_REMOVE"}
        assert by_table["students_courses"] == {"TABLE_REMOVE"}

        await service.apply_diff(base, source)

        assert await store.get_table_by_name(context, "src1", "students_courses") is None
        assert titles(await store.get_table_by_name(context, "src1", "students")) == ["id", "name"]
        assert titles(await store.get_table_by_name(context, "src1", "courses")) == ["id", "title"]

    @pytest.mark.asyncio
    async def test_failure_rolls_back_catalog(self, service, store, context, base, source, shop, monkeypatch):
        original = shop.columns

        async def failing_columns(table, schema=None):
            if table == "orders":
                raise IntrospectionError("columns unavailable", source_id="src1")
            return await original(table, schema)

        monkeypatch.setattr(shop, "columns", failing_columns)

        with pytest.raises(IntrospectionError):
            await service.apply_diff(base, source)

        assert store.cache.manager._data == {}
        assert await store.list_tables(context, "src1") == []
        assert shop.close_count == 1

    @pytest.mark.asyncio
    async def test_meta_source_cannot_be_synced(self, service, base):
        meta = SourceConfig(id="meta", is_meta=True)

        with pytest.raises(SyncError, match="Cannot sync meta source"):
            await service.apply_diff(base, meta)
        assert await service.compute_diff(base, meta) == []

    @pytest.mark.asyncio
    async def test_concurrent_sync_is_rejected(self, store, base, source):
        started = asyncio.Event()
        release = asyncio.Event()

        class SlowIntrospector(FakeIntrospector):
            async def tables(self, schema=None):
                started.set()
                await release.wait()
                return await super().tables(schema)

        service = MetaDiffService(store, introspector_factory=lambda s: SlowIntrospector())
        first = asyncio.create_task(service.apply_diff(base, source))
        await started.wait()

        with pytest.raises(SyncError, match="A sync is already running for this source"):
            await service.apply_diff(base, source)

        release.set()
        result = await first
        assert result.status == SyncStatus.NO_CHANGES

    @pytest.mark.asyncio
    async def test_emits_event(self, service, base, source, shop, events):
        await service.apply_diff(base, source)

        assert len(events) == 1
        event = events[0]
        assert event.event == AppEvent.META_DIFF_SYNC
        assert (event.workspace_id, event.base_id, event.source_id) == ("ws1", "base1", "src1")
        assert event.details == {"changes_applied": 4}

    @pytest.mark.asyncio
    async def test_emit_can_be_suppressed(self, service, base, source, shop, events):
        await service.apply_diff(base, source, emit=False)
        assert events == []

    @pytest.mark.asyncio
    async def test_introspector_is_closed(self, service, base, source, shop):
        await service.compute_diff(base, source)
        await service.apply_diff(base, source)
        assert shop.close_count == 2


class TestBaseSync:
    """Test syncing every source of a base."""

    @pytest.fixture
    def multi_base(self):
        return BaseConfig(
            id="base1",
            workspace_id="ws1",
            sources=[
                SourceConfig(id="src1"),
                SourceConfig(id="src2"),
                SourceConfig(id="off", enabled=False),
                SourceConfig(id="meta", is_meta=True),
            ],
        )

    @pytest.mark.asyncio
    async def test_meta_diff_skips_failing_sources(self, store, multi_base, caplog):
        class BrokenIntrospector(FakeIntrospector):
            async def tables(self, schema=None):
                raise IntrospectionError("connection refused")

        def factory(source):
            if source.id == "src2":
                return BrokenIntrospector()
            return FakeIntrospector({"users": [pk_column()]})

        service = MetaDiffService(store, introspector_factory=factory)
        diffs = await service.meta_diff(multi_base)

        assert [(d.source_id, d.table_name) for d in diffs] == [("src1", "users")]
        assert "Failed to compute meta diff for src2" in caplog.text

    @pytest.mark.asyncio
    async def test_meta_diff_sync_emits_once(self, store, hooks, events, multi_base):
        requested = []

        def factory(source):
            requested.append(source.id)
            return FakeIntrospector({f"{source.id}_items": [pk_column()]})

        service = MetaDiffService(store, introspector_factory=factory, hooks=hooks)
        results = await service.meta_diff_sync(multi_base)

        assert requested == ["src1", "src2"]
        assert [r.source_id for r in results] == ["src1", "src2"]
        assert all(isinstance(r, SyncResult) for r in results)
        assert len(events) == 1
        assert events[0].source_id is None
        assert events[0].details == {"sources": ["src1", "src2"]}

    @pytest.mark.asyncio
    async def test_sources_may_share_table_names(self, store, context, multi_base):
        schemas = {
            "src1": FakeIntrospector({"users": [pk_column(), column("name")]}),
            "src2": FakeIntrospector({"users": [pk_column(), column("email")]}),
        }
        service = MetaDiffService(store, introspector_factory=lambda s: schemas[s.id])

        first = await service.apply_diff(multi_base, multi_base.get_source("src1"))
        second = await service.apply_diff(multi_base, multi_base.get_source("src2"))

        assert first.status == SyncStatus.SUCCESS
        assert second.status == SyncStatus.SUCCESS
        users1 = await store.get_table_by_name(context, "src1", "users")
        users2 = await store.get_table_by_name(context, "src2", "users")
        assert users1.title == users2.title == "users"
        assert titles(users2) == ["id", "email"]
        assert (await store.get_table_by_title(context, "src2", "users")).id == users2.id

        again = await service.apply_diff(multi_base, multi_base.get_source("src2"))
        assert again.status == SyncStatus.NO_CHANGES

    @pytest.mark.asyncio
    async def test_concurrent_diffs_keep_their_own_state(self, store, multi_base):
        class YieldingIntrospector(FakeIntrospector):
            async def columns(self, table, schema=None):
                await asyncio.sleep(0)
                return await super().columns(table, schema)

        schemas = {
            "src1": YieldingIntrospector(
                {"users": [pk_column(), column("name")], "orders": [pk_column(), column("user_id", "integer")]},
                relations=[fk("orders", "user_id", "users")],
            ),
            "src2": YieldingIntrospector(
                {"users": [pk_column(), column("email")], "orders": [pk_column(), column("user_id", "integer")]},
                relations=[fk("orders", "user_id", "users")],
            ),
        }
        service = MetaDiffService(store, introspector_factory=lambda s: schemas[s.id])
        await service.meta_diff_sync(multi_base)
        schemas["src1"].drop_column("users", "name")

        first, second = await asyncio.gather(
            service.compute_diff(multi_base, multi_base.get_source("src1")),
            service.compute_diff(multi_base, multi_base.get_source("src2")),
        )

        assert [(d.table_name, [c.type for c in d.changes]) for d in first] == [
            ("users", ["TABLE_COLUMN_REMOVE"])
        ]
        assert second == []


class TestSyncResult:
    def test_to_dict(self):
        result = SyncResult(
            status=SyncStatus.NO_CHANGES,
            workspace_id="ws1",
            base_id="base1",
            source_id="src1",
        )
        data = result.to_dict()
        assert data["status"] == "no_changes"
        assert data["diffs"] == []
        assert result.tables_changed == 0
