"""
Meta sync service for metasync.

Keeps the catalog of a base consistent with the live schema of its
sources: introspect, diff, apply the ordered changes inside one catalog
transaction, then re-derive many to many relations.
"""

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Callable, Dict, List, Optional, Tuple

from ..catalog.models import CatalogContext
from ..catalog.store import CatalogStore
from ..config import BaseConfig, ConcurrencyConfig, SourceConfig
from ..database.introspection import SchemaIntrospector, create_introspector
from ..exceptions import MetaSyncError, SyncError
from .applier import ChangeApplier
from .changes import MetaDiff
from .diff import DiffComputer
from .hooks import AppEvent, AppHooks, SyncEvent
from .invalidation import DependentInvalidator
from .m2m import ManyToManyDeriver


logger = logging.getLogger(__name__)

IntrospectorFactory = Callable[[SourceConfig], SchemaIntrospector]


class SyncStatus(str, Enum):
    """Outcome of a source sync."""

    SUCCESS = "success"
    NO_CHANGES = "no_changes"


@dataclass
class SyncResult:
    """Result of syncing one source."""

    status: SyncStatus
    workspace_id: str
    base_id: str
    source_id: str
    diffs: List[MetaDiff] = field(default_factory=list)
    changes_applied: int = 0
    execution_time_ms: float = 0.0

    @property
    def tables_changed(self) -> int:
        return len(self.diffs)

    def to_dict(self) -> Dict:
        return {
            "status": self.status.value,
            "workspace_id": self.workspace_id,
            "base_id": self.base_id,
            "source_id": self.source_id,
            "changes_applied": self.changes_applied,
            "execution_time_ms": self.execution_time_ms,
            "diffs": [d.to_dict() for d in self.diffs],
        }


class MetaDiffService:
    """Entry point for diff previews and catalog syncs."""

    def __init__(
        self,
        store: CatalogStore,
        introspector_factory: IntrospectorFactory = create_introspector,
        hooks: Optional[AppHooks] = None,
        concurrency: Optional[ConcurrencyConfig] = None,
    ):
        self.store = store
        self.introspector_factory = introspector_factory
        self.hooks = hooks or AppHooks()

        self.diff_computer = DiffComputer(store)
        self.invalidator = DependentInvalidator(store)
        self.applier = ChangeApplier(store, self.invalidator, concurrency)
        self.m2m = ManyToManyDeriver(store)

        # Track running syncs per (workspace, base, source)
        self._active_syncs: Dict[Tuple[str, str, str], bool] = {}
        self._sync_lock = asyncio.Lock()

    @staticmethod
    def context_for(base: BaseConfig) -> CatalogContext:
        return CatalogContext(workspace_id=base.workspace_id, base_id=base.id)

    async def compute_diff(self, base: BaseConfig, source: SourceConfig) -> List[MetaDiff]:
        """Read-only preview of the changes a sync of ``source`` would apply."""
        if source.is_meta:
            return []

        introspector = self.introspector_factory(source)
        try:
            return await self.diff_computer.compute(
                self.context_for(base), base, source, introspector
            )
        finally:
            await introspector.close()

    async def apply_diff(
        self, base: BaseConfig, source: SourceConfig, emit: bool = True
    ) -> SyncResult:
        """
        Sync the catalog with one source.

        The run is all-or-nothing: any error rolls back every catalog
        mutation of the run and is raised to the caller.
        """
        if source.is_meta:
            raise SyncError("Cannot sync meta source", {"source_id": source.id})

        context = self.context_for(base)
        key = (context.workspace_id, context.base_id, source.id)

        async with self._sync_lock:
            if self._active_syncs.get(key):
                raise SyncError(
                    "A sync is already running for this source",
                    {"base_id": base.id, "source_id": source.id},
                )
            self._active_syncs[key] = True

        try:
            result = await self._sync_source(context, base, source)
        finally:
            async with self._sync_lock:
                self._active_syncs.pop(key, None)

        if emit:
            await self.hooks.emit(
                SyncEvent(
                    event=AppEvent.META_DIFF_SYNC,
                    workspace_id=context.workspace_id,
                    base_id=context.base_id,
                    source_id=source.id,
                    details={"changes_applied": result.changes_applied},
                )
            )
        return result

    async def _sync_source(
        self, context: CatalogContext, base: BaseConfig, source: SourceConfig
    ) -> SyncResult:
        start_time = asyncio.get_event_loop().time()
        logger.info(f"Getting meta diff for {source.display_name}")

        introspector = self.introspector_factory(source)
        try:
            # introspection errors surface here, before any catalog write
            diffs = await self.diff_computer.compute(context, base, source, introspector)

            async with self.store.transaction():
                applied = await self.applier.apply(context, base, source, introspector, diffs)

                logger.info("Processing many to many relation changes")
                await self.m2m.derive(context, source.id)
                logger.info("Many to many relation changes applied")

        except Exception as e:
            logger.error(f"Meta sync failed for {source.display_name}: {e}")
            raise
        finally:
            await introspector.close()

        execution_time = (asyncio.get_event_loop().time() - start_time) * 1000
        logger.info(
            f"Meta sync for {source.display_name} applied {applied} changes "
            f"in {execution_time:.1f}ms"
        )
        return SyncResult(
            status=SyncStatus.SUCCESS if applied else SyncStatus.NO_CHANGES,
            workspace_id=context.workspace_id,
            base_id=context.base_id,
            source_id=source.id,
            diffs=diffs,
            changes_applied=applied,
            execution_time_ms=execution_time,
        )

    def _syncable_sources(self, base: BaseConfig) -> List[SourceConfig]:
        return [s for s in base.sources if s.enabled and not s.is_meta]

    async def meta_diff(self, base: BaseConfig) -> List[MetaDiff]:
        """Diffs across every source of a base. Failing sources are logged and skipped."""
        diffs: List[MetaDiff] = []
        for source in self._syncable_sources(base):
            try:
                diffs.extend(await self.compute_diff(base, source))
            except MetaSyncError as e:
                logger.error(f"Failed to compute meta diff for {source.display_name}: {e}")
        return diffs

    async def meta_diff_sync(self, base: BaseConfig) -> List[SyncResult]:
        """Sync every source of a base, then emit one completion event."""
        results = []
        for source in self._syncable_sources(base):
            results.append(await self.apply_diff(base, source, emit=False))

        context = self.context_for(base)
        await self.hooks.emit(
            SyncEvent(
                event=AppEvent.META_DIFF_SYNC,
                workspace_id=context.workspace_id,
                base_id=context.base_id,
                details={"sources": [r.source_id for r in results]},
            )
        )
        return results
