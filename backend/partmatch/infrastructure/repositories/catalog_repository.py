"""Catalog repository: SQL-backed catalog snapshots"""

import logging
import threading
import time
from typing import Callable, Dict, Optional, Tuple
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ...config import Settings, get_settings
from ...database import session_scope
from ...matching.candidates import CatalogSnapshot
from ...matching.ports import CatalogItem, CatalogProvider, DependencyUnavailableError
from ...models.catalog_entry import CatalogEntry

logger = logging.getLogger(__name__)


class SqlCatalogProvider(CatalogProvider):
    """Load active catalog entries into indexed snapshots, cached per org.

    Snapshots are immutable, so a cached one can be shared by concurrent
    queries. A snapshot is rebuilt after ``CATALOG_SNAPSHOT_TTL_SECONDS``
    or after ``invalidate``.
    """

    def __init__(
        self,
        session_factory: Callable[[], Session],
        settings: Optional[Settings] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        """Initialize provider.

        Args:
            session_factory: Callable returning a new SQLAlchemy session
            settings: Settings (cache TTL)
            clock: Monotonic clock, injectable for tests
        """
        self.session_factory = session_factory
        self.settings = settings or get_settings()
        self._clock = clock
        self._cache: Dict[UUID, Tuple[float, CatalogSnapshot]] = {}
        self._lock = threading.Lock()

    def get_snapshot(self, org_id: UUID) -> CatalogSnapshot:
        ttl = self.settings.CATALOG_SNAPSHOT_TTL_SECONDS
        now = self._clock()

        with self._lock:
            cached = self._cache.get(org_id)
            if cached and ttl > 0 and now - cached[0] < ttl:
                return cached[1]

        snapshot = CatalogSnapshot(self.load_items(org_id))

        with self._lock:
            self._cache[org_id] = (now, snapshot)
        logger.info(f"Built catalog snapshot for org {org_id}: {len(snapshot)} entries")
        return snapshot

    def invalidate(self, org_id: Optional[UUID] = None) -> None:
        """Drop the cached snapshot of one org, or of every org."""
        with self._lock:
            if org_id is None:
                self._cache.clear()
            else:
                self._cache.pop(org_id, None)

    def load_items(self, org_id: UUID) -> list:
        """Read active catalog entries of an organization.

        Raises:
            DependencyUnavailableError: If the catalog table cannot be read
        """
        try:
            with session_scope(self.session_factory) as session:
                rows = session.execute(
                    select(CatalogEntry).where(
                        CatalogEntry.org_id == org_id,
                        CatalogEntry.active.is_(True),
                    )
                ).scalars().all()
                return [
                    CatalogItem(
                        id=row.id,
                        sku=row.sku,
                        name=row.name,
                        manufacturer=row.manufacturer,
                        category=row.category,
                        embedding=row.embedding,
                    )
                    for row in rows
                ]
        except SQLAlchemyError as e:
            logger.error(f"Failed to load catalog for org {org_id}", exc_info=True)
            raise DependencyUnavailableError(f"Catalog unavailable: {str(e)}") from e

    @property
    def cached_org_count(self) -> int:
        with self._lock:
            return len(self._cache)
