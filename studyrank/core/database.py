import logging
import uuid
from contextlib import contextmanager
from typing import Any, Callable, Dict, List, Optional, Tuple

import httpx
from postgrest.exceptions import APIError
from supabase import create_client, Client

from studyrank.core.config import settings
from studyrank.core.exceptions import ConcurrencyError, DuplicateRecordError, PersistenceError

logger = logging.getLogger(__name__)

UNIQUE_VIOLATION = "23505"

Record = Dict[str, Any]


@contextmanager
def _store_errors(operation: str, table: str):
    """Translate Supabase/PostgREST failures into the StudyRank error taxonomy"""
    try:
        yield
    except APIError as e:
        if e.code == UNIQUE_VIOLATION:
            raise DuplicateRecordError(f"{operation} on {table}: duplicate key") from e
        logger.error("%s on %s rejected: %s", operation, table, e.message)
        raise PersistenceError(f"{operation} on {table} failed") from e
    except httpx.HTTPError as e:
        logger.error("%s on %s: store unreachable: %s", operation, table, e)
        raise PersistenceError(f"{operation} on {table} failed") from e


class RecordStore:
    """Generic record store over the Supabase client.

    Exposes the shapes the services need: create, get-by-key,
    query-by-filter, update-by-key, delete-by-key and upsert. ``update`` returns the rows it
    actually changed, which is what compare-and-swap callers rely on.
    """

    def __init__(self, client: Client):
        self.client = client

    def create(self, table: str, data: Record) -> Record:
        with _store_errors("create", table):
            result = self.client.table(table).insert(data).execute()
        if not result.data:
            raise PersistenceError(f"create on {table} returned no row")
        return result.data[0]

    def create_many(self, table: str, rows: List[Record]) -> List[Record]:
        if not rows:
            return []
        with _store_errors("create", table):
            result = self.client.table(table).insert(rows).execute()
        return result.data or []

    def get(self, table: str, **match: Any) -> Optional[Record]:
        rows = self.query(table, match=match, limit=1)
        return rows[0] if rows else None

    def query(
        self,
        table: str,
        columns: str = "*",
        match: Optional[Record] = None,
        gte: Optional[Record] = None,
        lte: Optional[Record] = None,
        lt: Optional[Record] = None,
        order_by: Optional[List[str]] = None,
        desc: bool = False,
        limit: Optional[int] = None,
    ) -> List[Record]:
        query = self.client.table(table).select(columns)
        for column, value in (match or {}).items():
            query = query.eq(column, value)
        for column, value in (gte or {}).items():
            query = query.gte(column, value)
        for column, value in (lte or {}).items():
            query = query.lte(column, value)
        for column, value in (lt or {}).items():
            query = query.lt(column, value)
        for column in order_by or []:
            query = query.order(column, desc=desc)
        if limit is not None:
            query = query.limit(limit)

        with _store_errors("query", table):
            result = query.execute()
        return result.data or []

    def update(self, table: str, data: Record, **match: Any) -> List[Record]:
        query = self.client.table(table).update(data)
        for column, value in match.items():
            query = query.eq(column, value)

        with _store_errors("update", table):
            result = query.execute()
        return result.data or []

    def delete(self, table: str, **match: Any) -> List[Record]:
        query = self.client.table(table).delete()
        for column, value in match.items():
            query = query.eq(column, value)

        with _store_errors("delete", table):
            result = query.execute()
        return result.data or []

    def upsert(self, table: str, data: Record, on_conflict: str) -> Record:
        with _store_errors("upsert", table):
            result = self.client.table(table).upsert(data, on_conflict=on_conflict).execute()
        if not result.data:
            raise PersistenceError(f"upsert on {table} returned no row")
        return result.data[0]

    def get_or_create(self, table: str, defaults: Record, **key: Any) -> Record:
        """Fetch the row matching ``key``, creating it from ``defaults`` if absent.

        Two callers racing to create the same row is expected: the loser's
        insert hits the unique key and it re-reads the winner's row.
        """
        record = self.get(table, **key)
        if record is not None:
            return record

        try:
            return self.create(table, {"id": str(uuid.uuid4()), **defaults, **key})
        except DuplicateRecordError:
            logger.debug("%s %s created concurrently, re-reading", table, key)
            record = self.get(table, **key)
            if record is None:
                raise PersistenceError(f"{table} {key} vanished after duplicate create")
            return record

    def compare_and_swap(
        self,
        table: str,
        key: Record,
        mutate: Callable[[Record], Record],
        defaults: Record,
        max_retries: int = 5,
    ) -> Tuple[Record, Record]:
        """Apply ``mutate`` to the row at ``key`` guarded by its ``version`` column.

        ``mutate`` receives the current row and returns the changed columns; it
        is re-run on a fresh read whenever another writer got there first.
        Returns ``(before, after)``.
        """
        for attempt in range(1, max_retries + 1):
            current = self.get_or_create(table, defaults, **key)
            version = current.get("version") or 0
            changes = {**mutate(current), "version": version + 1}

            updated = self.update(table, changes, id=current["id"], version=version)
            if updated:
                return current, updated[0]

            logger.warning(
                "Version conflict on %s %s (attempt %d/%d)",
                table, key, attempt, max_retries
            )

        raise ConcurrencyError(f"{table} {key}: gave up after {max_retries} conflicting updates")


_store: Optional[RecordStore] = None


# Dependency for getting the record store
async def get_database() -> RecordStore:
    global _store
    if _store is None:
        client: Client = create_client(settings.supabase_url, settings.supabase_key)
        _store = RecordStore(client)
    return _store
