"""
Document store helpers

Every row read or written by the service goes through DocumentStore, a small
async wrapper over the Supabase (PostgREST) client. Nested data such as order
line items is kept in JSON columns, so each row behaves like a document.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from supabase import AsyncClient, acreate_client

from .config import settings
from .utils.time import utc_now

Filters = Optional[Dict[str, Any]]


def _encode(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    return value


class DocumentStore:
    def __init__(self, client: AsyncClient):
        self.client = client

    def _apply_filters(self, query, eq: Filters = None, in_: Filters = None,
                       gte: Filters = None, lte: Filters = None):
        for column, value in (eq or {}).items():
            if value is None:
                query = query.is_(column, "null")
            else:
                query = query.eq(column, _encode(value))
        for column, values in (in_ or {}).items():
            query = query.in_(column, [_encode(v) for v in values])
        for column, value in (gte or {}).items():
            query = query.gte(column, _encode(value))
        for column, value in (lte or {}).items():
            query = query.lte(column, _encode(value))
        return query

    async def insert(self, table: str, data: Dict[str, Any]) -> Dict[str, Any]:
        """Insert a single document with timestamps"""
        now = utc_now().isoformat()
        document = {k: _encode(v) for k, v in data.items()}
        document.setdefault("created_at", now)
        document.setdefault("updated_at", now)

        result = await self.client.table(table).insert(document).execute()
        return result.data[0]

    async def get(self, table: str, doc_id: str) -> Optional[Dict[str, Any]]:
        result = await self.client.table(table).select("*").eq("id", doc_id).limit(1).execute()
        return result.data[0] if result.data else None

    async def find(
        self,
        table: str,
        eq: Filters = None,
        in_: Filters = None,
        gte: Filters = None,
        lte: Filters = None,
        order_by: Optional[str] = None,
        desc: bool = False,
        limit: Optional[int] = None,
        offset: int = 0,
    ) -> List[Dict[str, Any]]:
        query = self._apply_filters(self.client.table(table).select("*"), eq, in_, gte, lte)
        if order_by:
            query = query.order(order_by, desc=desc)
        if limit:
            query = query.range(offset, offset + limit - 1)
        result = await query.execute()
        return result.data

    async def count(self, table: str, eq: Filters = None, in_: Filters = None,
                    gte: Filters = None, lte: Filters = None) -> int:
        query = self._apply_filters(
            self.client.table(table).select("id", count="exact"), eq, in_, gte, lte
        )
        result = await query.execute()
        return result.count or 0

    async def update(self, table: str, doc_id: str, data: Dict[str, Any]) -> Optional[Dict[str, Any]]:
        changes = {k: _encode(v) for k, v in data.items()}
        changes["updated_at"] = utc_now().isoformat()

        result = await self.client.table(table).update(changes).eq("id", doc_id).execute()
        return result.data[0] if result.data else None


_store: Optional[DocumentStore] = None


async def get_document_store() -> DocumentStore:
    """Create the service-role client once per process"""
    global _store
    if _store is None:
        client = await acreate_client(settings.SUPABASE_URL, settings.SUPABASE_SERVICE_KEY)
        _store = DocumentStore(client)
    return _store
