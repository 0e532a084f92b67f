"""Scoped storage of canonical providers.

Rows are keyed by ``(scope, unique_id)``. A scope is the caller's session or
search context, so clearing one scope's working set never touches another's.
"""
import asyncio
import json
import logging
from dataclasses import replace
from datetime import datetime
from typing import Dict, Iterable, List, Optional

import asyncpg

from carefinder.core.errors import InvalidInput
from carefinder.core.models import CanonicalProvider
from carefinder.search.filters import ProviderFilter, apply_filter

logger = logging.getLogger(__name__)


class ProviderStore:
    async def clear_scope(self, scope: str) -> int:
        raise NotImplementedError

    async def upsert_many(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        raise NotImplementedError

    async def replace_scope(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        """Clear the scope and write ``providers`` as one atomic step."""
        raise NotImplementedError

    async def get(self, unique_id: str, scope: Optional[str] = None) -> Optional[CanonicalProvider]:
        raise NotImplementedError

    async def find(self, criteria: ProviderFilter, scope: Optional[str] = None,
                   now: Optional[datetime] = None) -> List[CanonicalProvider]:
        raise NotImplementedError

    async def close(self) -> None:
        pass


# ------------------------------------------------------------------------------
# In-process store
# ------------------------------------------------------------------------------
class MemoryProviderStore(ProviderStore):
    def __init__(self):
        # documents, not objects, so callers cannot mutate stored state
        self._scopes: Dict[str, Dict[str, dict]] = {}
        self._lock = asyncio.Lock()

    def _upsert(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        rows = self._scopes.setdefault(scope, {})
        count = 0
        for provider in providers:
            rows[provider.unique_id] = provider.to_document()
            count += 1
        return count

    async def clear_scope(self, scope: str) -> int:
        async with self._lock:
            return len(self._scopes.pop(scope, {}))

    async def upsert_many(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        async with self._lock:
            return self._upsert(scope, providers)

    async def replace_scope(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        async with self._lock:
            self._scopes.pop(scope, None)
            return self._upsert(scope, providers)

    async def get(self, unique_id: str, scope: Optional[str] = None) -> Optional[CanonicalProvider]:
        scopes = [scope] if scope is not None else list(self._scopes)
        for name in scopes:
            doc = self._scopes.get(name, {}).get(unique_id)
            if doc is not None:
                return CanonicalProvider.from_document(doc)
        return None

    async def find(self, criteria: ProviderFilter, scope: Optional[str] = None,
                   now: Optional[datetime] = None) -> List[CanonicalProvider]:
        scopes = [scope] if scope is not None else list(self._scopes)
        providers = [CanonicalProvider.from_document(doc)
                     for name in scopes for doc in self._scopes.get(name, {}).values()]
        return apply_filter(providers, criteria, now=now)

    def count(self, scope: str) -> int:
        return len(self._scopes.get(scope, {}))


# ------------------------------------------------------------------------------
# PostgreSQL + PostGIS store
# ------------------------------------------------------------------------------
SCHEMA = """
CREATE EXTENSION IF NOT EXISTS postgis;
CREATE TABLE IF NOT EXISTS healthcare_providers (
    scope TEXT NOT NULL,
    unique_id TEXT NOT NULL,
    name TEXT NOT NULL,
    city TEXT NOT NULL DEFAULT '',
    country TEXT NOT NULL DEFAULT '',
    specialties TEXT NOT NULL DEFAULT '',
    institution_type TEXT,
    document JSONB NOT NULL,
    location GEOGRAPHY(Point, 4326) NOT NULL,
    last_updated TIMESTAMPTZ,
    PRIMARY KEY (scope, unique_id)
);
CREATE INDEX IF NOT EXISTS healthcare_providers_location_idx
    ON healthcare_providers USING GIST (location);
CREATE INDEX IF NOT EXISTS healthcare_providers_text_idx
    ON healthcare_providers USING GIN (
        to_tsvector('simple', name || ' ' || city || ' ' || country || ' ' || specialties)
    );
"""

UPSERT = """
INSERT INTO healthcare_providers(
    scope, unique_id, name, city, country, specialties, institution_type, document, location, last_updated
)
VALUES($1, $2, $3, $4, $5, $6, $7, $8::jsonb, ST_SetSRID(ST_Point($9, $10), 4326)::geography, $11)
ON CONFLICT (scope, unique_id) DO UPDATE SET
    name = EXCLUDED.name,
    city = EXCLUDED.city,
    country = EXCLUDED.country,
    specialties = EXCLUDED.specialties,
    institution_type = EXCLUDED.institution_type,
    document = EXCLUDED.document,
    location = EXCLUDED.location,
    last_updated = EXCLUDED.last_updated
"""


def _row_args(scope: str, provider: CanonicalProvider) -> tuple:
    address = provider.location.address
    return (
        scope,
        provider.unique_id,
        provider.name,
        address.city,
        address.country,
        " ".join(sorted(provider.capabilities.specialties)),
        provider.institution_type.value if provider.institution_type else None,
        json.dumps(provider.to_document()),
        provider.coordinates.longitude,
        provider.coordinates.latitude,
        provider.last_updated,
    )


class PostgresProviderStore(ProviderStore):
    def __init__(self, pool: "asyncpg.Pool"):
        self.pool = pool

    @classmethod
    async def connect(cls, dsn: str, ensure_schema: bool = True) -> "PostgresProviderStore":
        pool = await asyncpg.create_pool(dsn)
        store = cls(pool)
        if ensure_schema:
            await store.ensure_schema()
        return store

    async def ensure_schema(self) -> None:
        async with self.pool.acquire() as conn:
            await conn.execute(SCHEMA)

    async def clear_scope(self, scope: str) -> int:
        async with self.pool.acquire() as conn:
            status = await conn.execute("DELETE FROM healthcare_providers WHERE scope = $1", scope)
        return int(status.split()[-1])

    async def upsert_many(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        rows = [_row_args(scope, p) for p in providers]
        if not rows:
            return 0
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.executemany(UPSERT, rows)
        logger.info("Upserted %d providers into scope %s", len(rows), scope)
        return len(rows)

    async def replace_scope(self, scope: str, providers: Iterable[CanonicalProvider]) -> int:
        rows = [_row_args(scope, p) for p in providers]
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                await conn.execute("DELETE FROM healthcare_providers WHERE scope = $1", scope)
                if rows:
                    await conn.executemany(UPSERT, rows)
        logger.info("Replaced scope %s with %d providers", scope, len(rows))
        return len(rows)

    async def get(self, unique_id: str, scope: Optional[str] = None) -> Optional[CanonicalProvider]:
        query = "SELECT document FROM healthcare_providers WHERE unique_id = $1"
        args = [unique_id]
        if scope is not None:
            query += " AND scope = $2"
            args.append(scope)
        async with self.pool.acquire() as conn:
            doc = await conn.fetchval(query + " LIMIT 1", *args)
        return CanonicalProvider.from_document(json.loads(doc)) if doc else None

    async def find(self, criteria: ProviderFilter, scope: Optional[str] = None,
                   now: Optional[datetime] = None) -> List[CanonicalProvider]:
        criteria.validate()
        clauses, args = [], []
        if scope is not None:
            args.append(scope)
            clauses.append(f"scope = ${len(args)}")
        if criteria.keyword:
            args.append(criteria.keyword)
            n = len(args)
            clauses.append(f"(name ~* ${n} OR city ~* ${n} OR country ~* ${n} OR specialties ~* ${n})")
        if criteria.institution_type:
            args.append(criteria.institution_type.value)
            clauses.append(f"institution_type = ${len(args)}")
        if criteria.user_location is not None and criteria.max_distance_km:
            args.extend([criteria.user_location.longitude, criteria.user_location.latitude,
                         criteria.max_distance_km * 1000])
            n = len(args)
            clauses.append(
                f"ST_DWithin(location, ST_SetSRID(ST_Point(${n - 2}, ${n - 1}), 4326)::geography, ${n})"
            )

        query = "SELECT document FROM healthcare_providers"
        if clauses:
            query += " WHERE " + " AND ".join(clauses)
        try:
            async with self.pool.acquire() as conn:
                rows = await conn.fetch(query, *args)
        except asyncpg.exceptions.InvalidRegularExpressionError as e:
            raise InvalidInput(f"Invalid keyword pattern: {e}")

        providers = [CanonicalProvider.from_document(json.loads(r["document"])) for r in rows]
        # keyword and type were applied in SQL; the rest (and distance ordering) in Python
        return apply_filter(providers, replace(criteria, keyword=None, institution_type=None), now=now)

    async def close(self) -> None:
        await self.pool.close()
