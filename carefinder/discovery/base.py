import asyncio
import logging
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Iterable, List, Optional, Tuple, Union

from carefinder.core.cache import ResponseCache, cache_key
from carefinder.core.errors import CacheError
from carefinder.core.geomath import bounding_box
from carefinder.core.models import Coordinates, RawProviderRecord

logger = logging.getLogger(__name__)

DEFAULT_DETAIL_CONCURRENCY = 5


@dataclass(frozen=True)
class AreaQuery:
    center: Coordinates
    radius_km: float
    country: str = ""

    def bounding_box(self) -> Tuple[float, float, float, float]:
        return bounding_box(self.center, self.radius_km)


@dataclass(frozen=True)
class NameQuery:
    name: str
    country: str = ""


Query = Union[AreaQuery, NameQuery]


class SourceAdapter:
    """Fetches facilities from one external source and normalizes them.

    ``fetch`` raises the engine's typed errors when the whole source fails;
    the orchestrator contains those so one source never sinks a search.
    Individual malformed elements are skipped here.
    """

    name: str = ""
    id_prefix: str = ""

    async def fetch(self, query: Query) -> List[RawProviderRecord]:
        raise NotImplementedError

    def unique_id(self, source_id: Any) -> str:
        return f"{self.id_prefix}_{source_id}"

    def normalize_all(self, items: Iterable[Any], normalize: Callable[[Any], Optional[RawProviderRecord]]) -> List[RawProviderRecord]:
        records = []
        for item in items:
            try:
                record = normalize(item)
            except (KeyError, TypeError, ValueError, AttributeError) as e:
                logger.warning("%s: skipping malformed element: %s", self.name, e)
                continue
            if record is not None:
                records.append(record)
        return records


async def gather_bounded(items: Iterable[Any], worker: Callable[[Any], Awaitable[Any]], limit: int = DEFAULT_DETAIL_CONCURRENCY) -> List[Any]:
    """Run ``worker`` over items with at most ``limit`` in flight, preserving order."""
    semaphore = asyncio.Semaphore(limit)

    async def run(item):
        async with semaphore:
            return await worker(item)

    return await asyncio.gather(*(run(item) for item in items))


# -------------------------
# CachingSourceAdapter: cache in front of any adapter
# -------------------------
class CachingSourceAdapter(SourceAdapter):
    def __init__(self, inner: SourceAdapter, cache: ResponseCache, namespace: str, ttl: int):
        self.inner = inner
        self.cache = cache
        self.namespace = namespace
        self.ttl = ttl
        self.name = inner.name
        self.id_prefix = inner.id_prefix

    @staticmethod
    def query_text(query: Query) -> str:
        if isinstance(query, NameQuery):
            return f"{query.name}|{query.country}"
        return f"{query.center.latitude:.4f},{query.center.longitude:.4f}|{query.radius_km}|{query.country}"

    async def fetch(self, query: Query) -> List[RawProviderRecord]:
        key = cache_key(self.namespace, self.query_text(query))
        try:
            hit = await self.cache.get(key)
        except CacheError as e:
            logger.warning("%s cache read failed, bypassing: %s", self.name, e)
            hit = None
        if hit:
            logger.info("Retrieved %s results from cache (%d records)", self.name, len(hit))
            return [RawProviderRecord.from_dict(item) for item in hit]

        records = await self.inner.fetch(query)
        if records:
            try:
                await self.cache.set(key, [r.to_dict() for r in records], self.ttl)
            except CacheError as e:
                logger.warning("%s cache write failed: %s", self.name, e)
        return records
