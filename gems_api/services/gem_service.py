# Proximity search over gem listings.
# Geohash range queries narrow the candidates in the store; exact haversine
# distance then filters, orders and pages them.

import logging
from typing import Any, Dict, List, Optional, Tuple

from gems_api.core.errors import MalformedInput
from gems_api.models.dto import Coordinates, DistanceAnnotated, Gem, GemStatus, Pagination
from gems_api.services.document_store import DocumentStore, FieldFilter, RangeFilter
from gems_api.services.ranker import paginate, rank, within_radius
from gems_api.utils import geohash

logger = logging.getLogger(__name__)

GEMS_COLLECTION = "gems"
GEOHASH_FIELD = "geohash"

# Stored hashes must be at least as long as any query prefix.
STORED_GEOHASH_PRECISION = geohash.MAX_PRECISION


class GemService:
    """Service layer for gem listings and distance-sorted search."""

    def __init__(self, store: DocumentStore):
        self.store = store

    async def get_gem(self, gem_id: str) -> Optional[Gem]:
        data = await self.store.get(GEMS_COLLECTION, gem_id)
        if data is None:
            return None
        return Gem.from_document(gem_id, data)

    async def save_gem(self, gem: Gem) -> Gem:
        """Persist a gem, (re)computing its geohash from its coordinates."""
        indexed = gem.model_copy(update={
            "geohash": geohash.encode(gem.coordinates.lat, gem.coordinates.lng, STORED_GEOHASH_PRECISION),
        })
        data: Dict[str, Any] = indexed.model_dump(by_alias=True, exclude={"id"}, mode="json")
        await self.store.set(GEMS_COLLECTION, gem.id, data)
        return indexed

    async def reindex(self) -> int:
        """Backfill or repair stored geohashes. Returns the number of documents rewritten."""
        rewritten = 0
        for doc_id, data in await self.store.find(GEMS_COLLECTION):
            try:
                gem = Gem.from_document(doc_id, data)
            except MalformedInput as e:
                logger.error(f"Cannot index malformed gem document: {e}")
                continue
            expected = geohash.encode(gem.coordinates.lat, gem.coordinates.lng, STORED_GEOHASH_PRECISION)
            if gem.geohash != expected:
                await self.save_gem(gem)
                rewritten += 1
        if rewritten:
            logger.info(f"Reindexed {rewritten} gem geohash(es)")
        return rewritten

    async def find_candidates(
        self,
        center: Coordinates,
        radius_km: float,
        min_rating: Optional[float] = None,
    ) -> List[Gem]:
        """Approved gems whose geohash falls in any cell covering the radius."""
        filters = [FieldFilter(field="status", value=GemStatus.APPROVED.value)]
        if min_rating is not None and min_rating > 0:
            filters.append(FieldFilter(field="ratingAvg", op=">=", value=min_rating))

        seen: Dict[str, Gem] = {}
        queries = geohash.queries_for_radius(center, radius_km)
        for query in queries:
            docs = await self.store.range_query(
                GEMS_COLLECTION,
                RangeFilter(field=GEOHASH_FIELD, start=query.start, end=query.end),
                filters,
            )
            for doc_id, data in docs:
                if doc_id in seen:
                    continue
                try:
                    seen[doc_id] = Gem.from_document(doc_id, data)
                except MalformedInput as e:
                    logger.error(f"Skipping malformed gem document: {e}")

        logger.info(f"Proximity search: {len(queries)} range queries, {len(seen)} candidates within {radius_km} km cover")
        return list(seen.values())

    async def find_nearby(
        self,
        center: Coordinates,
        radius_km: float,
        page: int = 1,
        page_size: int = 10,
        min_rating: Optional[float] = None,
    ) -> Tuple[List[DistanceAnnotated[Gem]], Pagination]:
        """One page of approved gems within `radius_km`, nearest first."""
        candidates = await self.find_candidates(center, radius_km, min_rating)
        ranked = within_radius(rank(candidates, center), radius_km)
        return paginate(ranked, page, page_size)
