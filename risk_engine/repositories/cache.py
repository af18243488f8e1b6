"""
Redis Analysis Cache

Read-through cache in front of an AnalysisStore for GET /analysis
lookups. The wrapped store stays the source of truth: Redis failures
are logged and counted, and the call falls through to the store.
"""

import logging
import time
from datetime import datetime
from typing import Optional

import redis.asyncio as redis

from ..metrics import metrics
from ..schemas import FraudAnalysisResult
from .base import AnalysisStore

logger = logging.getLogger("risk_engine.cache")


class CachedAnalysisStore(AnalysisStore):
    """
    AnalysisStore decorator caching the latest result per transaction.

    Key layout: {prefix}analysis:latest:{transaction_id} -> result JSON
    """

    def __init__(
        self,
        inner: AnalysisStore,
        redis_client: redis.Redis,
        prefix: str = "risk:",
        ttl_seconds: int = 86400,
    ):
        """
        Initialize cache.

        Args:
            inner: Store that owns the data
            redis_client: Async Redis client
            prefix: Key prefix
            ttl_seconds: Expiry of cached entries
        """
        self.inner = inner
        self.redis = redis_client
        self.prefix = prefix
        self.ttl_seconds = ttl_seconds

    def _key(self, transaction_id: str) -> str:
        return f"{self.prefix}analysis:latest:{transaction_id}"

    async def save(self, result: FraudAnalysisResult) -> None:
        await self.inner.save(result)
        await self._store(result)

    async def latest_for_transaction(self, transaction_id: str) -> Optional[FraudAnalysisResult]:
        try:
            started_at = time.perf_counter()
            cached = await self.redis.get(self._key(transaction_id))
            metrics.redis_latency.observe((time.perf_counter() - started_at) * 1000)
        except redis.RedisError as e:
            logger.warning("Analysis cache read failed for %s: %s", transaction_id, e)
            metrics.errors_total.labels(error_type="CacheReadFailed").inc()
            cached = None

        if cached:
            metrics.cache_hits.inc()
            return FraudAnalysisResult.model_validate_json(cached)

        metrics.cache_misses.inc()
        result = await self.inner.latest_for_transaction(transaction_id)
        if result is not None:
            await self._store(result)
        return result

    async def list_since(self, since: datetime) -> list[FraudAnalysisResult]:
        return await self.inner.list_since(since)

    async def _store(self, result: FraudAnalysisResult) -> None:
        try:
            started_at = time.perf_counter()
            await self.redis.set(
                self._key(result.transaction_id),
                result.model_dump_json(),
                ex=self.ttl_seconds,
            )
            metrics.redis_latency.observe((time.perf_counter() - started_at) * 1000)
        except redis.RedisError as e:
            logger.warning("Analysis cache write failed for %s: %s", result.transaction_id, e)
            metrics.errors_total.labels(error_type="CacheWriteFailed").inc()
