# Copyright (C) 2025 Global Digital Labs (gdlabs.io)
# SPDX-License-Identifier: LGPL-3.0-or-later
"""Redis-backed LearningStore.

Key layout (all under the learner prefix {key_prefix}:user:{user_id}:):

    mastery:{concept_id}   JSON ConceptMastery
    mastery:_index         sorted set of concept ids by mastery score
    review:_queue          sorted set of concept ids by next review timestamp
    graph                  JSON KnowledgeGraph

Single-key read-modify-write uses optimistic locking: the record key is
WATCHed, read, transformed and written back in MULTI/EXEC together with the
index entries. A concurrent write aborts the transaction and the update is
retried against the fresh value.
"""

import logging
from datetime import datetime
from typing import Any, Optional

from redis.asyncio.client import Pipeline
from redis.exceptions import RedisError as BaseRedisError
from redis.exceptions import WatchError

from src.core.knowledge.models import KnowledgeGraph
from src.core.learning.models import ConceptMastery
from src.infrastructure.cache.redis_client import RedisClient, RedisError
from src.infrastructure.storage.base import (
    GraphMutator,
    LearningStore,
    MasteryMutator,
    StorageError,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_WATCH_RETRIES = 10


class RedisLearningStore(LearningStore):
    """LearningStore on top of RedisClient.

    Example:
        >>> await init_redis(settings)
        >>> store = RedisLearningStore(get_redis())
        >>> await store.get_concept_mastery("u-1", "photosynthesis")
    """

    def __init__(
        self,
        client: RedisClient,
        max_watch_retries: int = DEFAULT_MAX_WATCH_RETRIES,
    ) -> None:
        self._client = client
        self._max_watch_retries = max_watch_retries

    # ========== Keys ==========

    def _mastery_key(self, user_id: str, concept_id: str) -> str:
        return self._client.user_key(user_id, f"mastery:{concept_id}")

    def _index_key(self, user_id: str) -> str:
        return self._client.user_key(user_id, "mastery:_index")

    def _review_queue_key(self, user_id: str) -> str:
        return self._client.user_key(user_id, "review:_queue")

    def _graph_key(self, user_id: str) -> str:
        return self._client.user_key(user_id, "graph")

    # ========== Helpers ==========

    @staticmethod
    def _to_mastery(data: Any) -> Optional[ConceptMastery]:
        if data is None:
            return None
        return ConceptMastery.model_validate(data)

    def _queue_mastery_write(self, pipe: Pipeline, user_id: str, mastery: ConceptMastery) -> None:
        pipe.set(
            self._mastery_key(user_id, mastery.concept_id),
            RedisClient.serialize(mastery.model_dump(mode="json")),
        )
        pipe.zadd(self._index_key(user_id), {mastery.concept_id: mastery.mastery_score})
        if mastery.next_review_date is not None:
            pipe.zadd(
                self._review_queue_key(user_id),
                {mastery.concept_id: mastery.next_review_date.timestamp()},
            )

    async def _mget_mastery(self, user_id: str, concept_ids: list[str]) -> list[ConceptMastery]:
        keys = [self._mastery_key(user_id, concept_id) for concept_id in concept_ids]
        values = await self._client.mget(keys)
        return [mastery for mastery in map(self._to_mastery, values) if mastery is not None]

    # ========== Mastery ==========

    async def get_concept_mastery(
        self, user_id: str, concept_id: str
    ) -> Optional[ConceptMastery]:
        try:
            data = await self._client.get(self._mastery_key(user_id, concept_id))
        except RedisError as e:
            raise StorageError(f"Failed to read mastery {user_id}/{concept_id}", e) from e
        return self._to_mastery(data)

    async def put_concept_mastery(self, user_id: str, mastery: ConceptMastery) -> None:
        try:
            async with self._client.pipeline() as pipe:
                self._queue_mastery_write(pipe, user_id, mastery)
                await pipe.execute()
        except (RedisError, BaseRedisError) as e:
            raise StorageError(
                f"Failed to write mastery {user_id}/{mastery.concept_id}", e
            ) from e

    async def update_concept_mastery(
        self,
        user_id: str,
        concept_id: str,
        mutator: MasteryMutator,
    ) -> ConceptMastery:
        key = self._mastery_key(user_id, concept_id)
        try:
            for attempt in range(1, self._max_watch_retries + 1):
                async with self._client.pipeline() as pipe:
                    try:
                        await pipe.watch(key)
                        current = self._to_mastery(RedisClient.deserialize(await pipe.get(key)))
                        updated = mutator(current)
                        pipe.multi()
                        self._queue_mastery_write(pipe, user_id, updated)
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug(
                            "Concurrent write on %s, retrying (attempt %d)", key, attempt
                        )
        except (RedisError, BaseRedisError) as e:
            raise StorageError(f"Failed to update mastery {user_id}/{concept_id}", e) from e

        raise StorageError(
            f"Gave up updating mastery {user_id}/{concept_id} after "
            f"{self._max_watch_retries} concurrent writes"
        )

    async def list_concept_mastery(self, user_id: str) -> list[ConceptMastery]:
        try:
            concept_ids = await self._client.zmembers(self._index_key(user_id))
            return await self._mget_mastery(user_id, concept_ids)
        except RedisError as e:
            raise StorageError(f"Failed to list mastery for {user_id}", e) from e

    async def list_due_concepts(self, user_id: str, now: datetime) -> list[ConceptMastery]:
        try:
            concept_ids = await self._client.zrange_by_score(
                self._review_queue_key(user_id), "-inf", now.timestamp()
            )
            return await self._mget_mastery(user_id, concept_ids)
        except RedisError as e:
            raise StorageError(f"Failed to read review queue for {user_id}", e) from e

    async def delete_concept_mastery(self, user_id: str, concept_id: str) -> bool:
        try:
            async with self._client.pipeline() as pipe:
                pipe.delete(self._mastery_key(user_id, concept_id))
                pipe.zrem(self._index_key(user_id), concept_id)
                pipe.zrem(self._review_queue_key(user_id), concept_id)
                deleted, _, _ = await pipe.execute()
        except (RedisError, BaseRedisError) as e:
            raise StorageError(f"Failed to delete mastery {user_id}/{concept_id}", e) from e
        return deleted > 0

    # ========== Knowledge graph ==========

    async def get_knowledge_graph(self, user_id: str) -> KnowledgeGraph:
        try:
            data = await self._client.get(self._graph_key(user_id))
        except RedisError as e:
            raise StorageError(f"Failed to read graph for {user_id}", e) from e
        return KnowledgeGraph.model_validate(data) if data is not None else KnowledgeGraph()

    async def put_knowledge_graph(self, user_id: str, graph: KnowledgeGraph) -> None:
        try:
            await self._client.set(self._graph_key(user_id), graph.model_dump(mode="json"))
        except RedisError as e:
            raise StorageError(f"Failed to write graph for {user_id}", e) from e

    async def update_knowledge_graph(
        self,
        user_id: str,
        mutator: GraphMutator,
    ) -> KnowledgeGraph:
        key = self._graph_key(user_id)
        try:
            for attempt in range(1, self._max_watch_retries + 1):
                async with self._client.pipeline() as pipe:
                    try:
                        await pipe.watch(key)
                        data = RedisClient.deserialize(await pipe.get(key))
                        current = (
                            KnowledgeGraph.model_validate(data) if data is not None else KnowledgeGraph()
                        )
                        updated = mutator(current)
                        pipe.multi()
                        pipe.set(key, RedisClient.serialize(updated.model_dump(mode="json")))
                        await pipe.execute()
                        return updated
                    except WatchError:
                        logger.debug(
                            "Concurrent write on %s, retrying (attempt %d)", key, attempt
                        )
        except (RedisError, BaseRedisError) as e:
            raise StorageError(f"Failed to update graph for {user_id}", e) from e

        raise StorageError(
            f"Gave up updating graph for {user_id} after "
            f"{self._max_watch_retries} concurrent writes"
        )

    # ========== Erasure ==========

    async def delete_user_data(self, user_id: str) -> int:
        try:
            removed = await self._client.delete_user_keys(user_id)
        except RedisError as e:
            raise StorageError(f"Failed to delete data for {user_id}", e) from e
        logger.info("Deleted %d keys for user %s", removed, user_id)
        return removed

    async def close(self) -> None:
        await self._client.close()
