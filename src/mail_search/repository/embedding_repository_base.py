"""Abstract base class for embedding store implementations."""

import math
import uuid
from abc import ABC, abstractmethod
from typing import Any, Optional, Sequence

from loguru import logger
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from mail_search import db
from mail_search.config import ConfigManager, MailSearchConfig
from mail_search.errors import (
    InvalidArgumentError,
    InvalidStatusTransitionError,
)
from mail_search.repository.entity_kinds import (
    EntityKindHandler,
    build_scope_conditions,
    get_handler,
    validate_scope,
)
from mail_search.repository.records import (
    EmbeddingRecord,
    EntityRecord,
    RankedItem,
    StatusCounts,
)
from mail_search.schemas.search import EmbeddingStatus, EntityKind, ScopeFilter
from mail_search.utils import parse_db_datetime
from mail_search.vector_math import AggregationMethod, check_dimensions, l2_norm

ZERO_NORM_ERROR = "embedding vector has zero norm"

# Allowed status changes. mark_failed() may flag a row from any state.
VALID_STATUS_TRANSITIONS: dict[EmbeddingStatus, frozenset[EmbeddingStatus]] = {
    EmbeddingStatus.PENDING: frozenset({EmbeddingStatus.PROCESSING}),
    EmbeddingStatus.PROCESSING: frozenset({EmbeddingStatus.COMPLETED, EmbeddingStatus.FAILED}),
    EmbeddingStatus.FAILED: frozenset({EmbeddingStatus.PENDING}),
    EmbeddingStatus.COMPLETED: frozenset(),
}


class EmbeddingRepositoryBase(ABC):
    """Abstract base class for backend-specific embedding stores.

    Shared logic (upsert semantics, status machine, k-NN and thresholded
    similarity search, hydration) lives here. Backend-specific operations are
    delegated to abstract hooks.

    Concrete implementations:
    - SQLiteEmbeddingRepository: float32 BLOBs compared with sqlite-vec vec_distance_cosine()
    - PostgresEmbeddingRepository: pgvector columns compared with the <=> operator
    """

    def __init__(
        self,
        session_maker: async_sessionmaker[AsyncSession],
        app_config: MailSearchConfig | None = None,
    ):
        self.session_maker = session_maker
        self._app_config = app_config or ConfigManager().config
        self._vector_dimensions = self._app_config.vector_dimensions

    @property
    def vector_dimensions(self) -> int:
        return self._vector_dimensions

    # ------------------------------------------------------------------
    # Abstract hooks (backend-specific)
    # ------------------------------------------------------------------

    @abstractmethod
    async def init_search_index(self) -> None:
        """Create the per-kind embedding tables if they don't exist."""
        pass

    @abstractmethod
    async def _prepare_vector_session(self, session: AsyncSession) -> None:
        """Make vector distance functions available on this session."""
        pass

    @abstractmethod
    def _encode_vector(self, vector: Sequence[float]) -> Any:
        """Bind value for a vector parameter."""
        pass

    @abstractmethod
    def _decode_vector(self, raw: Any) -> list[float]:
        """Convert a stored vector column value back to floats."""
        pass

    @abstractmethod
    def _vector_bind_sql(self, param: str) -> str:
        """SQL expression wrapping a bound vector parameter."""
        pass

    @abstractmethod
    def _distance_sql(self, column: str, param: str) -> str:
        """SQL expression for the cosine distance between a column and a bound vector."""
        pass

    @abstractmethod
    def _nonzero_vector_sql(self, column: str) -> str:
        """SQL condition that holds when the stored vector has a non-zero norm."""
        pass

    @abstractmethod
    def _timestamp_now_expr(self) -> str:
        pass

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    async def upsert(
        self,
        kind: EntityKind,
        owner_id: str,
        vector: Sequence[float],
        model: str,
        input_hash: Optional[str] = None,
        *,
        model_version: Optional[str] = None,
        token_count: Optional[int] = None,
        aggregation_method: AggregationMethod | str | None = None,
        message_count: Optional[int] = None,
        total_tokens: Optional[int] = None,
    ) -> bool:
        """Insert or replace the embedding of one entity.

        Returns False without writing when the stored row is completed and has
        the same input_hash. A zero-norm vector is stored with status failed.

        Raises:
            DimensionMismatchError: vector length differs from the configured dimension
            InvalidArgumentError: non-finite values, or thread-only fields misused
        """
        handler = get_handler(kind)
        check_dimensions(vector, self._vector_dimensions)
        if not all(math.isfinite(x) for x in vector):
            raise InvalidArgumentError("embedding vector contains non-finite values")

        if handler.is_thread:
            if message_count is None or message_count < 1:
                raise InvalidArgumentError("thread embeddings need message_count >= 1")
            aggregation = AggregationMethod(aggregation_method or AggregationMethod.MEAN)
        elif aggregation_method is not None or message_count is not None:
            raise InvalidArgumentError(
                f"aggregation_method and message_count only apply to thread embeddings, not {handler.kind.value}"
            )
        else:
            aggregation = None

        if l2_norm(vector) == 0.0:
            status = EmbeddingStatus.FAILED
            error_message: Optional[str] = ZERO_NORM_ERROR
            logger.warning(f"Storing zero-norm {handler.kind.value} embedding as failed: {owner_id}")
        else:
            status = EmbeddingStatus.COMPLETED
            error_message = None

        params: dict[str, Any] = {
            "id": str(uuid.uuid4()),
            "owner_id": owner_id,
            "embedding": self._encode_vector(vector),
            "dimensions": len(vector),
            "model": model,
            "model_version": model_version,
            "token_count": token_count,
            "input_hash": input_hash,
            "status": status.value,
            "error_message": error_message,
        }
        columns = [
            "id",
            handler.owner_column,
            "embedding",
            "dimensions",
            "model",
            "model_version",
            "token_count",
            "input_hash",
            "status",
            "error_message",
        ]
        values = [
            ":id",
            ":owner_id",
            self._vector_bind_sql("embedding"),
            ":dimensions",
            ":model",
            ":model_version",
            ":token_count",
            ":input_hash",
            ":status",
            ":error_message",
        ]
        if handler.is_thread:
            assert aggregation is not None
            params.update(
                aggregation_method=aggregation.value,
                message_count=message_count,
                total_tokens=total_tokens,
            )
            columns += ["aggregation_method", "message_count", "total_tokens"]
            values += [":aggregation_method", ":message_count", ":total_tokens"]

        now = self._timestamp_now_expr()
        # id and created_at survive a replace
        updates = [
            f"{column} = EXCLUDED.{column}"
            for column in columns
            if column not in ("id", handler.owner_column)
        ]
        updates.append(f"updated_at = {now}")

        async with db.scoped_session(self.session_maker) as session:
            existing = await session.execute(
                text(
                    f"SELECT input_hash, status FROM {handler.embedding_table} "
                    f"WHERE {handler.owner_column} = :owner_id"
                ),
                {"owner_id": owner_id},
            )
            current = existing.mappings().first()
            if (
                current is not None
                and input_hash is not None
                and current["input_hash"] == input_hash
                and current["status"] == EmbeddingStatus.COMPLETED.value
            ):
                logger.debug(f"{handler.kind.value} embedding unchanged, skipping: {owner_id}")
                return False

            await session.execute(
                text(
                    f"INSERT INTO {handler.embedding_table} ({', '.join(columns)}, created_at, updated_at) "
                    f"VALUES ({', '.join(values)}, {now}, {now}) "
                    f"ON CONFLICT ({handler.owner_column}) DO UPDATE SET {', '.join(updates)}"
                ),
                params,
            )
            logger.debug(f"Upserted {handler.kind.value} embedding for {owner_id} status={status.value}")
        return True

    async def delete(self, kind: EntityKind, owner_id: str) -> bool:
        handler = get_handler(kind)
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                text(
                    f"DELETE FROM {handler.embedding_table} WHERE {handler.owner_column} = :owner_id"
                ),
                {"owner_id": owner_id},
            )
            return result.rowcount > 0

    # ------------------------------------------------------------------
    # Status machine
    # ------------------------------------------------------------------

    async def transition_status(
        self,
        kind: EntityKind,
        owner_id: str,
        new_status: EmbeddingStatus,
        error_message: Optional[str] = None,
    ) -> None:
        """Move an embedding along pending -> processing -> completed | failed, failed -> pending.

        A row whose stored vector has zero norm cannot complete: it is marked
        failed with ZERO_NORM_ERROR instead and the transition is refused.

        Raises:
            InvalidStatusTransitionError: the row is missing, the move is not allowed,
                the stored vector has zero norm, or the row changed status concurrently
        """
        handler = get_handler(kind)
        new_status = EmbeddingStatus(new_status)
        zero_norm = False

        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                text(
                    f"SELECT status FROM {handler.embedding_table} "
                    f"WHERE {handler.owner_column} = :owner_id"
                ),
                {"owner_id": owner_id},
            )
            current_value = result.scalar()
            if current_value is None:
                raise InvalidStatusTransitionError(
                    f"No {handler.kind.value} embedding for {owner_id}"
                )

            current = EmbeddingStatus(current_value)
            if new_status not in VALID_STATUS_TRANSITIONS[current]:
                raise InvalidStatusTransitionError(
                    f"Cannot move {handler.kind.value} embedding from {current.value} to {new_status.value}"
                )

            if new_status == EmbeddingStatus.COMPLETED:
                await self._prepare_vector_session(session)
                usable = await session.execute(
                    text(
                        f"SELECT {self._nonzero_vector_sql('embedding')} "
                        f"FROM {handler.embedding_table} "
                        f"WHERE {handler.owner_column} = :owner_id"
                    ),
                    {"owner_id": owner_id},
                )
                if not usable.scalar():
                    zero_norm = True
                    new_status = EmbeddingStatus.FAILED
                    error_message = ZERO_NORM_ERROR

            # failed rows keep their message, everything else clears it
            message = error_message if new_status == EmbeddingStatus.FAILED else None
            updated = await session.execute(
                text(
                    f"UPDATE {handler.embedding_table} "
                    f"SET status = :new_status, error_message = :error_message, "
                    f"updated_at = {self._timestamp_now_expr()} "
                    f"WHERE {handler.owner_column} = :owner_id AND status = :current_status"
                ),
                {
                    "new_status": new_status.value,
                    "error_message": message,
                    "owner_id": owner_id,
                    "current_status": current.value,
                },
            )
            if updated.rowcount == 0:
                raise InvalidStatusTransitionError(
                    f"{handler.kind.value} embedding {owner_id} changed status concurrently"
                )

        if zero_norm:
            logger.warning(f"Marked zero-norm {handler.kind.value} embedding {owner_id} failed")
            raise InvalidStatusTransitionError(
                f"{handler.kind.value} embedding {owner_id} has a zero-norm vector and cannot complete"
            )
        logger.debug(f"{handler.kind.value} embedding {owner_id}: {current.value} -> {new_status.value}")

    async def mark_failed(self, kind: EntityKind, owner_id: str, error_message: str) -> bool:
        """Flag an embedding as failed from any state. Returns False if no row exists."""
        handler = get_handler(kind)
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                text(
                    f"UPDATE {handler.embedding_table} "
                    f"SET status = :status, error_message = :error_message, "
                    f"updated_at = {self._timestamp_now_expr()} "
                    f"WHERE {handler.owner_column} = :owner_id"
                ),
                {
                    "status": EmbeddingStatus.FAILED.value,
                    "error_message": error_message,
                    "owner_id": owner_id,
                },
            )
            flagged = result.rowcount > 0
        if flagged:
            logger.warning(f"Marked {handler.kind.value} embedding {owner_id} failed: {error_message}")
        return flagged

    async def status_counts(self, kind: EntityKind) -> StatusCounts:
        handler = get_handler(kind)
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                text(
                    f"SELECT status, COUNT(*) AS total FROM {handler.embedding_table} GROUP BY status"
                )
            )
            rows = result.fetchall()

        counts = {status: 0 for status in EmbeddingStatus}
        for row in rows:
            counts[EmbeddingStatus(row.status)] = int(row.total)
        return StatusCounts(kind=handler.kind, counts=counts)

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def _record_columns(self, handler: EntityKindHandler) -> str:
        columns = (
            f"e.id AS id, e.{handler.owner_column} AS owner_id, e.embedding AS embedding, "
            "e.model AS model, e.model_version AS model_version, e.input_hash AS input_hash, "
            "e.status AS status, e.error_message AS error_message, e.token_count AS token_count, "
            "e.created_at AS created_at, e.updated_at AS updated_at"
        )
        if handler.is_thread:
            columns += (
                ", e.aggregation_method AS aggregation_method, "
                "e.message_count AS message_count, e.total_tokens AS total_tokens"
            )
        return columns

    def _row_to_record(self, handler: EntityKindHandler, row) -> EmbeddingRecord:
        return EmbeddingRecord(
            id=row["id"],
            owner_entity_id=row["owner_id"],
            owner_entity_kind=handler.kind,
            vector=self._decode_vector(row["embedding"]),
            model=row["model"],
            status=EmbeddingStatus(row["status"]),
            model_version=row["model_version"],
            input_hash=row["input_hash"],
            error_message=row["error_message"],
            token_count=row["token_count"],
            created_at=parse_db_datetime(row["created_at"]),
            updated_at=parse_db_datetime(row["updated_at"]),
            aggregation_method=row["aggregation_method"] if handler.is_thread else None,
            message_count=row["message_count"] if handler.is_thread else None,
            total_tokens=row["total_tokens"] if handler.is_thread else None,
        )

    async def get(self, kind: EntityKind, owner_id: str) -> Optional[EmbeddingRecord]:
        handler = get_handler(kind)
        async with db.scoped_session(self.session_maker) as session:
            result = await session.execute(
                text(
                    f"SELECT {self._record_columns(handler)} FROM {handler.embedding_table} e "
                    f"WHERE e.{handler.owner_column} = :owner_id"
                ),
                {"owner_id": owner_id},
            )
            row = result.mappings().first()
        return self._row_to_record(handler, row) if row is not None else None

    def _candidate_sql(
        self,
        handler: EntityKindHandler,
        query_vector: Sequence[float],
        scope: Optional[ScopeFilter],
        params: dict[str, Any],
        include_vector: bool,
    ) -> str:
        """SELECT over completed rows of the configured dimension with a ``distance`` column."""
        if l2_norm(query_vector) == 0.0:
            # no direction: every row is equally (dis)similar
            distance = "1.0"
        else:
            params["query_vector"] = self._encode_vector(query_vector)
            distance = self._distance_sql("e.embedding", self._vector_bind_sql("query_vector"))

        params["completed"] = EmbeddingStatus.COMPLETED.value
        params["dimensions"] = self._vector_dimensions
        # a zero-norm row has no cosine distance (NULL in sqlite-vec, NaN in pgvector)
        conditions = [
            "e.status = :completed",
            "e.dimensions = :dimensions",
            self._nonzero_vector_sql("e.embedding"),
        ]

        scope_conditions = build_scope_conditions(scope, handler.scope_columns, params)
        if scope_conditions:
            conditions.append(
                f"e.{handler.owner_column} IN ("
                f"SELECT {handler.id_column} FROM {handler.from_clause} "
                f"WHERE {' AND '.join(scope_conditions)})"
            )

        columns = (
            self._record_columns(handler)
            if include_vector
            else f"e.id AS id, e.{handler.owner_column} AS owner_id"
        )
        return (
            f"SELECT {columns}, {distance} AS distance "
            f"FROM {handler.embedding_table} e "
            f"WHERE {' AND '.join(conditions)}"
        )

    def _validate_query(
        self, kind: EntityKind, query_vector: Sequence[float], scope: Optional[ScopeFilter]
    ) -> EntityKindHandler:
        handler = get_handler(kind)
        check_dimensions(query_vector, self._vector_dimensions)
        validate_scope(handler.kind, scope)
        return handler

    @staticmethod
    def _similarity(distance: float) -> float:
        return max(0.0, min(1.0, 1.0 - distance))

    async def knn(
        self,
        kind: EntityKind,
        query_vector: Sequence[float],
        k: int,
        scope: Optional[ScopeFilter] = None,
    ) -> list[RankedItem[EmbeddingRecord]]:
        """The k completed embeddings closest to query_vector by cosine distance.

        Ties are broken by embedding id. Rows that are not completed, were
        written with another dimension, or hold a zero-norm vector never appear.
        """
        if k <= 0:
            raise InvalidArgumentError(f"k must be positive, got {k}")
        handler = self._validate_query(kind, query_vector, scope)

        params: dict[str, Any] = {"k": k}
        sql = (
            self._candidate_sql(handler, query_vector, scope, params, include_vector=True)
            + " ORDER BY distance ASC, e.id ASC LIMIT :k"
        )

        logger.trace(f"knn {handler.kind.value} k={k}")
        try:
            async with db.scoped_session(self.session_maker) as session:
                await self._prepare_vector_session(session)
                result = await session.execute(text(sql), params)
                rows = result.mappings().all()
        except Exception as e:
            logger.error(f"Database error during {handler.kind.value} knn: {e}")
            raise

        ranked = []
        for rank, row in enumerate(rows, start=1):
            distance = max(0.0, float(row["distance"]))
            ranked.append(
                RankedItem(
                    item=self._row_to_record(handler, row),
                    rank=rank,
                    similarity=self._similarity(distance),
                    distance=distance,
                )
            )
        return ranked

    async def similarity_search(
        self,
        kind: EntityKind,
        query_vector: Sequence[float],
        limit: int = 10,
        threshold: Optional[float] = None,
        scope: Optional[ScopeFilter] = None,
    ) -> list[RankedItem[EntityRecord]]:
        """Entities whose embedding similarity to query_vector is above threshold.

        Results are hydrated owner entities, best first, ties by entity id.
        threshold defaults to the configured vector similarity threshold (0.5).
        """
        if limit <= 0:
            raise InvalidArgumentError(f"limit must be positive, got {limit}")
        if threshold is None:
            threshold = self._app_config.vector_similarity_threshold
        if not 0.0 <= threshold <= 1.0:
            raise InvalidArgumentError(f"threshold must be within [0, 1], got {threshold}")
        handler = self._validate_query(kind, query_vector, scope)

        # a zero query vector has similarity 0 to everything
        if l2_norm(query_vector) == 0.0:
            return []

        params: dict[str, Any] = {"limit": limit, "max_distance": 1.0 - threshold}
        inner = self._candidate_sql(handler, query_vector, scope, params, include_vector=False)
        sql = (
            f"SELECT candidates.owner_id AS owner_id, candidates.distance AS distance "
            f"FROM ({inner}) candidates "
            f"WHERE candidates.distance < :max_distance "
            f"ORDER BY candidates.distance ASC, candidates.owner_id ASC "
            f"LIMIT :limit"
        )

        logger.trace(f"similarity_search {handler.kind.value} limit={limit} threshold={threshold}")
        try:
            async with db.scoped_session(self.session_maker) as session:
                await self._prepare_vector_session(session)
                result = await session.execute(text(sql), params)
                rows = result.mappings().all()

                hits = []
                for row in rows:
                    distance = max(0.0, float(row["distance"]))
                    similarity = self._similarity(distance)
                    if similarity > threshold:
                        hits.append((row["owner_id"], similarity, distance))

                entities = await handler.fetch_by_ids(session, [owner_id for owner_id, _, _ in hits])
        except Exception as e:
            logger.error(f"Database error during {handler.kind.value} similarity search: {e}")
            raise

        ranked: list[RankedItem[EntityRecord]] = []
        for owner_id, similarity, distance in hits:
            entity = entities.get(owner_id)
            if entity is None:  # pragma: no cover
                continue
            ranked.append(
                RankedItem(
                    item=entity,
                    rank=len(ranked) + 1,
                    similarity=similarity,
                    distance=distance,
                )
            )
        logger.trace(f"Found {len(ranked)} {handler.kind.value} vector hits")
        return ranked
