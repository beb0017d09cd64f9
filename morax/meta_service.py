"""Relational store for topics, partition splits, producer ids and consumer groups."""

from __future__ import annotations

import logging
import uuid
from contextlib import contextmanager
from typing import Callable, Iterator

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    Integer,
    MetaData,
    Sequence,
    Table,
    Text,
    UniqueConstraint,
    Uuid,
    create_engine,
    func,
    inspect,
    select,
    text,
)
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.engine import Connection, Engine, make_url
from sqlalchemy.exc import IntegrityError, SQLAlchemyError

from morax.model import (
    CommitRecordBatchesRequest,
    CreateTopicRequest,
    FetchRecordBatchesRequest,
    GroupMeta,
    MetaError,
    Topic,
    TopicPartitionSplit,
)

logger = logging.getLogger(__name__)

_MAX_SEQUENCE_VALUE = 2**63 - 1
_NIL_UUID = uuid.UUID(int=0)

_JSON = JSON().with_variant(JSONB(), "postgresql")

_METADATA = MetaData()

_META_VERSION = Table(
    "meta_version",
    _METADATA,
    Column("version", Integer, primary_key=True, nullable=False, autoincrement=False),
)

_PRODUCER_IDS = Sequence("producer_ids", cycle=True, metadata=_METADATA)

_TOPICS = Table(
    "topics",
    _METADATA,
    Column("id", Uuid, nullable=False, unique=True),
    Column("name", Text, nullable=False, unique=True),
    Column("partitions", Integer, nullable=False),
    Column("properties", _JSON, nullable=False),
)

_TOPIC_PARTITIONS = Table(
    "topic_partitions",
    _METADATA,
    Column("topic_id", Uuid, nullable=False),
    Column("partition_id", Integer, nullable=False),
    Column("last_offset", BigInteger, nullable=False),
    UniqueConstraint("topic_id", "partition_id"),
)

# Each split holds the records in [start_offset, end_offset).
_TOPIC_PARTITION_SPLITS = Table(
    "topic_partition_splits",
    _METADATA,
    Column("topic_id", Uuid, nullable=False),
    Column("topic_name", Text, nullable=False),
    Column("partition_id", Integer, nullable=False),
    Column("start_offset", BigInteger, nullable=False),
    Column("end_offset", BigInteger, nullable=False),
    Column("split_id", Text, nullable=False),
)

_KAFKA_CONSUMER_GROUPS = Table(
    "kafka_consumer_groups",
    _METADATA,
    Column("group_id", Text, nullable=False, unique=True),
    Column("group_meta", _JSON, nullable=False),
)

# Databases without sequences keep the producer id counter in a table.
_FALLBACK_METADATA = MetaData()

_PRODUCER_ID_COUNTER = Table(
    "producer_id_counter",
    _FALLBACK_METADATA,
    Column("value", BigInteger, nullable=False),
)


@contextmanager
def _meta_errors(message: str) -> Iterator[None]:
    try:
        yield
    except SQLAlchemyError as err:
        raise MetaError(message) from err


def bootstrap(engine: Engine) -> None:
    """Create the schema and record meta version 1, all in one transaction."""
    with engine.begin() as conn:
        _METADATA.create_all(conn, checkfirst=True)
        if not conn.dialect.supports_sequences:
            _FALLBACK_METADATA.create_all(conn, checkfirst=True)
        present = conn.execute(
            select(_META_VERSION.c.version).where(_META_VERSION.c.version == 1)
        ).first()
        if present is None:
            conn.execute(_META_VERSION.insert().values(version=1))


def resolve_meta_version(engine: Engine) -> int:
    """Return the schema version of the database, 0 if it was never bootstrapped."""
    if not inspect(engine).has_table("meta_version"):
        return 0
    with engine.connect() as conn:
        version = conn.execute(select(func.max(_META_VERSION.c.version))).scalar_one()
    if version is None:
        raise MetaError("meta_version table holds no version")
    return int(version)


def _ensure_database(service_url: str) -> None:
    url = make_url(service_url)
    if url.get_backend_name() != "postgresql" or not url.database:
        return
    admin = create_engine(url.set(database="postgres"), isolation_level="AUTOCOMMIT")
    try:
        with admin.connect() as conn:
            exists = conn.execute(
                text("SELECT 1 FROM pg_database WHERE datname = :name"),
                {"name": url.database},
            ).first()
            if exists is None:
                logger.info("creating meta database at %s", url.render_as_string())
                quoted = admin.dialect.identifier_preparer.quote(url.database)
                conn.execute(text(f"CREATE DATABASE {quoted}"))
    finally:
        admin.dispose()


def _row_to_topic(row) -> Topic:
    return Topic(
        id=row.id,
        name=row.name,
        partitions=row.partitions,
        properties=row.properties,
    )


class MetaService:
    """Metadata service backed by a SQL database, with transactional updates."""

    def __init__(self, service_url: str) -> None:
        shown_url = make_url(service_url).render_as_string()
        logger.info("connecting to meta service at %s", shown_url)
        with _meta_errors("failed to connect and bootstrap the database"):
            _ensure_database(service_url)
            engine = create_engine(service_url)
            meta_version = resolve_meta_version(engine)
            logger.info("resolved meta version: %s", meta_version)
            if meta_version == 0:
                logger.info("bootstrapping meta database at %s", shown_url)
                bootstrap(engine)
            elif meta_version == 1:
                logger.info("using existing meta database at %s", shown_url)
        if meta_version not in (0, 1):
            engine.dispose()
            raise MetaError(f"unsupported meta version: {meta_version}")
        self._engine = engine

    def close(self) -> None:
        """Release every pooled connection."""
        self._engine.dispose()

    def __enter__(self) -> MetaService:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def create_topic(self, request: CreateTopicRequest) -> Topic:
        """Create a topic and its partitions, each starting at offset 0."""
        topic = Topic(
            id=uuid.uuid4(),
            name=request.name,
            partitions=request.partitions,
            properties=request.properties,
        )
        with _meta_errors("failed to create topic"), self._engine.begin() as conn:
            conn.execute(
                _TOPICS.insert().values(
                    id=topic.id,
                    name=topic.name,
                    partitions=topic.partitions,
                    properties=topic.properties,
                )
            )
            partitions = [
                {"topic_id": topic.id, "partition_id": partition_id, "last_offset": 0}
                for partition_id in range(topic.partitions)
            ]
            if partitions:
                conn.execute(_TOPIC_PARTITIONS.insert(), partitions)
        return topic

    def _get_topic(self, condition) -> Topic:
        with _meta_errors("failed to get all topics"), self._engine.connect() as conn:
            row = conn.execute(select(_TOPICS).where(condition)).one()
        return _row_to_topic(row)

    def get_topics_by_id(self, topic_id: uuid.UUID) -> Topic:
        return self._get_topic(_TOPICS.c.id == topic_id)

    def get_topics_by_name(self, topic_name: str) -> Topic:
        return self._get_topic(_TOPICS.c.name == topic_name)

    def get_all_topics(self) -> list[Topic]:
        with _meta_errors("failed to get all topics"), self._engine.connect() as conn:
            rows = conn.execute(select(_TOPICS)).all()
        return [_row_to_topic(row) for row in rows]

    def new_producer_id(self) -> int:
        """Draw the next producer id; ids start at 1 and cycle on overflow."""
        with _meta_errors("failed to generate new producer id"), self._engine.begin() as conn:
            if conn.dialect.supports_sequences:
                return int(conn.execute(select(_PRODUCER_IDS.next_value())).scalar_one())
            return self._next_counter_value(conn)

    @staticmethod
    def _next_counter_value(conn: Connection) -> int:
        current = conn.execute(
            select(_PRODUCER_ID_COUNTER.c.value).with_for_update()
        ).scalar_one_or_none()
        if current is None:
            conn.execute(_PRODUCER_ID_COUNTER.insert().values(value=1))
            return 1
        following = 1 if current >= _MAX_SEQUENCE_VALUE else current + 1
        conn.execute(_PRODUCER_ID_COUNTER.update().values(value=following))
        return following

    def fetch_record_batches(
        self, request: FetchRecordBatchesRequest
    ) -> list[TopicPartitionSplit]:
        """Splits of a partition that end after ``request.offset``, by end offset.

        A nil topic id means the topic is looked up by name.
        """
        splits = _TOPIC_PARTITION_SPLITS
        with _meta_errors("failed to fetch record batches"), self._engine.connect() as conn:
            topic_id = request.topic_id
            if topic_id == _NIL_UUID:
                topic_id = conn.execute(
                    select(_TOPICS.c.id).where(_TOPICS.c.name == request.topic_name)
                ).scalar_one()
            rows = conn.execute(
                select(splits)
                .where(splits.c.topic_id == topic_id)
                .where(splits.c.partition_id == request.partition_id)
                .where(splits.c.end_offset > request.offset)
                .order_by(splits.c.end_offset.asc())
            ).all()
        return [TopicPartitionSplit(**row._mapping) for row in rows]

    def commit_record_batches(self, request: CommitRecordBatchesRequest) -> tuple[int, int]:
        """Append a split of ``record_len`` records; return its ``(start, end)`` offsets."""
        partitions = _TOPIC_PARTITIONS
        with _meta_errors("failed to commit record batches"), self._engine.begin() as conn:
            topic = conn.execute(
                select(_TOPICS.c.id, _TOPICS.c.name).where(
                    _TOPICS.c.name == request.topic_name
                )
            ).one()
            partition = (partitions.c.topic_id == topic.id) & (
                partitions.c.partition_id == request.partition_id
            )
            start_offset = conn.execute(
                select(partitions.c.last_offset).where(partition).with_for_update()
            ).scalar_one()
            end_offset = start_offset + request.record_len
            conn.execute(partitions.update().where(partition).values(last_offset=end_offset))
            conn.execute(
                _TOPIC_PARTITION_SPLITS.insert().values(
                    topic_id=topic.id,
                    topic_name=topic.name,
                    partition_id=request.partition_id,
                    start_offset=start_offset,
                    end_offset=end_offset,
                    split_id=request.split_id,
                )
            )
        return start_offset, end_offset

    def upsert_group_meta(
        self,
        group_id: str,
        insert_on_missing: bool,
        f: Callable[[GroupMeta | None], GroupMeta],
    ) -> GroupMeta:
        """Update a consumer group under a row lock.

        With ``insert_on_missing`` an empty group is created first. ``f`` gets
        the current group (None if absent) and returns the group to store; an
        exception raised by ``f`` propagates unchanged and nothing is written.
        """
        message = "failed to upsert group meta"
        groups = _KAFKA_CONSUMER_GROUPS
        if insert_on_missing:
            with _meta_errors(message):
                try:
                    with self._engine.begin() as conn:
                        present = conn.execute(
                            select(groups.c.group_id).where(groups.c.group_id == group_id)
                        ).first()
                        if present is None:
                            conn.execute(
                                groups.insert().values(
                                    group_id=group_id,
                                    group_meta=GroupMeta(group_id=group_id).to_dict(),
                                )
                            )
                except IntegrityError:
                    pass  # created concurrently

        with _meta_errors(message), self._engine.begin() as conn:
            raw = conn.execute(
                select(groups.c.group_meta)
                .where(groups.c.group_id == group_id)
                .with_for_update()
            ).scalar_one_or_none()
            try:
                current = GroupMeta.from_dict(raw) if raw is not None else None
            except ValueError as err:
                raise MetaError(message) from err
            updated = f(current)
            conn.execute(
                groups.update()
                .where(groups.c.group_id == group_id)
                .values(group_meta=updated.to_dict())
            )
        return updated