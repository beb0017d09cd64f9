import uuid

import pytest
from sqlalchemy import create_engine, text

from morax.groups import add_member
from morax.meta_service import MetaService, bootstrap, resolve_meta_version
from morax.model import (
    CommitRecordBatchesRequest,
    CreateTopicRequest,
    FetchRecordBatchesRequest,
    GroupMeta,
    MemberMeta,
    MetaError,
)


@pytest.fixture
def db_url(tmp_path):
    return f"sqlite:///{tmp_path / 'meta.db'}"


@pytest.fixture
def service(db_url):
    with MetaService(db_url) as svc:
        yield svc


def _topic_request(name="events", partitions=2):
    return CreateTopicRequest(
        name=name, partitions=partitions, properties={"storage": {"scheme": "memory"}}
    )


def _member(group_id, member_id):
    return MemberMeta(
        group_id=group_id,
        member_id=member_id,
        client_id="client",
        client_host="localhost",
        protocol_type="consumer",
        protocols={"range": b"\x01"},
        assignment=b"",
        rebalance_timeout_ms=1000,
        session_timeout_ms=1000,
    )


def test_resolve_version_before_and_after_bootstrap(db_url):
    engine = create_engine(db_url)
    try:
        assert resolve_meta_version(engine) == 0
        bootstrap(engine)
        assert resolve_meta_version(engine) == 1
        bootstrap(engine)
        with engine.connect() as conn:
            rows = conn.execute(text("SELECT version FROM meta_version")).all()
        assert [row[0] for row in rows] == [1]
    finally:
        engine.dispose()


def test_reopen_existing_database_keeps_topics(db_url):
    with MetaService(db_url) as first:
        created = first.create_topic(_topic_request())
    with MetaService(db_url) as second:
        assert second.get_topics_by_name("events") == created


def test_unsupported_meta_version(db_url):
    engine = create_engine(db_url)
    bootstrap(engine)
    with engine.begin() as conn:
        conn.execute(text("INSERT INTO meta_version (version) VALUES (2)"))
    engine.dispose()
    with pytest.raises(MetaError, match="unsupported meta version: 2"):
        MetaService(db_url)


def test_create_and_get_topics(service):
    request = _topic_request()
    topic = service.create_topic(request)
    assert topic.name == request.name
    assert topic.partitions == request.partitions
    assert topic.properties == request.properties
    assert service.get_topics_by_id(topic.id) == topic
    assert service.get_topics_by_name("events") == topic
    assert service.get_all_topics() == [topic]


def test_duplicate_topic_name_fails(service):
    service.create_topic(_topic_request())
    with pytest.raises(MetaError, match="failed to create topic"):
        service.create_topic(_topic_request())
    assert len(service.get_all_topics()) == 1


def test_missing_topic_fails(service):
    with pytest.raises(MetaError):
        service.get_topics_by_name("absent")
    with pytest.raises(MetaError):
        service.get_topics_by_id(uuid.uuid4())


def test_producer_ids_increase(service):
    first = service.new_producer_id()
    second = service.new_producer_id()
    third = service.new_producer_id()
    assert first >= 1
    assert second == first + 1
    assert third == second + 1


def test_commit_record_batches_advances_offsets(service):
    service.create_topic(_topic_request())
    first = service.commit_record_batches(
        CommitRecordBatchesRequest("events", 0, 3, "split-a")
    )
    second = service.commit_record_batches(
        CommitRecordBatchesRequest("events", 0, 2, "split-b")
    )
    assert first == (0, 3)
    assert second == (3, 5)
    other = service.commit_record_batches(
        CommitRecordBatchesRequest("events", 1, 4, "split-c")
    )
    assert other == (0, 4)


def test_commit_to_unknown_partition_fails(service):
    service.create_topic(_topic_request(partitions=1))
    with pytest.raises(MetaError, match="failed to commit record batches"):
        service.commit_record_batches(CommitRecordBatchesRequest("events", 1, 1, "s"))
    with pytest.raises(MetaError):
        service.commit_record_batches(CommitRecordBatchesRequest("absent", 0, 1, "s"))


def test_fetch_record_batches_filters_by_end_offset(service):
    topic = service.create_topic(_topic_request())
    service.commit_record_batches(CommitRecordBatchesRequest("events", 0, 3, "split-a"))
    service.commit_record_batches(CommitRecordBatchesRequest("events", 0, 2, "split-b"))

    def fetch(offset, topic_id=uuid.UUID(int=0)):
        return service.fetch_record_batches(
            FetchRecordBatchesRequest(topic_id, "events", 0, offset)
        )

    all_splits = fetch(0)
    assert [s.split_id for s in all_splits] == ["split-a", "split-b"]
    assert [(s.start_offset, s.end_offset) for s in all_splits] == [(0, 3), (3, 5)]
    assert all(s.topic_id == topic.id and s.topic_name == "events" for s in all_splits)
    assert [s.split_id for s in fetch(3)] == ["split-b"]
    assert fetch(5) == []
    assert fetch(0, topic.id) == all_splits


def test_fetch_record_batches_unknown_topic(service):
    with pytest.raises(MetaError, match="failed to fetch record batches"):
        service.fetch_record_batches(
            FetchRecordBatchesRequest(uuid.UUID(int=0), "absent", 0, 0)
        )


def test_upsert_group_meta_without_insert_sees_none(service):
    seen = []

    def reject(group):
        seen.append(group)
        raise LookupError("group not found")

    with pytest.raises(LookupError):
        service.upsert_group_meta("g1", False, reject)
    assert seen == [None]


def test_upsert_group_meta_inserts_and_persists(service):
    def join(member_id):
        def update(group):
            add_member(group, _member("g1", member_id))
            return group

        return update

    first = service.upsert_group_meta("g1", True, join("m1"))
    assert first.generation_id == 1
    assert first.leader_id == "m1"
    assert first.protocol == "range"

    second = service.upsert_group_meta("g1", False, join("m2"))
    assert second.generation_id == 2
    assert second.leader_id == "m1"
    assert sorted(second.members) == ["m1", "m2"]

    stored = service.upsert_group_meta("g1", True, lambda group: group)
    assert stored == second


def test_upsert_group_meta_rejection_leaves_group_unchanged(service):
    created = service.upsert_group_meta("g2", True, lambda group: group)
    assert created == GroupMeta(group_id="g2")

    def fail(group):
        group.generation_id = 99
        raise RuntimeError("rejected")

    with pytest.raises(RuntimeError, match="rejected"):
        service.upsert_group_meta("g2", False, fail)
    assert service.upsert_group_meta("g2", False, lambda group: group) == created