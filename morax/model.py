"""Metadata records for topics, partition splits and consumer groups."""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Any, Mapping


class MetaError(Exception):
    """Raised when the meta service fails to serve a request."""


def _require(data: Mapping[str, Any], key: str) -> Any:
    try:
        return data[key]
    except KeyError:
        raise ValueError(f"missing field `{key}`") from None


def _to_bytes(value: Any, key: str) -> bytes:
    try:
        return bytes(value)
    except (TypeError, ValueError) as err:
        raise ValueError(f"invalid byte array in field `{key}`: {err}") from None


@dataclass
class CreateTopicRequest:
    name: str
    partitions: int
    properties: dict[str, Any]


@dataclass
class CommitRecordBatchesRequest:
    topic_name: str
    partition_id: int
    record_len: int
    split_id: str


@dataclass
class FetchRecordBatchesRequest:
    topic_id: uuid.UUID
    topic_name: str
    partition_id: int
    offset: int


@dataclass
class TopicPartitionSplit:
    """A stored split holding the records in ``[start_offset, end_offset)``."""

    topic_id: uuid.UUID
    topic_name: str
    partition_id: int
    start_offset: int
    end_offset: int
    split_id: str


@dataclass
class Topic:
    id: uuid.UUID
    name: str
    partitions: int
    properties: dict[str, Any]


@dataclass
class MemberMeta:
    """A consumer group member and the protocols it supports."""

    group_id: str
    member_id: str
    client_id: str
    client_host: str
    protocol_type: str
    protocols: dict[str, bytes]
    assignment: bytes
    rebalance_timeout_ms: int
    session_timeout_ms: int

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; byte strings become lists of integers."""
        return {
            "group_id": self.group_id,
            "member_id": self.member_id,
            "client_id": self.client_id,
            "client_host": self.client_host,
            "protocol_type": self.protocol_type,
            "protocols": {
                name: list(metadata) for name, metadata in sorted(self.protocols.items())
            },
            "assignment": list(self.assignment),
            "rebalance_timeout_ms": self.rebalance_timeout_ms,
            "session_timeout_ms": self.session_timeout_ms,
        }

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> MemberMeta:
        """Build a member from its JSON form; raises ValueError if malformed."""
        protocols = _require(data, "protocols")
        if not isinstance(protocols, Mapping):
            raise ValueError("field `protocols` must be a mapping")
        return cls(
            group_id=_require(data, "group_id"),
            member_id=_require(data, "member_id"),
            client_id=_require(data, "client_id"),
            client_host=_require(data, "client_host"),
            protocol_type=_require(data, "protocol_type"),
            protocols={
                name: _to_bytes(metadata, "protocols")
                for name, metadata in sorted(protocols.items())
            },
            assignment=_to_bytes(_require(data, "assignment"), "assignment"),
            rebalance_timeout_ms=_require(data, "rebalance_timeout_ms"),
            session_timeout_ms=_require(data, "session_timeout_ms"),
        )


@dataclass
class GroupMeta:
    """State of a consumer group, stored as JSON by the meta service."""

    group_id: str
    generation_id: int = 0
    leader_id: str | None = None
    protocol: str | None = None
    protocol_type: str | None = None
    members: dict[str, MemberMeta] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        """JSON-ready form; unset options and an empty member map are left out."""
        result: dict[str, Any] = {
            "group_id": self.group_id,
            "generation_id": self.generation_id,
        }
        for key in ("leader_id", "protocol", "protocol_type"):
            value = getattr(self, key)
            if value is not None:
                result[key] = value
        if self.members:
            result["members"] = {
                member_id: member.to_dict()
                for member_id, member in sorted(self.members.items())
            }
        return result

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GroupMeta:
        """Build a group from its JSON form; raises ValueError if malformed."""
        members = data.get("members") or {}
        if not isinstance(members, Mapping):
            raise ValueError("field `members` must be a mapping")
        return cls(
            group_id=_require(data, "group_id"),
            generation_id=_require(data, "generation_id"),
            leader_id=data.get("leader_id"),
            protocol=data.get("protocol"),
            protocol_type=data.get("protocol_type"),
            members={
                member_id: MemberMeta.from_dict(member)
                for member_id, member in sorted(members.items())
            },
        )