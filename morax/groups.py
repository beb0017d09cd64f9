"""Consumer group membership: joining, assignment sync and protocol selection."""

from __future__ import annotations

import logging
from collections import Counter
from typing import Mapping

from morax.model import GroupMeta, MemberMeta

logger = logging.getLogger(__name__)


def add_member(group: GroupMeta, member: MemberMeta) -> None:
    """Add or replace a member and move the group to its next generation."""
    if not group.members:
        group.protocol_type = member.protocol_type
    if group.group_id != member.group_id:
        raise ValueError(
            f"member belongs to group {member.group_id!r}, not {group.group_id!r}"
        )
    if group.protocol_type != member.protocol_type:
        raise ValueError(
            f"member protocol type {member.protocol_type!r} does not match "
            f"group protocol type {group.protocol_type!r}"
        )
    if group.leader_id is None:
        group.leader_id = member.member_id
    group.members[member.member_id] = member
    _next_generation(group)


def sync_assignments(group: GroupMeta, assignments: Mapping[str, bytes]) -> None:
    """Give every member its assignment; members without one get an empty one."""
    for member_id, member in sorted(group.members.items()):
        member.assignment = bytes(assignments.get(member_id, b""))


def _next_generation(group: GroupMeta) -> None:
    group.generation_id += 1
    group.protocol = select_protocol(group) if group.members else None


def candidate_protocols(group: GroupMeta) -> list[str]:
    """Every protocol supported by any member, in sorted order."""
    return sorted({name for member in group.members.values() for name in member.protocols})


def _vote(member: MemberMeta, candidates: list[str]) -> str:
    logger.debug(
        "%s supports protocols %s, vote among %s",
        member.member_id,
        sorted(member.protocols),
        candidates,
    )
    for candidate in candidates:
        if candidate in member.protocols:
            return candidate
    raise ValueError("member does not support any of the candidate protocols")


def select_protocol(group: GroupMeta) -> str | None:
    """Let members vote and return the first voted protocol in name order."""
    candidates = candidate_protocols(group)
    votes = Counter(
        _vote(member, candidates) for _, member in sorted(group.members.items())
    )
    return min(votes) if votes else None