"""
Group/party aggregate maintenance.

A guest group's status and party size are derived from its member guest rows.
The group row is a cache: recompute() rebuilds it from members and writes it only
when something changed. Concurrent recomputations may both write; the last one
wins, which is acceptable because each write is a full recomputation.
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Any, List, Optional

from rsvp_shared.errors import NotFoundError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.keys import (
    ENTITY_GUEST,
    GUEST_PREFIX,
    build_event_pk,
    format_timestamp,
    group_key,
    guest_key,
)
from rsvp_shared.types import GuestGroup


logger = logging.getLogger(__name__)

# Attributes owned by the coordinator
AGGREGATE_FIELDS = ('group_rsvp_status', 'current_party_size', 'member_emails')


def party_size(guest: Dict[str, Any]) -> int:
    """Seats taken by a guest: themselves plus plus-ones, or zero when not attending."""
    if guest.get('rsvp_status') != 'attending':
        return 0
    return 1 + int(guest.get('plus_ones_count') or 0)


def group_status(members: List[Dict[str, Any]]) -> str:
    """complete when every member responded, partial when some did, else pending."""
    responded = [m for m in members if m.get('rsvp_status', 'pending') != 'pending']
    if members and len(responded) == len(members):
        return 'complete'
    if responded:
        return 'partial'
    return 'pending'


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GroupCoordinator:
    """Recomputes guest group aggregates from member guest rows."""

    def __init__(self, gateway: StorageGateway, clock: Callable[[], datetime] = _utcnow):
        self.gateway = gateway
        self.clock = clock

    def members_by_list(self, event_id: str, group: GuestGroup) -> List[Dict[str, Any]]:
        """Load members named in the group's member_emails list, skipping missing rows."""
        members = []
        for email in group.get('member_emails') or []:
            pk, sk = guest_key(event_id, email)
            guest = self.gateway.get_item(pk, sk)
            if guest is None:
                logger.warning('Group %s lists unknown member %s', group.get('group_id'), email)
                continue
            members.append(guest)
        return members

    def members_by_reference(self, event_id: str, group_id: str) -> List[Dict[str, Any]]:
        """Load every guest row of the event whose group_id references the group."""
        guests = self.gateway.query(build_event_pk(event_id), sk_prefix=GUEST_PREFIX)
        return [
            guest for guest in guests
            if guest.get('EntityType', ENTITY_GUEST) == ENTITY_GUEST
            and guest.get('group_id') == group_id
        ]

    def aggregate(self, members: List[Dict[str, Any]]) -> Dict[str, Any]:
        """Compute the aggregate attributes for a set of member rows."""
        return {
            'group_rsvp_status': group_status(members),
            'current_party_size': sum(party_size(m) for m in members),
            'member_emails': sorted(m['email'] for m in members),
        }

    def recompute(self, event_id: str, group_id: str) -> Optional[GuestGroup]:
        """
        Rebuild a group's aggregate from its members.

        Running this twice with no member change between the runs leaves the
        group row untouched on the second run.

        Args:
            event_id: Event the group belongs to
            group_id: Group to recompute

        Returns:
            The group row after recomputation, or None if the group does not exist
        """
        pk, sk = group_key(event_id, group_id)
        group = self.gateway.get_item(pk, sk)
        if group is None:
            logger.warning('Recompute requested for missing group %s', group_id)
            return None

        if group.get('member_emails'):
            members = self.members_by_list(event_id, group)
        else:
            members = self.members_by_reference(event_id, group_id)

        aggregate = self.aggregate(members)
        if all(group.get(field) == aggregate[field] for field in AGGREGATE_FIELDS):
            return group

        max_party_size = group.get('max_party_size')
        if max_party_size is not None and aggregate['current_party_size'] > max_party_size:
            logger.warning('Group %s party size %s exceeds max %s',
                           group_id, aggregate['current_party_size'], max_party_size)

        aggregate['updated_at'] = format_timestamp(self.clock())
        try:
            return self.gateway.update_item(pk, sk, aggregate)
        except NotFoundError:
            logger.warning('Group %s disappeared during recompute', group_id)
            return None
