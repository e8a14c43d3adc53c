"""
Admin reporting over guests and RSVP history.

This module implements the read-only admin views:
- Event statistics derived from guest rows and the latest RSVP record per guest
- Guest listing with status filter, search, sort and pagination

Statistics are always derived on read; cached counts on the event row are never
consulted. A malformed history record is logged and the guest row is used in its
place (a bad timestamp is treated as the oldest record), so one bad row cannot
fail a report.

Follows steering rules:
- Business logic in services, not handlers
- No global mutable state
- Explicit error handling
"""

import base64
import binascii
import json
import logging
from typing import Dict, Any, List, Optional, Tuple

from rsvp_shared.gateway import StorageGateway
from rsvp_shared.keys import (
    ENTITY_GUEST,
    ENTITY_RSVP_RESPONSE,
    EVENT_STATUS_INDEX,
    GUEST_PREFIX,
    RSVP_PREFIX,
    build_event_pk,
    build_status_bucket,
    parse_rsvp_sk,
)
from rsvp_shared.errors import ValidationError
from rsvp_shared.rsvp_writer import latest_response, response_order


logger = logging.getLogger(__name__)

RECENT_RESPONSES = 10
DEFAULT_PAGE_SIZE = 50
MAX_PAGE_SIZE = 100

SORT_FIELDS = {
    'name': 'guest_name',
    'email': 'email',
    'status': 'rsvp_status',
    'updatedAt': 'updated_at',
    'lastResponseAt': 'last_response_at',
}


def encode_token(last_key: Optional[Dict[str, Any]]) -> Optional[str]:
    """Encode a LastEvaluatedKey as an opaque base64 JSON token."""
    if not last_key:
        return None
    return base64.b64encode(json.dumps(last_key).encode('utf-8')).decode('utf-8')


def decode_token(token: Optional[str]) -> Optional[Dict[str, Any]]:
    """Decode a pagination token; an unreadable token restarts from the first page."""
    if not token:
        return None
    try:
        decoded = json.loads(base64.b64decode(token).decode('utf-8'))
    except (binascii.Error, UnicodeDecodeError, ValueError) as e:
        logger.warning('Ignoring unreadable nextToken: %s', e)
        return None
    return decoded if isinstance(decoded, dict) else None


def guest_summary(guest: Dict[str, Any]) -> Dict[str, Any]:
    """Shape a guest row for the admin dashboard."""
    return {
        'email': guest.get('email'),
        'name': guest.get('guest_name', ''),
        'phone': guest.get('phone'),
        'rsvpStatus': guest.get('rsvp_status', 'pending'),
        'plusOnesCount': guest.get('plus_ones_count', 0),
        'plusOnesNames': guest.get('plus_ones_names', []),
        'plusOnesAllowed': guest.get('plus_ones_allowed'),
        'dietaryRestrictions': guest.get('dietary_restrictions', []),
        'specialRequests': guest.get('special_requests'),
        'invitationCode': guest.get('invitation_code'),
        'groupId': guest.get('group_id'),
        'isPrimaryContact': guest.get('is_primary_contact', False),
        'tableNumber': guest.get('table_number'),
        'notes': guest.get('notes'),
        'lastResponseAt': guest.get('last_response_at'),
        'createdAt': guest.get('created_at'),
        'updatedAt': guest.get('updated_at'),
        'version': guest.get('version', 0),
    }


def _restrictions(values: Any) -> List[str]:
    if not isinstance(values, (list, tuple)):
        raise TypeError(f'dietary restrictions must be a list, got {type(values).__name__}')
    return [value for value in values if isinstance(value, str)]


def attending_party(guest: Dict[str, Any], latest: Optional[Dict[str, Any]]) -> Tuple[int, List[str]]:
    """
    Seats and dietary restrictions for an attending guest.

    Taken from the latest RSVP record when it is readable. A malformed record is
    logged and the guest row's projection is used instead; a malformed guest row
    counts as a party of one with no restrictions.
    """
    if latest:
        try:
            party_size = int(latest.get('party_size') or 1)
            restrictions = [
                r for attendee in latest.get('attendees') or []
                for r in _restrictions(attendee.get('dietaryRestrictions') or [])
            ]
            return party_size, restrictions
        except (TypeError, ValueError, AttributeError) as e:
            logger.warning('Skipping malformed RSVP record %s for %s: %s',
                           latest.get('rsvp_id'), guest.get('email'), e)
    try:
        return (1 + int(guest.get('plus_ones_count') or 0),
                _restrictions(guest.get('dietary_restrictions') or []))
    except (TypeError, ValueError) as e:
        logger.warning('Guest %s has a malformed party projection: %s', guest.get('email'), e)
        return 1, []


class AdminQueryService:
    """Read-only reporting for the admin dashboard."""

    def __init__(self, gateway: StorageGateway):
        self.gateway = gateway

    def stats(self, event_id: str) -> Dict[str, Any]:
        """
        Compute RSVP statistics for an event.

        Each guest's status is taken from their latest history record (by embedded
        timestamp, not write order). Guests with no history count as pending.

        Args:
            event_id: Event to report on

        Returns:
            Dictionary with totals by status, totalGuests (seats for attending
            parties), dietaryRestrictions tally, responseRate (percent),
            averagePartySize and the most recent responses
        """
        pk = build_event_pk(event_id)
        guests = [
            g for g in self.gateway.query(pk, sk_prefix=GUEST_PREFIX)
            if g.get('EntityType', ENTITY_GUEST) == ENTITY_GUEST
        ]
        history = self._history_by_guest(self.gateway.query(pk, sk_prefix=RSVP_PREFIX))

        counts = {'pending': 0, 'attending': 0, 'not_attending': 0, 'maybe': 0}
        dietary: Dict[str, int] = {}
        total_guests = 0
        latest_records = []

        for guest in guests:
            latest = latest_response(history.get(guest.get('email'), []))
            if latest:
                latest_records.append(latest)
                status = latest.get('response_status', 'pending')
            else:
                status = guest.get('rsvp_status', 'pending')
            if not isinstance(status, str) or status not in counts:
                logger.warning('Guest %s has unknown status %r; counting as pending',
                               guest.get('email'), status)
                status = 'pending'
            counts[status] += 1

            if status != 'attending':
                continue
            party_size, restrictions = attending_party(guest, latest)
            total_guests += party_size
            for restriction in restrictions:
                dietary[restriction] = dietary.get(restriction, 0) + 1

        invited = len(guests)
        responded = invited - counts['pending']
        recent = sorted(latest_records, key=response_order, reverse=True)[:RECENT_RESPONSES]

        return {
            'totalInvited': invited,
            'totalResponded': responded,
            'totalAttending': counts['attending'],
            'totalDeclined': counts['not_attending'],
            'totalMaybe': counts['maybe'],
            'totalPending': counts['pending'],
            'totalGuests': total_guests,
            'dietaryRestrictions': dietary,
            'responseRate': round(responded / invited * 100, 1) if invited else 0,
            'averagePartySize': round(total_guests / counts['attending'], 2) if counts['attending'] else 0,
            'recentResponses': [
                {
                    'email': record.get('guest_email'),
                    'name': record.get('guest_name', ''),
                    'status': record.get('response_status'),
                    'partySize': record.get('party_size'),
                    'submittedAt': record.get('response_timestamp'),
                    'rsvpId': record.get('rsvp_id'),
                }
                for record in recent
            ],
        }

    def list_guests(
        self,
        event_id: str,
        status: Optional[str] = None,
        search: Optional[str] = None,
        sort_by: str = 'name',
        descending: bool = False,
        limit: int = DEFAULT_PAGE_SIZE,
        next_token: Optional[str] = None
    ) -> Dict[str, Any]:
        """
        List guests for the dashboard.

        A status filter is served from the status index, so a guest whose status
        just changed may briefly appear under the old status. Search and sort
        apply to the returned page.

        Args:
            event_id: Event to list
            status: Optional RSVP status filter
            search: Optional case-insensitive substring of name or email
            sort_by: name, email, status, updatedAt or lastResponseAt
            descending: Reverse the sort order
            limit: Page size (1-100)
            next_token: Token from the previous page

        Returns:
            Dictionary with guests, count and nextToken (absent on the last page)
        """
        if sort_by not in SORT_FIELDS:
            raise ValidationError(
                f'sortBy must be one of: {", ".join(SORT_FIELDS)}',
                {'sortBy': sort_by}
            )
        limit = max(1, min(int(limit or DEFAULT_PAGE_SIZE), MAX_PAGE_SIZE))
        start_key = decode_token(next_token)

        if status:
            items, last_key = self.gateway.query_page(
                build_status_bucket(event_id, status),
                index_name=EVENT_STATUS_INDEX,
                newest_first=descending,
                limit=limit,
                start_key=start_key
            )
        else:
            items, last_key = self.gateway.query_page(
                build_event_pk(event_id),
                sk_prefix=GUEST_PREFIX,
                limit=limit,
                start_key=start_key
            )

        guests = [g for g in items if g.get('EntityType', ENTITY_GUEST) == ENTITY_GUEST]
        if search:
            needle = search.strip().lower()
            guests = [
                g for g in guests
                if needle in (g.get('guest_name') or '').lower()
                or needle in (g.get('email') or '').lower()
            ]

        field = SORT_FIELDS[sort_by]
        guests.sort(key=lambda g: str(g.get(field) or '').lower(), reverse=descending)

        result: Dict[str, Any] = {
            'guests': [guest_summary(g) for g in guests],
            'count': len(guests),
        }
        token = encode_token(last_key)
        if token:
            result['nextToken'] = token
        return result

    def _history_by_guest(self, records: List[Dict[str, Any]]) -> Dict[str, List[Dict[str, Any]]]:
        by_guest: Dict[str, List[Dict[str, Any]]] = {}
        for record in records:
            if record.get('EntityType', ENTITY_RSVP_RESPONSE) != ENTITY_RSVP_RESPONSE:
                continue
            email = record.get('guest_email')
            if not email:
                try:
                    email = parse_rsvp_sk(record.get('SK'))[0]
                except ValidationError:
                    logger.warning('Skipping RSVP record with unreadable key %r', record.get('SK'))
                    continue
            by_guest.setdefault(email, []).append(record)
        return by_guest
