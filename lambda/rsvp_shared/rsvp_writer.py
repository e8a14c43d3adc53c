"""
RSVP submission service.

Each submission appends an immutable history record and then projects it onto the
guest row. The guest row only ever reflects the history record with the greatest
(response_timestamp, rsvp_id), so two submissions that commit out of order still
resolve to the later one.

Submission flow:
1. Load the guest row (NotFoundError if absent)
2. Check party size and the event's RSVP deadline
3. Consume one use of the invitation code, when one is presented
4. Append the history record (conditional put, never overwrites)
5. Project onto the guest row with optimistic locking and bounded retries
6. Ask the group coordinator to recompute the guest's group

Follows steering rules:
- Business logic in services, not handlers
- Fail fast on invalid input
- No global mutable state
- Explicit error handling
"""

import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Any, List, Optional, Tuple

from ulid import ULID

from rsvp_shared.errors import (
    ConflictError,
    NotFoundError,
    UnavailableError,
    ValidationError,
    VersionMismatchError,
)
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.groups import GroupCoordinator
from rsvp_shared.invitations import DEFAULT_MAX_PLUS_ONES, InvitationValidator, allowed_plus_ones
from rsvp_shared.keys import (
    ENTITY_RSVP_RESPONSE,
    EPOCH_TIMESTAMP,
    build_event_pk,
    build_rsvp_prefix,
    build_rsvp_sk,
    event_key,
    format_timestamp,
    guest_key,
    normalize_code,
    normalize_email,
    parse_timestamp,
    shadow_attributes,
)
from rsvp_shared.types import Attendee, RsvpResponse, SubmissionResult


logger = logging.getLogger(__name__)

RESPONSE_STATUSES = ('attending', 'not_attending', 'maybe')
RESPONSE_METHODS = ('web', 'email', 'phone', 'admin')

DEFAULT_MAX_RETRIES = 3


def confirmation_number(rsvp_id: str) -> str:
    """Short reference shown to the guest, e.g. WED01HQ3K4Z."""
    return 'WED' + rsvp_id[:8].upper()


def response_order(record: Dict[str, Any]) -> Tuple[str, str]:
    """
    Sort key deciding which history record is current.

    Records whose timestamp is missing or unparseable sort as epoch zero so they
    never win a latest comparison.
    """
    timestamp = record.get('response_timestamp')
    try:
        timestamp = format_timestamp(parse_timestamp(timestamp))
    except (ValueError, TypeError):
        logger.warning('RSVP record %s has malformed timestamp %r; treating as epoch',
                       record.get('rsvp_id'), timestamp)
        timestamp = EPOCH_TIMESTAMP
    return timestamp, record.get('rsvp_id') or ''


def latest_response(records: List[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
    """Fold a guest's history into the current record (max by timestamp, then id)."""
    if not records:
        return None
    return max(records, key=response_order)


def merge_dietary(attendees: List[Attendee]) -> List[str]:
    """Union of every attendee's dietary restrictions, in first-seen order."""
    merged: List[str] = []
    for attendee in attendees:
        for restriction in attendee.get('dietaryRestrictions') or []:
            if restriction not in merged:
                merged.append(restriction)
    return merged


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RsvpWriter:
    """
    Appends RSVP history and keeps the guest row's current state in step with it.

    ``attendees`` lists the responding party with the invitee first; every further
    entry is a named plus-one.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        group_coordinator: Optional[GroupCoordinator] = None,
        invitation_validator: Optional[InvitationValidator] = None,
        max_plus_ones: int = DEFAULT_MAX_PLUS_ONES,
        max_retries: int = DEFAULT_MAX_RETRIES,
        clock: Callable[[], datetime] = _utcnow,
        id_factory: Callable[[], str] = lambda: str(ULID())
    ):
        """
        Initialize the writer.

        Args:
            gateway: Storage gateway for the RSVP table
            group_coordinator: Recomputes group aggregates after a member changes
            invitation_validator: Consumes invitation uses on submission
            max_plus_ones: Configured ceiling on plus-ones per guest
            max_retries: Optimistic-locking attempts on the guest row before giving up
            clock: Source of submission timestamps
            id_factory: Source of RSVP ids (ULIDs by default)
        """
        self.gateway = gateway
        self.group_coordinator = group_coordinator or GroupCoordinator(gateway, clock)
        self.invitation_validator = invitation_validator or InvitationValidator(
            gateway, max_plus_ones, clock
        )
        self.max_plus_ones = max_plus_ones
        self.max_retries = max_retries
        self.clock = clock
        self.id_factory = id_factory

    def submit(
        self,
        email: str,
        event_id: str,
        status: str,
        attendees: Optional[List[Attendee]] = None,
        dietary_notes: Optional[str] = None,
        special_requests: Optional[str] = None,
        method: str = 'web',
        invitation_code: Optional[str] = None,
        ip_address: Optional[str] = None,
        user_agent: Optional[str] = None
    ) -> SubmissionResult:
        """
        Record an RSVP for a guest.

        Args:
            email: Guest email (any case)
            event_id: Event the guest is invited to
            status: attending, not_attending or maybe
            attendees: Party members, invitee first; ignored when not attending
            dietary_notes: Free-text dietary notes
            special_requests: Free-text requests
            method: Submission channel (web, email, phone, admin)
            invitation_code: Code presented by the guest; one use is consumed
            ip_address: Client address, kept on the history record
            user_agent: Client user agent, kept on the history record

        Returns:
            SubmissionResult describing the stored record and the guest's current status

        Raises:
            ValidationError: Bad status, too many plus-ones, or deadline passed
            NotFoundError: If the guest does not exist
            ConflictError: If the invitation is unusable or the retry budget is spent
            UnavailableError: If storage fails and the outcome cannot be confirmed
        """
        email = normalize_email(email)
        if status not in RESPONSE_STATUSES:
            raise ValidationError(
                f'Status must be one of: {", ".join(RESPONSE_STATUSES)}',
                {'status': status}
            )
        if method not in RESPONSE_METHODS:
            raise ValidationError(
                f'Response method must be one of: {", ".join(RESPONSE_METHODS)}',
                {'method': method}
            )

        pk, sk = guest_key(event_id, email)
        guest = self.gateway.get_item(pk, sk)
        if guest is None:
            raise NotFoundError(f"Guest '{email}' not found", {'email': email})

        event = self.gateway.get_item(*event_key(event_id)) or {}
        now = self.clock()
        if method != 'admin':
            self._check_deadline(event, now)

        party = list(attendees or [])
        if status == 'not_attending':
            party = party[:1]
        plus_ones = party[1:]
        allowance = self._plus_one_allowance(guest, event)
        if len(plus_ones) > allowance:
            raise ValidationError(
                f'Maximum {allowance} plus ones allowed for this invitation',
                {'attendees': f'At most {allowance + 1} attendees including the invitee'}
            )

        rsvp_id = self.id_factory()
        timestamp = format_timestamp(now)

        if invitation_code:
            code = normalize_code(invitation_code)
            if code != guest.get('invitation_code'):
                raise ValidationError(
                    'Invitation code does not belong to this guest',
                    {'invitationCode': code}
                )
            self.invitation_validator.consume(code, rsvp_id)
        else:
            code = guest.get('invitation_code')

        record: RsvpResponse = {
            'PK': build_event_pk(event_id),
            'SK': build_rsvp_sk(email, timestamp, rsvp_id),
            'EntityType': ENTITY_RSVP_RESPONSE,
            'rsvp_id': rsvp_id,
            'confirmation_number': confirmation_number(rsvp_id),
            'event_id': event_id,
            'guest_email': email,
            'guest_name': guest.get('guest_name', ''),
            'invitation_code': code,
            'response_status': status,
            'response_timestamp': timestamp,
            'party_size': 1 + len(plus_ones),
            'attendees': party,
            'dietary_notes': dietary_notes,
            'special_requests': special_requests,
            'response_method': method,
            'ip_address': ip_address,
            'user_agent': user_agent,
            'created_at': timestamp,
        }
        try:
            self._append(record)
        except UnavailableError as error:
            # Known not written: the retry must not pay for a second use
            if invitation_code and not error.outcome_unknown:
                self.invitation_validator.release(code, rsvp_id)
            raise

        current = self._project(guest, record)
        logger.info('Recorded RSVP %s for %s: %s', rsvp_id, email, status)

        if current.get('group_id'):
            self.group_coordinator.recompute(event_id, current['group_id'])

        return {
            'success': True,
            'rsvpId': rsvp_id,
            'confirmationNumber': record['confirmation_number'],
            'currentStatus': current.get('rsvp_status', status),
            'submittedAt': timestamp,
            'partySize': record['party_size'],
        }

    def history(
        self,
        email: str,
        event_id: str,
        newest_first: bool = False,
        since: Optional[datetime] = None,
        until: Optional[datetime] = None
    ) -> List[RsvpResponse]:
        """
        Return a guest's history records, ordered by submission time.

        The timestamp is part of the sort key, so a time window is a single key
        range rather than a filter.

        Args:
            email: Guest email (any case)
            event_id: Event the guest is invited to
            newest_first: Descending time order
            since: Only records submitted at or after this moment
            until: Only records submitted at or before this moment
        """
        prefix = build_rsvp_prefix(email)
        if since is None and until is None:
            return self.gateway.query(build_event_pk(event_id), sk_prefix=prefix, newest_first=newest_first)

        # '~' sorts after every timestamp and id character
        low = prefix + format_timestamp(since) if since else prefix
        high = prefix + format_timestamp(until) + '#~' if until else prefix + '~'
        return self.gateway.query(
            build_event_pk(event_id),
            sk_between=(low, high),
            newest_first=newest_first
        )

    def current(self, email: str, event_id: str) -> Optional[RsvpResponse]:
        """Return the guest's current response as folded from history."""
        return latest_response(self.history(email, event_id))

    def _plus_one_allowance(self, guest: Dict[str, Any], event: Dict[str, Any]) -> int:
        if event.get('allow_plus_ones') is False:
            return 0
        allowance = allowed_plus_ones(guest, self.max_plus_ones)
        if event.get('max_plus_ones') is not None:
            allowance = min(allowance, int(event['max_plus_ones']))
        return allowance

    def _check_deadline(self, event: Dict[str, Any], now: datetime) -> None:
        deadline = event.get('rsvp_deadline')
        if not deadline:
            return
        try:
            cutoff = parse_timestamp(deadline)
        except ValueError:
            logger.warning('Ignoring malformed rsvp_deadline %r', deadline)
            return
        if now > cutoff:
            raise ValidationError(
                'The RSVP deadline has passed. Please contact the couple directly.',
                {'rsvpDeadline': deadline}
            )

    def _append(self, record: RsvpResponse) -> None:
        try:
            self.gateway.put_item(record, condition_not_exists=True)
        except UnavailableError as error:
            if not error.outcome_unknown:
                raise
            if self.gateway.get_item(record['PK'], record['SK']) is None:
                raise
            logger.info('History record %s confirmed after timeout', record['rsvp_id'])

    def _project(self, guest: Dict[str, Any], record: RsvpResponse) -> Dict[str, Any]:
        """
        Apply a history record to the guest row unless a newer one is already applied.

        Returns:
            The guest row after projection (or as found, if it was already newer)
        """
        pk, sk = guest['PK'], guest['SK']
        order = response_order(record)

        for attempt in range(1, self.max_retries + 1):
            applied = (guest.get('last_response_at') or EPOCH_TIMESTAMP, guest.get('last_rsvp_id') or '')
            if applied >= order:
                logger.info('Guest %s already reflects a newer response; keeping it', guest['email'])
                return guest

            plus_ones = record['attendees'][1:]
            patch = {
                'rsvp_status': record['response_status'],
                'plus_ones_count': len(plus_ones),
                'plus_ones_names': [a.get('name', '') for a in plus_ones],
                'dietary_restrictions': merge_dietary(record['attendees']),
                'special_requests': record.get('special_requests'),
                'last_response_at': record['response_timestamp'],
                'last_rsvp_id': record['rsvp_id'],
                'updated_at': record['response_timestamp'],
            }
            patch.update(shadow_attributes(
                guest['event_id'],
                guest['invitation_code'],
                record['response_status'],
                record['response_timestamp']
            ))

            try:
                return self.gateway.update_item(
                    pk, sk, patch, expected_version=int(guest.get('version') or 0)
                )
            except VersionMismatchError:
                logger.info('Version conflict on %s (attempt %d of %d)',
                            guest['email'], attempt, self.max_retries)
            except UnavailableError as error:
                if not error.outcome_unknown:
                    raise
                latest = self.gateway.get_item(pk, sk)
                if latest and latest.get('last_rsvp_id') == record['rsvp_id']:
                    return latest
                raise

            guest = self.gateway.get_item(pk, sk)
            if guest is None:
                raise NotFoundError(f"Guest '{record['guest_email']}' not found")

        raise ConflictError(
            'Your RSVP was saved but is still being processed. Please refresh in a moment.',
            {'rsvpId': record['rsvp_id'], 'attempts': self.max_retries}
        )
