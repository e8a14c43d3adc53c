"""
Guest registration and admin edits.

This module implements the write paths that sit outside RSVP submission:
- Registering a guest with a unique invitation code (and optional group membership)
- Admin edits of guest attributes, with optional optimistic locking
- Read-only RSVP status lookup by invitation code

Status changes made by an admin are recorded through the RSVP writer like any other
response, so guest current state always remains a projection of history.

Follows steering rules:
- Business logic in services, not handlers
- Fail fast on invalid input
- No global mutable state
- Explicit error handling
"""

import logging
import random
import string
from datetime import datetime, timezone
from typing import Callable, Dict, Any, List, Optional

from rsvp_shared.errors import ConflictError, NotFoundError, ValidationError, VersionMismatchError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.invitations import CODE_PATTERN, INVALID_MESSAGES
from rsvp_shared.keys import (
    ENTITY_GUEST,
    ENTITY_GUEST_GROUP,
    ENTITY_INVITATION_CODE,
    INVITATION_CODE_INDEX,
    build_event_pk,
    build_group_sk,
    build_invitation_pk,
    format_timestamp,
    group_key,
    guest_key,
    invitation_key,
    normalize_code,
    normalize_email,
    shadow_attributes,
    METADATA_SK,
)
from rsvp_shared.rsvp_writer import RsvpWriter, latest_response
from rsvp_shared.types import Guest, GuestGroup, InvitationCode


logger = logging.getLogger(__name__)

DEFAULT_MAX_USES = 5
NAME_BASED_ATTEMPTS = 10
RANDOM_ATTEMPTS = 50
GROUP_UPDATE_ATTEMPTS = 3

# Admin-editable fields: request name -> stored attribute
EDITABLE_FIELDS = {
    'name': 'guest_name',
    'phone': 'phone',
    'plusOnesAllowed': 'plus_ones_allowed',
    'tableNumber': 'table_number',
    'notes': 'notes',
    'isPrimaryContact': 'is_primary_contact',
    'invitationSentAt': 'invitation_sent_at',
    'invitationViewedAt': 'invitation_viewed_at',
}


def name_prefix(name: str) -> str:
    """
    Three-letter code prefix: first two letters of the first name and the first
    letter of the last name, padded with X.
    """
    parts = [''.join(c for c in part.upper() if c in string.ascii_uppercase) for part in name.split()]
    parts = [p for p in parts if p]
    first = parts[0] if parts else ''
    last = parts[-1] if len(parts) > 1 else ''
    return first[:2].ljust(2, 'X') + (last[:1] or 'X')


def generate_invitation_code(
    name: str,
    is_taken: Callable[[str], bool],
    rng: random.Random = None
) -> str:
    """
    Generate an unused invitation code such as JAD042.

    Tries name-based codes first and falls back to random letters once the
    name-based space looks crowded.

    Raises:
        ConflictError: If no free code is found
    """
    rng = rng or random.SystemRandom()
    prefix = name_prefix(name)
    for attempt in range(NAME_BASED_ATTEMPTS + RANDOM_ATTEMPTS):
        if attempt >= NAME_BASED_ATTEMPTS:
            prefix = ''.join(rng.choice(string.ascii_uppercase) for _ in range(3))
        code = f'{prefix}{rng.randrange(1000):03d}'
        if not is_taken(code):
            return code
    raise ConflictError('Could not generate a unique invitation code', {'name': name})


def history_entry(record: Dict[str, Any]) -> Dict[str, Any]:
    """Shape one RSVP history record for the guest-facing status view."""
    return {
        'rsvpId': record.get('rsvp_id'),
        'submittedAt': record.get('response_timestamp'),
        'status': record.get('response_status'),
        'partySize': record.get('party_size'),
        'method': record.get('response_method'),
        'dietaryNotes': record.get('dietary_notes'),
        'specialRequests': record.get('special_requests'),
    }


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class GuestService:
    """Registers guests and applies admin edits."""

    def __init__(
        self,
        gateway: StorageGateway,
        writer: RsvpWriter,
        clock: Callable[[], datetime] = _utcnow,
        rng: random.Random = None
    ):
        self.gateway = gateway
        self.writer = writer
        self.clock = clock
        self.rng = rng

    def create_guest(
        self,
        event_id: str,
        name: str,
        email: str,
        phone: Optional[str] = None,
        plus_ones_allowed: Optional[int] = None,
        invitation_code: Optional[str] = None,
        max_uses: int = DEFAULT_MAX_USES,
        valid_from: Optional[str] = None,
        valid_until: Optional[str] = None,
        group_id: Optional[str] = None,
        group_name: Optional[str] = None,
        is_primary_contact: bool = False,
        table_number: Optional[str] = None,
        notes: Optional[str] = None
    ) -> Guest:
        """
        Register a guest and reserve their invitation code.

        The invitation row is reserved first with a not-exists condition, so two
        registrations can never share a code. If the guest row then turns out to
        exist already, the freshly reserved code is deactivated.

        Args:
            event_id: Event the guest is invited to
            name: Display name
            email: Email address (stored lowercased)
            invitation_code: Explicit code; generated when omitted
            max_uses: Number of RSVP submissions the code allows
            group_id: Optional group the guest joins (created if missing)
            group_name: Display name used when the group is created

        Returns:
            The stored guest row

        Raises:
            ValidationError: If the code is malformed
            ConflictError: If the guest or the explicit code already exists
        """
        email = normalize_email(email)
        pk, sk = guest_key(event_id, email)
        if self.gateway.get_item(pk, sk) is not None:
            raise ConflictError(f"Guest '{email}' already exists", {'email': email})

        now = format_timestamp(self.clock())
        code = self._reserve_code(
            event_id, email, name, invitation_code, max_uses,
            valid_from, valid_until, group_id, now
        )

        guest: Guest = {
            'PK': pk,
            'SK': sk,
            'EntityType': ENTITY_GUEST,
            'event_id': event_id,
            'guest_name': name.strip(),
            'email': email,
            'phone': phone,
            'rsvp_status': 'pending',
            'plus_ones_count': 0,
            'plus_ones_names': [],
            'plus_ones_allowed': plus_ones_allowed,
            'dietary_restrictions': [],
            'invitation_code': code,
            'group_id': group_id,
            'is_primary_contact': is_primary_contact,
            'table_number': table_number,
            'notes': notes,
            'created_at': now,
            'updated_at': now,
            'version': 1,
        }
        guest.update(shadow_attributes(event_id, code, 'pending', now))
        guest = {k: v for k, v in guest.items() if v is not None}

        try:
            self.gateway.put_item(guest, condition_not_exists=True)
        except ConflictError:
            self.gateway.update_item(*invitation_key(code), {'is_active': False, 'updated_at': now})
            raise ConflictError(f"Guest '{email}' already exists", {'email': email})

        logger.info('Registered guest %s with code %s', email, code)

        if group_id:
            self._join_group(event_id, group_id, group_name or name, guest, now)
            self.writer.group_coordinator.recompute(event_id, group_id)
        return guest

    def update_guest(
        self,
        event_id: str,
        email: str,
        changes: Dict[str, Any],
        expected_version: Optional[int] = None
    ) -> Guest:
        """
        Apply an admin edit to a guest.

        Plain attributes are patched directly. A status change is recorded as an
        admin RSVP through the writer, keeping the guest's current plus-ones.
        ``invitationActive`` toggles the guest's invitation code.

        Args:
            event_id: Event of the guest
            email: Guest email
            changes: Request field names to new values
            expected_version: If given, the edit applies only to this version

        Returns:
            The guest row after the edit

        Raises:
            NotFoundError: If the guest does not exist
            VersionMismatchError: If expected_version is stale
        """
        email = normalize_email(email)
        pk, sk = guest_key(event_id, email)
        guest = self.gateway.get_item(pk, sk)
        if guest is None:
            raise NotFoundError(f"Guest '{email}' not found", {'email': email})
        if expected_version is not None and int(guest.get('version') or 0) != expected_version:
            raise VersionMismatchError(
                f"Guest '{email}' was modified by someone else. Reload and try again.",
                expected_version=expected_version,
                actual_version=guest.get('version')
            )

        now = format_timestamp(self.clock())
        patch = {
            EDITABLE_FIELDS[field]: value
            for field, value in changes.items()
            if field in EDITABLE_FIELDS
        }
        if patch:
            patch['updated_at'] = now
            guest = self.gateway.update_item(pk, sk, patch, expected_version=expected_version)

        if 'invitationActive' in changes and guest.get('invitation_code'):
            self.gateway.update_item(
                *invitation_key(guest['invitation_code']),
                {'is_active': bool(changes['invitationActive']), 'updated_at': now}
            )

        status = changes.get('rsvpStatus')
        if status and status != guest.get('rsvp_status'):
            party = [{'name': guest.get('guest_name', ''),
                      'dietaryRestrictions': guest.get('dietary_restrictions', [])}]
            party += [{'name': n} for n in guest.get('plus_ones_names') or []]
            self.writer.submit(
                email,
                event_id,
                status,
                attendees=party,
                special_requests=guest.get('special_requests'),
                method='admin'
            )
            guest = self.gateway.get_item(pk, sk)

        return guest

    def status_by_code(self, raw_code: str) -> Dict[str, Any]:
        """
        Look up a guest's current RSVP and response history by invitation code.

        Works for codes that can no longer be used to submit (exhausted or expired),
        so guests can always see what they sent. History is oldest first.

        Raises:
            ValidationError: If the code is malformed
            NotFoundError: If no guest holds the code
        """
        code = normalize_code(raw_code)
        if not CODE_PATTERN.match(code):
            raise ValidationError(INVALID_MESSAGES['malformed'], {'invitationCode': code})

        matches = self.gateway.query(build_invitation_pk(code), index_name=INVITATION_CODE_INDEX, limit=1)
        guest = self.gateway.get_item(matches[0]['PK'], matches[0]['SK']) if matches else None
        if guest is None:
            raise NotFoundError(INVALID_MESSAGES['not_found'], {'invitationCode': code})

        history = self.writer.history(guest['email'], guest['event_id'])
        latest = latest_response(history)
        return {
            'invitationCode': code,
            'guestEmail': guest['email'],
            'guestName': guest.get('guest_name', ''),
            'status': {
                'rsvpStatus': guest.get('rsvp_status', 'pending'),
                'submittedAt': latest.get('response_timestamp') if latest else None,
                'confirmationNumber': latest.get('confirmation_number') if latest else None,
                'partySize': latest.get('party_size') if latest else None,
                'plusOnesNames': guest.get('plus_ones_names', []),
                'dietaryRestrictions': guest.get('dietary_restrictions', []),
                'lastUpdatedAt': guest.get('updated_at'),
            },
            'history': [history_entry(record) for record in history],
        }

    def _reserve_code(
        self,
        event_id: str,
        email: str,
        name: str,
        requested: Optional[str],
        max_uses: int,
        valid_from: Optional[str],
        valid_until: Optional[str],
        group_id: Optional[str],
        now: str
    ) -> str:
        def row(code: str) -> InvitationCode:
            item = {
                'PK': build_invitation_pk(code),
                'SK': METADATA_SK,
                'EntityType': ENTITY_INVITATION_CODE,
                'code': code,
                'event_id': event_id,
                'guest_email': email,
                'max_uses': max_uses,
                'current_uses': 0,
                'valid_from': valid_from,
                'valid_until': valid_until,
                'is_active': True,
                'group_id': group_id,
                'created_at': now,
                'updated_at': now,
            }
            return {k: v for k, v in item.items() if v is not None}

        if requested:
            code = normalize_code(requested)
            if not CODE_PATTERN.match(code):
                raise ValidationError(INVALID_MESSAGES['malformed'], {'invitationCode': code})
            try:
                self.gateway.put_item(row(code), condition_not_exists=True)
            except ConflictError:
                raise ConflictError(
                    f"Invitation code '{code}' is already in use",
                    {'invitationCode': code}
                )
            return code

        tried: List[str] = []

        def is_taken(code: str) -> bool:
            tried.append(code)
            try:
                self.gateway.put_item(row(code), condition_not_exists=True)
            except ConflictError:
                return True
            return False

        code = generate_invitation_code(name, is_taken, self.rng)
        if len(tried) > 1:
            logger.info('Invitation code collided %d times before %s', len(tried) - 1, code)
        return code

    def _join_group(
        self,
        event_id: str,
        group_id: str,
        group_name: str,
        guest: Guest,
        now: str
    ) -> None:
        pk, sk = group_key(event_id, group_id)
        group: GuestGroup = {
            'PK': build_event_pk(event_id),
            'SK': build_group_sk(group_id),
            'EntityType': ENTITY_GUEST_GROUP,
            'group_id': group_id,
            'group_name': group_name,
            'event_id': event_id,
            'current_party_size': 0,
            'primary_contact_email': guest['email'],
            'primary_contact_name': guest.get('guest_name', ''),
            'member_emails': [],
            'group_rsvp_status': 'pending',
            'created_at': now,
            'updated_at': now,
            'version': 1,
        }
        try:
            self.gateway.put_item(group, condition_not_exists=True)
        except ConflictError:
            logger.debug('Group %s already exists', group_id)

        for _ in range(GROUP_UPDATE_ATTEMPTS):
            current = self.gateway.get_item(pk, sk)
            members = list(current.get('member_emails') or [])
            if guest['email'] in members:
                return
            patch: Dict[str, Any] = {'member_emails': sorted(members + [guest['email']]), 'updated_at': now}
            if guest.get('is_primary_contact'):
                patch['primary_contact_email'] = guest['email']
                patch['primary_contact_name'] = guest.get('guest_name', '')
            try:
                self.gateway.update_item(pk, sk, patch, expected_version=int(current.get('version') or 0))
                return
            except VersionMismatchError:
                continue
        raise ConflictError(
            f"Could not add '{guest['email']}' to group '{group_id}'. Please try again.",
            {'groupId': group_id}
        )
