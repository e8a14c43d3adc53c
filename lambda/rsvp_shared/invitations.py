"""
Invitation code validation and consumption.

Validation is read-only: looking a code up any number of times never touches its use
counter. Uses are consumed only when an RSVP is actually submitted, through a single
conditional increment on the invitation row.

Invalid codes are expected client input, so validate() reports them in its result
rather than raising.
"""

import logging
import re
from datetime import datetime, timezone
from typing import Callable, Dict, Any, Optional

from rsvp_shared.errors import ConflictError, UnavailableError, ValidationError
from rsvp_shared.gateway import StorageGateway
from rsvp_shared.keys import (
    INVITATION_CODE_INDEX,
    build_invitation_pk,
    format_timestamp,
    invitation_key,
    normalize_code,
    parse_timestamp,
)
from rsvp_shared.types import GuestIdentity, InvitationCheck, InvitationCode


logger = logging.getLogger(__name__)

CODE_PATTERN = re.compile(r'^[A-Z0-9]{4,12}$')

DEFAULT_MAX_PLUS_ONES = 5

INVALID_MESSAGES: Dict[str, str] = {
    'malformed': 'Invitation codes contain only letters and numbers. Please check the code on your invitation.',
    'not_found': "We couldn't find that invitation code. Please check the code on your invitation.",
    'inactive': 'This invitation is no longer active. Please contact the couple.',
    'not_yet_valid': 'This invitation code is not active yet. Please try again later.',
    'expired': 'This invitation has expired. Please contact the couple.',
    'exhausted': 'This code has already been used the maximum number of times.',
}


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def allowed_plus_ones(guest: Dict[str, Any], max_plus_ones: int = DEFAULT_MAX_PLUS_ONES) -> int:
    """Plus-ones a guest may bring: their own allowance, capped by the configured maximum."""
    allowance = guest.get('plus_ones_allowed')
    if allowance is None:
        allowance = max_plus_ones
    return max(0, min(int(allowance), max_plus_ones))


class InvitationValidator:
    """
    Looks up invitation codes and enforces their usage constraints.

    Codes are normalized to uppercase with whitespace removed before any lookup.
    """

    def __init__(
        self,
        gateway: StorageGateway,
        max_plus_ones: int = DEFAULT_MAX_PLUS_ONES,
        clock: Callable[[], datetime] = _utcnow
    ):
        self.gateway = gateway
        self.max_plus_ones = max_plus_ones
        self.clock = clock

    def validate(self, raw_code: Any) -> InvitationCheck:
        """
        Check whether a code can be used to RSVP.

        Args:
            raw_code: Code as typed by the guest (any case, surrounding whitespace)

        Returns:
            InvitationCheck with valid=True and the guest identity, or valid=False
            with a reason and an actionable message
        """
        try:
            code = normalize_code(raw_code)
        except ValidationError:
            return self._invalid('malformed')
        if not CODE_PATTERN.match(code):
            return self._invalid('malformed')

        guest = self._find_guest(code)
        if guest is None:
            logger.info('Invitation code not found: %s', code)
            return self._invalid('not_found')

        pk, sk = invitation_key(code)
        invitation = self.gateway.get_item(pk, sk)
        if invitation is None:
            logger.warning('Guest references invitation %s but no invitation row exists', code)
            return self._invalid('not_found')

        reason = self.usage_problem(invitation)
        if reason:
            logger.info('Invitation code %s unusable: %s', code, reason)
            return self._invalid(reason)

        identity: GuestIdentity = {
            'email': guest['email'],
            'name': guest.get('guest_name', ''),
            'invitationCode': code,
            'maxGuests': 1 + allowed_plus_ones(guest, self.max_plus_ones),
            'eventId': guest['event_id'],
            'groupId': guest.get('group_id'),
            'rsvpStatus': guest.get('rsvp_status', 'pending'),
        }
        return {
            'valid': True,
            'reason': None,
            'message': None,
            'guest': identity,
            'invitation': invitation,
        }

    def usage_problem(self, invitation: InvitationCode) -> Optional[str]:
        """
        Return why an invitation cannot be used right now, or None if it can.

        A malformed validity bound is logged and ignored rather than failing the check.
        """
        if invitation.get('is_active') is False:
            return 'inactive'

        now = self.clock()
        valid_from = self._bound(invitation, 'valid_from')
        if valid_from and now < valid_from:
            return 'not_yet_valid'
        valid_until = self._bound(invitation, 'valid_until')
        if valid_until and now > valid_until:
            return 'expired'

        max_uses = invitation.get('max_uses')
        if max_uses is not None and int(invitation.get('current_uses') or 0) >= int(max_uses):
            return 'exhausted'
        return None

    def consume(self, raw_code: str, marker: str) -> InvitationCode:
        """
        Take one use of an invitation code.

        The increment is conditional on the code being active and below max_uses,
        and records ``marker`` (the RSVP id) as last_used_by so that a timed-out
        call can be checked by re-reading instead of being repeated.

        Args:
            raw_code: Invitation code
            marker: Identifier of the submission consuming the use

        Returns:
            The invitation row after the increment

        Raises:
            ConflictError: If the code is exhausted, inactive or missing
            UnavailableError: If storage failed and the outcome could not be confirmed
        """
        code = normalize_code(raw_code)
        pk, sk = invitation_key(code)
        now = format_timestamp(self.clock())

        try:
            return self.gateway.increment_counter(
                pk,
                sk,
                counter='current_uses',
                ceiling='max_uses',
                patch={'last_used_at': now, 'last_used_by': marker, 'updated_at': now},
                guards={'is_active': True},
                set_if_missing={'first_used_at': now}
            )
        except UnavailableError as error:
            if not error.outcome_unknown:
                raise
            current = self.gateway.get_item(pk, sk)
            if current and current.get('last_used_by') == marker:
                logger.info('Invitation use for %s confirmed after timeout', code)
                return current
            # Not retried: a blind second increment could take two uses
            raise
        except ConflictError as error:
            current = self.gateway.get_item(pk, sk)
            reason = (self.usage_problem(current) or 'exhausted') if current else 'not_found'
            raise ConflictError(
                INVALID_MESSAGES[reason],
                {'reason': reason, 'invitationCode': code}
            ) from error

    def release(self, raw_code: str, marker: str) -> bool:
        """
        Give back a use taken by ``consume`` whose submission was never recorded.

        Only the use still marked with ``marker`` is returned; if another
        submission has used the code since, the use is kept.

        Returns:
            True if the use was given back
        """
        code = normalize_code(raw_code)
        pk, sk = invitation_key(code)
        try:
            self.gateway.decrement_counter(
                pk,
                sk,
                counter='current_uses',
                patch={'last_used_by': None, 'updated_at': format_timestamp(self.clock())},
                guards={'last_used_by': marker}
            )
        except (ConflictError, UnavailableError) as error:
            logger.warning('Could not release invitation use %s for %s: %s', marker, code, error.message)
            return False
        logger.info('Released invitation use %s for %s', marker, code)
        return True

    def _find_guest(self, code: str) -> Optional[Dict[str, Any]]:
        matches = self.gateway.query(
            build_invitation_pk(code),
            index_name=INVITATION_CODE_INDEX,
            limit=1
        )
        if not matches:
            return None
        hit = matches[0]
        # Index projections can lag; read the row itself for current state
        return self.gateway.get_item(hit['PK'], hit['SK'])

    def _bound(self, invitation: InvitationCode, attribute: str) -> Optional[datetime]:
        value = invitation.get(attribute)
        if not value:
            return None
        try:
            return parse_timestamp(value)
        except ValueError:
            logger.warning('Ignoring malformed %s on invitation %s: %r',
                           attribute, invitation.get('code'), value)
            return None

    def _invalid(self, reason: str) -> InvitationCheck:
        return {
            'valid': False,
            'reason': reason,
            'message': INVALID_MESSAGES[reason],
            'guest': None,
            'invitation': None,
        }
