"""
Key scheme for the single-table RSVP store.

Every entity lives in one DynamoDB table and is addressed by composite string keys.
This module holds the build/parse pairs for each key component and the derivation of
the shadow attributes that drive the secondary indexes. No I/O happens here.

Access patterns:
1. Event metadata:        PK=EVENT#{eventId}, SK=METADATA
2. Guest by email:        PK=EVENT#{eventId}, SK=GUEST#{email}
3. RSVP history (time):   PK=EVENT#{eventId}, SK begins_with RSVP#{email}#
4. Guest group:           PK=EVENT#{eventId}, SK=GROUP#{groupId}
5. Invitation code:       PK=INVITATION#{CODE}, SK=METADATA
6. Guest by code:         InvitationCodeIndex, InvitationCode=INVITATION#{CODE}
7. Guests by status:      EventStatusIndex, EventStatus=EVENT#{eventId}#STATUS#{status}
8. Admin date buckets:    AdminDateIndex, EntityType=GUEST, AdminDate begins_with DATE#{date}

The '#' character separates key components, so identifiers, codes and emails
containing it are rejected rather than escaped.
"""

import re
from datetime import datetime, timezone
from typing import Dict, Optional, Tuple

from rsvp_shared.errors import ValidationError


EVENT_PREFIX = 'EVENT#'
GUEST_PREFIX = 'GUEST#'
RSVP_PREFIX = 'RSVP#'
GROUP_PREFIX = 'GROUP#'
INVITATION_PREFIX = 'INVITATION#'
DATE_PREFIX = 'DATE#'
STATUS_INFIX = '#STATUS#'
METADATA_SK = 'METADATA'

# Entity discriminators
ENTITY_EVENT = 'EVENT'
ENTITY_GUEST = 'GUEST'
ENTITY_RSVP_RESPONSE = 'RSVP_RESPONSE'
ENTITY_INVITATION_CODE = 'INVITATION_CODE'
ENTITY_GUEST_GROUP = 'GUEST_GROUP'

# Secondary indexes: name -> (partition attribute, sort attribute)
INVITATION_CODE_INDEX = 'InvitationCodeIndex'
EVENT_STATUS_INDEX = 'EventStatusIndex'
ADMIN_DATE_INDEX = 'AdminDateIndex'

INDEX_KEYS: Dict[str, Tuple[str, str]] = {
    INVITATION_CODE_INDEX: ('InvitationCode', 'created_at'),
    EVENT_STATUS_INDEX: ('EventStatus', 'updated_at'),
    ADMIN_DATE_INDEX: ('EntityType', 'AdminDate'),
}

RSVP_STATUSES = ('pending', 'attending', 'not_attending', 'maybe')

# Fixed width so that RSVP sort keys order lexicographically by time
TIMESTAMP_FORMAT = '%Y-%m-%dT%H:%M:%S.%fZ'
_TIMESTAMP_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}\.\d{6}Z$')
_DATE_PATTERN = re.compile(r'^\d{4}-\d{2}-\d{2}$')

EPOCH_TIMESTAMP = '1970-01-01T00:00:00.000000Z'


def _require_token(value: str, field: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f'{field} is required', {field: 'Field is required'})
    value = value.strip()
    if '#' in value:
        raise ValidationError(
            f"{field} must not contain '#'",
            {field: "Character '#' is not allowed"}
        )
    return value


def _strip_prefix(key: str, prefix: str, field: str) -> str:
    if not isinstance(key, str) or not key.startswith(prefix):
        raise ValidationError(
            f'Malformed {field} key',
            {field: f'Expected prefix {prefix}'}
        )
    return key[len(prefix):]


def normalize_email(email: str) -> str:
    """
    Canonicalize an email address for key construction.

    Emails are trimmed and lowercased, so Jane.Doe@Example.com and
    jane.doe@example.com address the same guest row.
    """
    return _require_token(email, 'email').lower()


def normalize_code(code: str) -> str:
    """
    Canonicalize an invitation code: all whitespace removed, uppercased.

    Uppercase is the single stored convention for codes.
    """
    if not isinstance(code, str):
        raise ValidationError('invitationCode is required', {'invitationCode': 'Field is required'})
    return _require_token(''.join(code.split()), 'invitationCode').upper()


def format_timestamp(moment: datetime) -> str:
    """Render a datetime as a fixed-width UTC timestamp."""
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return moment.astimezone(timezone.utc).strftime(TIMESTAMP_FORMAT)


def parse_timestamp(value: str) -> datetime:
    """
    Parse a stored timestamp.

    Accepts the fixed-width format and, for rows written by other tools, any
    ISO 8601 string. Raises ValueError for anything else.
    """
    if not isinstance(value, str) or not value:
        raise ValueError(f'Not a timestamp: {value!r}')
    if _TIMESTAMP_PATTERN.match(value):
        return datetime.strptime(value, TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    parsed = datetime.fromisoformat(value.replace('Z', '+00:00'))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def now_timestamp() -> str:
    return format_timestamp(datetime.now(timezone.utc))


def build_event_pk(event_id: str) -> str:
    return EVENT_PREFIX + _require_token(event_id, 'eventId')


def parse_event_pk(pk: str) -> str:
    return _strip_prefix(pk, EVENT_PREFIX, 'eventId')


def build_guest_sk(email: str) -> str:
    return GUEST_PREFIX + normalize_email(email)


def parse_guest_sk(sk: str) -> str:
    return _strip_prefix(sk, GUEST_PREFIX, 'email')


def build_rsvp_prefix(email: str) -> str:
    """Sort-key prefix selecting every history record of one guest."""
    return f'{RSVP_PREFIX}{normalize_email(email)}#'


def build_rsvp_sk(email: str, timestamp: str, rsvp_id: str) -> str:
    """
    Build the history sort key RSVP#{email}#{timestamp}#{rsvpId}.

    The timestamp precedes the id, so a range query over the guest prefix
    returns records in submission-time order and the id only separates
    records sharing a timestamp.
    """
    if not isinstance(timestamp, str) or not _TIMESTAMP_PATTERN.match(timestamp):
        raise ValidationError('Malformed RSVP timestamp', {'timestamp': timestamp})
    return f'{build_rsvp_prefix(email)}{timestamp}#{_require_token(rsvp_id, "rsvpId")}'


def parse_rsvp_sk(sk: str) -> Tuple[str, str, str]:
    """Return (email, timestamp, rsvp_id) from a history sort key."""
    parts = _strip_prefix(sk, RSVP_PREFIX, 'rsvp').split('#')
    if len(parts) != 3 or not all(parts):
        raise ValidationError('Malformed rsvp key', {'rsvp': sk})
    email, timestamp, rsvp_id = parts
    return email, timestamp, rsvp_id


def build_group_sk(group_id: str) -> str:
    return GROUP_PREFIX + _require_token(group_id, 'groupId')


def parse_group_sk(sk: str) -> str:
    return _strip_prefix(sk, GROUP_PREFIX, 'groupId')


def build_invitation_pk(code: str) -> str:
    """Also the value of the InvitationCode shadow attribute on guest rows."""
    return INVITATION_PREFIX + normalize_code(code)


def parse_invitation_pk(pk: str) -> str:
    return _strip_prefix(pk, INVITATION_PREFIX, 'invitationCode')


def _require_status(status: str) -> str:
    if status not in RSVP_STATUSES:
        raise ValidationError(
            f'Status must be one of: {", ".join(RSVP_STATUSES)}',
            {'status': status}
        )
    return status


def build_status_bucket(event_id: str, status: str) -> str:
    return f'{build_event_pk(event_id)}{STATUS_INFIX}{_require_status(status)}'


def parse_status_bucket(bucket: str) -> Tuple[str, str]:
    """Return (event_id, status) from an EventStatus value."""
    body = _strip_prefix(bucket, EVENT_PREFIX, 'statusBucket')
    event_id, sep, status = body.partition(STATUS_INFIX)
    if not sep or not event_id or status not in RSVP_STATUSES:
        raise ValidationError('Malformed status bucket', {'statusBucket': bucket})
    return event_id, status


def build_admin_date(date_or_timestamp: str, status: str) -> str:
    """Build DATE#{yyyy-mm-dd}#STATUS#{status} from a date or a full timestamp."""
    date = (date_or_timestamp or '').split('T')[0]
    if not _DATE_PATTERN.match(date):
        raise ValidationError('Malformed admin date', {'date': date_or_timestamp})
    return f'{DATE_PREFIX}{date}{STATUS_INFIX}{_require_status(status)}'


def parse_admin_date(value: str) -> Tuple[str, str]:
    """Return (date, status) from an AdminDate value."""
    body = _strip_prefix(value, DATE_PREFIX, 'adminDate')
    date, sep, status = body.partition(STATUS_INFIX)
    if not sep or not _DATE_PATTERN.match(date) or status not in RSVP_STATUSES:
        raise ValidationError('Malformed admin date', {'adminDate': value})
    return date, status


def build_admin_date_prefix(date: str) -> str:
    return f'{DATE_PREFIX}{date}'


def event_key(event_id: str) -> Tuple[str, str]:
    return build_event_pk(event_id), METADATA_SK


def guest_key(event_id: str, email: str) -> Tuple[str, str]:
    return build_event_pk(event_id), build_guest_sk(email)


def group_key(event_id: str, group_id: str) -> Tuple[str, str]:
    return build_event_pk(event_id), build_group_sk(group_id)


def invitation_key(code: str) -> Tuple[str, str]:
    return build_invitation_pk(code), METADATA_SK


def shadow_attributes(
    event_id: str,
    invitation_code: str,
    status: str,
    as_of: Optional[str] = None
) -> Dict[str, str]:
    """
    Derive every secondary-index attribute of a guest row in one step.

    Must be written in the same update as the status change it reflects.

    Args:
        event_id: Event the guest belongs to
        invitation_code: Guest's invitation code
        status: Current RSVP status
        as_of: Timestamp of the latest response (or creation for pending guests)

    Returns:
        Dictionary with InvitationCode, EventStatus and AdminDate
    """
    return {
        'InvitationCode': build_invitation_pk(invitation_code),
        'EventStatus': build_status_bucket(event_id, status),
        'AdminDate': build_admin_date(as_of or now_timestamp(), status),
    }
