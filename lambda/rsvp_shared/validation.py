"""
Request validation for the RSVP handlers.

This module implements input validation for every API operation. Validation runs
before any business logic and never touches storage.

Each validator returns a list of errors; an empty list means the request is valid.
Each error is a dict with 'field' and 'message' keys.

Follows steering rules:
- Explicit over implicit
- Fail fast on invalid input
- Return detailed validation errors
"""

import json
import re
from typing import Dict, Any, List, Iterable

from rsvp_shared.admin_query import MAX_PAGE_SIZE, SORT_FIELDS
from rsvp_shared.errors import ValidationError
from rsvp_shared.guests import EDITABLE_FIELDS
from rsvp_shared.invitations import CODE_PATTERN
from rsvp_shared.keys import RSVP_STATUSES, parse_timestamp
from rsvp_shared.rsvp_writer import RESPONSE_STATUSES


EMAIL_PATTERN = re.compile(r'^[^@\s#]+@[^@\s#]+\.[^@\s#]+$')

DIETARY_OPTIONS = {
    'vegetarian',
    'vegan',
    'gluten_free',
    'dairy_free',
    'nut_allergy',
    'shellfish_allergy',
    'halal',
    'kosher',
    'no_beef',
    'no_pork',
    'other',
}

MAX_NAME_LENGTH = 100
MAX_TEXT_LENGTH = 500
MAX_CODE_INPUT_LENGTH = 64


def _error(field: str, message: str) -> Dict[str, str]:
    return {'field': field, 'message': message}


def _unexpected(request: Dict[str, Any], allowed: Iterable[str]) -> List[Dict[str, str]]:
    return [
        _error(field, 'Unexpected field in request')
        for field in sorted(set(request.keys()) - set(allowed))
    ]


def _check_text(
    errors: List[Dict[str, str]],
    request: Dict[str, Any],
    field: str,
    max_length: int = MAX_TEXT_LENGTH,
    required: bool = False
) -> None:
    if field not in request or request[field] is None:
        if required:
            errors.append(_error(field, 'Field is required'))
        return
    value = request[field]
    if not isinstance(value, str):
        errors.append(_error(field, 'Must be a string'))
    elif required and not value.strip():
        errors.append(_error(field, 'Cannot be empty'))
    elif len(value) > max_length:
        errors.append(_error(field, f'Must be at most {max_length} characters'))


def _check_email(errors: List[Dict[str, str]], request: Dict[str, Any], field: str = 'email') -> None:
    value = request.get(field)
    if value is None:
        errors.append(_error(field, 'Field is required'))
    elif not isinstance(value, str) or not EMAIL_PATTERN.match(value.strip()):
        errors.append(_error(field, 'Invalid email format'))


def _check_int(
    errors: List[Dict[str, str]],
    request: Dict[str, Any],
    field: str,
    minimum: int,
    maximum: int = None
) -> None:
    if request.get(field) is None:
        return
    value = request[field]
    if isinstance(value, bool) or not isinstance(value, int):
        errors.append(_error(field, 'Must be an integer'))
    elif value < minimum or (maximum is not None and value > maximum):
        bound = f'between {minimum} and {maximum}' if maximum is not None else f'at least {minimum}'
        errors.append(_error(field, f'Must be {bound}'))


def _check_timestamp(errors: List[Dict[str, str]], request: Dict[str, Any], field: str) -> None:
    if request.get(field) is None:
        return
    try:
        parse_timestamp(request[field])
    except (ValueError, TypeError):
        errors.append(_error(field, 'Must be an ISO 8601 timestamp'))


def validate_invitation_request(request: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Validate a validate-invitation request ({"code": "..."}).

    Only the presence and type of the code are checked here; the code's format is
    judged by the invitation validator, which reports it as an invalid code rather
    than a bad request.

    Examples:
        >>> validate_invitation_request({'code': ' abc123 '})
        []

        >>> validate_invitation_request({})
        [{'field': 'code', 'message': 'Field is required'}]
    """
    errors = _unexpected(request, {'code'})
    _check_text(errors, request, 'code', MAX_CODE_INPUT_LENGTH, required=True)
    return errors


def validate_submit_request(request: Dict[str, Any], max_plus_ones: int = 5) -> List[Dict[str, str]]:
    """
    Validate an RSVP submission.

    Performs the following validations:
    1. invitationCode and status are present
    2. status is attending, not_attending or maybe
    3. attendees is a list of at most max_plus_ones + 1 entries, each with a name
       and known dietary restrictions
    4. free-text fields are strings within length limits

    Args:
        request: Submission payload
        max_plus_ones: Configured ceiling on plus-ones

    Returns:
        List of validation errors. Empty list if validation passes.
    """
    errors = _unexpected(
        request,
        {'invitationCode', 'status', 'attendees', 'dietaryNotes', 'specialRequests'}
    )

    _check_text(errors, request, 'invitationCode', MAX_CODE_INPUT_LENGTH, required=True)

    status = request.get('status')
    if status is None:
        errors.append(_error('status', 'Field is required'))
    elif status not in RESPONSE_STATUSES:
        errors.append(_error('status', f'Status must be one of: {", ".join(RESPONSE_STATUSES)}'))

    attendees = request.get('attendees')
    if attendees is not None:
        if not isinstance(attendees, list):
            errors.append(_error('attendees', 'Must be a list'))
        else:
            if len(attendees) > max_plus_ones + 1:
                errors.append(_error(
                    'attendees',
                    f'At most {max_plus_ones + 1} attendees including the invitee'
                ))
            for index, attendee in enumerate(attendees):
                errors.extend(_attendee_errors(attendee, f'attendees[{index}]'))

    _check_text(errors, request, 'dietaryNotes')
    _check_text(errors, request, 'specialRequests')
    return errors


def _attendee_errors(attendee: Any, prefix: str) -> List[Dict[str, str]]:
    if not isinstance(attendee, dict):
        return [_error(prefix, 'Must be an object')]
    errors = [
        _error(f'{prefix}.{field}', 'Unexpected field in request')
        for field in sorted(set(attendee.keys()) - {'name', 'dietaryRestrictions'})
    ]
    name = attendee.get('name')
    if not isinstance(name, str) or not name.strip():
        errors.append(_error(f'{prefix}.name', 'Field is required'))
    elif len(name) > MAX_NAME_LENGTH:
        errors.append(_error(f'{prefix}.name', f'Must be at most {MAX_NAME_LENGTH} characters'))

    restrictions = attendee.get('dietaryRestrictions')
    if restrictions is not None:
        if not isinstance(restrictions, list):
            errors.append(_error(f'{prefix}.dietaryRestrictions', 'Must be a list'))
        else:
            unknown = [r for r in restrictions if not isinstance(r, str) or r not in DIETARY_OPTIONS]
            if unknown:
                errors.append(_error(
                    f'{prefix}.dietaryRestrictions',
                    f'Must be drawn from: {", ".join(sorted(DIETARY_OPTIONS))}'
                ))
    return errors


def validate_guest_create_request(request: Dict[str, Any], max_plus_ones: int = 5) -> List[Dict[str, str]]:
    """
    Validate an admin guest registration.

    Args:
        request: Registration payload
        max_plus_ones: Configured ceiling on plus-ones

    Returns:
        List of validation errors. Empty list if validation passes.
    """
    errors = _unexpected(request, {
        'name', 'email', 'phone', 'plusOnesAllowed', 'invitationCode', 'maxUses',
        'validFrom', 'validUntil', 'groupId', 'groupName', 'isPrimaryContact',
        'tableNumber', 'notes',
    })

    _check_text(errors, request, 'name', MAX_NAME_LENGTH, required=True)
    _check_email(errors, request)
    _check_text(errors, request, 'phone', 32)
    _check_int(errors, request, 'plusOnesAllowed', 0, max_plus_ones)
    _check_int(errors, request, 'maxUses', 1)
    _check_timestamp(errors, request, 'validFrom')
    _check_timestamp(errors, request, 'validUntil')
    _check_text(errors, request, 'groupName', MAX_NAME_LENGTH)
    _check_text(errors, request, 'tableNumber', 32)
    _check_text(errors, request, 'notes')

    code = request.get('invitationCode')
    if code is not None and (
        not isinstance(code, str) or not CODE_PATTERN.match(''.join(code.split()).upper())
    ):
        errors.append(_error('invitationCode', 'Must be 4-12 letters or digits'))

    group_id = request.get('groupId')
    if group_id is not None and (not isinstance(group_id, str) or not group_id.strip() or '#' in group_id):
        errors.append(_error('groupId', "Must be a non-empty string without '#'"))

    if request.get('isPrimaryContact') is not None and not isinstance(request['isPrimaryContact'], bool):
        errors.append(_error('isPrimaryContact', 'Must be a boolean'))
    return errors


def validate_guest_update_request(request: Dict[str, Any], max_plus_ones: int = 5) -> List[Dict[str, str]]:
    """
    Validate an admin guest edit.

    The request names the guest by email and carries only the fields to change,
    plus an optional expectedVersion for optimistic locking.

    Args:
        request: Edit payload
        max_plus_ones: Configured ceiling on plus-ones

    Returns:
        List of validation errors. Empty list if validation passes.
    """
    changeable = set(EDITABLE_FIELDS) | {'rsvpStatus', 'invitationActive'}
    errors = _unexpected(request, {'email', 'expectedVersion'} | changeable)

    _check_email(errors, request)
    _check_int(errors, request, 'expectedVersion', 0)

    if not changeable & set(request.keys()):
        errors.append(_error('body', 'At least one field to change is required'))

    _check_text(errors, request, 'name', MAX_NAME_LENGTH)
    if 'name' in request and isinstance(request['name'], str) and not request['name'].strip():
        errors.append(_error('name', 'Cannot be empty'))
    _check_text(errors, request, 'phone', 32)
    _check_int(errors, request, 'plusOnesAllowed', 0, max_plus_ones)
    _check_text(errors, request, 'tableNumber', 32)
    _check_text(errors, request, 'notes')
    _check_timestamp(errors, request, 'invitationSentAt')
    _check_timestamp(errors, request, 'invitationViewedAt')

    for field in ('isPrimaryContact', 'invitationActive'):
        if request.get(field) is not None and not isinstance(request[field], bool):
            errors.append(_error(field, 'Must be a boolean'))

    status = request.get('rsvpStatus')
    if status is not None and status not in RESPONSE_STATUSES:
        errors.append(_error('rsvpStatus', f'Status must be one of: {", ".join(RESPONSE_STATUSES)}'))
    return errors


def validate_list_query(params: Dict[str, Any]) -> List[Dict[str, str]]:
    """
    Validate guest listing query string parameters.

    All values arrive as strings; limit must parse as an integer between 1 and 100.
    """
    errors = _unexpected(params, {'status', 'search', 'sortBy', 'order', 'limit', 'nextToken'})

    status = params.get('status')
    if status is not None and status not in RSVP_STATUSES:
        errors.append(_error('status', f'Status must be one of: {", ".join(RSVP_STATUSES)}'))

    sort_by = params.get('sortBy')
    if sort_by is not None and sort_by not in SORT_FIELDS:
        errors.append(_error('sortBy', f'Must be one of: {", ".join(SORT_FIELDS)}'))

    order = params.get('order')
    if order is not None and order not in ('asc', 'desc'):
        errors.append(_error('order', 'Must be asc or desc'))

    limit = params.get('limit')
    if limit is not None:
        try:
            value = int(limit)
        except (TypeError, ValueError):
            errors.append(_error('limit', 'Must be an integer'))
        else:
            if not 1 <= value <= MAX_PAGE_SIZE:
                errors.append(_error('limit', f'Must be between 1 and {MAX_PAGE_SIZE}'))

    _check_text(errors, params, 'search', MAX_NAME_LENGTH)
    return errors


def parse_json_body(event: Dict[str, Any]) -> Dict[str, Any]:
    """
    Parse the JSON body of an API Gateway proxy event.

    Raises:
        ValidationError: If the body is not a JSON object
    """
    body = event.get('body') or '{}'
    if isinstance(body, str):
        try:
            body = json.loads(body)
        except json.JSONDecodeError:
            raise ValidationError(
                'Invalid JSON in request body',
                {'body': 'Request body must be valid JSON'}
            )
    if not isinstance(body, dict):
        raise ValidationError(
            'Request body must be a JSON object',
            {'body': 'Request body must be a JSON object'}
        )
    return body
